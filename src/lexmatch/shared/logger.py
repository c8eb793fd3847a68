"""Run log for batch commands (import, compile, annotate).

One RunLogger writes to up to three sinks, each with its own gate:

- console    : lines at or above ``min_level``
- info file  : INFO and above
- trace file : everything

``install_stdlib_bridge`` forwards records from ``logging`` loggers (the
library modules under ``lexmatch``) into the same sinks.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TextIO

_LEVELS: dict[str, int] = {
    "TRACE": -1,
    "DEBUG": 0,
    "INFO": 1,
    "METRIC": 1,
    "WARN": 2,
    "ERROR": 3,
}


class RunLogger:
    def __init__(
        self,
        log_file: str | Path | None = None,
        trace_file: str | Path | None = None,
        console: bool = True,
        min_level: str = "INFO",
    ) -> None:
        self.console = console
        self.min_level = _LEVELS.get(min_level.upper(), 1)
        self._started = time.perf_counter()
        self._timings: dict[str, float] = {}
        self._metrics: dict[str, Any] = {}
        self.log_path = Path(log_file) if log_file else None
        self.trace_path = Path(trace_file) if trace_file else None
        self._info = self._open(self.log_path, "lexmatch log")
        self._trace = self._open(self.trace_path, "lexmatch trace")

    @staticmethod
    def _open(path: Path | None, title: str) -> TextIO | None:
        if path is None:
            return None
        path.parent.mkdir(parents=True, exist_ok=True)
        f = open(path, "w", encoding="utf-8", buffering=1)
        f.write(f"# {title} {time.strftime('%Y-%m-%d %H:%M:%S')}\n")
        return f

    def _write(self, line: str, level: int, force_console: bool = False) -> None:
        if self.console and (force_console or level >= self.min_level):
            print(line, flush=True)
        if self._info and level >= 1:
            self._info.write(line + "\n")
        if self._trace:
            self._trace.write(line + "\n")

    def log(self, level: str, msg: str) -> None:
        elapsed = time.perf_counter() - self._started
        line = f"[{time.strftime('%H:%M:%S')}] [{elapsed:7.2f}s] {level:6} | {msg}"
        self._write(line, _LEVELS.get(level, 1))

    def trace(self, msg: str) -> None:
        self.log("TRACE", msg)

    def debug(self, msg: str) -> None:
        self.log("DEBUG", msg)

    def info(self, msg: str) -> None:
        self.log("INFO", msg)

    def warn(self, msg: str) -> None:
        self.log("WARN", msg)

    def error(self, msg: str) -> None:
        self.log("ERROR", msg)

    def section(self, title: str) -> None:
        rule = "=" * 72
        for line in ("", rule, f"  {title}", rule):
            self._write(line, 1, force_console=True)

    def metric(self, name: str, value: Any, unit: str = "") -> None:
        self._metrics[name] = value
        shown = f"{value:.3f}" if isinstance(value, float) else str(value)
        self.log("METRIC", f"{name} = {shown}{' ' + unit if unit else ''}")

    @contextmanager
    def timer(self, name: str):
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed = time.perf_counter() - start
            self._timings[name] = self._timings.get(name, 0.0) + elapsed
            self.log("METRIC", f"timer:{name} = {elapsed:.3f}s")

    def summary(self) -> None:
        self.section("SUMMARY")
        self.info(f"Wall time: {time.perf_counter() - self._started:.2f}s")
        for name, elapsed in sorted(self._timings.items(), key=lambda kv: -kv[1]):
            self.info(f"  {name:<40} {elapsed:>8.3f}s")
        for name, value in self._metrics.items():
            self.info(f"  {name:<40} {value}")
        if self.log_path:
            self.info(f"Info log : {self.log_path}")
        if self.trace_path:
            self.info(f"Trace log: {self.trace_path}")

    def install_stdlib_bridge(self, root_logger: str = "lexmatch", level: int = logging.INFO) -> None:
        """Route ``logging`` records from ``root_logger`` into this run log."""
        target = logging.getLogger(root_logger)
        target.setLevel(level)
        handler = next((h for h in target.handlers if isinstance(h, _BridgeHandler)), None)
        if handler is None:
            handler = _BridgeHandler(self)
            target.addHandler(handler)
        # A later run takes over the bridge installed by an earlier one.
        handler.run_logger = self
        handler.setLevel(level)

    def close(self) -> None:
        for f in (self._info, self._trace):
            if f:
                f.close()
        self._info = self._trace = None

    def __enter__(self) -> RunLogger:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


class _BridgeHandler(logging.Handler):
    _LEVEL_NAMES = {
        logging.DEBUG: "DEBUG",
        logging.INFO: "INFO",
        logging.WARNING: "WARN",
        logging.ERROR: "ERROR",
        logging.CRITICAL: "ERROR",
    }

    def __init__(self, run_logger: RunLogger) -> None:
        super().__init__()
        self.run_logger = run_logger

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = self._LEVEL_NAMES.get(record.levelno, "INFO")
            self.run_logger.log(level, f"[{record.name}] {self.format(record)}")
        except Exception:
            self.handleError(record)


_default: RunLogger | None = None


def get_logger() -> RunLogger:
    global _default
    if _default is None:
        _default = RunLogger()
    return _default


def set_logger(run_logger: RunLogger) -> None:
    global _default
    _default = run_logger
