"""Tests for RunLogger."""

import logging

from lexmatch.shared.logger import RunLogger, get_logger, set_logger


class TestRunLogger:
    """Tests for sinks and level gates."""

    def test_console_gate(self, capsys):
        """Console output respects min_level."""
        log = RunLogger(min_level="WARN")
        log.info("hidden")
        log.warn("shown")
        out = capsys.readouterr().out
        assert "hidden" not in out
        assert "WARN   | shown" in out

    def test_sections_always_on_console(self, capsys):
        """Sections bypass the console gate."""
        RunLogger(min_level="ERROR").section("lexmatch compile")
        assert "lexmatch compile" in capsys.readouterr().out

    def test_file_sinks(self, tmp_path):
        """The info file skips TRACE and DEBUG, the trace file keeps everything."""
        info, trace = tmp_path / "run.log", tmp_path / "logs" / "trace.log"
        with RunLogger(log_file=info, trace_file=trace, console=False) as log:
            log.trace("span detail")
            log.debug("debug detail")
            log.info("summary line")

        info_text = info.read_text()
        trace_text = trace.read_text()
        assert info_text.startswith("# lexmatch log")
        assert "summary line" in info_text
        assert "span detail" not in info_text
        assert "debug detail" not in info_text
        assert "span detail" in trace_text
        assert "debug detail" in trace_text

    def test_timer_accumulates(self):
        """Repeated timers with the same name add up."""
        log = RunLogger(console=False)
        with log.timer("compile"):
            pass
        with log.timer("compile"):
            pass
        assert set(log._timings) == {"compile"}
        assert log._timings["compile"] >= 0

    def test_metrics_in_summary(self, capsys):
        """Metrics are stored and reported in the summary."""
        log = RunLogger()
        log.metric("entries_added", 3)
        log.metric("ratio", 0.5)
        log.summary()
        out = capsys.readouterr().out
        assert "entries_added = 3" in out
        assert "ratio = 0.500" in out
        assert "SUMMARY" in out
        assert log._metrics == {"entries_added": 3, "ratio": 0.5}

    def test_close_is_idempotent(self, tmp_path):
        """Closing twice is harmless and later lines only go to the console."""
        log = RunLogger(log_file=tmp_path / "run.log", console=False)
        log.close()
        log.close()
        log.info("after close")
        assert "after close" not in (tmp_path / "run.log").read_text()


class TestStdlibBridge:
    """Tests for forwarding logging records."""

    def test_records_forwarded(self, tmp_path):
        """Records from lexmatch loggers reach the run log."""
        path = tmp_path / "run.log"
        with RunLogger(log_file=path, console=False) as log:
            log.install_stdlib_bridge("lexmatch.test_bridge")
            logging.getLogger("lexmatch.test_bridge.child").warning("[Vocabulary] corrupt artifact")
        assert "WARN   | [lexmatch.test_bridge.child] [Vocabulary] corrupt artifact" in path.read_text()

    def test_bridge_retargets(self, tmp_path):
        """A second run logger takes over the existing bridge."""
        first, second = tmp_path / "first.log", tmp_path / "second.log"
        with RunLogger(log_file=first, console=False) as log:
            log.install_stdlib_bridge("lexmatch.test_retarget")
        with RunLogger(log_file=second, console=False) as log:
            log.install_stdlib_bridge("lexmatch.test_retarget")
            logging.getLogger("lexmatch.test_retarget").info("second run")

        handlers = logging.getLogger("lexmatch.test_retarget").handlers
        assert len(handlers) == 1
        assert "second run" in second.read_text()
        assert "second run" not in first.read_text()


class TestDefaultLogger:
    """Tests for the module-level logger."""

    def test_set_and_get(self):
        """set_logger replaces the default."""
        log = RunLogger(console=False)
        set_logger(log)
        assert get_logger() is log
