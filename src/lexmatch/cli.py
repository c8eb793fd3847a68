"""Batch command line: import entry files, compile vocabularies, annotate documents.

Usage:
    lexmatch import --db lexmatch.db --vocabulary genes --file genes.tsv --language eng
    lexmatch compile --db lexmatch.db --index-dir indexes --vocabulary genes --workers 4
    lexmatch annotate --db lexmatch.db --index-dir indexes -v genes --input docs/ --output out/
"""

from __future__ import annotations

import argparse
import json
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path

from lexmatch.errors import LexmatchError
from lexmatch.matching.matcher import VocabularyMatcher
from lexmatch.normalize.factory import create_normalizer
from lexmatch.shared.logger import RunLogger
from lexmatch.storage.sqlite import SQLiteStorage
from lexmatch.types import MatchOptions, Ranking, SpanOptions, VocabularyConfig
from lexmatch.vocab.registry import VocabularyRegistry
from lexmatch.vocab.tsv import read_entry_file


def _registry(args: argparse.Namespace) -> VocabularyRegistry:
    index_dir = args.index_dir or args.db.with_suffix(".indexes")
    args.db.parent.mkdir(parents=True, exist_ok=True)
    storage = SQLiteStorage(str(args.db))
    storage.create_tables()
    return VocabularyRegistry(storage, create_normalizer(), index_dir)


def _collect_files(input_path: Path, patterns: list[str]) -> list[Path]:
    if input_path.is_file():
        return [input_path]
    files: list[Path] = []
    for pattern in patterns:
        files.extend(input_path.glob(pattern))
    return sorted(set(files))


def _cmd_import(args: argparse.Namespace, log: RunLogger) -> int:
    if not args.file.is_file():
        log.error(f"Entry file does not exist: {args.file}")
        return 1

    registry = _registry(args)
    config = VocabularyConfig(
        threshold=args.threshold,
        min_tokens=args.min_tokens,
        max_tokens=args.max_tokens,
        language=args.language,
    )
    vocabulary = registry.get_or_create(args.vocabulary, config)

    with log.timer("read_entries"):
        raw = read_entry_file(args.file)
    log.metric("lines_read", len(raw))

    with log.timer("import"):
        added = vocabulary.add_entries(raw)
    log.metric("entries_added", added)
    log.metric("entries_total", vocabulary.entries_num)
    return 0


def _cmd_compile(args: argparse.Namespace, log: RunLogger) -> int:
    registry = _registry(args)
    names = args.vocabulary or registry.names()
    if not names:
        log.warn("No vocabularies to compile")
        return 0

    failures = 0
    for vocabulary in registry.resolve(names):
        if not args.force and not vocabulary.compilable():
            log.info(f"{vocabulary.name}: up to date, skipping")
            continue
        with log.timer(f"compile:{vocabulary.name}"):
            try:
                stats = vocabulary.compile(workers=max(1, args.workers))
            except LexmatchError as e:
                log.error(f"{vocabulary.name}: compile failed: {e}")
                failures += 1
                continue
        log.metric(f"{vocabulary.name}.entries", stats.entries)
        log.metric(f"{vocabulary.name}.keys", stats.keys)
        log.metric(f"{vocabulary.name}.labels", stats.labels)
    return 1 if failures else 0


def _cmd_annotate(args: argparse.Namespace, log: RunLogger) -> int:
    if not args.input.exists():
        log.error(f"Input does not exist: {args.input}")
        return 1

    registry = _registry(args)
    vocabularies = registry.resolve(args.vocabulary)
    matcher = VocabularyMatcher(registry.normalizer)
    options = MatchOptions(
        min_tokens=args.min_tokens,
        max_tokens=args.max_tokens,
        threshold=args.threshold,
        tag_filter=frozenset(args.tag or ()),
        ranking=Ranking.ALL_ABOVE_THRESHOLD if args.all else Ranking.TOP_ONLY,
        spans=SpanOptions(
            case_insensitive=args.case_insensitive,
            replace_hyphen=args.replace_hyphen,
            stemming=args.stemming,
        ),
        partial_on_normalization_error=args.partial,
    )

    patterns = [p.strip() for p in args.pattern.split(",")]
    files = _collect_files(args.input, patterns)
    if not files:
        log.warn(f"No files matching {patterns} found in {args.input}")
        return 0
    log.metric("files_found", len(files))

    if args.output:
        args.output.mkdir(parents=True, exist_ok=True)

    total = 0
    errors: list[str] = []
    lock = threading.Lock()

    def _annotate_one(path: Path, position: int) -> None:
        nonlocal total
        text = path.read_text(encoding="utf-8")
        t0 = time.perf_counter()
        report = matcher.match_report(text, vocabularies, options)
        elapsed = time.perf_counter() - t0
        result = {
            "source": str(path),
            "text": text,
            "denotations": [a.to_denotation() for a in report.annotations],
        }
        if report.failed_spans:
            result["failed_spans"] = report.failed_spans

        with lock:
            total += len(report.annotations)
            log.info(f"[{position}/{len(files)}] {path.name}: "
                     f"{len(report.annotations)} annotations in {elapsed:.3f}s")
            for a in report.annotations:
                log.trace(f"  [{a.begin}:{a.end}] {a.span_text!r} -> "
                          f"{a.vocabulary_name}:{a.identifier} ({a.score:.4f})")
            if args.output:
                out = args.output / f"{path.stem}.json"
                out.write_text(json.dumps(result, ensure_ascii=False, indent=2), encoding="utf-8")
            else:
                print(json.dumps(result, ensure_ascii=False))

    with log.timer("annotate"):
        with ThreadPoolExecutor(max_workers=max(1, args.workers)) as pool:
            futures = {
                pool.submit(_annotate_one, path, i): path
                for i, path in enumerate(files, start=1)
            }
            for future in as_completed(futures):
                try:
                    future.result()
                except (LexmatchError, OSError) as e:
                    path = futures[future]
                    log.error(f"FAILED {path}: {e}")
                    errors.append(str(path))

    log.metric("annotations", total)
    log.metric("files_failed", len(errors))
    return 1 if errors else 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lexmatch",
        description="Import, compile and annotate with lexmatch vocabularies.",
    )
    parser.add_argument("--log-file", type=Path, default=None,
                        help="INFO+ log file (readable summary)")
    parser.add_argument("--trace-file", type=Path, default=None,
                        help="TRACE+ log file (every annotation)")
    parser.add_argument("--quiet", action="store_true", help="Only log warnings to the console")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("import", help="Import a label<TAB>identifier[<TAB>tags] file")
    p.add_argument("--db", required=True, type=Path)
    p.add_argument("--index-dir", type=Path, default=None)
    p.add_argument("--vocabulary", required=True)
    p.add_argument("--file", required=True, type=Path)
    p.add_argument("--language", default=None, help="ISO 639-3 code (kor, jpn use dedicated profiles)")
    p.add_argument("--threshold", type=float, default=0.85)
    p.add_argument("--min-tokens", type=int, default=1)
    p.add_argument("--max-tokens", type=int, default=6)
    p.set_defaults(handler=_cmd_import)

    p = sub.add_parser("compile", help="Rebuild vocabulary snapshots")
    p.add_argument("--db", required=True, type=Path)
    p.add_argument("--index-dir", type=Path, default=None)
    p.add_argument("--vocabulary", action="append", default=[],
                   help="Vocabulary to compile (repeatable; default: all)")
    p.add_argument("--force", action="store_true", help="Compile even when nothing changed")
    p.add_argument("--workers", type=int, default=1,
                   help="Threads used for n-gram extraction while building the index")
    p.set_defaults(handler=_cmd_compile)

    p = sub.add_parser("annotate", help="Annotate text files")
    p.add_argument("--db", required=True, type=Path)
    p.add_argument("--index-dir", type=Path, default=None)
    p.add_argument("--vocabulary", "-v", action="append", required=True)
    p.add_argument("--input", required=True, type=Path, help="A text file or a directory")
    p.add_argument("--output", type=Path, default=None,
                   help="Directory for one JSON file per document (default: stdout)")
    p.add_argument("--pattern", default="**/*.txt")
    p.add_argument("--threshold", type=float, default=None)
    p.add_argument("--min-tokens", type=int, default=None)
    p.add_argument("--max-tokens", type=int, default=None)
    p.add_argument("--tag", action="append", default=[])
    p.add_argument("--all", action="store_true", help="Keep every hit above threshold")
    p.add_argument("--case-insensitive", "-i", action="store_true")
    p.add_argument("--replace-hyphen", "-H", action="store_true")
    p.add_argument("--stemming", action="store_true")
    p.add_argument("--partial", action="store_true",
                   help="Skip spans whose normalization fails instead of aborting")
    p.add_argument("--workers", type=int, default=1)
    p.set_defaults(handler=_cmd_annotate)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    log = RunLogger(
        log_file=args.log_file,
        trace_file=args.trace_file,
        console=True,
        min_level="WARN" if args.quiet else "INFO",
    )
    log.install_stdlib_bridge(root_logger="lexmatch", level=10)
    try:
        log.section(f"lexmatch {args.command}")
        try:
            code = args.handler(args, log)
        except LexmatchError as e:
            log.error(str(e))
            code = 1
        log.summary()
        return code
    finally:
        log.close()


if __name__ == "__main__":
    sys.exit(main())
