"""FastAPI application exposing vocabulary matching.

Endpoints:
- POST /annotate - Annotate a text against one or more vocabularies
- POST /find_ids - Map terms to identifiers
- POST /find_labels - Map identifiers to labels
- POST /vocabularies/{name}/compile - Rebuild a vocabulary's index (async)
- GET /vocabularies/{name} - Entry counts and compile state
- GET /health - Service health status

Environment variables:
- LEXMATCH_DB_PATH: SQLite database (default: /data/lexmatch/lexmatch.db)
- LEXMATCH_INDEX_DIR: Compiled index directory (default: /data/lexmatch/index)
- NORMALIZER / ELASTICSEARCH_URL: see lexmatch.normalize.factory
- QUEUE_ENABLED / QUEUE_URL / QUEUE_STREAM: see lexmatch.shared.queue.factory
- MATCH_TIMEOUT_S: Per-request matching timeout in seconds (default: 60)

Usage:
    uvicorn lexmatch.service.app:app --port 8000
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

from fastapi import BackgroundTasks, FastAPI, HTTPException
from pydantic import BaseModel, Field

from lexmatch.errors import (
    ConcurrentCompileRejected,
    IndexUnavailable,
    LexmatchError,
    NormalizationUnavailable,
    UnknownVocabularyError,
)
from lexmatch.matching.matcher import VocabularyMatcher
from lexmatch.normalize import create_normalizer
from lexmatch.service.queue_consumer import CompileQueueConsumer
from lexmatch.shared.queue import compile_request, create_queue, envelope, queue_enabled, queue_stream, queue_url
from lexmatch.storage.sqlite import SQLiteStorage
from lexmatch.types import MatchOptions, Ranking, SpanOptions
from lexmatch.vocab.registry import VocabularyRegistry
from lexmatch.vocab.vocabulary import Vocabulary

logger = logging.getLogger(__name__)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


class AnnotateRequest(BaseModel):
    """Request body for /annotate."""
    text: str = Field(..., description="Text to annotate")
    vocabularies: list[str] = Field(..., min_length=1, description="Vocabulary names")
    min_tokens: int | None = Field(default=None, ge=1)
    max_tokens: int | None = Field(default=None, ge=1)
    threshold: float | None = Field(default=None, description="Overrides each vocabulary's threshold")
    tags: list[str] = Field(default_factory=list, description="Keep entries with any of these tags")
    ranking: Ranking = Field(default=Ranking.TOP_ONLY)
    case_insensitive: bool = False
    replace_hyphen: bool = False
    stemming: bool = False
    ngram: bool = True
    partial: bool = Field(default=False, description="Drop spans whose normalization fails")


class Span(BaseModel):
    begin: int
    end: int


class Denotation(BaseModel):
    """One annotation."""
    begin: int
    end: int
    identifier: str
    label: str
    dictionary: str
    score: float
    span: Span
    obj: str
    tags: list[str] | None = None


class AnnotateResponse(BaseModel):
    """Response body for /annotate."""
    text: str
    denotations: list[Denotation]
    failed_spans: list[str] = Field(default_factory=list)
    elapsed_ms: float


class FindIdsRequest(BaseModel):
    """Request body for /find_ids."""
    terms: list[str]
    dictionaries: list[str] | None = Field(default=None, description="Default: all vocabularies")
    threshold: float | None = None
    verbose: bool = False
    ranking: Ranking = Field(default=Ranking.TOP_ONLY)
    tags: list[str] = Field(default_factory=list)
    ngram: bool = True


class FindLabelsRequest(BaseModel):
    """Request body for /find_labels."""
    ids: list[str]
    dictionaries: list[str] | None = None


class CompileResponse(BaseModel):
    """Response body for /vocabularies/{name}/compile."""
    vocabulary: str
    status: str = Field(..., description="'accepted', 'queued' or 'already_compiling'")
    message_id: str | None = None


class VocabularyStatus(BaseModel):
    """Response body for GET /vocabularies/{name}."""
    name: str
    threshold: float
    min_tokens: int
    max_tokens: int
    language: str | None
    entries_num: int
    num_gray: int
    num_white: int
    num_black: int
    num_auto_expanded: int
    compilable: bool
    compiling: bool


class HealthResponse(BaseModel):
    """Response body for /health."""
    status: str
    vocabularies: int
    queue_available: bool


@dataclass(frozen=True)
class Settings:
    db_path: str
    index_dir: str
    match_timeout_s: float
    queue_enabled: bool
    queue_url: str
    queue_stream: str


def load_settings() -> Settings:
    return Settings(
        db_path=os.environ.get("LEXMATCH_DB_PATH", "/data/lexmatch/lexmatch.db"),
        index_dir=os.environ.get("LEXMATCH_INDEX_DIR", "/data/lexmatch/index"),
        match_timeout_s=float(os.environ.get("MATCH_TIMEOUT_S", "60")),
        queue_enabled=queue_enabled(),
        queue_url=queue_url(),
        queue_stream=queue_stream(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire storage, normalizer, registry and (optionally) the compile worker."""
    settings = load_settings()
    logger.info(f"[Service] Starting with DB={settings.db_path}, INDEX_DIR={settings.index_dir}")

    Path(settings.db_path).parent.mkdir(parents=True, exist_ok=True)
    Path(settings.index_dir).mkdir(parents=True, exist_ok=True)

    storage = SQLiteStorage(settings.db_path)
    storage.create_tables()
    normalizer = create_normalizer()

    app.state.settings = settings
    app.state.registry = VocabularyRegistry(storage, normalizer, settings.index_dir)
    app.state.matcher = VocabularyMatcher(normalizer)
    app.state.queue = create_queue()
    app.state.queue_consumer = None
    app.state.startup_time = time.time()

    if settings.queue_enabled:
        app.state.queue_consumer = CompileQueueConsumer(
            redis_url=settings.queue_url,
            registry=app.state.registry,
            stream=settings.queue_stream,
        )
        consumer_thread = threading.Thread(
            target=app.state.queue_consumer.run,
            daemon=True,
            name="compile-consumer",
        )
        consumer_thread.start()
        app.state.consumer_thread = consumer_thread
        logger.info(f"[Service] Compile consumer started on {settings.queue_stream}")

    logger.info("[Service] Startup complete")
    yield

    logger.info("[Service] Shutting down...")
    if app.state.queue_consumer:
        app.state.queue_consumer.stop()
        app.state.consumer_thread.join(timeout=5.0)
    close = getattr(normalizer, "close", None)
    if close:
        close()
    logger.info("[Service] Shutdown complete")


app = FastAPI(
    title="lexmatch",
    description="Approximate and exact vocabulary term matching",
    version="0.1.0",
    lifespan=lifespan,
)


def _http_error(e: LexmatchError) -> HTTPException:
    if isinstance(e, UnknownVocabularyError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (NormalizationUnavailable, IndexUnavailable)):
        return HTTPException(status_code=503, detail=str(e))
    if isinstance(e, ValueError):
        return HTTPException(status_code=400, detail=str(e))
    logger.error(f"[Service] Unhandled {type(e).__name__}: {e}")
    return HTTPException(status_code=500, detail=str(e))


def _vocabularies(names: list[str] | None) -> list[Vocabulary]:
    registry: VocabularyRegistry = app.state.registry
    return registry.resolve(names if names else registry.names())


@app.post("/annotate", response_model=AnnotateResponse, response_model_exclude_none=True)
async def annotate(request: AnnotateRequest) -> AnnotateResponse:
    """Annotate a text; denotations sorted by begin, then descending score."""
    start_time = time.time()
    matcher: VocabularyMatcher = app.state.matcher
    options = MatchOptions(
        min_tokens=request.min_tokens,
        max_tokens=request.max_tokens,
        threshold=request.threshold,
        tag_filter=frozenset(request.tags),
        ranking=request.ranking,
        spans=SpanOptions(
            case_insensitive=request.case_insensitive,
            replace_hyphen=request.replace_hyphen,
            stemming=request.stemming,
        ),
        use_ngram=request.ngram,
        partial_on_normalization_error=request.partial,
    )

    try:
        vocabularies = _vocabularies(request.vocabularies)
        report = await asyncio.wait_for(
            asyncio.to_thread(matcher.match_report, request.text, vocabularies, options),
            timeout=app.state.settings.match_timeout_s,
        )
    except asyncio.TimeoutError:
        logger.error(f"[Service] Annotation timed out after {app.state.settings.match_timeout_s}s")
        raise HTTPException(status_code=504, detail="Annotation timed out")
    except LexmatchError as e:
        raise _http_error(e)

    return AnnotateResponse(
        text=request.text,
        denotations=[Denotation(**a.to_denotation()) for a in report.annotations],
        failed_spans=report.failed_spans,
        elapsed_ms=(time.time() - start_time) * 1000,
    )


@app.post("/find_ids")
async def find_ids(request: FindIdsRequest) -> dict[str, list]:
    """Map each term to matching identifiers (or full records when verbose)."""
    matcher: VocabularyMatcher = app.state.matcher
    options = MatchOptions(
        threshold=request.threshold,
        tag_filter=frozenset(request.tags),
        ranking=request.ranking,
        use_ngram=request.ngram,
    )
    try:
        vocabularies = _vocabularies(request.dictionaries)
        return await asyncio.to_thread(
            matcher.find_ids, request.terms, vocabularies, options, request.verbose
        )
    except LexmatchError as e:
        raise _http_error(e)


@app.post("/find_labels")
async def find_labels(request: FindLabelsRequest) -> dict[str, list[dict]]:
    """Map each identifier to the labels carrying it."""
    registry: VocabularyRegistry = app.state.registry
    try:
        return registry.find_labels_by_ids(request.ids, request.dictionaries)
    except LexmatchError as e:
        raise _http_error(e)


def _compile_in_background(vocabulary: Vocabulary) -> None:
    try:
        vocabulary.compile(block=False)
    except ConcurrentCompileRejected:
        logger.info(f"[Service] {vocabulary.name} is already compiling")
    except (LexmatchError, OSError) as e:
        logger.error(f"[Service] Compile of {vocabulary.name} failed: {e}")


@app.post("/vocabularies/{name}/compile", response_model=CompileResponse, status_code=202)
async def compile_vocabulary(name: str, background_tasks: BackgroundTasks) -> CompileResponse:
    """Start a compile: published to the queue when enabled, else run in-process."""
    registry: VocabularyRegistry = app.state.registry
    try:
        vocabulary = registry.get(name)
    except LexmatchError as e:
        raise _http_error(e)

    if vocabulary.is_compiling():
        return CompileResponse(vocabulary=name, status="already_compiling")

    queue = app.state.queue
    if queue.is_available():
        message_id = queue.publish(
            app.state.settings.queue_stream,
            envelope(compile_request(name), "lexmatch-service"),
        )
        return CompileResponse(vocabulary=name, status="queued", message_id=message_id)

    background_tasks.add_task(_compile_in_background, vocabulary)
    return CompileResponse(vocabulary=name, status="accepted")


@app.get("/vocabularies/{name}", response_model=VocabularyStatus)
async def vocabulary_status(name: str) -> VocabularyStatus:
    registry: VocabularyRegistry = app.state.registry
    try:
        vocabulary = registry.get(name)
    except LexmatchError as e:
        raise _http_error(e)

    config = vocabulary.config
    return VocabularyStatus(
        name=name,
        threshold=config.threshold,
        min_tokens=config.min_tokens,
        max_tokens=config.max_tokens,
        language=config.language,
        compilable=vocabulary.compilable(),
        compiling=vocabulary.is_compiling(),
        **vocabulary.counts(),
    )


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    registry: VocabularyRegistry = app.state.registry
    return HealthResponse(
        status="ok",
        vocabularies=len(registry.names()),
        queue_available=app.state.queue.is_available(),
    )
