import asyncio
import datetime as dt
import hashlib
import json
import logging
import logging.config
import os
import tempfile
import time
from collections import deque
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from threading import Lock
from typing import Annotated, Self, cast

from fastapi import FastAPI, File, HTTPException, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from fastapi.staticfiles import StaticFiles
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from differ import compare_groups
from download_fs import (
    default_download_retention_hours,
    download_url,
    purge_downloads,
    reset_tmp_directory,
    store_download,
)
from models import Groups
from parse_inventory_pdf import parse_groups
from paths import downloads_dir, ensure_app_dirs, logs_dir, tmp_dir
from schemas import CompareOut, TransferOut, TransferRequest
from transfer_pdf import render_transfer_pdf

OptionalUploadDep = Annotated[UploadFile | None, File()]

DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024  # 10 MiB default ceiling

_METRICS_REGISTRY = CollectorRegistry(auto_describe=True)

UPLOAD_COUNTER = Counter(
    "stockdiff_upload_documents_total",
    "Number of stock listings uploaded",
    ["side"],
    registry=_METRICS_REGISTRY,
)
UPLOAD_BYTES = Histogram(
    "stockdiff_upload_size_bytes",
    "Size of uploaded stock listings in bytes",
    ["side"],
    buckets=(
        64 * 1024,
        256 * 1024,
        512 * 1024,
        1024 * 1024,
        2 * 1024 * 1024,
        4 * 1024 * 1024,
        8 * 1024 * 1024,
        16 * 1024 * 1024,
    ),
    registry=_METRICS_REGISTRY,
)
COMPARE_COUNTER = Counter(
    "stockdiff_compare_requests_total",
    "Number of comparison attempts",
    ["result"],
    registry=_METRICS_REGISTRY,
)
COMPARE_DURATION = Histogram(
    "stockdiff_compare_duration_seconds",
    "Time spent parsing and comparing both listings",
    buckets=(0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 20.0, 30.0, 60.0),
    registry=_METRICS_REGISTRY,
)
RECORDS_COUNTER = Counter(
    "stockdiff_records_parsed_total",
    "Number of product records parsed from uploaded listings",
    ["side"],
    registry=_METRICS_REGISTRY,
)
TRANSFER_COUNTER = Counter(
    "stockdiff_transfer_pdfs_total",
    "Number of transfer PDFs rendered",
    ["result"],
    registry=_METRICS_REGISTRY,
)
ACTIVE_JOBS_GAUGE = Gauge(
    "stockdiff_active_jobs",
    "Number of active backend jobs",
    registry=_METRICS_REGISTRY,
)

DIAGNOSTICS_MAX_ENTRIES = max(1, int(os.getenv("DIAGNOSTICS_MAX_ENTRIES", "100")))
DIAGNOSTICS_BUFFER: deque[dict[str, object]] = deque(maxlen=DIAGNOSTICS_MAX_ENTRIES)
_LOGGING_CONFIGURED = False


class UploadTooLargeError(Exception):
    """Raised when an uploaded file exceeds the configured byte limit."""


class DiagnosticsHandler(logging.Handler):
    def emit(self: Self, record: logging.LogRecord) -> None:
        if record.levelno < logging.ERROR:
            return
        try:
            message = record.getMessage()
        except Exception:  # pragma: no cover - defensive
            message = str(record.msg)
        entry = {
            "timestamp": dt.datetime.fromtimestamp(record.created, tz=dt.UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": message,
            "code": _diagnostic_code(record, message),
            "pathname": record.pathname,
            "lineno": record.lineno,
        }
        if record.exc_info:
            try:
                entry["detail"] = logging.Formatter().formatException(record.exc_info)
            except Exception:
                entry["detail"] = None
        elif record.stack_info:
            entry["detail"] = record.stack_info
        DIAGNOSTICS_BUFFER.append(entry)


class JsonFormatter(logging.Formatter):
    def format(self: Self, record: logging.LogRecord) -> str:
        try:
            message = record.getMessage()
        except Exception:  # pragma: no cover - defensive
            message = str(record.msg)
        payload: dict[str, object] = {
            "timestamp": dt.datetime.fromtimestamp(record.created, tz=dt.UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": message,
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack_info"] = record.stack_info
        if record.pathname:
            payload["pathname"] = record.pathname
            payload["lineno"] = record.lineno
        return json.dumps(payload, ensure_ascii=False)


def _diagnostic_code(record: logging.LogRecord, message: str) -> str:
    raw = f"{record.name}:{record.lineno}:{message}".encode("utf-8", errors="ignore")
    return hashlib.sha1(raw).hexdigest()[:8].upper()


def _configure_logging() -> None:
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    log_dir = logs_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / os.getenv("BACKEND_LOG_FILE", "backend.jsonl")
    max_bytes = int(os.getenv("BACKEND_LOG_MAX_BYTES", str(5 * 1024 * 1024)))
    backup_count = int(os.getenv("BACKEND_LOG_BACKUP_COUNT", "5"))
    level = os.getenv("BACKEND_LOG_LEVEL", "INFO").upper()
    console_enabled = os.getenv("BACKEND_LOG_TO_STDOUT", "1").lower() in {"1", "true", "yes", "on"}

    handlers = {
        "file": {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": str(log_file),
            "maxBytes": max_bytes,
            "backupCount": backup_count,
            "encoding": "utf-8",
            "formatter": "json",
        },
        "diagnostics": {
            "()": DiagnosticsHandler,
            "level": "ERROR",
        },
    }

    root_handlers = ["file", "diagnostics"]
    if console_enabled:
        handlers["console"] = {
            "class": "logging.StreamHandler",
            "formatter": "json",
        }
        root_handlers.append("console")

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"json": {"()": JsonFormatter}},
            "handlers": handlers,
            "root": {"level": level, "handlers": root_handlers},
        }
    )
    _LOGGING_CONFIGURED = True


ensure_app_dirs()
_configure_logging()

logger = logging.getLogger("stockdiff.backend")


def _parse_max_upload_bytes(raw: str | None) -> int:
    if raw is None or raw.strip() == "":
        return DEFAULT_MAX_UPLOAD_BYTES
    try:
        value = int(raw)
    except ValueError as exc:
        raise RuntimeError("MAX_UPLOAD_BYTES must be an integer number of bytes.") from exc
    if value <= 0:
        raise RuntimeError("MAX_UPLOAD_BYTES must be greater than zero.")
    return value


MAX_UPLOAD_BYTES = _parse_max_upload_bytes(os.getenv("MAX_UPLOAD_BYTES"))


def _format_bytes(num_bytes: int) -> str:
    units = ["B", "KB", "MB", "GB", "TB"]
    value = float(num_bytes)
    idx = 0
    while value >= 1024 and idx < len(units) - 1:
        value /= 1024
        idx += 1
    precision = 1 if idx > 0 else 0
    return f"{value:.{precision}f} {units[idx]}"


def _detect_uploaded_size(upload: UploadFile, fallback: int) -> int:
    raw = upload.file
    if not hasattr(raw, "tell") or not hasattr(raw, "seek"):
        return fallback
    try:
        position = raw.tell()
    except Exception:
        return fallback
    try:
        raw.seek(0, os.SEEK_END)
        total = raw.tell()
    except Exception:
        total = fallback
    finally:
        try:
            raw.seek(position, os.SEEK_SET)
        except Exception:
            pass
    return total if total > 0 else fallback


def _parse_allowed_origins(raw: str | None) -> list[str]:
    if not raw:
        return ["http://127.0.0.1:5173", "http://localhost:5173"]
    origins = [item.strip() for item in raw.split(",") if item.strip()]
    if not origins:
        message = (
            "ALLOWED_ORIGINS is set but empty; specify at least one origin or unset the "
            "variable for the default."
        )
        raise RuntimeError(message)
    if "*" in origins:
        raise RuntimeError(
            "ALLOWED_ORIGINS may not contain wildcard '*'. Specify explicit origins."
        )
    return origins


ALLOWED_ORIGINS = _parse_allowed_origins(os.getenv("ALLOWED_ORIGINS"))
ALLOW_CREDENTIALS = os.getenv("CORS_ALLOW_CREDENTIALS", "false").lower() in {
    "1",
    "true",
    "yes",
    "on",
}

_active_jobs = 0
_active_jobs_lock = Lock()


async def on_startup() -> None:
    try:
        reset_tmp_directory()
        purged = purge_downloads(default_download_retention_hours())
    except Exception as exc:
        logger.warning("Startup cleanup failed: %s", exc)
        return None
    if purged:
        logger.info("Purged %d expired transfer PDF(s) at startup.", len(purged))
    return None


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    await on_startup()
    yield


app = FastAPI(title="stockdiff Backend", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=ALLOW_CREDENTIALS,
)

app.mount("/downloads", StaticFiles(directory=str(downloads_dir())), name="downloads")


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/metrics")
def metrics() -> Response:
    payload = cast(bytes, generate_latest(_METRICS_REGISTRY))
    return Response(payload, media_type=CONTENT_TYPE_LATEST)


def _recent_diagnostics(limit: int) -> list[dict]:
    if limit <= 0:
        return []
    snapshot = list(DIAGNOSTICS_BUFFER)
    if not snapshot:
        return []
    limited = snapshot[-limit:]
    limited.reverse()
    return limited


@app.get("/diagnostics")
def diagnostics(limit: int = 20) -> dict[str, list[dict]]:
    limit = max(1, min(limit, DIAGNOSTICS_MAX_ENTRIES))
    return {"entries": _recent_diagnostics(limit)}


def _read_upload_payload(upload: UploadFile, *, max_bytes: int) -> bytes:
    """Read an upload stream while enforcing a byte ceiling."""
    raw = upload.file
    total = 0
    chunks: list[bytes] = []
    while True:
        chunk = raw.read(65536)
        if not chunk:
            break
        if isinstance(chunk, str):
            chunk = chunk.encode()
        total += len(chunk)
        if total > max_bytes:
            reported_total = _detect_uploaded_size(upload, fallback=total)
            human_total = _format_bytes(reported_total)
            human_limit = _format_bytes(max_bytes)
            raise UploadTooLargeError(f"Upload size {human_total} exceeds the {human_limit} limit.")
        chunks.append(chunk)
    return b"".join(chunks)


def _validate_pdf_filename(side: str, filename: str) -> None:
    suffix = Path(filename).suffix.lower()
    if suffix != ".pdf":
        raise HTTPException(400, f"Only PDF files are accepted ({side}: {filename or 'unnamed'}).")


def _note_job_started(tag: str) -> None:
    global _active_jobs
    with _active_jobs_lock:
        _active_jobs += 1
        count = _active_jobs
    ACTIVE_JOBS_GAUGE.set(count)
    logger.info("Job started (%s); active jobs: %d.", tag, count)


def _note_job_finished(tag: str) -> None:
    global _active_jobs
    with _active_jobs_lock:
        _active_jobs = max(0, _active_jobs - 1)
        count = _active_jobs
    ACTIVE_JOBS_GAUGE.set(count)
    logger.info("Job finished (%s); active jobs: %d.", tag, count)


def _read_side(side: str, upload: UploadFile) -> bytes:
    filename = Path(upload.filename or "").name
    _validate_pdf_filename(side, filename)
    try:
        payload = _read_upload_payload(upload, max_bytes=MAX_UPLOAD_BYTES)
    except UploadTooLargeError as exc:
        raise HTTPException(
            status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"{side}: {exc}",
        ) from exc
    if not payload:
        raise HTTPException(400, f"Uploaded {side} file is empty.")
    try:
        UPLOAD_COUNTER.labels(side=side).inc()
        UPLOAD_BYTES.labels(side=side).observe(len(payload))
    except Exception:
        logger.debug("Failed to record upload metrics for side=%s", side, exc_info=True)
    return payload


def _parse_payload(side: str, payload: bytes) -> Groups:
    """Spill one upload to a temp file, parse it, and always remove the file."""
    tmp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(delete=False, suffix=".pdf", dir=tmp_dir()) as tmp:
            tmp.write(payload)
            tmp.flush()
            tmp_path = Path(tmp.name)
        groups = parse_groups(tmp_path)
    finally:
        if tmp_path:
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Failed to remove temp upload %s: %s", tmp_path, exc)
    RECORDS_COUNTER.labels(side=side).inc(sum(len(v) for v in groups.values()))
    return groups


async def extract_pair(source_payload: bytes, destination_payload: bytes) -> tuple[Groups, Groups]:
    """Run both document pipelines concurrently; they share no state.

    Both sides always run to completion (and clean up their temp files) before
    the first failure, if any, is re-raised.
    """
    outcomes = await asyncio.gather(
        asyncio.to_thread(_parse_payload, "source", source_payload),
        asyncio.to_thread(_parse_payload, "destination", destination_payload),
        return_exceptions=True,
    )
    for outcome in outcomes:
        if isinstance(outcome, BaseException):
            raise outcome
    source, destination = cast(list[Groups], outcomes)
    return source, destination


@app.post("/compare", response_model=CompareOut)
async def compare(
    source: OptionalUploadDep = None,
    destination: OptionalUploadDep = None,
) -> CompareOut:
    if source is None or destination is None:
        raise HTTPException(400, "Send both files: source and destination")

    _note_job_started("compare")
    started = time.perf_counter()
    try:
        source_payload = await asyncio.to_thread(_read_side, "source", source)
        destination_payload = await asyncio.to_thread(_read_side, "destination", destination)
        try:
            source_groups, destination_groups = await extract_pair(
                source_payload, destination_payload
            )
            result = compare_groups(source_groups, destination_groups)
        except Exception as exc:
            COMPARE_COUNTER.labels(result="failure").inc()
            logger.exception("Comparison failed")
            raise HTTPException(500, f"Failed to process PDFs: {exc}") from exc
        COMPARE_COUNTER.labels(result="success").inc()
        COMPARE_DURATION.observe(time.perf_counter() - started)
        logger.info(
            "Compared listings: %d categories, %d source / %d destination records.",
            len(result.categories),
            sum(len(v) for v in source_groups.values()),
            sum(len(v) for v in destination_groups.values()),
        )
        return CompareOut.model_validate(result.to_dict())
    finally:
        _note_job_finished("compare")


@app.post("/transfer-pdf", response_model=TransferOut)
def transfer_pdf(req: TransferRequest) -> TransferOut:
    if not req.items:
        raise HTTPException(400, "No items selected")

    _note_job_started("transfer-pdf")
    try:
        try:
            payload = render_transfer_pdf(
                [item.model_dump() for item in req.items],
                title=req.title,
            )
            target = store_download(payload)
        except Exception as exc:
            TRANSFER_COUNTER.labels(result="failure").inc()
            logger.exception("Transfer PDF generation failed")
            raise HTTPException(500, f"Failed to generate PDF: {exc}") from exc
        TRANSFER_COUNTER.labels(result="success").inc()
        logger.info("Rendered transfer PDF %s with %d item(s).", target.name, len(req.items))
        return TransferOut(url=download_url(target.name))
    finally:
        _note_job_finished("transfer-pdf")
