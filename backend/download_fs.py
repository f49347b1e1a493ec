from __future__ import annotations

import errno
import os
import shutil
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import cast

from paths import downloads_dir, tmp_dir

DOWNLOAD_PREFIX = "transfer_"
_REMOVE_ATTEMPTS = 5
_REMOVE_BACKOFF_SECONDS = 0.2

try:
    _DEFAULT_RETENTION_HOURS = float(os.getenv("DOWNLOAD_RETENTION_HOURS", "24"))
except ValueError:
    _DEFAULT_RETENTION_HOURS = 24.0


def default_download_retention_hours() -> float:
    """Return the configured retention window (hours) for rendered transfer PDFs."""
    return _DEFAULT_RETENTION_HOURS


@dataclass(frozen=True)
class DownloadRetentionResult:
    filename: str
    age_hours: float
    removed: bool


def _downloads_root() -> Path:
    return cast(Path, downloads_dir())


def build_download_filename(now: float | None = None) -> str:
    stamp = int((now if now is not None else time.time()) * 1000)
    return f"{DOWNLOAD_PREFIX}{stamp}.pdf"


def download_url(filename: str) -> str:
    return f"/downloads/{filename}"


def store_download(payload: bytes, filename: str | None = None) -> Path:
    root = _downloads_root()
    name = filename or build_download_filename()
    target = root / name
    # exclusive create: concurrent renders in the same millisecond each get their own file
    suffix = 0
    while True:
        try:
            with open(target, "xb") as fh:
                fh.write(payload)
            return target
        except FileExistsError:
            suffix += 1
            target = root / f"{Path(name).stem}_{suffix}.pdf"


def iter_downloads() -> list[Path]:
    root = _downloads_root()
    if not root.exists():
        return []
    return sorted(p for p in root.iterdir() if p.is_file() and p.suffix.lower() == ".pdf")


def _age_hours(path: Path, *, reference: float | None = None) -> float | None:
    try:
        stat = path.stat()
    except FileNotFoundError:
        return None
    now = reference or time.time()
    age_seconds = max(0.0, now - stat.st_mtime)
    return age_seconds / 3600.0


def purge_downloads(
    max_age_hours: float,
    dry_run: bool = False,
) -> list[DownloadRetentionResult]:
    """
    Remove rendered PDFs older than the specified age threshold.

    Returns details for each file evaluated for removal.
    """
    results: list[DownloadRetentionResult] = []
    if max_age_hours <= 0:
        return results
    reference = time.time()
    for path in iter_downloads():
        age_hours = _age_hours(path, reference=reference)
        if age_hours is None or age_hours < max_age_hours:
            continue
        removed = False
        if not dry_run:
            _robust_unlink(path)
            removed = True
        results.append(
            DownloadRetentionResult(
                filename=path.name,
                age_hours=age_hours,
                removed=removed,
            )
        )
    return results


def reset_tmp_directory() -> None:
    path = tmp_dir()
    _robust_rmtree(path)
    path.mkdir(parents=True, exist_ok=True)


def _retry_on_permission(action: Callable[[Path], object], target: Path) -> None:
    attempts = 0
    last_error: OSError | None = None
    while attempts < _REMOVE_ATTEMPTS:
        try:
            action(target)
            return
        except FileNotFoundError:
            return
        except PermissionError as exc:
            last_error = exc
            attempts += 1
            time.sleep(_REMOVE_BACKOFF_SECONDS * attempts)
        except OSError as exc:
            if exc.errno not in {errno.EACCES, errno.EPERM}:
                raise
            last_error = exc
            attempts += 1
            time.sleep(_REMOVE_BACKOFF_SECONDS * attempts)
    if last_error is not None:
        raise last_error


def _robust_unlink(target: Path) -> None:
    _retry_on_permission(lambda p: p.unlink(), target)


def _robust_rmtree(target: Path) -> None:
    if not target.exists():
        return
    _retry_on_permission(shutil.rmtree, target)
