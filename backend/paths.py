"""Where stockdiff keeps its runtime files.

Everything lives under one root, ``STOCKDIFF_ROOT`` or ``<repo>/data``:

    downloads/  rendered transfer PDFs, served at ``/downloads``
    tmp/        uploads spilled to disk while a comparison runs
    runtime/    ``backend.pid`` / ``backend.port`` of the running server
    logs/       rotating JSON-lines log
"""

import os
from functools import lru_cache
from pathlib import Path

_DEFAULT_ROOT = Path(__file__).resolve().parent.parent / "data"

SUBDIRS = ("downloads", "tmp", "runtime", "logs")


@lru_cache(maxsize=1)
def app_root() -> Path:
    env_root = os.getenv("STOCKDIFF_ROOT")
    root = Path(env_root).expanduser() if env_root else _DEFAULT_ROOT
    root.mkdir(parents=True, exist_ok=True)
    return root


def _subdir(name: str) -> Path:
    path = app_root() / name
    path.mkdir(parents=True, exist_ok=True)
    return path


def downloads_dir() -> Path:
    return _subdir("downloads")


def tmp_dir() -> Path:
    """Scratch space for uploads; wiped at startup and by ``maintenance.py --nuke-tmp``."""
    return _subdir("tmp")


def runtime_dir() -> Path:
    return _subdir("runtime")


def logs_dir() -> Path:
    return _subdir("logs")


def ensure_app_dirs() -> None:
    for name in SUBDIRS:
        _subdir(name)
