import logging
import os
import sys
from importlib import import_module
from pathlib import Path
from typing import cast

from fastapi import FastAPI
from uvicorn import Config, Server

BACKEND_DIR = Path(__file__).resolve().parent
REPO_DIR = BACKEND_DIR.parent

for candidate in [str(BACKEND_DIR), str(REPO_DIR)]:
    if candidate not in sys.path:
        sys.path.insert(0, candidate)

try:
    app_module = import_module("app")
except ModuleNotFoundError:
    app_module = import_module("backend.app")

from maintenance import backend_pid_path, backend_port_path  # noqa: E402

app = cast(FastAPI, app_module.app)
logger = logging.getLogger("stockdiff.backend")

DEFAULT_PORT = 3001


def _write_runtime_files(port: int) -> None:
    backend_pid_path().write_text(str(os.getpid()))
    backend_port_path().write_text(str(port))


def _remove_runtime_files() -> None:
    for path in (backend_pid_path(), backend_port_path()):
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Failed to remove %s: %s", path, exc)


def main() -> None:
    port = int(os.getenv("BACKEND_PORT", str(DEFAULT_PORT)))
    config = Config(app=app, host="0.0.0.0", port=port, reload=False)
    server = Server(config)
    app.state.uvicorn_server = server
    _write_runtime_files(port)
    logger.info("Backend listening on port %d.", port)
    try:
        server.run()
    finally:
        _remove_runtime_files()


if __name__ == "__main__":
    main()
