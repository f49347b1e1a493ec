"""
Maintenance utilities for the stockdiff runtime filesystem.

Rendered transfer PDFs pile up under ``downloads/`` and interrupted requests
can leave uploads behind in ``tmp/``. These helpers tidy both and can be
invoked as a standalone module:

    python maintenance.py --purge-downloads --nuke-tmp
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from download_fs import (
    default_download_retention_hours,
    purge_downloads,
    reset_tmp_directory,
)
from paths import ensure_app_dirs, runtime_dir, tmp_dir

BACKEND_PID_NAME = "backend.pid"
BACKEND_PORT_NAME = "backend.port"


@dataclass
class RuntimeCleanupReport:
    pid_removed: bool = False
    port_removed: bool = False
    stale_pid: int | None = None
    error: str | None = None


def backend_pid_path() -> Path:
    return runtime_dir() / BACKEND_PID_NAME


def backend_port_path() -> Path:
    return runtime_dir() / BACKEND_PORT_NAME


def read_pid() -> int | None:
    pid_path = backend_pid_path()
    if not pid_path.exists():
        return None
    try:
        return int(pid_path.read_text().strip())
    except Exception:
        return None


def is_process_running(pid: int) -> bool:
    if pid is None or pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


def remove_runtime_files(dry_run: bool = False) -> RuntimeCleanupReport:
    report = RuntimeCleanupReport()
    pid_path = backend_pid_path()
    port_path = backend_port_path()

    pid = read_pid()
    if pid is not None and is_process_running(pid):
        report.error = f"backend process {pid} is still running"
        return report
    if pid is not None:
        report.stale_pid = pid

    for path, attr in ((pid_path, "pid_removed"), (port_path, "port_removed")):
        if not path.exists():
            continue
        if dry_run:
            setattr(report, attr, True)
            continue
        try:
            path.unlink()
            setattr(report, attr, True)
        except Exception as exc:
            report.error = f"failed to remove {path.name}: {exc}"
    return report


def nuke_tmp(dry_run: bool = False) -> list[str]:
    entries = sorted(p.name for p in tmp_dir().iterdir())
    if not dry_run:
        reset_tmp_directory()
    return entries


def clean_all(
    purge: bool = True,
    max_age_hours: float = default_download_retention_hours(),
    dry_run: bool = False,
) -> dict[str, Any]:
    ensure_app_dirs()
    summary: dict[str, Any] = {
        "tmp_removed": nuke_tmp(dry_run=dry_run),
        "runtime": remove_runtime_files(dry_run=dry_run).__dict__,
        "download_retention": [],
    }
    if purge:
        summary["download_retention"] = [
            res.__dict__ for res in purge_downloads(max_age_hours, dry_run=dry_run)
        ]
    return summary


def main(argv: Iterable[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="stockdiff maintenance helper.")
    parser.add_argument(
        "--purge-downloads",
        action="store_true",
        help="Remove rendered transfer PDFs older than the retention window.",
    )
    parser.add_argument(
        "--max-age-hours",
        type=float,
        default=default_download_retention_hours(),
        help="Retention window (in hours) before a rendered PDF is purged.",
    )
    parser.add_argument(
        "--nuke-tmp",
        action="store_true",
        help="Delete every leftover upload under tmp/.",
    )
    parser.add_argument(
        "--clean-runtime",
        action="store_true",
        help="Remove lingering backend runtime metadata (pid/port files).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report intended actions without deleting anything.",
    )
    args = parser.parse_args(list(argv) if argv is not None else None)

    ensure_app_dirs()

    results: dict[str, Any] = {}
    if args.purge_downloads:
        results["download_retention"] = [
            r.__dict__ for r in purge_downloads(args.max_age_hours, dry_run=args.dry_run)
        ]
    if args.nuke_tmp:
        results["tmp_removed"] = nuke_tmp(dry_run=args.dry_run)
    if args.clean_runtime:
        results["runtime"] = remove_runtime_files(dry_run=args.dry_run).__dict__

    if not results:
        results = clean_all(max_age_hours=args.max_age_hours, dry_run=args.dry_run)

    print(json.dumps(results, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
