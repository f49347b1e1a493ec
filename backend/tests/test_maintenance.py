import json
from collections.abc import Generator
from pathlib import Path

import pytest
from pytest import MonkeyPatch

import maintenance
import paths
from paths import app_root


@pytest.fixture(autouse=True)
def _reset_app_root(
    monkeypatch: MonkeyPatch,
    tmp_path: Path,
) -> Generator[None, None, None]:
    monkeypatch.setenv("STOCKDIFF_ROOT", str(tmp_path))
    app_root.cache_clear()
    yield
    app_root.cache_clear()


def test_remove_runtime_files_skips_live_process(monkeypatch: MonkeyPatch) -> None:
    maintenance.backend_pid_path().write_text("4242")
    maintenance.backend_port_path().write_text("3001")
    monkeypatch.setattr(maintenance, "is_process_running", lambda pid: True)

    report = maintenance.remove_runtime_files()

    assert report.error == "backend process 4242 is still running"
    assert maintenance.backend_pid_path().exists()


def test_remove_runtime_files_clears_stale_metadata(monkeypatch: MonkeyPatch) -> None:
    maintenance.backend_pid_path().write_text("4242")
    maintenance.backend_port_path().write_text("3001")
    monkeypatch.setattr(maintenance, "is_process_running", lambda pid: False)

    report = maintenance.remove_runtime_files()

    assert report.stale_pid == 4242
    assert report.pid_removed and report.port_removed
    assert not maintenance.backend_pid_path().exists()
    assert not maintenance.backend_port_path().exists()


def test_nuke_tmp_dry_run_lists_without_deleting(tmp_path: Path) -> None:
    leftover = maintenance.tmp_dir() / "upload.pdf"
    leftover.write_bytes(b"x")

    assert maintenance.nuke_tmp(dry_run=True) == ["upload.pdf"]
    assert leftover.exists()

    assert maintenance.nuke_tmp() == ["upload.pdf"]
    assert not leftover.exists()


def test_main_prints_json_report(capsys: pytest.CaptureFixture[str]) -> None:
    assert maintenance.main(["--nuke-tmp", "--dry-run"]) == 0
    report = json.loads(capsys.readouterr().out)
    assert report == {"tmp_removed": []}


def test_ensure_app_dirs_builds_runtime_layout(tmp_path: Path) -> None:
    paths.ensure_app_dirs()
    assert sorted(p.name for p in tmp_path.iterdir()) == sorted(paths.SUBDIRS)
