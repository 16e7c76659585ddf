from __future__ import annotations

import subprocess

import pytest

from picqer_api import run_django


def _record_calls(
    monkeypatch: pytest.MonkeyPatch, failing_command: str | None = None, returncode: int = 2
) -> list[list[str]]:
    calls: list[list[str]] = []

    def fake_run(argv: list[str]) -> subprocess.CompletedProcess[list[str]]:
        calls.append(list(argv))
        command = argv[2]
        return subprocess.CompletedProcess(
            args=argv, returncode=returncode if command == failing_command else 0
        )

    monkeypatch.setattr(run_django.subprocess, "run", fake_run)
    monkeypatch.setattr(run_django, "_manage_script", lambda: "/tmp/manage.py")
    return calls


@pytest.mark.scripts
def test_sync_entities_migrates_then_forwards_arguments(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _record_calls(monkeypatch)
    monkeypatch.setattr(run_django.sys, "argv", ["picqer-sync", "products", "--full"])

    exit_code = run_django.sync_entities()

    assert exit_code == 0
    assert calls == [
        [run_django.sys.executable, "/tmp/manage.py", "migrate"],
        [run_django.sys.executable, "/tmp/manage.py", "sync_entities", "products", "--full"],
    ]


@pytest.mark.scripts
def test_sync_entities_stops_when_migrate_fails(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _record_calls(monkeypatch, failing_command="migrate", returncode=3)
    monkeypatch.setattr(run_django.sys, "argv", ["picqer-sync"])

    exit_code = run_django.sync_entities()

    assert exit_code == 3
    assert calls == [[run_django.sys.executable, "/tmp/manage.py", "migrate"]]


@pytest.mark.scripts
def test_sync_status_propagates_stale_exit_code(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _record_calls(monkeypatch, failing_command="sync_status", returncode=2)
    monkeypatch.setattr(run_django.sys, "argv", ["picqer-sync-status", "--fail-on-stale"])

    exit_code = run_django.sync_status()

    assert exit_code == 2
    assert calls == [
        [run_django.sys.executable, "/tmp/manage.py", "sync_status", "--fail-on-stale"],
    ]


@pytest.mark.scripts
def test_manage_script_resolves_packaged_manage_module() -> None:
    assert run_django._manage_script().endswith("picqer_sync/manage.py")
