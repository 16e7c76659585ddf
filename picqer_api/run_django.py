import subprocess
import sys
from importlib.util import find_spec
from pathlib import Path
from collections.abc import Sequence


def _manage_script() -> str:
    spec = find_spec("picqer_sync.manage")
    if spec is None or spec.origin is None:
        raise RuntimeError("Could not locate picqer_sync.manage")
    return str(Path(spec.origin).resolve())


def _run_manage(args: Sequence[str]) -> int:
    completed = subprocess.run([sys.executable, _manage_script(), *args])
    return completed.returncode


def migrate() -> int:
    return _run_manage(["migrate"])


def sync_entities() -> int:
    exit_code = migrate()
    if exit_code != 0:
        return exit_code

    return _run_manage(["sync_entities", *sys.argv[1:]])


def sync_status() -> int:
    return _run_manage(["sync_status", *sys.argv[1:]])
