#!/usr/bin/env python
"""Django's command-line utility for administrative tasks."""
import os
import sys
from pathlib import Path


def main() -> None:
    sync_root = Path(__file__).resolve().parent
    for path in (sync_root, sync_root.parent):
        if str(path) not in sys.path:
            sys.path.insert(0, str(path))

    os.environ.setdefault("DJANGO_SETTINGS_MODULE", "picqer_sync.settings")
    try:
        from django.core.management import execute_from_command_line
    except ImportError as exc:
        raise ImportError(
            "Couldn't import Django. Are you sure it's installed and "
            "available on your PYTHONPATH environment variable? Did you "
            "forget to activate a virtual environment?"
        ) from exc
    execute_from_command_line(sys.argv)


if __name__ == "__main__":
    main()
