from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SYNC_ROOT = ROOT / "picqer_sync"

if str(SYNC_ROOT) not in sys.path:
    sys.path.insert(0, str(SYNC_ROOT))

os.environ.setdefault(
    "PICQER_CONFIG_FILE",
    str(Path(tempfile.mkdtemp(prefix="picqer-tests-")) / "config.toml"),
)

TEST_TABLE_NAMES = ("WidgetRecords",)


@pytest.fixture
def drop_entity_tables():
    """Drop runtime-created entity tables, which test database flushes do not touch."""

    yield

    from picqer_data.entities import ENTITY_DESCRIPTORS
    from picqer_data.schema import SchemaReconciler

    reconciler = SchemaReconciler()
    table_names = [descriptor.table_name for descriptor in ENTITY_DESCRIPTORS.values()]
    for table_name in (*table_names, *TEST_TABLE_NAMES):
        reconciler.drop_table(table_name)
