from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest
from django.db import DatabaseError

from picqer_api.exceptions import TransportError
from picqer_data.entities import get_descriptor
from picqer_data.exceptions import SchemaError, UnknownEntityType, UpsertError
from picqer_data.models import SyncRun, SyncWatermark
from picqer_data.orchestrator import EntitySyncOrchestrator
from picqer_data.progress import ProgressTracker
from picqer_data.schema import SchemaReconciler

pytestmark = [
    pytest.mark.django_db(transaction=True),
    pytest.mark.usefixtures("drop_entity_tables"),
]

PAGE_SIZE = 100


def _product(index: int, **overrides: object) -> dict:
    record: dict = {
        "idproduct": index,
        "productcode": f"P-{index:04d}",
        "name": f"Product {index}",
        "price": "9.95",
        "active": True,
        "updated": "2026-02-01 10:00:00",
    }
    record.update(overrides)
    return record


class FakePageSource:
    def __init__(
        self,
        pages: dict[str, list[list[dict]]],
        *,
        failing_endpoints: frozenset[str] = frozenset(),
        fail_at_offset: int | None = None,
    ) -> None:
        self.pages = pages
        self.failing_endpoints = failing_endpoints
        self.fail_at_offset = fail_at_offset
        self.calls: list[tuple[str, int, dict]] = []

    def fetch_page(self, endpoint, offset, page_size=None, params=None):
        self.calls.append((endpoint, offset, dict(params or {})))
        if endpoint in self.failing_endpoints or offset == self.fail_at_offset:
            raise TransportError(f"GET {endpoint} failed after 5 attempts")
        endpoint_pages = self.pages.get(endpoint, [[]])
        index = offset // PAGE_SIZE
        page = endpoint_pages[index] if index < len(endpoint_pages) else []
        return page, len(page) == PAGE_SIZE


def _paged_products(*sizes: int) -> list[list[dict]]:
    pages: list[list[dict]] = []
    next_id = 1
    for size in sizes:
        pages.append([_product(next_id + offset) for offset in range(size)])
        next_id += size
    return pages


def _orchestrator(source: FakePageSource, **kwargs: object) -> EntitySyncOrchestrator:
    return EntitySyncOrchestrator(source, **kwargs)  # type: ignore[arg-type]


def _products_model():
    descriptor = get_descriptor("products")
    return SchemaReconciler().ensure_table(descriptor.table_name, descriptor.column_specs())


def test_pagination_stops_on_short_page() -> None:
    source = FakePageSource({"/products": _paged_products(100, 100, 37)})

    result = _orchestrator(source).sync("products")

    assert result.success is True
    assert result.items_synced == 237
    assert result.items_fetched == 237
    assert [offset for _endpoint, offset, _params in source.calls] == [0, 100, 200]
    assert SchemaReconciler().count_rows("Products") == 237


def test_successful_run_transitions_to_completed_and_moves_watermark() -> None:
    source = FakePageSource({"/products": _paged_products(37)})

    result = _orchestrator(source).sync("products", full=False)

    runs = list(SyncRun.objects.all())
    assert len(runs) == 1
    assert runs[0].run_id == result.run_id
    assert runs[0].run_id.startswith("products_")
    assert runs[0].status == SyncRun.Status.COMPLETED
    assert runs[0].items_synced == 37
    assert runs[0].ended_at is not None
    assert runs[0].error_message is None

    watermark = SyncWatermark.objects.get(entity_type="products")
    assert watermark.total_available == 37
    assert watermark.total_synced == 37
    assert watermark.last_sync_at > datetime(2020, 1, 1, tzinfo=timezone.utc)


def test_upsert_is_idempotent_and_keeps_created_at() -> None:
    first_source = FakePageSource({"/products": [[_product(1, name="Old name")]]})
    _orchestrator(first_source).sync("products")
    model = _products_model()
    first_row = model.objects.get(pk="1")

    second_source = FakePageSource({"/products": [[_product(1, name="New name", price=12.5)]]})
    result = _orchestrator(second_source).sync("products", full=True)

    assert result.items_synced == 1
    assert model.objects.count() == 1
    row = model.objects.get(pk="1")
    assert row.name == "New name"
    assert row.price == 12.5
    assert row.created_at == first_row.created_at
    assert row.updated_at >= first_row.updated_at
    assert row.last_sync_at == row.updated_at
    assert json.loads(row.data)["name"] == "New name"


def test_records_failing_mapping_are_skipped_not_fatal() -> None:
    page = [_product(1), _product(2, productcode=None), {"name": "no key"}, _product(4)]
    source = FakePageSource({"/products": [page]})

    result = _orchestrator(source).sync("products")

    assert result.success is True
    assert result.items_synced == 2
    assert result.items_skipped == 2
    assert SyncRun.objects.get().items_synced == 2
    assert sorted(_products_model().objects.values_list("pk", flat=True)) == ["1", "4"]


def test_schema_error_fails_run_without_writes() -> None:
    class BrokenReconciler(SchemaReconciler):
        def ensure_table(self, table_name, column_specs):
            raise SchemaError(f"Unable to reconcile table {table_name}: disk full")

    source = FakePageSource({"/products": _paged_products(10)})

    result = _orchestrator(source, reconciler=BrokenReconciler()).sync("products")

    assert result.success is False
    assert "disk full" in (result.error or "")
    run = SyncRun.objects.get()
    assert run.status == SyncRun.Status.FAILED
    assert run.error_message is not None
    assert run.items_synced == 0
    assert source.calls == []
    assert SchemaReconciler().count_rows("Products") == 0
    assert not SyncWatermark.objects.exists()


def test_transport_exhaustion_fails_run_and_keeps_written_pages() -> None:
    source = FakePageSource({"/products": _paged_products(100, 100)}, fail_at_offset=100)

    result = _orchestrator(source).sync("products")

    assert result.success is False
    assert result.items_synced == 100
    run = SyncRun.objects.get()
    assert run.status == SyncRun.Status.FAILED
    assert run.items_synced == 100
    assert run.error_message.startswith("TransportError")
    assert SchemaReconciler().count_rows("Products") == 100
    assert not SyncWatermark.objects.exists()


def test_unknown_entity_type_is_rejected_before_any_state_change() -> None:
    source = FakePageSource({})

    with pytest.raises(UnknownEntityType):
        _orchestrator(source).sync("orders")

    assert not SyncRun.objects.exists()
    assert source.calls == []


def test_incremental_run_sends_watermark_for_filterable_entities() -> None:
    watermark = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    for entity_type in ("products", "warehouses", "users", "suppliers", "batches"):
        ProgressTracker().record_success(
            entity_type, total_available=1, total_synced=1, synced_at=watermark
        )
    source = FakePageSource({})
    orchestrator = _orchestrator(source)

    orchestrator.sync("products")
    orchestrator.sync("products", full=True)
    orchestrator.sync("warehouses")
    orchestrator.sync("users")
    orchestrator.sync("suppliers")
    orchestrator.sync("batches")

    since = {"updated_since": "2026-01-02 03:04:05"}
    assert source.calls == [
        ("/products", 0, since),
        ("/products", 0, {}),
        ("/warehouses", 0, since),
        ("/users", 0, since),
        ("/suppliers", 0, since),
        ("/picklists/batches", 0, {}),
    ]


def test_failed_upsert_is_counted_and_run_continues(monkeypatch: pytest.MonkeyPatch) -> None:
    source = FakePageSource({"/products": [[_product(1), _product(2), _product(3)]]})
    orchestrator = _orchestrator(source)
    original_upsert = orchestrator._upsert

    def flaky_upsert(model, descriptor, row, raw_record):
        if row["idproduct"] == "2":
            raise UpsertError(descriptor.table_name, "2", DatabaseError("constraint failed"))
        return original_upsert(model, descriptor, row, raw_record)

    monkeypatch.setattr(orchestrator, "_upsert", flaky_upsert)

    result = orchestrator.sync("products")

    assert result.success is True
    assert result.items_synced == 2
    assert result.items_failed == 1
    assert sorted(_products_model().objects.values_list("pk", flat=True)) == ["1", "3"]


def test_batch_failure_rolls_back_only_that_batch(monkeypatch: pytest.MonkeyPatch) -> None:
    records = [_product(index) for index in range(1, 6)]
    source = FakePageSource({"/products": [records]})
    orchestrator = _orchestrator(source, batch_size=2)
    original_upsert = orchestrator._upsert

    def failing_upsert(model, descriptor, row, raw_record):
        original_upsert(model, descriptor, row, raw_record)
        if row["idproduct"] == "4":
            raise DatabaseError("connection reset")

    monkeypatch.setattr(orchestrator, "_upsert", failing_upsert)

    result = orchestrator.sync("products")

    assert result.success is True
    assert result.items_synced == 3
    assert result.items_failed == 2
    assert sorted(_products_model().objects.values_list("pk", flat=True)) == ["1", "2", "5"]


def test_batch_size_must_be_positive() -> None:
    with pytest.raises(ValueError):
        _orchestrator(FakePageSource({}), batch_size=0)
