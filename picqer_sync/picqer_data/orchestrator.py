import json
import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Callable, Protocol

from django.core.exceptions import ValidationError
from django.db import DEFAULT_DB_ALIAS, DatabaseError, connections, models, transaction
from django.utils import timezone

from picqer_api.type_defs import JsonObject, QueryParams, RowValues
from picqer_api.utils import EPOCH_ZERO, format_api_datetime, is_epoch_zero
from picqer_data.entities import (
    CREATED_AT_COLUMN,
    DATA_COLUMN,
    LAST_SYNC_AT_COLUMN,
    UPDATED_AT_COLUMN,
    SchemaDescriptor,
    get_descriptor,
)
from picqer_data.exceptions import RecordMappingError, UpsertError
from picqer_data.mapping import AttributeMapper
from picqer_data.progress import Completed, Failed, ProgressTracker
from picqer_data.schema import SchemaReconciler

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50


class PageSource(Protocol):
    def fetch_page(
        self,
        endpoint: str,
        offset: int,
        page_size: int | None = None,
        params: QueryParams | None = None,
    ) -> tuple[list[JsonObject], bool]: ...


@dataclass(frozen=True)
class SyncResult:
    entity_type: str
    success: bool
    items_synced: int = 0
    error: str | None = None
    run_id: str | None = None
    items_fetched: int = 0
    items_skipped: int = 0
    items_failed: int = 0

    def as_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass
class _RunCounters:
    fetched: int = 0
    written: int = 0
    skipped: int = 0
    failed: int = 0
    pages: int = 0


def _describe_error(error: BaseException) -> str:
    message = str(error)
    return f"{type(error).__name__}: {message}" if message else type(error).__name__


class EntitySyncOrchestrator:
    """Runs one entity type through fetch, map, upsert and run bookkeeping."""

    def __init__(
        self,
        client: PageSource,
        *,
        reconciler: SchemaReconciler | None = None,
        mapper: AttributeMapper | None = None,
        tracker: ProgressTracker | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        clock: Callable[[], datetime] = timezone.now,
        using: str = DEFAULT_DB_ALIAS,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be a positive integer")
        self.client = client
        self.reconciler = reconciler or SchemaReconciler(using=using)
        self.mapper = mapper or AttributeMapper()
        self.tracker = tracker or ProgressTracker(clock=clock)
        self.batch_size = batch_size
        self._clock = clock
        self.using = using

    def sync(self, entity_type: str, full: bool = False) -> SyncResult:
        descriptor = get_descriptor(entity_type)
        run = self.tracker.start_run(entity_type)
        mode = "full" if full else "incremental"
        started = time.monotonic()
        counters = _RunCounters()
        logger.info(
            "SYNC_RUN start run_id=%s entity=%s mode=%s", run.run_id, entity_type, mode
        )

        try:
            model = self.reconciler.ensure_table(
                descriptor.table_name, descriptor.column_specs()
            )
            lower_bound = EPOCH_ZERO if full else self.tracker.last_sync_at(entity_type)
            self._sync_pages(model, descriptor, self._query_params(descriptor, lower_bound), counters)
            self.tracker.record_success(
                entity_type,
                total_available=counters.fetched,
                total_synced=counters.written,
            )
        except Exception as error:
            logger.exception(
                "SYNC_RUN failed run_id=%s entity=%s after %s written records",
                run.run_id,
                entity_type,
                counters.written,
            )
            error_message = _describe_error(error)
            self.tracker.finish(run, Failed(error_message, counters.written))
            self._log_done(run.run_id, entity_type, "failed", counters, started)
            return SyncResult(
                entity_type=entity_type,
                success=False,
                items_synced=counters.written,
                error=error_message,
                run_id=run.run_id,
                items_fetched=counters.fetched,
                items_skipped=counters.skipped,
                items_failed=counters.failed,
            )

        self.tracker.finish(run, Completed(counters.written))
        self._log_done(run.run_id, entity_type, "completed", counters, started)
        return SyncResult(
            entity_type=entity_type,
            success=True,
            items_synced=counters.written,
            run_id=run.run_id,
            items_fetched=counters.fetched,
            items_skipped=counters.skipped,
            items_failed=counters.failed,
        )

    @staticmethod
    def _query_params(descriptor: SchemaDescriptor, lower_bound: datetime) -> QueryParams:
        if descriptor.since_param is None or is_epoch_zero(lower_bound):
            return {}
        return {descriptor.since_param: format_api_datetime(lower_bound)}

    def _sync_pages(
        self,
        model: type[models.Model],
        descriptor: SchemaDescriptor,
        params: QueryParams,
        counters: _RunCounters,
    ) -> None:
        offset = 0
        while True:
            records, has_more = self.client.fetch_page(
                descriptor.endpoint, offset, params=params
            )
            counters.pages += 1
            counters.fetched += len(records)
            logger.debug(
                "Page %s of %s: %s records at offset %s",
                counters.pages,
                descriptor.entity_type,
                len(records),
                offset,
            )
            for start in range(0, len(records), self.batch_size):
                self._write_batch(
                    model, descriptor, records[start : start + self.batch_size], counters
                )

            if not has_more or not records:
                break
            offset += len(records)

    def _write_batch(
        self,
        model: type[models.Model],
        descriptor: SchemaDescriptor,
        batch: list[JsonObject],
        counters: _RunCounters,
    ) -> None:
        batch_counters = _RunCounters()
        try:
            with transaction.atomic(using=self.using):
                for raw_record in batch:
                    try:
                        row = self.mapper.extract(raw_record, descriptor)
                    except RecordMappingError as error:
                        logger.warning("Skipping record: %s", error)
                        batch_counters.skipped += 1
                        continue

                    try:
                        self._upsert(model, descriptor, row, raw_record)
                    except UpsertError as error:
                        logger.warning("%s", error)
                        batch_counters.failed += 1
                        continue
                    batch_counters.written += 1
        except DatabaseError as error:
            logger.error(
                "Rolled back batch of %s %s records: %s",
                len(batch),
                descriptor.entity_type,
                error,
            )
            counters.skipped += batch_counters.skipped
            counters.failed += len(batch) - batch_counters.skipped
            return

        counters.written += batch_counters.written
        counters.skipped += batch_counters.skipped
        counters.failed += batch_counters.failed

    def _upsert(
        self,
        model: type[models.Model],
        descriptor: SchemaDescriptor,
        row: RowValues,
        raw_record: JsonObject,
    ) -> None:
        """Insert the row or overwrite every non-key column except ``created_at``."""

        current_time = self._clock()
        values: dict[str, object] = dict(row)
        values[DATA_COLUMN] = json.dumps(raw_record, sort_keys=True, default=str)
        values[CREATED_AT_COLUMN] = current_time
        values[UPDATED_AT_COLUMN] = current_time
        values[LAST_SYNC_AT_COLUMN] = current_time

        connection = connections[self.using]
        update_fields = [
            field.name
            for field in model._meta.local_fields
            if not field.primary_key and field.name != CREATED_AT_COLUMN
        ]
        unique_fields = (
            [descriptor.key_column]
            if connection.features.supports_update_conflicts_with_target
            else None
        )

        try:
            with transaction.atomic(using=self.using):
                model.objects.using(self.using).bulk_create(
                    [model(**values)],
                    update_conflicts=True,
                    unique_fields=unique_fields,
                    update_fields=update_fields,
                )
        except (DatabaseError, ValidationError, ValueError, TypeError) as error:
            raise UpsertError(descriptor.table_name, str(row[descriptor.key_column]), error) from error

    def close(self) -> None:
        """Release the client's connection pool when it has one."""

        close = getattr(self.client, "close", None)
        if close is not None:
            close()

    def _log_done(
        self, run_id: str, entity_type: str, status: str, counters: _RunCounters, started: float
    ) -> None:
        logger.info(
            "SYNC_RUN done run_id=%s entity=%s status=%s pages=%s fetched=%s written=%s "
            "skipped=%s failed=%s elapsed=%.2fs",
            run_id,
            entity_type,
            status,
            counters.pages,
            counters.fetched,
            counters.written,
            counters.skipped,
            counters.failed,
            time.monotonic() - started,
        )

        client_stats = getattr(self.client, "stats", None)
        if client_stats is not None:
            rate_gate = getattr(self.client, "rate_gate", None)
            logger.info(
                "SYNC_RUN client run_id=%s stats=%s gate_wait=%.2fs",
                run_id,
                client_stats.as_dict(),
                getattr(rate_gate, "total_wait_seconds", 0.0),
            )
