import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait as wait_for_futures
from typing import Callable

from django.db import close_old_connections

from picqer_api.client import Client
from picqer_api.config import settings
from picqer_api.rate_gate import RateGate
from picqer_api.utils import is_epoch_zero
from picqer_data.entities import ENTITY_DESCRIPTORS, ENTITY_TYPES, get_descriptor
from picqer_data.exceptions import InvalidRunId
from picqer_data.orchestrator import EntitySyncOrchestrator, SyncResult
from picqer_data.progress import ProgressTracker, serialize_run
from picqer_data.schema import SchemaReconciler

logger = logging.getLogger(__name__)

OrchestratorFactory = Callable[[], EntitySyncOrchestrator]


def parse_run_id(run_id: str) -> str:
    """Return the entity type encoded in a ``{entity_type}_{epoch_ms}`` run id."""

    if not isinstance(run_id, str):
        raise InvalidRunId(str(run_id))
    entity_type, separator, suffix = run_id.strip().rpartition("_")
    if not separator or not suffix or entity_type not in ENTITY_DESCRIPTORS:
        raise InvalidRunId(run_id)
    return entity_type


class SyncCoordinator:
    """Launches entity syncs in the background and answers dashboard queries.

    Finished runs leave ``_pending`` as soon as they complete. Their results
    are only kept for ``wait()`` when ``retain_results`` is set, so callers
    that never wait do not accumulate anything.
    """

    def __init__(
        self,
        orchestrator_factory: OrchestratorFactory,
        *,
        reconciler: SchemaReconciler | None = None,
        tracker: ProgressTracker | None = None,
        executor: Executor | None = None,
        max_workers: int | None = None,
        retain_results: bool = False,
    ) -> None:
        self._orchestrator_factory = orchestrator_factory
        self.reconciler = reconciler or SchemaReconciler()
        self.tracker = tracker or ProgressTracker()
        self._executor = executor
        self._max_workers = max_workers or len(ENTITY_TYPES)
        self._retain_results = retain_results
        self._lock = threading.Lock()
        self._pending: dict[Future, str] = {}
        self._finished: list[SyncResult] = []

    def _run(self, entity_type: str, full: bool) -> SyncResult:
        close_old_connections()
        orchestrator: EntitySyncOrchestrator | None = None
        try:
            orchestrator = self._orchestrator_factory()
            return orchestrator.sync(entity_type, full=full)
        finally:
            if orchestrator is not None:
                orchestrator.close()
            close_old_connections()

    @staticmethod
    def _result_of(entity_type: str, future: Future) -> SyncResult:
        error = future.exception()
        if error is None:
            return future.result()
        return SyncResult(
            entity_type=entity_type,
            success=False,
            error=f"{type(error).__name__}: {error}",
        )

    def _collect(self, future: Future) -> None:
        # Caller holds the lock; each future is collected exactly once.
        entity_type = self._pending.pop(future, None)
        if entity_type is not None and self._retain_results:
            self._finished.append(self._result_of(entity_type, future))

    def _on_done(self, entity_type: str, future: Future) -> None:
        with self._lock:
            self._collect(future)
        error = future.exception()
        if error is not None:
            logger.error("Sync of %s stopped unexpectedly: %s", entity_type, error)

    def _launch(self, entity_type: str, full: bool) -> Future:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="picqer-sync"
                )
            future = self._executor.submit(self._run, entity_type, full)
            self._pending[future] = entity_type
        future.add_done_callback(lambda done: self._on_done(entity_type, done))
        return future

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def sync_all(self, full: bool = False) -> dict[str, object]:
        mode = "full" if full else "incremental"
        for entity_type in ENTITY_TYPES:
            self._launch(entity_type, full)
        logger.info("Launched %s sync for %s entity types", mode, len(ENTITY_TYPES))
        return {
            "success": True,
            "message": f"Started {mode} sync for {', '.join(ENTITY_TYPES)}",
        }

    def sync_one(self, entity_type: str, full: bool = False) -> dict[str, object]:
        get_descriptor(entity_type)
        mode = "full" if full else "incremental"
        self._launch(entity_type, full)
        logger.info("Launched %s sync for %s", mode, entity_type)
        return {"success": True, "message": f"Started {mode} sync for {entity_type}"}

    def retry(self, run_id: str) -> dict[str, object]:
        entity_type = parse_run_id(run_id)
        previous_run = self.tracker.get_run(run_id)
        if previous_run is None:
            logger.warning("Run %s is not recorded; retrying %s anyway", run_id, entity_type)
        else:
            logger.info(
                "Retrying %s after run %s ended as %s: %s",
                entity_type,
                run_id,
                previous_run.status,
                previous_run.error_message or "no error recorded",
            )
        self.sync_one(entity_type, full=False)
        return {
            "success": True,
            "message": f"Started incremental sync for {entity_type} (retry of {run_id})",
        }

    def wait(self, timeout: float | None = None) -> list[SyncResult]:
        """Block until launched runs finish and return the results retained since the last call."""

        with self._lock:
            in_flight = list(self._pending)

        wait_for_futures(in_flight, timeout=timeout)
        with self._lock:
            for future in in_flight:
                if future.done():
                    self._collect(future)
            results, self._finished = self._finished, []
        return results

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)

    def get_stats(self) -> dict[str, dict[str, object]]:
        watermarks = self.tracker.watermarks()
        stats: dict[str, dict[str, object]] = {}
        for entity_type, descriptor in ENTITY_DESCRIPTORS.items():
            watermark = watermarks.get(entity_type)
            last_run = self.tracker.last_terminal_run(entity_type)
            last_sync_at = None
            if watermark is not None and not is_epoch_zero(watermark.last_sync_at):
                last_sync_at = watermark.last_sync_at.isoformat()

            stats[entity_type] = {
                "total_count": self.reconciler.count_rows(descriptor.table_name),
                "last_sync_at": last_sync_at,
                "last_run_count": last_run.items_synced if last_run else 0,
                "last_run_status": last_run.status if last_run else None,
                "total_available": watermark.total_available if watermark else None,
                "total_synced": watermark.total_synced if watermark else None,
            }
        return stats

    def get_history(self, limit: int | None = None) -> list[dict[str, object]]:
        return [serialize_run(run) for run in self.tracker.history(limit=limit)]


def build_coordinator(
    *, executor: Executor | None = None, retain_results: bool = False
) -> SyncCoordinator:
    """Wire a coordinator from the TOML settings; all runs share one rate gate."""

    rate_gate = RateGate(settings.picqer.requests_per_minute)
    reconciler = SchemaReconciler()
    tracker = ProgressTracker()

    def orchestrator_factory() -> EntitySyncOrchestrator:
        return EntitySyncOrchestrator(
            Client(rate_gate=rate_gate),
            reconciler=reconciler,
            tracker=tracker,
            batch_size=settings.sync.batch_size,
        )

    return SyncCoordinator(
        orchestrator_factory,
        reconciler=reconciler,
        tracker=tracker,
        executor=executor,
        max_workers=settings.sync.max_workers,
        retain_results=retain_results,
    )
