import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, TypeAlias

from django.db import IntegrityError, transaction
from django.utils import timezone

from picqer_api.utils import EPOCH_ZERO, epoch_ms
from picqer_data.exceptions import InvalidRunTransition, SyncError
from picqer_data.models import SyncRun, SyncWatermark

logger = logging.getLogger(__name__)

MAX_ERROR_MESSAGE_LENGTH = 4000
MAX_RUN_ID_ATTEMPTS = 1000


@dataclass(frozen=True)
class Completed:
    items_synced: int


@dataclass(frozen=True)
class Failed:
    error_message: str
    items_synced: int = 0


RunOutcome: TypeAlias = Completed | Failed


def _truncate_error(message: str) -> str:
    if len(message) <= MAX_ERROR_MESSAGE_LENGTH:
        return message
    return f"{message[: MAX_ERROR_MESSAGE_LENGTH - 3]}..."


def serialize_run(run: SyncRun) -> dict[str, object]:
    return {
        "run_id": run.run_id,
        "entity_type": run.entity_type,
        "status": run.status,
        "started_at": run.started_at.isoformat() if run.started_at else None,
        "ended_at": run.ended_at.isoformat() if run.ended_at else None,
        "items_synced": run.items_synced,
        "error_message": run.error_message,
    }


class ProgressTracker:
    """Persists sync runs and per-entity watermarks."""

    def __init__(self, clock: Callable[[], datetime] = timezone.now) -> None:
        self._clock = clock

    def start_run(self, entity_type: str) -> SyncRun:
        started_at = self._clock()
        run_ms = epoch_ms(started_at)
        for _ in range(MAX_RUN_ID_ATTEMPTS):
            run_id = f"{entity_type}_{run_ms}"
            try:
                with transaction.atomic():
                    run = SyncRun.objects.create(
                        run_id=run_id,
                        entity_type=entity_type,
                        status=SyncRun.Status.IN_PROGRESS,
                        started_at=started_at,
                    )
            except IntegrityError:
                # Another run for this entity started in the same millisecond.
                run_ms += 1
                continue
            logger.info("Started sync run %s", run_id)
            return run
        raise SyncError(f"Unable to allocate a run id for {entity_type}")

    def finish(self, run: SyncRun, outcome: RunOutcome) -> SyncRun:
        """Move ``run`` to its terminal state exactly once."""

        if isinstance(outcome, Completed):
            status = SyncRun.Status.COMPLETED
            error_message = None
        else:
            status = SyncRun.Status.FAILED
            error_message = _truncate_error(outcome.error_message or "Unknown error")

        ended_at = self._clock()
        updated_rows = SyncRun.objects.filter(
            pk=run.pk, status=SyncRun.Status.IN_PROGRESS
        ).update(
            status=status,
            ended_at=ended_at,
            items_synced=outcome.items_synced,
            error_message=error_message,
        )
        if updated_rows == 0:
            raise InvalidRunTransition(run.run_id, status)

        run.status = status
        run.ended_at = ended_at
        run.items_synced = outcome.items_synced
        run.error_message = error_message
        logger.info("Sync run %s finished as %s", run.run_id, status)
        return run

    @staticmethod
    def last_sync_at(entity_type: str) -> datetime:
        last_sync_at = (
            SyncWatermark.objects.filter(entity_type=entity_type)
            .values_list("last_sync_at", flat=True)
            .first()
        )
        return last_sync_at or EPOCH_ZERO

    def record_success(
        self,
        entity_type: str,
        *,
        total_available: int | None,
        total_synced: int | None,
        synced_at: datetime | None = None,
    ) -> SyncWatermark:
        watermark, _created = SyncWatermark.objects.update_or_create(
            entity_type=entity_type,
            defaults={
                "last_sync_at": synced_at or self._clock(),
                "total_available": total_available,
                "total_synced": total_synced,
            },
        )
        return watermark

    @staticmethod
    def watermarks() -> dict[str, SyncWatermark]:
        return {watermark.entity_type: watermark for watermark in SyncWatermark.objects.all()}

    @staticmethod
    def last_terminal_run(entity_type: str) -> SyncRun | None:
        return (
            SyncRun.objects.filter(entity_type=entity_type)
            .exclude(status=SyncRun.Status.IN_PROGRESS)
            .order_by("-started_at", "-id")
            .first()
        )

    @staticmethod
    def history(limit: int | None = None, entity_type: str | None = None) -> list[SyncRun]:
        runs = SyncRun.objects.order_by("-started_at", "-id")
        if entity_type is not None:
            runs = runs.filter(entity_type=entity_type)
        if limit is not None:
            runs = runs[: max(0, limit)]
        return list(runs)

    @staticmethod
    def get_run(run_id: str) -> SyncRun | None:
        return SyncRun.objects.filter(run_id=run_id).first()

    @staticmethod
    def reset_watermarks(entity_types: list[str] | None = None) -> int:
        """Forget watermarks so the next run pages from the beginning. Runs are kept."""

        watermarks = SyncWatermark.objects.all()
        if entity_types is not None:
            watermarks = watermarks.filter(entity_type__in=entity_types)
        deleted_count, _ = watermarks.delete()
        return deleted_count
