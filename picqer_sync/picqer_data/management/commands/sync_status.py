import json
from datetime import datetime
from typing import Any

from django.core.management.base import BaseCommand
from django.utils.timezone import now

from picqer_data.coordinator import build_coordinator
from picqer_data.models import SyncRun


class Command(BaseCommand):
    help = "Emit Picqer sync statistics and run history as single-line JSON"

    def add_arguments(self, parser) -> None:  # type: ignore[no-untyped-def]
        parser.add_argument(
            "--history-limit",
            type=int,
            default=20,
            help="Number of most recent sync runs to include.",
        )
        parser.add_argument(
            "--stale-threshold-seconds",
            type=int,
            default=0,
            help="Mark in-progress runs stale when they started longer ago than this threshold.",
        )
        parser.add_argument(
            "--fail-on-stale",
            action="store_true",
            help="Exit with status code 2 when any in-progress run is stale.",
        )

    @staticmethod
    def _isoformat(value: datetime | None) -> str | None:
        if value is None:
            return None
        return value.isoformat()

    def _build_payload(
        self, history_limit: int, stale_threshold_seconds: int
    ) -> dict[str, Any]:
        current_time = now()
        coordinator = build_coordinator()
        stats = coordinator.get_stats()
        history = coordinator.get_history(limit=history_limit)

        stale_runs: list[dict[str, Any]] = []
        for run in SyncRun.objects.filter(status=SyncRun.Status.IN_PROGRESS):
            run_age_seconds = max(0, int((current_time - run.started_at).total_seconds()))
            if 0 < stale_threshold_seconds < run_age_seconds:
                stale_runs.append(
                    {
                        "run_id": run.run_id,
                        "entity_type": run.entity_type,
                        "started_at": self._isoformat(run.started_at),
                        "run_age_seconds": run_age_seconds,
                    }
                )

        return {
            "stats": stats,
            "history": history,
            "stale_runs": stale_runs,
            "is_stale": bool(stale_runs),
            "generated_at": self._isoformat(current_time),
        }

    def handle(self, *args, **options) -> None:
        _ = args
        history_limit = max(0, int(options.get("history_limit", 20)))
        stale_threshold_seconds = max(0, int(options["stale_threshold_seconds"]))
        fail_on_stale = bool(options["fail_on_stale"])

        payload = self._build_payload(history_limit, stale_threshold_seconds)
        self.stdout.write(json.dumps(payload, sort_keys=True, separators=(",", ":")))

        if fail_on_stale and payload.get("is_stale"):
            raise SystemExit(2)
