import json

from django.core.management.base import BaseCommand, CommandError

from picqer_data.coordinator import build_coordinator
from picqer_data.exceptions import InvalidRunId


class Command(BaseCommand):
    help = "Start a fresh incremental sync for the entity type of a previous run"

    def add_arguments(self, parser) -> None:  # type: ignore[no-untyped-def]
        parser.add_argument("run_id", help="Run id such as products_1699999999999.")

    def handle(self, *args, **options) -> None:
        _ = args
        coordinator = build_coordinator(retain_results=True)
        try:
            response = coordinator.retry(options["run_id"])
        except InvalidRunId as error:
            coordinator.shutdown()
            raise CommandError(str(error)) from error

        self.stdout.write(response["message"])
        results = coordinator.wait()
        coordinator.shutdown()

        for result in results:
            self.stdout.write(json.dumps(result.as_dict(), sort_keys=True, separators=(",", ":")))
        if any(not result.success for result in results):
            raise CommandError(f"Retry of {options['run_id']} failed")
