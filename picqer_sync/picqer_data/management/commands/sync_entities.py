import json

from django.core.management.base import BaseCommand, CommandError

from picqer_data.coordinator import build_coordinator
from picqer_data.entities import ENTITY_TYPES
from picqer_data.exceptions import UnknownEntityType


class Command(BaseCommand):
    help = "Mirror Picqer entity collections into the local database"

    def add_arguments(self, parser) -> None:  # type: ignore[no-untyped-def]
        parser.add_argument(
            "entity_type",
            nargs="?",
            help=f"Sync only this entity type ({', '.join(ENTITY_TYPES)}).",
        )
        parser.add_argument(
            "--full",
            action="store_true",
            help="Ignore the watermark and page every collection from the start.",
        )

    def handle(self, *args, **options) -> None:
        _ = args
        entity_type = options.get("entity_type")
        full = bool(options.get("full"))

        coordinator = build_coordinator(retain_results=True)
        try:
            if entity_type:
                response = coordinator.sync_one(entity_type, full=full)
            else:
                response = coordinator.sync_all(full=full)
        except UnknownEntityType as error:
            coordinator.shutdown()
            raise CommandError(str(error)) from error

        self.stdout.write(response["message"])
        results = coordinator.wait()
        coordinator.shutdown()

        for result in results:
            self.stdout.write(json.dumps(result.as_dict(), sort_keys=True, separators=(",", ":")))

        failed = [result.entity_type for result in results if not result.success]
        if failed:
            raise CommandError(f"Sync failed for: {', '.join(failed)}")
