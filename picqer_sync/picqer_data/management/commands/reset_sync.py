from django.core.management.base import BaseCommand, CommandError

from picqer_data.entities import ENTITY_TYPES, get_descriptor
from picqer_data.exceptions import UnknownEntityType
from picqer_data.progress import ProgressTracker
from picqer_data.schema import SchemaReconciler


class Command(BaseCommand):
    help = "Forget sync watermarks so the next run starts from scratch"

    def add_arguments(self, parser) -> None:  # type: ignore[no-untyped-def]
        parser.add_argument(
            "entity_types",
            nargs="*",
            help="Entity types to reset; all of them when omitted.",
        )
        parser.add_argument(
            "--drop-tables",
            action="store_true",
            help="Also drop the mirrored entity tables.",
        )

    def handle(self, *args, **options) -> None:
        _ = args
        entity_types = list(options.get("entity_types") or ENTITY_TYPES)
        try:
            descriptors = [get_descriptor(entity_type) for entity_type in entity_types]
        except UnknownEntityType as error:
            raise CommandError(str(error)) from error

        deleted_count = ProgressTracker.reset_watermarks(entity_types)
        self.stdout.write(f"Removed {deleted_count} watermark(s)")

        if options.get("drop_tables"):
            reconciler = SchemaReconciler()
            for descriptor in descriptors:
                if reconciler.drop_table(descriptor.table_name):
                    self.stdout.write(f"Dropped table {descriptor.table_name}")
