"""Runtime DDL for the per-entity record tables.

Entity tables are not part of the app's migrations: their column set comes
from the entity descriptors and grows whenever a descriptor gains an
attribute. ``SchemaReconciler`` builds an unmanaged Django model for the
table, creates the table when it is missing and adds any missing columns
through the connection's schema editor. Existing columns are never altered
or dropped.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Iterable

from django.apps.registry import Apps
from django.db import DEFAULT_DB_ALIAS, DatabaseError, connections, models

from picqer_api.utils import parse_datetime
from picqer_data.entities import ColumnSpec, ValueType
from picqer_data.exceptions import SchemaError

logger = logging.getLogger(__name__)

APP_LABEL = "picqer_data"
NATURAL_KEY_MAX_LENGTH = 255


class StoreDateTimeField(models.DateTimeField):
    """DateTimeField that also accepts the timestamp spellings Picqer emits."""

    def to_python(self, value):  # type: ignore[no-untyped-def]
        if isinstance(value, str):
            parsed = parse_datetime(value)
            if parsed is not None:
                value = parsed
        value = super().to_python(value)
        if isinstance(value, datetime) and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


def _build_field(spec: ColumnSpec) -> models.Field:
    if spec.primary_key:
        return models.CharField(max_length=NATURAL_KEY_MAX_LENGTH, primary_key=True)
    if spec.value_type is ValueType.INTEGER:
        return models.BigIntegerField(null=True)
    if spec.value_type is ValueType.FLOAT:
        return models.FloatField(null=True)
    if spec.value_type is ValueType.BOOLEAN:
        return models.BooleanField(null=True)
    if spec.value_type is ValueType.DATETIME:
        return StoreDateTimeField(null=True)
    return models.TextField(null=True)


def build_record_model(
    table_name: str, column_specs: Iterable[ColumnSpec]
) -> type[models.Model]:
    """Return an unmanaged model class mapped onto ``table_name``.

    Every call uses a private app registry so rebuilding a model for the same
    table (after a descriptor grows) never clashes with an earlier class.
    """

    meta = type(
        "Meta",
        (),
        {
            "app_label": APP_LABEL,
            "apps": Apps(),
            "db_table": table_name,
            "managed": False,
        },
    )
    attrs: dict[str, object] = {"__module__": __name__, "Meta": meta}
    for spec in column_specs:
        attrs[spec.name] = _build_field(spec)
    return type(f"{table_name}Record", (models.Model,), attrs)


def _primary_key_spec(table_name: str, column_specs: tuple[ColumnSpec, ...]) -> ColumnSpec:
    primary_keys = [spec for spec in column_specs if spec.primary_key]
    if len(primary_keys) != 1:
        raise SchemaError(
            f"Table {table_name} needs exactly one natural key column, got {len(primary_keys)}"
        )
    return primary_keys[0]


class SchemaReconciler:
    def __init__(self, using: str = DEFAULT_DB_ALIAS) -> None:
        self.using = using
        self._lock = threading.Lock()
        self._models: dict[str, type[models.Model]] = {}

    @property
    def connection(self):  # type: ignore[no-untyped-def]
        return connections[self.using]

    def _live_table_name(self, table_name: str) -> str | None:
        with self.connection.cursor() as cursor:
            table_names = self.connection.introspection.table_names(cursor)
        if table_name in table_names:
            return table_name
        for candidate in table_names:
            if candidate.lower() == table_name.lower():
                return candidate
        return None

    def _live_columns(self, table_name: str) -> set[str]:
        with self.connection.cursor() as cursor:
            description = self.connection.introspection.get_table_description(
                cursor, table_name
            )
        return {column.name for column in description}

    def table_exists(self, table_name: str) -> bool:
        return self._live_table_name(table_name) is not None

    def ensure_table(
        self, table_name: str, column_specs: Iterable[ColumnSpec]
    ) -> type[models.Model]:
        """Create ``table_name`` or add its missing columns; return its model.

        Safe to call repeatedly. Must run outside an atomic block: SQLite
        refuses schema changes inside a transaction.
        """

        specs = tuple(column_specs)
        key_spec = _primary_key_spec(table_name, specs)
        model = build_record_model(table_name, specs)

        with self._lock:
            try:
                live_table_name = self._live_table_name(table_name)
                if live_table_name is None:
                    with self.connection.schema_editor() as editor:
                        editor.create_model(model)
                    logger.info("Created table %s with %s columns", table_name, len(specs))
                else:
                    live_columns = {
                        column.lower() for column in self._live_columns(live_table_name)
                    }
                    if key_spec.name.lower() not in live_columns:
                        raise SchemaError(
                            f"Table {table_name} exists without natural key column {key_spec.name}"
                        )
                    missing_fields = [
                        field
                        for field in model._meta.local_fields
                        if field.column.lower() not in live_columns
                    ]
                    if missing_fields:
                        with self.connection.schema_editor() as editor:
                            for field in missing_fields:
                                editor.add_field(model, field)
                        logger.info(
                            "Added columns to %s: %s",
                            table_name,
                            ", ".join(field.column for field in missing_fields),
                        )
            except DatabaseError as error:
                raise SchemaError(f"Unable to reconcile table {table_name}: {error}") from error

            self._models[table_name] = model
        return model

    def model_for(self, table_name: str) -> type[models.Model] | None:
        return self._models.get(table_name)

    def count_rows(self, table_name: str) -> int:
        live_table_name = self._live_table_name(table_name)
        if live_table_name is None:
            return 0
        quoted_table = self.connection.ops.quote_name(live_table_name)
        with self.connection.cursor() as cursor:
            cursor.execute(f"SELECT COUNT(*) FROM {quoted_table}")
            row = cursor.fetchone()
        return int(row[0]) if row else 0

    def drop_table(self, table_name: str) -> bool:
        with self._lock:
            self._models.pop(table_name, None)
            live_table_name = self._live_table_name(table_name)
            if live_table_name is None:
                return False
            try:
                with self.connection.schema_editor() as editor:
                    editor.execute(
                        editor.sql_delete_table % {"table": editor.quote_name(live_table_name)}
                    )
            except DatabaseError as error:
                raise SchemaError(f"Unable to drop table {table_name}: {error}") from error
        logger.info("Dropped table %s", table_name)
        return True
