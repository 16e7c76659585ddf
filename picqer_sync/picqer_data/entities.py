"""Declarative description of every Picqer collection mirrored locally.

Each entity type is a ``SchemaDescriptor``: the table it lands in, the API
endpoint it is paged from, its natural key and the ordered list of remote
fields projected onto typed columns. The orchestrator is generic over
these descriptors; adding an entity type means adding a descriptor here.
"""

import re
from dataclasses import dataclass, field
from enum import Enum

from picqer_data.exceptions import UnknownEntityType

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")

DATA_COLUMN = "data"
CREATED_AT_COLUMN = "created_at"
UPDATED_AT_COLUMN = "updated_at"
LAST_SYNC_AT_COLUMN = "last_sync_at"
BOOKKEEPING_COLUMNS = frozenset(
    {DATA_COLUMN, CREATED_AT_COLUMN, UPDATED_AT_COLUMN, LAST_SYNC_AT_COLUMN}
)


class ValueType(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    DATETIME = "datetime"


def _validate_identifier(name: str, *, kind: str) -> None:
    if not _IDENTIFIER_RE.match(name):
        raise ValueError(f"{kind} {name!r} is not a safe SQL identifier")


@dataclass(frozen=True)
class AttributeSpec:
    remote_field_path: str
    column_name: str
    value_type: ValueType = ValueType.STRING
    required: bool = False

    def __post_init__(self) -> None:
        _validate_identifier(self.column_name, kind="Column name")
        # Accept plain strings such as "integer" from configuration.
        object.__setattr__(self, "value_type", ValueType(self.value_type))


@dataclass(frozen=True)
class ColumnSpec:
    name: str
    value_type: ValueType
    primary_key: bool = False


@dataclass(frozen=True)
class SchemaDescriptor:
    entity_type: str
    table_name: str
    endpoint: str
    natural_key: AttributeSpec
    attributes: tuple[AttributeSpec, ...] = field(default_factory=tuple)
    # Query parameter used to request only records changed since the watermark.
    since_param: str | None = None

    def __post_init__(self) -> None:
        _validate_identifier(self.table_name, kind="Table name")
        if self.natural_key.value_type is not ValueType.STRING:
            raise ValueError(
                f"Natural key of {self.entity_type} must be declared as a string column"
            )

        seen_columns = {self.natural_key.column_name}
        for attribute in self.attributes:
            if attribute.column_name in BOOKKEEPING_COLUMNS:
                raise ValueError(
                    f"{self.entity_type}.{attribute.column_name} collides with a bookkeeping column"
                )
            if attribute.column_name in seen_columns:
                raise ValueError(
                    f"Duplicate column {attribute.column_name} in {self.entity_type} descriptor"
                )
            seen_columns.add(attribute.column_name)

    @property
    def key_column(self) -> str:
        return self.natural_key.column_name

    def column_specs(self) -> tuple[ColumnSpec, ...]:
        return (
            ColumnSpec(self.key_column, ValueType.STRING, primary_key=True),
            *(ColumnSpec(a.column_name, a.value_type) for a in self.attributes),
            ColumnSpec(DATA_COLUMN, ValueType.STRING),
            ColumnSpec(CREATED_AT_COLUMN, ValueType.DATETIME),
            ColumnSpec(UPDATED_AT_COLUMN, ValueType.DATETIME),
            ColumnSpec(LAST_SYNC_AT_COLUMN, ValueType.DATETIME),
        )


def _key(remote_field: str) -> AttributeSpec:
    return AttributeSpec(remote_field, remote_field, ValueType.STRING, required=True)


def _remote_timestamps(created: str, updated: str) -> tuple[AttributeSpec, ...]:
    return (
        AttributeSpec(created, "remote_created_at", ValueType.DATETIME),
        AttributeSpec(updated, "remote_updated_at", ValueType.DATETIME),
    )


PRODUCTS = SchemaDescriptor(
    entity_type="products",
    table_name="Products",
    endpoint="/products",
    natural_key=_key("idproduct"),
    attributes=(
        AttributeSpec("productcode", "productcode", required=True),
        AttributeSpec("name", "name", required=True),
        AttributeSpec("price", "price", ValueType.FLOAT),
        AttributeSpec("barcode", "barcode"),
        AttributeSpec("weight", "weight", ValueType.FLOAT),
        AttributeSpec("idsupplier", "idsupplier"),
        AttributeSpec("active", "active", ValueType.BOOLEAN),
        *_remote_timestamps("created", "updated"),
    ),
    since_param="updated_since",
)

PICKLISTS = SchemaDescriptor(
    entity_type="picklists",
    table_name="Picklists",
    endpoint="/picklists",
    natural_key=_key("idpicklist"),
    attributes=(
        AttributeSpec("picklistid", "picklistid", required=True),
        AttributeSpec("idwarehouse", "idwarehouse"),
        AttributeSpec("status", "status"),
        AttributeSpec("totalproducts", "total_products", ValueType.INTEGER),
        AttributeSpec("totalpicked", "total_picked", ValueType.INTEGER),
        AttributeSpec("deliveryname", "delivery_name"),
        AttributeSpec("reference", "reference"),
        AttributeSpec("picker.name", "picker_name"),
        *_remote_timestamps("created", "updated"),
    ),
    since_param="updated_since",
)

WAREHOUSES = SchemaDescriptor(
    entity_type="warehouses",
    table_name="Warehouses",
    endpoint="/warehouses",
    natural_key=_key("idwarehouse"),
    attributes=(
        AttributeSpec("name", "name", required=True),
        AttributeSpec("accept_orders", "accept_orders", ValueType.BOOLEAN),
        AttributeSpec("counts_for_general_stock", "counts_for_general_stock", ValueType.BOOLEAN),
        AttributeSpec("active", "active", ValueType.BOOLEAN),
        *_remote_timestamps("created", "updated"),
    ),
    since_param="updated_since",
)

USERS = SchemaDescriptor(
    entity_type="users",
    table_name="Users",
    endpoint="/users",
    natural_key=_key("iduser"),
    attributes=(
        AttributeSpec("username", "username", required=True),
        AttributeSpec("name", "name"),
        AttributeSpec("email", "email"),
        AttributeSpec("active", "active", ValueType.BOOLEAN),
        *_remote_timestamps("created", "updated"),
    ),
    since_param="updated_since",
)

SUPPLIERS = SchemaDescriptor(
    entity_type="suppliers",
    table_name="Suppliers",
    endpoint="/suppliers",
    natural_key=_key("idsupplier"),
    attributes=(
        AttributeSpec("name", "name", required=True),
        AttributeSpec("language", "language"),
        *_remote_timestamps("created", "updated"),
    ),
    since_param="updated_since",
)

BATCHES = SchemaDescriptor(
    entity_type="batches",
    table_name="Batches",
    endpoint="/picklists/batches",
    natural_key=_key("idpicklist_batch"),
    attributes=(
        AttributeSpec("picklist_batchid", "batchid", required=True),
        AttributeSpec("idwarehouse", "idwarehouse"),
        AttributeSpec("type", "type"),
        AttributeSpec("status", "status"),
        AttributeSpec("total_products", "total_products", ValueType.INTEGER),
        AttributeSpec("total_picklists", "total_picklists", ValueType.INTEGER),
        AttributeSpec("assigned_to.full_name", "assigned_to_name"),
        *_remote_timestamps("created_at", "updated_at"),
    ),
)

ENTITY_DESCRIPTORS: dict[str, SchemaDescriptor] = {
    descriptor.entity_type: descriptor
    for descriptor in (PRODUCTS, PICKLISTS, WAREHOUSES, USERS, SUPPLIERS, BATCHES)
}
ENTITY_TYPES: tuple[str, ...] = tuple(ENTITY_DESCRIPTORS)


def get_descriptor(entity_type: str) -> SchemaDescriptor:
    try:
        return ENTITY_DESCRIPTORS[entity_type]
    except KeyError:
        raise UnknownEntityType(entity_type) from None
