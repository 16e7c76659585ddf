import json
import logging
from datetime import datetime
from typing import Mapping

from picqer_api.type_defs import JsonObject, JsonScalar, RowValues
from picqer_api.utils import coerce_datetime, parse_datetime
from picqer_data.entities import AttributeSpec, SchemaDescriptor, ValueType
from picqer_data.exceptions import RecordMappingError

logger = logging.getLogger(__name__)

_MISSING = object()
_TRUE_STRINGS = frozenset({"true", "1", "yes", "y", "on"})
_FALSE_STRINGS = frozenset({"false", "0", "no", "n", "off", ""})


class _Unparsable(ValueError):
    pass


def get_nested_value(record: Mapping[str, object], path: str) -> object:
    """Follow a dotted path such as ``picker.name``; return ``_MISSING`` when absent."""

    value: object = record
    for key in path.split("."):
        if not isinstance(value, Mapping) or key not in value:
            return _MISSING
        value = value[key]
    return value


def _coerce_string(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _coerce_integer(value: object) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        stripped_value = value.strip()
        try:
            return int(stripped_value)
        except ValueError:
            pass
        try:
            as_float = float(stripped_value)
        except ValueError:
            raise _Unparsable(f"not an integer: {value!r}") from None
        if as_float.is_integer():
            return int(as_float)
    raise _Unparsable(f"not an integer: {value!r}")


def _coerce_float(value: object) -> float:
    if isinstance(value, (bool, int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            raise _Unparsable(f"not a number: {value!r}") from None
    raise _Unparsable(f"not a number: {value!r}")


def _coerce_boolean(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise _Unparsable(f"not a boolean: {value!r}")


def _coerce_datetime(value: object) -> str:
    # ISO-8601 strings pass through unchanged; the database layer parses them.
    if isinstance(value, str):
        if parse_datetime(value) is None:
            raise _Unparsable(f"not a datetime: {value!r}")
        return value
    coerced = value if isinstance(value, datetime) else coerce_datetime(value)
    if coerced is None:
        raise _Unparsable(f"not a datetime: {value!r}")
    return coerced.isoformat()


_COERCERS = {
    ValueType.STRING: _coerce_string,
    ValueType.INTEGER: _coerce_integer,
    ValueType.FLOAT: _coerce_float,
    ValueType.BOOLEAN: _coerce_boolean,
    ValueType.DATETIME: _coerce_datetime,
}


def coerce_value(value: object, value_type: ValueType) -> JsonScalar:
    return _COERCERS[value_type](value)


class AttributeMapper:
    """Projects raw Picqer records onto typed column values."""

    def extract(self, raw_record: JsonObject, descriptor: SchemaDescriptor) -> RowValues:
        row: RowValues = {descriptor.key_column: self._natural_key(raw_record, descriptor)}
        for attribute in descriptor.attributes:
            row[attribute.column_name] = self._extract_attribute(
                raw_record, attribute, descriptor
            )
        return row

    @staticmethod
    def _natural_key(raw_record: JsonObject, descriptor: SchemaDescriptor) -> str:
        raw_key = get_nested_value(raw_record, descriptor.natural_key.remote_field_path)
        if raw_key is _MISSING or raw_key is None or isinstance(raw_key, (dict, list)):
            raise RecordMappingError(
                descriptor.entity_type,
                f"natural key {descriptor.natural_key.remote_field_path!r} is missing",
            )
        natural_key = _coerce_string(raw_key).strip()
        if not natural_key:
            raise RecordMappingError(
                descriptor.entity_type,
                f"natural key {descriptor.natural_key.remote_field_path!r} is empty",
            )
        return natural_key

    @staticmethod
    def _extract_attribute(
        raw_record: JsonObject, attribute: AttributeSpec, descriptor: SchemaDescriptor
    ) -> JsonScalar:
        raw_value = get_nested_value(raw_record, attribute.remote_field_path)
        if raw_value is _MISSING or raw_value is None:
            if attribute.required:
                raise RecordMappingError(
                    descriptor.entity_type,
                    f"required field {attribute.remote_field_path!r} is missing",
                )
            return None

        try:
            return coerce_value(raw_value, attribute.value_type)
        except _Unparsable as error:
            if attribute.required:
                raise RecordMappingError(
                    descriptor.entity_type,
                    f"required field {attribute.remote_field_path!r} is {error}",
                ) from error
            logger.warning(
                "Unable to parse %s.%s, storing null: %s",
                descriptor.entity_type,
                attribute.remote_field_path,
                error,
            )
            return None
