"""
Value conversion between Python values and SQLite storage values.

Each DataType has one converter with ``to_db`` (bind value) and
``to_python`` (row value). JSON, OBJECT and ARRAY columns are stored as
canonical JSON text so that any plain-data value round-trips unchanged.
"""

from __future__ import annotations

import datetime
import decimal
import json
from typing import Any, Dict

from ..faults.domains import ValidationFault
from .types import ColumnDefinition, DataType


class ConversionError(ValueError):
    """Raised by converters; wrapped into ValidationFault with table context."""


class Converter:
    """Base converter. Subclasses override ``to_db`` / ``to_python``."""

    data_type: DataType

    def to_db(self, value: Any) -> Any:
        return value

    def to_python(self, value: Any) -> Any:
        return value


class IntegerConverter(Converter):
    data_type = DataType.INTEGER

    def to_db(self, value: Any) -> Any:
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        raise ConversionError(f"expected integer, got {type(value).__name__}")


class RealConverter(Converter):
    data_type = DataType.REAL

    def to_db(self, value: Any) -> Any:
        if isinstance(value, bool) or not isinstance(value, (int, float, decimal.Decimal)):
            raise ConversionError(f"expected number, got {type(value).__name__}")
        return float(value)


class NumberConverter(Converter):
    data_type = DataType.NUMBER

    def to_db(self, value: Any) -> Any:
        if isinstance(value, bool) or not isinstance(value, (int, float, decimal.Decimal)):
            raise ConversionError(f"expected number, got {type(value).__name__}")
        if isinstance(value, decimal.Decimal):
            # NUMERIC affinity turns the text back into a number
            return str(value)
        return value


class TextConverter(Converter):
    data_type = DataType.TEXT

    def to_db(self, value: Any) -> Any:
        if not isinstance(value, str):
            raise ConversionError(f"expected str, got {type(value).__name__}")
        return value


class StringConverter(TextConverter):
    data_type = DataType.STRING


class BlobConverter(Converter):
    data_type = DataType.BLOB

    def to_db(self, value: Any) -> Any:
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value)
        raise ConversionError(f"expected bytes, got {type(value).__name__}")

    def to_python(self, value: Any) -> Any:
        if isinstance(value, (bytearray, memoryview)):
            return bytes(value)
        return value


class BooleanConverter(Converter):
    data_type = DataType.BOOLEAN

    def to_db(self, value: Any) -> Any:
        if isinstance(value, bool):
            return 1 if value else 0
        if isinstance(value, int) and value in (0, 1):
            return value
        raise ConversionError(f"expected bool, got {value!r}")

    def to_python(self, value: Any) -> Any:
        return bool(value)


class DateConverter(Converter):
    data_type = DataType.DATE

    def to_db(self, value: Any) -> Any:
        if isinstance(value, datetime.datetime):
            return value.date().isoformat()
        if isinstance(value, datetime.date):
            return value.isoformat()
        if isinstance(value, str):
            try:
                return datetime.date.fromisoformat(value).isoformat()
            except ValueError:
                raise ConversionError(f"invalid date format: '{value}'") from None
        raise ConversionError(f"expected date, got {type(value).__name__}")

    def to_python(self, value: Any) -> Any:
        if isinstance(value, str):
            return datetime.date.fromisoformat(value)
        return value


class DateTimeConverter(Converter):
    data_type = DataType.DATETIME

    def to_db(self, value: Any) -> Any:
        if isinstance(value, datetime.datetime):
            return value.isoformat()
        if isinstance(value, str):
            try:
                return datetime.datetime.fromisoformat(value).isoformat()
            except ValueError:
                raise ConversionError(f"invalid datetime format: '{value}'") from None
        raise ConversionError(f"expected datetime, got {type(value).__name__}")

    def to_python(self, value: Any) -> Any:
        if isinstance(value, str):
            return datetime.datetime.fromisoformat(value)
        return value


def _check_plain(value: Any) -> None:
    """Reject values json would silently reshape (tuple to list, int key to str)."""
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise ConversionError(
                    f"value is not JSON serializable: object keys must be str, got {type(key).__name__}"
                )
            _check_plain(item)
    elif isinstance(value, list):
        for item in value:
            _check_plain(item)
    elif isinstance(value, (tuple, set, frozenset)):
        raise ConversionError(
            f"value is not JSON serializable: {type(value).__name__} does not round-trip, use a list"
        )


class JSONConverter(Converter):
    data_type = DataType.JSON

    def check(self, value: Any) -> None:
        pass

    def to_db(self, value: Any) -> Any:
        self.check(value)
        _check_plain(value)
        try:
            return json.dumps(value, sort_keys=True, separators=(",", ":"), allow_nan=False)
        except (TypeError, ValueError) as e:
            raise ConversionError(f"value is not JSON serializable: {e}") from None

    def to_python(self, value: Any) -> Any:
        if isinstance(value, (bytes, bytearray)):
            value = value.decode("utf-8")
        if isinstance(value, str):
            return json.loads(value)
        return value


class ObjectConverter(JSONConverter):
    data_type = DataType.OBJECT

    def check(self, value: Any) -> None:
        if not isinstance(value, dict):
            raise ConversionError(f"expected dict, got {type(value).__name__}")


class ArrayConverter(JSONConverter):
    data_type = DataType.ARRAY

    def check(self, value: Any) -> None:
        if not isinstance(value, list):
            raise ConversionError(f"expected list, got {type(value).__name__}")


_CONVERTERS: Dict[DataType, Converter] = {
    c.data_type: c()
    for c in (
        IntegerConverter,
        RealConverter,
        NumberConverter,
        TextConverter,
        StringConverter,
        BlobConverter,
        BooleanConverter,
        DateConverter,
        DateTimeConverter,
        JSONConverter,
        ObjectConverter,
        ArrayConverter,
    )
}


def get_converter(data_type: DataType) -> Converter:
    return _CONVERTERS[data_type]


def to_db(table: str, column: str, column_def: ColumnDefinition, value: Any) -> Any:
    """Convert a Python value into the bind value for ``column``."""
    if value is None:
        return None
    try:
        return _CONVERTERS[column_def.type].to_db(value)
    except ConversionError as e:
        raise ValidationFault(
            table,
            f"column '{column}' ({column_def.type.value}): {e}",
            metadata={"column": column},
        ) from None


def to_python(column_def: ColumnDefinition, value: Any) -> Any:
    """Convert a stored value back into its Python form."""
    if value is None:
        return None
    return _CONVERTERS[column_def.type].to_python(value)


def row_to_python(schema, row: Dict[str, Any]) -> Dict[str, Any]:
    """Deserialize every known column of a fetched row."""
    result = {}
    for name, value in row.items():
        col = schema.get(name)
        result[name] = to_python(col, value) if col is not None else value
    return result
