# src/sql_repository/base/records.py
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional

log = logging.getLogger(__name__)

AUTO_TIMESTAMP_DEFAULTS = {"current_timestamp()", "current_timestamp", "now()"}


class ColumnType(Enum):
    """Category of a declared SQL column type."""

    BOOLEAN = "boolean"
    INTEGER = "integer"
    FLOAT = "float"
    TEMPORAL = "temporal"
    TEXT = "text"
    OTHER = "other"

    @classmethod
    def from_sql_type(cls, sql_type: Optional[str]) -> "ColumnType":
        """Classify a declared type such as ``tinyint(1)`` or ``VARCHAR(64)``."""
        declared = (sql_type or "").strip().lower()
        if not declared:
            return cls.OTHER
        # Order matters: tinyint(1) is a boolean before it is an int
        for pattern, column_type in _CLASSIFICATION:
            if pattern.search(declared):
                return column_type
        return cls.OTHER


_CLASSIFICATION = [
    (re.compile(r"tinyint\(1\)|\bbool(ean)?\b"), ColumnType.BOOLEAN),
    (re.compile(r"int|serial"), ColumnType.INTEGER),
    (re.compile(r"float|double|real|decimal|\bdec\b|fixed|numeric"), ColumnType.FLOAT),
    (re.compile(r"date|time|year"), ColumnType.TEMPORAL),
    (re.compile(r"char|text|clob|blob|enum|\bset\b|binary|json"), ColumnType.TEXT),
]


@dataclass(frozen=True)
class ColumnInfo:
    """One column of a described table."""

    name: str
    column_type: ColumnType
    sql_type: str = ""
    nullable: bool = True
    default: Optional[str] = None
    primary_key: bool = False

    @property
    def auto_timestamp(self) -> bool:
        return (self.default or "").strip().lower() in AUTO_TIMESTAMP_DEFAULTS


def zero_value(column_type: ColumnType) -> Any:
    """The empty value of a column category with no declared default."""
    return {
        ColumnType.BOOLEAN: False,
        ColumnType.INTEGER: 0,
        ColumnType.FLOAT: 0.0,
    }.get(column_type, "")


def cast_default(column_type: ColumnType, raw: Any) -> Any:
    """Convert a declared default value to the Python type of its column."""
    if raw is None:
        return None
    try:
        if column_type is ColumnType.BOOLEAN:
            return str(raw).strip().lower() not in ("0", "", "false")
        if column_type is ColumnType.INTEGER:
            return int(float(raw))
        if column_type is ColumnType.FLOAT:
            return float(raw)
    except (TypeError, ValueError):
        log.warning(f"Could not cast default {raw!r} to {column_type.value}")
        return raw
    if column_type in (ColumnType.TEMPORAL, ColumnType.TEXT):
        return str(raw)
    return raw


def default_for(column: ColumnInfo) -> Any:
    if column.nullable:
        return None
    if column.default is not None:
        return cast_default(column.column_type, column.default)
    return zero_value(column.column_type)


def build_empty_record(columns: Iterable[ColumnInfo]) -> Dict[str, Any]:
    """
    Build a template row for a table.

    Primary-key and auto-timestamp columns are left out, nullable columns are
    ``None``, columns with a declared default get it cast to the column type,
    and everything else gets the zero value of its column type.
    """
    return {
        column.name: default_for(column)
        for column in columns
        if not column.primary_key and not column.auto_timestamp
    }


def sanitize_fields(columns: Iterable[ColumnInfo], data: Mapping[str, Any]) -> Dict[str, Any]:
    """Keep only the keys of ``data`` that are columns of the table."""
    names = {column.name for column in columns}
    dropped: List[str] = [key for key in data if key not in names]
    if dropped:
        log.debug(f"Dropping unknown fields: {dropped}")
    return {key: value for key, value in data.items() if key in names}
