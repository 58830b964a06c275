# src/sql_repository/base/template.py
"""
Value substitution for SQL templates.

Templates use typed positional placeholders which are replaced, in order, by
the supplied values rendered as escaped SQL literals or quoted identifiers:

    ?s  string literal            ?i  integer            ?f  float
    ?a  comma separated literals  ?A  ``col = value`` assignment list
    ?t  table identifier          ?c  (dotted) column    ?n  identifier list
    ?l  ``'%value%'`` LIKE literal

The rendered text is what the statement executors run; nothing is bound
separately at execution time.
"""

import json
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Iterable, List, Mapping

from .exceptions import TemplateError

log = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\?([sifaAtcnl])")
COLLECTION_PLACEHOLDER = "?a"


@dataclass(frozen=True)
class SqlDialect:
    """Quoting rules of one SQL flavour."""

    name: str
    identifier_quote: str
    backslash_escapes: bool = False
    datetime_format: str = "%Y-%m-%d %H:%M:%S"

    def quote_identifier(self, identifier: str) -> str:
        """Quote an identifier, doubling any embedded quote characters."""
        q = self.identifier_quote
        safe_identifier = str(identifier).replace(q, q + q)
        return f"{q}{safe_identifier}{q}"

    def quote_dotted_identifier(self, identifier: str) -> str:
        """Quote a possibly dotted identifier (e.g. ``p.name``) part by part."""
        parts = [p.strip() for p in str(identifier).split(".")]
        return ".".join(self.quote_identifier(p) for p in parts)

    def quote_string(self, value: str) -> str:
        escaped = str(value)
        if self.backslash_escapes:
            escaped = escaped.replace("\\", "\\\\")
        escaped = escaped.replace("\x00", "").replace("'", "''")
        return f"'{escaped}'"

    def literal(self, value: Any) -> str:
        """Render a Python value as a SQL literal."""
        if value is None:
            return "NULL"
        if isinstance(value, bool):
            return "1" if value else "0"
        if isinstance(value, (int, float, Decimal)):
            return str(value)
        if isinstance(value, datetime):
            return self.quote_string(value.strftime(self.datetime_format))
        if isinstance(value, (date, time)):
            return self.quote_string(value.isoformat())
        if isinstance(value, bytes):
            return self.quote_string(value.decode("utf-8", errors="replace"))
        if isinstance(value, (dict, list, tuple, set)):
            data = list(value) if isinstance(value, (tuple, set)) else value
            return self.quote_string(json.dumps(data, default=str))
        return self.quote_string(str(value))


SQLITE = SqlDialect(name="sqlite", identifier_quote='"')
MYSQL = SqlDialect(name="mysql", identifier_quote="`", backslash_escapes=True)


def as_list(value: Any) -> List[Any]:
    """Coerce a filter value for a collection placeholder."""
    if isinstance(value, list):
        return value
    if isinstance(value, (tuple, set, frozenset)):
        return list(value)
    if isinstance(value, (str, bytes, Mapping)):
        return [value]
    if isinstance(value, Iterable):
        return list(value)
    return [value]


def _render_list(dialect: SqlDialect, values: Any) -> str:
    items = as_list(values)
    if not items:
        # IN () is a syntax error; IN (NULL) matches nothing
        return "NULL"
    return ", ".join(dialect.literal(item) for item in items)


def _render_assignments(dialect: SqlDialect, data: Any) -> str:
    if not isinstance(data, Mapping) or not data:
        raise TemplateError(
            f"Placeholder '?A' requires a non-empty mapping, got {data!r}"
        )
    return ", ".join(
        f"{dialect.quote_identifier(column)} = {dialect.literal(value)}"
        for column, value in data.items()
    )


def _render_number(value: Any, kind: type) -> str:
    if value is None:
        return "NULL"
    try:
        return str(kind(value))
    except (TypeError, ValueError) as e:
        raise TemplateError(
            f"Cannot render {value!r} as {kind.__name__}: {e}"
        ) from e


def _render(dialect: SqlDialect, kind: str, value: Any) -> str:
    if kind == "s":
        return dialect.literal(value)
    if kind == "i":
        return _render_number(value, int)
    if kind == "f":
        return _render_number(value, float)
    if kind == "a":
        return _render_list(dialect, value)
    if kind == "A":
        return _render_assignments(dialect, value)
    if kind == "t":
        return dialect.quote_identifier(value)
    if kind == "c":
        return dialect.quote_dotted_identifier(value)
    if kind == "n":
        return ", ".join(dialect.quote_dotted_identifier(v) for v in as_list(value))
    # kind == "l"
    return dialect.quote_string(f"%{value}%")


def render_template(dialect: SqlDialect, template: str, *values: Any) -> str:
    """
    Substitute every placeholder of ``template`` with the next value.

    Raises:
        TemplateError: If the number of placeholders and values differ or a
            value cannot be rendered for its placeholder.
    """
    placeholders = PLACEHOLDER_RE.findall(template)
    if len(placeholders) != len(values):
        raise TemplateError(
            f"Template {template!r} expects {len(placeholders)} value(s), "
            f"got {len(values)}"
        )
    if not placeholders:
        return template

    remaining = iter(values)

    def substitute(match: "re.Match[str]") -> str:
        return _render(dialect, match.group(1), next(remaining))

    rendered = PLACEHOLDER_RE.sub(substitute, template)
    log.debug(f"Rendered template {template!r} -> {rendered!r}")
    return rendered
