# src/sql_repository/base/filters.py
import logging
import re
from dataclasses import dataclass, field
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from .template import COLLECTION_PLACEHOLDER, PLACEHOLDER_RE, as_list

# --- Setup Logging ---
log = logging.getLogger(__name__)

SEARCH_FIELD_SEPARATOR = ":"

# Start of one join clause; "LEFT JOIN" is matched whole so it is not split.
JOIN_START_RE = re.compile(
    r"\b(?:NATURAL\s+)?(?:(?:LEFT|RIGHT|FULL)(?:\s+OUTER)?\s+|INNER\s+|CROSS\s+)?JOIN\b",
    re.IGNORECASE,
)

# Renders a template with its positional values (the executor's ``prepare``).
TemplateRenderer = Callable[..., str]


# --- WHERE variants ---
@dataclass(frozen=True)
class StaticTemplate:
    """A WHERE fragment template rendered with the filter value."""

    template: str

    @property
    def uses_collection(self) -> bool:
        return COLLECTION_PLACEHOLDER in self.template


@dataclass(frozen=True)
class Predicate:
    """A callable building the WHERE fragment from the filter value."""

    fn: Callable[[Any], str]

    def __call__(self, value: Any) -> str:
        return self.fn(value)


WhereClause = Union[StaticTemplate, Predicate]


def _as_where_clause(where: Any) -> Optional[WhereClause]:
    if where is None or isinstance(where, (StaticTemplate, Predicate)):
        return where
    if isinstance(where, str):
        return StaticTemplate(where) if where else None
    if callable(where):
        return Predicate(where)
    raise TypeError(
        f"Filter 'where' must be a template string or a callable, "
        f"got {type(where).__name__}"
    )


# --- Filter declaration ---
@dataclass(frozen=True)
class FilterSpec:
    """
    Declares how one named filter maps onto SQL.

    Attributes:
        where: Template string, callable, or an explicit
            :class:`StaticTemplate` / :class:`Predicate`.
        select: Extra select-list fragment added while the filter is active.
        joins: Extra JOIN fragment added while the filter is active.
        search: Searchable column names. A non-empty list switches the
            filter into search mode and ``where`` is not used.
    """

    where: Optional[Union[str, Callable[[Any], str], WhereClause]] = None
    select: str = ""
    joins: str = ""
    search: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, "where", _as_where_clause(self.where))
        object.__setattr__(self, "search", tuple(self.search or ()))

    @property
    def is_search(self) -> bool:
        return bool(self.search)


FilterDefinition = Union[FilterSpec, str, Callable[[Any], str]]


def normalize_filter_specs(
    definitions: Optional[Mapping[str, FilterDefinition]],
) -> Dict[str, FilterSpec]:
    """Wrap bare template strings and callables into :class:`FilterSpec`."""
    specs: Dict[str, FilterSpec] = {}
    for name, definition in (definitions or {}).items():
        if isinstance(definition, FilterSpec):
            specs[name] = definition
        else:
            specs[name] = FilterSpec(where=definition)
    return specs


# --- Translation result ---
@dataclass(frozen=True)
class FilterFragments:
    """WHERE / JOIN / SELECT contributions of the active filters."""

    where: str = ""
    joins: str = ""
    select: str = ""


def parse_search(value: Any, search: Sequence[str]) -> Tuple[str, List[str]]:
    """
    Split a raw search value into the column to search and its keywords.

    ``"sku:AB 12"`` searches ``sku`` for ``AB`` and ``12`` when ``sku`` is one
    of the declared columns; otherwise the first declared column is searched
    for the whole value.
    """
    text = "" if value is None else str(value)
    column = search[0]

    if SEARCH_FIELD_SEPARATOR in text:
        prefix, remainder = text.split(SEARCH_FIELD_SEPARATOR, 1)
        if prefix in search:
            column, text = prefix, remainder

    keywords = [kw for kw in text.split() if kw]
    return column, keywords


def _append(where: str, fragment: Optional[str]) -> str:
    if not fragment or not fragment.strip():
        return where
    return f"{where} {fragment.strip()}"


class FilterTranslator:
    """
    Turns an active filter map into WHERE/JOIN/SELECT fragments.

    Filters are applied in the insertion order of the active map so equal
    inputs always produce identical SQL text. ``None`` values and names
    without a declaration are skipped silently.
    """

    def __init__(self, alias: str, render: TemplateRenderer):
        self.alias = alias
        self._render = render

    def translate(
        self,
        active_filters: Optional[Mapping[str, Any]],
        specs: Mapping[str, FilterDefinition],
        base_joins: str = "",
        base_select: str = "",
    ) -> FilterFragments:
        specs = normalize_filter_specs(specs)
        where = ""
        joins: List[str] = []
        select: List[str] = []

        for name, value in (active_filters or {}).items():
            if value is None:
                continue
            spec = specs.get(name)
            if spec is None:
                log.debug(f"Ignoring undeclared filter '{name}'")
                continue

            if spec.is_search:
                where = _append(where, self.build_search_filter(value, spec.search))
            elif isinstance(spec.where, Predicate):
                where = _append(where, spec.where(value))
            elif isinstance(spec.where, StaticTemplate):
                where = _append(where, self._render_static(spec.where, value))

            if spec.joins and spec.joins not in joins and not _in_join_list(
                spec.joins, base_joins
            ):
                joins.append(spec.joins)
            if spec.select and spec.select not in select and not _in_select_list(
                spec.select, base_select
            ):
                select.append(spec.select)

        fragments = FilterFragments(
            where=where, joins=" ".join(joins), select=", ".join(select)
        )
        log.debug(f"Translated filters {dict(active_filters or {})!r} -> {fragments!r}")
        return fragments

    def _render_static(self, clause: StaticTemplate, value: Any) -> str:
        if not PLACEHOLDER_RE.search(clause.template):
            # flag-style filter, the value only switches it on
            return clause.template
        if clause.uses_collection:
            value = as_list(value)
        return self._render(clause.template, value)

    def build_search_filter(self, value: Any, search: Sequence[str]) -> str:
        """One conjunctive LIKE condition per keyword; empty when no keywords."""
        column, keywords = parse_search(value, search)
        fragment = ""
        for kw in keywords:
            fragment = _append(
                fragment, self._render(f"AND {self.alias}.{column} LIKE ?l", kw)
            )
        return fragment.strip()


def _in_select_list(fragment: str, select_list: str) -> bool:
    return fragment.strip() in [part.strip() for part in select_list.split(",")]


def _normalize_join(join: str) -> str:
    return " ".join(join.split()).lower()


def split_joins(joins: str) -> List[str]:
    """Split a JOIN fragment holding several clauses into one string per clause."""
    starts = [m.start() for m in JOIN_START_RE.finditer(joins or "")]
    if not starts:
        return [joins.strip()] if joins and joins.strip() else []
    bounds = starts[1:] + [len(joins)]
    return [joins[start:end].strip() for start, end in zip(starts, bounds)]


def _in_join_list(fragment: str, joins: str) -> bool:
    clauses = {_normalize_join(clause) for clause in split_joins(joins)}
    return all(_normalize_join(clause) in clauses for clause in split_joins(fragment))
