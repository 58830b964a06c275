# src/sql_repository/base/query_state.py
import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .filters import FilterFragments

log = logging.getLogger(__name__)

DEFAULT_PAGE = 1
DEFAULT_PER_PAGE = 25


@dataclass(frozen=True)
class QueryState:
    """
    Immutable snapshot of every clause fragment of one query derivation.

    Each ``with_*`` method returns a new state with one field replaced; the
    receiver is never modified, so any number of callers may derive from the
    same base state. ``page`` and ``per_page`` are clamped to at least 1
    whichever way the state is built.
    """

    select: str = "*"
    joins: str = ""
    where: str = ""
    order_by: str = ""
    page: int = DEFAULT_PAGE
    per_page: int = DEFAULT_PER_PAGE
    limited: bool = True
    distinct: bool = False
    result_index_key: str = ""
    filter_where: str = ""
    filter_joins: str = ""
    filter_select: str = ""

    def __post_init__(self):
        object.__setattr__(self, "page", max(1, int(self.page)))
        object.__setattr__(self, "per_page", max(1, int(self.per_page)))

    # --- Pagination ---

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page

    @property
    def limit_clause(self) -> str:
        """``LIMIT <offset>, <count>`` or an empty string after ``clear_limit``."""
        if not self.limited:
            return ""
        return f"LIMIT {self.offset}, {self.per_page}"

    def with_page(self, page: int) -> "QueryState":
        return replace(self, page=max(1, int(page)), limited=True)

    def with_limit(self, per_page: int) -> "QueryState":
        return replace(self, per_page=max(1, int(per_page)), limited=True)

    def clear_limit(self) -> "QueryState":
        return replace(self, limited=False)

    # --- Clause fragments ---

    def with_select(self, select: str) -> "QueryState":
        return replace(self, select=select)

    def with_joins(self, joins: str) -> "QueryState":
        return replace(self, joins=joins)

    def with_where(self, where: str) -> "QueryState":
        return replace(self, where=where)

    def with_order_by(self, order_by: str) -> "QueryState":
        return replace(self, order_by=order_by)

    def with_distinct(self, distinct: bool = True) -> "QueryState":
        return replace(self, distinct=bool(distinct))

    def with_primary_key(self, key: str) -> "QueryState":
        return replace(self, result_index_key=key)

    # --- Filter contributions ---

    def with_filter_where(self, where: str) -> "QueryState":
        return replace(self, filter_where=where)

    def with_filter_joins(self, joins: str) -> "QueryState":
        return replace(self, filter_joins=joins)

    def with_filter_select(self, select: str) -> "QueryState":
        return replace(self, filter_select=select)

    def with_filter_fragments(self, fragments: "FilterFragments") -> "QueryState":
        """Replace the whole filter contribution with freshly translated fragments."""
        log.debug(f"Applying filter fragments: {fragments!r}")
        return replace(
            self,
            filter_where=fragments.where,
            filter_joins=fragments.joins,
            filter_select=fragments.select,
        )
