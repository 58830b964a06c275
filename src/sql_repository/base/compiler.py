# src/sql_repository/base/compiler.py
import logging

from .query_state import QueryState

log = logging.getLogger(__name__)

WILDCARD = "*"


def _join_parts(*parts: str) -> str:
    return " ".join(p.strip() for p in parts if p and p.strip())


class QueryCompiler:
    """
    Renders SELECT and COUNT statements for one table from a QueryState.

    Both statements share :meth:`compile_from_where`, so a count always
    filters exactly the rows the paged read would return.
    """

    def __init__(self, table: str, alias: str):
        self.table = table
        self.alias = alias

    def select_list(self, state: QueryState) -> str:
        base = state.select.strip() or WILDCARD
        if base == WILDCARD:
            select = f"{self.alias}.*, {state.filter_select}"
        else:
            select = f"{base}, {state.filter_select}"
        return select.strip().rstrip(",").strip()

    def compile_from_where(self, state: QueryState) -> str:
        return _join_parts(
            f"FROM {self.table} AS {self.alias}",
            state.joins,
            state.filter_joins,
            "WHERE 1",
            state.where,
            state.filter_where,
        )

    def compile_select(self, state: QueryState) -> str:
        distinct = "DISTINCT " if state.distinct else ""
        sql = _join_parts(
            f"SELECT {distinct}{self.select_list(state)}",
            self.compile_from_where(state),
            state.order_by,
            state.limit_clause,
        )
        log.debug(f"Compiled select: {sql}")
        return sql

    def compile_count(self, state: QueryState) -> str:
        sql = _join_parts("SELECT COUNT(*) AS count", self.compile_from_where(state))
        log.debug(f"Compiled count: {sql}")
        return sql
