# src/sql_repository/base/interfaces.py

import copy
import logging
import re
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from logging import LoggerAdapter
from typing import (Any, AsyncGenerator, Dict, Generic, Iterable, List,
                    Mapping, Optional, Type, TypeVar, Union)

from pydantic import BaseModel

from sql_repository.base.compiler import QueryCompiler
from sql_repository.base.exceptions import (KeyAlreadyExistsException,
                                            RepositoryConfigurationError,
                                            TransactionError)
from sql_repository.base.filters import (FilterDefinition, FilterTranslator,
                                         normalize_filter_specs)
from sql_repository.base.query_state import (DEFAULT_PAGE, DEFAULT_PER_PAGE,
                                             QueryState)
from sql_repository.base.records import (ColumnInfo, build_empty_record,
                                         sanitize_fields)
from sql_repository.base.template import SqlDialect, render_template
from sql_repository.base.utils import prepare_row

# Type variable for materialized rows
T = TypeVar("T")

Row = Dict[str, Any]

_SORT_COLUMN_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")
_SORT_DIRECTIONS = ("ASC", "DESC")


class StatementExecutor(ABC):
    """
    Runs rendered SQL text against one database.

    Subclasses wrap a driver connection (or pool) and implement the raw
    statement methods; this base class provides template rendering and
    nested transactions. The outermost ``begin_transaction`` opens a real
    transaction, inner levels are savepoints.
    """

    def __init__(self, dialect: SqlDialect):
        self._dialect = dialect
        self._transaction_depth = 0
        self._logger = logging.getLogger(
            f"{__name__}.{self.__class__.__name__}"
        )

    @property
    def dialect(self) -> SqlDialect:
        return self._dialect

    @property
    def in_transaction(self) -> bool:
        return self._transaction_depth > 0

    def prepare(self, template: str, *values: Any) -> str:
        """Render ``template`` with escaped ``values`` (see ``base.template``)."""
        return render_template(self._dialect, template, *values)

    # --- Statement execution ---

    @abstractmethod
    async def execute(self, sql: str, logger: LoggerAdapter) -> int:
        """
        Run a write statement.

        Returns:
            The number of affected rows.

        Raises:
            KeyAlreadyExistsException: On a unique constraint violation.
        """
        pass

    @abstractmethod
    async def fetch_all(self, sql: str, logger: LoggerAdapter) -> List[Row]:
        """Run a query and return every row as a dict."""
        pass

    async def fetch_one(self, sql: str, logger: LoggerAdapter) -> Optional[Row]:
        rows = await self.fetch_all(sql, logger)
        return rows[0] if rows else None

    async def fetch_scalar(
        self, sql: str, logger: LoggerAdapter, column: Optional[str] = None
    ) -> Any:
        """First column (or ``column``) of the first row, None without rows."""
        row = await self.fetch_one(sql, logger)
        if row is None:
            return None
        if column is not None:
            return row[column]
        return next(iter(row.values()), None)

    @property
    @abstractmethod
    def last_insert_id(self) -> Any:
        """Auto-generated key of the last INSERT run by ``execute``."""
        pass

    @abstractmethod
    async def describe(self, table: str, logger: LoggerAdapter) -> List[ColumnInfo]:
        """Describe the columns of ``table``."""
        pass

    # --- Transactions ---

    @abstractmethod
    async def _begin(self) -> None:
        pass

    @abstractmethod
    async def _commit(self) -> None:
        pass

    @abstractmethod
    async def _rollback(self) -> None:
        pass

    @abstractmethod
    async def _execute_raw(self, sql: str) -> None:
        """Run a statement without autocommit or error mapping."""
        pass

    @staticmethod
    def _savepoint_name(level: int) -> str:
        return f"sp_{level}"

    async def begin_transaction(self, logger: LoggerAdapter) -> bool:
        if self._transaction_depth == 0:
            await self._begin()
            logger.debug("Transaction started.")
        else:
            name = self._savepoint_name(self._transaction_depth)
            await self._execute_raw(f"SAVEPOINT {name}")
            logger.debug(f"Savepoint '{name}' created.")
        self._transaction_depth += 1
        return True

    async def commit(self, logger: LoggerAdapter) -> bool:
        if self._transaction_depth == 0:
            raise TransactionError("Cannot commit: no transaction is open.")
        self._transaction_depth -= 1
        if self._transaction_depth == 0:
            await self._commit()
            logger.debug("Transaction committed.")
        else:
            name = self._savepoint_name(self._transaction_depth)
            await self._execute_raw(f"RELEASE SAVEPOINT {name}")
            logger.debug(f"Savepoint '{name}' released.")
        return True

    async def rollback(self, logger: LoggerAdapter) -> bool:
        if self._transaction_depth == 0:
            raise TransactionError("Cannot roll back: no transaction is open.")
        self._transaction_depth -= 1
        if self._transaction_depth == 0:
            await self._rollback()
            logger.debug("Transaction rolled back.")
        else:
            name = self._savepoint_name(self._transaction_depth)
            await self._execute_raw(f"ROLLBACK TO SAVEPOINT {name}")
            logger.debug(f"Rolled back to savepoint '{name}'.")
        return True


class Repository(Generic[T]):
    """
    Table repository with chainable, immutable query refinement.

    Subclasses configure the table through class attributes::

        class ProductRepository(Repository):
            table = "products"
            alias = "p"
            joins = "LEFT JOIN categories c ON c.id = p.category_id"
            filters = {
                "status": "AND p.status = ?s",
                "category_id": "AND p.category_id IN (?a)",
                "brand": FilterSpec(
                    where="AND b.name = ?s",
                    joins="LEFT JOIN brands b ON b.id = p.brand_id",
                ),
                "q": FilterSpec(search=["name", "sku"]),
            }
            default_order = "p.id DESC"

    Every ``with_*`` call returns a new repository wrapping a new
    :class:`QueryState`; the receiver keeps its own state, so a configured
    base repository can be shared and refined concurrently. I/O methods are
    coroutines delegating to the :class:`StatementExecutor`.
    """

    table: str = ""
    alias: Optional[str] = None
    select: str = "*"
    joins: str = ""
    filters: Mapping[str, FilterDefinition] = {}
    default_order: str = ""
    id_column: str = "id"
    model: Optional[Type[BaseModel]] = None

    def __init__(self, executor: StatementExecutor):
        """
        Args:
            executor: The statement executor of the database holding ``table``.

        Raises:
            RepositoryConfigurationError: If the subclass sets no ``table``.
        """
        if not self.table:
            raise RepositoryConfigurationError(
                f"The required attribute 'table' was not set on "
                f"{self.__class__.__name__}"
            )
        self._executor = executor
        self._alias = self.alias or self.table[0]
        self._filter_specs = normalize_filter_specs(self.filter_definitions())
        self._compiler = QueryCompiler(executor.prepare("?t", self.table), self._alias)
        self._translator = FilterTranslator(self._alias, executor.prepare)
        self._logger = logging.getLogger(
            f"{__name__}.{self.__class__.__name__}[{self.table}]"
        )
        self._base_state = QueryState(
            select=self.select or "*",
            joins=self.joins,
            order_by=self._order_clause([self.default_order]),
        )
        self._state = self._base_state
        self._active_filters: Dict[str, Any] = {}
        self._logger.info(
            f"Repository instance created for table '{self.table}' AS "
            f"'{self._alias}' ({len(self._filter_specs)} filter(s))."
        )

    def filter_definitions(self) -> Mapping[str, FilterDefinition]:
        """Filter declarations of the table. Override to build them per instance."""
        return self.filters

    # --- Properties ---

    @property
    def executor(self) -> StatementExecutor:
        return self._executor

    @property
    def table_alias(self) -> str:
        return self._alias

    @property
    def state(self) -> QueryState:
        return self._state

    @property
    def active_filters(self) -> Dict[str, Any]:
        """The filter map last applied with :meth:`with_filter`."""
        return dict(self._active_filters)

    # --- Chainable refinement ---

    def _fork(self, state: QueryState) -> "Repository[T]":
        clone = copy.copy(self)
        clone._state = state
        return clone

    def with_distinct(self, distinct: bool = True) -> "Repository[T]":
        return self._fork(self._state.with_distinct(distinct))

    def with_filter(self, filters: Optional[Mapping[str, Any]]) -> "Repository[T]":
        """
        Apply a filter map, replacing the previous filter contribution.

        ``None`` values and names without a declaration are ignored.
        """
        filters = dict(filters or {})
        fragments = self._translator.translate(
            filters,
            self._filter_specs,
            base_joins=self._state.joins,
            base_select=self._state.select,
        )
        clone = self._fork(self._state.with_filter_fragments(fragments))
        clone._active_filters = filters
        return clone

    def with_where(self, template: str, *values: Any) -> "Repository[T]":
        """Append a rendered condition (``AND ...``) to the explicit WHERE part."""
        fragment = self._executor.prepare(template, *values).strip()
        where = f"{self._state.where} {fragment}".strip()
        return self._fork(self._state.with_where(where))

    def with_order_by(self, *order: Optional[str]) -> "Repository[T]":
        return self._fork(self._state.with_order_by(self._order_clause(order)))

    def with_sorting(
        self, order: Optional[str], direction: Optional[str] = "ASC"
    ) -> "Repository[T]":
        """Order by a single column; unknown directions fall back to ``ASC``."""
        if not order:
            return self
        if not _SORT_COLUMN_RE.match(order):
            self._logger.warning(f"Ignoring invalid sort column {order!r}")
            return self
        direction = (direction or "ASC").upper()
        if direction not in _SORT_DIRECTIONS:
            direction = "ASC"
        return self.with_order_by(f"{order} {direction}")

    def with_page(
        self, page: Union[int, str, None], default: int = DEFAULT_PAGE
    ) -> "Repository[T]":
        return self._fork(self._state.with_page(_coerce_int(page, default)))

    def with_limit(
        self, per_page: Union[int, str, None], default: int = DEFAULT_PER_PAGE
    ) -> "Repository[T]":
        return self._fork(self._state.with_limit(_coerce_int(per_page, default)))

    def with_primary_key(self, key: str) -> "Repository[T]":
        """Index ``get`` results by ``key`` instead of returning a list."""
        return self._fork(self._state.with_primary_key(key))

    @staticmethod
    def _order_clause(order: Iterable[Optional[str]]) -> str:
        parts = []
        for item in order:
            item = (item or "").strip()
            if item.upper().startswith("ORDER BY "):
                item = item[len("ORDER BY "):].strip()
            if item:
                parts.append(item)
        return f"ORDER BY {', '.join(parts)}" if parts else ""

    # --- Compilation ---

    def build_select_query(self) -> str:
        return self._compiler.compile_select(self._state)

    def build_count_query(self) -> str:
        return self._compiler.compile_count(self._state)

    # --- Reads ---

    def _materialize(self, row: Row) -> Union[T, Row]:
        if self.model is None:
            return row
        return self.model.model_validate(row)

    async def _fetch_rows(self, state: QueryState, logger: LoggerAdapter) -> List[Row]:
        sql = self._compiler.compile_select(state)
        logger.debug(f"Executing select on '{self.table}': {sql}")
        rows = await self._executor.fetch_all(sql, logger)
        logger.info(f"Fetched {len(rows)} row(s) from '{self.table}'.")
        return rows

    async def _fetch_one(self, state: QueryState, logger: LoggerAdapter) -> Optional[Union[T, Row]]:
        sql = self._compiler.compile_select(state.with_page(1).with_limit(1))
        logger.debug(f"Executing single-row select on '{self.table}': {sql}")
        row = await self._executor.fetch_one(sql, logger)
        return None if row is None else self._materialize(row)

    def _index(self, rows: List[Row]) -> Union[List[Union[T, Row]], Dict[Any, Union[T, Row]]]:
        key = self._state.result_index_key
        if not key:
            return [self._materialize(row) for row in rows]
        indexed = {}
        for row in rows:
            if key not in row:
                raise ValueError(
                    f"Result index key '{key}' is not a column of the result set."
                )
            indexed[row[key]] = self._materialize(row)
        return indexed

    async def get(
        self, logger: LoggerAdapter
    ) -> Union[List[Union[T, Row]], Dict[Any, Union[T, Row]]]:
        """
        Rows of the current page.

        Returns:
            A list of rows, or a dict keyed by the column set with
            :meth:`with_primary_key`.
        """
        return self._index(await self._fetch_rows(self._state, logger))

    async def get_one(self, logger: LoggerAdapter) -> Optional[Union[T, Row]]:
        return await self._fetch_one(self._state, logger)

    async def get_all(
        self, logger: LoggerAdapter
    ) -> Union[List[Union[T, Row]], Dict[Any, Union[T, Row]]]:
        """Every matching row, ignoring pagination."""
        return self._index(await self._fetch_rows(self._state.clear_limit(), logger))

    async def count(self, logger: LoggerAdapter) -> int:
        sql = self._compiler.compile_count(self._state)
        logger.debug(f"Executing count on '{self.table}': {sql}")
        return int(await self._executor.fetch_scalar(sql, logger, "count") or 0)

    async def exists(
        self, logger: LoggerAdapter, filters: Optional[Mapping[str, Any]] = None
    ) -> bool:
        """
        Whether any row matches the current state, refined by ``filters``.

        ``filters`` are merged over the active filter map; a name present in
        both takes the value from ``filters``.
        """
        repo = self.with_filter({**self._active_filters, **filters}) if filters else self
        return await repo.count(logger) > 0

    def _criteria_where(self, criteria: Mapping[str, Any]) -> str:
        where = ""
        for column, value in criteria.items():
            column = column if "." in column else f"{self._alias}.{column}"
            if value is None:
                fragment = self._executor.prepare("AND ?c IS NULL", column)
            elif isinstance(value, (list, tuple, set, frozenset)):
                fragment = self._executor.prepare("AND ?c IN (?a)", column, value)
            else:
                fragment = self._executor.prepare("AND ?c = ?s", column, value)
            where = f"{where} {fragment}".strip()
        return where

    def _criteria_state(self, criteria: Mapping[str, Any]) -> QueryState:
        return self._base_state.with_where(self._criteria_where(criteria))

    async def find_by_id(self, id: Any, logger: LoggerAdapter) -> Optional[Union[T, Row]]:
        logger.debug(f"Finding row in '{self.table}' by {self.id_column}={id!r}")
        return await self._fetch_one(self._criteria_state({self.id_column: id}), logger)

    async def find_by_ids(self, ids: Iterable[Any], logger: LoggerAdapter) -> List[Union[T, Row]]:
        ids = list(ids)
        if not ids:
            return []
        rows = await self._fetch_rows(
            self._criteria_state({self.id_column: ids}).clear_limit(), logger
        )
        return [self._materialize(row) for row in rows]

    async def find_by(self, criteria: Mapping[str, Any], logger: LoggerAdapter) -> List[Union[T, Row]]:
        """Rows whose columns equal ``criteria`` (lists match with ``IN``)."""
        rows = await self._fetch_rows(self._criteria_state(criteria).clear_limit(), logger)
        return [self._materialize(row) for row in rows]

    async def find_one_by(
        self, criteria: Mapping[str, Any], logger: LoggerAdapter
    ) -> Optional[Union[T, Row]]:
        return await self._fetch_one(self._criteria_state(criteria), logger)

    # --- Writes ---

    async def _prepare_data(
        self, data: Any, logger: LoggerAdapter, sanitize: bool
    ) -> Row:
        row = prepare_row(data)
        if sanitize:
            row = sanitize_fields(await self._executor.describe(self.table, logger), row)
        if not row:
            raise ValueError(f"No data given for table '{self.table}'.")
        return row

    async def create(
        self, data: Any, logger: LoggerAdapter, sanitize_fields: bool = False
    ) -> Optional[Union[T, Row]]:
        """
        Insert one row.

        Args:
            data: Column values as a dict, pydantic model or dataclass.
            logger: Logger adapter for recording operations.
            sanitize_fields: If True, drop keys that are not table columns.

        Returns:
            The created row as read back from the table.

        Raises:
            ValueError: If there is nothing to insert.
            KeyAlreadyExistsException: If the row violates a unique key.
        """
        row = await self._prepare_data(data, logger, sanitize_fields)
        sql = self._executor.prepare(
            "INSERT INTO ?t (?n) VALUES (?a)", self.table, list(row), list(row.values())
        )
        try:
            await self._executor.execute(sql, logger)
        except KeyAlreadyExistsException:
            logger.warning(f"Insert into '{self.table}' hit an existing key.")
            raise
        record_id = row.get(self.id_column)
        if record_id is None:
            record_id = self._executor.last_insert_id
        logger.info(f"Created row {self.id_column}={record_id!r} in '{self.table}'.")
        return await self.find_by_id(record_id, logger)

    async def create_many(
        self, records: Iterable[Any], logger: LoggerAdapter, sanitize_fields: bool = False
    ) -> List[Union[T, Row]]:
        """Insert several rows inside one transaction."""
        records = list(records)
        if not records:
            raise ValueError("create_many requires at least one record.")
        created = []
        async with self.transaction(logger):
            for record in records:
                created.append(await self.create(record, logger, sanitize_fields))
        return created

    async def _update_rows(self, ids: List[Any], row: Row, logger: LoggerAdapter) -> int:
        row = {k: v for k, v in row.items() if k != self.id_column}
        if not row:
            raise ValueError(f"No columns to update in '{self.table}'.")
        sql = self._executor.prepare(
            "UPDATE ?t SET ?A WHERE ?c IN (?a)", self.table, row, self.id_column, ids
        )
        affected = await self._executor.execute(sql, logger)
        logger.info(f"Updated {affected} row(s) in '{self.table}'.")
        return affected

    async def _full_row(self, data: Any, logger: LoggerAdapter, sanitize: bool) -> Row:
        row = await self._prepare_data(data, logger, sanitize)
        return {**await self.create_empty_record(logger), **row}

    @staticmethod
    def _require_ids(ids: Iterable[Any]) -> List[Any]:
        ids = list(ids)
        if not ids:
            raise ValueError("At least one id is required.")
        return ids

    async def update(
        self, id: Any, data: Any, logger: LoggerAdapter, sanitize_fields: bool = False
    ) -> Optional[Union[T, Row]]:
        """
        Replace a row: columns missing from ``data`` are reset to the
        defaults of :meth:`create_empty_record`.

        Returns:
            The updated row, or None if no row has that id.
        """
        await self._update_rows([id], await self._full_row(data, logger, sanitize_fields), logger)
        return await self.find_by_id(id, logger)

    async def update_many(
        self, ids: Iterable[Any], data: Any, logger: LoggerAdapter,
        sanitize_fields: bool = False,
    ) -> List[Union[T, Row]]:
        ids = self._require_ids(ids)
        await self._update_rows(ids, await self._full_row(data, logger, sanitize_fields), logger)
        return await self.find_by_ids(ids, logger)

    async def patch(
        self, id: Any, data: Any, logger: LoggerAdapter, sanitize_fields: bool = False
    ) -> Optional[Union[T, Row]]:
        """Change only the columns present in ``data``."""
        await self._update_rows([id], await self._prepare_data(data, logger, sanitize_fields), logger)
        return await self.find_by_id(id, logger)

    async def patch_many(
        self, ids: Iterable[Any], data: Any, logger: LoggerAdapter,
        sanitize_fields: bool = False,
    ) -> List[Union[T, Row]]:
        ids = self._require_ids(ids)
        await self._update_rows(ids, await self._prepare_data(data, logger, sanitize_fields), logger)
        return await self.find_by_ids(ids, logger)

    async def delete(self, id: Any, logger: LoggerAdapter) -> int:
        return await self.delete_many([id], logger)

    async def delete_many(self, ids: Iterable[Any], logger: LoggerAdapter) -> int:
        """Delete rows by id and return the number of deleted rows."""
        ids = self._require_ids(ids)
        sql = self._executor.prepare(
            "DELETE FROM ?t WHERE ?c IN (?a)", self.table, self.id_column, ids
        )
        affected = await self._executor.execute(sql, logger)
        logger.info(f"Deleted {affected} row(s) from '{self.table}'.")
        return affected

    async def create_empty_record(self, logger: LoggerAdapter) -> Row:
        """A row of column defaults derived from the table schema."""
        return build_empty_record(await self._executor.describe(self.table, logger))

    # --- Transactions ---

    async def begin_transaction(self, logger: LoggerAdapter) -> bool:
        return await self._executor.begin_transaction(logger)

    async def commit(self, logger: LoggerAdapter) -> bool:
        return await self._executor.commit(logger)

    async def rollback(self, logger: LoggerAdapter) -> bool:
        return await self._executor.rollback(logger)

    @asynccontextmanager
    async def transaction(self, logger: LoggerAdapter) -> AsyncGenerator["Repository[T]", None]:
        """Commit on success, roll back and re-raise on error."""
        await self.begin_transaction(logger)
        try:
            yield self
        except BaseException:
            logger.warning(f"Rolling back transaction on '{self.table}'.")
            await self.rollback(logger)
            raise
        await self.commit(logger)


def _coerce_int(value: Union[int, str, None], default: int) -> int:
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        return default
