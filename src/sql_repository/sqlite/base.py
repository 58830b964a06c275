# src/sql_repository/sqlite/base.py
from logging import LoggerAdapter
from typing import Any, Dict, List, Optional

import aiosqlite

from ..base.exceptions import KeyAlreadyExistsException
from ..base.interfaces import StatementExecutor
from ..base.records import ColumnInfo, ColumnType
from ..base.template import SQLITE


def _row_to_dict(row: aiosqlite.Row) -> Dict[str, Any]:
    return {key: row[key] for key in row.keys()}


def _unquote_default(value: Optional[str]) -> Optional[str]:
    """PRAGMA table_info reports defaults as SQL text (``'draft'``, ``0``)."""
    if value is None:
        return None
    value = str(value).strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1].replace(value[0] * 2, value[0])
    return value


class SQLiteExecutor(StatementExecutor):
    """
    Statement executor using aiosqlite.

    Expects an open `aiosqlite.Connection`. Writes issued outside a
    transaction are committed immediately; inside one they are committed by
    the outermost `commit`.

    The connection is the only one, so an open transaction covers every task
    sharing this executor. Give concurrent tasks their own connection and
    executor when their writes must stay out of another task's transaction.
    """

    def __init__(self, db_connection: aiosqlite.Connection):
        """
        Args:
            db_connection: An active aiosqlite.Connection object managed externally.
        """
        if not isinstance(db_connection, aiosqlite.Connection):
            raise TypeError(
                "db_connection must be an instance of aiosqlite.Connection"
            )
        super().__init__(SQLITE)
        self._conn = db_connection
        # Ensure connection uses dict-like rows for convenience
        self._conn.row_factory = aiosqlite.Row
        self._last_insert_id: Any = None

    @property
    def last_insert_id(self) -> Any:
        return self._last_insert_id

    async def execute(self, sql: str, logger: LoggerAdapter) -> int:
        logger.debug(f"Executing statement: {sql}")
        try:
            async with self._conn.execute(sql) as cursor:
                affected = cursor.rowcount
                self._last_insert_id = cursor.lastrowid
            if not self.in_transaction:
                await self._conn.commit()
            return affected
        except aiosqlite.Error as e:
            if not self.in_transaction:
                # discard the implicit transaction opened by the failed write
                await self._conn.rollback()
            self._handle_db_error(e, f"executing '{sql}'")
            raise

    async def fetch_all(self, sql: str, logger: LoggerAdapter) -> List[Dict[str, Any]]:
        logger.debug(f"Executing query: {sql}")
        try:
            async with self._conn.execute(sql) as cursor:
                rows = await cursor.fetchall()
            return [_row_to_dict(row) for row in rows]
        except aiosqlite.Error as e:
            self._handle_db_error(e, f"querying '{sql}'")
            raise

    async def fetch_one(self, sql: str, logger: LoggerAdapter) -> Optional[Dict[str, Any]]:
        logger.debug(f"Executing single-row query: {sql}")
        try:
            async with self._conn.execute(sql) as cursor:
                row = await cursor.fetchone()
            return None if row is None else _row_to_dict(row)
        except aiosqlite.Error as e:
            self._handle_db_error(e, f"querying '{sql}'")
            raise

    async def describe(self, table: str, logger: LoggerAdapter) -> List[ColumnInfo]:
        rows = await self.fetch_all(self.prepare("PRAGMA table_info(?t)", table), logger)
        if not rows:
            logger.warning(f"Table '{table}' has no columns or does not exist.")
        return [
            ColumnInfo(
                name=row["name"],
                column_type=ColumnType.from_sql_type(row["type"]),
                sql_type=row["type"] or "",
                # INTEGER PRIMARY KEY columns report notnull = 0
                nullable=not row["notnull"] and not row["pk"],
                default=_unquote_default(row["dflt_value"]),
                primary_key=row["pk"] > 0,
            )
            for row in rows
        ]

    # --- Transactions ---

    async def _execute_raw(self, sql: str) -> None:
        await self._conn.execute(sql)

    async def _begin(self) -> None:
        await self._conn.execute("BEGIN")

    async def _commit(self) -> None:
        await self._conn.commit()

    async def _rollback(self) -> None:
        await self._conn.rollback()

    def _handle_db_error(self, error: Exception, context: str = "") -> None:
        """Maps unique violations to KeyAlreadyExistsException, logs the rest."""
        log_message = f"Error during {context}: {error}"
        if isinstance(error, aiosqlite.IntegrityError) and "UNIQUE" in str(error):
            self._logger.warning(log_message)
            raise KeyAlreadyExistsException(
                f"Unique constraint violated during {context}. Detail: {error}"
            ) from error
        self._logger.error(log_message, exc_info=True)
