# src/sql_repository/mysql/base.py
import asyncio
from contextlib import asynccontextmanager
from logging import LoggerAdapter
from typing import Any, AsyncGenerator, Dict, List, Optional

# --- aiomysql Driver Import ---
import aiomysql
from aiomysql import DictCursor

from ..base.exceptions import KeyAlreadyExistsException, TransactionError
from ..base.interfaces import StatementExecutor
from ..base.records import ColumnInfo, ColumnType
from ..base.template import MYSQL

DUPLICATE_ENTRY_ERRNO = 1062


class MySQLExecutor(StatementExecutor):
    """
    Statement executor using an aiomysql pool.

    A connection is acquired per statement and released afterwards. While a
    transaction is open, one connection is pinned to the task that began it
    and that task's statements run on it until the outermost commit or
    rollback releases it. Statements from other tasks sharing the executor
    keep using their own pooled connections and are committed immediately;
    only the owning task may nest, commit or roll back the transaction.
    """

    def __init__(self, db_pool: aiomysql.Pool):
        """
        Args:
            db_pool: An active aiomysql.Pool object.
        """
        if not isinstance(db_pool, aiomysql.Pool):
            raise TypeError("db_pool must be an instance of aiomysql.Pool")
        super().__init__(MYSQL)
        self._pool = db_pool
        self._tx_conn: Optional[aiomysql.Connection] = None
        self._tx_owner: Optional[asyncio.Task] = None
        self._last_insert_id: Any = None

    @property
    def last_insert_id(self) -> Any:
        return self._last_insert_id

    # --- Connection Management ---
    def _owns_transaction(self) -> bool:
        return self._tx_conn is not None and asyncio.current_task() is self._tx_owner

    @asynccontextmanager
    async def _connection(self) -> AsyncGenerator[aiomysql.Connection, None]:
        """The pinned transaction connection, or a pooled one for one statement."""
        if self._owns_transaction():
            yield self._tx_conn
            return
        conn = await self._pool.acquire()
        try:
            yield conn
        finally:
            self._pool.release(conn)

    async def execute(self, sql: str, logger: LoggerAdapter) -> int:
        logger.debug(f"Executing statement: {sql}")
        pinned = self._owns_transaction()
        try:
            async with self._connection() as conn:
                async with conn.cursor() as cursor:
                    affected = await cursor.execute(sql)
                    self._last_insert_id = cursor.lastrowid
                if not pinned:
                    await conn.commit()
            return affected
        except aiomysql.Error as e:
            self._handle_db_error(e, f"executing '{sql}'")
            raise

    async def fetch_all(self, sql: str, logger: LoggerAdapter) -> List[Dict[str, Any]]:
        logger.debug(f"Executing query: {sql}")
        try:
            async with self._connection() as conn:
                async with conn.cursor(DictCursor) as cursor:
                    await cursor.execute(sql)
                    rows = await cursor.fetchall()
            return [dict(row) for row in rows]
        except aiomysql.Error as e:
            self._handle_db_error(e, f"querying '{sql}'")
            raise

    async def describe(self, table: str, logger: LoggerAdapter) -> List[ColumnInfo]:
        rows = await self.fetch_all(self.prepare("SHOW COLUMNS FROM ?t", table), logger)
        return [
            ColumnInfo(
                name=row["Field"],
                column_type=ColumnType.from_sql_type(row["Type"]),
                sql_type=row["Type"],
                nullable=row["Null"] == "YES",
                default=row["Default"],
                primary_key=row["Key"] == "PRI",
            )
            for row in rows
        ]

    # --- Transactions ---

    async def _execute_raw(self, sql: str) -> None:
        async with self._connection() as conn:
            async with conn.cursor() as cursor:
                await cursor.execute(sql)

    def _check_owner(self, action: str) -> None:
        if self._tx_conn is not None and not self._owns_transaction():
            raise TransactionError(
                f"Cannot {action}: the open transaction belongs to another task."
            )

    async def begin_transaction(self, logger: LoggerAdapter) -> bool:
        self._check_owner("begin a transaction")
        return await super().begin_transaction(logger)

    async def commit(self, logger: LoggerAdapter) -> bool:
        self._check_owner("commit")
        return await super().commit(logger)

    async def rollback(self, logger: LoggerAdapter) -> bool:
        self._check_owner("roll back")
        return await super().rollback(logger)

    async def _begin(self) -> None:
        conn = await self._pool.acquire()
        try:
            await conn.begin()
        except Exception:
            self._pool.release(conn)
            raise
        self._tx_conn = conn
        self._tx_owner = asyncio.current_task()

    async def _end(self, commit: bool) -> None:
        conn, self._tx_conn = self._tx_conn, None
        self._tx_owner = None
        if conn is None:
            return
        try:
            if commit:
                await conn.commit()
            else:
                await conn.rollback()
        finally:
            self._pool.release(conn)

    async def _commit(self) -> None:
        await self._end(commit=True)

    async def _rollback(self) -> None:
        await self._end(commit=False)

    def _handle_db_error(self, error: Exception, context: str = "") -> None:
        """Maps duplicate-entry errors (1062) to KeyAlreadyExistsException, logs the rest."""
        log_message = f"Error during {context}: {error}"
        errno = error.args[0] if error.args else None
        if isinstance(error, aiomysql.IntegrityError) and errno == DUPLICATE_ENTRY_ERRNO:
            self._logger.warning(log_message)
            raise KeyAlreadyExistsException(
                f"Duplicate entry during {context}. Detail: {error}"
            ) from error
        self._logger.error(log_message, exc_info=True)
