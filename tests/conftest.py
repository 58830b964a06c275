# tests/conftest.py
import logging
import os
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, List, Optional

import aiomysql
import aiosqlite
import pytest
import pytest_asyncio
from pydantic import BaseModel

from sql_repository.base.filters import FilterSpec
from sql_repository.base.interfaces import Repository, StatementExecutor
from sql_repository.base.records import ColumnInfo
from sql_repository.base.template import SQLITE, SqlDialect
from sql_repository.mysql.base import MySQLExecutor
from sql_repository.sqlite.base import SQLiteExecutor

# Silence verbose loggers
logging.getLogger("aiomysql").setLevel(logging.WARNING)


# --- Constants ---
# MySQL connection details; MySQL tests only run when TEST_MYSQL_HOST is set
MYSQL_HOST = os.getenv("TEST_MYSQL_HOST")
MYSQL_PORT = int(os.getenv("TEST_MYSQL_PORT", "3306"))
MYSQL_USER = os.getenv("TEST_MYSQL_USER", "testuser")
MYSQL_PASSWORD = os.getenv("TEST_MYSQL_PASSWORD", "password")

AVAILABLE_IMPLEMENTATIONS = ["sqlite"]
if MYSQL_HOST:
    AVAILABLE_IMPLEMENTATIONS.append("mysql")


# --- Schemas ---
SQLITE_SCHEMA = [
    """
    CREATE TABLE brands (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE products (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        sku TEXT NOT NULL UNIQUE,
        status TEXT NOT NULL DEFAULT 'active',
        category_id INTEGER,
        brand_id INTEGER,
        price REAL NOT NULL DEFAULT 0,
        in_stock BOOLEAN NOT NULL DEFAULT 1,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
]

MYSQL_SCHEMA = [
    """
    CREATE TABLE brands (
        id INT AUTO_INCREMENT PRIMARY KEY,
        name VARCHAR(64) NOT NULL
    )
    """,
    """
    CREATE TABLE products (
        id INT AUTO_INCREMENT PRIMARY KEY,
        name VARCHAR(128) NOT NULL,
        sku VARCHAR(64) NOT NULL UNIQUE,
        status VARCHAR(32) NOT NULL DEFAULT 'active',
        category_id INT NULL,
        brand_id INT NULL,
        price DOUBLE NOT NULL DEFAULT 0,
        in_stock TINYINT(1) NOT NULL DEFAULT 1,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
]

SEED_BRANDS = [(1, "Acme"), (2, "Globex")]
SEED_PRODUCTS = [
    # id, name, sku, status, category_id, brand_id, price
    (1, "Red Shirt", "SKU-1", "active", 1, 1, 10.0),
    (2, "Blue Shirt", "SKU-2", "active", 2, 2, 12.0),
    (3, "Red Hat", "SKU-3", "archived", 1, 1, 5.0),
    (4, "Green Sock", "SKU-4", "active", 3, None, 2.0),
]


def seed_statements(executor: StatementExecutor) -> List[str]:
    statements = [
        executor.prepare("INSERT INTO brands (id, name) VALUES (?a)", list(brand))
        for brand in SEED_BRANDS
    ]
    statements += [
        executor.prepare(
            "INSERT INTO products (id, name, sku, status, category_id, brand_id, price) "
            "VALUES (?a)",
            list(product),
        )
        for product in SEED_PRODUCTS
    ]
    return statements


# --- Logger Fixture ---


@pytest.fixture(scope="session")
def logger():
    """Create a test logger."""
    _logger = logging.getLogger("test_repo_logger")
    if not _logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
        handler.setFormatter(formatter)
        handler.setLevel(logging.DEBUG)
        _logger.addHandler(handler)
        _logger.setLevel(logging.DEBUG)
        _logger.propagate = False
    return logging.LoggerAdapter(_logger, {})


# --- Test Repositories ---


class Product(BaseModel):
    id: int
    name: str
    sku: str
    status: str
    price: float
    in_stock: bool


class ProductRepository(Repository):
    table = "products"
    alias = "p"
    filters = {
        "status": "AND p.status = ?s",
        "category_id": "AND p.category_id IN (?a)",
        "brand": FilterSpec(
            where="AND b.name = ?s",
            joins="LEFT JOIN brands b ON b.id = p.brand_id",
            select="b.name AS brand_name",
        ),
        "brand_id": FilterSpec(
            where="AND b.id = ?i",
            joins="LEFT JOIN brands b ON b.id = p.brand_id",
        ),
        "min_price": lambda value: f"AND p.price >= {float(value)}",
        "in_stock": "AND p.in_stock = 1",
        "q": FilterSpec(search=["name", "id", "sku"]),
    }
    default_order = "p.id ASC"


class ProductModelRepository(ProductRepository):
    model = Product


# --- Executors ---


class RecordingExecutor(StatementExecutor):
    """Executor that records statements instead of running them."""

    def __init__(self, dialect: SqlDialect = SQLITE, rows: Optional[List[Dict[str, Any]]] = None):
        super().__init__(dialect)
        self.statements: List[str] = []
        self.rows = rows or []

    @property
    def last_insert_id(self) -> Any:
        return None

    async def execute(self, sql, logger) -> int:
        self.statements.append(sql)
        return 0

    async def fetch_all(self, sql, logger) -> List[Dict[str, Any]]:
        self.statements.append(sql)
        return list(self.rows)

    async def describe(self, table, logger) -> List[ColumnInfo]:
        return []

    async def _begin(self) -> None:
        self.statements.append("BEGIN")

    async def _commit(self) -> None:
        self.statements.append("COMMIT")

    async def _rollback(self) -> None:
        self.statements.append("ROLLBACK")

    async def _execute_raw(self, sql: str) -> None:
        self.statements.append(sql)


@pytest.fixture
def recording_executor() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture
def product_repo(recording_executor) -> ProductRepository:
    """A product repository that compiles but never touches a database."""
    return ProductRepository(recording_executor)


async def _create_tables(executor: StatementExecutor, schema: List[str], logger) -> StatementExecutor:
    for ddl in schema:
        await executor.execute(ddl, logger)
    for statement in seed_statements(executor):
        await executor.execute(statement, logger)
    return executor


@asynccontextmanager
async def sqlite_backend(logger) -> AsyncGenerator[SQLiteExecutor, None]:
    """In-memory SQLite database with the product tables."""
    conn = await aiosqlite.connect(":memory:")
    try:
        yield await _create_tables(SQLiteExecutor(conn), SQLITE_SCHEMA, logger)
    finally:
        await conn.close()


@asynccontextmanager
async def mysql_backend(logger) -> AsyncGenerator[MySQLExecutor, None]:
    """Temporary MySQL database with the product tables."""
    temp_db_name = f"test_db_{uuid.uuid4().hex}"
    admin_conn = await aiomysql.connect(
        host=MYSQL_HOST, port=MYSQL_PORT, user=MYSQL_USER,
        password=MYSQL_PASSWORD, autocommit=True,
    )
    pool = None
    try:
        async with admin_conn.cursor() as cursor:
            await cursor.execute(f"CREATE DATABASE `{temp_db_name}`")
        pool = await aiomysql.create_pool(
            host=MYSQL_HOST, port=MYSQL_PORT, user=MYSQL_USER,
            password=MYSQL_PASSWORD, db=temp_db_name,
        )
        yield await _create_tables(MySQLExecutor(pool), MYSQL_SCHEMA, logger)
    finally:
        if pool is not None:
            pool.close()
            await pool.wait_closed()
        async with admin_conn.cursor() as cursor:
            await cursor.execute(f"DROP DATABASE IF EXISTS `{temp_db_name}`")
        admin_conn.close()


# SQLite Fixture (Function Scoped)
@pytest_asyncio.fixture(scope="function")
async def sqlite_executor(logger):
    """Provides an executor on a seeded in-memory SQLite database."""
    async with sqlite_backend(logger) as executor:
        yield executor


@pytest_asyncio.fixture(scope="function", params=AVAILABLE_IMPLEMENTATIONS)
async def executor(request, logger):
    """Parametrized fixture yielding a seeded executor of each available backend."""
    impl_key = request.param
    if impl_key == "sqlite":
        backend = sqlite_backend(logger)
    elif impl_key == "mysql":
        backend = mysql_backend(logger)
    else:
        raise ValueError(f"Unknown executor implementation key: {impl_key}")
    async with backend as executor:
        yield executor


@pytest.fixture
def products(executor) -> ProductRepository:
    return ProductRepository(executor)


@pytest.fixture
def product_models(executor) -> ProductModelRepository:
    return ProductModelRepository(executor)
