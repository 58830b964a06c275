# src/sql_repository/__init__.py

"""
SQL Repository Library Initialization.

This package provides table repositories whose queries are refined through
immutable, chainable calls (filters, ordering, pagination, distinct) and
compiled to a single SELECT or COUNT statement, executed asynchronously
through SQLite or MySQL statement executors.

It initializes a logger with a NullHandler and makes the repository façade,
the query composition core, exceptions, and executors available at the top
level.
"""

import logging

# --------------------------------------------------------------------------
# Logging Setup
# --------------------------------------------------------------------------
# Library logs are discarded unless the consuming application configures
# logging.
logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())
logger.propagate = False  # Prevent log messages from propagating to the root logger

# --------------------------------------------------------------------------
# Core Interface and Exception Exports
# --------------------------------------------------------------------------
from .base.interfaces import Repository, StatementExecutor
from .base.exceptions import (
    KeyAlreadyExistsException,
    RepositoryConfigurationError,
    TemplateError,
    TransactionError,
)

# --------------------------------------------------------------------------
# Query Composition Exports
# --------------------------------------------------------------------------
# QueryState holds the clause fragments of one query derivation,
# FilterSpec declares how a named filter maps onto SQL, and the translator
# and compiler turn both into SQL text.
from .base.query_state import QueryState
from .base.filters import (
    FilterFragments,
    FilterSpec,
    FilterTranslator,
    Predicate,
    StaticTemplate,
)
from .base.compiler import QueryCompiler
from .base.template import MYSQL, SQLITE, SqlDialect, render_template
from .base.records import ColumnInfo, ColumnType

# --------------------------------------------------------------------------
# Executor Implementation Exports
# --------------------------------------------------------------------------
# Users can import them like: from sql_repository import SQLiteExecutor
from .sqlite.base import SQLiteExecutor
from .mysql.base import MySQLExecutor

# --------------------------------------------------------------------------
# __all__ Definition
# --------------------------------------------------------------------------
__all__ = [
    # Core
    "Repository",
    "StatementExecutor",
    # Exceptions
    "KeyAlreadyExistsException",
    "RepositoryConfigurationError",
    "TemplateError",
    "TransactionError",
    # Query composition
    "QueryState",
    "FilterSpec",
    "FilterFragments",
    "FilterTranslator",
    "Predicate",
    "StaticTemplate",
    "QueryCompiler",
    "SqlDialect",
    "SQLITE",
    "MYSQL",
    "render_template",
    "ColumnInfo",
    "ColumnType",
    # Implementations
    "SQLiteExecutor",
    "MySQLExecutor",
    # Logging
    "logger",
]
