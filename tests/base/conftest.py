from functools import partial

import pytest

from sql_repository.base.compiler import QueryCompiler
from sql_repository.base.filters import FilterSpec, FilterTranslator
from sql_repository.base.template import SQLITE, render_template

BRAND_JOIN = "LEFT JOIN brands b ON b.id = p.brand_id"


@pytest.fixture
def render():
    """Template renderer with SQLite quoting, as an executor's ``prepare``."""
    return partial(render_template, SQLITE)


@pytest.fixture
def translator(render) -> FilterTranslator:
    return FilterTranslator("p", render)


@pytest.fixture
def compiler() -> QueryCompiler:
    return QueryCompiler("products", "p")


@pytest.fixture
def specs():
    return {
        "status": "AND p.status = ?s",
        "category_id": FilterSpec(where="AND p.category_id IN (?a)"),
        "brand": FilterSpec(
            where="AND b.name = ?s", joins=BRAND_JOIN, select="b.name AS brand_name"
        ),
        "brand_id": FilterSpec(
            where="AND b.id = ?i", joins=BRAND_JOIN, select="b.name AS brand_name"
        ),
        "min_price": lambda value: f"AND p.price >= {int(value)}",
        "q": FilterSpec(search=["name", "id", "sku"]),
    }
