# tests/test_basic_crud.py

import pytest
from pydantic import BaseModel

from sql_repository.base.exceptions import KeyAlreadyExistsException

from tests.conftest import Product


class NewProduct(BaseModel):
    name: str
    sku: str
    price: float


# --- Create ---


async def test_create_returns_stored_row(products, logger):
    created = await products.create({"name": "Yellow Scarf", "sku": "SKU-5", "price": 7.5}, logger)
    assert created["id"] == 5
    assert created["name"] == "Yellow Scarf"
    assert created["status"] == "active"
    assert created["price"] == 7.5
    assert await products.count(logger) == 5


async def test_create_from_model(products, logger):
    created = await products.create(NewProduct(name="Scarf", sku="SKU-M", price=1.0), logger)
    assert created["sku"] == "SKU-M"


async def test_create_duplicate_key_raises(products, logger):
    with pytest.raises(KeyAlreadyExistsException):
        await products.create({"name": "Copy", "sku": "SKU-1"}, logger)
    # the failed insert leaves the table usable
    assert await products.count(logger) == 4
    await products.create({"name": "Fresh", "sku": "SKU-6"}, logger)
    assert await products.count(logger) == 5


async def test_create_with_sanitized_fields(products, logger):
    created = await products.create(
        {"name": "Scarf", "sku": "SKU-7", "colour": "red"}, logger, sanitize_fields=True
    )
    assert "colour" not in created
    assert created["name"] == "Scarf"


async def test_create_many(products, logger):
    created = await products.create_many(
        [{"name": "A", "sku": "SKU-A"}, {"name": "B", "sku": "SKU-B"}], logger
    )
    assert [row["sku"] for row in created] == ["SKU-A", "SKU-B"]
    assert await products.count(logger) == 6


async def test_create_many_is_atomic(products, logger):
    with pytest.raises(KeyAlreadyExistsException):
        await products.create_many(
            [{"name": "A", "sku": "SKU-A"}, {"name": "Dup", "sku": "SKU-1"}], logger
        )
    assert await products.count(logger) == 4
    assert await products.find_one_by({"sku": "SKU-A"}, logger) is None


# --- Read ---


async def test_find_by_id(products, logger):
    row = await products.find_by_id(2, logger)
    assert row["name"] == "Blue Shirt"
    assert await products.find_by_id(99, logger) is None


async def test_find_by_ids_and_criteria(products, logger):
    assert [r["id"] for r in await products.find_by_ids([4, 2], logger)] == [2, 4]
    assert [r["id"] for r in await products.find_by({"category_id": 1}, logger)] == [1, 3]
    assert [r["id"] for r in await products.find_by({"brand_id": None}, logger)] == [4]
    assert [r["id"] for r in await products.find_by({"id": [1, 4]}, logger)] == [1, 4]
    assert (await products.find_one_by({"sku": "SKU-2"}, logger))["id"] == 2


async def test_find_ignores_refinements(products, logger):
    archived = products.with_filter({"status": "archived"})
    assert (await archived.find_by_id(1, logger))["status"] == "active"


async def test_model_materialization(product_models, logger):
    product = await product_models.find_by_id(1, logger)
    assert isinstance(product, Product)
    assert product.sku == "SKU-1"
    assert product.in_stock is True

    listed = await product_models.with_filter({"status": "active"}).get(logger)
    assert all(isinstance(p, Product) for p in listed)
    assert [p.id for p in listed] == [1, 2, 4]


# --- Update / Patch ---


async def test_update_resets_missing_columns(products, logger):
    updated = await products.update(3, {"name": "Red Cap", "sku": "SKU-3"}, logger)
    assert updated["name"] == "Red Cap"
    assert updated["status"] == "active"
    assert updated["category_id"] is None
    assert updated["price"] == 0.0


async def test_patch_changes_only_given_columns(products, logger):
    patched = await products.patch(3, {"status": "active"}, logger)
    assert patched["status"] == "active"
    assert patched["name"] == "Red Hat"
    assert patched["price"] == 5.0
    assert patched["category_id"] == 1


async def test_patch_many(products, logger):
    patched = await products.patch_many([1, 2], {"status": "archived"}, logger)
    assert [p["status"] for p in patched] == ["archived", "archived"]
    assert await products.with_filter({"status": "archived"}).count(logger) == 3


async def test_update_many(products, logger):
    updated = await products.update_many(
        [4], {"name": "Sock", "sku": "SKU-4", "status": "sale"}, logger
    )
    assert [(p["id"], p["status"], p["price"]) for p in updated] == [(4, "sale", 0.0)]


async def test_update_many_resetting_unique_column_conflicts(products, logger):
    # both rows would get the empty sku
    with pytest.raises(KeyAlreadyExistsException):
        await products.update_many([1, 2], {"name": "Shirt"}, logger)


async def test_update_duplicate_key_raises(products, logger):
    with pytest.raises(KeyAlreadyExistsException):
        await products.patch(2, {"sku": "SKU-1"}, logger)


async def test_patch_of_missing_row_returns_none(products, logger):
    assert await products.patch(99, {"status": "archived"}, logger) is None


# --- Delete ---


async def test_delete(products, logger):
    assert await products.delete(4, logger) == 1
    assert await products.find_by_id(4, logger) is None
    assert await products.delete(4, logger) == 0


async def test_delete_many(products, logger):
    assert await products.delete_many([1, 2, 99], logger) == 2
    assert [r["id"] for r in await products.get(logger)] == [3, 4]


# --- Schema ---


async def test_create_empty_record(products, logger):
    assert await products.create_empty_record(logger) == {
        "name": "",
        "sku": "",
        "status": "active",
        "category_id": None,
        "brand_id": None,
        "price": 0.0,
        "in_stock": True,
    }


async def test_describe_reports_primary_key(executor, logger):
    columns = {c.name: c for c in await executor.describe("products", logger)}
    assert columns["id"].primary_key
    assert not columns["name"].nullable
    assert columns["category_id"].nullable
    assert columns["created_at"].auto_timestamp
