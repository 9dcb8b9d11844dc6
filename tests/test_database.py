"""ObjectStore とスキーマバージョン管理のテスト."""
from datetime import datetime

import pytest
from sqlalchemy import create_engine, inspect

from gummy_store.database import ObjectStore
from gummy_store.errors import DuplicateKeyError, StoreError, StoreOpenError, ValidationError
from gummy_store.schema import load_schema, parse_schema

NOW = datetime(2026, 10, 1, 9, 30, 0)

ITEMS_V1 = """
version: 1
tables:
  Item:
    table_name: items
    columns:
      id: {type: String, length: 50, primary_key: true}
      name: {type: String, length: 100, nullable: false}
"""

# v2 で既存テーブルにカラムとインデックスを追加
ITEMS_V2 = """
version: 2
tables:
  Item:
    table_name: items
    columns:
      id: {type: String, length: 50, primary_key: true}
      name: {type: String, length: 100, nullable: false}
      stock: {type: Integer, nullable: false, default: 0, index: true}
      memo: {type: Text, nullable: false, default: ''}
      points: {type: Integer, default: 5}
"""


def product_record(product_id: str, category: str = "gummy", price: int = 100) -> dict:
    return {
        "id": product_id,
        "name": f"name-{product_id}",
        "description": "説明",
        "price": price,
        "category": category,
        "image_url": "",
        "stock": 5,
        "created_at": NOW,
        "updated_at": NOW,
    }


def review_record(review_id: str, user_id: str, product_id: str, rating: int = 5) -> dict:
    return {
        "id": review_id,
        "product_id": product_id,
        "user_id": user_id,
        "user_name": "テスト",
        "rating": rating,
        "comment": "",
        "created_at": NOW,
        "updated_at": NOW,
    }


class TestCrud:
    """基本的な CRUD のテスト."""

    def test_add_and_get(self, store) -> None:
        store.add("products", product_record("p-1"))
        record = store.get("products", "p-1")
        assert record["name"] == "name-p-1"
        assert record["created_at"] == NOW
        assert "seq" not in record

    def test_get_missing_returns_none(self, store) -> None:
        assert store.get("products", "nope") is None

    def test_get_all_keeps_insertion_order(self, store) -> None:
        for key in ["p-3", "p-1", "p-2"]:
            store.add("products", product_record(key))
        assert [r["id"] for r in store.get_all("products")] == ["p-3", "p-1", "p-2"]

    def test_add_duplicate_key_fails(self, store) -> None:
        store.add("products", product_record("p-1"))
        with pytest.raises(DuplicateKeyError):
            store.add("products", product_record("p-1"))
        assert store.count("products") == 1

    def test_put_upserts_and_keeps_position(self, store) -> None:
        store.add("products", product_record("p-1"))
        store.add("products", product_record("p-2"))
        store.put("products", {**product_record("p-1"), "price": 999})
        store.put("products", product_record("p-3"))

        records = store.get_all("products")
        assert [r["id"] for r in records] == ["p-1", "p-2", "p-3"]
        assert records[0]["price"] == 999

    def test_delete_and_delete_missing(self, store) -> None:
        store.add("products", product_record("p-1"))
        store.delete("products", "p-1")
        store.delete("products", "p-1")
        assert store.get("products", "p-1") is None

    def test_clear(self, store) -> None:
        store.add_many("products", [product_record("p-1"), product_record("p-2")])
        store.clear("products")
        assert store.get_all("products") == []

    def test_json_columns_round_trip(self, store) -> None:
        address = {"postal_code": "150-0001", "prefecture": "東京都", "city": "渋谷区", "address": "1-2-3"}
        items = [{"product_id": "p-1", "product_name": "グミ", "quantity": 2, "price": 150}]
        store.add("orders", {
            "id": "order-1",
            "customer_name": "山田",
            "customer_email": "y@example.com",
            "customer_phone": "090",
            "customer_address": address,
            "items": items,
            "total_amount": 300,
            "status": "pending",
            "created_at": NOW,
            "updated_at": NOW,
        })
        record = store.get("orders", "order-1")
        assert record["customer_address"] == address
        assert record["items"] == items


class TestIndexes:
    """インデックス検索のテスト."""

    def test_get_all_from_index(self, store) -> None:
        store.add("products", product_record("g-1", "gummy"))
        store.add("products", product_record("c-1", "candy"))
        store.add("products", product_record("g-2", "gummy"))
        gummies = store.get_all_from_index("products", "category", "gummy")
        assert [r["id"] for r in gummies] == ["g-1", "g-2"]

    def test_unknown_index(self, store) -> None:
        with pytest.raises(ValidationError):
            store.get_all_from_index("products", "price", 100)

    def test_composite_index_lookup(self, store) -> None:
        store.add("reviews", review_record("r-1", "u-1", "p-1"))
        store.add("reviews", review_record("r-2", "u-2", "p-1"))
        found = store.get_all_from_index("reviews", "user_product", ("u-2", "p-1"))
        assert [r["id"] for r in found] == ["r-2"]

    def test_unique_index_rejects_second_review(self, store) -> None:
        store.add("reviews", review_record("r-1", "u-1", "p-1"))
        with pytest.raises(DuplicateKeyError):
            store.add("reviews", review_record("r-2", "u-1", "p-1"))


class TestValidation:
    """レコード検証のテスト."""

    def test_unknown_store(self, store) -> None:
        with pytest.raises(ValidationError):
            store.get_all("wishlist")

    def test_unknown_field(self, store) -> None:
        with pytest.raises(ValidationError) as excinfo:
            store.add("products", {**product_record("p-1"), "color": "red"})
        assert "color" in excinfo.value.errors

    def test_missing_key(self, store) -> None:
        record = product_record("p-1")
        del record["id"]
        with pytest.raises(ValidationError):
            store.add("products", record)

    def test_missing_required_field(self, store) -> None:
        record = product_record("p-1")
        del record["price"]
        with pytest.raises(ValidationError) as excinfo:
            store.add("products", record)
        assert "price" in excinfo.value.errors

    def test_closed_store(self, database_url) -> None:
        store = ObjectStore(database_url)
        with pytest.raises(StoreError):
            store.get_all("products")


class TestSchemaVersion:
    """スキーマバージョンとマイグレーションのテスト."""

    def test_new_database_records_current_version(self, store) -> None:
        assert store.version == 2

    def test_upgrade_from_version_one_adds_reviews(self, database_url) -> None:
        with ObjectStore(database_url, schema=load_schema(version=1)) as old:
            old.add("products", product_record("p-1"))
            assert old.version == 1

        with ObjectStore(database_url) as store:
            assert store.version == 2
            assert store.get("products", "p-1") is not None
            store.add("reviews", review_record("r-1", "u-1", "p-1"))
            assert len(store.get_all_from_index("reviews", "product_id", "p-1")) == 1

    def test_reopen_same_version_is_noop(self, database_url) -> None:
        with ObjectStore(database_url) as store:
            store.add("products", product_record("p-1"))
        with ObjectStore(database_url) as store:
            assert store.version == 2
            assert store.count("products") == 1

    def test_newer_database_is_blocked(self, database_url) -> None:
        with ObjectStore(database_url):
            pass
        old = ObjectStore(database_url, schema=load_schema(version=1))
        with pytest.raises(StoreOpenError):
            old.open()
        assert not old.is_open

    def test_upgrade_adds_columns_with_defaults_and_indexes(self, database_url) -> None:
        with ObjectStore(database_url, schema=parse_schema(ITEMS_V1)) as old:
            old.add("items", {"id": "i-1", "name": "コーラグミ"})

        with ObjectStore(database_url, schema=parse_schema(ITEMS_V2)) as store:
            assert store.version == 2
            record = store.get("items", "i-1")
            assert record["stock"] == 0
            assert record["memo"] == ""
            assert record["points"] == 5
            store.add("items", {"id": "i-2", "name": "ソーダグミ", "stock": 3})
            assert [r["id"] for r in store.get_all_from_index("items", "stock", 3)] == ["i-2"]

        engine = create_engine(database_url)
        try:
            inspector = inspect(engine)
            columns = {c["name"] for c in inspector.get_columns("items")}
            indexes = {ix["name"] for ix in inspector.get_indexes("items")}
        finally:
            engine.dispose()
        assert {"stock", "memo", "points"} <= columns
        assert "ix_items_stock" in indexes

    def test_unusable_location(self, tmp_path) -> None:
        url = f"sqlite:///{tmp_path / 'missing-dir' / 'store.db'}"
        with pytest.raises(StoreOpenError):
            ObjectStore(url).open()
