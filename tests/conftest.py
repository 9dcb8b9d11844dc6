"""テスト共通のフィクスチャ."""
from datetime import datetime

import pytest

from gummy_store.config import StoreConfig
from gummy_store.database import ObjectStore
from gummy_store.kvstore import KeyValueStorage
from gummy_store.models import CustomerInfo, Product, ShippingAddress
from gummy_store.services import CartService, OrderService, ProductService, ReviewService


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'gummy-store-test.db'}"


@pytest.fixture
def store(database_url):
    with ObjectStore(database_url) as s:
        yield s


@pytest.fixture
def products(store) -> ProductService:
    return ProductService(store)


@pytest.fixture
def orders(store) -> OrderService:
    return OrderService(store)


@pytest.fixture
def carts(store) -> CartService:
    return CartService(store)


@pytest.fixture
def reviews(store) -> ReviewService:
    return ReviewService(store)


@pytest.fixture
def storage(tmp_path) -> KeyValueStorage:
    return KeyValueStorage(tmp_path / "local-storage.json")


@pytest.fixture
def config(database_url, tmp_path) -> StoreConfig:
    return StoreConfig(
        database_url=database_url,
        local_storage_path=str(tmp_path / "local-storage.json"),
    )


def make_product(product_id: str, price: int, stock: int = 10, category: str = "gummy", name: str = "") -> Product:
    timestamp = datetime(2026, 1, 1, 12, 0, 0)
    return Product(
        id=product_id,
        name=name or f"商品 {product_id}",
        description=f"{product_id} の説明",
        price=price,
        category=category,
        image_url=f"/images/{product_id}.jpg",
        stock=stock,
        created_at=timestamp,
        updated_at=timestamp,
    )


@pytest.fixture
def two_products(products):
    """価格150円の A と 280円の B."""
    a = products.add(make_product("gummy-a", 150, name="コーラグミ"))
    b = products.add(make_product("gummy-b", 280, name="フルーツグミミックス"))
    return a, b


@pytest.fixture
def customer() -> CustomerInfo:
    return CustomerInfo(
        name="山田花子",
        email="hanako@example.com",
        phone="090-1111-2222",
        address=ShippingAddress(
            postal_code="150-0001",
            prefecture="東京都",
            city="渋谷区",
            address="神宮前1-2-3",
        ),
    )
