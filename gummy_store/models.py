"""
ストアで扱うエンティティの定義。

各クラスは ObjectStore のレコード (dict) との相互変換 to_record / from_record を持ちます。
"""
import re
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import ValidationError

EMAIL_PATTERN = re.compile(r'\S+@\S+\.\S+')


def now() -> datetime:
    return datetime.now()


def epoch_millis() -> int:
    return int(time.time() * 1000)


def random_suffix(length: int = 9) -> str:
    return uuid.uuid4().hex[:length]


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        return datetime.fromisoformat(value)
    return now()


class Category(str, Enum):
    """商品カテゴリ。"""

    GUMMY = "gummy"
    CANDY = "candy"

    @property
    def label(self) -> str:
        return "グミ" if self is Category.GUMMY else "あめ"


class OrderStatus(str, Enum):
    """注文ステータス。"""

    PENDING = "pending"  # 保留中
    PROCESSING = "processing"  # 処理中
    SHIPPED = "shipped"  # 発送済み
    DELIVERED = "delivered"  # 配達完了
    CANCELLED = "cancelled"  # キャンセル

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]


_STATUS_LABELS = {
    OrderStatus.PENDING: "保留中",
    OrderStatus.PROCESSING: "処理中",
    OrderStatus.SHIPPED: "発送済み",
    OrderStatus.DELIVERED: "配達完了",
    OrderStatus.CANCELLED: "キャンセル",
}


@dataclass
class Product:
    id: str
    name: str
    price: int
    category: str
    description: str = ""
    image_url: str = ""
    stock: int = 0
    created_at: datetime = field(default_factory=now)
    updated_at: datetime = field(default_factory=now)

    def validate(self) -> None:
        """価格・在庫・必須項目を検証します。"""
        errors: Dict[str, str] = {}
        if not self.id:
            errors['id'] = "商品IDが必要です"
        if not self.name or not self.name.strip():
            errors['name'] = "商品名を入力してください"
        if not self.description or not self.description.strip():
            errors['description'] = "商品説明を入力してください"
        if not isinstance(self.price, int) or isinstance(self.price, bool) or self.price <= 0:
            errors['price'] = "価格は1円以上の整数で入力してください"
        if not isinstance(self.stock, int) or isinstance(self.stock, bool) or self.stock < 0:
            errors['stock'] = "在庫数は0以上の整数で入力してください"
        if self.category not in {c.value for c in Category}:
            errors['category'] = "カテゴリは gummy または candy を選択してください"
        if errors:
            raise ValidationError(errors)

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "category": self.category,
            "image_url": self.image_url,
            "stock": self.stock,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "Product":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            description=str(data.get("description") or ""),
            price=int(data.get("price", 0)),
            category=str(data.get("category", "")),
            image_url=str(data.get("image_url") or ""),
            stock=int(data.get("stock", 0)),
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
        )


@dataclass
class ShippingAddress:
    postal_code: str
    prefecture: str
    city: str
    address: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "postal_code": self.postal_code,
            "prefecture": self.prefecture,
            "city": self.city,
            "address": self.address,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ShippingAddress":
        return cls(
            postal_code=str(data.get("postal_code", "")),
            prefecture=str(data.get("prefecture", "")),
            city=str(data.get("city", "")),
            address=str(data.get("address", "")),
        )


@dataclass
class CustomerInfo:
    """チェックアウト時に入力される購入者情報。"""

    name: str
    email: str
    phone: str
    address: ShippingAddress

    def validate(self) -> None:
        errors: Dict[str, str] = {}
        if not self.name.strip():
            errors['name'] = "名前を入力してください"
        if not self.email.strip():
            errors['email'] = "メールアドレスを入力してください"
        elif not EMAIL_PATTERN.search(self.email):
            errors['email'] = "有効なメールアドレスを入力してください"
        if not self.phone.strip():
            errors['phone'] = "電話番号を入力してください"
        if not self.address.address.strip():
            errors['address'] = "住所を入力してください"
        if not self.address.postal_code.strip():
            errors['postal_code'] = "郵便番号を入力してください"
        if not self.address.city.strip():
            errors['city'] = "市区町村を入力してください"
        if not self.address.prefecture.strip():
            errors['prefecture'] = "都道府県を選択してください"
        if errors:
            raise ValidationError(errors)


@dataclass
class OrderItem:
    """注文明細。商品名と単価は注文時点のスナップショット。"""

    product_id: str
    product_name: str
    quantity: int
    price: int

    @property
    def subtotal(self) -> int:
        return self.quantity * self.price

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "price": self.price,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrderItem":
        return cls(
            product_id=str(data["product_id"]),
            product_name=str(data.get("product_name", "")),
            quantity=int(data.get("quantity", 0)),
            price=int(data.get("price", 0)),
        )


@dataclass
class Order:
    id: str
    customer_name: str
    customer_email: str
    customer_phone: str
    customer_address: ShippingAddress
    items: List[OrderItem]
    total_amount: int
    status: str = OrderStatus.PENDING.value
    created_at: datetime = field(default_factory=now)
    updated_at: datetime = field(default_factory=now)

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "customer_address": self.customer_address.to_dict(),
            "items": [item.to_dict() for item in self.items],
            "total_amount": self.total_amount,
            "status": self.status,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "Order":
        return cls(
            id=str(data["id"]),
            customer_name=str(data.get("customer_name", "")),
            customer_email=str(data.get("customer_email", "")),
            customer_phone=str(data.get("customer_phone", "")),
            customer_address=ShippingAddress.from_dict(data.get("customer_address") or {}),
            items=[OrderItem.from_dict(item) for item in data.get("items") or []],
            total_amount=int(data.get("total_amount", 0)),
            status=str(data.get("status", OrderStatus.PENDING.value)),
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
        )


@dataclass
class CartEntry:
    product_id: str
    quantity: int
    added_at: datetime = field(default_factory=now)

    def to_record(self) -> Dict[str, Any]:
        return {"product_id": self.product_id, "quantity": self.quantity, "added_at": self.added_at}

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "CartEntry":
        return cls(
            product_id=str(data["product_id"]),
            quantity=int(data.get("quantity", 0)),
            added_at=_parse_datetime(data.get("added_at")),
        )


@dataclass
class Review:
    id: str
    product_id: str
    user_id: str
    user_name: str
    rating: int
    comment: str = ""
    created_at: datetime = field(default_factory=now)
    updated_at: datetime = field(default_factory=now)

    def validate(self) -> None:
        if isinstance(self.rating, bool) or not isinstance(self.rating, int) or not 1 <= self.rating <= 5:
            raise ValidationError({'rating': "評価は1から5の整数で指定してください"})

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "rating": self.rating,
            "comment": self.comment,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "Review":
        return cls(
            id=str(data["id"]),
            product_id=str(data["product_id"]),
            user_id=str(data["user_id"]),
            user_name=str(data.get("user_name", "")),
            rating=int(data.get("rating", 0)),
            comment=str(data.get("comment") or ""),
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
        )


@dataclass
class User:
    """登録ユーザー。ローカルストレージに JSON として保存されます。"""

    id: str
    name: str
    email: str
    phone: Optional[str] = None
    address: Optional[ShippingAddress] = None
    created_at: datetime = field(default_factory=now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address.to_dict() if self.address else None,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        address = data.get("address")
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name", "")),
            email=str(data.get("email", "")),
            phone=data.get("phone"),
            address=ShippingAddress.from_dict(address) if isinstance(address, dict) else None,
            created_at=_parse_datetime(data.get("created_at")),
        )
