"""
コレクションごとの CRUD 操作。

ObjectStore のレコード (dict) とエンティティの変換以外のロジックはほとんど持ちません。
"""
import logging
from typing import Dict, Iterable, List, Optional

from .database import ObjectStore
from .errors import InvalidStatusTransition, NotFoundError, ValidationError
from .models import (
    CartEntry,
    Category,
    CustomerInfo,
    Order,
    OrderItem,
    OrderStatus,
    Product,
    Review,
    User,
    epoch_millis,
    now,
    random_suffix,
)

logger = logging.getLogger(__name__)

PRODUCTS = 'products'
ORDERS = 'orders'
CART = 'cart'
REVIEWS = 'reviews'

# 価格帯フィルタ (検索ページ)
PRICE_RANGES = {
    'under200': (None, 200),
    '200to300': (200, 300),
    'over300': (300, None),
}

# 許可するステータス遷移。前進方向は途中を飛ばしてもよい
_STATUS_FLOW = [
    OrderStatus.PENDING,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
]


def parse_status(status: str) -> OrderStatus:
    try:
        return OrderStatus(status)
    except ValueError:
        raise ValidationError({'status': f"不明な注文ステータスです: {status}"})


def allowed_transitions(status: str) -> List[OrderStatus]:
    """現在のステータスから変更可能なステータスを返します。"""
    current = parse_status(status)
    if current == OrderStatus.CANCELLED:
        return []
    allowed = _STATUS_FLOW[_STATUS_FLOW.index(current) + 1:]
    if current == OrderStatus.PENDING:
        allowed.append(OrderStatus.CANCELLED)
    return allowed


# --- Product ---

class ProductService:
    def __init__(self, store: ObjectStore):
        self.store = store

    def get_all(self) -> List[Product]:
        return [Product.from_record(r) for r in self.store.get_all(PRODUCTS)]

    def get_by_id(self, product_id: str) -> Optional[Product]:
        record = self.store.get(PRODUCTS, product_id)
        return Product.from_record(record) if record else None

    def require(self, product_id: str) -> Product:
        product = self.get_by_id(product_id)
        if product is None:
            raise NotFoundError(PRODUCTS, product_id)
        return product

    def get_by_category(self, category: str) -> List[Product]:
        return [Product.from_record(r) for r in self.store.get_all_from_index(PRODUCTS, 'category', category)]

    def count(self) -> int:
        return self.store.count(PRODUCTS)

    def add(self, product: Product) -> Product:
        product.validate()
        self.store.add(PRODUCTS, product.to_record())
        return product

    def add_many(self, products: Iterable[Product]) -> int:
        products = list(products)
        for product in products:
            product.validate()
        return self.store.add_many(PRODUCTS, [p.to_record() for p in products])

    def create(
        self,
        name: str,
        description: str,
        price: int,
        category: str = Category.GUMMY.value,
        stock: int = 0,
        image_url: str = '/images/placeholder.jpg',
    ) -> Product:
        """管理画面の新規商品登録。ID は「カテゴリ-エポックミリ秒」。"""
        timestamp = now()
        product = Product(
            id=f"{category}-{epoch_millis()}",
            name=name.strip() if name else name,
            description=description.strip() if description else description,
            price=price,
            category=category,
            image_url=image_url,
            stock=stock,
            created_at=timestamp,
            updated_at=timestamp,
        )
        self.add(product)
        logger.info("商品を追加しました: ID=%s, 名前=%s, 価格=%s", product.id, product.name, product.price)
        return product

    def update(self, product: Product) -> Product:
        product.validate()
        product.updated_at = now()
        self.store.put(PRODUCTS, product.to_record())
        return product

    def delete(self, product_id: str) -> None:
        self.store.delete(PRODUCTS, product_id)
        logger.info("商品を削除しました: ID=%s", product_id)

    def set_stock(self, product_id: str, stock: int) -> Product:
        product = self.require(product_id)
        old_stock = product.stock
        product.stock = max(0, stock)
        self.update(product)
        logger.info("在庫を更新しました: ID=%s, 在庫: %d -> %d", product_id, old_stock, product.stock)
        return product

    def adjust_stock(self, product_id: str, delta: int) -> Product:
        """在庫を delta だけ増減します。0 未満にはなりません。"""
        product = self.require(product_id)
        return self.set_stock(product_id, product.stock + delta)

    def bulk_adjust_stock(self, delta: int) -> List[Product]:
        """すべての商品の在庫を delta だけ増減します。"""
        updated = []
        for product in self.get_all():
            product.stock = max(0, product.stock + delta)
            updated.append(self.update(product))
        logger.info("全商品 (%d 件) の在庫を %+d 調整しました。", len(updated), delta)
        return updated

    def low_stock(self, threshold: int = 10) -> List[Product]:
        return sorted((p for p in self.get_all() if p.stock < threshold), key=lambda p: p.stock)

    def search(
        self,
        query: str = '',
        category: Optional[str] = None,
        price_range: Optional[str] = None,
    ) -> List[Product]:
        """商品名・説明の部分一致 (大文字小文字を区別しない)、カテゴリ、価格帯で絞り込みます。"""
        if price_range is not None and price_range not in PRICE_RANGES:
            raise ValidationError({'price_range': f"不明な価格帯です: {price_range}"})

        products = self.get_by_category(category) if category else self.get_all()
        q = query.strip().lower()
        if q:
            products = [p for p in products if q in p.name.lower() or q in p.description.lower()]
        if price_range:
            low, high = PRICE_RANGES[price_range]
            products = [
                p for p in products
                if (low is None or p.price >= low) and (high is None or p.price < high)
            ]
        return products


# --- Order ---

class OrderService:
    def __init__(self, store: ObjectStore):
        self.store = store

    def get_all(self) -> List[Order]:
        """すべての注文を新しい順に返します。"""
        orders = [Order.from_record(r) for r in self.store.get_all(ORDERS)]
        return sorted(orders, key=lambda o: o.created_at, reverse=True)

    def get_by_id(self, order_id: str) -> Optional[Order]:
        record = self.store.get(ORDERS, order_id)
        return Order.from_record(record) if record else None

    def get_by_status(self, status: str) -> List[Order]:
        parse_status(status)
        return [Order.from_record(r) for r in self.store.get_all_from_index(ORDERS, 'status', status)]

    def get_by_customer_email(self, email: str) -> List[Order]:
        return [o for o in self.get_all() if o.customer_email.lower() == email.lower()]

    def add(self, order: Order) -> Order:
        self.store.add(ORDERS, order.to_record())
        return order

    def update(self, order: Order) -> Order:
        self.store.put(ORDERS, order.to_record())
        return order

    def delete(self, order_id: str) -> None:
        self.store.delete(ORDERS, order_id)

    def create_from_cart(self, items: Iterable, customer: CustomerInfo) -> Order:
        """
        カートの内容から注文を作成します。

        Args:
            items: cart_state.CartItem のシーケンス。商品名と価格はここで確定します。
            customer: 購入者情報。

        Raises:
            ValidationError: 購入者情報が不正、カートが空、または削除済み商品を含む場合。
        """
        customer.validate()
        items = list(items)
        if not items:
            raise ValidationError({'cart': "カートが空です"})
        stale = [item.product_id for item in items if item.product is None]
        if stale:
            raise ValidationError({'cart': f"販売終了した商品が含まれています: {', '.join(stale)}"})

        order_items = [
            OrderItem(
                product_id=item.product_id,
                product_name=item.product.name,
                quantity=item.quantity,
                price=item.product.price,
            )
            for item in items
        ]
        timestamp = now()
        order = Order(
            id=f"order-{epoch_millis()}-{random_suffix()}",
            customer_name=customer.name.strip(),
            customer_email=customer.email.strip(),
            customer_phone=customer.phone.strip(),
            customer_address=customer.address,
            items=order_items,
            total_amount=sum(item.subtotal for item in order_items),
            status=OrderStatus.PENDING.value,
            created_at=timestamp,
            updated_at=timestamp,
        )
        self.add(order)
        logger.info("注文を作成しました: ID=%s, 合計=%d円", order.id, order.total_amount)
        return order

    def update_status(self, order_id: str, status: str) -> Order:
        """管理画面からのステータス変更。明細と合計金額は変更しません。"""
        order = self.get_by_id(order_id)
        if order is None:
            raise NotFoundError(ORDERS, order_id)
        requested = parse_status(status)
        if requested not in allowed_transitions(order.status):
            raise InvalidStatusTransition(order.status, requested.value)

        old_status = order.status
        order.status = requested.value
        order.updated_at = now()
        self.update(order)
        logger.info("注文ステータスを更新しました: ID=%s, %s -> %s", order_id, old_status, order.status)
        return order

    def search(self, term: str = '', status: Optional[str] = None) -> List[Order]:
        """注文者名・メールアドレス・注文IDの部分一致とステータスで絞り込みます。"""
        orders = self.get_all()
        t = term.strip().lower()
        if t:
            orders = [
                o for o in orders
                if t in o.customer_name.lower() or t in o.customer_email.lower() or t in o.id.lower()
            ]
        if status:
            orders = [o for o in orders if o.status == status]
        return orders


# --- Cart ---

class CartService:
    def __init__(self, store: ObjectStore):
        self.store = store

    def get_all(self) -> List[CartEntry]:
        return [CartEntry.from_record(r) for r in self.store.get_all(CART)]

    def get(self, product_id: str) -> Optional[CartEntry]:
        record = self.store.get(CART, product_id)
        return CartEntry.from_record(record) if record else None

    def add(self, product_id: str, quantity: int = 1) -> CartEntry:
        """既にカートにある商品は数量を加算し、なければ新しく追加します。"""
        if quantity <= 0:
            raise ValidationError({'quantity': "数量は1以上で指定してください"})
        existing = self.get(product_id)
        if existing:
            existing.quantity += quantity
            self.store.put(CART, existing.to_record())
            return existing
        entry = CartEntry(product_id=product_id, quantity=quantity, added_at=now())
        self.store.add(CART, entry.to_record())
        return entry

    def update(self, product_id: str, quantity: int) -> Optional[CartEntry]:
        """数量を置き換えます。カートにない商品の場合は何もしません。"""
        entry = self.get(product_id)
        if entry is None:
            return None
        entry.quantity = quantity
        self.store.put(CART, entry.to_record())
        return entry

    def remove(self, product_id: str) -> None:
        self.store.delete(CART, product_id)

    def clear(self) -> None:
        self.store.clear(CART)


# --- Review ---

class ReviewService:
    def __init__(self, store: ObjectStore):
        self.store = store

    def get_all(self) -> List[Review]:
        return [Review.from_record(r) for r in self.store.get_all(REVIEWS)]

    def get_by_id(self, review_id: str) -> Optional[Review]:
        record = self.store.get(REVIEWS, review_id)
        return Review.from_record(record) if record else None

    def get_by_product_id(self, product_id: str) -> List[Review]:
        """商品のレビューを新しい順に返します。"""
        reviews = [Review.from_record(r) for r in self.store.get_all_from_index(REVIEWS, 'product_id', product_id)]
        return sorted(reviews, key=lambda r: r.created_at, reverse=True)

    def get_by_user_id(self, user_id: str) -> List[Review]:
        return [Review.from_record(r) for r in self.store.get_all_from_index(REVIEWS, 'user_id', user_id)]

    def get_user_review(self, product_id: str, user_id: str) -> Optional[Review]:
        records = self.store.get_all_from_index(REVIEWS, 'user_product', (user_id, product_id))
        return Review.from_record(records[0]) if records else None

    def add(self, review: Review) -> Review:
        """
        Raises:
            DuplicateKeyError: 同じユーザーが同じ商品に既にレビューしている場合。
        """
        review.validate()
        self.store.add(REVIEWS, review.to_record())
        return review

    def update(self, review: Review) -> Review:
        review.validate()
        review.updated_at = now()
        self.store.put(REVIEWS, review.to_record())
        return review

    def delete(self, review_id: str) -> None:
        self.store.delete(REVIEWS, review_id)

    def save_user_review(self, product_id: str, user: User, rating: int, comment: str = '') -> Review:
        """ユーザーのレビューがあれば更新し、なければ作成します。"""
        existing = self.get_user_review(product_id, user.id)
        if existing:
            existing.rating = rating
            existing.comment = comment.strip()
            return self.update(existing)

        timestamp = now()
        review = Review(
            id=f"review-{epoch_millis()}-{random_suffix()}",
            product_id=product_id,
            user_id=user.id,
            user_name=user.name,
            rating=rating,
            comment=comment.strip(),
            created_at=timestamp,
            updated_at=timestamp,
        )
        return self.add(review)

    def get_average_rating(self, product_id: str) -> float:
        """平均評価 (小数第1位で四捨五入)。レビューがなければ 0。"""
        reviews = self.get_by_product_id(product_id)
        if not reviews:
            return 0.0
        average = sum(r.rating for r in reviews) / len(reviews)
        # 0.5 は切り上げ
        return int(average * 10 + 0.5) / 10

    def get_rating_counts(self, product_id: str) -> Dict[int, int]:
        counts = {rating: 0 for rating in range(1, 6)}
        for review in self.get_by_product_id(product_id):
            if review.rating in counts:
                counts[review.rating] += 1
        return counts
