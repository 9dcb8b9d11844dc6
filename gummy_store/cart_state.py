"""
カートのメモリ上のキャッシュ。

ストアのカートコレクションを商品情報と結合して保持します。合計数量・合計金額は
保持せず、常に現在の明細から計算します。ストアが常に正です。
"""
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Tuple, Union

from .models import CartEntry, Product
from .services import CartService, ProductService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProductSnapshot:
    """結合時点の商品情報。"""

    id: str
    name: str
    price: int
    image_url: str
    stock: int

    @classmethod
    def of(cls, product: Product) -> "ProductSnapshot":
        return cls(
            id=product.id,
            name=product.name,
            price=product.price,
            image_url=product.image_url,
            stock=product.stock,
        )


@dataclass(frozen=True)
class CartItem:
    product_id: str
    quantity: int
    added_at: datetime
    product: Optional[ProductSnapshot] = None

    @property
    def stale(self) -> bool:
        """商品が削除されていて結合できなかった明細。"""
        return self.product is None

    @property
    def unit_price(self) -> int:
        return self.product.price if self.product else 0

    @property
    def subtotal(self) -> int:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class CartState:
    items: Tuple[CartItem, ...] = ()
    loading: bool = False

    @property
    def total_items(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def total_amount(self) -> int:
        return sum(item.subtotal for item in self.items)

    @property
    def has_stale_items(self) -> bool:
        return any(item.stale for item in self.items)


# --- アクション ---

@dataclass(frozen=True)
class SetLoading:
    loading: bool


@dataclass(frozen=True)
class SetItems:
    items: Tuple[CartItem, ...]


@dataclass(frozen=True)
class UpdateItem:
    product_id: str
    quantity: int


@dataclass(frozen=True)
class RemoveItem:
    product_id: str


@dataclass(frozen=True)
class ClearCart:
    pass


CartAction = Union[SetLoading, SetItems, UpdateItem, RemoveItem, ClearCart]


def cart_reducer(state: CartState, action: CartAction) -> CartState:
    """現在の状態とアクションから新しい状態を返します。"""
    if isinstance(action, SetLoading):
        return replace(state, loading=action.loading)
    if isinstance(action, SetItems):
        return replace(state, items=tuple(action.items))
    if isinstance(action, UpdateItem):
        items = tuple(
            replace(item, quantity=action.quantity) if item.product_id == action.product_id else item
            for item in state.items
        )
        return replace(state, items=items)
    if isinstance(action, RemoveItem):
        return replace(state, items=tuple(i for i in state.items if i.product_id != action.product_id))
    if isinstance(action, ClearCart):
        return replace(state, items=())
    return state


def join_cart_entries(
    entries: Iterable[CartEntry],
    lookup: Callable[[str], Optional[Product]],
) -> List[CartItem]:
    """
    カートの各エントリに商品情報を結合します。

    商品が見つからないエントリは product=None (価格 0、stale) になります。
    """
    items = []
    for entry in entries:
        product = lookup(entry.product_id)
        if product is None:
            logger.warning("カート内の商品 '%s' が見つかりません。", entry.product_id)
        items.append(CartItem(
            product_id=entry.product_id,
            quantity=entry.quantity,
            added_at=entry.added_at,
            product=ProductSnapshot.of(product) if product else None,
        ))
    return items


Listener = Callable[[CartState], None]


class CartContext:
    """
    カート状態を保持するアプリケーションコンテキスト。

    start() で初回読み込みを行い、stop() で状態とリスナーを破棄します。
    """

    def __init__(self, carts: CartService, products: ProductService):
        self.carts = carts
        self.products = products
        self._state = CartState()
        self._listeners: List[Listener] = []

    @property
    def state(self) -> CartState:
        return self._state

    def _dispatch(self, action: CartAction) -> None:
        self._state = cart_reducer(self._state, action)
        for listener in list(self._listeners):
            listener(self._state)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """状態変更の通知を受け取ります。戻り値を呼ぶと解除されます。"""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # --- ライフサイクル ---

    def start(self) -> None:
        self.load()

    def stop(self) -> None:
        self._listeners.clear()
        self._state = CartState()

    # --- 操作 ---

    def load(self) -> None:
        """カートの全エントリを読み込み、商品情報と結合してキャッシュを置き換えます。"""
        self._dispatch(SetLoading(True))
        try:
            entries = self.carts.get_all()
            items = join_cart_entries(entries, self.products.get_by_id)
            self._dispatch(SetItems(tuple(items)))
        except Exception:
            logger.exception("カートデータの読み込みに失敗しました")
            raise
        finally:
            self._dispatch(SetLoading(False))

    def refresh(self) -> None:
        self.load()

    def add(self, product_id: str, quantity: int = 1) -> None:
        """カートに商品を追加し、全体を再読み込みします。"""
        try:
            self.carts.add(product_id, quantity)
        except Exception:
            logger.exception("カートへの追加に失敗しました")
            raise
        self.load()

    def update_quantity(self, product_id: str, quantity: int) -> None:
        """数量を更新します。0 以下なら削除します。"""
        if quantity <= 0:
            self.remove(product_id)
            return
        try:
            self.carts.update(product_id, quantity)
        except Exception:
            logger.exception("カートアイテムの更新に失敗しました")
            raise
        self._dispatch(UpdateItem(product_id, quantity))

    def remove(self, product_id: str) -> None:
        try:
            self.carts.remove(product_id)
        except Exception:
            logger.exception("カートからの削除に失敗しました")
            raise
        self._dispatch(RemoveItem(product_id))

    def clear(self) -> None:
        try:
            self.carts.clear()
        except Exception:
            logger.exception("カートのクリアに失敗しました")
            raise
        self._dispatch(ClearCart())
