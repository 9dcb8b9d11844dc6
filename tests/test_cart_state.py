"""カートキャッシュ (リデューサーと CartContext) のテスト."""
from datetime import datetime

import pytest

from gummy_store.cart_state import (
    CartContext,
    CartItem,
    CartState,
    ClearCart,
    ProductSnapshot,
    RemoveItem,
    SetItems,
    SetLoading,
    UpdateItem,
    cart_reducer,
    join_cart_entries,
)
from gummy_store.errors import ValidationError
from gummy_store.models import CartEntry

ADDED = datetime(2026, 10, 1, 12, 0, 0)


def item(product_id: str, quantity: int, price: int) -> CartItem:
    snapshot = ProductSnapshot(id=product_id, name=product_id, price=price, image_url="", stock=10)
    return CartItem(product_id=product_id, quantity=quantity, added_at=ADDED, product=snapshot)


class TestCartReducer:
    """cart_reducer のテスト."""

    def test_totals_are_derived_from_items(self) -> None:
        state = cart_reducer(CartState(), SetItems((item("a", 2, 150), item("b", 1, 280))))
        assert state.total_items == 3
        assert state.total_amount == 580

    def test_update_item(self) -> None:
        state = CartState(items=(item("a", 2, 150), item("b", 1, 280)))
        new_state = cart_reducer(state, UpdateItem("a", 5))
        assert new_state.total_items == 6
        assert new_state.total_amount == 5 * 150 + 280
        assert state.total_items == 3

    def test_remove_item(self) -> None:
        state = CartState(items=(item("a", 2, 150), item("b", 1, 280)))
        new_state = cart_reducer(state, RemoveItem("a"))
        assert [i.product_id for i in new_state.items] == ["b"]
        assert new_state.total_amount == 280

    def test_clear(self) -> None:
        state = CartState(items=(item("a", 2, 150),))
        new_state = cart_reducer(state, ClearCart())
        assert new_state.items == ()
        assert new_state.total_items == 0
        assert new_state.total_amount == 0

    def test_set_loading(self) -> None:
        assert cart_reducer(CartState(), SetLoading(True)).loading is True

    def test_unknown_action_returns_same_state(self) -> None:
        state = CartState(items=(item("a", 1, 100),))
        assert cart_reducer(state, object()) is state


class TestJoinCartEntries:
    """カートエントリと商品の結合のテスト."""

    def test_missing_product_becomes_stale(self, two_products) -> None:
        a, _ = two_products
        entries = [CartEntry("gummy-a", 2, ADDED), CartEntry("deleted", 3, ADDED)]
        lookup = {"gummy-a": a}.get
        items = join_cart_entries(entries, lookup)

        assert items[0].product.name == "コーラグミ"
        assert items[1].stale
        assert items[1].subtotal == 0
        state = CartState(items=tuple(items))
        assert state.has_stale_items
        assert state.total_items == 5
        assert state.total_amount == 300


class TestCartContext:
    """CartContext のテスト."""

    @pytest.fixture
    def cart(self, carts, products) -> CartContext:
        context = CartContext(carts, products)
        context.start()
        yield context
        context.stop()

    def test_add_two_products(self, cart, two_products) -> None:
        cart.add("gummy-a", 2)
        cart.add("gummy-b", 1)
        assert cart.state.total_items == 3
        assert cart.state.total_amount == 580
        assert [i.product.name for i in cart.state.items] == ["コーラグミ", "フルーツグミミックス"]

    def test_add_same_product_merges(self, cart, carts, two_products) -> None:
        cart.add("gummy-a", 1)
        cart.add("gummy-a", 2)
        assert len(cart.state.items) == 1
        assert cart.state.items[0].quantity == 3
        assert carts.get("gummy-a").quantity == 3

    def test_update_quantity_persists(self, cart, carts, two_products) -> None:
        cart.add("gummy-a", 1)
        cart.update_quantity("gummy-a", 4)
        assert cart.state.total_amount == 600
        assert carts.get("gummy-a").quantity == 4

    def test_update_quantity_zero_removes(self, cart, carts, two_products) -> None:
        cart.add("gummy-a", 2)
        cart.update_quantity("gummy-a", 0)
        assert cart.state.items == ()
        assert carts.get("gummy-a") is None

    def test_remove_and_clear(self, cart, carts, two_products) -> None:
        cart.add("gummy-a", 2)
        cart.add("gummy-b", 1)
        cart.remove("gummy-a")
        assert cart.state.total_amount == 280
        cart.clear()
        assert cart.state.total_items == 0
        assert carts.get_all() == []

    def test_invalid_add_propagates_and_keeps_state(self, cart, two_products) -> None:
        cart.add("gummy-a", 1)
        with pytest.raises(ValidationError):
            cart.add("gummy-b", 0)
        assert cart.state.total_items == 1

    def test_start_loads_existing_entries(self, carts, products, two_products) -> None:
        carts.add("gummy-b", 2)
        context = CartContext(carts, products)
        context.start()
        assert context.state.total_amount == 560
        assert context.state.loading is False

    def test_deleted_product_is_kept_as_stale(self, cart, products, two_products) -> None:
        cart.add("gummy-a", 1)
        cart.add("gummy-b", 1)
        products.delete("gummy-b")
        cart.refresh()
        assert cart.state.has_stale_items
        assert cart.state.total_amount == 150

    def test_subscribe_and_unsubscribe(self, cart, two_products) -> None:
        seen = []
        unsubscribe = cart.subscribe(lambda state: seen.append(state.total_items))
        cart.add("gummy-a", 2)
        assert seen[-1] == 2
        unsubscribe()
        count = len(seen)
        cart.clear()
        assert len(seen) == count
