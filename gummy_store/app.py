import logging
from typing import List, Optional

from . import analytics, inventory
from .auth_state import AuthContext
from .cart_state import CartContext
from .config import StoreConfig
from .database import ObjectStore
from .kvstore import KeyValueStorage
from .models import CustomerInfo, Order, Product
from .schema import StoreSchema
from .seed import seed_database
from .services import CartService, OrderService, ProductService, ReviewService

logger = logging.getLogger(__name__)


class StoreApp:
    """
    ストア全体の組み立てとライフサイクル。

    設定 → データベース → 各サービス → カート・認証コンテキストの順に作成し、
    start() で開始、stop() で破棄します。

    使用例:
        with StoreApp(StoreConfig.from_env()) as app:
            app.cart.add('gummy-001', 2)
    """

    def __init__(self, config: Optional[StoreConfig] = None, schema: Optional[StoreSchema] = None):
        self.config = config or StoreConfig()
        self.store = ObjectStore(self.config.database_url, schema=schema)
        self.products = ProductService(self.store)
        self.orders = OrderService(self.store)
        self.carts = CartService(self.store)
        self.reviews = ReviewService(self.store)
        self.local_storage = KeyValueStorage(self.config.local_storage_path)
        self.cart = CartContext(self.carts, self.products)
        self.auth = AuthContext(self.local_storage)
        self.started = False

    def start(self) -> "StoreApp":
        if self.started:
            return self
        self.store.open()
        try:
            if self.config.seed_on_start:
                seed_database(self.products)
            self.auth.start()
            self.cart.start()
        except Exception:
            logger.exception("ストアの初期化に失敗しました")
            self.store.close()
            raise
        self.started = True
        logger.info("ストアを開始しました。")
        return self

    def stop(self) -> None:
        if not self.started:
            return
        self.cart.stop()
        self.auth.stop()
        self.store.close()
        self.started = False
        logger.info("ストアを停止しました。")

    def __enter__(self) -> "StoreApp":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def checkout(self, customer: CustomerInfo) -> Order:
        """現在のカートから注文を作成し、カートを空にします。"""
        order = self.orders.create_from_cart(self.cart.state.items, customer)
        self.cart.clear()
        return order

    def dashboard(self) -> analytics.DashboardSummary:
        return analytics.dashboard_summary(
            self.products.get_all(),
            self.orders.get_all(),
            low_stock_threshold=self.config.low_stock_threshold,
        )

    def report(self, date_range: str = '30d') -> analytics.AnalyticsReport:
        return analytics.build_report(
            self.products.get_all(),
            self.orders.get_all(),
            date_range=date_range,
            low_stock_threshold=self.config.low_stock_threshold,
        )

    def inventory_items(self, stock_filter: str = 'all') -> List[Product]:
        """在庫管理画面の一覧。stock_filter は all / low / out。"""
        return inventory.filter_inventory(self.products.get_all(), stock_filter)

    def inventory_summary(self) -> inventory.InventorySummary:
        return inventory.summarize(self.products.get_all())
