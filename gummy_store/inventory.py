"""在庫管理画面で使う在庫状況の判定と絞り込み。"""
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List

from .errors import ValidationError
from .models import Product

LOW_STOCK = 10
CAUTION_STOCK = 20


class StockStatus(str, Enum):
    OUT_OF_STOCK = "out_of_stock"  # 在庫切れ
    LOW = "low"  # 在庫少
    CAUTION = "caution"  # 在庫注意
    IN_STOCK = "in_stock"  # 在庫あり

    @property
    def label(self) -> str:
        return {
            StockStatus.OUT_OF_STOCK: "在庫切れ",
            StockStatus.LOW: "在庫少",
            StockStatus.CAUTION: "在庫注意",
            StockStatus.IN_STOCK: "在庫あり",
        }[self]


def stock_status(stock: int) -> StockStatus:
    if stock <= 0:
        return StockStatus.OUT_OF_STOCK
    if stock < LOW_STOCK:
        return StockStatus.LOW
    if stock < CAUTION_STOCK:
        return StockStatus.CAUTION
    return StockStatus.IN_STOCK


def filter_inventory(products: Iterable[Product], stock_filter: str = 'all') -> List[Product]:
    """
    在庫フィルタ。

    all: すべて / low: 在庫1〜19 / out: 在庫切れ
    """
    products = list(products)
    if stock_filter == 'all':
        return products
    if stock_filter == 'low':
        return [p for p in products if 0 < p.stock < CAUTION_STOCK]
    if stock_filter == 'out':
        return [p for p in products if p.stock == 0]
    raise ValidationError({'stock_filter': f"不明な在庫フィルタです: {stock_filter}"})


@dataclass
class InventorySummary:
    total: int
    in_stock: int
    low_stock: int
    out_of_stock: int


def summarize(products: Iterable[Product]) -> InventorySummary:
    products = list(products)
    return InventorySummary(
        total=len(products),
        in_stock=sum(1 for p in products if p.stock >= CAUTION_STOCK),
        low_stock=sum(1 for p in products if p.stock < LOW_STOCK),
        out_of_stock=sum(1 for p in products if p.stock == 0),
    )
