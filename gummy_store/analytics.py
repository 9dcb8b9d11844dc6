"""
管理画面のダッシュボード・統計レポートの集計。

ストアから取得した商品・注文のリストを受け取る純粋な関数として実装しています。
"""
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import ValidationError
from .models import Category, Order, OrderStatus, Product, now

# 集計期間 (日数)。None は全期間
DATE_RANGES: Dict[str, Optional[int]] = {
    '7d': 7,
    '30d': 30,
    '90d': 90,
    'all': None,
}


@dataclass
class DashboardSummary:
    total_products: int
    total_orders: int
    total_revenue: int
    low_stock_products: int


@dataclass
class ProductSales:
    id: str
    name: str
    category: str
    sales: int
    revenue: int


@dataclass
class CategoryBreakdown:
    category: str
    label: str
    count: int
    revenue: int
    percentage: float


@dataclass
class MonthlyTrend:
    month: str
    orders: int
    revenue: int


@dataclass
class StatusBreakdown:
    status: str
    label: str
    count: int
    percentage: float


@dataclass
class LowStockAlert:
    id: str
    name: str
    stock: int


@dataclass
class AnalyticsReport:
    date_range: str
    total_revenue: int
    total_orders: int
    average_order_value: float
    top_selling_products: List[ProductSales] = field(default_factory=list)
    category_breakdown: List[CategoryBreakdown] = field(default_factory=list)
    monthly_trends: List[MonthlyTrend] = field(default_factory=list)
    order_status_breakdown: List[StatusBreakdown] = field(default_factory=list)
    low_stock_alerts: List[LowStockAlert] = field(default_factory=list)


def _percentage(part: int, whole: int) -> float:
    return part / whole * 100 if whole > 0 else 0.0


def dashboard_summary(
    products: Iterable[Product],
    orders: Iterable[Order],
    low_stock_threshold: int = 10,
) -> DashboardSummary:
    products = list(products)
    orders = list(orders)
    return DashboardSummary(
        total_products=len(products),
        total_orders=len(orders),
        total_revenue=sum(o.total_amount for o in orders),
        low_stock_products=sum(1 for p in products if p.stock < low_stock_threshold),
    )


def filter_orders_by_range(
    orders: Iterable[Order],
    date_range: str,
    current: Optional[datetime] = None,
) -> List[Order]:
    """注文日から経過した日数 (切り捨て) が期間内の注文を返します。"""
    if date_range not in DATE_RANGES:
        raise ValidationError({'date_range': f"不明な集計期間です: {date_range}"})
    days = DATE_RANGES[date_range]
    orders = list(orders)
    if days is None:
        return orders
    current = current or now()
    return [o for o in orders if (current - o.created_at).days <= days]


def top_selling_products(
    products: Iterable[Product],
    orders: Iterable[Order],
    limit: int = 5,
) -> List[ProductSales]:
    """注文明細の数量で商品をランキングします。"""
    by_id = {p.id: p for p in products}
    sales: Dict[str, ProductSales] = {}
    for order in orders:
        for item in order.items:
            entry = sales.get(item.product_id)
            if entry is None:
                product = by_id.get(item.product_id)
                entry = ProductSales(
                    id=item.product_id,
                    name=product.name if product else item.product_name,
                    category=product.category if product else '',
                    sales=0,
                    revenue=0,
                )
                sales[item.product_id] = entry
            entry.sales += item.quantity
            entry.revenue += item.subtotal
    ranked = sorted(sales.values(), key=lambda s: (s.sales, s.revenue), reverse=True)
    return ranked[:limit]


def category_breakdown(
    products: Iterable[Product],
    orders: Iterable[Order],
    total_revenue: int,
) -> List[CategoryBreakdown]:
    products = list(products)
    category_of = {p.id: p.category for p in products}
    revenue: Dict[str, int] = defaultdict(int)
    for order in orders:
        for item in order.items:
            category = category_of.get(item.product_id)
            if category:
                revenue[category] += item.subtotal

    return [
        CategoryBreakdown(
            category=category.value,
            label=category.label,
            count=sum(1 for p in products if p.category == category.value),
            revenue=revenue[category.value],
            percentage=_percentage(revenue[category.value], total_revenue),
        )
        for category in Category
    ]


def _shift_month(year: int, month: int, offset: int) -> Tuple[int, int]:
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


def monthly_trends(
    orders: Iterable[Order],
    months: int = 6,
    current: Optional[datetime] = None,
) -> List[MonthlyTrend]:
    """直近 months か月の月別注文数・売上 (古い月から順)。"""
    current = current or now()
    buckets: Dict[Tuple[int, int], MonthlyTrend] = {}
    for offset in range(-(months - 1), 1):
        year, month = _shift_month(current.year, current.month, offset)
        buckets[(year, month)] = MonthlyTrend(month=f"{year:04d}-{month:02d}", orders=0, revenue=0)

    for order in orders:
        trend = buckets.get((order.created_at.year, order.created_at.month))
        if trend is not None:
            trend.orders += 1
            trend.revenue += order.total_amount
    return list(buckets.values())


def status_breakdown(orders: Iterable[Order]) -> List[StatusBreakdown]:
    orders = list(orders)
    breakdown = []
    for status in OrderStatus:
        count = sum(1 for o in orders if o.status == status.value)
        breakdown.append(StatusBreakdown(
            status=status.value,
            label=status.label,
            count=count,
            percentage=_percentage(count, len(orders)),
        ))
    return breakdown


def low_stock_alerts(products: Iterable[Product], threshold: int = 10) -> List[LowStockAlert]:
    alerts = [LowStockAlert(id=p.id, name=p.name, stock=p.stock) for p in products if p.stock < threshold]
    return sorted(alerts, key=lambda a: a.stock)


def build_report(
    products: Iterable[Product],
    orders: Iterable[Order],
    date_range: str = '30d',
    current: Optional[datetime] = None,
    low_stock_threshold: int = 10,
) -> AnalyticsReport:
    """統計・レポート画面の集計結果を作成します。"""
    products = list(products)
    all_orders = list(orders)
    current = current or now()
    filtered = filter_orders_by_range(all_orders, date_range, current)

    total_revenue = sum(o.total_amount for o in filtered)
    total_orders = len(filtered)
    return AnalyticsReport(
        date_range=date_range,
        total_revenue=total_revenue,
        total_orders=total_orders,
        average_order_value=total_revenue / total_orders if total_orders else 0.0,
        top_selling_products=top_selling_products(products, filtered),
        category_breakdown=category_breakdown(products, filtered, total_revenue),
        monthly_trends=monthly_trends(all_orders, current=current),
        order_status_breakdown=status_breakdown(filtered),
        low_stock_alerts=low_stock_alerts(products, low_stock_threshold),
    )
