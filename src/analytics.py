"""Engagement summaries for a single user and for the admin dashboard"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from cache import ActivityCache
from config import VIEW_COUNT_THRESHOLD
from models import UserRecord, utcnow
from stores import OrderBook, ProductCatalog, UserStore

logger = logging.getLogger(__name__)


def data_richness(user: Optional[UserRecord]) -> str:
    if user is None:
        return "low"
    score = (
        len(user.view_history)
        + len(user.search_history) * 0.5
        + len(user.wishlist) * 2
        + len(user.cart_additions) * 1.5
        + user.analytics.total_orders * 3
    )
    if score > 50:
        return "high"
    if score > 20:
        return "medium"
    return "low"


class EngagementAnalytics:
    def __init__(
        self,
        catalog: ProductCatalog,
        orders: OrderBook,
        users: UserStore,
        cache: ActivityCache,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.catalog = catalog
        self.orders = orders
        self.users = users
        self.cache = cache
        self.clock = clock

    def user_stats(self, user: UserRecord) -> Dict[str, Any]:
        now = self.clock()
        categories: Dict[str, Dict[str, float]] = defaultdict(lambda: {"count": 0, "totalSpent": 0.0})
        orders = self.orders.for_user(user.id)
        products = self.catalog.get_many(item.product_id for order in orders for item in order.items)
        for order in orders:
            for item in order.items:
                product = products.get(item.product_id)
                if product is None or not product.category:
                    continue
                categories[product.category]["count"] += item.quantity
                categories[product.category]["totalSpent"] += item.price * item.quantity

        favorites = sorted(
            ({"category": name, **data} for name, data in categories.items()),
            key=lambda c: c["count"],
            reverse=True,
        )[:5]
        day_ago = now - timedelta(days=1)
        return {
            "totalViews": len(user.view_history),
            "totalPurchases": user.analytics.total_orders,
            "favoriteCategories": favorites,
            "recentActivity": {
                "recentViews": [
                    {"product": v.product_id, "viewedAt": v.viewed_at.isoformat(), "duration": v.duration}
                    for v in user.view_history
                    if v.viewed_at > day_ago
                ],
                "recentSearches": [
                    {"query": s.query, "searchedAt": s.searched_at.isoformat(), "resultsCount": s.results_count}
                    for s in user.search_history
                    if s.searched_at > day_ago
                ],
            },
            "recommendationQuality": {
                "personalizedAvailable": len(user.view_history) > VIEW_COUNT_THRESHOLD
                or user.analytics.total_orders > 0,
                "dataRichness": data_richness(user),
            },
        }

    def _user_section(self, now: datetime) -> Dict[str, Any]:
        users = self.users.all()
        total = len(users)

        def active_since(user: UserRecord, since: datetime, include_login: bool = False) -> bool:
            if user.analytics.last_activity and user.analytics.last_activity >= since:
                return True
            if include_login:
                return bool(user.analytics.last_login and user.analytics.last_login >= since)
            return any(v.viewed_at >= since for v in user.view_history)

        views = [len(u.view_history) for u in users]
        searches = [len(u.search_history) for u in users]
        order_counts = [u.analytics.total_orders for u in users]
        spent = [u.analytics.total_spent for u in users]
        with_views = sum(1 for v in views if v > 0)
        with_orders = sum(1 for o in order_counts if o > 0)

        def avg(values: List[float]) -> float:
            return sum(values) / len(values) if values else 0.0

        return {
            "total": total,
            "activeToday": sum(1 for u in users if active_since(u, now - timedelta(days=1))),
            "activeWeek": sum(1 for u in users if active_since(u, now - timedelta(days=7))),
            "activeMonth": sum(1 for u in users if active_since(u, now - timedelta(days=30), include_login=True)),
            "averages": {
                "avgViews": avg(views),
                "avgSearches": avg(searches),
                "avgOrders": avg(order_counts),
                "avgSpent": avg(spent),
                "totalViews": sum(views),
                "totalSearches": sum(searches),
                "usersWithViews": with_views,
                "usersWithOrders": with_orders,
            },
            "engagement": {
                "viewRate": round(with_views / (total or 1) * 100, 2),
                "purchaseRate": round(with_orders / (total or 1) * 100, 2),
            },
        }

    def _product_section(self, now: datetime) -> Dict[str, Any]:
        products = self.catalog.all()

        def conversion(product) -> float:
            return product.total_orders / product.view_count * 100 if product.view_count else 0.0

        viewed = [p for p in products if p.view_count > 0]
        popular = sorted(viewed, key=lambda p: p.view_count, reverse=True)[:10]
        converting = sorted((p for p in viewed if p.total_orders > 0), key=conversion, reverse=True)[:10]

        recent_views: Dict[str, int] = defaultdict(int)
        for _, view in self.users.views_since(now - timedelta(days=1)):
            recent_views[view.product_id] += 1
        by_id = {p.id: p for p in products}
        trending = sorted(
            (pid for pid in recent_views if pid in by_id), key=lambda pid: recent_views[pid], reverse=True
        )[:10]

        return {
            "popular": [
                {
                    "id": p.id,
                    "name": p.name,
                    "category": p.category,
                    "viewCount": p.view_count,
                    "totalOrders": p.total_orders,
                    "conversionRate": round(conversion(p), 2),
                }
                for p in popular
            ],
            "highConversion": [
                {
                    "id": p.id,
                    "name": p.name,
                    "category": p.category,
                    "conversionRate": round(conversion(p), 2),
                    "viewCount": p.view_count,
                    "totalOrders": p.total_orders,
                }
                for p in converting
            ],
            "trending": [
                {"id": pid, "name": by_id[pid].name, "category": by_id[pid].category, "recentViews": recent_views[pid]}
                for pid in trending
            ],
        }

    def _order_section(self, now: datetime) -> Dict[str, Any]:
        week = self.orders.since(now - timedelta(days=7))
        today = [o for o in week if o.created_at >= now - timedelta(days=1)]
        return {
            "weeklyCount": len(week),
            "weeklyRevenue": sum(o.total_amount for o in week),
            "todayCount": len(today),
            "todayRevenue": sum(o.total_amount for o in today),
        }

    def admin_summary(self) -> Dict[str, Any]:
        now = self.clock()
        return {
            "users": self._user_section(now),
            "products": self._product_section(now),
            "orders": self._order_section(now),
            "cache": self.cache.stats(),
            "timestamp": now.isoformat(),
        }
