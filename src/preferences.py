import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from config import (
    DEFAULT_PRICE_BAND,
    PROFILE_VIEW_WINDOW_DAYS,
    PROFILE_VIEW_SAMPLE,
    PROFILE_SEARCH_WINDOW_DAYS,
    PROFILE_SEARCH_SAMPLE,
    PROFILE_ORDER_SAMPLE,
    PROFILE_RECENT_PRODUCTS,
)
from models import PriceBand, UserPreferenceProfile, UserRecord, utcnow
from stores import OrderBook, ProductCatalog, UserStore
from utils import accumulate, event_weight, iqr_price_band

logger = logging.getLogger(__name__)


class PreferenceProfileBuilder:
    """Turns a user's raw interaction history into weighted affinities.

    Every event contributes `base weight x recency multiplier x time decay`
    to the category, brand, tag, colour and size maps of the product it
    touched. Purchases weigh most, then cart additions, wishlist, views and
    searches.
    """

    def __init__(
        self,
        catalog: ProductCatalog,
        orders: OrderBook,
        users: UserStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.catalog = catalog
        self.orders = orders
        self.users = users
        self.clock = clock

    def build(self, user_id: str) -> Optional[UserPreferenceProfile]:
        user = self.users.get(user_id)
        if user is None:
            return None
        now = self.clock()
        maps: Dict[str, Dict[str, float]] = {name: {} for name in ("categories", "brands", "tags", "colors", "sizes")}
        prices: List[float] = []

        recent_products = self._add_views(user, now, maps)
        self._add_searches(user, now, maps)
        self._add_orders(user, now, maps, prices)
        self._add_wishlist(user, now, maps, prices)
        self._add_cart(user, now, maps)

        if not any(maps.values()) and not recent_products:
            return None

        return UserPreferenceProfile(
            price_band=self._price_band(user, prices),
            recent_products=recent_products,
            view_count=len(user.view_history),
            **maps,
        )

    def _add_product(self, maps, product, weight: float, tag_factor: float = 1.0, variant_factor: float = 0.0):
        accumulate(maps["categories"], [product.category], weight)
        accumulate(maps["brands"], [product.brand], weight)
        accumulate(maps["tags"], product.tags, weight * tag_factor)
        if variant_factor:
            accumulate(maps["colors"], product.colors, weight * variant_factor)
            accumulate(maps["sizes"], product.sizes, weight * variant_factor)

    def _add_views(self, user: UserRecord, now: datetime, maps) -> List[str]:
        cutoff = now - timedelta(days=PROFILE_VIEW_WINDOW_DAYS)
        views = sorted(
            (v for v in user.view_history if v.product_id and v.viewed_at > cutoff),
            key=lambda v: v.viewed_at,
            reverse=True,
        )[:PROFILE_VIEW_SAMPLE]
        products = self.catalog.get_many(v.product_id for v in views)

        for index, view in enumerate(views):
            product = products.get(view.product_id)
            if product is None:
                continue
            weight = event_weight("view", index, view.viewed_at, now)
            self._add_product(maps, product, weight, tag_factor=0.7, variant_factor=0.5)

        recent: List[str] = []
        for view in views:
            if view.product_id not in recent:
                recent.append(view.product_id)
        return recent[:PROFILE_RECENT_PRODUCTS]

    def _add_searches(self, user: UserRecord, now: datetime, maps):
        cutoff = now - timedelta(days=PROFILE_SEARCH_WINDOW_DAYS)
        searches = [s for s in user.search_history if s.searched_at > cutoff][:PROFILE_SEARCH_SAMPLE]
        for index, search in enumerate(searches):
            weight = event_weight("search", index, search.searched_at, now)
            words = [w for w in search.query.lower().split() if len(w) > 2]
            accumulate(maps["tags"], words, weight)

    def _add_orders(self, user: UserRecord, now: datetime, maps, prices: List[float]):
        orders = self.orders.for_user(user.id, limit=PROFILE_ORDER_SAMPLE)
        products = self.catalog.get_many(item.product_id for order in orders for item in order.items)

        for index, order in enumerate(orders):
            weight = event_weight("purchase", index, order.created_at, now)
            for item in order.items:
                product = products.get(item.product_id)
                if product is None:
                    continue
                self._add_product(maps, product, weight, tag_factor=0.8)
                accumulate(maps["colors"], [item.color], weight * 1.5)
                accumulate(maps["sizes"], [item.size], weight * 1.5)
                if product.price:
                    prices.append(product.price)

    def _add_wishlist(self, user: UserRecord, now: datetime, maps, prices: List[float]):
        items = sorted(user.wishlist, key=lambda w: w.added_at, reverse=True)
        products = self.catalog.get_many(w.product_id for w in items)
        for index, item in enumerate(items):
            product = products.get(item.product_id)
            if product is None:
                continue
            weight = event_weight("wishlist", index, item.added_at, now)
            self._add_product(maps, product, weight)
            prices.append(product.price)

    def _add_cart(self, user: UserRecord, now: datetime, maps):
        additions = sorted((c for c in user.cart_additions if not c.removed), key=lambda c: c.added_at, reverse=True)
        products = self.catalog.get_many(c.product_id for c in additions)
        for index, cart in enumerate(additions):
            product = products.get(cart.product_id)
            if product is None:
                continue
            weight = event_weight("cart", index, cart.added_at, now)
            self._add_product(maps, product, weight)
            accumulate(maps["colors"], [cart.color], weight * 1.5)
            accumulate(maps["sizes"], [cart.size], weight * 1.5)

    @staticmethod
    def _price_band(user: UserRecord, prices: List[float]) -> PriceBand:
        band = iqr_price_band(prices)
        if band is not None:
            return PriceBand(*band)
        if user.preferences.price_band is not None:
            return user.preferences.price_band
        return PriceBand(*DEFAULT_PRICE_BAND)
