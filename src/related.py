"""Recommendations anchored on a single product page"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Set

from cache import ActivityCache, CacheKey
from models import Candidate, Product, utcnow
from stores import OrderBook, ProductCatalog
from utils import log10p

logger = logging.getLogger(__name__)


class RelatedProducts:
    def __init__(
        self,
        catalog: ProductCatalog,
        orders: OrderBook,
        cache: ActivityCache,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.catalog = catalog
        self.orders = orders
        self.cache = cache
        self.clock = clock

    def similar(self, product: Product, limit: int = 10) -> List[Candidate]:
        low, high = product.price * 0.6, product.price * 1.5
        tags = set(product.tags)

        def matches(other: Product) -> bool:
            return (
                other.id != product.id
                and other.in_stock
                and other.category == product.category
                and low <= other.price <= high
            )

        candidates = []
        for other in self.catalog.query(matches):
            score = 10.0
            if product.subcategory and other.subcategory == product.subcategory:
                score += 2
            if product.brand and other.brand == product.brand:
                score += 5
            total = other.price + product.price
            if total > 0:
                score += 5 * (1 - abs(other.price - product.price) / total)
            score += 3 * len(tags.intersection(other.tags)) / max(len(other.tags), 1)
            score += other.rating * 0.5
            score += log10p(other.view_count)
            candidates.append(Candidate(other, score, "similar"))
        candidates.sort(key=lambda c: c.score, reverse=True)
        return candidates[:limit]

    def complementary(self, product_ids: List[str], limit: int = 10) -> List[Candidate]:
        """Items bought in the same orders as `product_ids` over the last 90 days."""
        anchors = set(product_ids)
        if not anchors:
            return []
        since = self.clock() - timedelta(days=90)
        co_occurrences: Dict[str, int] = defaultdict(int)
        order_ids: Dict[str, Set[str]] = defaultdict(set)
        buyers: Dict[str, Set[str]] = defaultdict(set)
        for order in self.orders.containing(anchors, since=since):
            for item in order.items:
                if item.product_id in anchors:
                    continue
                co_occurrences[item.product_id] += 1
                order_ids[item.product_id].add(order.id)
                buyers[item.product_id].add(order.user_id)

        scores = {
            pid: count * 3 + len(order_ids[pid]) * 2 + len(buyers[pid]) for pid, count in co_occurrences.items()
        }
        ranked = sorted(scores, key=scores.get, reverse=True)[: limit * 2]
        products = self.catalog.get_many(ranked)
        candidates = [
            Candidate(products[pid], float(scores[pid]), "complementary", (("boughtTogether", co_occurrences[pid]),))
            for pid in ranked
            if pid in products and products[pid].in_stock
        ]
        return candidates[:limit]

    def also_bought(self, product_id: str, user_id: str, limit: int = 5) -> List[Candidate]:
        """What other buyers of `product_id` purchased, cached per user."""
        key = CacheKey("product_user", user_id, (product_id,))
        return list(self.cache.get_or_compute(key, lambda: tuple(self._also_bought(product_id, user_id, limit)), personalized=True))

    def _also_bought(self, product_id: str, user_id: str, limit: int) -> List[Candidate]:
        peers: List[str] = []
        for order in self.orders.containing({product_id}):
            if order.user_id != user_id and order.user_id not in peers:
                peers.append(order.user_id)
            if len(peers) >= 50:
                break
        if not peers:
            return []

        counts: Dict[str, int] = defaultdict(int)
        for peer in peers:
            for order in self.orders.for_user(peer):
                for item in order.items:
                    if item.product_id != product_id:
                        counts[item.product_id] += 1

        ranked = sorted(counts, key=counts.get, reverse=True)[:limit]
        products = self.catalog.get_many(ranked)
        return [
            Candidate(products[pid], float(counts[pid]), "userRecommended")
            for pid in ranked
            if pid in products and products[pid].in_stock
        ]
