"""Scoring strategies: content, collaborative, trending, new arrivals and fallback"""

import logging
import math
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Set

import numpy as np

from cache import ActivityCache, CacheKey
from config import (
    COLLAB_ORDER_SAMPLE,
    COLLAB_VIEW_WINDOW_DAYS,
    COLLAB_PEER_WINDOW_DAYS,
    COLLAB_PEER_LIMIT,
    COLLAB_PEER_SAMPLE,
    COLLAB_MINING_WINDOW_DAYS,
    COLLAB_RECENT_ORDER_DAYS,
)
from models import Candidate, DataUnavailable, Product, UserPreferenceProfile, utcnow
from preferences import PreferenceProfileBuilder
from stores import OrderBook, ProductCatalog, UserStore
from utils import get_interaction_weight, log10p, rank_candidates, source_decay

logger = logging.getLogger(__name__)


class Strategy:
    """Base for cache-backed strategies.

    Subclasses implement `compute`; `recommend` serves from the cache when it
    can and stores only complete results. Any failure is logged and turns into
    an empty contribution.
    """

    name = ""
    cache_tag = ""
    requires_user = True

    def __init__(self, catalog: ProductCatalog, orders: OrderBook, users: UserStore, cache: ActivityCache, clock: Callable[[], datetime] = utcnow):
        self.catalog = catalog
        self.orders = orders
        self.users = users
        self.cache = cache
        self.clock = clock

    def is_personalized(self, user_id: Optional[str]) -> bool:
        return self.requires_user

    def cache_key(self, user_id: Optional[str], limit: int) -> CacheKey:
        return CacheKey(self.cache_tag, user_id if self.is_personalized(user_id) else None, (limit,))

    def compute(self, user_id: Optional[str], limit: int) -> List[Candidate]:
        raise NotImplementedError

    def recommend(self, user_id: Optional[str], limit: int) -> List[Candidate]:
        if limit <= 0:
            return []
        if self.requires_user and not user_id:
            return []
        personalized = self.is_personalized(user_id)
        key = self.cache_key(user_id, limit)
        try:
            return list(self.cache.get_or_compute(key, lambda: tuple(self.compute(user_id, limit)), personalized))
        except DataUnavailable as e:
            logger.warning(f"{self.name} strategy skipped for user {user_id}: {e}")
            return []
        except Exception as e:
            logger.error(f"{self.name} strategy failed for user {user_id}: {e}", exc_info=True)
            return []

    def _in_stock(self, product_ids: Iterable[str]) -> Dict[str, Product]:
        return {pid: p for pid, p in self.catalog.get_many(product_ids).items() if p.in_stock}


class ContentStrategy(Strategy):
    name = "content"
    cache_tag = "content"

    def __init__(self, *args, profiles: PreferenceProfileBuilder, **kwargs):
        super().__init__(*args, **kwargs)
        self.profiles = profiles

    def candidate_filter(self, profile: UserPreferenceProfile) -> Callable[[Product], bool]:
        categories = set(profile.top_categories(5))
        brands = set(profile.top_brands(3))
        tags = set(profile.top_tags(10))
        colors = set(profile.top_colors(3))
        excluded = set(profile.recent_products)
        band = profile.price_band.widened()
        has_conditions = bool(categories or brands or tags or colors)

        def matches(product: Product) -> bool:
            if not product.in_stock or product.id in excluded or not band.contains(product.price):
                return False
            if not has_conditions:
                return True
            return (
                product.category in categories
                or product.brand in brands
                or bool(tags.intersection(product.tags))
                or bool(colors.intersection(product.colors))
            )

        return matches

    def score(self, product: Product, profile: UserPreferenceProfile, now: datetime) -> float:
        score = profile.categories.get(product.category, 0.0) * 3
        if product.brand:
            score += profile.brands.get(product.brand, 0.0) * 2
        score += sum(profile.tags.get(tag, 0.0) for tag in product.tags) * 1.5
        score += sum(profile.colors.get(color, 0.0) for color in product.colors)
        score += sum(profile.sizes.get(size, 0.0) for size in product.sizes) * 0.5

        score += product.rating * 3
        score += math.log(product.total_reviews + 1) * 0.5
        score += math.log(product.total_orders + 1) * 0.3
        if profile.view_count < 10:
            # thin histories lean on popularity
            score += math.log(max(1, product.view_count)) * 0.5

        days_old = (now - product.created_at).total_seconds() / 86400
        if days_old < 30:
            score += (30 - max(days_old, 0)) / 30 * 2
        if profile.price_band.contains(product.price):
            score += 2
        return score

    def compute(self, user_id: Optional[str], limit: int) -> List[Candidate]:
        profile = self.profiles.build(user_id)
        if profile is None:
            return []
        now = self.clock()
        products = self.catalog.query(self.candidate_filter(profile))
        return rank_candidates(
            (Candidate(p, self.score(p, profile, now), self.name) for p in products),
            limit,
        )


class CollaborativeStrategy(Strategy):
    name = "collaborative"
    cache_tag = "collab"

    def interaction_weights(self, user_id: str, now: datetime) -> Dict[str, float]:
        """Weighted set of products the user bought, recently viewed or saved."""
        weights: Dict[str, float] = defaultdict(float)
        for order in self.orders.for_user(user_id, limit=COLLAB_ORDER_SAMPLE):
            decay = source_decay("purchase", order.created_at, now)
            for item in order.items:
                weights[item.product_id] += decay * get_interaction_weight("purchase") * (item.quantity or 1)

        user = self.users.get(user_id)
        if user is not None:
            cutoff = now - timedelta(days=COLLAB_VIEW_WINDOW_DAYS)
            for view in user.view_history:
                if view.product_id and view.viewed_at > cutoff:
                    weights[view.product_id] += source_decay("view", view.viewed_at, now) * get_interaction_weight("view")
            for item in user.wishlist:
                weights[item.product_id] += get_interaction_weight("wishlist")
        return dict(weights)

    def find_peers(self, user_id: str, owned: Set[str], now: datetime) -> List[str]:
        since = now - timedelta(days=COLLAB_PEER_WINDOW_DAYS)
        shared: Dict[str, Set[str]] = defaultdict(set)
        quantity: Dict[str, int] = defaultdict(int)
        for order in self.orders.containing(owned, since=since):
            if order.user_id == user_id:
                continue
            for item in order.items:
                if item.product_id in owned:
                    shared[order.user_id].add(item.product_id)
                    quantity[order.user_id] += item.quantity
        similarity = {peer: len(products) * 2 + quantity[peer] * 0.1 for peer, products in shared.items()}
        return sorted(similarity, key=similarity.get, reverse=True)[:COLLAB_PEER_LIMIT]

    def compute(self, user_id: Optional[str], limit: int) -> List[Candidate]:
        now = self.clock()
        owned = self.interaction_weights(user_id, now)
        if not owned:
            return []
        peers = self.find_peers(user_id, set(owned), now)
        if not peers:
            return []

        peer_set = set(peers[:COLLAB_PEER_SAMPLE])
        mining_since = now - timedelta(days=COLLAB_MINING_WINDOW_DAYS)
        recent_since = now - timedelta(days=COLLAB_RECENT_ORDER_DAYS)
        scores: Dict[str, float] = defaultdict(float)
        buyers: Dict[str, Set[str]] = defaultdict(set)
        for order in self.orders.since(mining_since):
            if order.user_id not in peer_set:
                continue
            boost = 2 if order.created_at >= recent_since else 1
            for item in order.items:
                if item.product_id in owned:
                    continue
                scores[item.product_id] += item.quantity * boost
                buyers[item.product_id].add(order.user_id)

        final = {pid: score + len(buyers[pid]) * 2 for pid, score in scores.items()}
        ranked = sorted(final, key=lambda pid: (final[pid], len(buyers[pid])), reverse=True)[: limit * 2]
        products = self._in_stock(ranked)
        candidates = [
            Candidate(products[pid], final[pid], self.name, (("recommendedByUsers", len(buyers[pid])),))
            for pid in ranked
            if pid in products
        ]
        return candidates[:limit]


class TrendingStrategy(Strategy):
    name = "trending"
    cache_tag = "trending"
    requires_user = False

    def order_scores(self, now: datetime):
        day_ago = now - timedelta(days=1)
        three_days_ago = now - timedelta(days=3)
        stats: Dict[str, Dict] = defaultdict(lambda: {"orders": 0, "quantity": 0, "revenue": 0.0, "buyers": set()})
        for order in self.orders.since(now - timedelta(days=7)):
            weight = 3 if order.created_at >= day_ago else 2 if order.created_at >= three_days_ago else 1
            for item in order.items:
                entry = stats[item.product_id]
                entry["orders"] += weight
                entry["quantity"] += item.quantity
                entry["revenue"] += item.price * item.quantity
                entry["buyers"].add(order.user_id)

        scores = {
            pid: s["orders"] * 5 + len(s["buyers"]) * 3 + s["quantity"] + log10p(s["revenue"]) * 2
            for pid, s in stats.items()
        }
        buyers = {pid: len(s["buyers"]) for pid, s in stats.items()}
        return scores, buyers

    def view_scores(self, now: datetime) -> Dict[str, float]:
        counts: Dict[str, int] = defaultdict(int)
        viewers: Dict[str, Set[str]] = defaultdict(set)
        durations: Dict[str, List[float]] = defaultdict(list)
        for user_id, view in self.users.views_since(now - timedelta(days=3)):
            counts[view.product_id] += 1
            viewers[view.product_id].add(user_id)
            if view.duration is not None:
                durations[view.product_id].append(view.duration)
        return {
            pid: count * 0.5 + len(viewers[pid]) * 2 + (float(np.mean(durations[pid])) if durations[pid] else 0.0) * 0.1
            for pid, count in counts.items()
        }

    def compute(self, user_id: Optional[str], limit: int) -> List[Candidate]:
        now = self.clock()
        scores, buyers = self.order_scores(now)
        views = self.view_scores(now)
        ranked = sorted(scores, key=scores.get, reverse=True)[: limit * 2]
        top_viewed = sorted(views, key=views.get, reverse=True)[:10]
        for pid in top_viewed:
            if pid not in ranked:
                ranked.append(pid)

        products = self._in_stock(ranked)
        candidates = [
            Candidate(
                products[pid],
                scores.get(pid, 0.0) + (views.get(pid, 0.0) if pid in top_viewed else 0.0),
                self.name,
                (("trendingUsers", buyers.get(pid, 0)),),
            )
            for pid in ranked
            if pid in products
        ]
        return rank_candidates(candidates, limit)


class NewArrivalsStrategy(Strategy):
    name = "new"
    cache_tag = "new"
    requires_user = False
    window_days = 30

    def __init__(self, *args, profiles: PreferenceProfileBuilder, **kwargs):
        super().__init__(*args, **kwargs)
        self.profiles = profiles

    def is_personalized(self, user_id: Optional[str]) -> bool:
        # anonymous callers share one aggregate entry
        return bool(user_id)

    def compute(self, user_id: Optional[str], limit: int) -> List[Candidate]:
        now = self.clock()
        cutoff = now - timedelta(days=self.window_days)
        profile = self.profiles.build(user_id) if user_id else None

        categories: Set[str] = set()
        brands: Set[str] = set()
        tags: Set[str] = set()
        band = None
        if profile is not None:
            categories = set(profile.top_categories(3))
            brands = set(profile.top_brands(3))
            tags = set(profile.top_tags(5))
            band = profile.price_band.widened()
        if user_id and not categories:
            # no behavioural taste yet, use what the user declared
            user = self.users.get(user_id)
            stored = user.preferences if user is not None else None
            if stored is not None and stored.categories:
                categories = set(stored.categories)
                brands = brands or set(stored.brands)
                if band is None and stored.price_band is not None:
                    band = stored.price_band.widened()
        narrowed = bool(categories or brands or tags)

        def matches(product: Product) -> bool:
            if not product.in_stock or product.created_at < cutoff:
                return False
            if band is not None and not band.contains(product.price):
                return False
            if narrowed:
                return product.category in categories or product.brand in brands or bool(tags.intersection(product.tags))
            return True

        window = self.window_days * 86400
        candidates = []
        for product in self.catalog.query(matches):
            age = max((now - product.created_at).total_seconds(), 0.0)
            recency = (1 - age / window) * 10
            score = recency + product.rating * 2 + log10p(product.view_count)
            candidates.append(Candidate(product, score, self.name, (("isVeryNew", age < 7 * 86400),)))
        candidates.sort(key=lambda c: (c.score, c.product.created_at), reverse=True)
        return candidates[:limit]


class FallbackStrategy:
    """Popularity-weighted random sample, used when nothing else answers."""

    name = "fallback"

    def __init__(self, catalog: ProductCatalog, rng: Optional[np.random.Generator] = None):
        self.catalog = catalog
        self.rng = rng or np.random.default_rng()

    @staticmethod
    def popularity(product: Product) -> float:
        return product.view_count * 0.1 + product.total_orders + product.rating * 2

    def recommend(self, limit: int, exclude: Iterable[str] = ()) -> List[Candidate]:
        if limit <= 0:
            return []
        excluded = set(exclude)
        try:
            pool = self.catalog.query(lambda p: p.in_stock and p.id not in excluded)
        except Exception as e:
            logger.error(f"Fallback strategy failed: {e}", exc_info=True)
            return []
        pool.sort(key=self.popularity, reverse=True)
        pool = pool[: limit * 2]
        if len(pool) > limit:
            picks = self.rng.choice(len(pool), size=limit, replace=False)
            pool = sorted((pool[int(i)] for i in picks), key=self.popularity, reverse=True)
        return [Candidate(p, self.popularity(p), self.name) for p in pool]
