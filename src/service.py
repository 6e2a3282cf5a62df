"""Service layer tying strategies, cache and tracking together"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from analytics import EngagementAnalytics
from cache import ActivityCache, CacheKey
from config import (
    DEFAULT_RECOMMENDATIONS,
    MAX_RECOMMENDATIONS,
    recommendation_reasons,
    base_confidence,
)
from models import Candidate, RecommendationResult, UserRecord, utcnow
from planner import DistributionPlanner, FusionMerger
from preferences import PreferenceProfileBuilder
from related import RelatedProducts
from stores import InMemoryCatalog, InMemoryOrderBook, InMemoryUserStore, OrderBook, ProductCatalog, UserStore
from strategies import (
    CollaborativeStrategy,
    ContentStrategy,
    FallbackStrategy,
    NewArrivalsStrategy,
    TrendingStrategy,
)
from sweeper import BackgroundSweeper
from tracking import TrackingIngestor, TrackingOutcome, build_event

logger = logging.getLogger(__name__)

RECOMMENDATION_TYPES = ("mixed", "collaborative", "content", "trending", "new")


def clamp_limit(value: Any, default: int = DEFAULT_RECOMMENDATIONS, maximum: int = MAX_RECOMMENDATIONS) -> int:
    try:
        limit = int(value)
    except (TypeError, ValueError):
        return default
    if limit <= 0:
        return default
    return min(limit, maximum)


def reason_for(source: str, candidate: Optional[Candidate] = None) -> str:
    if source == "trending":
        users = candidate.detail("trendingUsers") if candidate else None
        return recommendation_reasons["trending"].format(count=users or "Many")
    return recommendation_reasons.get(source, "Suggested for you")


def confidence_for(source: str, index: int, total: int) -> float:
    base = base_confidence.get(source, 0.5)
    penalty = (index / total) * 0.2 if total else 0.0
    return max(0.3, base - penalty)


class RecommendationService:
    def __init__(
        self,
        catalog: Optional[ProductCatalog] = None,
        orders: Optional[OrderBook] = None,
        users: Optional[UserStore] = None,
        cache: Optional[ActivityCache] = None,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[np.random.Generator] = None,
    ):
        self.catalog = catalog if catalog is not None else InMemoryCatalog()
        self.orders = orders if orders is not None else InMemoryOrderBook()
        self.users = users if users is not None else InMemoryUserStore()
        self.cache = cache if cache is not None else ActivityCache()
        self.clock = clock

        stores = (self.catalog, self.orders, self.users, self.cache)
        self.profiles = PreferenceProfileBuilder(self.catalog, self.orders, self.users, clock=clock)
        self.strategies = {
            "content": ContentStrategy(*stores, clock=clock, profiles=self.profiles),
            "collaborative": CollaborativeStrategy(*stores, clock=clock),
            "trending": TrendingStrategy(*stores, clock=clock),
            "new": NewArrivalsStrategy(*stores, clock=clock, profiles=self.profiles),
        }
        self.fallback = FallbackStrategy(self.catalog, rng=rng)
        self.planner = DistributionPlanner(self.users, clock=clock)
        self.merger = FusionMerger(self.strategies, self.fallback)
        self.related = RelatedProducts(self.catalog, self.orders, self.cache, clock=clock)
        self.ingestor = TrackingIngestor(self.catalog, self.users, self.cache, clock=clock)
        self.analytics = EngagementAnalytics(self.catalog, self.orders, self.users, self.cache, clock=clock)
        self.sweeper = BackgroundSweeper(self.cache)

    def _enrich(self, candidates: List[Candidate], rec_type: str, fixed_confidence: Optional[float] = None) -> List[RecommendationResult]:
        total = len(candidates)
        return [
            RecommendationResult(
                product=c.product,
                strategy_source=c.source,
                raw_score=c.score,
                reason=reason_for(c.source, c),
                confidence=fixed_confidence if fixed_confidence is not None else confidence_for(c.source, i, total),
                rank_score=total - i,
                recommendation_type=rec_type,
            )
            for i, c in enumerate(candidates)
        ]

    def guest_recommendations(self, rec_type: str, limit: int) -> List[RecommendationResult]:
        key = CacheKey("guest", None, (rec_type, limit))

        def compute():
            if rec_type == "trending":
                return tuple(self.strategies["trending"].recommend(None, limit))
            return tuple(self.fallback.recommend(limit))

        candidates = self.cache.get_or_compute(key, compute)
        return self._enrich(list(candidates), rec_type, fixed_confidence=0.5)

    def recommend(self, user_id: Optional[str], rec_type: str = "mixed", limit: Any = DEFAULT_RECOMMENDATIONS) -> List[RecommendationResult]:
        """Ranked recommendations of `rec_type`; never raises."""
        limit = clamp_limit(limit)
        if rec_type not in RECOMMENDATION_TYPES:
            rec_type = "mixed"
        try:
            if not user_id:
                return self.guest_recommendations(rec_type, limit)

            if rec_type == "mixed":
                plan = self.planner.plan(user_id, limit)
                logger.debug(f"Plan for {user_id}: tier={plan.tier.value} quotas={plan.quotas}")
                candidates = self.merger.merge(user_id, plan, limit)
            else:
                candidates = self.strategies[rec_type].recommend(user_id, limit)

            if not candidates:
                candidates = self.fallback.recommend(limit)
            return self._enrich(candidates, rec_type)
        except Exception as e:
            logger.error(f"Recommendation error for user {user_id}: {e}", exc_info=True)
            return self._enrich(self.fallback.recommend(DEFAULT_RECOMMENDATIONS), "fallback", fixed_confidence=0.5)

    def product_recommendations(self, product_id: str, user_id: Optional[str] = None) -> Optional[Dict[str, List[Dict]]]:
        """similar / complementary / userRecommended lists, or None for an unknown product."""
        product = self.catalog.get(product_id)
        if product is None:
            return None
        if user_id:
            self.cache.track_activity(user_id)

        response: Dict[str, List[Dict]] = {"similar": [], "complementary": [], "userRecommended": []}
        sections = {
            "similar": lambda: self.related.similar(product, 10),
            "complementary": lambda: self.related.complementary([product_id], 10),
        }
        if user_id:
            sections["userRecommended"] = lambda: self.related.also_bought(product_id, user_id, 5)

        for name, compute in sections.items():
            try:
                response[name] = [self._related_item(c) for c in compute()]
            except Exception as e:
                logger.error(f"Error getting {name} products for {product_id}: {e}", exc_info=True)
                response[name] = []
        return response

    @staticmethod
    def _related_item(candidate: Candidate) -> Dict[str, Any]:
        item = candidate.product.summary()
        item["score"] = round(candidate.score, 4)
        item.update(dict(candidate.details))
        return item

    def track(self, user_id: str, action: Any, product_id: Optional[str] = None, duration: Any = None,
              metadata: Optional[Dict] = None) -> TrackingOutcome:
        """Record an interaction. Raises InvalidTrackingEvent before touching any state."""
        event = build_event(user_id, action, product_id, duration, metadata, now=self.clock())
        return self.ingestor.track(event)

    def realtime(self, user_id: str, limit: Any = 10) -> List[RecommendationResult]:
        self.cache.invalidate_user(user_id)
        limit = clamp_limit(limit, default=10)
        return self._enrich(self.strategies["content"].recommend(user_id, limit), "content")

    def user_stats(self, user: UserRecord) -> Dict[str, Any]:
        return self.analytics.user_stats(user)

    def admin_analytics(self) -> Dict[str, Any]:
        return self.analytics.admin_summary()

    def start(self):
        self.sweeper.start()

    def shutdown(self):
        self.sweeper.stop()
        self.merger.shutdown()
        self.cache.reset()
