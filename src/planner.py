"""Per-strategy quotas and the fan-out/fan-in merge of strategy results"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from config import (
    distribution_tables,
    HIGH_ACTIVITY_VIEWS,
    HIGH_ACTIVITY_SEARCHES,
    MODERATE_ACTIVITY_VIEWS,
    RECENT_ACTIVITY_WINDOW,
    VIEW_COUNT_THRESHOLD,
    STRATEGY_WORKERS,
)
from models import ActivityTier, Candidate, utcnow
from stores import UserStore
from strategies import FallbackStrategy, Strategy
from utils import merge_unique

logger = logging.getLogger(__name__)

STRATEGY_ORDER = ("content", "collaborative", "trending", "new")


@dataclass
class DistributionPlan:
    tier: ActivityTier
    quotas: Dict[str, int]
    content_first: bool = False

    @property
    def total(self) -> int:
        return sum(self.quotas.values())

    def priority(self) -> List[str]:
        if self.content_first:
            return ["content", "collaborative", "trending", "new"]
        return ["trending", "content", "new", "collaborative"]


def allocate(limit: int, fractions: Dict[str, float]) -> Dict[str, int]:
    """Split `limit` by `fractions`, flooring all but "new" which is rounded up."""
    # rounded first so that 30 * 0.1 stays 3
    quotas = {name: int(math.floor(round(limit * fractions[name], 6))) for name in STRATEGY_ORDER if name != "new"}
    quotas["new"] = int(math.ceil(round(limit * fractions["new"], 6)))
    return quotas


class DistributionPlanner:
    def __init__(self, users: UserStore, clock: Callable[[], datetime] = utcnow):
        self.users = users
        self.clock = clock

    def classify(self, user_id: str) -> ActivityTier:
        user = self.users.get(user_id)
        if user is None:
            return ActivityTier.UNKNOWN
        cutoff = self.clock() - timedelta(seconds=RECENT_ACTIVITY_WINDOW)
        recent_views = sum(1 for v in user.view_history if v.viewed_at > cutoff)
        recent_searches = sum(1 for s in user.search_history if s.searched_at > cutoff)

        if recent_views > HIGH_ACTIVITY_VIEWS or recent_searches > HIGH_ACTIVITY_SEARCHES:
            return ActivityTier.HIGH
        if recent_views > MODERATE_ACTIVITY_VIEWS or user.analytics.total_orders > 0:
            return ActivityTier.MODERATE
        return ActivityTier.COLD

    def plan(self, user_id: str, limit: int) -> DistributionPlan:
        try:
            tier = self.classify(user_id)
            user = self.users.get(user_id)
        except Exception as e:
            logger.error(f"Error calculating distribution for {user_id}: {e}")
            tier, user = ActivityTier.UNKNOWN, None
        content_first = user is not None and len(user.view_history) > VIEW_COUNT_THRESHOLD
        return DistributionPlan(tier, allocate(limit, distribution_tables[tier.value]), content_first)


class FusionMerger:
    """Runs the planned strategies concurrently and merges them without duplicates."""

    def __init__(
        self,
        strategies: Dict[str, Strategy],
        fallback: FallbackStrategy,
        executor: Optional[ThreadPoolExecutor] = None,
        fill_with_fallback: bool = True,
    ):
        self.strategies = strategies
        self.fallback = fallback
        self.executor = executor or ThreadPoolExecutor(max_workers=STRATEGY_WORKERS, thread_name_prefix="strategy")
        self.fill_with_fallback = fill_with_fallback

    def _run(self, name: str, user_id: str, quota: int) -> List[Candidate]:
        try:
            return self.strategies[name].recommend(user_id, quota)
        except Exception as e:
            logger.error(f"{name} strategy raised: {e}", exc_info=True)
            return []

    def gather(self, user_id: str, plan: DistributionPlan) -> Dict[str, List[Candidate]]:
        futures = {
            name: self.executor.submit(self._run, name, user_id, plan.quotas.get(name, 0))
            for name in STRATEGY_ORDER
            if plan.quotas.get(name, 0) > 0 and name in self.strategies
        }
        return {name: future.result() for name, future in futures.items()}

    def merge(self, user_id: str, plan: DistributionPlan, limit: int) -> List[Candidate]:
        results = self.gather(user_id, plan)
        seen: set = set()
        merged = merge_unique((results.get(name, []) for name in plan.priority()), limit, seen)

        if not merged:
            return self.fallback.recommend(limit)
        if self.fill_with_fallback and len(merged) < limit:
            merged.extend(self.fallback.recommend(limit - len(merged), exclude=seen))
        return merged

    def shutdown(self):
        self.executor.shutdown(wait=False)
