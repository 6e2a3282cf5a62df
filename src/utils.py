import logging
import math
from datetime import datetime
from typing import Dict, Iterable, List, Optional

import numpy as np

from config import (
    interaction_weights,
    decay_windows,
    DECAY_HOUR_BOOST,
    DECAY_DAY_BOOST,
    DECAY_MIN_FACTOR,
)
from models import Candidate

logger = logging.getLogger(__name__)


def get_interaction_weight(source: str) -> float:
    return interaction_weights.get(source, 0.0)


def age_in_days(when: Optional[datetime], now: datetime) -> Optional[float]:
    if when is None:
        return None
    return max((now - when).total_seconds(), 0.0) / 86400.0


def time_decay(when: Optional[datetime], now: datetime, window_days: float) -> float:
    """Freshness multiplier for an interaction.

    Anything from the last hour counts double, the last day 1.5x, older events
    decay exponentially over `window_days` down to a floor.
    """
    days = age_in_days(when, now)
    if days is None:
        return DECAY_MIN_FACTOR
    hours = days * 24
    if hours < 1:
        return DECAY_HOUR_BOOST
    if hours < 24:
        return DECAY_DAY_BOOST
    return max(DECAY_MIN_FACTOR, math.exp(-days / window_days))


def source_decay(source: str, when: Optional[datetime], now: datetime) -> float:
    return time_decay(when, now, decay_windows[source])


def recency_multiplier(index: int) -> float:
    """Boost for items near the top of a most-recent-first list."""
    return 1 + 1 / (index + 1)


def event_weight(source: str, index: int, when: Optional[datetime], now: datetime) -> float:
    return get_interaction_weight(source) * recency_multiplier(index) * source_decay(source, when, now)


def accumulate(scores: Dict[str, float], keys: Iterable[str], weight: float):
    for key in keys:
        if key:
            scores[key] = scores.get(key, 0.0) + weight


def iqr_price_band(prices: List[float]):
    """Q1 - 0.5*IQR .. Q3 + 0.5*IQR over the sorted samples, or None."""
    if not prices:
        return None
    ordered = np.sort(np.asarray(prices, dtype=float))
    q1 = ordered[int(len(ordered) * 0.25)]
    q3 = ordered[int(len(ordered) * 0.75)]
    iqr = q3 - q1
    return max(0.0, float(q1 - iqr * 0.5)), float(q3 + iqr * 0.5)


def log10p(value: float) -> float:
    return float(np.log10(max(value, 0) + 1))


def rank_candidates(candidates: Iterable[Candidate], limit: int) -> List[Candidate]:
    return sorted(candidates, key=lambda c: c.score, reverse=True)[:limit]


def merge_unique(lists: Iterable[List[Candidate]], limit: int, seen: Optional[set] = None) -> List[Candidate]:
    """Walk lists in order keeping the first occurrence of each product."""
    seen = set() if seen is None else seen
    merged: List[Candidate] = []
    for candidates in lists:
        for candidate in candidates:
            if len(merged) >= limit:
                return merged
            if candidate.product.id in seen:
                continue
            seen.add(candidate.product.id)
            merged.append(candidate)
    return merged
