from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import numpy as np
import pytest

from config import distribution_tables
from models import ActivityTier, Candidate, SearchRecord, UserAnalytics, UserRecord, ViewRecord
from planner import DistributionPlan, DistributionPlanner, FusionMerger, allocate
from strategies import FallbackStrategy


@pytest.mark.parametrize("tier", sorted(distribution_tables))
def test_allocate_never_exceeds_the_limit(tier) -> None:
    fractions = distribution_tables[tier]
    for limit in range(0, 101):
        quotas = allocate(limit, fractions)
        assert set(quotas) == {"content", "collaborative", "trending", "new"}
        assert all(q >= 0 for q in quotas.values())
        assert limit - 3 <= sum(quotas.values()) <= limit


def test_cold_user_split_for_twenty(users, now) -> None:
    plan = DistributionPlanner(users, clock=lambda: now).plan("cold", 20)

    assert plan.tier is ActivityTier.COLD
    assert plan.quotas == {"content": 6, "collaborative": 4, "trending": 6, "new": 4}
    assert plan.total == 20
    assert plan.priority()[0] == "trending"


def test_classify_tiers(users, now) -> None:
    recent = now - timedelta(minutes=10)
    stale = now - timedelta(hours=3)
    users.add(UserRecord(id="busy", view_history=[ViewRecord(f"p{i}", recent, 5) for i in range(11)]))
    users.add(UserRecord(id="searcher", search_history=[SearchRecord(f"q{i}", recent) for i in range(6)]))
    users.add(UserRecord(id="browser", view_history=[ViewRecord(f"p{i}", recent, 5) for i in range(6)]))
    users.add(UserRecord(id="buyer", analytics=UserAnalytics(total_orders=2)))
    users.add(UserRecord(id="lapsed", view_history=[ViewRecord(f"p{i}", stale, 5) for i in range(20)]))
    planner = DistributionPlanner(users, clock=lambda: now)

    assert planner.classify("busy") is ActivityTier.HIGH
    assert planner.classify("searcher") is ActivityTier.HIGH
    assert planner.classify("browser") is ActivityTier.MODERATE
    assert planner.classify("buyer") is ActivityTier.MODERATE
    assert planner.classify("lapsed") is ActivityTier.COLD
    assert planner.classify("nobody") is ActivityTier.UNKNOWN


def test_content_first_after_a_few_views(users, now) -> None:
    users.add(UserRecord(id="u1", view_history=[ViewRecord(f"p{i}", now, 5) for i in range(4)]))
    plan = DistributionPlanner(users, clock=lambda: now).plan("u1", 10)
    assert plan.content_first
    assert plan.priority() == ["content", "collaborative", "trending", "new"]


class StubStrategy:
    def __init__(self, name, products):
        self.name = name
        self.products = products
        self.calls = []

    def recommend(self, user_id, limit):
        self.calls.append((user_id, limit))
        return [Candidate(p, 1.0, self.name) for p in self.products[:limit]]


class ExplodingStrategy:
    def recommend(self, user_id, limit):
        raise RuntimeError("boom")


@pytest.fixture
def executor():
    pool = ThreadPoolExecutor(max_workers=4)
    yield pool
    pool.shutdown(wait=True)


def test_merge_deduplicates_in_priority_order(catalog, make_product, executor) -> None:
    a, b, c = make_product("a"), make_product("b"), make_product("c")
    strategies = {
        "content": StubStrategy("content", [a, b]),
        "collaborative": StubStrategy("collaborative", [b, c]),
        "trending": StubStrategy("trending", [c, a]),
        "new": StubStrategy("new", []),
    }
    merger = FusionMerger(strategies, FallbackStrategy(catalog), executor=executor, fill_with_fallback=False)
    plan = DistributionPlan(ActivityTier.HIGH, {"content": 2, "collaborative": 2, "trending": 2, "new": 0}, True)

    merged = merger.merge("u1", plan, 10)

    assert [m.product.id for m in merged] == ["a", "b", "c"]
    assert [m.source for m in merged] == ["content", "content", "collaborative"]
    assert strategies["new"].calls == []


def test_merge_survives_a_failing_strategy(catalog, make_product, executor) -> None:
    strategies = {"content": ExplodingStrategy(), "trending": StubStrategy("trending", [make_product("t")])}
    merger = FusionMerger(strategies, FallbackStrategy(catalog), executor=executor, fill_with_fallback=False)
    plan = DistributionPlan(ActivityTier.COLD, {"content": 3, "collaborative": 0, "trending": 3, "new": 0})

    assert [m.product.id for m in merger.merge("u1", plan, 5)] == ["t"]


def test_empty_merge_falls_back(catalog, make_product, executor) -> None:
    catalog.add(make_product("pop", view_count=100))
    strategies = {name: StubStrategy(name, []) for name in ("content", "collaborative", "trending", "new")}
    merger = FusionMerger(strategies, FallbackStrategy(catalog, rng=np.random.default_rng(1)), executor=executor)
    plan = DistributionPlan(ActivityTier.COLD, allocate(5, distribution_tables["cold"]))

    merged = merger.merge("u1", plan, 5)

    assert [(m.product.id, m.source) for m in merged] == [("pop", "fallback")]


def test_short_merge_is_topped_up_without_duplicates(catalog, make_product, executor) -> None:
    products = [make_product(f"p{i}", view_count=i) for i in range(6)]
    for p in products:
        catalog.add(p)
    strategies = {"content": StubStrategy("content", products[:2])}
    merger = FusionMerger(strategies, FallbackStrategy(catalog, rng=np.random.default_rng(2)), executor=executor)
    plan = DistributionPlan(ActivityTier.HIGH, {"content": 2, "collaborative": 0, "trending": 0, "new": 0})

    merged = merger.merge("u1", plan, 5)

    ids = [m.product.id for m in merged]
    assert len(ids) == 5
    assert len(set(ids)) == 5
    assert ids[:2] == ["p0", "p1"]


def test_mixed_recommendations_for_a_cold_user(service, catalog, make_product, now) -> None:
    for i in range(30):
        catalog.add(make_product(f"p{i}", created_at=now - timedelta(days=i * 2), view_count=i))

    results = service.recommend("cold", "mixed", 20)

    ids = [r.product.id for r in results]
    assert 0 < len(ids) <= 20
    assert len(ids) == len(set(ids))
    assert all(r.recommendation_type == "mixed" for r in results)
