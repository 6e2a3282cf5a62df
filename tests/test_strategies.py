from datetime import timedelta

import numpy as np

from cache import CacheKey
from models import DataUnavailable, StoredPreferences, UserRecord, ViewRecord
from preferences import PreferenceProfileBuilder
from stores import InMemoryCatalog
from strategies import (
    CollaborativeStrategy,
    ContentStrategy,
    FallbackStrategy,
    NewArrivalsStrategy,
    TrendingStrategy,
)


def content_strategy(catalog, orders, users, cache, now):
    profiles = PreferenceProfileBuilder(catalog, orders, users, clock=lambda: now)
    return ContentStrategy(catalog, orders, users, cache, clock=lambda: now, profiles=profiles)


def test_content_excludes_recent_views_and_unrelated_items(catalog, orders, users, cache, make_product, now) -> None:
    catalog.add(make_product("a", "bags", brand="b1"))
    catalog.add(make_product("b", "bags", brand="b2"))
    catalog.add(make_product("c", "shoes", brand="b3"))
    catalog.add(make_product("d", "bags", brand="b4", in_stock=False))
    users.add(UserRecord(id="u1", view_history=[ViewRecord("a", now - timedelta(hours=2), 20)]))

    results = content_strategy(catalog, orders, users, cache, now).recommend("u1", 10)

    assert [c.product.id for c in results] == ["b"]
    assert results[0].source == "content"
    assert CacheKey("content", "u1", (10,)) in cache


def test_content_scores_rank_by_affinity_and_quality(catalog, orders, users, cache, make_product, now) -> None:
    catalog.add(make_product("seen", "bags", brand="b1"))
    catalog.add(make_product("match", "bags", brand="b1", rating=4.5))
    catalog.add(make_product("weak", "bags", brand="zz", rating=1.0))
    users.add(UserRecord(id="u1", view_history=[ViewRecord("seen", now - timedelta(hours=2), 20)]))

    results = content_strategy(catalog, orders, users, cache, now).recommend("u1", 10)

    assert [c.product.id for c in results] == ["match", "weak"]
    assert results[0].score > results[1].score


def test_content_needs_a_user_and_a_profile(catalog, orders, users, cache, make_product, now) -> None:
    catalog.add(make_product("a"))
    strategy = content_strategy(catalog, orders, users, cache, now)
    assert strategy.recommend(None, 10) == []
    assert strategy.recommend("cold", 10) == []


def test_collaborative_surfaces_peer_purchases(catalog, orders, users, cache, make_product, make_order, now) -> None:
    for pid in ("p1", "p2", "p3"):
        catalog.add(make_product(pid))
    users.add(UserRecord(id="u1"))
    orders.add(make_order("u1", "p1", days_ago=5))
    orders.add(make_order("u2", "p1", "p2", days_ago=10))
    orders.add(make_order("u3", "p3", days_ago=10))

    results = CollaborativeStrategy(catalog, orders, users, cache, clock=lambda: now).recommend("u1", 10)

    assert [c.product.id for c in results] == ["p2"]
    assert results[0].score == 4
    assert results[0].detail("recommendedByUsers") == 1


def test_collaborative_cold_start_is_empty(catalog, orders, users, cache, make_product, make_order, now) -> None:
    catalog.add(make_product("p1"))
    orders.add(make_order("u2", "p1"))
    assert CollaborativeStrategy(catalog, orders, users, cache, clock=lambda: now).recommend("cold", 10) == []


def test_trending_combines_order_velocity_and_views(catalog, orders, users, cache, make_product, make_order, now) -> None:
    for pid in ("p1", "p2", "p3", "p4", "p5"):
        catalog.add(make_product(pid))
    orders.add(make_order("u2", "p1", days_ago=0.1))
    orders.add(make_order("u3", "p1", days_ago=0.2))
    orders.add(make_order("u2", "p2", days_ago=5))
    orders.add(make_order("u2", "p3", days_ago=10))
    orders.add(make_order("u3", "p5", days_ago=0.1, status="cancelled"))
    users.add(UserRecord(id="u4", view_history=[ViewRecord("p4", now - timedelta(days=1), 30)]))

    results = TrendingStrategy(catalog, orders, users, cache, clock=lambda: now).recommend(None, 10)

    assert [c.product.id for c in results] == ["p1", "p2", "p4"]
    assert results[0].detail("trendingUsers") == 2
    assert CacheKey("trending", None, (10,)) in cache


def test_trending_on_empty_catalog_is_empty(catalog, orders, users, cache, now) -> None:
    assert TrendingStrategy(catalog, orders, users, cache, clock=lambda: now).recommend(None, 20) == []


def test_new_arrivals_prefer_the_newest(catalog, orders, users, cache, make_product, now) -> None:
    catalog.add(make_product("fresh", created_at=now - timedelta(days=2)))
    catalog.add(make_product("recent", created_at=now - timedelta(days=20)))
    catalog.add(make_product("old", created_at=now - timedelta(days=40)))
    catalog.add(make_product("gone", created_at=now - timedelta(days=1), in_stock=False))
    profiles = PreferenceProfileBuilder(catalog, orders, users, clock=lambda: now)

    results = NewArrivalsStrategy(catalog, orders, users, cache, clock=lambda: now, profiles=profiles).recommend(None, 10)

    assert [c.product.id for c in results] == ["fresh", "recent"]
    assert results[0].detail("isVeryNew") is True
    assert CacheKey("new", None, (10,)) in cache


def test_new_arrivals_narrow_to_the_users_taste(catalog, orders, users, cache, make_product, make_order, now) -> None:
    catalog.add(make_product("bought", "shoes", brand="s1"))
    catalog.add(make_product("new-shoe", "shoes", brand="s2", created_at=now - timedelta(days=3)))
    catalog.add(make_product("new-hat", "hats", brand="h1", created_at=now - timedelta(days=3)))
    users.add(UserRecord(id="u1"))
    orders.add(make_order("u1", "bought", days_ago=2))
    profiles = PreferenceProfileBuilder(catalog, orders, users, clock=lambda: now)

    results = NewArrivalsStrategy(catalog, orders, users, cache, clock=lambda: now, profiles=profiles).recommend("u1", 10)

    assert [c.product.id for c in results] == ["new-shoe"]
    assert CacheKey("new", "u1", (10,)) in cache


def test_fallback_samples_popular_in_stock_products(catalog, make_product) -> None:
    for i in range(10):
        catalog.add(make_product(f"p{i}", view_count=i * 10, total_orders=i))
    catalog.add(make_product("hidden", view_count=10_000, in_stock=False))
    fallback = FallbackStrategy(catalog, rng=np.random.default_rng(3))

    picks = fallback.recommend(3, exclude=["p9"])

    ids = [c.product.id for c in picks]
    assert len(ids) == 3
    assert len(set(ids)) == 3
    assert set(ids) <= {"p8", "p7", "p6", "p5", "p4", "p3"}
    assert [c.score for c in picks] == sorted((c.score for c in picks), reverse=True)


class BrokenCatalog(InMemoryCatalog):
    def query(self, predicate):
        raise DataUnavailable("catalog timed out")


def test_strategy_failure_contributes_nothing_and_caches_nothing(orders, users, cache, make_product, now) -> None:
    catalog = BrokenCatalog([make_product("a", "bags")])
    users.add(UserRecord(id="u1", view_history=[ViewRecord("a", now - timedelta(hours=1), 5)]))

    assert content_strategy(catalog, orders, users, cache, now).recommend("u1", 10) == []
    assert CacheKey("content", "u1", (10,)) not in cache
    assert FallbackStrategy(catalog).recommend(5) == []


def test_new_arrivals_use_declared_preferences_without_history(catalog, orders, users, cache, make_product, now) -> None:
    catalog.add(make_product("new-shoe", "shoes", created_at=now - timedelta(days=3)))
    catalog.add(make_product("new-hat", "hats", created_at=now - timedelta(days=3)))
    users.add(UserRecord(id="u1", preferences=StoredPreferences(categories=["hats"])))
    profiles = PreferenceProfileBuilder(catalog, orders, users, clock=lambda: now)

    results = NewArrivalsStrategy(catalog, orders, users, cache, clock=lambda: now, profiles=profiles).recommend("u1", 10)

    assert [c.product.id for c in results] == ["new-hat"]
