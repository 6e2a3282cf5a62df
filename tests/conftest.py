from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from app import create_app
from cache import ActivityCache
from models import Order, OrderItem, Product, UserRecord
from service import RecommendationService
from stores import InMemoryCatalog, InMemoryOrderBook, InMemoryUserStore

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


class ManualClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def make_product():
    def factory(pid: str, category: str = "shoes", **kwargs) -> Product:
        fields = {"name": f"Product {pid}", "price": 100.0, "brand": "acme", "created_at": NOW - timedelta(days=60)}
        fields.update(kwargs)
        return Product(id=pid, category=category, **fields)

    return factory


@pytest.fixture
def make_order():
    counter = {"n": 0}

    def factory(user_id: str, *product_ids: str, days_ago: float = 1, quantity: int = 1, price: float = 100.0,
                status: str = "delivered") -> Order:
        counter["n"] += 1
        items = [OrderItem(product_id=pid, quantity=quantity, price=price) for pid in product_ids]
        return Order(
            id=f"o{counter['n']}",
            user_id=user_id,
            items=items,
            created_at=NOW - timedelta(days=days_ago),
            status=status,
            total_amount=sum(i.price * i.quantity for i in items),
        )

    return factory


@pytest.fixture
def catalog() -> InMemoryCatalog:
    return InMemoryCatalog()


@pytest.fixture
def orders() -> InMemoryOrderBook:
    return InMemoryOrderBook()


@pytest.fixture
def users() -> InMemoryUserStore:
    return InMemoryUserStore([UserRecord(id="cold"), UserRecord(id="admin", role="admin")])


@pytest.fixture
def cache_clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def cache(cache_clock) -> ActivityCache:
    return ActivityCache(max_size=50, ttl=30, personalized_ttl=15, burst_window=5, clock=cache_clock)


@pytest.fixture
def service(catalog, orders, users, cache):
    svc = RecommendationService(catalog, orders, users, cache, clock=lambda: NOW, rng=np.random.default_rng(7))
    yield svc
    svc.shutdown()


@pytest.fixture
def app(service):
    return create_app(service, secret_key="test-secret")


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(app):
    def factory(user_id: str) -> dict:
        token = app.extensions["token_authority"].issue(user_id)
        return {"Authorization": f"Bearer {token}"}

    return factory
