"""Collaborator interfaces the engine reads from, with in-memory implementations"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Set, Tuple

from config import VIEW_HISTORY_LIMIT, SEARCH_HISTORY_LIMIT
from models import (
    CartRecord,
    DataUnavailable,
    Order,
    Product,
    SearchRecord,
    UserRecord,
    ViewRecord,
    WishlistRecord,
)

logger = logging.getLogger(__name__)


class ProductCatalog(ABC):
    @abstractmethod
    def get(self, product_id: str) -> Optional[Product]: ...

    @abstractmethod
    def get_many(self, product_ids: Iterable[str]) -> Dict[str, Product]: ...

    @abstractmethod
    def query(self, predicate: Callable[[Product], bool]) -> List[Product]: ...

    @abstractmethod
    def all(self) -> List[Product]: ...

    @abstractmethod
    def increment_views(self, product_id: str): ...


class OrderBook(ABC):
    @abstractmethod
    def for_user(self, user_id: str, limit: Optional[int] = None) -> List[Order]:
        """Non-cancelled orders of one user, newest first."""

    @abstractmethod
    def since(self, since: datetime) -> List[Order]:
        """Non-cancelled orders created at or after `since`."""

    @abstractmethod
    def containing(self, product_ids: Set[str], since: Optional[datetime] = None) -> List[Order]:
        """Non-cancelled orders holding any of `product_ids`."""


class UserStore(ABC):
    @abstractmethod
    def get(self, user_id: str) -> Optional[UserRecord]: ...

    @abstractmethod
    def all(self) -> List[UserRecord]: ...

    @abstractmethod
    def views_since(self, since: datetime) -> Iterator[Tuple[str, ViewRecord]]: ...

    @abstractmethod
    def record_view(self, user_id: str, view: ViewRecord, now: datetime): ...

    @abstractmethod
    def record_search(self, user_id: str, search: SearchRecord, now: datetime): ...

    @abstractmethod
    def record_cart_addition(self, user_id: str, cart: CartRecord, now: datetime): ...

    @abstractmethod
    def add_to_wishlist(self, user_id: str, item: WishlistRecord, now: datetime): ...

    @abstractmethod
    def remove_from_wishlist(self, user_id: str, product_id: str, now: datetime): ...

    @abstractmethod
    def record_purchase(self, user_id: str, amount: float, now: datetime): ...

    @abstractmethod
    def touch(self, user_id: str, now: datetime): ...


class InMemoryCatalog(ProductCatalog):
    def __init__(self, products: Iterable[Product] = ()):
        self._lock = threading.Lock()
        self._products: Dict[str, Product] = {p.id: p for p in products}

    def add(self, product: Product):
        with self._lock:
            self._products[product.id] = product

    def get(self, product_id: str) -> Optional[Product]:
        return self._products.get(product_id)

    def get_many(self, product_ids: Iterable[str]) -> Dict[str, Product]:
        found = {}
        for product_id in product_ids:
            product = self._products.get(product_id)
            if product is not None:
                found[product_id] = product
        return found

    def query(self, predicate: Callable[[Product], bool]) -> List[Product]:
        return [p for p in list(self._products.values()) if predicate(p)]

    def all(self) -> List[Product]:
        return list(self._products.values())

    def increment_views(self, product_id: str):
        with self._lock:
            product = self._products.get(product_id)
            if product is not None:
                self._products[product_id] = replace(product, view_count=product.view_count + 1)


class InMemoryOrderBook(OrderBook):
    def __init__(self, orders: Iterable[Order] = ()):
        self._lock = threading.Lock()
        self._orders: List[Order] = list(orders)

    def add(self, order: Order):
        with self._lock:
            self._orders.append(order)

    def _live(self) -> List[Order]:
        return [o for o in list(self._orders) if not o.cancelled]

    def for_user(self, user_id: str, limit: Optional[int] = None) -> List[Order]:
        orders = sorted(
            (o for o in self._live() if o.user_id == user_id),
            key=lambda o: o.created_at,
            reverse=True,
        )
        return orders[:limit] if limit is not None else orders

    def since(self, since: datetime) -> List[Order]:
        return [o for o in self._live() if o.created_at >= since]

    def containing(self, product_ids: Set[str], since: Optional[datetime] = None) -> List[Order]:
        return [
            o
            for o in self._live()
            if (since is None or o.created_at >= since) and any(i.product_id in product_ids for i in o.items)
        ]


class InMemoryUserStore(UserStore):
    def __init__(
        self,
        users: Iterable[UserRecord] = (),
        view_limit: int = VIEW_HISTORY_LIMIT,
        search_limit: int = SEARCH_HISTORY_LIMIT,
    ):
        self._lock = threading.Lock()
        self._users: Dict[str, UserRecord] = {u.id: u for u in users}
        self.view_limit = view_limit
        self.search_limit = search_limit

    def add(self, user: UserRecord):
        with self._lock:
            self._users[user.id] = user

    def get(self, user_id: str) -> Optional[UserRecord]:
        return self._users.get(user_id)

    def all(self) -> List[UserRecord]:
        return list(self._users.values())

    def views_since(self, since: datetime) -> Iterator[Tuple[str, ViewRecord]]:
        for user in self.all():
            for view in list(user.view_history):
                if view.viewed_at >= since:
                    yield user.id, view

    def _require(self, user_id: str) -> UserRecord:
        user = self._users.get(user_id)
        if user is None:
            raise KeyError(f"Unknown user {user_id}")
        return user

    def record_view(self, user_id: str, view: ViewRecord, now: datetime):
        with self._lock:
            user = self._require(user_id)
            user.view_history = [view, *user.view_history][: self.view_limit]
            user.analytics.last_activity = now

    def record_search(self, user_id: str, search: SearchRecord, now: datetime):
        with self._lock:
            user = self._require(user_id)
            user.search_history = [search, *user.search_history][: self.search_limit]
            user.analytics.last_activity = now

    def record_cart_addition(self, user_id: str, cart: CartRecord, now: datetime):
        with self._lock:
            user = self._require(user_id)
            user.cart_additions = [*user.cart_additions, cart]
            user.analytics.last_activity = now

    def add_to_wishlist(self, user_id: str, item: WishlistRecord, now: datetime):
        with self._lock:
            user = self._require(user_id)
            if all(w.product_id != item.product_id for w in user.wishlist):
                user.wishlist = [*user.wishlist, item]
            user.analytics.last_activity = now

    def remove_from_wishlist(self, user_id: str, product_id: str, now: datetime):
        with self._lock:
            user = self._require(user_id)
            user.wishlist = [w for w in user.wishlist if w.product_id != product_id]
            user.analytics.last_activity = now

    def record_purchase(self, user_id: str, amount: float, now: datetime):
        with self._lock:
            user = self._require(user_id)
            user.analytics.total_orders += 1
            user.analytics.total_spent += amount
            user.analytics.last_purchase = now
            user.analytics.last_activity = now

    def touch(self, user_id: str, now: datetime):
        with self._lock:
            self._require(user_id).analytics.last_activity = now


def load_seed(path: str):
    """Build in-memory stores from a JSON document of products, users and orders."""
    try:
        with open(path, encoding="utf-8") as handle:
            data = json.load(handle)
        catalog = InMemoryCatalog(Product.from_dict(p) for p in data.get("products", []))
        users = InMemoryUserStore(UserRecord.from_dict(u) for u in data.get("users", []))
        orders = InMemoryOrderBook(Order.from_dict(o) for o in data.get("orders", []))
    except (OSError, ValueError, KeyError, AttributeError) as e:
        raise DataUnavailable(f"Cannot load seed {path}: {e}") from e
    logger.info(
        f"Loaded seed {path}: {len(catalog.all())} products, {len(users.all())} users, "
        f"{len(data.get('orders', []))} orders"
    )
    return catalog, orders, users
