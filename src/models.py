"""Typed records shared by the stores, strategies and routes"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class DataUnavailable(RuntimeError):
    """A collaborator store failed or timed out."""


class InvalidTrackingEvent(ValueError):
    """Tracking request rejected before any state was touched."""


class EventKind(str, Enum):
    VIEW = "view"
    SEARCH = "search"
    ADD_TO_CART = "addToCart"
    WISHLIST = "wishlist"
    PURCHASE = "purchase"
    CLICK = "click"
    RECOMMENDATION_LOAD = "recommendation_load"
    SCROLL = "scroll"


class ActivityTier(str, Enum):
    HIGH = "high"
    MODERATE = "moderate"
    COLD = "cold"
    UNKNOWN = "unknown"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class PriceBand:
    min: float
    max: float

    def contains(self, price: float) -> bool:
        return self.min <= price <= self.max

    def widened(self, low: float = 0.7, high: float = 1.3) -> "PriceBand":
        return PriceBand(self.min * low, self.max * high)


@dataclass
class Product:
    id: str
    name: str
    price: float
    category: str
    brand: str = ""
    subcategory: str = ""
    tags: List[str] = field(default_factory=list)
    colors: List[str] = field(default_factory=list)
    sizes: List[str] = field(default_factory=list)
    images: List[str] = field(default_factory=list)
    rating: float = 0.0
    total_reviews: int = 0
    view_count: int = 0
    total_orders: int = 0
    in_stock: bool = True
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_dict(cls, data: Dict) -> "Product":
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            price=float(data.get("price", 0.0)),
            category=data.get("category", ""),
            brand=data.get("brand") or "",
            subcategory=data.get("subcategory") or "",
            tags=list(data.get("tags") or []),
            colors=list(data.get("colors") or []),
            sizes=list(data.get("sizes") or []),
            images=list(data.get("images") or []),
            rating=float(data.get("rating") or 0.0),
            total_reviews=int(data.get("totalReviews") or 0),
            view_count=int(data.get("viewCount") or 0),
            total_orders=int(data.get("totalOrders") or 0),
            in_stock=bool(data.get("inStock", True)),
            created_at=parse_timestamp(data.get("createdAt")) or utcnow(),
        )

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "price": self.price,
            "category": self.category,
            "brand": self.brand,
            "rating": self.rating,
            "images": list(self.images),
        }


@dataclass
class OrderItem:
    product_id: str
    quantity: int = 1
    price: float = 0.0
    size: Optional[str] = None
    color: Optional[str] = None


@dataclass
class Order:
    id: str
    user_id: str
    items: List[OrderItem]
    created_at: datetime
    status: str = "pending"
    total_amount: float = 0.0

    @property
    def cancelled(self) -> bool:
        return self.status == "cancelled"

    @classmethod
    def from_dict(cls, data: Dict) -> "Order":
        items = [
            OrderItem(
                product_id=str(item["product"]),
                quantity=int(item.get("quantity") or 1),
                price=float(item.get("price") or 0.0),
                size=item.get("size"),
                color=item.get("color"),
            )
            for item in data.get("items", [])
        ]
        return cls(
            id=str(data["id"]),
            user_id=str(data["user"]),
            items=items,
            created_at=parse_timestamp(data.get("createdAt")) or utcnow(),
            status=data.get("orderStatus", "pending"),
            total_amount=float(data.get("totalAmount") or sum(i.price * i.quantity for i in items)),
        )


# History records, one type per interaction kind


@dataclass(frozen=True)
class ViewRecord:
    product_id: str
    viewed_at: datetime
    duration: Optional[float] = None
    source: str = "direct"


@dataclass(frozen=True)
class SearchRecord:
    query: str
    searched_at: datetime
    results_count: int = 0
    clicked_results: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CartRecord:
    product_id: str
    added_at: datetime
    quantity: int = 1
    size: Optional[str] = None
    color: Optional[str] = None
    removed: bool = False


@dataclass(frozen=True)
class WishlistRecord:
    product_id: str
    added_at: datetime


@dataclass
class UserAnalytics:
    total_orders: int = 0
    total_spent: float = 0.0
    last_activity: Optional[datetime] = None
    last_purchase: Optional[datetime] = None
    last_login: Optional[datetime] = None


@dataclass
class StoredPreferences:
    price_band: Optional[PriceBand] = None
    categories: List[str] = field(default_factory=list)
    brands: List[str] = field(default_factory=list)


@dataclass
class UserRecord:
    id: str
    email: str = ""
    role: str = "user"
    is_active: bool = True
    view_history: List[ViewRecord] = field(default_factory=list)
    search_history: List[SearchRecord] = field(default_factory=list)
    cart_additions: List[CartRecord] = field(default_factory=list)
    wishlist: List[WishlistRecord] = field(default_factory=list)
    analytics: UserAnalytics = field(default_factory=UserAnalytics)
    preferences: StoredPreferences = field(default_factory=StoredPreferences)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @classmethod
    def from_dict(cls, data: Dict) -> "UserRecord":
        prefs = data.get("preferences") or {}
        band = prefs.get("priceRange")
        analytics = data.get("analytics") or {}
        return cls(
            id=str(data["id"]),
            email=data.get("email", ""),
            role=data.get("role", "user"),
            is_active=data.get("isActive", True),
            view_history=[
                ViewRecord(str(v["product"]), parse_timestamp(v["viewedAt"]), v.get("duration"), v.get("source", "direct"))
                for v in data.get("viewHistory", [])
            ],
            search_history=[
                SearchRecord(s["query"], parse_timestamp(s["searchedAt"]), s.get("resultsCount", 0))
                for s in data.get("searchHistory", [])
            ],
            cart_additions=[
                CartRecord(str(c["product"]), parse_timestamp(c["timestamp"]), c.get("quantity", 1), c.get("size"), c.get("color"))
                for c in data.get("cartAdditions", [])
            ],
            wishlist=[
                WishlistRecord(str(w["product"]), parse_timestamp(w["addedAt"])) for w in data.get("wishlist", [])
            ],
            analytics=UserAnalytics(
                total_orders=int(analytics.get("totalOrders", 0)),
                total_spent=float(analytics.get("totalSpent", 0.0)),
                last_activity=parse_timestamp(analytics.get("lastActivityDate")),
                last_purchase=parse_timestamp(analytics.get("lastPurchaseDate")),
                last_login=parse_timestamp(analytics.get("lastLoginDate")),
            ),
            preferences=StoredPreferences(
                price_band=PriceBand(float(band["min"]), float(band["max"])) if band else None,
                categories=list(prefs.get("preferredCategories") or []),
                brands=list(prefs.get("preferredBrands") or []),
            ),
        )


@dataclass(frozen=True)
class InteractionEvent:
    user_id: str
    kind: EventKind
    timestamp: datetime
    product_id: Optional[str] = None
    duration: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class UserPreferenceProfile:
    categories: Dict[str, float]
    brands: Dict[str, float]
    tags: Dict[str, float]
    colors: Dict[str, float]
    sizes: Dict[str, float]
    price_band: PriceBand
    recent_products: List[str]
    view_count: int = 0

    @staticmethod
    def _top(scores: Dict[str, float], k: int) -> List[str]:
        return [key for key, _ in sorted(scores.items(), key=lambda kv: kv[1], reverse=True)[:k]]

    def top_categories(self, k: int = 5) -> List[str]:
        return self._top(self.categories, k)

    def top_brands(self, k: int = 3) -> List[str]:
        return self._top(self.brands, k)

    def top_tags(self, k: int = 10) -> List[str]:
        return self._top(self.tags, k)

    def top_colors(self, k: int = 3) -> List[str]:
        return self._top(self.colors, k)


@dataclass(frozen=True)
class Candidate:
    """A product scored by one strategy."""

    product: Product
    score: float
    source: str
    details: Tuple[Tuple[str, Any], ...] = ()

    def detail(self, name: str, default: Any = None) -> Any:
        return dict(self.details).get(name, default)


@dataclass
class RecommendationResult:
    product: Product
    strategy_source: str
    raw_score: float
    reason: str
    confidence: float
    rank_score: int = 0
    recommendation_type: str = "mixed"

    def to_dict(self) -> Dict[str, Any]:
        payload = self.product.summary()
        payload.update(
            {
                "recommendationType": self.recommendation_type,
                "strategySource": self.strategy_source,
                "score": self.rank_score,
                "rawScore": round(self.raw_score, 4),
                "reason": self.reason,
                "confidence": round(self.confidence, 4),
            }
        )
        return payload
