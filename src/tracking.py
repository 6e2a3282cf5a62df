import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

from cache import ActivityCache
from config import (
    VALID_ACTIONS,
    PRODUCT_REQUIRED_ACTIONS,
    MIN_VIEW_DURATION,
    MAX_VIEW_DURATION,
)
from models import (
    CartRecord,
    EventKind,
    InteractionEvent,
    InvalidTrackingEvent,
    SearchRecord,
    ViewRecord,
    WishlistRecord,
    utcnow,
)
from stores import ProductCatalog, UserStore

logger = logging.getLogger(__name__)


class TrackingOutcome(str, Enum):
    RECORDED = "recorded"
    SKIPPED = "skipped"  # valid event with nothing worth storing
    SOFT_FAILURE = "soft_failure"

    @property
    def success(self) -> bool:
        return self is not TrackingOutcome.SOFT_FAILURE


def build_event(user_id: str, action: Any, product_id: Optional[str] = None, duration: Any = None,
                metadata: Optional[Dict] = None, now: Optional[datetime] = None) -> InteractionEvent:
    """Validate a raw tracking request. Raises InvalidTrackingEvent."""
    if action not in VALID_ACTIONS:
        raise InvalidTrackingEvent("Invalid action type")
    if action in PRODUCT_REQUIRED_ACTIONS and not product_id:
        raise InvalidTrackingEvent("Product ID is required for this action")
    if duration is not None:
        try:
            duration = float(duration)
        except (TypeError, ValueError):
            raise InvalidTrackingEvent("Duration must be a number")
    if metadata is not None and not isinstance(metadata, dict):
        raise InvalidTrackingEvent("Metadata must be an object")
    return InteractionEvent(
        user_id=user_id,
        kind=EventKind(action),
        timestamp=now or utcnow(),
        product_id=str(product_id) if product_id else None,
        duration=duration,
        metadata=dict(metadata or {}),
    )


class TrackingIngestor:
    """Write path: appends interactions to user history and drops stale cache entries."""

    def __init__(
        self,
        catalog: ProductCatalog,
        users: UserStore,
        cache: ActivityCache,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.catalog = catalog
        self.users = users
        self.cache = cache
        self.clock = clock

    def track(self, event: InteractionEvent) -> TrackingOutcome:
        # fresh personalization on the very next request
        self.cache.invalidate_user(event.user_id)
        self.cache.track_activity(event.user_id)
        try:
            return self._apply(event)
        except Exception as e:
            logger.error(f"Tracking error for user {event.user_id} ({event.kind.value}): {e}", exc_info=True)
            return TrackingOutcome.SOFT_FAILURE

    def _apply(self, event: InteractionEvent) -> TrackingOutcome:
        meta = event.metadata
        now = event.timestamp

        if event.kind is EventKind.VIEW:
            if event.duration is None or event.duration < MIN_VIEW_DURATION:
                self.users.touch(event.user_id, now)
                return TrackingOutcome.SKIPPED
            view = ViewRecord(
                product_id=event.product_id,
                viewed_at=now,
                duration=min(event.duration, MAX_VIEW_DURATION),
                source=meta.get("source", "direct"),
            )
            self.users.record_view(event.user_id, view, now)
            self.catalog.increment_views(event.product_id)
            self.cache.invalidate_tag("trending")
            # anonymous trending lists live under the guest tag
            self.cache.invalidate_where(lambda key: key.tag == "guest" and "trending" in key.params)
            return TrackingOutcome.RECORDED

        if event.kind is EventKind.SEARCH:
            query = (meta.get("query") or "").lower().strip()
            if not query:
                self.users.touch(event.user_id, now)
                return TrackingOutcome.SKIPPED
            search = SearchRecord(
                query=query,
                searched_at=now,
                results_count=int(meta.get("resultsCount") or 0),
                clicked_results=tuple(meta.get("clickedResults") or ()),
            )
            self.users.record_search(event.user_id, search, now)
            return TrackingOutcome.RECORDED

        if event.kind is EventKind.ADD_TO_CART:
            cart = CartRecord(
                product_id=event.product_id,
                added_at=now,
                quantity=int(meta.get("quantity") or 1),
                size=meta.get("size"),
                color=meta.get("color"),
            )
            self.users.record_cart_addition(event.user_id, cart, now)
            return TrackingOutcome.RECORDED

        if event.kind is EventKind.WISHLIST:
            action = meta.get("wishlistAction")
            if action == "add":
                self.users.add_to_wishlist(event.user_id, WishlistRecord(event.product_id, now), now)
            elif action == "remove":
                self.users.remove_from_wishlist(event.user_id, event.product_id, now)
            else:
                self.users.touch(event.user_id, now)
                return TrackingOutcome.SKIPPED
            return TrackingOutcome.RECORDED

        if event.kind is EventKind.PURCHASE:
            self.cache.invalidate_tag("collab")
            if not meta.get("orderId"):
                self.users.touch(event.user_id, now)
                return TrackingOutcome.SKIPPED
            self.users.record_purchase(event.user_id, float(meta.get("totalAmount") or 0), now)
            return TrackingOutcome.RECORDED

        if event.kind is EventKind.CLICK:
            logger.info(
                f"Recommendation click: {meta.get('recommendationType', 'unknown')} -> {event.product_id} by user {event.user_id}"
            )
        elif event.kind is EventKind.RECOMMENDATION_LOAD:
            logger.info(f"Recommendations loaded: {meta.get('type')} - {meta.get('count')} items")
        elif event.kind is EventKind.SCROLL:
            logger.info(f"Scroll event: {meta.get('direction')} from {meta.get('fromIndex')} to {meta.get('toIndex')}")
        self.users.touch(event.user_id, now)
        return TrackingOutcome.RECORDED
