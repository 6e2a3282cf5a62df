import os

# Limits
DEFAULT_RECOMMENDATIONS = 20
MAX_RECOMMENDATIONS = 50
VIEW_HISTORY_LIMIT = 100
SEARCH_HISTORY_LIMIT = 50
RECENT_ACTIVITY_WINDOW = 60 * 60  # seconds

# Base weight per interaction source when building a preference profile
interaction_weights = {
    "purchase": 5.0,  # Strongest signal - actual conversion
    "cart": 3.0,  # Strong intent but not committed
    "wishlist": 2.0,  # Saved for later
    "view": 1.0,  # Browsing interest
    "search": 0.5,  # Intent words, weakest signal
}

# Exponential decay windows (days) per interaction source
decay_windows = {
    "purchase": 90.0,
    "cart": 7.0,
    "wishlist": 30.0,
    "search": 14.0,
    "view": 3.0,
}

# Flat boosts for very fresh interactions, applied instead of the decay curve
DECAY_HOUR_BOOST = 2.0
DECAY_DAY_BOOST = 1.5
DECAY_MIN_FACTOR = 0.1  # floor to prevent vanishing weights

# Cache
CACHE_TTL = 30.0  # seconds, aggregate (trending, guest, fallback) entries
CACHE_PERSONALIZED_TTL = 15.0  # seconds, per-user entries
CACHE_MAX_SIZE = 500
CACHE_BURST_WINDOW = 5.0  # repeat activity inside this window drops the user's entries
SWEEP_INTERVAL = 5 * 60  # seconds
SWEEP_GRACE_FACTOR = 2.0  # entries older than grace * ttl are purged
ACTIVITY_IDLE_HORIZON = 30 * 60  # seconds
STATS_LOG_EVERY = 12  # sweeps, hourly at the default interval

# Tracking
MIN_VIEW_DURATION = 1  # seconds
MAX_VIEW_DURATION = 3600
VIEW_COUNT_THRESHOLD = 3  # views before content-first merging
VALID_ACTIONS = ("view", "search", "addToCart", "wishlist", "purchase", "click", "recommendation_load", "scroll")
PRODUCT_REQUIRED_ACTIONS = ("view", "addToCart", "wishlist", "click")

# Profile
PROFILE_VIEW_WINDOW_DAYS = 7
PROFILE_VIEW_SAMPLE = 30
PROFILE_SEARCH_WINDOW_DAYS = 14
PROFILE_SEARCH_SAMPLE = 20
PROFILE_ORDER_SAMPLE = 30
PROFILE_RECENT_PRODUCTS = 10
DEFAULT_PRICE_BAND = (0.0, 10_000_000.0)

# Collaborative filtering
COLLAB_ORDER_SAMPLE = 50
COLLAB_VIEW_WINDOW_DAYS = 7
COLLAB_PEER_WINDOW_DAYS = 180
COLLAB_PEER_LIMIT = 100
COLLAB_PEER_SAMPLE = 50
COLLAB_MINING_WINDOW_DAYS = 90
COLLAB_RECENT_ORDER_DAYS = 30

# Fraction of the requested limit per strategy, by activity tier.
# "new" is rounded up, the others down, so quotas never exceed the limit.
distribution_tables = {
    "high": {"content": 0.6, "collaborative": 0.2, "trending": 0.1, "new": 0.1},
    "moderate": {"content": 0.5, "collaborative": 0.25, "trending": 0.15, "new": 0.1},
    "cold": {"content": 0.3, "collaborative": 0.2, "trending": 0.3, "new": 0.2},
    "unknown": {"content": 0.4, "collaborative": 0.3, "trending": 0.2, "new": 0.1},
}
HIGH_ACTIVITY_VIEWS = 10
HIGH_ACTIVITY_SEARCHES = 5
MODERATE_ACTIVITY_VIEWS = 5

STRATEGY_WORKERS = 8

recommendation_reasons = {
    "collaborative": "Bought by shoppers with similar taste",
    "content": "Matches your interests",
    "trending": "{count} shoppers are interested right now",
    "new": "New arrival picked for you",
    "mixed": "Recommended for you",
    "fallback": "Popular right now",
}

base_confidence = {
    "collaborative": 0.85,
    "content": 0.9,
    "trending": 0.7,
    "new": 0.6,
    "mixed": 0.8,
    "fallback": 0.5,
}

# Deployment
SECRET_KEY = os.environ.get("RECOMMENDER_SECRET_KEY", "dev-secret-change-me")
TOKEN_MAX_AGE = int(os.environ.get("RECOMMENDER_TOKEN_MAX_AGE", 7 * 24 * 60 * 60))
SEED_PATH = os.environ.get("RECOMMENDER_SEED_PATH")
