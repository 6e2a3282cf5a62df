import logging
import threading
from typing import Optional

from cache import ActivityCache
from config import SWEEP_INTERVAL, SWEEP_GRACE_FACTOR, ACTIVITY_IDLE_HORIZON, STATS_LOG_EVERY

logger = logging.getLogger(__name__)


class BackgroundSweeper:
    """Periodically purges stale cache entries and idle activity timestamps."""

    def __init__(
        self,
        cache: ActivityCache,
        interval: float = SWEEP_INTERVAL,
        grace_factor: float = SWEEP_GRACE_FACTOR,
        idle_horizon: float = ACTIVITY_IDLE_HORIZON,
        stats_every: int = STATS_LOG_EVERY,
    ):
        self.cache = cache
        self.interval = interval
        self.grace_factor = grace_factor
        self.idle_horizon = idle_horizon
        self.stats_every = stats_every
        self.passes = 0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def sweep_once(self) -> int:
        cleaned = self.cache.purge_expired(self.grace_factor)
        forgotten = self.cache.forget_idle_users(self.idle_horizon)
        self.passes += 1
        if cleaned:
            logger.info(f"[Cache Cleanup] Removed {cleaned} expired entries, forgot {forgotten} idle users")
        if self.stats_every and self.passes % self.stats_every == 0:
            logger.info(f"[Cache Stats] {self.cache.stats()}")
        return cleaned

    def _run(self):
        while not self._stop.wait(self.interval):
            try:
                self.sweep_once()
            except Exception as e:
                logger.error(f"Cache sweep failed: {e}", exc_info=True)

    def start(self):
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="cache-sweeper", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
