"""
Call accounting for the external services (extraction, vision).

One limiter is shared per process. It caps the combined number of calls
and spaces consecutive calls to the same service by a fixed delay.
"""
import time
import logging
from typing import Dict, List, Optional, Tuple
from datetime import datetime, timedelta
from threading import Lock
from collections import defaultdict

from maisoku_app.config import Config

logger = logging.getLogger(__name__)

# Per-service history is only kept this long
HISTORY_WINDOW = timedelta(hours=24)


class RateLimiter:
    """
    Combined call cap plus fixed per-service spacing.

    Example usage:

        limiter = RateLimiter(max_total_calls=100, min_delay_seconds=0.5)
        ok, reason = limiter.can_make_call('extraction')
        limiter.wait_if_needed('extraction')
        limiter.record_call('extraction')
    """

    def __init__(
        self,
        max_total_calls: Optional[int] = None,
        min_delay_seconds: Optional[float] = None,
        enabled: Optional[bool] = None
    ):
        """
        Args:
            max_total_calls: Cap across all services (defaults to Config.MAX_TOTAL_CALLS)
            min_delay_seconds: Spacing between calls to one service (defaults to Config.INTER_CALL_DELAY_SECONDS)
            enabled: Whether the cap is enforced (defaults to Config.ENABLE_RATE_LIMITING)
        """
        self.max_total_calls = max_total_calls or Config.MAX_TOTAL_CALLS
        self.min_delay_seconds = (
            Config.INTER_CALL_DELAY_SECONDS if min_delay_seconds is None else min_delay_seconds
        )
        self.enabled = Config.ENABLE_RATE_LIMITING if enabled is None else enabled

        self.lock = Lock()
        self.calls: Dict[str, List[datetime]] = defaultdict(list)
        self.counts: Dict[str, int] = defaultdict(int)
        # spacing state is kept per service so waits on one never block another
        self.pacing_locks: Dict[str, Lock] = defaultdict(Lock)
        self.last_call_at: Dict[str, float] = {}
        self.start_time = datetime.now()

    def _total(self) -> int:
        return sum(self.counts.values())

    def can_make_call(self, service: str) -> Tuple[bool, str]:
        """
        Whether one more call fits under the combined cap.

        Returns:
            (allowed, reason)
        """
        if not self.enabled:
            return True, "OK"

        with self.lock:
            used = self._total()
        if used >= self.max_total_calls:
            return False, f"Call limit reached ({used}/{self.max_total_calls}); refusing {service} call"
        return True, "OK"

    def _prune(self, service: str, now: datetime) -> List[datetime]:
        history = [ts for ts in self.calls[service] if now - ts < HISTORY_WINDOW]
        self.calls[service] = history
        return history

    def record_call(self, service: str):
        now = datetime.now()
        with self.lock:
            self._prune(service, now).append(now)
            self.counts[service] += 1
            used = self._total()
        logger.info(f"{service} call recorded ({used}/{self.max_total_calls})")

    def _service_stats(self, service: str, now: datetime) -> Dict:
        history = self._prune(service, now)

        def within(window: timedelta) -> int:
            return sum(1 for ts in history if now - ts < window)

        return {
            'service': service,
            'total_calls': self.counts[service],
            'calls_last_minute': within(timedelta(minutes=1)),
            'calls_last_hour': within(timedelta(hours=1)),
            'calls_last_day': len(history),
        }

    def get_stats(self, service: Optional[str] = None) -> Dict:
        """Usage of one service, or combined usage when no service is given."""
        now = datetime.now()
        with self.lock:
            if service:
                return self._service_stats(service, now)

            used = self._total()
            return {
                'total_calls': used,
                'max_calls': self.max_total_calls,
                'remaining_calls': max(0, self.max_total_calls - used),
                'calls_by_service': dict(self.counts),
                'session_duration': (now - self.start_time).total_seconds()
            }

    def wait_if_needed(self, service: str, min_delay_seconds: Optional[float] = None):
        """
        Sleep until the fixed delay since the previous call to `service`
        has passed. The first call to a service returns immediately.
        """
        delay = self.min_delay_seconds if min_delay_seconds is None else min_delay_seconds

        with self.pacing_locks[service]:
            previous = self.last_call_at.get(service)
            if previous is not None and delay > 0:
                remaining = delay - (time.monotonic() - previous)
                if remaining > 0:
                    logger.debug(f"Pacing {service}: sleeping {remaining:.2f}s")
                    time.sleep(remaining)
            self.last_call_at[service] = time.monotonic()

    def reset(self):
        """Forget every recorded call (useful for testing)."""
        with self.lock:
            self.calls.clear()
            self.counts.clear()
            self.last_call_at.clear()
            self.start_time = datetime.now()
        logger.info("Rate limiter reset")


_rate_limiter_instance: Optional[RateLimiter] = None
_rate_limiter_lock = Lock()


def get_rate_limiter() -> RateLimiter:
    """Get or create the process-wide limiter shared by every client."""
    global _rate_limiter_instance

    with _rate_limiter_lock:
        if _rate_limiter_instance is None:
            _rate_limiter_instance = RateLimiter()
        return _rate_limiter_instance
