import logging
import threading
import time
from typing import Callable, Optional

from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)


class RateLimiter:
    """Fixed-window request counter keyed by client address."""

    def __init__(
        self,
        name: str,
        max_requests: int,
        window_secs: int,
        *,
        enabled: bool = True,
        message: str = "Too many requests from this IP, please try again later.",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.max_requests = max_requests
        self.window_secs = window_secs
        self.enabled = enabled
        self.message = message
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: dict[str, tuple[float, int]] = {}

    def hit(self, key: str) -> bool:
        """Count one request for ``key``; False once the window is used up."""
        if not self.enabled:
            return True
        now = self._clock()
        with self._lock:
            started, count = self._windows.get(key, (now, 0))
            if now - started >= self.window_secs:
                started, count = now, 0
            count += 1
            self._windows[key] = (started, count)
            if len(self._windows) > 10_000:
                self._evict(now)
        return count <= self.max_requests

    def retry_after(self, key: str) -> int:
        with self._lock:
            started, _ = self._windows.get(key, (self._clock(), 0))
        return max(1, int(self.window_secs - (self._clock() - started)))

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def _evict(self, now: float) -> None:
        expired = [
            key
            for key, (started, _) in self._windows.items()
            if now - started >= self.window_secs
        ]
        for key in expired:
            del self._windows[key]

    def __call__(self, request: Request) -> None:
        key = client_key(request)
        if not self.hit(key):
            logger.warning(f"rate_limited: limiter={self.name} client={key}")
            raise HTTPException(
                status_code=429,
                detail=self.message,
                headers={"Retry-After": str(self.retry_after(key))},
            )


def client_key(request: Request) -> str:
    client: Optional[object] = request.client
    host = getattr(client, "host", None)
    return host or "unknown"
