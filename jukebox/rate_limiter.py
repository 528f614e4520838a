from __future__ import annotations

from collections import deque


class RateLimiter:
    """Sliding-window limit of *limit* requests per *window* seconds, per user.

    A submission at ``t`` counts until ``now - window`` passes it, so no closed
    interval of length *window* holds more than *limit* allowed submissions.
    """

    def __init__(self, window: float = 300.0, limit: int = 3) -> None:
        if window <= 0:
            raise ValueError("window must be positive")
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.window = window
        self.limit = limit
        self._windows: dict[str, deque[float]] = {}
        self._last_sweep = float("-inf")

    def _live(self, user_id: str, now: float) -> deque[float]:
        """Prune the user's window; users with an empty window are dropped."""
        key = str(user_id)
        stamps = self._windows.get(key)
        if stamps is None:
            return deque()
        cutoff = now - self.window
        while stamps and stamps[0] < cutoff:
            stamps.popleft()
        if not stamps:
            del self._windows[key]
        return stamps

    def allow(self, user_id: str, now: float) -> bool:
        """Record a submission at *now* and return True, or return False without recording."""
        if now - self._last_sweep >= self.window:
            self.sweep(now)
        stamps = self._live(user_id, now)
        if len(stamps) >= self.limit:
            return False
        stamps.append(now)
        self._windows[str(user_id)] = stamps
        return True

    def remaining(self, user_id: str, now: float) -> int:
        return max(0, self.limit - len(self._live(user_id, now)))

    def retry_after(self, user_id: str, now: float) -> float:
        """Seconds until the user may submit again (0 when allowed now)."""
        stamps = self._live(user_id, now)
        if len(stamps) < self.limit:
            return 0.0
        return max(0.0, stamps[0] + self.window - now)

    def sweep(self, now: float) -> None:
        """Drop every user whose window has emptied."""
        self._last_sweep = now
        for key in list(self._windows):
            self._live(key, now)

    def forget(self, user_id: str) -> None:
        self._windows.pop(str(user_id), None)

    def __len__(self) -> int:
        return len(self._windows)
