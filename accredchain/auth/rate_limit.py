"""Login rate limiting.

Failed logins are counted per (client IP, account) pair, where the account
is the email of a password login or the wallet of a signature login. A
burst of failures against one account from one address locks only that
pair, so clients sharing a NAT'd address can still sign in to their own
accounts.

Failures are kept as timestamps in a sliding window: the lockout ends when
the oldest counted failure ages out of the window.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Callable

log = logging.getLogger(__name__)


def attempt_key(client_ip: str, account: str | None) -> tuple[str, str]:
    """Key for one (client, account) pair; accounts compare case-insensitively."""
    return client_ip, (account or "").strip().lower()


class LoginRateLimiter:
    """In-memory sliding-window limiter for failed logins."""

    def __init__(
        self,
        max_attempts: int = 5,
        window_seconds: int = 900,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the rate limiter.

        Args:
            max_attempts: Failures within the window that trigger a lockout
            window_seconds: Length of the sliding window (default 15 minutes)
            clock: Monotonic time source in seconds
        """
        self._failures: dict[tuple[str, str], deque[float]] = {}
        self._max_attempts = max_attempts
        self._window_seconds = window_seconds
        self._clock = clock
        self._lock = asyncio.Lock()

    def _prune(self, key: tuple[str, str], now: float) -> deque[float] | None:
        failures = self._failures.get(key)
        if failures is None:
            return None
        while failures and now - failures[0] >= self._window_seconds:
            failures.popleft()
        if not failures:
            del self._failures[key]
            return None
        return failures

    async def retry_after(self, client_ip: str, account: str | None) -> int:
        """Seconds until this pair may try again; 0 when not locked out."""
        key = attempt_key(client_ip, account)
        async with self._lock:
            now = self._clock()
            failures = self._prune(key, now)
            if failures is None or len(failures) < self._max_attempts:
                return 0
            # Locked until enough failures age out to drop below the limit
            release_at = failures[-self._max_attempts] + self._window_seconds
            return max(1, int(release_at - now + 0.999))

    async def record_failure(self, client_ip: str, account: str | None) -> None:
        key = attempt_key(client_ip, account)
        async with self._lock:
            now = self._clock()
            failures = self._prune(key, now)
            if failures is None:
                failures = self._failures[key] = deque()
            failures.append(now)
            if len(failures) == self._max_attempts:
                log.warning(
                    f"Login lockout for {key[1] or '<blank>'} from {client_ip}: "
                    f"{len(failures)} failures within {self._window_seconds}s"
                )

    async def record_success(self, client_ip: str, account: str | None) -> None:
        """A successful login forgets the pair's failures."""
        async with self._lock:
            self._failures.pop(attempt_key(client_ip, account), None)


_rate_limiter: LoginRateLimiter | None = None


def get_rate_limiter() -> LoginRateLimiter:
    """Get the global login rate limiter instance."""
    global _rate_limiter

    if _rate_limiter is None:
        from accredchain import config

        _rate_limiter = LoginRateLimiter(
            max_attempts=config.LOGIN_RATE_LIMIT_MAX_ATTEMPTS,
            window_seconds=config.LOGIN_RATE_LIMIT_WINDOW_SECONDS,
        )
        log.info(
            f"Initialized login rate limiter: max {config.LOGIN_RATE_LIMIT_MAX_ATTEMPTS} "
            f"failures per account and client every {config.LOGIN_RATE_LIMIT_WINDOW_SECONDS}s"
        )

    return _rate_limiter


def reset_rate_limiter() -> None:
    """Reset the global rate limiter (for testing)."""
    global _rate_limiter
    _rate_limiter = None
