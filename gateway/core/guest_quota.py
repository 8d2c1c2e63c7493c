"""
guest_quota.py — Daily message quota for unauthenticated callers.

Guests get MAX_GUEST_MESSAGES_PER_DAY admitted requests per UTC day. Usage
is kept in process memory only: it resets on restart and is not shared
between workers (use one worker, or sticky sessions, if that matters).

A guest is identified by the best signal available:
  1. an anonymous session id ("anon-…") → "anon:<id>"
  2. otherwise browser fingerprint + client IP → "<fingerprint>|<ip>",
     each defaulting to "unknown".

Every check is a single read-modify-write under one lock, so two requests
racing for the last slot can never both be admitted.

Usage:
    limiter = GuestQuotaLimiter(max_per_day=5)
    decision = limiter.check(fingerprint="fp-1", ip_address="1.2.3.4")
    if not decision.admitted:
        raise HTTPException(429, ...)
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, NamedTuple, Optional

logger = logging.getLogger(__name__)

MAX_GUEST_MESSAGES_PER_DAY = 5
DAY_MS = 24 * 60 * 60 * 1000

# Reason codes returned with every decision
REASON_NEW_WINDOW = "guest_new_window"
REASON_OK = "guest_ok"
REASON_LIMIT = "guest_limit"


def _wall_clock_ms() -> int:
    return time.time_ns() // 1_000_000


def start_of_next_day(now_ms: int) -> int:
    """UTC midnight (epoch ms) of the day after the one containing *now_ms*."""
    return ((now_ms + DAY_MS) // DAY_MS) * DAY_MS


def guest_key(
    fingerprint: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_id: Optional[str] = None,
) -> str:
    """Bucket key for a guest. Anonymous session ids take priority."""
    if user_id and user_id.startswith("anon-"):
        return f"anon:{user_id}"
    return f"{fingerprint or 'unknown'}|{ip_address or 'unknown'}"


@dataclass
class GuestUsage:
    count: int
    reset_at: int  # epoch ms; the window is stale from this instant on


class QuotaDecision(NamedTuple):
    admitted: bool
    remaining: int
    reset_at: int
    reason: str


class GuestQuotaLimiter:
    """
    In-memory per-guest daily counter.

    Args:
        max_per_day: Admitted requests per guest per UTC day.
        clock:       Callable returning "now" in epoch milliseconds.
                     Injected by tests to simulate day rollover.

    Raises:
        ValueError: max_per_day is below 1.
    """

    def __init__(
        self,
        max_per_day: int = MAX_GUEST_MESSAGES_PER_DAY,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        if max_per_day < 1:
            raise ValueError(f"max_per_day must be at least 1, got {max_per_day}")
        self.max_per_day = max_per_day
        self._clock = clock or _wall_clock_ms
        self._usage: dict[str, GuestUsage] = {}
        self._lock = threading.Lock()

    def check(
        self,
        fingerprint: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> QuotaDecision:
        """Admit or reject one request, consuming a slot when admitted."""
        key = guest_key(fingerprint, ip_address, user_id)

        with self._lock:
            now = self._clock()
            entry = self._usage.get(key)

            if entry is None or now >= entry.reset_at:
                reset_at = start_of_next_day(now)
                self._usage[key] = GuestUsage(count=1, reset_at=reset_at)
                return QuotaDecision(True, self.max_per_day - 1, reset_at, REASON_NEW_WINDOW)

            if entry.count >= self.max_per_day:
                decision = QuotaDecision(False, 0, entry.reset_at, REASON_LIMIT)
            else:
                entry.count += 1
                decision = QuotaDecision(True, self.max_per_day - entry.count, entry.reset_at, REASON_OK)

        if not decision.admitted:
            logger.info("Guest quota exhausted for %s (resets at %d)", key, decision.reset_at)
        return decision

    def purge_expired(self) -> int:
        """
        Drop entries whose window has ended. Returns how many were removed.

        An expired entry is replaced on the guest's next request anyway,
        so purging never changes an admission decision.
        """
        with self._lock:
            now = self._clock()
            stale = [k for k, v in self._usage.items() if now >= v.reset_at]
            for k in stale:
                del self._usage[k]
        if stale:
            logger.debug("Purged %d expired guest usage entries", len(stale))
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._usage)
