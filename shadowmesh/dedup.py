"""
Duplicate suppression for mesh forwarding.

Remembers content fingerprints of recently handled SEND requests so a blob
that comes back around a cycle of relays is neither stored nor forwarded
again.
"""

import time
import hashlib
import logging
from collections import OrderedDict
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0
DEFAULT_MAX_ENTRIES = 10000


def fingerprint(recipient_id: str, blob: bytes) -> bytes:
    """SHA-256 over recipient_id || 0x00 || blob."""
    h = hashlib.sha256()
    h.update(recipient_id.encode('utf-8'))
    h.update(b'\x00')
    h.update(blob)
    return h.digest()


class SeenCache:
    """
    LRU set of fingerprints with a time window.

    Bounded both by max_entries (oldest evicted first) and ttl_seconds.
    Not thread-safe; the relay calls it from its event loop only.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock or time.monotonic
        self._seen: "OrderedDict[bytes, float]" = OrderedDict()

    def check_and_add(self, digest: bytes) -> bool:
        """
        Record a fingerprint.

        Returns True if it was new (caller should store and forward),
        False if it was seen within the window.
        """
        now = self._clock()
        self._evict_expired(now)

        if digest in self._seen:
            return False

        self._seen[digest] = now + self.ttl_seconds
        self._evict_lru()
        return True

    def _evict_expired(self, now: float) -> None:
        # Insertion order equals expiry order since the TTL is fixed
        while self._seen:
            oldest, expires_at = next(iter(self._seen.items()))
            if expires_at > now:
                break
            del self._seen[oldest]

    def _evict_lru(self) -> None:
        while len(self._seen) > self.max_entries:
            self._seen.popitem(last=False)
            logger.debug("Evicted oldest fingerprint")

    def __len__(self) -> int:
        return len(self._seen)
