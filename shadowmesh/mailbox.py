"""
In-memory mailbox storage for the relay.

Holds per-recipient FIFO queues of opaque encrypted blobs. Nothing is
persisted: a restart discards undelivered messages, and queues grow
without a cap (memory exhaustion is the known limit).
"""

import logging
import threading
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Dict, List

logger = logging.getLogger(__name__)


@dataclass
class StoredBlob:
    """One queued message."""
    blob: bytes
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class MailboxStore:
    """
    Per-recipient queues guarded by a single lock.

    fetch_and_drain() reads and clears a queue in the same critical section
    as store() appends, so a fetch sees a concurrent store entirely or not
    at all.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._mailboxes: Dict[str, List[StoredBlob]] = {}

    def store(self, recipient_id: str, blob: bytes) -> None:
        """Append a blob to the recipient's queue, creating it if absent."""
        entry = StoredBlob(blob=bytes(blob))
        with self._lock:
            self._mailboxes.setdefault(recipient_id, []).append(entry)
        logger.debug(f"Stored {len(entry.blob)} bytes for {recipient_id}")

    def fetch_and_drain(self, recipient_id: str) -> List[bytes]:
        """
        Return every queued blob for the recipient in arrival order and
        remove the mailbox. Unknown or empty mailboxes yield [].
        """
        with self._lock:
            entries = self._mailboxes.pop(recipient_id, [])
        if entries:
            logger.debug(f"Drained {len(entries)} blobs for {recipient_id}")
        return [entry.blob for entry in entries]

    def pending(self, recipient_id: str) -> int:
        """Number of blobs waiting for a recipient."""
        with self._lock:
            return len(self._mailboxes.get(recipient_id, ()))

    def recipients(self) -> List[str]:
        """Recipients with at least one queued blob."""
        with self._lock:
            return list(self._mailboxes)

    def get_stats(self) -> dict:
        """Storage statistics."""
        with self._lock:
            queues = list(self._mailboxes.values())
        return {
            'mailboxes': len(queues),
            'blobs': sum(len(q) for q in queues),
            'bytes': sum(len(e.blob) for q in queues for e in q),
        }

    def __len__(self) -> int:
        with self._lock:
            return sum(len(q) for q in self._mailboxes.values())
