"""
Mesh forwarding: best-effort replication of SEND requests to peer relays.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from .client import RelayClient
from .errors import ForwardError, ForwardTimeout, ForwardUnreachable, ProtocolError

logger = logging.getLogger(__name__)


@dataclass
class ForwardResult:
    """Outcome of one forward attempt."""
    peer: str
    ok: bool
    error: Optional[ForwardError] = None


class MeshForwarder:
    """
    Re-issues a SEND to every configured peer relay.

    Attempts run concurrently and each is bounded by `timeout` (connect,
    write and acknowledgement together), so a SEND waits at most one
    timeout however many peers there are. Failures are logged and
    reported in the results, never raised.

    A peer stores a blob before forwarding it onward, and every relay in a
    chain uses the same timeout. When a relay further down hangs, the
    timeout here can expire while the peer is still waiting on its own
    forward, so a ForwardTimeout may be reported for a peer that did store
    the blob. The warning means the acknowledgement was late, not that
    replication was lost.
    """

    def __init__(self, peers: Iterable[Tuple[str, int]], timeout: float = 2.0):
        self.peers: Tuple[Tuple[str, int], ...] = tuple(peers)
        self.timeout = timeout
        self._clients = [RelayClient(host, port, timeout=timeout) for host, port in self.peers]

    async def forward(self, recipient_id: str, blob: bytes) -> List[ForwardResult]:
        """Forward to all peers and wait until every attempt completed or timed out."""
        if not self._clients:
            return []

        results = await asyncio.gather(
            *(self._forward_one(client, recipient_id, blob) for client in self._clients)
        )

        failed = sum(1 for r in results if not r.ok)
        if failed:
            logger.info(f"Forwarded to {len(results) - failed}/{len(results)} peers")
        return list(results)

    async def _forward_one(
        self,
        client: RelayClient,
        recipient_id: str,
        blob: bytes,
    ) -> ForwardResult:
        peer = client.address
        try:
            await client.send(recipient_id, blob)
        except asyncio.TimeoutError:
            error = ForwardTimeout(peer, f"no acknowledgement within {self.timeout}s")
        except (OSError, ProtocolError) as e:
            error = ForwardUnreachable(peer, str(e) or type(e).__name__)
        else:
            logger.debug(f"Forwarded {len(blob)} bytes for {recipient_id} to {peer}")
            return ForwardResult(peer=peer, ok=True)

        logger.warning(str(error))
        return ForwardResult(peer=peer, ok=False, error=error)
