"""
Store-and-forward relay server.

Accepts one request per TCP connection (see protocol.py), keeps blobs in a
MailboxStore and replicates every new SEND to the configured peer relays
before acknowledging it. A SeenCache of content fingerprints stops a blob
from circulating forever when peers form a cycle.

Every connection gets its own task; there is no connection limit or
backpressure, so a flood of clients is bounded only by the host.
"""

import asyncio
import logging
import socket
from typing import Dict, Optional, Tuple

from . import protocol
from .config import RelayConfig
from .dedup import SeenCache, fingerprint
from .errors import FramingError, UnknownOperation
from .forwarder import MeshForwarder
from .mailbox import MailboxStore

logger = logging.getLogger(__name__)


class RelayServer:
    """
    A relay node.

    Usage:
        async with RelayServer(RelayConfig(listen_port=9999)) as relay:
            await relay.serve_forever()
    """

    def __init__(
        self,
        config: Optional[RelayConfig] = None,
        store: Optional[MailboxStore] = None,
        forwarder: Optional[MeshForwarder] = None,
        seen: Optional[SeenCache] = None,
    ):
        self.config = config or RelayConfig.default()
        self.store = store if store is not None else MailboxStore()
        self.forwarder = forwarder or MeshForwarder(
            self.config.peer_set(),
            timeout=self.config.forward_timeout,
        )
        self.seen = seen if seen is not None else SeenCache(
            ttl_seconds=self.config.dedup_ttl_seconds,
            max_entries=self.config.dedup_max_entries,
        )
        self.stats: Dict[str, int] = {
            'connections': 0,
            'stored': 0,
            'duplicates': 0,
            'fetched': 0,
            'errors': 0,
        }
        self._server: Optional[asyncio.AbstractServer] = None

    @property
    def address(self) -> Tuple[str, int]:
        """The (host, port) actually bound."""
        if self._server is None or not self._server.sockets:
            raise RuntimeError("Relay is not listening")
        host, port = self._server.sockets[0].getsockname()[:2]
        return host, port

    async def start(self, sock: Optional[socket.socket] = None) -> None:
        """Start listening, on a pre-bound socket if one is given."""
        if sock is not None:
            self._server = await asyncio.start_server(self._handle_connection, sock=sock)
        else:
            self._server = await asyncio.start_server(
                self._handle_connection,
                self.config.listen_host,
                self.config.listen_port,
            )

        host, port = self.address
        peers = [f"{h}:{p}" for h, p in self.forwarder.peers]
        logger.info(f"Relay listening on {host}:{port}; peers={peers}")

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        await self._server.serve_forever()

    async def stop(self) -> None:
        """Stop accepting connections. Undelivered mailboxes are discarded."""
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None
        logger.info(f"Relay stopped ({len(self.store)} undelivered blobs dropped)")

    async def __aenter__(self) -> "RelayServer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Serve exactly one request, then close the connection."""
        self.stats['connections'] += 1
        peername = writer.get_extra_info('peername')

        try:
            try:
                request = await protocol.read_request(
                    reader,
                    max_frame_size=self.config.max_frame_size,
                )
            except UnknownOperation as e:
                self.stats['errors'] += 1
                logger.warning(f"{peername}: {e}")
                writer.write(protocol.ERR_UNKNOWN_OP)
            except FramingError as e:
                self.stats['errors'] += 1
                logger.warning(f"{peername}: bad request: {e}")
                writer.write(protocol.ERR_BAD_FRAME)
            else:
                if request.op == protocol.OP_SEND:
                    await self._handle_send(request.recipient_id, request.blob)
                    writer.write(protocol.REPLY_OK)
                else:
                    for blob in self._handle_fetch(request.recipient_id):
                        writer.write(protocol.encode_frame(blob))
                    writer.write(protocol.REPLY_END)

            await writer.drain()

        except ConnectionError as e:
            logger.debug(f"{peername}: connection lost: {e}")
        except Exception as e:
            self.stats['errors'] += 1
            logger.error(f"{peername}: handler error: {e}")
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass

    async def _handle_send(self, recipient_id: str, blob: bytes) -> None:
        if not self.seen.check_and_add(fingerprint(recipient_id, blob)):
            self.stats['duplicates'] += 1
            logger.debug(f"Duplicate SEND for {recipient_id} suppressed")
            return

        self.store.store(recipient_id, blob)
        self.stats['stored'] += 1
        await self.forwarder.forward(recipient_id, blob)

    def _handle_fetch(self, recipient_id: str):
        blobs = self.store.fetch_and_drain(recipient_id)
        self.stats['fetched'] += len(blobs)
        return blobs

    def get_stats(self) -> dict:
        """Counters plus mailbox statistics."""
        return {**self.stats, **self.store.get_stats(), 'seen': len(self.seen)}


async def run_relay(config: RelayConfig) -> None:
    """Run a relay until cancelled."""
    async with RelayServer(config) as relay:
        await relay.serve_forever()
