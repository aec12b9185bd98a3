"""
Relay client for ShadowMesh.
Issues SEND and FETCH requests, one TCP connection per request.
"""

import asyncio
import logging
from typing import Iterable, List, Tuple

from . import protocol
from .envelope import ClientCrypto
from .errors import DecryptionError, FramingError, RelayError
from .identity import Identity

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class RelayClient:
    """
    Client for a single relay endpoint.

    Usage:
        client = RelayClient("relay.example.org", 9999)
        await client.send(recipient_id, envelope)
        blobs = await client.fetch(my_recipient_id)
    """

    def __init__(
        self,
        host: str,
        port: int = 9999,
        timeout: float = DEFAULT_TIMEOUT,
        max_frame_size: int = protocol.DEFAULT_MAX_FRAME_SIZE,
    ):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.max_frame_size = max_frame_size

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    async def send(self, recipient_id: str, blob: bytes) -> bool:
        """
        Deposit a blob in the recipient's mailbox.

        Returns True once the relay acknowledged with OK.
        Raises RelayError if the relay answered with an ERR line.
        """
        request = protocol.encode_send(recipient_id, blob)
        return await asyncio.wait_for(self._send(request), timeout=self.timeout)

    async def _send(self, request: bytes) -> bool:
        reader, writer = await asyncio.open_connection(self.host, self.port)
        try:
            writer.write(request)
            await writer.drain()
            reply = await protocol.read_line(reader)
        finally:
            await _close(writer)

        if reply == "OK":
            return True
        if reply.startswith(protocol.ERR_PREFIX):
            raise RelayError(reply)
        raise FramingError(f"Unexpected SEND reply {reply[:32]!r}")

    async def fetch(self, recipient_id: str) -> List[bytes]:
        """Drain the recipient's mailbox on this relay."""
        request = protocol.encode_fetch(recipient_id)
        return await asyncio.wait_for(self._fetch(request), timeout=self.timeout)

    async def _fetch(self, request: bytes) -> List[bytes]:
        reader, writer = await asyncio.open_connection(self.host, self.port)
        blobs = []
        try:
            writer.write(request)
            await writer.drain()

            while True:
                line = await protocol.read_line(reader)
                if line == "END":
                    break
                if line.startswith(protocol.ERR_PREFIX):
                    raise RelayError(line)
                length = protocol.parse_length(line, self.max_frame_size)
                try:
                    blobs.append(await reader.readexactly(length))
                except asyncio.IncompleteReadError:
                    raise FramingError("Relay closed the connection mid-frame") from None
        finally:
            await _close(writer)

        logger.debug(f"Fetched {len(blobs)} blobs from {self.address}")
        return blobs


async def _close(writer: asyncio.StreamWriter) -> None:
    writer.close()
    try:
        await writer.wait_closed()
    except (ConnectionError, OSError):
        pass


class Messenger:
    """
    End-to-end messaging over a relay.

    Combines ClientCrypto with a RelayClient: messages are sealed for the
    recipient's public key and deposited in the mailbox named by it.
    """

    def __init__(self, identity: Identity, client: RelayClient):
        self.identity = identity
        self.client = client
        self.crypto = ClientCrypto(identity)

    async def send_message(self, recipient_public_key: bytes, plaintext: bytes) -> bool:
        """Encrypt and deposit a message for a recipient."""
        envelope = self.crypto.seal_for(recipient_public_key, plaintext)
        recipient_id = ClientCrypto.recipient_id_for(recipient_public_key)
        return await self.client.send(recipient_id, envelope)

    async def fetch_messages(
        self,
        contacts: Iterable[bytes],
    ) -> List[Tuple[bytes, bytes]]:
        """
        Drain our mailbox and decrypt what we can.

        Returns (sender_public_key, plaintext) pairs in arrival order.
        Blobs that no contact's key opens are logged and dropped.
        """
        contacts = [bytes(c) for c in contacts]
        messages = []
        for blob in await self.client.fetch(self.identity.recipient_id):
            try:
                messages.append(self.crypto.open_from_any(contacts, blob))
            except DecryptionError as e:
                logger.warning(f"Dropping unreadable message ({len(blob)} bytes): {e}")
        return messages
