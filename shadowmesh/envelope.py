"""
Client-side envelope crypto.

Seals and opens envelopes addressed by a correspondent's signing public
key, independent of any relay. The same adapter encrypts group traffic
with a key derived from the identity against itself.
"""

import logging
from typing import Dict, Iterable, Protocol, Tuple

from . import aead
from .errors import AuthenticationError, EnvelopeTooShort
from .identity import derive_recipient_id
from .keys import derive_shared

logger = logging.getLogger(__name__)


class KeySource(Protocol):
    """What ClientCrypto needs from an identity."""

    @property
    def seed(self) -> bytes: ...

    @property
    def public_key_bytes(self) -> bytes: ...


class ClientCrypto:
    """
    Envelope encryption for one local identity.

    Shared keys are memoised per peer public key.
    """

    def __init__(self, identity: KeySource):
        self.identity = identity
        self._keys: Dict[bytes, bytes] = {}

    def shared_key(self, peer_public_key: bytes) -> bytes:
        """Shared key with a peer (derived once, then cached)."""
        peer = bytes(peer_public_key)
        key = self._keys.get(peer)
        if key is None:
            key = derive_shared(self.identity.seed, peer)
            self._keys[peer] = key
        return key

    def seal_for(self, recipient_public_key: bytes, plaintext: bytes) -> bytes:
        """Encrypt plaintext so that only the recipient (and we) can read it."""
        return aead.seal(self.shared_key(recipient_public_key), plaintext)

    def open_from(self, sender_public_key: bytes, envelope: bytes) -> bytes:
        """Decrypt an envelope sealed for us by the given sender."""
        return aead.open(self.shared_key(sender_public_key), envelope)

    def open_from_any(
        self,
        sender_public_keys: Iterable[bytes],
        envelope: bytes,
    ) -> Tuple[bytes, bytes]:
        """
        Try each known sender in turn.

        Returns:
            (sender_public_key, plaintext) for the first key that opens it

        Raises:
            EnvelopeTooShort: before any key is tried
            AuthenticationError: no contact's key opens the envelope
        """
        if len(envelope) < aead.MIN_ENVELOPE_SIZE:
            raise EnvelopeTooShort(len(envelope), aead.MIN_ENVELOPE_SIZE)

        for sender in sender_public_keys:
            try:
                return bytes(sender), self.open_from(sender, envelope)
            except AuthenticationError:
                continue
        raise AuthenticationError()

    def group_key(self) -> bytes:
        """Key for group traffic: our own identity against itself."""
        return self.shared_key(self.identity.public_key_bytes)

    def seal_group(self, plaintext: bytes) -> bytes:
        return aead.seal(self.group_key(), plaintext)

    def open_group(self, envelope: bytes) -> bytes:
        return aead.open(self.group_key(), envelope)

    @staticmethod
    def recipient_id_for(public_key: bytes) -> str:
        """Mailbox RecipientID for a public key."""
        return derive_recipient_id(bytes(public_key))
