"""
Identity for ShadowMesh parties.
Holds the Ed25519 signing keypair and derives the mailbox RecipientID.
"""

import base64
from datetime import datetime, timezone
from dataclasses import dataclass, field

from nacl.signing import SigningKey, VerifyKey
from nacl.exceptions import BadSignatureError, CryptoError

from .errors import InvalidSeedLength

# Base58 (Bitcoin-style alphabet)
ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_INDEX = {c: i for i, c in enumerate(ALPHABET)}


def derive_recipient_id(signing_public_key: bytes) -> str:
    """
    Derive the mailbox RecipientID from a signing public key.
    RecipientID = base58(public_key), so distinct keys never share a mailbox.
    """
    n = int.from_bytes(signing_public_key, 'big')
    result = []
    while n > 0:
        n, remainder = divmod(n, 58)
        result.append(ALPHABET[remainder])

    # Add leading zeros for leading zero bytes
    for byte in signing_public_key:
        if byte == 0:
            result.append(ALPHABET[0])
        else:
            break

    return ''.join(reversed(result))


def public_key_from_recipient_id(recipient_id: str, size: int = 32) -> bytes:
    """Decode a RecipientID back into the signing public key."""
    n = 0
    for char in recipient_id:
        if char not in _INDEX:
            raise ValueError(f"Invalid base58 character {char!r} in recipient ID")
        n = n * 58 + _INDEX[char]

    leading = len(recipient_id) - len(recipient_id.lstrip(ALPHABET[0]))
    body = n.to_bytes((n.bit_length() + 7) // 8, 'big') if n else b''
    raw = b'\x00' * leading + body

    if len(raw) != size:
        raise ValueError(f"Recipient ID decodes to {len(raw)} bytes, expected {size}")
    return raw


@dataclass
class Identity:
    """Signing identity of a ShadowMesh party."""

    signing_private_key: SigningKey
    signing_public_key: VerifyKey
    recipient_id: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def generate(cls) -> "Identity":
        """Generate a new random identity."""
        return cls._from_signing_key(SigningKey.generate())

    @classmethod
    def from_seed(cls, seed: bytes) -> "Identity":
        """Rebuild an identity from its 32-byte Ed25519 seed."""
        if len(seed) != 32:
            raise InvalidSeedLength(len(seed))
        return cls._from_signing_key(SigningKey(bytes(seed)))

    @classmethod
    def _from_signing_key(cls, signing_key: SigningKey) -> "Identity":
        verify_key = signing_key.verify_key
        return cls(
            signing_private_key=signing_key,
            signing_public_key=verify_key,
            recipient_id=derive_recipient_id(bytes(verify_key)),
        )

    @property
    def seed(self) -> bytes:
        """The 32-byte Ed25519 seed."""
        return bytes(self.signing_private_key)

    @property
    def public_key_bytes(self) -> bytes:
        """The 32-byte Ed25519 public key."""
        return bytes(self.signing_public_key)

    @property
    def public_key_b64(self) -> str:
        return 'ed25519:' + base64.b64encode(self.public_key_bytes).decode()

    def sign(self, message: bytes) -> bytes:
        """Sign a message with the signing key."""
        return self.signing_private_key.sign(message).signature

    @staticmethod
    def verify_signature(public_key: bytes, message: bytes, signature: bytes) -> bool:
        """Verify a detached signature from another party."""
        try:
            VerifyKey(public_key).verify(message, signature)
            return True
        except (BadSignatureError, CryptoError, ValueError):
            return False

    def to_public_info(self) -> dict:
        """Public information to hand to correspondents."""
        return {
            'recipient_id': self.recipient_id,
            'signing_public_key': self.public_key_b64,
        }
