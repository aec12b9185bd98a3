"""
Key transform: Ed25519 identity keys to X25519 and shared-key derivation.

An identity only ever holds an Ed25519 signing keypair. The X25519 keypair
used for Diffie-Hellman is derived from it on demand:

    dh_private = clamp(SHA-512(seed)[:32])
    dh_public  = montgomery_u(edwards_point(signing_public))
    key        = HKDF-SHA256(X25519(dh_private, dh_public), info=HKDF_INFO)

Both parties of a pair compute the same key without transmitting it.
"""

import hmac
import hashlib
import logging

from nacl.bindings import (
    crypto_scalarmult,
    crypto_scalarmult_base,
    crypto_sign_ed25519_pk_to_curve25519,
)
from nacl.exceptions import CryptoError
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .errors import InvalidSeedLength, PointDecodeError, WeakSharedSecretError

logger = logging.getLogger(__name__)

SEED_SIZE = 32
PUBLIC_KEY_SIZE = 32
SHARED_KEY_SIZE = 32

# Fixed protocol label bound into every derived key
HKDF_INFO = b"shadowmesh-e2e-v1"

_ZERO_POINT = bytes(32)

_FIELD_PRIME = 2 ** 255 - 19
_ORDER_EIGHT_Y = int.from_bytes(bytes.fromhex(
    "26e8958fc2b227b045c3f489f2ef98f0d5dfac05d3c63339b13802886d53fc05"
), 'little')

# y-coordinates of the eight Edwards points whose order divides 8
_SMALL_ORDER_Y = frozenset({
    0,
    1,
    _FIELD_PRIME - 1,
    _ORDER_EIGHT_Y,
    _FIELD_PRIME - _ORDER_EIGHT_Y,
})


def is_small_order(signing_public: bytes) -> bool:
    """
    True if the encoding names a point of order 1, 2, 4 or 8.

    The sign bit is ignored and y is reduced mod p, so non-canonical
    encodings of the same points are caught as well. X25519 against any
    of them yields the all-zero output.
    """
    y = int.from_bytes(signing_public, 'little') & ((1 << 255) - 1)
    return y % _FIELD_PRIME in _SMALL_ORDER_Y


def seed_to_dh_private(seed: bytes) -> bytes:
    """Convert a 32-byte Ed25519 seed into a clamped X25519 private scalar."""
    if len(seed) != SEED_SIZE:
        raise InvalidSeedLength(len(seed))

    scalar = bytearray(hashlib.sha512(seed).digest()[:32])
    scalar[0] &= 248
    scalar[31] &= 127
    scalar[31] |= 64
    return bytes(scalar)


def signing_public_to_dh_public(signing_public: bytes) -> bytes:
    """
    Convert an Ed25519 public key into its X25519 (Montgomery) form.

    Raises:
        WeakSharedSecretError: the key is a small-order point
        PointDecodeError: wrong length, or bytes that are not a usable point
    """
    if len(signing_public) != PUBLIC_KEY_SIZE:
        raise PointDecodeError(
            f"Invalid Ed25519 public key length: {len(signing_public)}"
        )
    try:
        return crypto_sign_ed25519_pk_to_curve25519(bytes(signing_public))
    except CryptoError as e:
        # libsodium refuses small-order points along with undecodable ones
        if is_small_order(signing_public):
            raise WeakSharedSecretError(
                "Peer key is a small-order point; X25519 output would be all-zero"
            ) from e
        raise PointDecodeError(f"Not a valid Ed25519 point: {e}") from e


def dh_public_from_seed(seed: bytes) -> bytes:
    """X25519 public key matching seed_to_dh_private(seed)."""
    return crypto_scalarmult_base(seed_to_dh_private(seed))


def derive_shared(seed: bytes, peer_signing_public: bytes) -> bytes:
    """
    Derive the 32-byte symmetric key shared with a peer.

    Args:
        seed: our 32-byte Ed25519 seed
        peer_signing_public: the peer's 32-byte Ed25519 public key

    Raises:
        InvalidSeedLength, PointDecodeError, WeakSharedSecretError
    """
    dh_private = seed_to_dh_private(seed)
    dh_public = signing_public_to_dh_public(peer_signing_public)

    try:
        raw = crypto_scalarmult(dh_private, dh_public)
    except CryptoError as e:
        # libsodium refuses to return an all-zero result
        raise WeakSharedSecretError("X25519 produced a degenerate output") from e

    if hmac.compare_digest(raw, _ZERO_POINT):
        raise WeakSharedSecretError("X25519 produced the all-zero point")

    return HKDF(
        algorithm=hashes.SHA256(),
        length=SHARED_KEY_SIZE,
        salt=None,
        info=HKDF_INFO,
    ).derive(raw)
