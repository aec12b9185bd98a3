"""
Authenticated encryption of byte payloads.

Envelope layout: nonce (12) || ciphertext || tag (16), ChaCha20-Poly1305
with no associated data. A fresh random nonce is drawn for every seal.
"""

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from nacl.utils import random

from .errors import AuthenticationError, EnvelopeTooShort

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16
MIN_ENVELOPE_SIZE = NONCE_SIZE + TAG_SIZE


def _cipher(key: bytes) -> ChaCha20Poly1305:
    if len(key) != KEY_SIZE:
        raise ValueError(f"AEAD key must be {KEY_SIZE} bytes, got {len(key)}")
    return ChaCha20Poly1305(key)


def seal(key: bytes, plaintext: bytes) -> bytes:
    """Encrypt plaintext under key and return nonce || ciphertext || tag."""
    cipher = _cipher(key)
    nonce = random(NONCE_SIZE)
    return nonce + cipher.encrypt(nonce, plaintext, None)


def open(key: bytes, envelope: bytes) -> bytes:
    """
    Decrypt an envelope produced by seal().

    Raises:
        EnvelopeTooShort: envelope cannot contain a nonce and a tag
        AuthenticationError: wrong key, or nonce/ciphertext/tag altered
    """
    if len(envelope) < MIN_ENVELOPE_SIZE:
        raise EnvelopeTooShort(len(envelope), MIN_ENVELOPE_SIZE)

    cipher = _cipher(key)
    nonce, ciphertext = envelope[:NONCE_SIZE], envelope[NONCE_SIZE:]
    try:
        return cipher.decrypt(nonce, ciphertext, None)
    except InvalidTag:
        raise AuthenticationError() from None
