"""
Error taxonomy for ShadowMesh.

Key derivation and decryption errors abort a single encrypt/decrypt call.
Protocol errors close the offending connection. Forward errors are logged
by the relay and never reach the original sender.
"""


class ShadowMeshError(Exception):
    """Base class for all ShadowMesh errors."""


class ConfigError(ShadowMeshError, ValueError):
    """Raised for malformed relay configuration (addresses, numbers)."""


# Key derivation

class KeyDerivationError(ShadowMeshError):
    """A shared key could not be derived."""


class InvalidSeedLength(KeyDerivationError, ValueError):
    """Raised when a signing seed is not exactly 32 bytes."""

    def __init__(self, length: int):
        self.length = length
        super().__init__(f"Expected 32-byte seed, got {length} bytes")


class PointDecodeError(KeyDerivationError):
    """Raised when a signing public key is not a valid curve point."""


class WeakSharedSecretError(KeyDerivationError):
    """Raised when X25519 produces the all-zero (degenerate) output."""


# Decryption

class DecryptionError(ShadowMeshError):
    """An envelope could not be opened. Treat the message as unreadable."""


class EnvelopeTooShort(DecryptionError):
    """Raised when an envelope cannot hold a nonce and a tag."""

    def __init__(self, length: int, minimum: int):
        self.length = length
        self.minimum = minimum
        super().__init__(f"Envelope too short: {length} < {minimum} bytes")


class AuthenticationError(DecryptionError):
    """Raised on any AEAD verification failure."""

    def __init__(self):
        super().__init__("Message authentication failed")


# Wire protocol

class ProtocolError(ShadowMeshError):
    """A request or response violated the wire protocol."""


class FramingError(ProtocolError):
    """Raised when a line or length-prefixed frame is malformed."""


class UnknownOperation(ProtocolError):
    """Raised when a request names an operation the relay does not serve."""

    def __init__(self, op: str):
        self.op = op
        super().__init__(f"Unknown operation: {op!r}")


class RelayError(ProtocolError):
    """Raised by the client when a relay answers with an ERR line."""

    def __init__(self, reply: str):
        self.reply = reply
        super().__init__(f"Relay error: {reply}")


# Mesh forwarding

class ForwardError(ShadowMeshError):
    """A forward attempt to a peer relay failed."""

    def __init__(self, peer: str, detail: str = ""):
        self.peer = peer
        msg = f"Forward to {peer} failed"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class ForwardTimeout(ForwardError):
    """The peer did not acknowledge within the forward timeout."""


class ForwardUnreachable(ForwardError):
    """The peer refused the connection, reset it, or answered with an error."""
