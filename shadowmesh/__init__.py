"""
ShadowMesh - encrypted store-and-forward relay mesh

Two parties exchange end-to-end encrypted messages without being online
at the same time: the sender seals a message for the recipient's Ed25519
public key and deposits it on any relay, which stores it and replicates it
to its peers; the recipient later fetches and decrypts it.

Usage:
    from shadowmesh import Identity, Messenger, RelayClient

    alice, bob = Identity.generate(), Identity.generate()

    await Messenger(alice, RelayClient("relay.local", 9999)).send_message(
        bob.public_key_bytes, b"hello"
    )
    messages = await Messenger(bob, RelayClient("relay.local", 9999)).fetch_messages(
        [alice.public_key_bytes]
    )
"""

__version__ = "0.1.0"

from .identity import Identity, derive_recipient_id, public_key_from_recipient_id
from .keys import derive_shared, seed_to_dh_private, signing_public_to_dh_public
from .envelope import ClientCrypto
from .mailbox import MailboxStore
from .dedup import SeenCache
from .forwarder import MeshForwarder, ForwardResult
from .relay import RelayServer
from .client import RelayClient, Messenger
from .config import RelayConfig
from .errors import (
    ShadowMeshError,
    InvalidSeedLength,
    PointDecodeError,
    WeakSharedSecretError,
    EnvelopeTooShort,
    AuthenticationError,
    FramingError,
    UnknownOperation,
    RelayError,
    ForwardTimeout,
    ForwardUnreachable,
    ConfigError,
)

__all__ = [
    # Identity and keys
    "Identity",
    "derive_recipient_id",
    "public_key_from_recipient_id",
    "derive_shared",
    "seed_to_dh_private",
    "signing_public_to_dh_public",
    "ClientCrypto",
    # Relay
    "MailboxStore",
    "SeenCache",
    "MeshForwarder",
    "ForwardResult",
    "RelayServer",
    # Client
    "RelayClient",
    "Messenger",
    # Config
    "RelayConfig",
    # Errors
    "ShadowMeshError",
    "InvalidSeedLength",
    "PointDecodeError",
    "WeakSharedSecretError",
    "EnvelopeTooShort",
    "AuthenticationError",
    "FramingError",
    "UnknownOperation",
    "RelayError",
    "ForwardTimeout",
    "ForwardUnreachable",
    "ConfigError",
]
