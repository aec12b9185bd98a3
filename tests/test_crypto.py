"""
Tests for the key transform, the AEAD codec and client envelope crypto.
"""

import pytest
from unittest.mock import patch

from nacl.bindings import (
    crypto_scalarmult,
    crypto_sign_ed25519_pk_to_curve25519,
    crypto_sign_ed25519_sk_to_curve25519,
)
from nacl.exceptions import RuntimeError as NaClRuntimeError
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from shadowmesh import aead
from shadowmesh.envelope import ClientCrypto
from shadowmesh.errors import (
    AuthenticationError,
    EnvelopeTooShort,
    InvalidSeedLength,
    PointDecodeError,
    WeakSharedSecretError,
)
from shadowmesh.identity import Identity
from shadowmesh.keys import (
    HKDF_INFO,
    derive_shared,
    dh_public_from_seed,
    is_small_order,
    seed_to_dh_private,
    signing_public_to_dh_public,
)

FIELD_PRIME = 2 ** 255 - 19
EDWARDS_D = -121665 * pow(121666, FIELD_PRIME - 2, FIELD_PRIME) % FIELD_PRIME

# Small-order Edwards points
IDENTITY_POINT = b"\x01" + bytes(31)
ORDER_FOUR_POINT = bytes(32)
ORDER_TWO_POINT = (FIELD_PRIME - 1).to_bytes(32, 'little')
ORDER_EIGHT_POINT = bytes.fromhex(
    "c7176a703d4dd84fba3c0b760d10670f2a2053fa2c39ccc64ec7fd7792ac037a"
)
# Non-canonical encodings: sign bit set on x = 0, and y = p + 1
IDENTITY_NEGATIVE_ZERO = b"\x01" + bytes(30) + b"\x80"
IDENTITY_UNREDUCED = (FIELD_PRIME + 1).to_bytes(32, 'little')

SMALL_ORDER_POINTS = [
    IDENTITY_POINT,
    ORDER_FOUR_POINT,
    ORDER_TWO_POINT,
    ORDER_EIGHT_POINT,
    IDENTITY_NEGATIVE_ZERO,
    IDENTITY_UNREDUCED,
]


def off_curve_point() -> bytes:
    """An encoding whose y-coordinate has no x on edwards25519."""
    for y in range(2, 1000):
        u = (y * y - 1) % FIELD_PRIME
        v = (EDWARDS_D * y * y + 1) % FIELD_PRIME
        x2 = u * pow(v, FIELD_PRIME - 2, FIELD_PRIME) % FIELD_PRIME
        if pow(x2, (FIELD_PRIME - 1) // 2, FIELD_PRIME) == FIELD_PRIME - 1:
            return y.to_bytes(32, 'little')
    raise AssertionError("no off-curve y-coordinate found")


class TestKeyTransform:
    """Tests for Ed25519 to X25519 conversion."""

    def test_seed_conversion_matches_libsodium(self):
        """Test that the clamped scalar equals libsodium's secret key conversion."""
        identity = Identity.generate()
        expected = crypto_sign_ed25519_sk_to_curve25519(
            identity.seed + identity.public_key_bytes
        )
        assert seed_to_dh_private(identity.seed) == expected

    def test_seed_conversion_is_clamped(self):
        """Test the X25519 clamping bits on several seeds."""
        for seed in (bytes(32), b"\xff" * 32, bytes(range(32))):
            scalar = seed_to_dh_private(seed)
            assert len(scalar) == 32
            assert scalar[0] & 0b111 == 0
            assert scalar[31] & 0x80 == 0
            assert scalar[31] & 0x40 == 0x40

    def test_seed_conversion_is_deterministic(self):
        seed = bytes(range(32))
        assert seed_to_dh_private(seed) == seed_to_dh_private(seed)

    @pytest.mark.parametrize("length", [0, 31, 33, 64])
    def test_wrong_seed_length_rejected(self, length):
        """Test that only 32-byte seeds are accepted."""
        with pytest.raises(InvalidSeedLength) as exc_info:
            seed_to_dh_private(bytes(length))
        assert exc_info.value.length == length

    def test_public_conversion_matches_private_conversion(self):
        """Test that both conversion paths land on the same X25519 keypair."""
        identity = Identity.generate()
        assert signing_public_to_dh_public(identity.public_key_bytes) == \
            dh_public_from_seed(identity.seed)

    @pytest.mark.parametrize("point", SMALL_ORDER_POINTS)
    def test_small_order_point_is_weak(self, point):
        """Test that small-order points are refused as weak, not as undecodable."""
        assert is_small_order(point)
        with pytest.raises(WeakSharedSecretError):
            signing_public_to_dh_public(point)

    def test_off_curve_point_rejected(self):
        point = off_curve_point()
        assert not is_small_order(point)
        with pytest.raises(PointDecodeError):
            signing_public_to_dh_public(point)

    def test_real_keys_are_not_small_order(self):
        for _ in range(5):
            assert not is_small_order(Identity.generate().public_key_bytes)

    def test_wrong_public_key_length_rejected(self):
        with pytest.raises(PointDecodeError):
            signing_public_to_dh_public(bytes(31))


class TestDeriveShared:
    """Tests for shared key derivation."""

    def test_ecdh_symmetry(self):
        """Test that both parties derive the identical key."""
        for _ in range(5):
            alice = Identity.generate()
            bob = Identity.generate()
            assert derive_shared(alice.seed, bob.public_key_bytes) == \
                derive_shared(bob.seed, alice.public_key_bytes)

    def test_distinct_pairs_get_distinct_keys(self):
        alice, bob, carol = Identity.generate(), Identity.generate(), Identity.generate()
        ab = derive_shared(alice.seed, bob.public_key_bytes)
        ac = derive_shared(alice.seed, carol.public_key_bytes)
        assert ab != ac

    def test_key_is_hkdf_of_x25519(self):
        """Test the derivation against an independent computation."""
        alice, bob = Identity.generate(), Identity.generate()
        raw = crypto_scalarmult(
            crypto_sign_ed25519_sk_to_curve25519(alice.seed + alice.public_key_bytes),
            crypto_sign_ed25519_pk_to_curve25519(bob.public_key_bytes),
        )
        expected = HKDF(
            algorithm=hashes.SHA256(), length=32, salt=None, info=HKDF_INFO,
        ).derive(raw)

        key = derive_shared(alice.seed, bob.public_key_bytes)
        assert key == expected
        assert len(key) == 32
        assert key != raw

    def test_all_zero_output_rejected(self):
        """Test that an all-zero X25519 result never becomes a key."""
        alice, bob = Identity.generate(), Identity.generate()
        with patch("shadowmesh.keys.crypto_scalarmult", return_value=bytes(32)):
            with pytest.raises(WeakSharedSecretError):
                derive_shared(alice.seed, bob.public_key_bytes)

    def test_library_refusal_reported_as_weak_secret(self):
        alice, bob = Identity.generate(), Identity.generate()
        with patch(
            "shadowmesh.keys.crypto_scalarmult",
            side_effect=NaClRuntimeError("Unexpected library error"),
        ):
            with pytest.raises(WeakSharedSecretError):
                derive_shared(alice.seed, bob.public_key_bytes)

    @pytest.mark.parametrize("point", [IDENTITY_POINT, ORDER_EIGHT_POINT])
    def test_small_order_peer_key_is_weak_secret(self, point):
        """Test that a small-order peer key fails as a weak shared secret."""
        alice = Identity.generate()
        with pytest.raises(WeakSharedSecretError):
            derive_shared(alice.seed, point)

    def test_undecodable_peer_key_rejected(self):
        alice = Identity.generate()
        with pytest.raises(PointDecodeError):
            derive_shared(alice.seed, off_curve_point())

    def test_invalid_seed_rejected(self):
        bob = Identity.generate()
        with pytest.raises(InvalidSeedLength):
            derive_shared(b"short", bob.public_key_bytes)


class TestAEAD:
    """Tests for envelope sealing and opening."""

    @pytest.fixture
    def key(self):
        alice, bob = Identity.generate(), Identity.generate()
        return derive_shared(alice.seed, bob.public_key_bytes)

    @pytest.mark.parametrize("plaintext", [b"", b"hello", b"\n" * 10, bytes(range(256)) * 40])
    def test_round_trip(self, key, plaintext):
        envelope = aead.seal(key, plaintext)
        assert len(envelope) == len(plaintext) + aead.NONCE_SIZE + aead.TAG_SIZE
        assert aead.open(key, envelope) == plaintext

    def test_fresh_nonce_per_seal(self, key):
        """Test that sealing the same plaintext twice never repeats a nonce."""
        envelopes = [aead.seal(key, b"same message") for _ in range(50)]
        nonces = {e[:aead.NONCE_SIZE] for e in envelopes}
        assert len(nonces) == 50

    def test_any_bit_flip_detected(self, key):
        """Test that altering nonce, ciphertext or tag always fails authentication."""
        envelope = aead.seal(key, b"attack at dawn")
        for index in range(len(envelope)):
            for bit in (0x01, 0x80):
                tampered = bytearray(envelope)
                tampered[index] ^= bit
                with pytest.raises(AuthenticationError):
                    aead.open(key, bytes(tampered))

    def test_wrong_key_fails_opaquely(self, key):
        envelope = aead.seal(key, b"secret")
        other = derive_shared(Identity.generate().seed, Identity.generate().public_key_bytes)
        with pytest.raises(AuthenticationError) as exc_info:
            aead.open(other, envelope)
        assert str(exc_info.value) == "Message authentication failed"

    def test_truncated_envelope_fails(self, key):
        envelope = aead.seal(key, b"secret")
        with pytest.raises(AuthenticationError):
            aead.open(key, envelope[:-1])

    @pytest.mark.parametrize("length", [0, 1, 12, 27])
    def test_short_envelope_rejected(self, key, length):
        """Test that envelopes shorter than nonce + tag are rejected up front."""
        with patch("shadowmesh.aead.ChaCha20Poly1305") as cipher:
            with pytest.raises(EnvelopeTooShort):
                aead.open(key, bytes(length))
            cipher.assert_not_called()

    def test_minimum_size_envelope_attempts_decryption(self, key):
        with pytest.raises(AuthenticationError):
            aead.open(key, bytes(aead.MIN_ENVELOPE_SIZE))

    def test_bad_key_length(self):
        with pytest.raises(ValueError):
            aead.seal(bytes(16), b"data")


class TestClientCrypto:
    """Tests for envelopes addressed by public key."""

    def test_seal_for_and_open_from(self):
        alice, bob = Identity.generate(), Identity.generate()
        envelope = ClientCrypto(alice).seal_for(bob.public_key_bytes, b"hi bob")
        assert ClientCrypto(bob).open_from(alice.public_key_bytes, envelope) == b"hi bob"

    def test_third_party_cannot_open(self):
        alice, bob, eve = Identity.generate(), Identity.generate(), Identity.generate()
        envelope = ClientCrypto(alice).seal_for(bob.public_key_bytes, b"hi bob")
        with pytest.raises(AuthenticationError):
            ClientCrypto(eve).open_from(alice.public_key_bytes, envelope)

    def test_shared_key_cached(self):
        alice, bob = Identity.generate(), Identity.generate()
        crypto = ClientCrypto(alice)
        with patch("shadowmesh.envelope.derive_shared", wraps=derive_shared) as derive:
            crypto.seal_for(bob.public_key_bytes, b"1")
            crypto.seal_for(bob.public_key_bytes, b"2")
        assert derive.call_count == 1

    def test_open_from_any_identifies_sender(self):
        alice, bob, carol = Identity.generate(), Identity.generate(), Identity.generate()
        envelope = ClientCrypto(carol).seal_for(bob.public_key_bytes, b"from carol")

        sender, plaintext = ClientCrypto(bob).open_from_any(
            [alice.public_key_bytes, carol.public_key_bytes], envelope
        )
        assert sender == carol.public_key_bytes
        assert plaintext == b"from carol"

    def test_open_from_any_unknown_sender(self):
        alice, bob, carol = Identity.generate(), Identity.generate(), Identity.generate()
        envelope = ClientCrypto(carol).seal_for(bob.public_key_bytes, b"from carol")
        with pytest.raises(AuthenticationError):
            ClientCrypto(bob).open_from_any([alice.public_key_bytes], envelope)

    def test_open_from_any_short_envelope(self):
        bob = Identity.generate()
        with pytest.raises(EnvelopeTooShort):
            ClientCrypto(bob).open_from_any([], b"tiny")

    def test_group_encryption(self):
        """Test that the group key is stable for one identity."""
        alice = Identity.generate()
        envelope = ClientCrypto(alice).seal_group(b"to the group")
        reloaded = Identity.from_seed(alice.seed)
        assert ClientCrypto(reloaded).open_group(envelope) == b"to the group"

    def test_recipient_id_for(self):
        bob = Identity.generate()
        assert ClientCrypto.recipient_id_for(bob.public_key_bytes) == bob.recipient_id
