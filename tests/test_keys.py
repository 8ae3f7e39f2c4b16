"""Tests for aumai_pgpverify.keys — OpenPGP wrappers over PGPy."""

from __future__ import annotations

import pgpy
import pytest
from fakes import RevokedKey, sign, signing_subkey_fingerprint

from aumai_pgpverify.keys import (
    KeyDataError,
    KeyFetchError,
    PublicKeyRing,
    SignatureFormatError,
    fingerprint_of,
    key_ids_match,
    load_signature,
    normalize_key_id,
)

DATA = b"some artifact bytes"


def _ring(key: pgpy.PGPKey, key_id: str | None = None) -> PublicKeyRing:
    armored = str(key) if key.is_public else str(key.pubkey)
    ring = PublicKeyRing.from_armored(armored, key_id or fingerprint_of(key))
    assert ring is not None
    return ring


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------


class TestNormalizeKeyId:
    def test_long_key_id(self) -> None:
        assert normalize_key_id("03bd3c33f16ab41b") == "0x03BD3C33F16AB41B"

    def test_prefixed_fingerprint_with_spaces(self) -> None:
        assert (
            normalize_key_id("0x58e7 9b6a bc76 2159 dc0b 1591 164b d224 7b93 6711")
            == "0x58E79B6ABC762159DC0B1591164BD2247B936711"
        )

    @pytest.mark.parametrize("value", ["", "0x1234ABCD", "XYZ", "0x" + "G" * 16])
    def test_rejects_invalid(self, value: str) -> None:
        with pytest.raises(ValueError):
            normalize_key_id(value)


class TestKeyIdsMatch:
    def test_suffix_either_way(self) -> None:
        assert key_ids_match("0x7B936711AABBCCDD", "0x1234567B936711AABBCCDD")
        assert key_ids_match("0x1234567B936711AABBCCDD", "0x7B936711AABBCCDD")

    def test_different_ids(self) -> None:
        assert not key_ids_match("0x7B936711AABBCCDD", "0x7B936711AABBCCDE")


# ---------------------------------------------------------------------------
# Detached signatures
# ---------------------------------------------------------------------------


class TestLoadSignature:
    def test_armored_signature(self, signing_key: pgpy.PGPKey) -> None:
        signature = load_signature(sign(signing_key, DATA))
        assert signature.key_id == "0x" + fingerprint_of(signing_key)[-16:]
        assert fingerprint_of(signing_key).endswith(signature.lookup_id[2:])
        assert signature.hash_algorithm == "SHA256"

    def test_binary_signature(self, signing_key: pgpy.PGPKey) -> None:
        binary = bytes(signing_key.sign(DATA))
        signature = load_signature(binary)
        assert signature.key_id == "0x" + fingerprint_of(signing_key)[-16:]

    def test_info(self, signing_key: pgpy.PGPKey) -> None:
        info = load_signature(sign(signing_key, DATA)).info()
        assert info.hash_algorithm == "SHA256"
        assert info.key_algorithm.startswith("RSA")
        assert info.created is not None

    def test_subkey_signature_names_subkey(self, subkey_signer: pgpy.PGPKey) -> None:
        signature = load_signature(sign(subkey_signer, DATA))
        assert signing_subkey_fingerprint(subkey_signer).endswith(signature.key_id[2:])

    def test_empty_data(self) -> None:
        with pytest.raises(SignatureFormatError, match="not found"):
            load_signature(b"  \n")

    def test_garbage(self) -> None:
        with pytest.raises(SignatureFormatError, match="malformed"):
            load_signature(b"-----BEGIN PGP SIGNATURE-----\n\nnot base64 !!\n")

    def test_key_instead_of_signature(self, signing_key: pgpy.PGPKey) -> None:
        with pytest.raises(SignatureFormatError):
            load_signature(str(signing_key.pubkey).encode("ascii"))


# ---------------------------------------------------------------------------
# Public key rings
# ---------------------------------------------------------------------------


class TestPublicKeyRing:
    def test_primary_key(self, signing_key: pgpy.PGPKey) -> None:
        ring = _ring(signing_key)
        assert ring.has_public_key
        assert ring.primary_fingerprint == fingerprint_of(signing_key)
        assert ring.primary_key_id == "0x" + fingerprint_of(signing_key)[-16:]
        assert ring.user_ids() == ["Alice Signer <alice@example.com>"]

    def test_lookup_by_long_key_id(self, signing_key: pgpy.PGPKey) -> None:
        key_id = "0x" + fingerprint_of(signing_key)[-16:]
        ring = _ring(signing_key, key_id)
        assert ring.find(key_id) is not None

    def test_subkey_info(self, subkey_signer: pgpy.PGPKey) -> None:
        subkey_fpr = signing_subkey_fingerprint(subkey_signer)
        ring = _ring(subkey_signer, subkey_fpr)
        key = ring.find(subkey_fpr)
        assert key is not None
        info = ring.key_info(key)
        assert info.fingerprint == subkey_fpr
        assert info.master_fingerprint == fingerprint_of(subkey_signer)
        assert info.description() == (
            f"SubKeyId: {subkey_fpr} of {fingerprint_of(subkey_signer)}"
        )
        assert info.user_ids == ["Bob Builder (release) <bob@example.com>"]
        assert info.revoked is False
        assert [sub.fingerprint for sub in ring.subkeys()] == [subkey_fpr]

    def test_primary_key_info(self, signing_key: pgpy.PGPKey) -> None:
        ring = _ring(signing_key)
        info = ring.key_info(ring.primary)
        assert info.master_fingerprint is None
        assert info.bits == 2048
        assert info.description() == f"KeyId: {fingerprint_of(signing_key)}"

    def test_key_not_in_answer(self, signing_key: pgpy.PGPKey) -> None:
        assert PublicKeyRing.from_armored(str(signing_key.pubkey), "0x0123456789ABCDEF") is None

    def test_unparseable_answer(self) -> None:
        with pytest.raises(KeyDataError):
            PublicKeyRing.from_armored("-----BEGIN PGP PUBLIC KEY BLOCK-----\n\n@@@\n", "0x0123456789ABCDEF")

    def test_verify(self, signing_key: pgpy.PGPKey) -> None:
        ring = _ring(signing_key)
        signature = load_signature(sign(signing_key, DATA))
        assert ring.verify(DATA, signature) is True
        assert ring.verify(DATA + b"!", signature) is False

    def test_verify_walks_subkeys(self, subkey_signer: pgpy.PGPKey) -> None:
        ring = _ring(subkey_signer, signing_subkey_fingerprint(subkey_signer))
        signature = load_signature(sign(subkey_signer, DATA))
        assert ring.verify(DATA, signature) is True


class TestRevocation:
    def test_revoked_primary(self, revoked_key: RevokedKey) -> None:
        ring = _ring(revoked_key.public)
        revocation = ring.revocation_for()
        assert revocation is not None
        assert revocation.reason_code == 1
        assert revocation.reason == "Key is superseded"
        assert revocation.description == "moved to a new key"
        assert ring.key_info(ring.primary).revoked is True

    def test_bare_revocation(self, revoked_key: RevokedKey) -> None:
        ring = PublicKeyRing.from_armored(str(revoked_key.revocation), revoked_key.fingerprint)
        assert ring is not None
        assert not ring.has_public_key
        assert ring.primary_key_id == "0x" + revoked_key.fingerprint[-16:]
        assert ring.user_ids() == []
        revocation = ring.revocation_for()
        assert revocation is not None
        assert revocation.reason == "Key is superseded"

    def test_bare_revocation_for_other_key(self, revoked_key: RevokedKey) -> None:
        assert PublicKeyRing.from_armored(str(revoked_key.revocation), "0x0123456789ABCDEF") is None

    def test_valid_key_has_no_revocation(self, signing_key: pgpy.PGPKey) -> None:
        assert _ring(signing_key).revocation_for() is None


class TestKeyFetchError:
    def test_describe_joins_causes(self) -> None:
        error = KeyFetchError("0x0123456789ABCDEF", ("{a}: timeout", "{b}: refused"))
        assert error.describe() == "{a}: timeout; {b}: refused"

    def test_describe_without_causes(self) -> None:
        assert KeyFetchError("0x0123456789ABCDEF").describe() == "no key server attempted"
