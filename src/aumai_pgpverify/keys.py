"""OpenPGP keys, detached signatures and key lookup results.

PGPy does the packet parsing and the cryptographic work; this module turns
its objects into the identities, user ids and revocation details the
verifier and the reports need.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass

import pgpy
from pgpy.constants import SignatureType
from pgpy.types import Armorable

from aumai_pgpverify.models import KeyInfo, RevocationInfo, SignatureInfo

logger = logging.getLogger(__name__)

_HEX = re.compile(r"^[0-9A-F]+$")
_KEY_ID_LENGTHS = (16, 32, 40, 64)

# OpenPGP packet tags (RFC 9580, section 5)
_TAG_SIGNATURE = 2
_TAG_PUBLIC_KEY = 6

_REVOCATION_REASONS = {
    0x00: "No reason specified",
    0x01: "Key is superseded",
    0x02: "Key material has been compromised",
    0x03: "Key is retired and no longer used",
    0x20: "User ID information is no longer valid",
}

_DOCUMENT_SIGNATURES = (SignatureType.BinaryDocument, SignatureType.CanonicalDocument)


class SignatureFormatError(ValueError):
    """Detached signature data cannot be used for verification."""


class KeyDataError(ValueError):
    """A key server answered with armored data that is not usable key material."""


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------


def normalize_key_id(value: str) -> str:
    """Return *value* as ``0x`` followed by upper-case hex.

    Accepts long key ids (16 hex digits) and fingerprints (32, 40 or 64 hex
    digits), with or without the ``0x`` prefix and with embedded spaces.

    Raises:
        ValueError: if *value* is not a key id or fingerprint.
    """
    text = value.strip().replace(" ", "").upper()
    if text.startswith("0X"):
        text = text[2:]
    if len(text) not in _KEY_ID_LENGTHS or not _HEX.match(text):
        raise ValueError(f"Invalid key id or fingerprint: '{value}'")
    return "0x" + text


def fingerprint_of(key: pgpy.PGPKey) -> str:
    return "0x" + str(key.fingerprint).replace(" ", "").upper()


def key_ids_match(left: str, right: str) -> bool:
    """True when the shorter hex identifier is a suffix of the longer one."""
    a, b = left[2:], right[2:]
    if len(a) > len(b):
        a, b = b, a
    return b.endswith(a)


def _first_packet_tag(body: bytes) -> int | None:
    if not body or not body[0] & 0x80:
        return None
    if body[0] & 0x40:
        return body[0] & 0x3F
    return (body[0] >> 2) & 0x0F


def _format_user_id(uid: pgpy.PGPUID) -> str:
    text = uid.name or ""
    if uid.comment:
        text += f" ({uid.comment})"
    if uid.email:
        text += f" <{uid.email}>"
    return text.strip()


def revocation_info(signature: pgpy.PGPSignature) -> RevocationInfo:
    """Describe a revocation signature, reason text per RFC 9580."""
    code, description = 0, ""
    reason = signature.revocation_reason
    if reason is not None:
        raw_code, comment = reason
        code, description = int(raw_code), comment or ""
    return RevocationInfo(
        date=signature.created,
        reason_code=code,
        reason=_REVOCATION_REASONS.get(code, f"Unknown reason: {code:X}"),
        description=description,
    )


# ---------------------------------------------------------------------------
# Detached signatures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DetachedSignature:
    """A parsed detached signature and the identity of its issuing key."""

    signature: pgpy.PGPSignature
    key_id: str
    issuer_fingerprint: str | None = None

    @property
    def lookup_id(self) -> str:
        """The strongest identifier available for a key-server lookup."""
        return self.issuer_fingerprint or self.key_id

    @property
    def hash_algorithm(self) -> str:
        return self.signature.hash_algorithm.name

    def info(self) -> SignatureInfo:
        return SignatureInfo(
            key_id=self.key_id,
            issuer_fingerprint=self.issuer_fingerprint,
            hash_algorithm=self.hash_algorithm,
            key_algorithm=self.signature.key_algorithm.name,
            created=self.signature.created,
        )


def load_signature(data: bytes) -> DetachedSignature:
    """Parse an armored or binary detached signature.

    Raises:
        SignatureFormatError: if *data* holds no usable document signature,
            or its issuer fingerprint and issuer key id disagree.
    """
    if not data.strip():
        raise SignatureFormatError("PGP signature not found.")
    try:
        signature = pgpy.PGPSignature.from_blob(data)
    except Exception as exc:
        raise SignatureFormatError(f"PGP signature is malformed: {exc}") from exc

    if signature.type not in _DOCUMENT_SIGNATURES:
        raise SignatureFormatError(
            f"Not a document signature: {signature.type.name}"
        )
    if not signature.signer:
        raise SignatureFormatError("PGP signature has no issuer key id.")

    try:
        key_id = normalize_key_id(signature.signer)
        raw_fingerprint = str(signature.signer_fingerprint or "")
        issuer_fingerprint = (
            normalize_key_id(raw_fingerprint) if raw_fingerprint.strip() else None
        )
    except ValueError as exc:
        raise SignatureFormatError(str(exc)) from exc

    # RFC 9580: the issuer key id is the low 64 bits of a v4 issuer fingerprint
    if issuer_fingerprint is not None and not issuer_fingerprint.endswith(key_id[2:]):
        raise SignatureFormatError(
            f"Signature IssuerFingerprint {issuer_fingerprint} "
            f"not contains IssuerKeyID {key_id}"
        )
    return DetachedSignature(
        signature=signature, key_id=key_id, issuer_fingerprint=issuer_fingerprint
    )


# ---------------------------------------------------------------------------
# Public key rings
# ---------------------------------------------------------------------------


class PublicKeyRing:
    """Key material a key server returned for one lookup.

    Holds either a primary key with its subkeys, or only a bare key
    revocation signature when the server no longer publishes the key itself.
    """

    def __init__(
        self,
        primary: pgpy.PGPKey | None,
        armored: str = "",
        revocation: pgpy.PGPSignature | None = None,
    ) -> None:
        if primary is None and revocation is None:
            raise ValueError("A key ring needs a primary key or a revocation signature")
        self._primary = primary
        self._revocation = revocation
        self.armored = armored

    @classmethod
    def from_armored(cls, text: str, key_id: str) -> PublicKeyRing | None:
        """Parse a key-server answer and keep the key that contains *key_id*.

        Returns:
            The matching ring, or ``None`` when the data does not mention
            *key_id* at all.

        Raises:
            KeyDataError: if the armored data cannot be parsed.
        """
        wanted = normalize_key_id(key_id)
        try:
            body = bytes(Armorable.ascii_unarmor(text)["body"])
        except Exception as exc:
            raise KeyDataError(f"Invalid armored key data: {exc}") from exc

        tag = _first_packet_tag(body)
        if tag == _TAG_PUBLIC_KEY:
            try:
                primary, others = pgpy.PGPKey.from_blob(text)
            except Exception as exc:
                raise KeyDataError(f"Invalid public key data: {exc}") from exc
            for candidate in (primary, *others.values()):
                ring = cls(candidate, armored=text)
                if ring.find(wanted) is not None:
                    return ring
            return None

        if tag == _TAG_SIGNATURE:
            try:
                signature = pgpy.PGPSignature.from_blob(body)
            except Exception as exc:
                raise KeyDataError(f"Invalid signature data: {exc}") from exc
            signer = normalize_key_id(signature.signer) if signature.signer else None
            if (
                signature.type == SignatureType.KeyRevocation
                and signer is not None
                and key_ids_match(signer, wanted)
            ):
                logger.warning("Revocation without public key for: %s", wanted)
                return cls(None, armored=text, revocation=signature)
            return None

        raise KeyDataError(f"Unexpected OpenPGP packet tag: {tag}")

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def has_public_key(self) -> bool:
        return self._primary is not None

    @property
    def primary(self) -> pgpy.PGPKey | None:
        return self._primary

    @property
    def primary_fingerprint(self) -> str | None:
        if self._primary is None:
            return None
        return fingerprint_of(self._primary)

    @property
    def primary_key_id(self) -> str:
        if self._primary is not None:
            return "0x" + fingerprint_of(self._primary)[-16:]
        assert self._revocation is not None
        return normalize_key_id(self._revocation.signer)

    def user_ids(self) -> list[str]:
        if self._primary is None:
            return []
        seen: list[str] = []
        for uid in self._primary.userids:
            text = _format_user_id(uid)
            if text and text not in seen:
                seen.append(text)
        return seen

    def _keys(self) -> Iterator[pgpy.PGPKey]:
        if self._primary is None:
            return
        yield self._primary
        yield from self._primary.subkeys.values()

    def find(self, key_id: str) -> pgpy.PGPKey | None:
        """Return the primary key or subkey identified by *key_id*."""
        wanted = normalize_key_id(key_id)
        for key in self._keys():
            if key_ids_match(fingerprint_of(key), wanted):
                return key
        return None

    def subkeys(self) -> list[KeyInfo]:
        if self._primary is None:
            return []
        return [self.key_info(sub) for sub in self._primary.subkeys.values()]

    def key_info(self, key: pgpy.PGPKey) -> KeyInfo:
        size = key.key_size
        return KeyInfo(
            fingerprint=fingerprint_of(key),
            master_fingerprint=None if key.is_primary else fingerprint_of(key.parent),
            user_ids=self.user_ids(),
            algorithm=key.key_algorithm.name,
            bits=size if isinstance(size, int) else None,
            created=key.created,
            revoked=self.revocation_for(key) is not None,
        )

    def revocation_for(self, key: pgpy.PGPKey | None = None) -> RevocationInfo | None:
        """Revocation of *key* or of its primary key, if any.

        With no public key material the bare revocation signature applies.
        """
        if self._primary is None:
            assert self._revocation is not None
            return revocation_info(self._revocation)
        target = key if key is not None else self._primary
        chain = [target] if target.is_primary else [target, target.parent]
        for candidate in chain:
            signature = next(iter(candidate.revocation_signatures), None)
            if signature is not None:
                return revocation_info(signature)
        return None

    def verify(self, data: bytes, signature: DetachedSignature) -> bool:
        """Cryptographically check *signature* over *data*.

        PGPy hashes *data* with the signature's hash algorithm and walks the
        subkeys for the issuing key id.
        """
        if self._primary is None:
            raise ValueError("No public key material to verify with")
        return bool(self._primary.verify(data, signature.signature))

    def __repr__(self) -> str:
        return f"PublicKeyRing({self.primary_key_id}, public_key={self.has_public_key})"


# ---------------------------------------------------------------------------
# Lookup results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class KeyFound:
    """A reachable key server returned key material for the requested id."""

    ring: PublicKeyRing
    source: str = ""


@dataclass(frozen=True)
class KeyNotFound:
    """A reachable key server answered that it has no such key."""

    key_id: str
    detail: str = ""


@dataclass(frozen=True)
class KeyFetchError:
    """Every attempted key server failed at the transport level."""

    key_id: str
    causes: tuple[str, ...] = ()

    def describe(self) -> str:
        return "; ".join(self.causes) or "no key server attempted"


ResolvedKey = KeyFound | KeyNotFound | KeyFetchError


__all__ = [
    "DetachedSignature",
    "KeyDataError",
    "KeyFetchError",
    "KeyFound",
    "KeyNotFound",
    "PublicKeyRing",
    "ResolvedKey",
    "SignatureFormatError",
    "fingerprint_of",
    "key_ids_match",
    "load_signature",
    "normalize_key_id",
    "revocation_info",
]
