"""Key material builders and an in-memory HKP key server for the tests."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

import httpx
import pgpy
from pgpy.constants import (
    CompressionAlgorithm,
    HashAlgorithm,
    KeyFlags,
    PubKeyAlgorithm,
    RevocationReason,
    SymmetricKeyAlgorithm,
)

from aumai_pgpverify.keys import fingerprint_of
from aumai_pgpverify.keyserver import KeyServerClient
from aumai_pgpverify.models import KeyServerEndpoint

ARTIFACT_BYTES = b"PK\x03\x04 artifact payload " * 64

# ---------------------------------------------------------------------------
# Keys and signatures
# ---------------------------------------------------------------------------


def new_key(
    name: str,
    email: str,
    comment: str = "",
    usage: Iterable[KeyFlags] = (KeyFlags.Sign, KeyFlags.Certify),
) -> pgpy.PGPKey:
    key = pgpy.PGPKey.new(PubKeyAlgorithm.RSAEncryptOrSign, 2048)
    uid = pgpy.PGPUID.new(name, comment=comment, email=email)
    key.add_uid(
        uid,
        usage=set(usage),
        hashes=[HashAlgorithm.SHA256, HashAlgorithm.SHA224],
        ciphers=[SymmetricKeyAlgorithm.AES256],
        compression=[CompressionAlgorithm.Uncompressed],
    )
    return key


def new_subkey_signer(name: str, email: str, comment: str = "") -> pgpy.PGPKey:
    """A certify-only primary key whose only signing key is a subkey."""
    primary = new_key(name, email, comment, usage=(KeyFlags.Certify,))
    subkey = pgpy.PGPKey.new(PubKeyAlgorithm.RSAEncryptOrSign, 2048)
    primary.add_subkey(subkey, usage={KeyFlags.Sign})
    return primary


def public_copy(key: pgpy.PGPKey) -> pgpy.PGPKey:
    public, _ = pgpy.PGPKey.from_blob(str(key.pubkey))
    return public


@dataclass(frozen=True)
class RevokedKey:
    private: pgpy.PGPKey
    public: pgpy.PGPKey
    revocation: pgpy.PGPSignature

    @property
    def fingerprint(self) -> str:
        return fingerprint_of(self.private)


def revoke(key: pgpy.PGPKey, comment: str = "") -> RevokedKey:
    """Revoke *key* as superseded; the public copy carries the revocation."""
    revocation = key.revoke(key, reason=RevocationReason.Superseded, comment=comment)
    public = public_copy(key)
    public |= revocation
    return RevokedKey(private=key, public=public, revocation=revocation)


def sign(key: pgpy.PGPKey, data: bytes, **prefs: object) -> bytes:
    """Armored detached signature of *data*."""
    return str(key.sign(data, **prefs)).encode("ascii")


def signing_subkey_fingerprint(key: pgpy.PGPKey) -> str:
    return fingerprint_of(next(iter(key.subkeys.values())))


# ---------------------------------------------------------------------------
# Key server
# ---------------------------------------------------------------------------


class FakeKeyServer:
    """In-memory key server answering ``/pks/lookup?op=get`` requests.

    Published keys are found by any suffix of their primary or subkey
    fingerprints. ``error`` makes every request raise that httpx exception;
    ``status`` forces a fixed HTTP status.
    """

    def __init__(
        self,
        status: int | None = None,
        error: type[httpx.TransportError] | None = None,
        body: str = "",
    ) -> None:
        self.keys: dict[str, str] = {}
        self.status = status
        self.error = error
        self.body = body
        self.requests: list[httpx.Request] = []

    def publish(
        self,
        key: pgpy.PGPKey | None = None,
        armored: str | None = None,
        fingerprints: Iterable[str] = (),
    ) -> None:
        ids = list(fingerprints)
        if key is not None:
            ids.append(fingerprint_of(key))
            ids.extend(fingerprint_of(sub) for sub in key.subkeys.values())
            if armored is None:
                armored = str(key.pubkey) if not key.is_public else str(key)
        assert armored is not None
        for fingerprint in ids:
            self.keys[fingerprint] = armored

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error("simulated failure", request=request)
        if self.status is not None:
            return httpx.Response(self.status, text=self.body)
        search = request.url.params.get("search", "").upper().removeprefix("0X")
        for fingerprint, armored in self.keys.items():
            if fingerprint[2:].endswith(search):
                return httpx.Response(
                    200, text=armored, headers={"Content-Type": "application/pgp-keys"}
                )
        return httpx.Response(404, text="No results found")

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self, host: str = "keys.example.org", protocol: str = "hkps", **kwargs: object) -> KeyServerClient:
        return KeyServerClient(
            KeyServerEndpoint.parse(f"{protocol}://{host}"),
            transport=self.transport,
            sleep=lambda _delay: None,
            **kwargs,  # type: ignore[arg-type]
        )
