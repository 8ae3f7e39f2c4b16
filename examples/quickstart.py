"""aumai-pgpverify quickstart — offline demonstrations of the main features.

Run this file directly to see the verifier in action:

    python examples/quickstart.py

No network access is needed: the key server is an in-memory httpx transport
that answers HKP ``op=get`` lookups for the keys generated here.
"""

from __future__ import annotations

import tempfile
from pathlib import Path

import httpx
import pgpy
from pgpy.constants import (
    CompressionAlgorithm,
    HashAlgorithm,
    KeyFlags,
    PubKeyAlgorithm,
    SymmetricKeyAlgorithm,
)

from aumai_pgpverify import (
    ArtifactCoordinate,
    ArtifactEntry,
    KeyServerClient,
    KeyServerClientGroup,
    KeyServerEndpoint,
    SignatureVerifier,
    TrustPolicy,
    VerificationOrchestrator,
)
from aumai_pgpverify.keys import fingerprint_of

# ---------------------------------------------------------------------------
# Setup helpers
# ---------------------------------------------------------------------------


def make_key(name: str, email: str) -> pgpy.PGPKey:
    key = pgpy.PGPKey.new(PubKeyAlgorithm.RSAEncryptOrSign, 2048)
    key.add_uid(
        pgpy.PGPUID.new(name, email=email),
        usage={KeyFlags.Sign, KeyFlags.Certify},
        hashes=[HashAlgorithm.SHA256],
        ciphers=[SymmetricKeyAlgorithm.AES256],
        compression=[CompressionAlgorithm.Uncompressed],
    )
    return key


def in_memory_key_server(*keys: pgpy.PGPKey) -> KeyServerClientGroup:
    """A single-server group whose lookups are answered from *keys*."""
    published = {fingerprint_of(key)[2:]: str(key.pubkey) for key in keys}

    def handler(request: httpx.Request) -> httpx.Response:
        search = request.url.params.get("search", "").upper().removeprefix("0X")
        for fingerprint, armored in published.items():
            if fingerprint.endswith(search):
                return httpx.Response(200, text=armored)
        return httpx.Response(404, text="No results found")

    client = KeyServerClient(
        KeyServerEndpoint.parse("hkps://keys.example.org"),
        transport=httpx.MockTransport(handler),
    )
    return KeyServerClientGroup([client])


def write_artifact(directory: Path, name: str, key: pgpy.PGPKey | None) -> Path:
    path = directory / name
    payload = f"contents of {name}".encode()
    path.write_bytes(payload)
    if key is not None:
        path.with_name(name + ".asc").write_text(str(key.sign(payload)), encoding="ascii")
    return path


# ---------------------------------------------------------------------------
# Demo 1 — keys map evaluation
# ---------------------------------------------------------------------------


def demo_keys_map(release_key: pgpy.PGPKey) -> None:
    print("\n=== Demo 1: Keys map ===")

    policy = TrustPolicy.from_text(
        "# trusted signers\n"
        f"org.example = {fingerprint_of(release_key)}\n"
        "org.example:legacy-*:1.0 = noSig\n"
        "org.thirdparty = *\n"
    )
    print(f"  Loaded {len(policy)} rules:")
    for rule in policy.rules:
        print(f"    {rule}")

    coordinate = ArtifactCoordinate.parse("org.example:legacy-api:1.0")
    print(f"  {coordinate} listed: {policy.is_listed(coordinate)}")
    print("  Demo 1 passed.")


# ---------------------------------------------------------------------------
# Demo 2 — verifying a batch of artifacts
# ---------------------------------------------------------------------------


def demo_verify_artifacts(release_key: pgpy.PGPKey, rogue_key: pgpy.PGPKey) -> None:
    print("\n=== Demo 2: Verify artifacts ===")

    policy = TrustPolicy.from_text(
        f"org.example = {fingerprint_of(release_key)}\n"
        "org.example:legacy-api = noSig\n"
    )
    verifier = SignatureVerifier(policy)

    with tempfile.TemporaryDirectory() as tmpdir, in_memory_key_server(
        release_key, rogue_key
    ) as key_servers:
        tmp = Path(tmpdir)
        entries = [
            ArtifactEntry(
                coordinate=ArtifactCoordinate.parse("org.example:core:jar:2.1"),
                artifact_path=write_artifact(tmp, "core-2.1.jar", release_key),
            ),
            ArtifactEntry(
                coordinate=ArtifactCoordinate.parse("org.example:legacy-api:jar:1.0"),
                artifact_path=write_artifact(tmp, "legacy-api-1.0.jar", None),
            ),
            ArtifactEntry(
                coordinate=ArtifactCoordinate.parse("org.example:plugin:jar:2.1"),
                artifact_path=write_artifact(tmp, "plugin-2.1.jar", rogue_key),
            ),
        ]
        report = VerificationOrchestrator(verifier, key_servers).run(entries)

    for result in report.results:
        status = "OK" if result.accepted else "FAIL"
        print(f"  [{status}] {result.coordinate}: {result.outcome.value}")
        print(f"         {result.detail}")

    assert [r.accepted for r in report.results] == [True, True, False]
    print("  Demo 2 passed.")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Run all quickstart demos in sequence."""
    print("aumai-pgpverify quickstart demos")
    print("=" * 45)

    release_key = make_key("Release Manager", "release@example.org")
    rogue_key = make_key("Someone Else", "rogue@example.net")

    demo_keys_map(release_key)
    demo_verify_artifacts(release_key, rogue_key)

    print("\n" + "=" * 45)
    print("All demos completed successfully.")


if __name__ == "__main__":
    main()
