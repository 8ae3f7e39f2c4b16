"""Shared test fixtures for aumai-pgpverify."""

from __future__ import annotations

from pathlib import Path

import pgpy
import pytest
from fakes import (
    ARTIFACT_BYTES,
    FakeKeyServer,
    RevokedKey,
    new_key,
    new_subkey_signer,
    revoke,
    sign,
)

from aumai_pgpverify.models import ArtifactCoordinate, ArtifactEntry


# ---------------------------------------------------------------------------
# Key fixtures (RSA generation is slow, so one per session)
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def signing_key() -> pgpy.PGPKey:
    """A primary key that signs directly."""
    return new_key("Alice Signer", "alice@example.com")


@pytest.fixture(scope="session")
def other_key() -> pgpy.PGPKey:
    """A second, unrelated signing key."""
    return new_key("Mallory Other", "mallory@example.com")


@pytest.fixture(scope="session")
def subkey_signer() -> pgpy.PGPKey:
    """A certify-only primary key with a signing subkey."""
    return new_subkey_signer("Bob Builder", "bob@example.com", comment="release")


@pytest.fixture(scope="session")
def revoked_key() -> RevokedKey:
    """A signing key revoked as superseded."""
    return revoke(
        new_key("Carol Retired", "carol@example.com"), comment="moved to a new key"
    )


# ---------------------------------------------------------------------------
# Artifact fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def coordinate() -> ArtifactCoordinate:
    return ArtifactCoordinate.parse("junit:junit:jar:4.12")


@pytest.fixture()
def artifact_path(tmp_path: Path) -> Path:
    path = tmp_path / "junit-4.12.jar"
    path.write_bytes(ARTIFACT_BYTES)
    return path


@pytest.fixture()
def signed_entry(
    artifact_path: Path, coordinate: ArtifactCoordinate, signing_key: pgpy.PGPKey
) -> ArtifactEntry:
    """The artifact with an ``.asc`` signature by *signing_key* next to it."""
    signature_path = artifact_path.with_name(artifact_path.name + ".asc")
    signature_path.write_bytes(sign(signing_key, ARTIFACT_BYTES))
    return ArtifactEntry(coordinate=coordinate, artifact_path=artifact_path)


# ---------------------------------------------------------------------------
# Key server fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def key_server(
    signing_key: pgpy.PGPKey,
    other_key: pgpy.PGPKey,
    subkey_signer: pgpy.PGPKey,
    revoked_key: RevokedKey,
) -> FakeKeyServer:
    """A reachable key server publishing every session key."""
    server = FakeKeyServer()
    server.publish(signing_key)
    server.publish(other_key)
    server.publish(subkey_signer)
    server.publish(revoked_key.public)
    return server
