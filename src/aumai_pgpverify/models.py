"""Pydantic models for aumai-pgpverify."""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from pathlib import Path
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, computed_field

_DEFAULT_PORTS = {"http": 80, "https": 443, "hkp": 11371, "hkps": 443}


class Strategy(str, Enum):
    """How a key-server group spreads lookups over its endpoints."""

    fallback = "fallback"
    load_balance = "load_balance"


class VerificationOutcome(str, Enum):
    """Terminal per-artifact verification outcome."""

    signature_ok = "signature_ok"
    signature_unavailable_consistent_with_policy = (
        "signature_unavailable_consistent_with_policy"
    )
    signature_unavailable_not_allowed = "signature_unavailable_not_allowed"
    signature_invalid = "signature_invalid"
    key_revoked_no_public_key = "key_revoked_no_public_key"
    key_revoked_with_public_key = "key_revoked_with_public_key"
    key_not_found_on_server = "key_not_found_on_server"
    key_not_allowed_by_policy = "key_not_allowed_by_policy"
    key_fetch_failed = "key_fetch_failed"
    artifact_unresolved = "artifact_unresolved"


class ArtifactCoordinate(BaseModel):
    """Immutable ``groupId:artifactId:type:version`` identity of an artifact."""

    model_config = ConfigDict(frozen=True)

    group_id: str = Field(min_length=1)
    artifact_id: str = Field(min_length=1)
    type: str = Field(default="jar", min_length=1)
    version: str = Field(min_length=1)

    @classmethod
    def parse(cls, text: str) -> ArtifactCoordinate:
        """Parse ``g:a:v`` or ``g:a:t:v``.

        Raises:
            ValueError: if *text* does not have three or four segments.
        """
        parts = [part.strip() for part in text.strip().split(":")]
        if len(parts) == 3:
            group_id, artifact_id, version = parts
            return cls(group_id=group_id, artifact_id=artifact_id, version=version)
        if len(parts) == 4:
            group_id, artifact_id, type_, version = parts
            return cls(
                group_id=group_id,
                artifact_id=artifact_id,
                type=type_,
                version=version,
            )
        raise ValueError(
            f"Invalid artifact coordinate '{text}': "
            "expected groupId:artifactId[:type]:version"
        )

    def sort_key(self) -> tuple[str, str, str, str]:
        return (self.group_id, self.artifact_id, self.type, self.version)

    def __str__(self) -> str:
        return f"{self.group_id}:{self.artifact_id}:{self.type}:{self.version}"


class KeyServerEndpoint(BaseModel):
    """A single key server reachable over http, https, hkp or hkps."""

    model_config = ConfigDict(frozen=True)

    protocol: str = Field(pattern="^(http|https|hkp|hkps)$")
    host: str = Field(min_length=1)
    port: int = Field(ge=1, le=65535)

    @classmethod
    def parse(cls, url: str) -> KeyServerEndpoint:
        """Build an endpoint from a URL such as ``hkps://keyserver.ubuntu.com``.

        Raises:
            ValueError: on an unsupported protocol or a missing host.
        """
        parts = urlsplit(url.strip())
        protocol = parts.scheme.lower()
        if protocol not in _DEFAULT_PORTS:
            raise ValueError(f"Unsupported key server protocol: '{protocol}' in {url}")
        if not parts.hostname:
            raise ValueError(f"Key server URL has no host: {url}")
        return cls(
            protocol=protocol,
            host=parts.hostname,
            port=parts.port or _DEFAULT_PORTS[protocol],
        )

    @property
    def http_scheme(self) -> str:
        """The HTTP scheme actually spoken: hkp is HTTP, hkps is HTTPS."""
        return "https" if self.protocol in ("https", "hkps") else "http"

    @property
    def base_url(self) -> str:
        scheme = self.http_scheme
        if self.port == _DEFAULT_PORTS[scheme]:
            return f"{scheme}://{self.host}"
        return f"{scheme}://{self.host}:{self.port}"

    def __str__(self) -> str:
        return "{" + self.base_url + "}"


class SignatureInfo(BaseModel):
    """Diagnostic view of a detached OpenPGP signature."""

    key_id: str
    issuer_fingerprint: str | None = None
    hash_algorithm: str
    key_algorithm: str
    created: datetime | None = None


class RevocationInfo(BaseModel):
    """Details of a key revocation signature."""

    date: datetime | None = None
    reason_code: int = 0
    reason: str
    description: str = ""


class KeyInfo(BaseModel):
    """Diagnostic view of the public key that issued a signature."""

    fingerprint: str
    master_fingerprint: str | None = None
    user_ids: list[str] = Field(default_factory=list)
    algorithm: str | None = None
    bits: int | None = None
    created: datetime | None = None
    revoked: bool = False

    @property
    def primary_fingerprint(self) -> str:
        return self.master_fingerprint or self.fingerprint

    def description(self) -> str:
        """``KeyId: 0x..`` or ``SubKeyId: 0x.. of 0x..`` as printed in logs."""
        if self.master_fingerprint:
            return f"SubKeyId: {self.fingerprint} of {self.master_fingerprint}"
        return f"KeyId: {self.fingerprint}"


class VerificationResult(BaseModel):
    """Outcome of verifying one artifact."""

    coordinate: ArtifactCoordinate
    outcome: VerificationOutcome
    accepted: bool
    detail: str
    key_id: str | None = None
    fingerprint: str | None = None
    signature: SignatureInfo | None = None
    key: KeyInfo | None = None
    revocation: RevocationInfo | None = None
    key_show_url: str | None = None


class ArtifactEntry(BaseModel):
    """An artifact to check together with the location of its signature."""

    coordinate: ArtifactCoordinate
    artifact_path: Path
    signature_path: Path | None = None

    @property
    def effective_signature_path(self) -> Path:
        if self.signature_path is not None:
            return self.signature_path
        return self.artifact_path.with_name(self.artifact_path.name + ".asc")


class RunReport(BaseModel):
    """Run-level report over every checked artifact."""

    results: list[VerificationResult] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success(self) -> bool:
        return all(result.accepted for result in self.results)

    def failed(self) -> list[VerificationResult]:
        return [result for result in self.results if not result.accepted]

    def write_json(self, path: Path) -> None:
        """Write the results as a JSON list, omitting empty fields."""
        path.parent.mkdir(parents=True, exist_ok=True)
        data = [
            result.model_dump(mode="json", exclude_none=True)
            for result in self.results
        ]
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")


__all__ = [
    "ArtifactCoordinate",
    "ArtifactEntry",
    "KeyInfo",
    "KeyServerEndpoint",
    "RevocationInfo",
    "RunReport",
    "SignatureInfo",
    "Strategy",
    "VerificationOutcome",
    "VerificationResult",
]
