"""aumai-pgpverify: OpenPGP signature verification for build artifacts."""

from aumai_pgpverify.cache import DiskKeyStore, KeyCache
from aumai_pgpverify.config import VerifierSettings, load_settings
from aumai_pgpverify.core import SignatureVerifier
from aumai_pgpverify.errors import ConfigurationError, PgpVerifyError, PolicyLoadError
from aumai_pgpverify.keys import (
    KeyFetchError,
    KeyFound,
    KeyNotFound,
    PublicKeyRing,
    ResolvedKey,
    load_signature,
)
from aumai_pgpverify.keyserver import KeyServerClient, KeyServerClientGroup
from aumai_pgpverify.keysmap import (
    ArtifactPattern,
    KeyPattern,
    PolicyDecision,
    PolicyRule,
    SignerIdentity,
    TrustPolicy,
)
from aumai_pgpverify.models import (
    ArtifactCoordinate,
    ArtifactEntry,
    KeyInfo,
    KeyServerEndpoint,
    RevocationInfo,
    RunReport,
    SignatureInfo,
    Strategy,
    VerificationOutcome,
    VerificationResult,
)
from aumai_pgpverify.orchestrator import VerificationOrchestrator

__version__ = "0.1.0"

__all__ = [
    "ArtifactCoordinate",
    "ArtifactEntry",
    "ArtifactPattern",
    "ConfigurationError",
    "DiskKeyStore",
    "KeyCache",
    "KeyFetchError",
    "KeyFound",
    "KeyInfo",
    "KeyNotFound",
    "KeyPattern",
    "KeyServerClient",
    "KeyServerClientGroup",
    "KeyServerEndpoint",
    "PgpVerifyError",
    "PolicyDecision",
    "PolicyLoadError",
    "PolicyRule",
    "PublicKeyRing",
    "ResolvedKey",
    "RevocationInfo",
    "RunReport",
    "SignatureInfo",
    "SignatureVerifier",
    "SignerIdentity",
    "Strategy",
    "TrustPolicy",
    "VerificationOrchestrator",
    "VerificationOutcome",
    "VerificationResult",
    "VerifierSettings",
    "load_settings",
]
