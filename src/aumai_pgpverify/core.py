"""Signature verification state machine for build artifacts."""

from __future__ import annotations

import logging

from aumai_pgpverify.keys import (
    DetachedSignature,
    KeyFetchError,
    KeyNotFound,
    PublicKeyRing,
    ResolvedKey,
)
from aumai_pgpverify.keysmap import PolicyDecision, SignerIdentity, TrustPolicy
from aumai_pgpverify.models import (
    ArtifactCoordinate,
    KeyInfo,
    RevocationInfo,
    VerificationOutcome,
    VerificationResult,
)

logger = logging.getLogger(__name__)

SIGNATURE_UNAVAILABLE_CONSISTENT = "PGP Signature unavailable, consistent with keys map."

# Hash algorithms that no longer give collision resistance (PGPy names)
WEAK_HASH_ALGORITHMS = frozenset(
    {"MD5", "MD2", "SHA224", "TIGER192", "HAVAL", "DOUBLE_SHA"}
)


# ---------------------------------------------------------------------------
# Detail helpers
# ---------------------------------------------------------------------------


def format_key_detail(key: KeyInfo) -> str:
    """``KeyId: 0x.. UserIds: [..]`` or ``SubKeyId: 0x.. of 0x.. UserIds: [..]``."""
    return f"{key.description()} UserIds: [{', '.join(key.user_ids)}]"


def format_revocation(revocation: RevocationInfo) -> str:
    text = f"key is revoked, reason: {revocation.reason}"
    if revocation.description:
        text += f", description: {revocation.description}"
    return text


# ---------------------------------------------------------------------------
# SignatureVerifier
# ---------------------------------------------------------------------------


class SignatureVerifier:
    """Combine a detached signature, a resolved key and the keys map.

    Every call returns exactly one terminal :class:`VerificationResult`;
    per-artifact problems never raise.
    """

    def __init__(
        self,
        policy: TrustPolicy,
        fail_no_signature: bool = True,
        fail_weak_signature: bool = False,
    ) -> None:
        self.policy = policy
        self.fail_no_signature = fail_no_signature
        self.fail_weak_signature = fail_weak_signature

    def verify(
        self,
        coordinate: ArtifactCoordinate,
        artifact: bytes,
        signature: DetachedSignature | None,
        resolved: ResolvedKey | None = None,
        key_show_url: str | None = None,
    ) -> VerificationResult:
        """Decide the outcome for one artifact.

        Args:
            coordinate: Identity of the artifact.
            artifact: The artifact bytes the signature covers.
            signature: The parsed detached signature, or ``None`` when the
                artifact has no signature.
            resolved: Key lookup result for ``signature.lookup_id``; required
                when *signature* is given.
            key_show_url: Key-server page for the key, quoted in details.

        Raises:
            ValueError: if a signature is given without a key lookup result.
        """
        if signature is None:
            return self._no_signature(coordinate)
        if resolved is None:
            raise ValueError("A key lookup result is required to verify a signature")

        if isinstance(resolved, KeyFetchError):
            return VerificationResult(
                coordinate=coordinate,
                outcome=VerificationOutcome.key_fetch_failed,
                accepted=False,
                detail=(
                    f"Cannot fetch PGP key {signature.lookup_id} for artifact "
                    f"{coordinate}: {resolved.describe()}"
                ),
                key_id=signature.key_id,
                signature=signature.info(),
                key_show_url=key_show_url,
            )
        if isinstance(resolved, KeyNotFound):
            return self._key_not_found(coordinate, signature, key_show_url)

        ring = resolved.ring
        if not ring.has_public_key:
            return self._revoked(coordinate, signature, ring, None, key_show_url)

        key = ring.find(signature.key_id)
        if key is None:
            return self._key_not_found(coordinate, signature, key_show_url)
        info = ring.key_info(key)
        invalid = self._invalid_signature(
            coordinate, artifact, signature, ring, info, key_show_url
        )
        if invalid is not None:
            return invalid
        if info.revoked:
            return self._revoked(coordinate, signature, ring, info, key_show_url)
        return self._check_signature(coordinate, signature, info, key_show_url)

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _no_signature(self, coordinate: ArtifactCoordinate) -> VerificationResult:
        decision = self.policy.lookup(coordinate, SignerIdentity.no_signature())
        if decision.allowed:
            accepted, detail = True, SIGNATURE_UNAVAILABLE_CONSISTENT
        elif decision.listed:
            accepted = False
            detail = f"PGP Signature unavailable for {coordinate}, not allowed by keys map."
        elif self.fail_no_signature:
            accepted = False
            detail = f"PGP Signature unavailable for {coordinate}, unsigned artifacts are not allowed."
        else:
            logger.warning("%s is not signed and not listed in keys map - accepted", coordinate)
            accepted, detail = True, SIGNATURE_UNAVAILABLE_CONSISTENT

        outcome = (
            VerificationOutcome.signature_unavailable_consistent_with_policy
            if accepted
            else VerificationOutcome.signature_unavailable_not_allowed
        )
        return VerificationResult(
            coordinate=coordinate, outcome=outcome, accepted=accepted, detail=detail
        )

    def _key_not_found(
        self,
        coordinate: ArtifactCoordinate,
        signature: DetachedSignature,
        key_show_url: str | None,
    ) -> VerificationResult:
        decision = self.policy.lookup(
            coordinate, SignerIdentity.key_missing(signature.lookup_id), explicit=True
        )
        where = key_show_url or signature.lookup_id
        detail = f"PGP key {where} not found on keyserver for artifact {coordinate}"
        if decision.allowed:
            detail += ", consistent with keys map."
        return VerificationResult(
            coordinate=coordinate,
            outcome=VerificationOutcome.key_not_found_on_server,
            accepted=decision.allowed,
            detail=detail,
            key_id=signature.key_id,
            signature=signature.info(),
            key_show_url=key_show_url,
        )

    def _revoked(
        self,
        coordinate: ArtifactCoordinate,
        signature: DetachedSignature,
        ring: PublicKeyRing,
        info: KeyInfo | None,
        key_show_url: str | None,
    ) -> VerificationResult:
        if info is None:
            identity = SignerIdentity.for_key(signature.lookup_id, ring.primary_key_id)
            revocation = ring.revocation_for()
            outcome = VerificationOutcome.key_revoked_no_public_key
            head = f"PGP key {signature.lookup_id} has been revoked and public key is not available"
        else:
            identity = SignerIdentity.for_key(info.fingerprint, info.master_fingerprint)
            revocation = ring.revocation_for(ring.find(signature.key_id))
            outcome = VerificationOutcome.key_revoked_with_public_key
            head = f"PGP key {format_key_detail(info)} has been revoked"
        assert revocation is not None

        decision: PolicyDecision = self.policy.lookup(coordinate, identity, explicit=True)
        if decision.allowed and info is None:
            detail = (
                f"PGP key {signature.lookup_id} is revoked and has no public key, "
                "consistent with keys map."
            )
        else:
            detail = f"{head} - {format_revocation(revocation)}"
            if decision.allowed:
                detail += " - consistent with keys map."
        return VerificationResult(
            coordinate=coordinate,
            outcome=outcome,
            accepted=decision.allowed,
            detail=detail,
            key_id=signature.key_id,
            fingerprint=info.fingerprint if info else None,
            signature=signature.info(),
            key=info,
            revocation=revocation,
            key_show_url=key_show_url,
        )

    @staticmethod
    def _key_result(
        coordinate: ArtifactCoordinate,
        signature: DetachedSignature,
        info: KeyInfo,
        key_show_url: str | None,
        outcome: VerificationOutcome,
        accepted: bool,
        detail: str,
    ) -> VerificationResult:
        return VerificationResult(
            coordinate=coordinate,
            outcome=outcome,
            accepted=accepted,
            detail=detail,
            key_id=signature.key_id,
            fingerprint=info.fingerprint,
            signature=signature.info(),
            key=info,
            key_show_url=key_show_url,
        )

    def _invalid_signature(
        self,
        coordinate: ArtifactCoordinate,
        artifact: bytes,
        signature: DetachedSignature,
        ring: PublicKeyRing,
        info: KeyInfo,
        key_show_url: str | None,
    ) -> VerificationResult | None:
        """``signature_invalid`` result, or ``None`` when the signature checks out.

        Runs for revoked keys too: a revocation is only reported for data
        the key actually signed.
        """
        key_detail = format_key_detail(info)
        try:
            verified = ring.verify(artifact, signature)
        except Exception as exc:
            logger.debug("Signature check for %s raised %r", coordinate, exc)
            detail = f"Invalid signature for {coordinate}: {exc} - {key_detail}"
        else:
            if verified:
                return None
            detail = f"Invalid signature for {coordinate} - {key_detail}"
        return self._key_result(
            coordinate,
            signature,
            info,
            key_show_url,
            VerificationOutcome.signature_invalid,
            False,
            detail,
        )

    def _check_signature(
        self,
        coordinate: ArtifactCoordinate,
        signature: DetachedSignature,
        info: KeyInfo,
        key_show_url: str | None,
    ) -> VerificationResult:
        key_detail = format_key_detail(info)

        def result(outcome: VerificationOutcome, accepted: bool, detail: str) -> VerificationResult:
            return self._key_result(
                coordinate, signature, info, key_show_url, outcome, accepted, detail
            )

        hash_name = signature.hash_algorithm
        if hash_name in WEAK_HASH_ALGORITHMS:
            if self.fail_weak_signature:
                return result(
                    VerificationOutcome.signature_invalid,
                    False,
                    f"Weak signature algorithm {hash_name} for {coordinate} - {key_detail}",
                )
            logger.warning("Weak signature algorithm %s used for %s", hash_name, coordinate)

        identity = SignerIdentity.for_key(info.fingerprint, info.master_fingerprint)
        decision = self.policy.lookup(coordinate, identity)
        if decision.allowed or not decision.listed:
            return result(VerificationOutcome.signature_ok, True, key_detail)
        return result(
            VerificationOutcome.key_not_allowed_by_policy,
            False,
            f"Not allowed artifact {coordinate} and keyID: {key_detail}",
        )

    # ------------------------------------------------------------------
    # Results that never reach the state machine
    # ------------------------------------------------------------------

    def malformed_signature(
        self, coordinate: ArtifactCoordinate, error: Exception
    ) -> VerificationResult:
        return VerificationResult(
            coordinate=coordinate,
            outcome=VerificationOutcome.signature_invalid,
            accepted=False,
            detail=f"Invalid signature for {coordinate}: {error}",
        )

    def unresolved(self, coordinate: ArtifactCoordinate, reason: str) -> VerificationResult:
        return VerificationResult(
            coordinate=coordinate,
            outcome=VerificationOutcome.artifact_unresolved,
            accepted=False,
            detail=f"Cannot read artifact {coordinate}: {reason}",
        )


__all__ = [
    "SIGNATURE_UNAVAILABLE_CONSISTENT",
    "SignatureVerifier",
    "WEAK_HASH_ALGORITHMS",
    "format_key_detail",
    "format_revocation",
]
