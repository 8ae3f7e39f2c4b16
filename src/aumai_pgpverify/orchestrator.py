"""Run the per-artifact verification pipeline over many artifacts."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor

from aumai_pgpverify.cache import KeyCache
from aumai_pgpverify.core import SignatureVerifier
from aumai_pgpverify.keys import KeyFound, SignatureFormatError, load_signature
from aumai_pgpverify.keyserver import KeyServerClientGroup
from aumai_pgpverify.models import (
    ArtifactCoordinate,
    ArtifactEntry,
    RunReport,
    VerificationOutcome,
    VerificationResult,
)

logger = logging.getLogger(__name__)


class VerificationOrchestrator:
    """Locate signatures, resolve keys and verify every artifact of a run.

    Artifacts are verified in parallel. A failure for one artifact never
    stops the others; the report lists every artifact sorted by coordinate.

    Args:
        verifier: Decides each artifact's outcome against the keys map.
        key_servers: Key servers used for lookups.
        cache: Shared key cache; a fresh one over *key_servers* by default.
        workers: Size of the worker pool.
    """

    def __init__(
        self,
        verifier: SignatureVerifier,
        key_servers: KeyServerClientGroup,
        cache: KeyCache | None = None,
        workers: int = 4,
    ) -> None:
        self.verifier = verifier
        self.key_servers = key_servers
        self.cache = cache if cache is not None else KeyCache(key_servers.fetch_key)
        self.workers = max(1, workers)
        if verifier.policy.is_empty():
            logger.warning(
                "No keys map specified or keys map contains no entries - "
                "valid signatures from any key will be accepted"
            )

    def run(self, entries: Iterable[ArtifactEntry]) -> RunReport:
        entries = list(entries)
        logger.info("Verifying %d artifact(s) with %d worker(s)", len(entries), self.workers)
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            results = list(pool.map(self.verify_entry, entries))
        results.sort(key=lambda result: result.coordinate.sort_key())
        report = RunReport(results=results)
        if report.success:
            logger.info("All %d artifact(s) verified", len(results))
        else:
            logger.error(
                "PGP signature verification failed for %d of %d artifact(s)",
                len(report.failed()),
                len(results),
            )
        return report

    def verify_entry(self, entry: ArtifactEntry) -> VerificationResult:
        """Run the pipeline for one artifact; never raises for artifact problems."""
        try:
            result = self._verify(entry)
        except Exception as exc:
            logger.exception("Unexpected error while verifying %s", entry.coordinate)
            result = self.verifier.unresolved(entry.coordinate, repr(exc))
        _log_result(result)
        return result

    def _verify(self, entry: ArtifactEntry) -> VerificationResult:
        coordinate = entry.coordinate
        try:
            artifact = entry.artifact_path.read_bytes()
        except OSError as exc:
            return self.verifier.unresolved(coordinate, str(exc))

        signature_path = entry.effective_signature_path
        if not signature_path.is_file():
            logger.debug("%s has no signature at %s", coordinate, signature_path)
            return self.verifier.verify(coordinate, artifact, None)
        try:
            signature = load_signature(signature_path.read_bytes())
        except (OSError, SignatureFormatError) as exc:
            return self.verifier.malformed_signature(coordinate, exc)

        lookup_id = self.lookup_id(coordinate, signature.lookup_id)
        resolved = self.cache.get(lookup_id)
        key_show_url = self.key_servers.show_key_url(lookup_id)
        if isinstance(resolved, KeyFound):
            key_show_url = self.key_servers.show_key_url(resolved.ring.primary_key_id)
        return self.verifier.verify(coordinate, artifact, signature, resolved, key_show_url)

    def lookup_id(self, coordinate: ArtifactCoordinate, signature_id: str) -> str:
        """Prefer a full fingerprint from the keys map over a bare key id."""
        if len(signature_id) > 18:
            return signature_id
        hint = self.verifier.policy.key_hint(coordinate, signature_id)
        if hint is not None:
            logger.debug("Using keys map fingerprint %s for key id %s", hint, signature_id)
            return hint
        return signature_id


def _log_result(result: VerificationResult) -> None:
    coordinate = result.coordinate
    if result.outcome is VerificationOutcome.signature_ok:
        logger.info("%s PGP Signature OK\n\t%s", coordinate, result.detail)
    elif result.accepted:
        logger.info("%s %s", coordinate, result.detail)
    else:
        logger.error("%s %s: %s", coordinate, result.outcome.value, result.detail)


__all__ = ["VerificationOrchestrator"]
