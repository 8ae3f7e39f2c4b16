"""Process-level errors for aumai-pgpverify.

Per-artifact problems (unreachable key servers, missing keys, bad signatures,
revocations) never surface as exceptions; they end up in the artifact's
:class:`~aumai_pgpverify.models.VerificationResult`.
"""

from __future__ import annotations


class PgpVerifyError(Exception):
    """Base class for errors that abort a whole verification run."""


class PolicyLoadError(PgpVerifyError):
    """A keys map source is malformed, unreadable, or includes itself."""

    def __init__(self, message: str, source: str | None = None, line: int | None = None):
        self.source = source
        self.line = line
        location = ""
        if source is not None:
            location = f" ({source}:{line})" if line is not None else f" ({source})"
        super().__init__(f"{message}{location}")


class ConfigurationError(PgpVerifyError):
    """Invalid settings file, settings values or artifact arguments."""


__all__ = ["ConfigurationError", "PgpVerifyError", "PolicyLoadError"]
