"""HKP key-server clients.

:class:`KeyServerClient` talks to a single endpoint and turns every answer
into a :data:`~aumai_pgpverify.keys.ResolvedKey` variant.
:class:`KeyServerClientGroup` spreads lookups over several endpoints with
the ``fallback`` or ``load_balance`` strategy.
"""

from __future__ import annotations

import logging
import socket
import threading
import time
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING

import httpx

from aumai_pgpverify.errors import ConfigurationError
from aumai_pgpverify.keys import (
    KeyDataError,
    KeyFetchError,
    KeyFound,
    KeyNotFound,
    PublicKeyRing,
    ResolvedKey,
    normalize_key_id,
)
from aumai_pgpverify.models import KeyServerEndpoint, Strategy

if TYPE_CHECKING:
    from aumai_pgpverify.config import VerifierSettings

logger = logging.getLogger(__name__)

_LOOKUP_PATH = "/pks/lookup"
_ARMOR_MARKER = "-----BEGIN PGP "
_USER_AGENT = "aumai-pgpverify"


class _TransportFailure(Exception):
    """One attempt against one endpoint failed below the HKP protocol level."""

    def __init__(self, reason: str, retryable: bool = True) -> None:
        super().__init__(reason)
        self.retryable = retryable


def _is_unknown_host(exc: BaseException) -> bool:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        if isinstance(current, socket.gaierror):
            return True
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return False


# ---------------------------------------------------------------------------
# KeyServerClient
# ---------------------------------------------------------------------------


class KeyServerClient:
    """HKP lookups against one key server.

    Transport failures are retried ``max_retries`` times with exponential
    backoff, except for unknown hosts. A 404 or an answer without an armored
    block is a definitive :class:`KeyNotFound`.
    """

    def __init__(
        self,
        endpoint: KeyServerEndpoint,
        timeout: float = 10.0,
        max_retries: int = 2,
        retry_backoff: float = 0.5,
        proxy: str | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.endpoint = endpoint
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self._sleep = sleep
        self._client = httpx.Client(
            timeout=timeout,
            proxy=proxy,
            transport=transport,
            follow_redirects=True,
            headers={"User-Agent": _USER_AGENT},
        )

    def get_key_url(self, key_id: str) -> str:
        return (
            f"{self.endpoint.base_url}{_LOOKUP_PATH}"
            f"?op=get&options=mr&search={normalize_key_id(key_id)}"
        )

    def show_key_url(self, key_id: str) -> str:
        """Human-facing index page for *key_id*, used in diagnostics."""
        return (
            f"{self.endpoint.base_url}{_LOOKUP_PATH}"
            f"?op=vindex&fingerprint=on&search={normalize_key_id(key_id)}"
        )

    def fetch(self, key_id: str) -> ResolvedKey:
        """Look up *key_id*; never raises for network or protocol problems."""
        wanted = normalize_key_id(key_id)
        reason = "no attempt made"
        for attempt in range(self.max_retries + 1):
            try:
                return self._attempt(wanted)
            except _TransportFailure as failure:
                reason = str(failure)
                if not failure.retryable or attempt == self.max_retries:
                    break
                delay = self.retry_backoff * (2**attempt)
                logger.debug(
                    "%s attempt %d for %s failed: %s - retry in %.2fs",
                    self.endpoint,
                    attempt + 1,
                    wanted,
                    reason,
                    delay,
                )
                self._sleep(delay)
        return KeyFetchError(wanted, (f"{self.endpoint}: {reason}",))

    def _attempt(self, key_id: str) -> KeyFound | KeyNotFound:
        url = self.get_key_url(key_id)
        logger.debug("Fetching key %s from %s", key_id, url)
        try:
            response = self._client.get(url)
        except httpx.TimeoutException as exc:
            raise _TransportFailure(f"timeout: {exc}") from exc
        except httpx.TransportError as exc:
            unknown_host = _is_unknown_host(exc)
            reason = f"unknown host {self.endpoint.host}" if unknown_host else repr(exc)
            raise _TransportFailure(reason, retryable=not unknown_host) from exc

        if response.status_code == httpx.codes.NOT_FOUND:
            return KeyNotFound(key_id, f"{self.endpoint} has no key {key_id}")
        if response.status_code != httpx.codes.OK:
            raise _TransportFailure(f"unexpected HTTP status {response.status_code}")

        text = response.text
        if _ARMOR_MARKER not in text:
            return KeyNotFound(key_id, f"{self.endpoint} returned no armored key for {key_id}")
        try:
            ring = PublicKeyRing.from_armored(text, key_id)
        except KeyDataError as exc:
            raise _TransportFailure(str(exc), retryable=False) from exc
        if ring is None:
            return KeyNotFound(key_id, f"{self.endpoint} answer does not contain {key_id}")

        logger.info("Receive key: %s", url)
        return KeyFound(ring, source=url)

    def close(self) -> None:
        self._client.close()

    def __repr__(self) -> str:
        return f"KeyServerClient({self.endpoint})"


# ---------------------------------------------------------------------------
# KeyServerClientGroup
# ---------------------------------------------------------------------------


class KeyServerClientGroup:
    """Ordered key servers consumed through one strategy."""

    def __init__(
        self,
        clients: Sequence[KeyServerClient],
        strategy: Strategy = Strategy.fallback,
    ) -> None:
        if not clients:
            raise ConfigurationError("At least one key server must be configured")
        self._clients = list(clients)
        self.strategy = strategy
        self._next = 0
        self._lock = threading.Lock()
        label = "fallback" if strategy is Strategy.fallback else "load balance"
        logger.info(
            "Key server(s) - %s list: %s",
            label,
            [str(client.endpoint) for client in self._clients],
        )

    @classmethod
    def from_settings(
        cls,
        settings: VerifierSettings,
        transport: httpx.BaseTransport | None = None,
    ) -> KeyServerClientGroup:
        clients = [
            KeyServerClient(
                endpoint,
                timeout=settings.timeout,
                max_retries=settings.max_retries,
                retry_backoff=settings.retry_backoff,
                proxy=settings.proxy,
                transport=transport,
            )
            for endpoint in settings.key_servers
        ]
        return cls(clients, settings.strategy)

    @property
    def endpoints(self) -> list[KeyServerEndpoint]:
        return [client.endpoint for client in self._clients]

    def _round_robin(self) -> KeyServerClient:
        with self._lock:
            client = self._clients[self._next % len(self._clients)]
            self._next += 1
        return client

    def fetch_key(self, key_id: str) -> ResolvedKey:
        """Resolve *key_id* according to :attr:`strategy`.

        ``fallback`` moves to the next server only on transport failure;
        ``load_balance`` makes a single attempt on the next server in turn.
        """
        wanted = normalize_key_id(key_id)
        if self.strategy is Strategy.load_balance:
            candidates = [self._round_robin()]
        else:
            candidates = self._clients

        causes: list[str] = []
        for index, client in enumerate(candidates):
            result = client.fetch(wanted)
            if not isinstance(result, KeyFetchError):
                return result
            causes.extend(result.causes)
            follow_up = (
                "fallback try next client" if index + 1 < len(candidates) else "no more clients"
            )
            logger.warning(
                "%s throw exception: %s for: %s - %s",
                client.endpoint,
                result.describe(),
                client.get_key_url(wanted),
                follow_up,
            )

        logger.error("All key servers failed for %s: %s", wanted, "; ".join(causes))
        return KeyFetchError(wanted, tuple(causes))

    def show_key_url(self, key_id: str) -> str:
        return self._clients[0].show_key_url(key_id)

    def close(self) -> None:
        for client in self._clients:
            client.close()

    def __enter__(self) -> KeyServerClientGroup:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = ["KeyServerClient", "KeyServerClientGroup"]
