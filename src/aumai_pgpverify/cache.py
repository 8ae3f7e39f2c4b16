"""Per-run key cache with at most one in-flight fetch per key id."""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from collections.abc import Callable
from concurrent.futures import Future
from pathlib import Path

from aumai_pgpverify.keys import (
    KeyDataError,
    KeyFound,
    PublicKeyRing,
    ResolvedKey,
    normalize_key_id,
)

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], ResolvedKey]


def _long_key_id(key_id: str) -> str:
    return "0x" + key_id[-16:]


class DiskKeyStore:
    """Armored keys on disk, laid out as ``AB/CD/0xABCD....asc``."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def path_for(self, key_id: str) -> Path:
        wanted = normalize_key_id(key_id)
        digits = wanted[2:]
        return self.root / digits[0:2] / digits[2:4] / f"{wanted}.asc"

    def load(self, key_id: str) -> KeyFound | None:
        path = self.path_for(key_id)
        if not path.is_file():
            return None
        try:
            ring = PublicKeyRing.from_armored(path.read_text(encoding="utf-8"), key_id)
        except (OSError, KeyDataError) as exc:
            logger.warning("Ignoring unreadable cached key %s: %s", path, exc)
            return None
        if ring is None:
            logger.warning("Cached key file %s does not contain %s", path, key_id)
            return None
        logger.debug("Key %s loaded from cache %s", key_id, path)
        return KeyFound(ring, source=str(path))

    def store(self, key_id: str, armored: str) -> None:
        """Write *armored* atomically: readers see the old file or the new one."""
        path = self.path_for(key_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=path.name, suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(armored)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


class KeyCache:
    """Memoize key lookups for one run.

    Entries are keyed by the long (64-bit) key id, so a fingerprint and the
    key id it ends with share one entry. Concurrent callers asking for the
    same key share one :class:`~concurrent.futures.Future`; the first caller
    runs *fetcher*, the others block on its result. Every result variant is memoized, so a
    failed lookup is not repeated within the run.
    """

    def __init__(self, fetcher: Fetcher, store: DiskKeyStore | None = None) -> None:
        self._fetcher = fetcher
        self._store = store
        self._lock = threading.Lock()
        self._futures: dict[str, Future[ResolvedKey]] = {}
        self.fetch_count = 0

    def get(self, key_id: str) -> ResolvedKey:
        """Resolve *key_id*, querying with it as given by the first caller."""
        wanted = normalize_key_id(key_id)
        slot = _long_key_id(wanted)
        with self._lock:
            future = self._futures.get(slot)
            owner = future is None
            if future is None:
                future = Future()
                self._futures[slot] = future

        if not owner:
            return future.result()

        try:
            result = self._resolve(wanted)
        except BaseException as exc:
            future.set_exception(exc)
            raise
        future.set_result(result)
        return result

    def _resolve(self, key_id: str) -> ResolvedKey:
        if self._store is not None:
            cached = self._store.load(key_id)
            if cached is not None:
                return cached

        with self._lock:
            self.fetch_count += 1
        result = self._fetcher(key_id)
        if self._store is not None and isinstance(result, KeyFound) and result.ring.armored:
            try:
                self._store.store(key_id, result.ring.armored)
            except OSError as exc:
                logger.warning("Cannot write key %s to cache: %s", key_id, exc)
        return result

    def __contains__(self, key_id: str) -> bool:
        with self._lock:
            return _long_key_id(normalize_key_id(key_id)) in self._futures

    def __len__(self) -> int:
        with self._lock:
            return len(self._futures)


__all__ = ["DiskKeyStore", "Fetcher", "KeyCache"]
