"""Keys map: artifact patterns, key patterns and the trust policy built from them.

A keys map is a line-oriented text source::

    # comment
    org.apache.maven.*        = 0x58E79B6ABC762159DC0B1591164BD2247B936711
    junit:junit:4.12          = 0xEFE8086F9E93774E, \\
                                0x03BD3C33F16AB41B
    commons-chain:commons-chain:1.1 = noSig
    @include shared/keys.list

Each ``pattern = key1, key2`` line becomes one :class:`PolicyRule` per key,
in order. Lookups are first-match-wins in declaration order.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from aumai_pgpverify.errors import PolicyLoadError
from aumai_pgpverify.keys import key_ids_match, normalize_key_id
from aumai_pgpverify.models import ArtifactCoordinate

logger = logging.getLogger(__name__)

_INCLUDE_DIRECTIVE = "@include"
_TYPE_SEGMENT = re.compile(r"^[A-Za-z][A-Za-z-]*$")
_VERSION_RANGE_CHARS = frozenset("[](),")
_MIN_KEY_HEX = 16
_FINGERPRINT_HEX = 40


# ---------------------------------------------------------------------------
# Signer identities
# ---------------------------------------------------------------------------


class IdentityKind(str, Enum):
    """What a keys-map lookup is asked about."""

    key = "key"
    no_signature = "no_signature"
    key_missing = "key_missing"


@dataclass(frozen=True)
class SignerIdentity:
    """The signer of an artifact as seen by the keys map.

    ``fingerprint`` is the signing key's fingerprint, or a bare key id when no
    key material is available. ``master_fingerprint`` is set for subkeys.
    """

    kind: IdentityKind
    fingerprint: str | None = None
    master_fingerprint: str | None = None

    @classmethod
    def for_key(cls, fingerprint: str, master_fingerprint: str | None = None) -> SignerIdentity:
        return cls(IdentityKind.key, fingerprint, master_fingerprint)

    @classmethod
    def no_signature(cls) -> SignerIdentity:
        return cls(IdentityKind.no_signature)

    @classmethod
    def key_missing(cls, key_id: str) -> SignerIdentity:
        return cls(IdentityKind.key_missing, key_id)

    def key_ids(self) -> tuple[str, ...]:
        if self.kind is not IdentityKind.key or self.fingerprint is None:
            return ()
        if self.master_fingerprint:
            return (self.fingerprint, self.master_fingerprint)
        return (self.fingerprint,)

    def __str__(self) -> str:
        if self.kind is IdentityKind.no_signature:
            return "noSig"
        if self.kind is IdentityKind.key_missing:
            return f"noKey({self.fingerprint})"
        return str(self.fingerprint)


# ---------------------------------------------------------------------------
# Key patterns
# ---------------------------------------------------------------------------


class KeyPatternKind(str, Enum):
    any_key = "any"
    no_signature = "noSig"
    key_missing = "noKey"
    key = "key"


_SPECIAL_KEY_VALUES = {
    "*": KeyPatternKind.any_key,
    "any": KeyPatternKind.any_key,
    "nosig": KeyPatternKind.no_signature,
    "nokey": KeyPatternKind.key_missing,
}


@dataclass(frozen=True)
class KeyPattern:
    """Right-hand side of a keys-map entry: a key, a wildcard or a sentinel."""

    kind: KeyPatternKind
    value: str | None = None

    @classmethod
    def parse(cls, text: str) -> KeyPattern:
        """Parse one key item.

        Raises:
            ValueError: on unknown special values, or hex values that are not
                a long key id or fingerprint.
        """
        item = text.strip()
        special = _SPECIAL_KEY_VALUES.get(item.lower())
        if special is not None:
            return cls(special)
        if not item.lower().startswith("0x"):
            raise ValueError(f"Key item must be 0x-prefixed hex or a special value: '{item}'")
        hex_digits = item[2:].replace(" ", "")
        if len(hex_digits) < _MIN_KEY_HEX:
            raise ValueError(f"Key id is too short, use a long key id or fingerprint: '{item}'")
        if len(hex_digits) % 2 or not re.fullmatch(r"[0-9A-Fa-f]+", hex_digits):
            raise ValueError(f"Invalid key id or fingerprint: '{item}'")
        return cls(KeyPatternKind.key, "0x" + hex_digits.upper())

    @property
    def is_wildcard(self) -> bool:
        return self.kind is KeyPatternKind.any_key

    @property
    def is_fingerprint(self) -> bool:
        return self.value is not None and len(self.value) - 2 >= _FINGERPRINT_HEX

    def matches(self, identity: SignerIdentity) -> bool:
        if self.kind is KeyPatternKind.any_key:
            return True
        if self.kind is KeyPatternKind.no_signature:
            return identity.kind is IdentityKind.no_signature
        if self.kind is KeyPatternKind.key_missing:
            return identity.kind is IdentityKind.key_missing
        assert self.value is not None
        return any(key_ids_match(self.value, key_id) for key_id in identity.key_ids())

    def __str__(self) -> str:
        if self.kind is KeyPatternKind.key:
            return str(self.value)
        if self.kind is KeyPatternKind.any_key:
            return "*"
        return self.kind.value


# ---------------------------------------------------------------------------
# Artifact patterns
# ---------------------------------------------------------------------------


def _segment_matches(segment: str, value: str) -> bool:
    if segment == "*":
        return True
    if segment.endswith("*"):
        prefix = segment[:-1]
        if value.startswith(prefix):
            return True
        # org.apache.* also covers the org.apache group itself
        return segment.endswith(".*") and value == segment[:-2]
    return value == segment


# ---------------------------------------------------------------------------
# Maven versions and version ranges
# ---------------------------------------------------------------------------

_VERSION_TOKEN = re.compile(r"\d+|[a-z]+")
_PRE_RELEASE_QUALIFIERS = {
    "alpha": 0,
    "a": 0,
    "beta": 1,
    "b": 1,
    "milestone": 2,
    "m": 2,
    "rc": 3,
    "cr": 3,
    "snapshot": 4,
}
_RELEASE_QUALIFIERS = frozenset({"ga", "final", "release"})
_VersionItem = tuple[int, int, int, str]
_ZERO_ITEM: _VersionItem = (1, 0, 0, "")


def _version_items(version: str) -> list[_VersionItem]:
    items: list[_VersionItem] = []
    for token in _VERSION_TOKEN.findall(version.lower()):
        if token.isdigit():
            items.append((1, int(token), 0, ""))
        elif token in _PRE_RELEASE_QUALIFIERS:
            items.append((0, _PRE_RELEASE_QUALIFIERS[token], 0, ""))
        elif token in _RELEASE_QUALIFIERS:
            items.append(_ZERO_ITEM)
        elif token == "sp":
            items.append((1, 0, 1, ""))
        else:
            items.append((1, 0, 2, token))
    return items


def compare_versions(left: str, right: str) -> int:
    """Order Maven versions: ``-1``, ``0`` or ``1``.

    Numeric parts compare as numbers and missing parts count as zero, so
    ``1.0 == 1.0.0`` and ``1.9 < 1.10``. Pre-release qualifiers sort before
    the release (``1.0-alpha1 < 1.0-rc1 < 1.0-SNAPSHOT < 1.0``), ``sp`` and
    unknown qualifiers after it but before the next numeric version.
    """
    a, b = _version_items(left), _version_items(right)
    size = max(len(a), len(b))
    a += [_ZERO_ITEM] * (size - len(a))
    b += [_ZERO_ITEM] * (size - len(b))
    return (a > b) - (a < b)


@dataclass(frozen=True)
class _Restriction:
    lower: str | None
    lower_inclusive: bool
    upper: str | None
    upper_inclusive: bool

    @classmethod
    def parse(cls, opening: str, body: str, closing: str) -> _Restriction:
        lower_inclusive, upper_inclusive = opening == "[", closing == "]"
        if "," not in body:
            if not body or not (lower_inclusive and upper_inclusive):
                raise ValueError("Single version must be surrounded by []")
            return cls(body, True, body, True)

        lower_text, _, upper_text = body.partition(",")
        if "," in upper_text:
            raise ValueError(f"Too many versions in restriction '{opening}{body}{closing}'")
        lower = lower_text.strip() or None
        upper = upper_text.strip() or None
        if lower is not None and upper is not None:
            order = compare_versions(lower, upper)
            if order > 0 or (order == 0 and not (lower_inclusive and upper_inclusive)):
                raise ValueError(
                    f"Range defies version ordering: '{opening}{body}{closing}'"
                )
        return cls(lower, lower_inclusive, upper, upper_inclusive)

    def contains(self, version: str) -> bool:
        if self.lower is not None:
            order = compare_versions(version, self.lower)
            if order < 0 or (order == 0 and not self.lower_inclusive):
                return False
        if self.upper is not None:
            order = compare_versions(version, self.upper)
            if order > 0 or (order == 0 and not self.upper_inclusive):
                return False
        return True


@dataclass(frozen=True)
class VersionRange:
    """A Maven version range such as ``[4.0,5.0)`` or ``(,1.0],[1.2,)``.

    A version matches when any of the comma-separated restrictions
    contains it.
    """

    spec: str
    restrictions: tuple[_Restriction, ...]

    @classmethod
    def parse(cls, spec: str) -> VersionRange:
        """Parse a range.

        Raises:
            ValueError: on unbalanced brackets, wildcards, bare versions
                between restrictions or bounds in the wrong order.
        """
        if "*" in spec:
            raise ValueError(f"Invalid maven version range: '{spec}'")
        restrictions: list[_Restriction] = []
        rest = spec.strip()
        while rest:
            if rest[0] not in "[(":
                raise ValueError(f"Invalid maven version range: '{spec}'")
            ends = [index for index in (rest.find("]"), rest.find(")")) if index > 0]
            if not ends:
                raise ValueError(f"Unbounded maven version range: '{spec}'")
            close = min(ends)
            restrictions.append(_Restriction.parse(rest[0], rest[1:close].strip(), rest[close]))
            rest = rest[close + 1 :].strip()
            if rest.startswith(","):
                rest = rest[1:].strip()
                if not rest:
                    raise ValueError(f"Invalid maven version range: '{spec}'")
        if not restrictions:
            raise ValueError(f"Empty maven version range: '{spec}'")
        return cls(spec=spec, restrictions=tuple(restrictions))

    def contains(self, version: str) -> bool:
        return any(restriction.contains(version) for restriction in self.restrictions)

    def __str__(self) -> str:
        return self.spec


@dataclass(frozen=True)
class ArtifactPattern:
    """Left-hand side of a keys-map entry.

    Accepted forms are ``group``, ``group:artifact``,
    ``group:artifact:version``, ``group:artifact:type`` (when the third
    segment is purely alphabetic) and ``group:artifact:type:version``.
    """

    pattern: str
    group_id: str = "*"
    artifact_id: str = "*"
    type: str = "*"
    version: str = "*"
    version_range: VersionRange | None = None

    @classmethod
    def parse(cls, text: str) -> ArtifactPattern:
        """Parse an artifact pattern.

        Raises:
            ValueError: on empty patterns, misplaced ``*``, too many segments
                or malformed version ranges.
        """
        pattern = text.strip()
        if not pattern:
            raise ValueError("Empty artifact pattern")
        segments = [segment.strip() or "*" for segment in pattern.split(":")]
        if len(segments) > 4:
            raise ValueError(f"Too many segments in artifact pattern: '{pattern}'")
        for segment in segments:
            if "*" in segment[:-1]:
                raise ValueError(
                    f"Wildcard is only allowed at the end of a segment: '{pattern}'"
                )

        if len(segments) == 3 and not _TYPE_SEGMENT.match(segments[2]):
            segments.insert(2, "*")
        segments.extend("*" for _ in range(4 - len(segments)))
        group_id, artifact_id, type_, version = segments

        version_range = None
        if version[0] in "[(":
            version_range = VersionRange.parse(version)
        elif _VERSION_RANGE_CHARS.intersection(version):
            raise ValueError(f"Invalid maven version range: '{pattern}'")
        return cls(
            pattern=pattern,
            group_id=group_id,
            artifact_id=artifact_id,
            type=type_,
            version=version,
            version_range=version_range,
        )

    def matches(self, coordinate: ArtifactCoordinate) -> bool:
        return (
            _segment_matches(self.group_id, coordinate.group_id)
            and _segment_matches(self.artifact_id, coordinate.artifact_id)
            and _segment_matches(self.type, coordinate.type)
            and self._version_matches(coordinate.version)
        )

    def _version_matches(self, version: str) -> bool:
        if self.version_range is not None:
            return self.version_range.contains(version)
        return _segment_matches(self.version, version)

    def __str__(self) -> str:
        return self.pattern


# ---------------------------------------------------------------------------
# Rules and decisions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PolicyRule:
    """One ``artifact pattern = key pattern`` pair and where it was declared."""

    artifact: ArtifactPattern
    key: KeyPattern
    source: str = "<inline>"
    line: int = 0

    def matches(self, coordinate: ArtifactCoordinate, identity: SignerIdentity) -> bool:
        return self.artifact.matches(coordinate) and self.key.matches(identity)

    @property
    def origin(self) -> str:
        return f"{self.source}:{self.line}"

    def __str__(self) -> str:
        return f"{self.artifact} = {self.key}"


@dataclass(frozen=True)
class PolicyDecision:
    """Result of a keys-map lookup.

    ``rule`` is the first matching rule, if any; ``listed`` tells whether any
    rule names the artifact at all, whatever its key.
    """

    rule: PolicyRule | None
    listed: bool

    @property
    def allowed(self) -> bool:
        return self.rule is not None


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _logical_lines(text: str) -> Iterator[tuple[int, str]]:
    """Yield ``(first line number, content)`` with comments stripped and
    backslash continuations joined."""
    pending: list[str] = []
    start = 0
    for number, raw in enumerate(text.splitlines(), start=1):
        line = raw.split("#", 1)[0].strip()
        if not line:
            continue
        if not pending:
            start = number
        if line.endswith("\\"):
            pending.append(line[:-1].strip())
            continue
        pending.append(line)
        yield start, " ".join(pending)
        pending = []
    if pending:
        yield start, " ".join(pending)


@dataclass
class _KeysMapLoader:
    rules: list[PolicyRule] = field(default_factory=list)
    stack: list[Path] = field(default_factory=list)

    def load_file(self, path: Path, source: str | None = None, line: int | None = None) -> None:
        resolved = path.resolve()
        if resolved in self.stack:
            chain = " -> ".join(str(p) for p in [*self.stack, resolved])
            raise PolicyLoadError(f"Cyclic keys map include: {chain}", source, line)
        try:
            text = resolved.read_text(encoding="utf-8")
        except OSError as exc:
            raise PolicyLoadError(f"Cannot read keys map {path}: {exc}", source, line) from exc

        self.stack.append(resolved)
        try:
            before = len(self.rules)
            self.load_text(text, str(path), resolved.parent)
            logger.debug("Loaded %d keys map rules from %s", len(self.rules) - before, path)
        finally:
            self.stack.pop()

    def load_text(self, text: str, source: str, base_dir: Path | None) -> None:
        for number, line in _logical_lines(text):
            if line.startswith(_INCLUDE_DIRECTIVE):
                self._include(line[len(_INCLUDE_DIRECTIVE):].strip(), source, number, base_dir)
                continue
            self._parse_entry(line, source, number)

    def _include(self, target: str, source: str, number: int, base_dir: Path | None) -> None:
        if not target:
            raise PolicyLoadError("Include directive without a path", source, number)
        path = Path(target)
        if not path.is_absolute():
            path = (base_dir or Path.cwd()) / path
        self.load_file(path, source, number)

    def _parse_entry(self, line: str, source: str, number: int) -> None:
        parts = line.split("=")
        if len(parts) != 2:
            raise PolicyLoadError(f"Keys map line is malformed: '{line}'", source, number)
        pattern_text, value = parts[0].strip(), parts[1].strip()

        try:
            artifact = ArtifactPattern.parse(pattern_text)
        except ValueError as exc:
            raise PolicyLoadError(str(exc), source, number) from exc

        if not value:
            logger.warning(
                "Empty value for key is deprecated - please provide some value - "
                "now assume as noSig: %s (%s:%d)",
                pattern_text,
                source,
                number,
            )
            value = KeyPatternKind.no_signature.value

        seen: list[KeyPattern] = []
        for item in value.split(","):
            if not item.strip():
                raise PolicyLoadError(f"Empty key item in '{line}'", source, number)
            try:
                key = KeyPattern.parse(item)
            except ValueError as exc:
                raise PolicyLoadError(str(exc), source, number) from exc
            if key in seen:
                logger.warning(
                    "Duplicate key item %s for %s (%s:%d)", key, pattern_text, source, number
                )
                continue
            seen.append(key)
            self.rules.append(PolicyRule(artifact, key, source, number))


# ---------------------------------------------------------------------------
# TrustPolicy
# ---------------------------------------------------------------------------


class TrustPolicy:
    """Immutable, ordered keys-map rules shared read-only by every verification."""

    def __init__(self, rules: Iterable[PolicyRule] = ()) -> None:
        self._rules: tuple[PolicyRule, ...] = tuple(rules)

    @classmethod
    def build(cls, sources: Sequence[str | Path]) -> TrustPolicy:
        """Load keys-map files in order, resolving ``@include`` directives.

        Raises:
            PolicyLoadError: on malformed entries, unreadable files or
                include cycles.
        """
        loader = _KeysMapLoader()
        for source in sources:
            loader.load_file(Path(source))
        policy = cls(loader.rules)
        logger.info("Keys map loaded: %d rules from %d source(s)", len(policy), len(sources))
        return policy

    @classmethod
    def from_text(
        cls, text: str, source: str = "<inline>", base_dir: Path | None = None
    ) -> TrustPolicy:
        """Build a policy from keys-map text; includes resolve against *base_dir*."""
        loader = _KeysMapLoader()
        loader.load_text(text, source, base_dir)
        return cls(loader.rules)

    @property
    def rules(self) -> tuple[PolicyRule, ...]:
        return self._rules

    def is_empty(self) -> bool:
        return not self._rules

    def __len__(self) -> int:
        return len(self._rules)

    def is_listed(self, coordinate: ArtifactCoordinate) -> bool:
        return any(rule.artifact.matches(coordinate) for rule in self._rules)

    def lookup(
        self,
        coordinate: ArtifactCoordinate,
        identity: SignerIdentity,
        explicit: bool = False,
    ) -> PolicyDecision:
        """Return the first rule matching *coordinate* and *identity*.

        With ``explicit=True`` wildcard key rules are skipped, so only an
        entry naming the key (or the ``noKey`` sentinel) can match.
        """
        listed = False
        for rule in self._rules:
            if not rule.artifact.matches(coordinate):
                continue
            listed = True
            if explicit and rule.key.is_wildcard:
                continue
            if rule.key.matches(identity):
                logger.debug("%s matched keys map rule %s at %s", coordinate, rule, rule.origin)
                return PolicyDecision(rule=rule, listed=True)
        return PolicyDecision(rule=None, listed=listed)

    def key_hint(self, coordinate: ArtifactCoordinate, key_id: str) -> str | None:
        """A full fingerprint from the rules for *coordinate* ending in *key_id*."""
        wanted = normalize_key_id(key_id)
        for rule in self._rules:
            if (
                rule.key.is_fingerprint
                and rule.artifact.matches(coordinate)
                and key_ids_match(wanted, rule.key.value or "")
            ):
                return rule.key.value
        return None

    def __repr__(self) -> str:
        return f"TrustPolicy(rules={len(self._rules)})"


__all__ = [
    "ArtifactPattern",
    "IdentityKind",
    "KeyPattern",
    "KeyPatternKind",
    "PolicyDecision",
    "PolicyRule",
    "SignerIdentity",
    "TrustPolicy",
    "VersionRange",
    "compare_versions",
]
