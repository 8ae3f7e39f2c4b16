"""Verifier settings and YAML settings files."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from aumai_pgpverify.errors import ConfigurationError
from aumai_pgpverify.models import KeyServerEndpoint, Strategy

DEFAULT_KEY_SERVERS = ("hkps://keyserver.ubuntu.com", "hkps://keys.openpgp.org")


class VerifierSettings(BaseModel):
    """Settings for one verification run.

    Example YAML::

        key_servers:
          - hkps://keyserver.ubuntu.com
          - hkps://keys.openpgp.org
        strategy: fallback
        timeout: 10
        keys_map:
          - keysmap.list
        fail_no_signature: true
    """

    key_servers: list[KeyServerEndpoint] = Field(
        default_factory=lambda: [KeyServerEndpoint.parse(url) for url in DEFAULT_KEY_SERVERS],
        min_length=1,
    )
    strategy: Strategy = Strategy.fallback
    timeout: float = Field(default=10.0, gt=0)
    max_retries: int = Field(default=2, ge=0)
    retry_backoff: float = Field(default=0.5, ge=0)
    proxy: str | None = None
    keys_map: list[Path] = Field(default_factory=list)
    fail_no_signature: bool = True
    fail_weak_signature: bool = False
    cache_dir: Path | None = None
    workers: int = Field(default=4, ge=1)
    report_file: Path | None = None

    @field_validator("key_servers", mode="before")
    @classmethod
    def _parse_key_servers(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = [part for part in value.split(",") if part.strip()]
        if isinstance(value, list):
            return [
                KeyServerEndpoint.parse(item) if isinstance(item, str) else item
                for item in value
            ]
        return value

    @field_validator("keys_map", mode="before")
    @classmethod
    def _single_keys_map(cls, value: Any) -> Any:
        if isinstance(value, (str, Path)):
            return [value]
        return value

    def resolve_paths(self, base_dir: Path) -> VerifierSettings:
        """Return a copy whose relative paths are anchored at *base_dir*."""

        def anchor(path: Path | None) -> Path | None:
            if path is None or path.is_absolute():
                return path
            return base_dir / path

        return self.model_copy(
            update={
                "keys_map": [anchor(path) for path in self.keys_map],
                "cache_dir": anchor(self.cache_dir),
                "report_file": anchor(self.report_file),
            }
        )


def load_settings(path: Path) -> VerifierSettings:
    """Load :class:`VerifierSettings` from a YAML file.

    Relative paths in the file are resolved against the file's directory.

    Raises:
        ConfigurationError: if the file cannot be read or its values are invalid.
    """
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Cannot read settings file {path}: {exc}") from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Settings file {path} must contain a mapping")
    try:
        settings = VerifierSettings.model_validate(raw)
    except (ValidationError, ValueError) as exc:
        raise ConfigurationError(f"Invalid settings in {path}: {exc}") from exc
    return settings.resolve_paths(path.parent)


__all__ = ["DEFAULT_KEY_SERVERS", "VerifierSettings", "load_settings"]
