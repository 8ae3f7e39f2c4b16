"""Tests for aumai_pgpverify.config — settings model and YAML loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from aumai_pgpverify.config import VerifierSettings, load_settings
from aumai_pgpverify.errors import ConfigurationError
from aumai_pgpverify.models import Strategy


class TestVerifierSettings:
    def test_defaults(self) -> None:
        settings = VerifierSettings()
        assert [str(e) for e in settings.key_servers] == [
            "{https://keyserver.ubuntu.com}",
            "{https://keys.openpgp.org}",
        ]
        assert settings.strategy is Strategy.fallback
        assert settings.timeout == 10.0
        assert settings.max_retries == 2
        assert settings.fail_no_signature is True
        assert settings.fail_weak_signature is False
        assert settings.keys_map == []
        assert settings.cache_dir is None
        assert settings.workers == 4

    def test_key_servers_from_comma_string(self) -> None:
        settings = VerifierSettings(key_servers="hkp://a.example.org, hkps://b.example.org")
        assert [e.host for e in settings.key_servers] == ["a.example.org", "b.example.org"]

    def test_single_keys_map(self) -> None:
        assert VerifierSettings(keys_map="keys.list").keys_map == [Path("keys.list")]

    @pytest.mark.parametrize(
        "values",
        [
            {"key_servers": []},
            {"key_servers": ["ldap://x.example.org"]},
            {"timeout": 0},
            {"workers": 0},
            {"strategy": "random"},
        ],
    )
    def test_invalid_values(self, values: dict[str, object]) -> None:
        with pytest.raises(ValidationError):
            VerifierSettings.model_validate(values)


class TestLoadSettings:
    def test_yaml_file(self, tmp_path: Path) -> None:
        path = tmp_path / "pgpverify.yaml"
        path.write_text(
            "key_servers:\n"
            "  - hkps://keys.example.org\n"
            "strategy: load_balance\n"
            "timeout: 2.5\n"
            "keys_map:\n"
            "  - keys/keysmap.list\n"
            "cache_dir: /var/cache/pgp\n"
            "fail_no_signature: false\n",
            encoding="utf-8",
        )
        settings = load_settings(path)
        assert settings.strategy is Strategy.load_balance
        assert settings.timeout == 2.5
        assert settings.keys_map == [tmp_path / "keys" / "keysmap.list"]
        assert settings.cache_dir == Path("/var/cache/pgp")
        assert settings.fail_no_signature is False

    def test_empty_file_gives_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert load_settings(path).strategy is Strategy.fallback

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="Cannot read"):
            load_settings(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("key_servers: [unterminated\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_settings(path)

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="mapping"):
            load_settings(path)

    def test_invalid_values(self, tmp_path: Path) -> None:
        path = tmp_path / "values.yaml"
        path.write_text("timeout: -1\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Invalid settings"):
            load_settings(path)
