"""
tests/test_config.py — YAML configuration loader
=================================================
"""

from __future__ import annotations

import pytest

from possumbly.config import DEFAULT_RATE_LIMITS, PossumblyConfig, load_config


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path, monkeypatch):
        monkeypatch.delenv("PUBLIC_URL", raising=False)
        cfg = load_config(tmp_path / "nope.yaml")
        assert cfg == PossumblyConfig()
        assert cfg.rate_limits["global"].max_requests == 1000

    def test_yaml_overrides(self, tmp_path, monkeypatch):
        monkeypatch.delenv("PUBLIC_URL", raising=False)
        path = tmp_path / "config.yaml"
        path.write_text(
            "site_name: Possum Palace\n"
            "public_url: https://memes.example.test/\n"
            "audit_retention_days: 90\n"
            "trusted_proxies: 1\n"
            "rate_limits:\n"
            "  vote:\n"
            "    max_requests: 5\n",
            encoding="utf-8",
        )
        cfg = load_config(path)
        assert cfg.site_name == "Possum Palace"
        assert cfg.public_url == "https://memes.example.test"
        assert cfg.audit_retention_days == 90
        assert cfg.trusted_proxies == 1
        assert cfg.rate_limits["vote"].max_requests == 5
        assert cfg.rate_limits["vote"].window_seconds == DEFAULT_RATE_LIMITS["vote"].window_seconds
        assert cfg.rate_limits["auth"] == DEFAULT_RATE_LIMITS["auth"]

    def test_public_url_env_wins(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PUBLIC_URL", "https://env.example.test/")
        path = tmp_path / "config.yaml"
        path.write_text("public_url: https://file.example.test\n", encoding="utf-8")
        assert load_config(path).public_url == "https://env.example.test"

    def test_unknown_rate_limit_group(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("rate_limits:\n  teleport:\n    max_requests: 1\n", encoding="utf-8")
        with pytest.raises(KeyError, match="teleport"):
            load_config(path)

    def test_production_flag(self, monkeypatch):
        monkeypatch.setenv("POSSUMBLY_ENV", "production")
        assert PossumblyConfig().production is True
        monkeypatch.setenv("POSSUMBLY_ENV", "development")
        assert PossumblyConfig().production is False
