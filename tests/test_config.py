"""
Tests for engine configuration and .env loading.
"""

import pytest

from crmlinks.config import DEFAULT_RELATED_DOMAINS, EngineConfig, parse_domain_pairs
from crmlinks.env import load_env


class TestEngineConfig:
    def test_defaults(self):
        config = EngineConfig()
        assert config.match_threshold == 0.80
        assert config.default_country_code == "39"
        assert ("gmail.com", "googlemail.com") in config.related_domains
        assert config.auto_primary_first_link is True

    @pytest.mark.parametrize("kwargs", [
        {"match_threshold": 1.5},
        {"name_threshold": -0.1},
        {"default_country_code": "+39"},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            EngineConfig(**kwargs)

    def test_with_overrides(self):
        base = EngineConfig()
        strict = base.with_overrides(match_threshold=0.95)
        assert strict.match_threshold == 0.95
        assert base.match_threshold == 0.80


class TestFromEnv:
    """CRMLINKS_* overrides."""

    def test_empty_environment(self):
        assert EngineConfig.from_env({}) == EngineConfig()

    def test_overrides(self):
        config = EngineConfig.from_env({
            "CRMLINKS_MATCH_THRESHOLD": "0.9",
            "CRMLINKS_NAME_THRESHOLD": "0.75",
            "CRMLINKS_DEFAULT_COUNTRY_CODE": "+41",
            "CRMLINKS_RELATED_DOMAINS": "Acme.it=acme.com",
            "CRMLINKS_AUTO_PRIMARY_FIRST_LINK": "no",
        })
        assert config.match_threshold == 0.9
        assert config.name_threshold == 0.75
        assert config.default_country_code == "41"
        assert config.related_domains == DEFAULT_RELATED_DOMAINS + (("acme.it", "acme.com"),)
        assert config.auto_primary_first_link is False

    def test_dotenv_file(self, tmp_path, monkeypatch):
        """Values from .env are used unless the environment already sets them."""
        (tmp_path / ".env").write_text("CRMLINKS_MATCH_THRESHOLD=0.7\nCRMLINKS_DEFAULT_COUNTRY_CODE=44\n")
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("CRMLINKS_MATCH_THRESHOLD", raising=False)
        monkeypatch.setenv("CRMLINKS_DEFAULT_COUNTRY_CODE", "33")

        config = EngineConfig.from_env()

        assert config.match_threshold == 0.7
        assert config.default_country_code == "33"


class TestDomainPairs:
    def test_parse(self):
        assert parse_domain_pairs("a.it=b.it, C.com = d.com") == (("a.it", "b.it"), ("c.com", "d.com"))

    def test_malformed_items_ignored(self):
        assert parse_domain_pairs("nonsense,=x.it,a.it=") == ()


class TestLoadEnv:
    def test_missing_file(self, tmp_path):
        assert load_env(tmp_path / ".env") is False
