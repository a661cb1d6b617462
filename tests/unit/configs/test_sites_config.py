"""
Unit tests for the config module.

Tests for SiteConfig parsing and the bundled sites.yaml registry.
"""

import pytest

from event_ingest.configs.config import (
    SiteConfig,
    load_sites_config,
    validate_sites_config,
)
from event_ingest.configs.settings import Settings

EXPECTED_SITES = {
    "fabcafe",
    "growly",
    "kyoto_fanj",
    "kyoto_national_museum",
    "kyoto_gattaca",
    "waondo",
    "kyoto_kanze",
    "kyoto_concert_hall",
    "rohm_theatre",
    "kakubarhythm",
    "kyotoartcenter",
}


class TestSiteConfig:
    """Tests for SiteConfig.from_dict."""

    def test_defaults(self):
        site = SiteConfig.from_dict("x", {})

        assert site.strategy == "llm"
        assert site.enabled is True
        assert site.id_fields == ("title", "date_start", "venue")
        assert site.id_required_fields == ("title", "date_start")
        assert site.free_default is False
        assert site.max_tokens is None

    def test_lists_become_tuples(self):
        site = SiteConfig.from_dict("x", {"carry_fields": ["description"]})
        assert site.carry_fields == ("description",)

    @pytest.mark.parametrize(
        "raw",
        [
            {"strategy": "magic"},
            {"id_stage": "later"},
            {"max_tokens": 0},
        ],
    )
    def test_invalid_values(self, raw):
        with pytest.raises(ValueError):
            SiteConfig.from_dict("x", raw)


class TestLoadSitesConfig:
    """Tests for load_sites_config against the bundled registry."""

    def test_loads_all_sites(self):
        sites = load_sites_config()
        assert set(sites) == EXPECTED_SITES

    def test_fabcafe_is_direct(self):
        fabcafe = load_sites_config()["fabcafe"]

        assert fabcafe.strategy == "direct"
        assert fabcafe.free_default is True
        assert fabcafe.default_venue_to_organization is True
        assert fabcafe.organization == "FabCafe"
        assert fabcafe.id_fields == ("title", "date_start", "event_link")

    def test_llm_sites_inherit_anchor(self):
        sites = load_sites_config()
        assert all(s.strategy == "llm" for k, s in sites.items() if k != "fabcafe")
        assert sites["growly"].id_required_fields == ("title", "date_start")

    def test_token_budgets(self):
        sites = load_sites_config()
        assert sites["kyoto_national_museum"].max_tokens == 2000
        assert sites["kyoto_gattaca"].max_tokens == 2000
        assert sites["growly"].max_tokens is None

    def test_fixed_link_and_defaults(self):
        sites = load_sites_config()
        assert sites["kyoto_fanj"].fixed_event_link == "http://www.kyoto-fanj.com/schedule.html"
        assert sites["waondo"].defaults == {"description": "No description available"}
        assert sites["waondo"].prompt_exclude_fields == ("event_link",)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_sites_config(tmp_path / "nope.yaml")

    def test_settings_placeholders(self, tmp_path):
        path = tmp_path / "sites.yaml"
        path.write_text(
            "sites:\n  demo:\n    organization: ${ENV}\n", encoding="utf-8"
        )
        sites = load_sites_config(path, settings=Settings(ENV="staging"))
        assert sites["demo"].organization == "staging"


class TestValidateSitesConfig:
    """Tests for validate_sites_config."""

    def test_bundled_registry_is_valid(self):
        assert validate_sites_config() == []

    def test_reports_problems(self, tmp_path):
        path = tmp_path / "sites.yaml"
        path.write_text(
            "sites:\n"
            "  a:\n"
            "    strategy: direct\n"
            "    carry_fields: [description]\n"
            "  b:\n"
            "    default_venue_to_organization: true\n",
            encoding="utf-8",
        )
        problems = validate_sites_config(path)

        assert len(problems) == 2
        assert "carry_fields" in problems[0]
        assert "needs an organization" in problems[1]

    def test_reports_invalid_entry(self, tmp_path):
        path = tmp_path / "sites.yaml"
        path.write_text("sites:\n  a:\n    strategy: magic\n", encoding="utf-8")
        assert "unknown strategy" in validate_sites_config(path)[0]
