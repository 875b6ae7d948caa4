"""Tests for environment-driven configuration."""
from config import AppConfig, FeeConfig, PanelConfig, PanelType, load_config


class TestLoadConfig:
    def test_reads_panels_and_fees(self, monkeypatch):
        monkeypatch.setenv("PTERODACTYL_PRIVATE_DOMAIN", "https://private.example.com/")
        monkeypatch.setenv("PTERODACTYL_PRIVATE_API_KEY", "ptla_private")
        monkeypatch.setenv("APP_FEE_MIN", "12")
        monkeypatch.setenv("APP_FEE_MAX", "12")
        monkeypatch.setenv("GARANSI_DAYS", "7")

        config = load_config()

        assert config.panel(PanelType.PRIVATE).domain == "https://private.example.com"
        assert config.panel(PanelType.PRIVATE).is_configured()
        assert config.fee.fee_min == 12 and config.fee.fee_max == 12
        assert config.warranty.warranty_days == 7

    def test_bad_integer_falls_back(self, monkeypatch):
        monkeypatch.setenv("APP_FEE_MAX", "lots")
        assert load_config().fee.fee_max == 50


class TestValidate:
    def test_reports_missing_settings(self):
        config = AppConfig(panels={PanelType.PUBLIC: PanelConfig(domain="", api_key="")})
        result = config.validate()

        assert result["valid"] is False
        assert any("public panel" in issue for issue in result["issues"])
        assert any("DATABASE_URL" in issue for issue in result["issues"])

    def test_inverted_fee_bounds(self):
        config = AppConfig(panels={}, fee=FeeConfig(fee_min=60, fee_max=50))
        assert any("APP_FEE_MIN" in issue for issue in config.validate()["issues"])
