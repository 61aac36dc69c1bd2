"""
Tests for environment-driven configuration
"""

from decimal import Decimal

from zenith_ledger import config as config_module
from zenith_ledger.config import ZenithConfig, get_config, reload_config


class TestZenithConfig:
    """Test configuration defaults and environment overrides"""

    def test_defaults(self, monkeypatch):
        for name in ("ZENITH_DATABASE_URL", "ZENITH_BALANCE_TOLERANCE", "ZENITH_LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)

        config = ZenithConfig(_env_file=None)

        assert config.database_url == "sqlite:///zenith_ledger.db"
        assert config.log_format == "json"
        assert config.balance_tolerance == Decimal("0.001")
        assert config.opening_balances_account_id == "equity-opening"
        assert config.enforce_placeholder_postings is True
        assert config.seed_default_accounts is True

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("ZENITH_DATABASE_URL", "memory://")
        monkeypatch.setenv("ZENITH_BALANCE_TOLERANCE", "0.01")
        monkeypatch.setenv("ZENITH_ENFORCE_PLACEHOLDER_POSTINGS", "false")

        config = ZenithConfig(_env_file=None)

        assert config.database_url == "memory://"
        assert config.balance_tolerance == Decimal("0.01")
        assert config.enforce_placeholder_postings is False

    def test_reload_config_replaces_global(self, monkeypatch):
        original = get_config()
        monkeypatch.setattr(config_module, "config", original)
        monkeypatch.setenv("ZENITH_LOG_LEVEL", "DEBUG")

        reloaded = reload_config()

        assert reloaded is get_config()
        assert reloaded is not original
        assert reloaded.log_level == "DEBUG"
