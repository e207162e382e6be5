"""
Tests for environment-driven configuration
"""

from decimal import Decimal

from bms_core import config as config_module
from bms_core.config import BmsConfig, get_config, reload_config


class TestBmsConfig:

    def teardown_method(self):
        reload_config()

    def test_defaults(self):
        config = BmsConfig(_env_file=None)

        assert config.step_up_threshold == Decimal("25000.00")
        assert config.default_per_transaction_limit == Decimal("50000.00")
        assert config.default_daily_transaction_limit == Decimal("100000.00")
        assert config.otp_length == 6
        assert config.otp_expiry_minutes == 5
        assert config.otp_max_attempts == 3

    def test_pending_ttl_follows_otp_expiry(self):
        assert BmsConfig(_env_file=None, otp_expiry_minutes=7).pending_transfer_ttl == 7
        assert BmsConfig(_env_file=None, pending_transfer_ttl_minutes=30).pending_transfer_ttl == 30

    def test_reload_reads_environment(self, monkeypatch):
        monkeypatch.setenv("BMS_STEP_UP_THRESHOLD", "10000")
        monkeypatch.setenv("BMS_DATABASE_URL", "memory://")

        reloaded = reload_config()

        assert reloaded.step_up_threshold == Decimal("10000")
        assert reloaded.database_url == "memory://"
        assert get_config() is reloaded
        assert config_module.config is reloaded
