"""
Unit Tests for Service Configuration
====================================
"""

import pytest


class TestAuthConfig:
    """Tests for environment loading and validation."""

    def test_defaults(self):
        """Defaults match the documented policy."""
        from smsotp_core.config import AuthConfig

        config = AuthConfig()

        assert config.otp_expiry_seconds == 300
        assert config.otp_max_attempts == 3
        assert config.rate_limit_phone_max == 5
        assert config.rate_limit_ip_max == 20
        assert config.rate_limit_window_seconds == 3600
        assert config.debug_otp_readback is False

    def test_from_env(self):
        """Environment variables override defaults."""
        from smsotp_core.config import AuthConfig

        config = AuthConfig.from_env({
            "ENVIRONMENT": "staging",
            "STATIC_QR_APP_ID": "demo",
            "STATIC_QR_SECRET": "s3cret",
            "QR_APP_CREDENTIALS": "kiosk:abc:def, web:xyz",
            "OTP_MAX_ATTEMPTS": "5",
            "RATE_LIMIT_PHONE_MAX": "2",
            "DEBUG_OTP_READBACK": "true",
            "AUTH_TOKEN_SECRET": "token-secret",
        })

        assert config.environment == "staging"
        assert config.app_credentials == {"demo": "s3cret", "kiosk": "abc:def", "web": "xyz"}
        assert config.otp_max_attempts == 5
        assert config.rate_limit_phone_max == 2
        assert config.debug_otp_readback is True
        assert config.auth_token_secret == "token-secret"

    def test_rejects_non_integer(self):
        """Malformed numbers raise ConfigError."""
        from smsotp_core.config import AuthConfig
        from smsotp_core.errors import ConfigError

        with pytest.raises(ConfigError):
            AuthConfig.from_env({"OTP_MAX_ATTEMPTS": "three"})

    def test_rejects_non_positive_limits(self):
        """TTLs and limits must be positive."""
        from smsotp_core.config import AuthConfig
        from smsotp_core.errors import ConfigError

        with pytest.raises(ConfigError):
            AuthConfig(otp_expiry_seconds=0).validate()

    def test_production_refuses_debug_readback(self):
        """Debug OTP read-back can never be enabled in production."""
        from smsotp_core.config import AuthConfig
        from smsotp_core.errors import ConfigError

        with pytest.raises(ConfigError):
            AuthConfig.from_env({
                "ENVIRONMENT": "production",
                "DEBUG_OTP_READBACK": "1",
                "AUTH_TOKEN_SECRET": "x",
            })

    def test_production_requires_token_secret(self):
        """Production needs an explicit token secret."""
        from smsotp_core.config import AuthConfig
        from smsotp_core.errors import ConfigError

        with pytest.raises(ConfigError):
            AuthConfig(environment="production").validate()

    def test_development_generates_ephemeral_secret(self):
        """Outside production a missing token secret is generated."""
        from smsotp_core.config import AuthConfig

        config = AuthConfig().validate()

        assert len(config.auth_token_secret) >= 32

    def test_malformed_credentials(self):
        """Credential entries without a secret are rejected."""
        from smsotp_core.config import parse_app_credentials
        from smsotp_core.errors import ConfigError

        with pytest.raises(ConfigError):
            parse_app_credentials("demo")

    def test_trusted_proxies_from_env(self):
        """Forwarded-for trust comes with an explicit proxy list."""
        from smsotp_core.config import AuthConfig

        config = AuthConfig.from_env({
            "TRUST_FORWARDED_FOR": "true",
            "TRUSTED_PROXIES": "10.0.0.5, 10.0.0.6,",
        })

        assert config.trust_forwarded_for is True
        assert config.trusted_proxies == frozenset({"10.0.0.5", "10.0.0.6"})
        assert AuthConfig().trust_forwarded_for is False

    def test_forwarded_for_requires_proxy_list(self):
        from smsotp_core.config import AuthConfig
        from smsotp_core.errors import ConfigError

        with pytest.raises(ConfigError):
            AuthConfig.from_env({"TRUST_FORWARDED_FOR": "1"})
