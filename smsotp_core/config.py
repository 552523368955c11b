"""
Service Configuration
=====================
Configuration for the OTP authentication service, loaded from the environment.
"""

import os
import secrets
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Mapping, Optional

import structlog

from .errors import ConfigError

logger = structlog.get_logger(__name__)

OTP_LENGTH = 6


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    value = env.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    value = env.get(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}")


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    value = env.get(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {value!r}")


def parse_app_credentials(raw: str) -> Dict[str, str]:
    """
    Parse an app credential list.

    Format: "app-one:secret1,app-two:secret2". Secrets may contain ':'.
    """
    credentials: Dict[str, str] = {}
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        app_id, sep, secret = entry.partition(":")
        if not sep or not app_id or not secret:
            raise ConfigError(f"Malformed app credential entry: {app_id or entry[:8]!r}")
        credentials[app_id.strip()] = secret.strip()
    return credentials


def parse_address_list(raw: str) -> FrozenSet[str]:
    """Parse a comma-separated address list such as "10.0.0.5, 10.0.0.6"."""
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


@dataclass
class AuthConfig:
    """Configuration for the OTP authentication service."""
    service_name: str = "sms-otp-auth"
    environment: str = "development"
    log_level: str = "INFO"
    log_json: bool = True

    # Static QR credentials: app_id -> shared secret
    app_credentials: Dict[str, str] = field(default_factory=dict)

    # OTP
    otp_expiry_seconds: int = 300  # 5 minutes
    otp_max_attempts: int = 3

    # Session
    session_expiry_seconds: int = 600  # 10 minutes

    # Rate limiting
    rate_limit_phone_max: int = 5
    rate_limit_ip_max: int = 20
    rate_limit_identity_ip_max: int = 20  # 0 disables
    rate_limit_window_seconds: int = 3600

    # Retention of expired records before the store purges them
    record_retention_seconds: int = 86400
    audit_retention_days: int = 90

    # Auth token
    auth_token_secret: str = ""
    auth_token_ttl_seconds: int = 3600

    # Store / queue
    redis_url: str = "redis://localhost:6379/0"
    store_timeout_seconds: float = 2.0
    key_prefix: str = "sms-otp"
    sms_queue_key: str = "sms-otp:sms-delivery"
    queue_max_receives: int = 5
    queue_visibility_timeout_seconds: int = 60  # Unacked messages are requeued after this

    # SMS provider
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_from_number: str = ""
    twilio_messaging_service_sid: Optional[str] = None
    status_callback_url: Optional[str] = None
    validate_webhook_signatures: bool = True

    # Request boundary. X-Forwarded-For is only read when the peer is a
    # trusted proxy.
    trust_forwarded_for: bool = False
    trusted_proxies: FrozenSet[str] = frozenset()

    # Demo read-back of plaintext OTPs. Never allowed in production.
    debug_otp_readback: bool = False
    debug_access_token: str = ""

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in ("production", "prod")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "AuthConfig":
        """Build a config from environment variables."""
        env = os.environ if env is None else env

        credentials = parse_app_credentials(env.get("QR_APP_CREDENTIALS", ""))
        static_app_id = env.get("STATIC_QR_APP_ID")
        static_secret = env.get("STATIC_QR_SECRET")
        if static_app_id and static_secret:
            credentials.setdefault(static_app_id, static_secret)

        config = cls(
            service_name=env.get("SERVICE_NAME", cls.service_name),
            environment=env.get("ENVIRONMENT", cls.environment),
            log_level=env.get("LOG_LEVEL", cls.log_level),
            log_json=_env_bool(env, "LOG_JSON", cls.log_json),
            app_credentials=credentials,
            otp_expiry_seconds=_env_int(env, "OTP_EXPIRY_SECONDS", cls.otp_expiry_seconds),
            otp_max_attempts=_env_int(env, "OTP_MAX_ATTEMPTS", cls.otp_max_attempts),
            session_expiry_seconds=_env_int(env, "SESSION_EXPIRY_SECONDS", cls.session_expiry_seconds),
            rate_limit_phone_max=_env_int(env, "RATE_LIMIT_PHONE_MAX", cls.rate_limit_phone_max),
            rate_limit_ip_max=_env_int(env, "RATE_LIMIT_IP_MAX", cls.rate_limit_ip_max),
            rate_limit_identity_ip_max=_env_int(
                env, "RATE_LIMIT_IDENTITY_IP_MAX", cls.rate_limit_identity_ip_max
            ),
            rate_limit_window_seconds=_env_int(
                env, "RATE_LIMIT_WINDOW_SECONDS", cls.rate_limit_window_seconds
            ),
            record_retention_seconds=_env_int(
                env, "RECORD_RETENTION_SECONDS", cls.record_retention_seconds
            ),
            audit_retention_days=_env_int(env, "AUDIT_RETENTION_DAYS", cls.audit_retention_days),
            auth_token_secret=env.get("AUTH_TOKEN_SECRET", ""),
            auth_token_ttl_seconds=_env_int(env, "AUTH_TOKEN_TTL_SECONDS", cls.auth_token_ttl_seconds),
            redis_url=env.get("REDIS_URL", cls.redis_url),
            store_timeout_seconds=_env_float(env, "STORE_TIMEOUT_SECONDS", cls.store_timeout_seconds),
            key_prefix=env.get("KEY_PREFIX", cls.key_prefix),
            sms_queue_key=env.get("SMS_QUEUE_KEY", cls.sms_queue_key),
            queue_max_receives=_env_int(env, "QUEUE_MAX_RECEIVES", cls.queue_max_receives),
            queue_visibility_timeout_seconds=_env_int(
                env, "QUEUE_VISIBILITY_TIMEOUT_SECONDS", cls.queue_visibility_timeout_seconds
            ),
            twilio_account_sid=env.get("TWILIO_ACCOUNT_SID", ""),
            twilio_auth_token=env.get("TWILIO_AUTH_TOKEN", ""),
            twilio_from_number=env.get("TWILIO_PHONE_NUMBER", ""),
            twilio_messaging_service_sid=env.get("TWILIO_MESSAGING_SERVICE_SID") or None,
            status_callback_url=env.get("SMS_STATUS_CALLBACK_URL") or None,
            validate_webhook_signatures=_env_bool(
                env, "VALIDATE_WEBHOOK_SIGNATURES", cls.validate_webhook_signatures
            ),
            trust_forwarded_for=_env_bool(env, "TRUST_FORWARDED_FOR", cls.trust_forwarded_for),
            trusted_proxies=parse_address_list(env.get("TRUSTED_PROXIES", "")),
            debug_otp_readback=_env_bool(env, "DEBUG_OTP_READBACK", cls.debug_otp_readback),
            debug_access_token=env.get("DEBUG_ACCESS_TOKEN", ""),
        )
        config.validate()
        return config

    def validate(self) -> "AuthConfig":
        """
        Check invariants and fill in development defaults.

        Raises:
            ConfigError: If the configuration is unusable
        """
        positive = {
            "OTP_EXPIRY_SECONDS": self.otp_expiry_seconds,
            "OTP_MAX_ATTEMPTS": self.otp_max_attempts,
            "SESSION_EXPIRY_SECONDS": self.session_expiry_seconds,
            "RATE_LIMIT_PHONE_MAX": self.rate_limit_phone_max,
            "RATE_LIMIT_IP_MAX": self.rate_limit_ip_max,
            "RATE_LIMIT_WINDOW_SECONDS": self.rate_limit_window_seconds,
            "AUTH_TOKEN_TTL_SECONDS": self.auth_token_ttl_seconds,
            "QUEUE_MAX_RECEIVES": self.queue_max_receives,
            "QUEUE_VISIBILITY_TIMEOUT_SECONDS": self.queue_visibility_timeout_seconds,
        }
        for name, value in positive.items():
            if value <= 0:
                raise ConfigError(f"{name} must be positive")

        if self.rate_limit_identity_ip_max < 0:
            raise ConfigError("RATE_LIMIT_IDENTITY_IP_MAX must not be negative")
        if self.record_retention_seconds < 0 or self.audit_retention_days < 0:
            raise ConfigError("Retention periods must not be negative")
        if self.store_timeout_seconds <= 0:
            raise ConfigError("STORE_TIMEOUT_SECONDS must be positive")
        if self.trust_forwarded_for and not self.trusted_proxies:
            raise ConfigError("TRUST_FORWARDED_FOR requires TRUSTED_PROXIES")

        if self.is_production:
            if self.debug_otp_readback:
                raise ConfigError("DEBUG_OTP_READBACK cannot be enabled in production")
            if not self.auth_token_secret:
                raise ConfigError("AUTH_TOKEN_SECRET is required in production")

        if not self.auth_token_secret:
            # Tokens from this process will not verify anywhere else
            self.auth_token_secret = secrets.token_urlsafe(32)
            logger.warning("AUTH_TOKEN_SECRET not set, using an ephemeral secret")

        if not self.app_credentials:
            logger.warning("No QR app credentials configured, identity validation will fail")

        return self
