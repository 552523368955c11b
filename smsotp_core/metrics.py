"""
Prometheus Metrics
==================
Counters for the OTP authentication flow and the SMS delivery worker.
"""

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# Custom registry so the service exports only its own metrics
AUTH_REGISTRY = CollectorRegistry()

SESSIONS_CREATED = Counter(
    name="otp_auth_sessions_created_total",
    documentation="Sessions created after successful identity validation",
    labelnames=["app_id"],
    registry=AUTH_REGISTRY,
)

IDENTITY_REJECTED = Counter(
    name="otp_auth_identity_rejected_total",
    documentation="Identity validations rejected for bad credentials",
    registry=AUTH_REGISTRY,
)

OTPS_ISSUED = Counter(
    name="otp_auth_otps_issued_total",
    documentation="OTPs issued and queued for SMS delivery",
    registry=AUTH_REGISTRY,
)

OTP_VERIFICATIONS = Counter(
    name="otp_auth_verifications_total",
    documentation="OTP verification outcomes",
    labelnames=["outcome"],
    registry=AUTH_REGISTRY,
)

SESSIONS_LOCKED = Counter(
    name="otp_auth_sessions_locked_total",
    documentation="Sessions locked, by reason",
    labelnames=["reason"],
    registry=AUTH_REGISTRY,
)

RATE_LIMIT_REJECTIONS = Counter(
    name="otp_auth_rate_limit_rejections_total",
    documentation="Requests rejected by a rate limiter",
    labelnames=["kind"],
    registry=AUTH_REGISTRY,
)

SMS_DELIVERIES = Counter(
    name="otp_auth_sms_deliveries_total",
    documentation="SMS delivery worker outcomes",
    labelnames=["outcome"],
    registry=AUTH_REGISTRY,
)

DELIVERY_STATUS_UPDATES = Counter(
    name="otp_auth_delivery_status_updates_total",
    documentation="Provider delivery status callbacks applied",
    labelnames=["status"],
    registry=AUTH_REGISTRY,
)

REQUEST_LATENCY = Histogram(
    name="otp_auth_request_duration_seconds",
    documentation="HTTP request latency",
    labelnames=["method", "path", "status"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=AUTH_REGISTRY,
)


def export_metrics() -> bytes:
    """Render the registry in Prometheus text format."""
    return generate_latest(AUTH_REGISTRY)


__all__ = [
    "AUTH_REGISTRY",
    "SESSIONS_CREATED",
    "IDENTITY_REJECTED",
    "OTPS_ISSUED",
    "OTP_VERIFICATIONS",
    "SESSIONS_LOCKED",
    "RATE_LIMIT_REJECTIONS",
    "SMS_DELIVERIES",
    "DELIVERY_STATUS_UPDATES",
    "REQUEST_LATENCY",
    "export_metrics",
    "CONTENT_TYPE_LATEST",
]
