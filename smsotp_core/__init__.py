"""
smsotp-core
===========
Phone number OTP authentication: sessions, OTP issuance and verification,
rate limiting, audit trail, SMS delivery worker and HTTP API.
"""

__version__ = "1.0.0"

from .config import AuthConfig
from .errors import (
    FailureReason,
    AuthFlowError,
    InputError,
    InvalidCredentialsError,
    ValidationFailure,
    SecurityViolation,
    RateLimitExceeded,
    DebugAccessError,
    InternalError,
    ConfigError,
)
from .auth import AuthenticationService, RequestContext

__all__ = [
    "__version__",
    # Config
    "AuthConfig",
    # Errors
    "FailureReason",
    "AuthFlowError",
    "InputError",
    "InvalidCredentialsError",
    "ValidationFailure",
    "SecurityViolation",
    "RateLimitExceeded",
    "DebugAccessError",
    "InternalError",
    "ConfigError",
    # Orchestrator
    "AuthenticationService",
    "RequestContext",
]
