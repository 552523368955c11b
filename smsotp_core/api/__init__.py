"""
HTTP API
========
FastAPI request boundary of the OTP authentication service.
"""

from .app import create_app
from .responses import status_for, success_response, error_response

__all__ = [
    "create_app",
    "status_for",
    "success_response",
    "error_response",
]
