"""
Request Schemas
===============
Pydantic bodies of the authentication endpoints. Field names match the
JSON wire format (camelCase).

Fields are optional at the schema level so that missing values reach the
orchestrator, which reports exactly which ones are required.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict


class ValidateQRRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    appId: Optional[str] = None
    secret: Optional[str] = None
    phoneNumber: Optional[str] = None
    clientSessionId: Optional[str] = None


class RequestOTPRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sessionId: Optional[str] = None
    phoneNumber: Optional[str] = None


class VerifyOTPRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sessionId: Optional[str] = None
    otp: Optional[str] = None
