"""
Request Context
===============
Caller metadata passed from the request boundary into the orchestrator.
"""

from dataclasses import dataclass, field
from typing import Optional

from ..crypto import generate_uuid


@dataclass
class RequestContext:
    """Per-request metadata used for rate limiting and audit."""
    request_id: str = field(default_factory=generate_uuid)
    source_ip: Optional[str] = None
    user_agent: Optional[str] = None
