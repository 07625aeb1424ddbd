"""
Base schemas used across the application.
"""
from datetime import datetime
from typing import Optional, Any, Dict
from pydantic import BaseModel, Field, ConfigDict

from escortcore.utils.time import utc_now

class ResponseBase(BaseModel):
    """Envelope returned by every endpoint: outcome flag, human message and an optional payload."""
    success: bool = True
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)
    data: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)
