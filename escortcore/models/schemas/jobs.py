"""
Pydantic schemas for job lifecycle transitions.
"""
from typing import Optional, Literal
from pydantic import BaseModel, Field

JobAction = Literal["pay", "arrive", "start", "complete", "cancel", "begin_refund", "finish_refund", "reverse"]

class TransitionRequest(BaseModel):
    action: JobAction
    provider_id: Optional[int] = Field(None, description="Required to match the assigned provider for arrive/start/complete")
    reason: Optional[str] = Field(None, max_length=500, description="Cancel / refund reason")
