"""
Pydantic schemas for claiming, auto-assignment and recommendations.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Literal, Dict
from pydantic import BaseModel, Field, ConfigDict

class ClaimRequest(BaseModel):
    """A provider grabbing a job from the pool (race) or an operator assigning one (manual)."""
    provider_id: int = Field(gt=0)
    method: Literal["race", "manual"] = Field("race", description="race = provider self-claim, manual = operator pick")
    operator_id: Optional[int] = Field(None, description="Operator performing a manual assignment")

class ClaimOutcome(BaseModel):
    job_id: int
    provider_id: Optional[int]
    claimed: bool
    reason: Optional[str] = None
    reason_code: Optional[str] = Field(None, description="Eligibility rule that refused the claim")
    detail: Optional[str] = None
    message: str
    score: Optional[Dict] = None

class CandidateScoreRead(BaseModel):
    provider_id: int
    provider_name: str
    score: float = Field(description="Weighted factor sum plus bonus")
    weighted_score: float
    bonus: float = Field(description="Flat customer priority bonus, already included in score")
    factors: Dict[str, float]

class PoolJobRead(BaseModel):
    id: int
    job_no: str
    venue_id: Optional[int]
    service_id: Optional[int]
    scheduled_date: date
    scheduled_time: str
    duration_minutes: int
    paid_amount: Decimal
    paid_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)
