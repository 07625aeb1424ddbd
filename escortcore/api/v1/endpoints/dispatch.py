"""
Dispatch endpoints: race / manual claims, auto-assignment, recommendations, open pool.
"""
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session
import time
from escortcore.api.deps import get_db, get_container
from escortcore.container import CoreContainer
from escortcore.errors import NotFoundError
from escortcore.models.schemas.base import ResponseBase
from escortcore.models.schemas.dispatch import ClaimRequest, ClaimOutcome, CandidateScoreRead, PoolJobRead
from escortcore.services.claim_arbitrator import ClaimReason, ClaimResult
from escortcore.utils import get_logger, log_performance

router = APIRouter()
logger = get_logger(__name__)

_STATUS_BY_REASON = {
    ClaimReason.NOT_FOUND: 404,
    ClaimReason.CONFLICT: 409,
    ClaimReason.POLICY_VIOLATION: 422,
}

def _claim_response(result: ClaimResult) -> ResponseBase:
    outcome = ClaimOutcome(**result.as_dict())
    if result.claimed:
        return ResponseBase(success=True, message=result.message, data=outcome.model_dump(mode="json"))
    status_code = _STATUS_BY_REASON.get(result.reason)  # type: ignore[arg-type]
    if status_code is None:
        return ResponseBase(success=False, message=result.message, data=outcome.model_dump(mode="json"))
    raise HTTPException(
        status_code=status_code,
        detail={"message": result.message, "reason": outcome.reason, "reason_code": outcome.reason_code, "detail": outcome.detail},
    )

@router.post(
    "/jobs/{job_id}/claim",
    response_model=ResponseBase,
    summary="Claim a paid job for a provider"
)
async def claim_job(
    job_id: int,
    payload: ClaimRequest,
    request: Request,
    db: Session = Depends(get_db),
    container: CoreContainer = Depends(get_container),
) -> ResponseBase:
    """Race claim by the provider, or manual assignment by an operator.

    409 when someone else got the job first, 422 when the provider is not eligible.
    """
    request_id = getattr(request.state, "request_id", "unknown")
    arbitrator = container.arbitrator
    if payload.method == "manual":
        result = arbitrator.manual_assign(db, job_id, payload.provider_id, operator_id=payload.operator_id)
    else:
        result = arbitrator.race_claim(db, job_id, payload.provider_id)
    logger.info(
        "Claim attempted",
        job_id=job_id,
        provider_id=payload.provider_id,
        method=payload.method,
        claimed=result.claimed,
        reason=result.reason.value if result.reason else None,
        request_id=request_id,
    )
    return _claim_response(result)

@router.post(
    "/jobs/{job_id}/auto-assign",
    response_model=ResponseBase,
    summary="Assign a job to the best-scoring eligible provider"
)
async def auto_assign_job(
    job_id: int,
    db: Session = Depends(get_db),
    container: CoreContainer = Depends(get_container),
) -> ResponseBase:
    start_time = time.time()
    result = container.arbitrator.auto_assign(db, job_id)
    log_performance(
        operation="auto_assign",
        duration_ms=(time.time() - start_time) * 1000,
        additional_data={"job_id": job_id, "claimed": result.claimed},
    )
    return _claim_response(result)

@router.get(
    "/jobs/{job_id}/recommendations",
    response_model=ResponseBase,
    summary="Ranked provider candidates for a job (read-only)"
)
async def job_recommendations(
    job_id: int,
    limit: int = Query(5, ge=1, le=50),
    db: Session = Depends(get_db),
    container: CoreContainer = Depends(get_container),
) -> ResponseBase:
    try:
        ranked = container.arbitrator.recommend(db, job_id, limit=limit)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    candidates = [CandidateScoreRead(**c.as_dict()).model_dump(mode="json") for c in ranked]
    return ResponseBase(
        success=True,
        message=f"{len(candidates)} candidate(s)",
        data={"job_id": job_id, "candidates": candidates},
    )

@router.get(
    "/pool",
    response_model=ResponseBase,
    summary="Open paid jobs available to race for"
)
async def job_pool(
    venue_id: Optional[int] = Query(None, description="Only jobs at this venue"),
    provider_id: Optional[int] = Query(None, description="Viewing provider; empty pool unless they are working"),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    container: CoreContainer = Depends(get_container),
) -> ResponseBase:
    try:
        jobs = container.arbitrator.list_pool(db, venue_id=venue_id, limit=limit, provider_id=provider_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    items = [PoolJobRead.model_validate(j).model_dump(mode="json") for j in jobs]
    return ResponseBase(success=True, message=f"{len(items)} open job(s)", data={"jobs": items})
