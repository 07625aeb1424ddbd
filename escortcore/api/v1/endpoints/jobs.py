"""
Job lifecycle endpoint (arrive / start / complete / cancel / refund / reverse).
"""
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session
from escortcore.api.deps import get_db, get_container
from escortcore.container import CoreContainer
from escortcore.errors import ConflictError, NotFoundError
from escortcore.models.db.enums import OperatorType
from escortcore.models.schemas.base import ResponseBase
from escortcore.models.schemas.jobs import TransitionRequest
from escortcore.services.lifecycle import transition
from escortcore.utils import get_logger

router = APIRouter()
logger = get_logger(__name__)

_OPERATOR_BY_ACTION = {
    "pay": OperatorType.CUSTOMER,
    "arrive": OperatorType.PROVIDER,
    "start": OperatorType.PROVIDER,
    "complete": OperatorType.PROVIDER,
    "cancel": OperatorType.CUSTOMER,
    "begin_refund": OperatorType.OPERATOR,
    "finish_refund": OperatorType.SYSTEM,
    "reverse": OperatorType.OPERATOR,
}

@router.post(
    "/{job_id}/transitions",
    response_model=ResponseBase,
    summary="Move a job through its lifecycle"
)
async def transition_job(
    job_id: int,
    payload: TransitionRequest,
    request: Request,
    db: Session = Depends(get_db),
    container: CoreContainer = Depends(get_container),
) -> ResponseBase:
    """Completing settles the commission; reversing a completed job claws it back."""
    request_id = getattr(request.state, "request_id", "unknown")
    try:
        result = transition(
            db,
            job_id,
            payload.action,
            provider_id=payload.provider_id,
            reason=payload.reason,
            operator_type=_OPERATOR_BY_ACTION.get(payload.action, OperatorType.SYSTEM),
            operator_id=payload.provider_id,
            settlement=container.settlement,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=e.message)
    logger.info("Job transition applied", job_id=job_id, action=payload.action, request_id=request_id)
    return ResponseBase(
        success=True,
        message=f"Job {result.to_status.value}",
        data=result.as_dict(),
    )
