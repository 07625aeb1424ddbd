"""
API v1 router initialization and setup.
"""
from fastapi import APIRouter
from .endpoints import dispatch, jobs, settlement

api_router = APIRouter()

api_router.include_router(
    dispatch.router,
    prefix="/dispatch",
    tags=["dispatch"]
)

api_router.include_router(
    jobs.router,
    prefix="/jobs",
    tags=["jobs"]
)

api_router.include_router(
    settlement.router,
    prefix="/settlement",
    tags=["settlement"]
)
