"""
Dependencies for database sessions and the service container.
"""
from typing import Generator
from fastapi import HTTPException, Request, status
from sqlalchemy.orm import Session
from escortcore import database
from escortcore.container import CoreContainer
from escortcore.utils import get_logger

logger = get_logger(__name__)

def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.
    Ensures proper session lifecycle management with automatic cleanup.

    Yields:
        Session: SQLAlchemy database session
    """
    db = database.SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error("Database session error", error=str(e), exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()

def get_container(request: Request) -> CoreContainer:
    """Service container built in the application lifespan."""
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Core services not available")
    return container
