"""FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.orm import Session

from creative_rotator.db.session import get_session
from creative_rotator.services.rotation import RotationService

# Database session dependency
SessionDep = Annotated[Session, Depends(get_session)]


def get_rotation_service() -> RotationService:
    """Get the rotation service instance."""
    return RotationService()


RotationServiceDep = Annotated[RotationService, Depends(get_rotation_service)]
