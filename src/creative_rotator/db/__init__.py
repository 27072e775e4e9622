"""Database layer."""

from creative_rotator.db.models import (
    AccountModel,
    Base,
    CampaignStatsModel,
    RotationSessionModel,
    StepRecordModel,
)
from creative_rotator.db.session import get_session, get_session_context, init_db

__all__ = [
    "Base",
    "get_session",
    "get_session_context",
    "init_db",
    # Models
    "AccountModel",
    "CampaignStatsModel",
    "RotationSessionModel",
    "StepRecordModel",
]
