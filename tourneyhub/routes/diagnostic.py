import logging

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tourneyhub import database
from tourneyhub.database import get_db
from tourneyhub.deps.security import require_admin
from tourneyhub.models import (
    Notification,
    NotificationRead,
    Registration,
    Team,
    TeamMember,
    Tournament,
    User,
)

logger = logging.getLogger("diagnostic")

router = APIRouter(prefix="/diagnostic", tags=["Diagnostic"])

_COUNTED = {
    "users": User,
    "teams": Team,
    "team_members": TeamMember,
    "tournaments": Tournament,
    "registrations": Registration,
    "notifications": Notification,
    "notification_reads": NotificationRead,
}


@router.get("/database")
async def database_diagnostic(
    db: AsyncSession = Depends(get_db),
    _=Depends(require_admin),
):
    counts = {}
    for name, model in _COUNTED.items():
        counts[name] = await db.scalar(select(func.count()).select_from(model)) or 0
    bind = db.get_bind()
    return {
        "dialect": bind.dialect.name,
        "driver": bind.dialect.driver,
        "sqlite_fallback": database.CURRENT_DATABASE_URL.startswith("sqlite"),
        "tables": counts,
    }
