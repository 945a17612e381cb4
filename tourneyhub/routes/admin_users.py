"""Admin endpoints for managing user accounts."""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tourneyhub.database import get_db
from tourneyhub.deps.security import require_admin
from tourneyhub.models.admin_action import AdminAction
from tourneyhub.models.user import User
from tourneyhub.routes.auth import ensure_unique_identity
from tourneyhub.schemas import (
    AdminActionRead,
    AdminUserCreate,
    AdminUserUpdate,
    RegistrationWithTeam,
    TeamRead,
    UserAdminRead,
)
from tourneyhub.security import hash_password
from tourneyhub.services import accounts, registration, roster

router = APIRouter(prefix="/admin", tags=["Admin: Users"])


async def _get_user(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "User not found")
    return user


@router.get("/users", response_model=List[UserAdminRead])
async def list_users(
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> List[UserAdminRead]:
    rows = await db.execute(select(User).order_by(User.id))
    return [UserAdminRead.model_validate(u) for u in rows.scalars().all()]


@router.post("/users", response_model=UserAdminRead, status_code=status.HTTP_201_CREATED)
async def create_user(
    payload: AdminUserCreate,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
) -> UserAdminRead:
    await ensure_unique_identity(
        db, username=payload.username, email=payload.email, phone=payload.phone
    )
    user = User(
        username=payload.username,
        email=payload.email,
        phone=payload.phone,
        game_id=payload.game_id,
        password_hash=hash_password(payload.password),
        role=payload.role,
    )
    db.add(user)
    await db.flush()
    accounts.record_admin_action(
        db, admin, "create_user", target_type="user", target_id=user.id, detail=payload.role
    )
    await db.commit()
    await db.refresh(user)
    return UserAdminRead.model_validate(user)


@router.get("/users/{user_id}", response_model=UserAdminRead)
async def get_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> UserAdminRead:
    return UserAdminRead.model_validate(await _get_user(db, user_id))


@router.patch("/users/{user_id}", response_model=UserAdminRead)
async def update_user(
    user_id: int,
    payload: AdminUserUpdate,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
) -> UserAdminRead:
    if user_id == admin.id:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "You cannot modify your own account")
    user = await _get_user(db, user_id)

    changes = []
    if payload.role is not None and payload.role != user.role:
        user.role = payload.role
        changes.append(f"role={payload.role}")
    if payload.is_banned is not None and payload.is_banned != user.is_banned:
        user.is_banned = payload.is_banned
        changes.append(f"is_banned={payload.is_banned}")

    if changes:
        accounts.record_admin_action(
            db, admin, "update_user", target_type="user", target_id=user.id,
            detail=", ".join(changes),
        )
        await db.commit()
        await db.refresh(user)
    return UserAdminRead.model_validate(user)


@router.delete("/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
) -> None:
    if user_id == admin.id:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "You cannot delete your own account")
    await accounts.delete_user(db, user_id, admin)
    return None


@router.get("/users/{user_id}/teams", response_model=List[TeamRead])
async def user_teams(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> List[TeamRead]:
    user = await _get_user(db, user_id)
    return [TeamRead.model_validate(t) for t in await roster.teams_for_user(db, user)]


@router.get("/users/{user_id}/registrations", response_model=List[RegistrationWithTeam])
async def user_registrations(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> List[RegistrationWithTeam]:
    user = await _get_user(db, user_id)
    rows = await registration.registrations_for_user(db, user)
    return [RegistrationWithTeam.model_validate(r) for r in rows]


@router.get("/actions", response_model=List[AdminActionRead])
async def list_admin_actions(
    limit: int = Query(default=100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> List[AdminActionRead]:
    rows = await db.execute(
        select(AdminAction).order_by(AdminAction.timestamp.desc(), AdminAction.id.desc()).limit(limit)
    )
    return [AdminActionRead.model_validate(a) for a in rows.scalars().all()]
