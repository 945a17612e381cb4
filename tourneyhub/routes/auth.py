import hmac
import logging
import math
import os

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from tourneyhub.auth_token import create_access_token, get_current_user
from tourneyhub.database import get_db
from tourneyhub.models.user import User
from tourneyhub.rate_limiter import get_login_rate_limiter
from tourneyhub.schemas import (
    AdminBootstrapRequest,
    MessageResponse,
    TokenResponse,
    UserProfile,
    UserProfileUpdate,
    UserRegister,
)
from tourneyhub.security import hash_password, needs_rehash, verify_password

logger = logging.getLogger("auth")

router = APIRouter(prefix="/auth", tags=["Auth"])


async def ensure_unique_identity(
    db: AsyncSession,
    *,
    username: str | None = None,
    email: str | None = None,
    phone: str | None = None,
    exclude_id: int | None = None,
) -> None:
    checks = [
        (User.username, username, "Username already exists"),
        (User.email, email, "Email already exists"),
        (User.phone, phone, "Phone number already registered"),
    ]
    for column, value, message in checks:
        if not value:
            continue
        stmt = select(User.id).where(func.lower(column) == value.lower())
        if exclude_id is not None:
            stmt = stmt.where(User.id != exclude_id)
        if await db.scalar(stmt) is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=message)


@router.post("/register", response_model=UserProfile, status_code=status.HTTP_201_CREATED)
async def register(user: UserRegister, db: AsyncSession = Depends(get_db)):
    await ensure_unique_identity(db, username=user.username, email=user.email, phone=user.phone)

    new_user = User(
        username=user.username,
        email=user.email,
        phone=user.phone,
        game_id=user.game_id,
        password_hash=hash_password(user.password),
    )
    db.add(new_user)
    await db.commit()
    await db.refresh(new_user)
    logger.info("Registered user %s", new_user.id)
    return UserProfile.model_validate(new_user)


def _client_key(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


@router.post("/login", response_model=TokenResponse)
async def login(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db),
):
    limiter = get_login_rate_limiter()
    key = _client_key(request)
    if limiter is not None and not await limiter.try_acquire(key):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many login attempts, please try again later",
            headers={"Retry-After": str(math.ceil(limiter.window))},
        )

    identifier = form_data.username.strip().lower()
    result = await db.execute(
        select(User).where(
            or_(func.lower(User.email) == identifier, func.lower(User.username) == identifier)
        )
    )
    db_user = result.scalars().first()

    if not db_user or not verify_password(form_data.password, db_user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if db_user.is_banned:
        raise HTTPException(status_code=403, detail="Account is banned")

    if needs_rehash(db_user.password_hash):
        db_user.password_hash = hash_password(form_data.password)
        await db.commit()
        logger.info("Upgraded password hash for user %s", db_user.id)

    if limiter is not None:
        await limiter.reset(key)

    token = create_access_token({"user_id": db_user.id})
    return TokenResponse(access_token=token)


@router.get("/me", response_model=UserProfile)
async def read_users_me(current_user: User = Depends(get_current_user)):
    return UserProfile.model_validate(current_user)


@router.patch("/profile", response_model=UserProfile)
async def update_profile(
    payload: UserProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await ensure_unique_identity(
        db,
        username=payload.username if payload.username != current_user.username else None,
        email=payload.email if payload.email != current_user.email else None,
        phone=payload.phone if payload.phone != current_user.phone else None,
        exclude_id=current_user.id,
    )

    changed = False
    for field in ("username", "email", "game_id", "phone"):
        value = getattr(payload, field)
        if value is not None and value != getattr(current_user, field):
            setattr(current_user, field, value)
            changed = True

    if payload.password:
        if len(payload.password) < 8:
            raise HTTPException(status_code=400, detail="Password too short")
        if not payload.current_password or not verify_password(
            payload.current_password, current_user.password_hash
        ):
            raise HTTPException(status_code=400, detail="Current password is incorrect")
        current_user.password_hash = hash_password(payload.password)
        changed = True

    if changed:
        db.add(current_user)
        await db.commit()
        await db.refresh(current_user)

    return UserProfile.model_validate(current_user)


@router.post("/make-me-admin", response_model=MessageResponse)
async def make_me_admin(
    payload: AdminBootstrapRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Bootstrap route for promoting a user to admin.

    Disabled unless ``ENABLE_ADMIN_BOOTSTRAP`` is truthy and
    ``ADMIN_BOOTSTRAP_TOKEN`` matches the ``token`` in the request body.
    """

    if os.getenv("ENABLE_ADMIN_BOOTSTRAP", "").lower() not in {"1", "true", "yes"}:
        raise HTTPException(status_code=404, detail="Not Found")

    bootstrap_token = os.getenv("ADMIN_BOOTSTRAP_TOKEN")
    if not bootstrap_token:
        raise HTTPException(status_code=403, detail="Admin bootstrap disabled")

    if not hmac.compare_digest(payload.token, bootstrap_token):
        raise HTTPException(status_code=403, detail="Invalid bootstrap token")

    if user.role == "admin":
        return MessageResponse(message="User is already an admin")

    user.role = "admin"
    db.add(user)
    await db.commit()
    logger.info("User %s promoted to admin via bootstrap", user.id)
    return MessageResponse(message="You are now an admin")
