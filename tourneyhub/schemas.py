# tourneyhub/schemas.py
# ------------------------------------------------------------
# Pydantic v2 schemas, organized by domain
# ------------------------------------------------------------
from datetime import datetime
import re
from typing import Annotated, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    EmailStr,
    Field,
    Tag,
    field_validator,
    model_validator,
)

from tourneyhub.games import GameMode, GameType
from tourneyhub.models.tournament import TournamentStatus
from tourneyhub.utils import naive_utc


_CONTROL_CHAR_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")
_SCRIPT_TAG_RE = re.compile(r"<\s*/?\s*script", re.IGNORECASE)


def _sanitize_single_line_text(value: str | None, *, allow_empty: bool = False) -> str | None:
    if value is None:
        return value
    if not isinstance(value, str):
        raise TypeError("Expected string input")
    cleaned = _CONTROL_CHAR_RE.sub("", value).strip()
    if not allow_empty and not cleaned:
        raise ValueError("Value cannot be empty")
    if any(ch in {"\n", "\r"} for ch in cleaned):
        raise ValueError("Value must be a single line of text")
    if "<" in cleaned or ">" in cleaned:
        raise ValueError("HTML tags are not allowed in this field")
    return cleaned


def _sanitize_multiline_text(value: str | None, *, allow_empty: bool = False) -> str | None:
    if value is None:
        return value
    if not isinstance(value, str):
        raise TypeError("Expected string input")
    cleaned = _CONTROL_CHAR_RE.sub("", value).strip()
    if not allow_empty and not cleaned:
        raise ValueError("Value cannot be empty")
    if _SCRIPT_TAG_RE.search(cleaned):
        raise ValueError("Script tags are not allowed")
    return cleaned


_USERNAME_PATTERN = r"^[A-Za-z0-9_.-]+$"


# ============================================================
# Users
# ============================================================

class UserRegister(BaseModel):
    username: str = Field(min_length=3, max_length=32, pattern=_USERNAME_PATTERN)
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    phone: Optional[str] = Field(default=None, max_length=32)
    game_id: str = Field(min_length=1, max_length=64)

    @field_validator("username", "game_id", mode="before")
    @classmethod
    def _clean_single_line(cls, value: str) -> str:
        return _sanitize_single_line_text(value)

    @field_validator("phone", mode="before")
    @classmethod
    def _clean_phone(cls, value: Optional[str]) -> Optional[str]:
        return _sanitize_single_line_text(value, allow_empty=True) or None


class UserProfile(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str
    game_id: str
    role: str
    created_at: Optional[datetime] = None


class UserAdminRead(UserProfile):
    phone: Optional[str] = None
    phone_verified: bool = False
    is_banned: bool = False


class UserProfileUpdate(BaseModel):
    username: Optional[str] = Field(default=None, min_length=3, max_length=32, pattern=_USERNAME_PATTERN)
    email: Optional[EmailStr] = None
    game_id: Optional[str] = Field(default=None, min_length=1, max_length=64)
    phone: Optional[str] = Field(default=None, max_length=32)
    current_password: Optional[str] = None
    password: Optional[str] = Field(default=None, max_length=128)

    @field_validator("username", "game_id", "phone", mode="before")
    @classmethod
    def _clean_optional(cls, value: Optional[str]) -> Optional[str]:
        return _sanitize_single_line_text(value) if value is not None else value

    @field_validator("password", mode="before")
    @classmethod
    def _clean_password(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        if not isinstance(value, str):
            raise TypeError("Expected string input")
        stripped = value.strip()
        return stripped or None


class AdminUserCreate(UserRegister):
    role: Literal["user", "admin"] = "user"


class AdminUserUpdate(BaseModel):
    role: Optional[Literal["user", "admin"]] = None
    is_banned: Optional[bool] = None


class AdminBootstrapRequest(BaseModel):
    token: str = Field(min_length=8, max_length=128)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


# ============================================================
# Teams
# ============================================================

class TeamCreate(BaseModel):
    name: str = Field(min_length=1, max_length=64)
    description: str = Field(default="", max_length=500)
    game_type: GameType = GameType.BGMI

    @field_validator("name", mode="before")
    @classmethod
    def _clean_name(cls, value: str) -> str:
        return _sanitize_single_line_text(value)

    @field_validator("description", mode="before")
    @classmethod
    def _clean_description(cls, value: Optional[str]) -> str:
        return _sanitize_multiline_text(value or "", allow_empty=True)


class AdminTeamCreate(TeamCreate):
    owner_id: int


class TeamRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str = ""
    owner_id: int
    game_type: str
    invite_code: str
    created_at: Optional[datetime] = None


class TeamJoin(BaseModel):
    invite_code: str = Field(pattern=r"^\d{6}$")


MemberRole = Literal["captain", "member", "substitute"]


class PlatformMemberIn(BaseModel):
    """A roster entry that is a registered account, looked up by username."""

    kind: Literal["user"] = "user"
    username: str = Field(min_length=3, max_length=32)
    game_id: Optional[str] = Field(default=None, max_length=64)
    role: MemberRole = "member"

    @field_validator("username", mode="before")
    @classmethod
    def _clean_username(cls, value: str) -> str:
        return _sanitize_single_line_text(value)


class GuestMemberIn(BaseModel):
    """A free-text roster entry with no platform account."""

    kind: Literal["guest"] = "guest"
    display_name: str = Field(min_length=1, max_length=64)
    game_id: str = Field(min_length=1, max_length=64)
    role: MemberRole = "member"

    @field_validator("display_name", "game_id", mode="before")
    @classmethod
    def _clean(cls, value: str) -> str:
        return _sanitize_single_line_text(value)


def _member_kind(value) -> str:
    if isinstance(value, dict):
        return value.get("kind") or ("guest" if "display_name" in value else "user")
    return getattr(value, "kind", "user")


MemberIn = Annotated[
    Union[Annotated[PlatformMemberIn, Tag("user")], Annotated[GuestMemberIn, Tag("guest")]],
    Discriminator(_member_kind),
]


class MemberRoleUpdate(BaseModel):
    role: MemberRole


class TeamMemberRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    team_id: int
    kind: Literal["user", "guest"]
    user_id: Optional[int] = None
    display_name: str
    game_id: str
    role: str
    created_at: Optional[datetime] = None


class TeamDetail(TeamRead):
    members: List[TeamMemberRead] = []


class JoinTeamResult(BaseModel):
    member: TeamMemberRead
    team: TeamRead


# ============================================================
# Tournaments
# ============================================================

class TournamentBase(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(default="", max_length=5000)
    date: datetime
    ends_at: Optional[datetime] = None
    map_type: str = Field(min_length=1, max_length=64)
    game_mode: GameMode = GameMode.squad
    team_type: Optional[GameMode] = None
    game_type: GameType = GameType.BGMI
    is_paid: bool = False
    entry_fee: int = Field(default=0, ge=0)
    prize_pool: int = Field(default=0, ge=0)
    total_slots: int = Field(gt=0, le=1000)

    @field_validator("title", "map_type", mode="before")
    @classmethod
    def _clean_single(cls, value: str) -> str:
        return _sanitize_single_line_text(value)

    @field_validator("description", mode="before")
    @classmethod
    def _clean_description(cls, value: Optional[str]) -> str:
        return _sanitize_multiline_text(value or "", allow_empty=True)

    @field_validator("date", "ends_at", mode="after")
    @classmethod
    def _to_naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return naive_utc(value)

    @model_validator(mode="after")
    def _check_schedule(self):
        if self.ends_at is not None and self.ends_at <= self.date:
            raise ValueError("ends_at must be after date")
        if self.team_type is None:
            self.team_type = self.game_mode
        return self


class TournamentCreate(TournamentBase):
    pass


_CLEARABLE_TOURNAMENT_FIELDS = frozenset({"ends_at", "room_id", "room_password"})


class TournamentUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)
    date: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    map_type: Optional[str] = Field(default=None, min_length=1, max_length=64)
    game_mode: Optional[GameMode] = None
    team_type: Optional[GameMode] = None
    game_type: Optional[GameType] = None
    is_paid: Optional[bool] = None
    entry_fee: Optional[int] = Field(default=None, ge=0)
    prize_pool: Optional[int] = Field(default=None, ge=0)
    total_slots: Optional[int] = Field(default=None, gt=0, le=1000)
    room_id: Optional[str] = Field(default=None, max_length=64)
    room_password: Optional[str] = Field(default=None, max_length=64)
    status: Optional[TournamentStatus] = None

    @field_validator("title", "map_type", "room_id", "room_password", mode="before")
    @classmethod
    def _clean_single(cls, value: Optional[str]) -> Optional[str]:
        return _sanitize_single_line_text(value) if value is not None else value

    @field_validator("date", "ends_at", mode="after")
    @classmethod
    def _to_naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return naive_utc(value)

    @model_validator(mode="after")
    def _reject_nulls(self):
        # Omit a field to leave it alone; only these columns can be cleared.
        cleared = sorted(
            name
            for name in self.model_fields_set
            if getattr(self, name) is None and name not in _CLEARABLE_TOURNAMENT_FIELDS
        )
        if cleared:
            raise ValueError(f"{', '.join(cleared)} cannot be null")
        return self


class TournamentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: str
    date: datetime
    ends_at: Optional[datetime] = None
    map_type: str
    game_mode: str
    team_type: str
    game_type: str
    is_paid: bool
    entry_fee: int
    prize_pool: int
    total_slots: int
    registered_count: int = 0
    status: str
    room_id: Optional[str] = None
    room_password: Optional[str] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None

    @classmethod
    def for_viewer(cls, tournament, viewer_is_admin: bool = False) -> "TournamentRead":
        data = cls.model_validate(tournament)
        if not tournament.room_visible(viewer_is_admin):
            data.room_id = None
            data.room_password = None
        return data


# ============================================================
# Registrations
# ============================================================

class RegistrationCreate(BaseModel):
    team_id: int


class RegistrationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tournament_id: int
    team_id: int
    user_id: int
    slot: int
    status: str
    payment_status: str
    registered_at: Optional[datetime] = None


class RegistrationWithTeam(RegistrationRead):
    team: Optional[TeamRead] = None


class UserRegistrationRead(RegistrationRead):
    tournament: Optional[TournamentRead] = None
    team: Optional[TeamRead] = None
    is_registered_by_me: bool = False


# ============================================================
# Notifications
# ============================================================

class NotificationCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1, max_length=5000)
    type: str = Field(default="broadcast", max_length=32)
    user_id: Optional[int] = None
    user_ids: List[int] = Field(default_factory=list)
    related_id: Optional[int] = None

    @field_validator("title", mode="before")
    @classmethod
    def _clean_title(cls, value: str) -> str:
        return _sanitize_single_line_text(value)

    @field_validator("message", mode="before")
    @classmethod
    def _clean_message(cls, value: str) -> str:
        return _sanitize_multiline_text(value)

    @field_validator("user_ids", mode="after")
    @classmethod
    def _dedupe(cls, value: List[int]) -> List[int]:
        return list(dict.fromkeys(value))


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    audience: str
    user_id: Optional[int] = None
    title: str
    message: str
    type: str
    related_id: Optional[int] = None
    created_at: Optional[datetime] = None
    is_read: bool = False


class NotificationSendResult(BaseModel):
    success: bool = True
    notification: NotificationOut
    recipients: Optional[int] = None


class UnreadCount(BaseModel):
    count: int


# ============================================================
# Admin
# ============================================================

class AdminActionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    admin_id: Optional[int] = None
    action: str
    target_type: Optional[str] = None
    target_id: Optional[int] = None
    detail: Optional[str] = None
    timestamp: Optional[datetime] = None


class MessageResponse(BaseModel):
    message: str
