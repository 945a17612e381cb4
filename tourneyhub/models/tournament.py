from __future__ import annotations

import enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)

from tourneyhub.database import Base


class TournamentStatus(str, enum.Enum):
    upcoming = "upcoming"
    live = "live"
    completed = "completed"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)

    def can_advance_to(self, other: "TournamentStatus") -> bool:
        return other.rank > self.rank


_STATUS_ORDER = [TournamentStatus.upcoming, TournamentStatus.live, TournamentStatus.completed]


class Tournament(Base):
    __tablename__ = "tournaments"
    __table_args__ = (
        CheckConstraint("total_slots > 0", name="ck_tournaments_total_slots_positive"),
        CheckConstraint(
            "registered_count >= 0 AND registered_count <= total_slots",
            name="ck_tournaments_registered_within_capacity",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    date = Column(DateTime, nullable=False)
    ends_at = Column(DateTime, nullable=True)
    map_type = Column(String(64), nullable=False)
    game_mode = Column(String(16), nullable=False, default="Squad")
    team_type = Column(String(16), nullable=False, default="Squad")
    game_type = Column(String(16), nullable=False, default="BGMI")
    is_paid = Column(Boolean, nullable=False, default=False)
    entry_fee = Column(Integer, nullable=False, default=0)
    prize_pool = Column(Integer, nullable=False, default=0)
    total_slots = Column(Integer, nullable=False)
    registered_count = Column(Integer, nullable=False, default=0, server_default="0")
    next_slot = Column(Integer, nullable=False, default=0, server_default="0")
    room_id = Column(String(64), nullable=True)
    room_password = Column("password", String(64), nullable=True)
    status = Column(String(16), nullable=False, default=TournamentStatus.upcoming.value, index=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=func.now())

    @property
    def status_enum(self) -> TournamentStatus:
        return TournamentStatus(self.status)

    def room_visible(self, viewer_is_admin: Optional[bool] = False) -> bool:
        return bool(viewer_is_admin) or self.status != TournamentStatus.upcoming.value
