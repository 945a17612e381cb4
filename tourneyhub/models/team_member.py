from __future__ import annotations

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint, func, text
from sqlalchemy.orm import relationship

from tourneyhub.database import Base


class TeamMember(Base):
    """A roster entry: a platform user (``user_id`` set) or a guest display name."""

    __tablename__ = "team_members"
    __table_args__ = (
        UniqueConstraint("team_id", "user_id", name="uq_team_members_team_user"),
        Index(
            "uq_team_members_one_captain",
            "team_id",
            unique=True,
            sqlite_where=text("role = 'captain'"),
            postgresql_where=text("role = 'captain'"),
        ),
    )

    ROLES = ("captain", "member", "substitute")

    id = Column(Integer, primary_key=True, index=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    display_name = Column("username", String(64), nullable=False)
    game_id = Column(String(64), nullable=False, default="")
    role = Column(String(16), nullable=False, default="member")
    created_at = Column(DateTime, default=func.now())

    team = relationship("Team", back_populates="members")

    @property
    def kind(self) -> str:
        return "user" if self.user_id is not None else "guest"
