from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import relationship

from tourneyhub.database import Base


class Team(Base):
    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    description = Column(Text, nullable=False, default="")
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    game_type = Column(String(16), nullable=False, default="BGMI")
    invite_code = Column(String(6), unique=True, nullable=False)
    created_at = Column(DateTime, default=func.now())

    owner = relationship("User", back_populates="owned_teams", foreign_keys=[owner_id])
    members = relationship(
        "TeamMember",
        back_populates="team",
        order_by="TeamMember.id",
        lazy="selectin",
    )
