from sqlalchemy import Boolean, Column, DateTime, Integer, String, func
from sqlalchemy.orm import relationship

from tourneyhub.database import Base


class User(Base):
    __tablename__ = "users"

    ROLES = ("user", "admin")

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(64), unique=True, nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    phone = Column(String(32), unique=True, nullable=True)
    game_id = Column(String(64), nullable=False, default="")
    password_hash = Column("password", String, nullable=False)
    role = Column(String(16), nullable=False, default="user")
    phone_verified = Column(Boolean, nullable=False, default=False)
    is_banned = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=func.now())

    owned_teams = relationship("Team", back_populates="owner", foreign_keys="Team.owner_id")

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
