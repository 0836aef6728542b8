# app/db/models/user.py
from sqlalchemy import Column, String
from sqlalchemy.orm import relationship
import uuid
from app.db.base import BaseModel


class GlobalUser(BaseModel):
    """Global user shared by every product, keyed by email"""
    __tablename__ = "global_users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)

    # External identities, one per provider
    google_id = Column(String(255), unique=True, nullable=True)
    github_id = Column(String(255), unique=True, nullable=True)

    # Null for identity-provider-only accounts
    password_hash = Column(String(128), nullable=True)
    salt = Column(String(64), nullable=True)

    # Profile
    nickname = Column(String(255), nullable=True)
    avatar_url = Column(String(500), nullable=True)

    # Relationships
    licenses = relationship("License", back_populates="user", cascade="all, delete-orphan")
    usage_stats = relationship("UsageStats", back_populates="user", uselist=False, cascade="all, delete-orphan")
    access_logs = relationship("AccessLog", back_populates="user", cascade="all, delete-orphan")

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash and self.salt)
