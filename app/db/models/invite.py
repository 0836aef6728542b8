# app/db/models/invite.py
from sqlalchemy import Column, String, Boolean, DateTime
from datetime import datetime
from app.db.base import Base


class InviteCode(Base):
    """Single-use invite code; is_used flips false -> true exactly once"""
    __tablename__ = "invite_codes"

    code = Column(String(64), primary_key=True)
    is_used = Column(Boolean, default=False, nullable=False)
    used_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    used_at = Column(DateTime, nullable=True)
