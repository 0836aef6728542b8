# app/db/models/access_request.py
from sqlalchemy import Column, String, Text, DateTime
from datetime import datetime
import uuid
from app.db.base import Base


class AccessRequest(Base):
    """Beta access application from someone without an invite"""
    __tablename__ = "access_requests"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), nullable=False, index=True)
    reason = Column(Text, nullable=True)
    status = Column(String(50), default="pending", nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
