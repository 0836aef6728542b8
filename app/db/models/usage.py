# app/db/models/usage.py
from sqlalchemy import Column, String, ForeignKey, BigInteger, DateTime, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
from app.db.base import Base, BaseModel


class UsageStats(BaseModel):
    """Monthly token budget and consumption counter, one row per user"""
    __tablename__ = "usage_stats"

    user_id = Column(String(36), ForeignKey("global_users.id", ondelete="CASCADE"), primary_key=True)
    current_period_start = Column(DateTime, nullable=False)
    current_period_end = Column(DateTime, nullable=False)
    token_quota_limit = Column(BigInteger, nullable=False)
    tokens_consumed = Column(BigInteger, default=0, nullable=False)

    user = relationship("GlobalUser", back_populates="usage_stats")


class AccessLog(Base):
    """Append-only record of successful quota consumption"""
    __tablename__ = "access_logs"
    __table_args__ = (
        Index("idx_access_logs_user_time", "user_id", "timestamp"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("global_users.id", ondelete="CASCADE"), nullable=False)
    model_name = Column(String(255), nullable=False)
    tokens = Column(BigInteger, nullable=False)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)
    request_id = Column(String(255), nullable=True)

    user = relationship("GlobalUser", back_populates="access_logs")
