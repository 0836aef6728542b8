# app/db/models/license.py
from sqlalchemy import Column, String, ForeignKey, DateTime, Index, Text
from sqlalchemy.orm import relationship
import uuid
from app.db.base import Base, BaseModel


class Product(Base):
    """Static product catalog"""
    __tablename__ = "products"

    code = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)


class License(BaseModel):
    """A user's entitlement tier for one product"""
    __tablename__ = "licenses"
    __table_args__ = (
        Index("idx_licenses_user_product", "user_id", "product_code"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("global_users.id", ondelete="CASCADE"), nullable=False)
    product_code = Column(String(64), ForeignKey("products.code"), nullable=False)
    plan_tier = Column(String(50), default="free", nullable=False)  # free, pro, team, enterprise
    status = Column(String(50), default="active", nullable=False)  # active, expired, suspended
    expires_at = Column(DateTime, nullable=True)  # null => no expiry

    user = relationship("GlobalUser", back_populates="licenses")
