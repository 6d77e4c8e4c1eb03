from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.sql import func

from app.core.database import Base


class ContextAddon(Base):
    """A Chargebee subscription for extra saved-context slots."""

    __tablename__ = "context_addons"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("users.id"), index=True, nullable=False)
    chargebee_subscription_id = Column(String, unique=True, index=True, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    status = Column(String, index=True, default="active")  # active | grace_period | cancelled | expired
    chargebee_status = Column(String, nullable=True)
    next_billing_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
