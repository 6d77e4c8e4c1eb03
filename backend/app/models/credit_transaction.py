from sqlalchemy import JSON, BigInteger, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.sql import func

from app.core.database import Base


class CreditTransaction(Base):
    __tablename__ = "credits_transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("users.id"), index=True, nullable=False)
    transaction_type = Column(String, index=True, nullable=False)
    credits_change = Column(BigInteger, nullable=False)
    description = Column(String)
    source = Column(String, index=True, nullable=True)
    event_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
