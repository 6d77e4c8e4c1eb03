from sqlalchemy import BigInteger, Column, DateTime, String
from sqlalchemy.sql import func

from app.core.database import Base


class Account(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, index=True)
    email = Column(String, index=True)
    display_name = Column(String, nullable=True)
    role = Column(String, default="user")
    # minor units, see app.services.credits.amounts
    credits_remaining = Column(BigInteger, nullable=False, default=0)
    package_type = Column(String, index=True, default="free")
    billing_model = Column(String, default="monthly")
    plan_code = Column(String, nullable=True)
    chargebee_customer_id = Column(String, index=True, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
