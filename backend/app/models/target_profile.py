from sqlalchemy import JSON, Column, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.sql import func

from app.core.database import Base


class TargetProfile(Base):
    __tablename__ = "target_profiles"
    __table_args__ = (UniqueConstraint("user_id", "linkedin_url", name="uq_target_profiles_user_url"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    linkedin_url = Column(String, index=True, nullable=False)
    status = Column(String, index=True, default="pending")  # pending | ready | failed
    snapshot_id = Column(String, nullable=True)
    full_name = Column(String, nullable=True)
    headline = Column(String, nullable=True)
    current_company = Column(String, nullable=True)
    location = Column(String, nullable=True)
    about = Column(Text, nullable=True)
    data_json = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    scraped_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
