from sqlalchemy import JSON, BigInteger, Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from app.core.database import Base


class MessageLog(Base):
    __tablename__ = "message_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    target_profile_id = Column(Integer, index=True, nullable=True)
    target_profile_url = Column(String, index=True)
    target_name = Column(String, nullable=True)
    target_first_name = Column(String, nullable=True)
    target_company = Column(String, nullable=True)
    message_type = Column(String, index=True)
    context_text = Column(Text)
    generated_message = Column(Text)
    model_name = Column(String, nullable=True)
    prompt_tokens = Column(Integer, nullable=True)
    completion_tokens = Column(Integer, nullable=True)
    credits_used = Column(BigInteger, default=0)  # minor units
    email_finder = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
