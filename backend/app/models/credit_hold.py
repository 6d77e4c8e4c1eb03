from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, String

from app.core.database import Base


class CreditHold(Base):
    __tablename__ = "credit_holds"

    hold_id = Column(String, primary_key=True)
    # unique: one outstanding hold per user
    user_id = Column(String, ForeignKey("users.id"), unique=True, index=True, nullable=False)
    amount = Column(BigInteger, nullable=False)
    operation = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
