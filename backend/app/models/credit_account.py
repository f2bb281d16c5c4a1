from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.sql import func

from app.core.database import Base


class CreditAccount(Base):
    __tablename__ = "credit_accounts"

    user_id = Column(String, primary_key=True, index=True)
    non_exclusive_credits = Column(Integer, nullable=False, default=0)
    exclusive_credits = Column(Integer, nullable=False, default=0)
    # Legacy alias of non_exclusive_credits read by older clients.
    credits = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version}
