from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.sql import func

from app.core.database import Base


class Payment(Base):
    __tablename__ = "payments"

    session_id = Column(String, primary_key=True, index=True)
    type = Column(String, index=True, nullable=False)
    status = Column(String, index=True, nullable=False)
    contractor_id = Column(String, index=True, nullable=True)
    pack_id = Column(String, nullable=True)
    credit_type = Column(String, nullable=True)
    leads_granted = Column(Integer, nullable=True)
    amount_cents = Column(Integer, nullable=True)
    currency = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
