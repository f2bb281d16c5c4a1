from sqlalchemy import Boolean, Column, DateTime, String
from sqlalchemy.sql import func

from app.core.database import Base


class LeadUnlock(Base):
    __tablename__ = "lead_unlocks"

    id = Column(String, primary_key=True)
    job_id = Column(String, index=True, nullable=False)
    contractor_id = Column(String, index=True, nullable=False)
    exclusive = Column(Boolean, nullable=False)
    source = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
