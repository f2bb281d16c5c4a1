from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.sql import func

from app.core.database import Base


class AdminAction(Base):
    __tablename__ = "admin_actions"

    id = Column(Integer, primary_key=True, index=True)
    type = Column(String, index=True, nullable=False)
    admin_id = Column(String, index=True, nullable=False)
    target_uid = Column(String, index=True, nullable=False)
    pool = Column(String, nullable=True)
    delta = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
