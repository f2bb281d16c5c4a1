from sqlalchemy import JSON, Column, DateTime, Integer, String
from sqlalchemy.sql import func

from app.core.database import Base


class RateLimitWindow(Base):
    __tablename__ = "rate_limits"

    user_id = Column(String, primary_key=True)
    function_name = Column(String, primary_key=True)
    call_times = Column(JSON, nullable=False, default=list)
    version = Column(Integer, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version}
