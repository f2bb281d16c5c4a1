from sqlalchemy import Column, DateTime, String
from sqlalchemy.sql import func

from app.core.database import Base


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String, primary_key=True, index=True)
    email = Column(String, index=True)
    display_name = Column(String, nullable=True)
    company = Column(String, nullable=True)
    role = Column(String, index=True, default="customer")
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Admin(Base):
    __tablename__ = "admins"

    user_id = Column(String, primary_key=True, index=True)
    granted_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
