import uuid

from sqlalchemy import Column, String, Boolean, DateTime, Integer, Numeric
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from timetrack.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    hashed_password = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    # Fallback rate when neither task nor project carries one.
    default_hourly_rate = Column(Numeric(12, 2), nullable=True)
    # Per-user auto-stop threshold used by the clients' idle guards.
    idle_timeout_seconds = Column(Integer, nullable=False, default=600)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    projects = relationship("Project", back_populates="user", cascade="all, delete-orphan")
    time_entries = relationship("TimeEntry", back_populates="user", cascade="all, delete-orphan")
