import uuid

from sqlalchemy import Column, String, Boolean, DateTime, Text, Integer, Numeric, ForeignKey, Index, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from timetrack.database import Base


class TimeEntry(Base):
    """One tracked interval. ``end_time`` is NULL exactly while running.

    ``duration_seconds`` is only authoritative once the entry is stopped;
    while running it must be derived from ``start_time``.
    """

    __tablename__ = "time_entries"
    __table_args__ = (
        # At most one running entry per user, enforced by the database so a
        # second worker process cannot slip a parallel start past the engine.
        Index(
            "uq_time_entries_one_running_per_user",
            "user_id",
            unique=True,
            sqlite_where=text("is_running = 1"),
            postgresql_where=text("is_running"),
        ),
        Index("ix_time_entries_user_start", "user_id", "start_time"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    description = Column(Text, nullable=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    is_running = Column(Boolean, nullable=False, default=False)
    hourly_rate_snapshot = Column(Numeric(12, 2), nullable=False, default=0)

    project_id = Column(String(36), ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True)
    task_id = Column(String(36), ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="time_entries")
    project = relationship("Project")
    task = relationship("Task")
