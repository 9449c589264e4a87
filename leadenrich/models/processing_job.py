# leadenrich/models/processing_job.py
from __future__ import annotations

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from leadenrich.db.base import Base
from leadenrich.models.enums import JobStatus, enum_values


class ProcessingJob(Base):
    __tablename__ = "processing_jobs"

    lead_id = Column(ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True)
    lead = relationship("Lead", back_populates="jobs")

    status = Column(
        Enum(JobStatus, name="processing_job_status", values_callable=enum_values),
        nullable=False,
        default=JobStatus.PENDING,
        server_default=JobStatus.PENDING.value,
    )
    progress = Column(Integer, nullable=False, default=0, server_default="0")
    current_step = Column(String(64), nullable=True)
    queue_job_id = Column(String(64), nullable=True)
    attempts = Column(Integer, nullable=False, default=0, server_default="0")
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    error = Column(Text, nullable=True)

    __table_args__ = (
        Index("idx_processing_jobs_status", "status"),
        Index("idx_processing_jobs_status_completed", "status", "completed_at"),
        CheckConstraint("progress >= 0 AND progress <= 100", name="check_progress_range"),
    )
