from __future__ import annotations

import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from dubdesk.core.database import Base


class QueueJob(Base):
  __tablename__ = "queue_jobs"
  __table_args__ = (
    Index("ix_queue_jobs_claim", "queue_name", "status", "available_at"),
    Index("ix_queue_jobs_finished", "queue_name", "status", "finished_at"),
  )

  id: Mapped[str] = mapped_column(String, primary_key=True)
  queue_name: Mapped[str] = mapped_column(String, nullable=False)
  name: Mapped[str] = mapped_column(String, nullable=False)
  data: Mapped[dict] = mapped_column(JSONB, nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False)
  attempts_made: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  max_attempts: Mapped[int] = mapped_column(Integer, nullable=False)
  backoff_delay_ms: Mapped[int] = mapped_column(Integer, nullable=False)
  progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  available_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  locked_by: Mapped[str | None] = mapped_column(String, nullable=True)
  failed_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
  return_value: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  processed_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  finished_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
