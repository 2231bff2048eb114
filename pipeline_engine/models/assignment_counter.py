"""Round-robin assignment counter model module."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from pipeline_engine.models.base import Base, TenantScopedMixin, utcnow


class AssignmentCounter(Base, TenantScopedMixin):
    __tablename__ = "assignment_counters"
    __table_args__ = (UniqueConstraint("tenant_id", "counter_key", name="uq_assignment_counters_tenant_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    counter_key: Mapped[str] = mapped_column(String(255), nullable=False)
    value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
