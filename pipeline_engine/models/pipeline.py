"""Pipeline definition model module."""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, Boolean, Enum, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pipeline_engine.models.base import AuditMixin, Base, TenantScopedMixin
from pipeline_engine.models.enums import PipelineType


class Pipeline(Base, AuditMixin, TenantScopedMixin):
    """Stored stage graph; hydrated into ``PipelineDefinition`` before use.

    ``version`` increases on every edit so cached definitions can be
    invalidated without comparing stage payloads.
    """

    __tablename__ = "pipelines"
    __table_args__ = (
        Index("idx_pipelines_tenant_type", "tenant_id", "type"),
        Index("idx_pipelines_tenant_active", "tenant_id", "is_active"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    type: Mapped[PipelineType] = mapped_column(Enum(PipelineType, name="pipeline_type"), nullable=False)
    category: Mapped[str] = mapped_column(String(50), default="GENERAL", nullable=False)
    stages: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    enable_sla: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    enable_auto_actions: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    tenant = relationship("Tenant", back_populates="pipelines")
    entries = relationship("PipelineEntry", back_populates="pipeline")
