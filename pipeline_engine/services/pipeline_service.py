"""Pipeline definition service and per-tenant definition cache."""

from __future__ import annotations

import logging
from threading import Lock
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select, update

from pipeline_engine.core.exceptions import PipelineNotFoundError, ValidationError
from pipeline_engine.models.enums import PipelineType
from pipeline_engine.models.pipeline import Pipeline
from pipeline_engine.schemas.entries import parse_payload
from pipeline_engine.schemas.pipeline import PipelineCreateRequest, PipelineDefinition, PipelineUpdateRequest, Stage
from pipeline_engine.services.base_service import BaseService

logger = logging.getLogger(__name__)

_definition_cache: dict[tuple[int, int], PipelineDefinition] = {}
_definition_cache_lock = Lock()


def clear_definition_cache() -> None:
    with _definition_cache_lock:
        _definition_cache.clear()


def _invalidate(tenant_id: int, pipeline_id: int) -> None:
    with _definition_cache_lock:
        _definition_cache.pop((tenant_id, pipeline_id), None)


def _stages_to_json(stages: tuple[Stage, ...]) -> list[dict[str, Any]]:
    return [stage.model_dump(mode="json", exclude_none=True) for stage in stages]


class PipelineService(BaseService):
    """CRUD for stored pipelines plus hydration into ``PipelineDefinition``."""

    def create_pipeline(self, tenant_id: int, request: PipelineCreateRequest | dict[str, Any]) -> Pipeline:
        payload = parse_payload(PipelineCreateRequest, request)
        pipeline = Pipeline(
            tenant_id=tenant_id,
            name=payload.name,
            description=payload.description,
            type=payload.type,
            category=payload.category,
            stages=_stages_to_json(payload.stages),
            enable_sla=payload.enable_sla,
            enable_auto_actions=payload.enable_auto_actions,
            is_active=payload.is_active,
            is_default=payload.is_default,
            version=1,
        )
        self.db.add(pipeline)
        self.db.flush()
        if payload.is_default:
            self._clear_other_defaults(pipeline)
        self.commit()
        self.db.refresh(pipeline)
        logger.info(
            "pipeline.created",
            extra={"event": "pipeline.created", "tenant_id": tenant_id, "pipeline_id": pipeline.id},
        )
        return pipeline

    def update_pipeline(
        self, tenant_id: int, pipeline_id: int, request: PipelineUpdateRequest | dict[str, Any]
    ) -> Pipeline:
        payload = parse_payload(PipelineUpdateRequest, request)
        pipeline = self.get_pipeline(tenant_id, pipeline_id)
        changes = payload.model_dump(exclude_unset=True)
        if "stages" in changes:
            if payload.stages is None:
                raise ValidationError("stages cannot be cleared")
            pipeline.stages = _stages_to_json(payload.stages)
        for field_name in ("name", "description", "category", "enable_sla", "enable_auto_actions", "is_active", "is_default"):
            if field_name in changes and changes[field_name] is not None:
                setattr(pipeline, field_name, changes[field_name])
        pipeline.version = (pipeline.version or 1) + 1
        if payload.is_default:
            self._clear_other_defaults(pipeline)
        self.commit()
        _invalidate(tenant_id, pipeline_id)
        self.db.refresh(pipeline)
        logger.info(
            "pipeline.updated",
            extra={"event": "pipeline.updated", "tenant_id": tenant_id, "pipeline_id": pipeline_id},
        )
        return pipeline

    def _clear_other_defaults(self, pipeline: Pipeline) -> None:
        self.db.execute(
            update(Pipeline)
            .where(
                Pipeline.tenant_id == pipeline.tenant_id,
                Pipeline.type == pipeline.type,
                Pipeline.id != pipeline.id,
                Pipeline.is_default.is_(True),
            )
            .values(is_default=False, version=Pipeline.version + 1)
        )

    def get_pipeline(self, tenant_id: int, pipeline_id: int) -> Pipeline:
        pipeline = (
            self.db.query(Pipeline)
            .filter(Pipeline.id == pipeline_id, Pipeline.tenant_id == tenant_id, Pipeline.deleted_at.is_(None))
            .first()
        )
        if pipeline is None:
            raise PipelineNotFoundError(f"Pipeline {pipeline_id} not found")
        return pipeline

    def list_pipelines(
        self,
        tenant_id: int,
        type: PipelineType | None = None,
        is_active: bool | None = None,
    ) -> list[Pipeline]:
        query = self.db.query(Pipeline).filter(Pipeline.tenant_id == tenant_id, Pipeline.deleted_at.is_(None))
        if type is not None:
            query = query.filter(Pipeline.type == PipelineType(type))
        if is_active is not None:
            query = query.filter(Pipeline.is_active.is_(is_active))
        return query.order_by(Pipeline.created_at.desc(), Pipeline.id.desc()).all()

    def get_definition(self, tenant_id: int, pipeline_id: int) -> PipelineDefinition:
        """Return the typed definition, reusing the cached copy while the stored version matches."""
        stored_version = self.db.execute(
            select(Pipeline.version).where(
                Pipeline.id == pipeline_id, Pipeline.tenant_id == tenant_id, Pipeline.deleted_at.is_(None)
            )
        ).scalar_one_or_none()
        if stored_version is None:
            raise PipelineNotFoundError(f"Pipeline {pipeline_id} not found")

        key = (tenant_id, pipeline_id)
        with _definition_cache_lock:
            cached = _definition_cache.get(key)
        if cached is not None and cached.version == stored_version:
            return cached

        pipeline = self.get_pipeline(tenant_id, pipeline_id)
        try:
            definition = PipelineDefinition.from_record(pipeline)
        except PydanticValidationError as exc:
            raise ValidationError(f"Pipeline {pipeline_id} has a malformed stage graph: {exc}") from exc
        with _definition_cache_lock:
            _definition_cache[key] = definition
        return definition
