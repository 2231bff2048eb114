"""Collaborator interfaces consumed by the engine.

The engine never owns entity records or delivery transports. Callers supply
implementations of these protocols; the ``EntityRegistry`` routes entity
reads and writes by ``EntityType`` tag.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from pipeline_engine.core.exceptions import EntityNotFoundError, ValidationError
from pipeline_engine.models.enums import EntityType

Entity = Mapping[str, Any]


class EntityStore(Protocol):
    def lookup(self, entity_id: str) -> Entity | None: ...

    def update_fields(self, entity_id: str, fields: dict[str, Any]) -> None: ...


class TaskCreator(Protocol):
    def create_task(
        self,
        template: dict[str, Any],
        assignee: str | None,
        due_date: datetime,
        context: dict[str, Any],
    ) -> str: ...


class NotificationDispatcher(Protocol):
    def notify(
        self,
        recipient_id: str,
        recipient_type: str,
        channel: str,
        title: str,
        message: str,
        payload: dict[str, Any],
    ) -> None: ...


class MessagingSender(Protocol):
    def send_email(self, to: str, subject: str, body: str) -> str: ...

    def send_sms(self, to: str, body: str) -> str: ...


class EntityRegistry:
    """Typed dispatch table from ``EntityType`` to its store."""

    def __init__(self, stores: Mapping[EntityType, EntityStore] | None = None) -> None:
        self._stores: dict[EntityType, EntityStore] = dict(stores or {})

    def register(self, entity_type: EntityType, store: EntityStore) -> None:
        self._stores[entity_type] = store

    def store_for(self, entity_type: EntityType | str) -> EntityStore:
        try:
            resolved = EntityType(entity_type)
        except ValueError as exc:
            raise ValidationError(f"Unknown entity type: {entity_type}") from exc
        store = self._stores.get(resolved)
        if store is None:
            raise ValidationError(f"No entity store registered for {resolved.value}")
        return store

    def lookup(self, entity_type: EntityType | str, entity_id: str) -> Entity:
        entity = self.store_for(entity_type).lookup(entity_id)
        if entity is None:
            raise EntityNotFoundError(f"{EntityType(entity_type).value} {entity_id} not found")
        return entity

    def update_fields(self, entity_type: EntityType | str, entity_id: str, fields: dict[str, Any]) -> None:
        self.store_for(entity_type).update_fields(entity_id, fields)


@dataclass
class Collaborators:
    entities: EntityRegistry
    tasks: TaskCreator
    notifications: NotificationDispatcher
    messaging: MessagingSender
