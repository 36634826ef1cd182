from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

LOGGER = logging.getLogger(__name__)

NON_FILTERABLE_TYPES = frozenset({"textarea", "address"})


@dataclass(frozen=True)
class EntitySummary:
    name: str
    label: str

    @property
    def display_key(self) -> str:
        return f"{self.label} ({self.name})"


@dataclass(frozen=True)
class FieldMetadata:
    name: str
    label: str
    type: str | None = None


class MetadataSource(Protocol):
    async def list_entities(self) -> list[dict[str, Any]]: ...

    async def describe(self, entity: str) -> dict[str, Any]: ...


def is_filterable(metadata: FieldMetadata | None) -> bool:
    """Long text and compound address fields cannot appear in a WHERE clause."""
    if metadata is None or not metadata.type:
        return True
    return metadata.type.lower() not in NON_FILTERABLE_TYPES


def parse_entities(raw_entities: Iterable[dict[str, Any]]) -> tuple[EntitySummary, ...]:
    entities = [
        EntitySummary(name=str(raw["name"]), label=str(raw.get("label") or raw["name"]))
        for raw in raw_entities
        if raw and raw.get("name")
    ]
    return tuple(sorted(entities, key=lambda entity: entity.label.casefold()))


def parse_fields(describe_payload: dict[str, Any]) -> tuple[FieldMetadata, ...]:
    fields = [
        FieldMetadata(
            name=str(raw["name"]),
            label=str(raw.get("label") or raw["name"]),
            type=raw.get("type"),
        )
        for raw in describe_payload.get("fields") or []
        if raw and raw.get("name")
    ]
    return tuple(sorted(fields, key=lambda field: field.label.casefold()))


def filter_entities(
    entities: Sequence[EntitySummary], term: str | None
) -> list[EntitySummary]:
    needle = (term or "").strip().casefold()
    if not needle:
        return list(entities)
    return [
        entity
        for entity in entities
        if needle in entity.name.casefold() or needle in entity.label.casefold()
    ]


def match_entity(entities: Sequence[EntitySummary], text: str | None) -> EntitySummary | None:
    needle = (text or "").strip().casefold()
    if not needle:
        return None
    for entity in entities:
        if entity.name.casefold() == needle or entity.label.casefold() == needle:
            return entity
    return None


class MetadataCache:
    """Session-scoped memo of entity listings and field descriptions.

    Concurrent ``describe`` calls for one entity share a single in-flight
    request. A failed describe is not cached, so a later call retries it.
    """

    def __init__(self, source: MetadataSource) -> None:
        self._source = source
        self._fields: dict[str, tuple[FieldMetadata, ...]] = {}
        self._pending: dict[str, asyncio.Task[tuple[FieldMetadata, ...]]] = {}
        self._entities: tuple[EntitySummary, ...] | None = None

    async def list_entities(self) -> tuple[EntitySummary, ...]:
        if self._entities is None:
            self._entities = parse_entities(await self._source.list_entities())
            LOGGER.info("Loaded %d entities", len(self._entities))
        return self._entities

    async def describe(self, entity: str) -> tuple[FieldMetadata, ...]:
        cached = self._fields.get(entity)
        if cached is not None:
            return cached
        pending = self._pending.get(entity)
        if pending is None:
            pending = asyncio.create_task(self._load_fields(entity))
            self._pending[entity] = pending
        return await pending

    async def _load_fields(self, entity: str) -> tuple[FieldMetadata, ...]:
        try:
            fields = parse_fields(await self._source.describe(entity))
        finally:
            self._pending.pop(entity, None)
        self._fields[entity] = fields
        LOGGER.info("Described %s: %d fields", entity, len(fields))
        return fields

    async def ensure_loaded(self, entities: Iterable[str]) -> None:
        distinct = [entity for entity in dict.fromkeys(entities) if entity not in self._fields]
        if distinct:
            await asyncio.gather(*(self.describe(entity) for entity in distinct))

    def cached_fields(self, entity: str) -> tuple[FieldMetadata, ...]:
        return self._fields.get(entity, ())

    def field_names(self) -> dict[str, list[str]]:
        return {entity: [field.name for field in fields] for entity, fields in self._fields.items()}

    def field_metadata(self, entity: str, field: str) -> FieldMetadata | None:
        for candidate in self._fields.get(entity, ()):
            if candidate.name == field:
                return candidate
        return None

    def entity_label(self, entity: str) -> str:
        for candidate in self._entities or ():
            if candidate.name == entity:
                return candidate.display_key
        return entity
