from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

FIELD_KEY_SEPARATOR = ":"


def build_field_key(entity: str, field: str) -> str:
    return f"{entity}{FIELD_KEY_SEPARATOR}{field}"


@dataclass(frozen=True)
class FieldRef:
    entity: str
    field: str

    @property
    def key(self) -> str:
        return build_field_key(self.entity, self.field)

    @classmethod
    def parse(cls, value: str | None) -> FieldRef | None:
        if not value or FIELD_KEY_SEPARATOR not in value:
            return None
        entity, field = value.split(FIELD_KEY_SEPARATOR, 1)
        if not entity or not field:
            return None
        return cls(entity=entity, field=field)


class SelectionSet:
    """Entities chosen for profiling and, per entity, the chosen field names.

    Entity order is insertion order. An entity with no chosen fields stands for
    "every described field" when pairs are expanded with ``include_all_when_empty``.
    """

    def __init__(self) -> None:
        self._entities: list[str] = []
        self._fields: dict[str, list[str]] = {}

    @property
    def entities(self) -> list[str]:
        return list(self._entities)

    def fields_for(self, entity: str) -> list[str]:
        return list(self._fields.get(entity, []))

    def __len__(self) -> int:
        return len(self._entities)

    def add_entities(self, names: Iterable[str]) -> bool:
        changed = False
        for name in names:
            if name and name not in self._entities:
                self._entities.append(name)
                changed = True
        return changed

    def remove_entities(self, names: Iterable[str]) -> bool:
        targets = set(names)
        remaining = [name for name in self._entities if name not in targets]
        if len(remaining) == len(self._entities):
            return False
        for name in targets:
            self._fields.pop(name, None)
        self._entities = remaining
        return True

    def retain_entities(self, valid_names: Iterable[str]) -> None:
        valid = set(valid_names)
        self._entities = [name for name in self._entities if name in valid]
        self._fields = {name: fields for name, fields in self._fields.items() if name in valid}

    def add_fields(self, refs: Iterable[FieldRef]) -> bool:
        changed = False
        for ref in refs:
            current = self._fields.setdefault(ref.entity, [])
            if ref.field not in current:
                current.append(ref.field)
                changed = True
        return changed

    def remove_fields(self, refs: Iterable[FieldRef]) -> bool:
        changed = False
        for ref in refs:
            current = self._fields.get(ref.entity)
            if not current or ref.field not in current:
                continue
            current.remove(ref.field)
            changed = True
            if not current:
                del self._fields[ref.entity]
        return changed

    def field_refs(self) -> list[FieldRef]:
        return [
            FieldRef(entity=entity, field=field)
            for entity in self._entities
            for field in self._fields.get(entity, [])
        ]

    def expand_pairs(
        self,
        described_fields: Mapping[str, Sequence[str]],
        *,
        include_all_when_empty: bool = False,
        target_entities: Sequence[str] | None = None,
    ) -> list[FieldRef]:
        targets = self._entities if target_entities is None else target_entities
        pairs: list[FieldRef] = []
        for entity in targets:
            fields = self._fields.get(entity) or []
            if not fields and include_all_when_empty:
                fields = list(described_fields.get(entity, []))
            pairs.extend(FieldRef(entity=entity, field=field) for field in fields)
        return pairs

    @classmethod
    def from_mapping(
        cls,
        entities: Iterable[str],
        fields: Mapping[str, Iterable[str]] | None = None,
    ) -> SelectionSet:
        selection = cls()
        selection.add_entities(entities)
        for entity, names in (fields or {}).items():
            selection.add_entities([entity])
            selection.add_fields(FieldRef(entity=entity, field=name) for name in names)
        return selection
