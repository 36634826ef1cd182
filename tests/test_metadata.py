from __future__ import annotations

import asyncio
from typing import Any

import pytest

from fillrate.metadata import (
    EntitySummary,
    FieldMetadata,
    MetadataCache,
    filter_entities,
    is_filterable,
    match_entity,
    parse_entities,
    parse_fields,
)


class CountingSource:
    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.describe_calls: list[str] = []
        self.list_calls = 0

    async def list_entities(self) -> list[dict[str, Any]]:
        self.list_calls += 1
        return [
            {"name": "Opportunity", "label": "Opportunity"},
            {"name": "Account", "label": "Account"},
            {"name": "Custom__c", "label": "custom thing"},
        ]

    async def describe(self, entity: str) -> dict[str, Any]:
        self.describe_calls.append(entity)
        await asyncio.sleep(0)
        if self.failures:
            self.failures -= 1
            raise RuntimeError("describe failed")
        return {
            "fields": [
                {"name": "Name", "label": "Name", "type": "string"},
                {"name": "Amount", "label": "Amount", "type": "currency"},
                {"name": "Notes__c"},
            ]
        }


def test_is_filterable_excludes_long_text_and_address_types() -> None:
    assert not is_filterable(FieldMetadata("Description", "Description", "textarea"))
    assert not is_filterable(FieldMetadata("BillingAddress", "Billing Address", "ADDRESS"))
    assert is_filterable(FieldMetadata("Name", "Name", "string"))
    assert is_filterable(FieldMetadata("Mystery", "Mystery", None))
    assert is_filterable(None)


def test_parse_helpers_default_labels_and_sort_by_label() -> None:
    entities = parse_entities([{"name": "b__c", "label": "Beta"}, {"name": "alpha"}, {}])
    fields = parse_fields({"fields": [{"name": "Zeta"}, {"name": "a", "label": "Alpha"}]})

    assert entities == (EntitySummary("alpha", "alpha"), EntitySummary("b__c", "Beta"))
    assert [field.name for field in fields] == ["a", "Zeta"]
    assert fields[1].label == "Zeta"


def test_filter_and_match_entities_are_case_insensitive() -> None:
    entities = (
        EntitySummary("Account", "Account"),
        EntitySummary("Custom__c", "Custom Thing"),
    )

    assert filter_entities(entities, "  thing ") == [entities[1]]
    assert filter_entities(entities, "") == list(entities)
    assert match_entity(entities, "custom__C") == entities[1]
    assert match_entity(entities, "custom thing") == entities[1]
    assert match_entity(entities, "custom") is None
    assert entities[1].display_key == "Custom Thing (Custom__c)"


@pytest.mark.asyncio
async def test_concurrent_describes_share_one_request() -> None:
    source = CountingSource()
    cache = MetadataCache(source)

    first, second = await asyncio.gather(cache.describe("Account"), cache.describe("Account"))

    assert first is second
    assert source.describe_calls == ["Account"]
    assert await cache.describe("Account") is first
    assert source.describe_calls == ["Account"]


@pytest.mark.asyncio
async def test_failed_describe_is_retried_on_next_call() -> None:
    source = CountingSource(failures=1)
    cache = MetadataCache(source)

    with pytest.raises(RuntimeError):
        await cache.describe("Account")
    fields = await cache.describe("Account")

    assert [field.name for field in fields] == ["Amount", "Name", "Notes__c"]
    assert source.describe_calls == ["Account", "Account"]


@pytest.mark.asyncio
async def test_ensure_loaded_describes_distinct_uncached_entities() -> None:
    source = CountingSource()
    cache = MetadataCache(source)
    await cache.describe("Account")

    await cache.ensure_loaded(["Account", "Opportunity", "Opportunity"])

    assert sorted(source.describe_calls) == ["Account", "Opportunity"]
    assert set(cache.field_names()) == {"Account", "Opportunity"}
    assert cache.field_metadata("Opportunity", "Amount") == FieldMetadata(
        "Amount", "Amount", "currency"
    )
    assert cache.field_metadata("Opportunity", "Missing") is None
    assert cache.cached_fields("Lead") == ()


@pytest.mark.asyncio
async def test_entity_catalog_is_cached_and_labels_resolve() -> None:
    source = CountingSource()
    cache = MetadataCache(source)

    entities = await cache.list_entities()
    await cache.list_entities()

    assert [entity.name for entity in entities] == ["Account", "Custom__c", "Opportunity"]
    assert source.list_calls == 1
    assert cache.entity_label("Account") == "Account (Account)"
    assert cache.entity_label("Unknown__c") == "Unknown__c"
