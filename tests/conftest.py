from __future__ import annotations

import asyncio
from typing import Any

import pytest

from fillrate.errors import RemoteAPIError
from fillrate.session import Session

ACCOUNT_FIELDS = [
    {"name": "Name", "label": "Account Name", "type": "string"},
    {"name": "Industry", "label": "Industry", "type": "picklist"},
    {"name": "Description", "label": "Description", "type": "textarea"},
]
CONTACT_FIELDS = [
    {"name": "Email", "label": "Email", "type": "email"},
    {"name": "MailingAddress", "label": "Mailing Address", "type": "address"},
]


class FakeClient:
    """In-memory stand-in for the REST client used by runner tests."""

    def __init__(
        self,
        *,
        describes: dict[str, Any] | None = None,
        cardinality: dict[str, tuple[int, int]] | None = None,
        query_results: dict[str, list[dict[str, Any]]] | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.entities = [
            {"name": "Account", "label": "Account", "queryable": True},
            {"name": "Contact", "label": "Contact", "queryable": True},
        ]
        self.describes = describes or {
            "Account": {"fields": ACCOUNT_FIELDS},
            "Contact": {"fields": CONTACT_FIELDS},
        }
        self.cardinality = cardinality or {}
        self.query_results = query_results or {}
        self.gate = gate
        self.describe_calls: list[str] = []
        self.composite_calls: list[list[dict[str, Any]]] = []
        self.queries: list[str] = []
        self.closed = False

    async def list_entities(self) -> list[dict[str, Any]]:
        return list(self.entities)

    async def describe(self, entity: str) -> dict[str, Any]:
        self.describe_calls.append(entity)
        payload = self.describes.get(entity)
        if isinstance(payload, Exception):
            raise payload
        if payload is None:
            raise RemoteAPIError(404, f"unknown entity {entity}")
        return payload

    def explain_url(self, entity: str, field: str) -> str:
        return f"/explain/{entity}/{field}"

    async def composite(self, subrequests: list[dict[str, Any]]) -> dict[str, Any]:
        self.composite_calls.append(subrequests)
        if self.gate is not None:
            await self.gate.wait()
        responses = []
        for subrequest in subrequests:
            _, _, entity, field = subrequest["url"].split("/")
            non_null, total = self.cardinality.get(f"{entity}:{field}", (25, 100))
            responses.append(
                {
                    "referenceId": subrequest["referenceId"],
                    "httpStatusCode": 200,
                    "body": {"plans": [{"cardinality": non_null, "sobjectCardinality": total}]},
                }
            )
        return {"compositeResponse": responses}

    async def query(self, soql: str) -> list[dict[str, Any]]:
        self.queries.append(soql)
        for fragment, records in self.query_results.items():
            if fragment in soql:
                return records
        return []

    async def aclose(self) -> None:
        self.closed = True


class StaticSessions:
    def __init__(self, session: Session | None) -> None:
        self.session = session
        self.requested: list[str | None] = []

    async def get_session(self, context_url: str | None = None) -> Session | None:
        self.requested.append(context_url)
        return self.session


@pytest.fixture
def session() -> Session:
    return Session(domain="example.my.test", token="token-123")


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def sessions(session: Session) -> StaticSessions:
    return StaticSessions(session)


@pytest.fixture
def make_client() -> type[FakeClient]:
    return FakeClient


@pytest.fixture
def make_sessions() -> type[StaticSessions]:
    return StaticSessions
