from __future__ import annotations

from typing import Any
from urllib.parse import quote

import httpx

from fillrate.config import DEFAULT_API_VERSION
from fillrate.errors import RemoteAPIError
from fillrate.session import Session


def non_null_count_query(entity: str, field: str) -> str:
    return f"SELECT count(Id) FROM {entity} WHERE {field} != null"


class RestClient:
    """Thin async wrapper over the object store's REST API.

    Every call is authenticated with the session bearer token. Non-2xx
    responses raise ``RemoteAPIError``; nothing is retried.
    """

    def __init__(
        self,
        session: Session,
        *,
        api_version: str = DEFAULT_API_VERSION,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_version = api_version
        self._client = httpx.AsyncClient(
            base_url=session.base_url,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {session.token}",
            },
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> RestClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def data_path(self, suffix: str) -> str:
        return f"/services/data/{self.api_version}/{suffix.lstrip('/')}"

    def explain_url(self, entity: str, field: str) -> str:
        query = non_null_count_query(entity, field)
        return self.data_path(f"tooling/query/?explain={quote(query, safe='')}")

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        response = await self._client.request(method, path, json=json, params=params)
        if response.is_error:
            raise RemoteAPIError(response.status_code, response.text)
        return response.json()

    async def list_entities(self) -> list[dict[str, Any]]:
        payload = await self.request_json("GET", self.data_path("sobjects"))
        entities = payload.get("sobjects") or []
        return [entity for entity in entities if entity.get("queryable", True)]

    async def describe(self, entity: str) -> dict[str, Any]:
        return await self.request_json("GET", self.data_path(f"sobjects/{entity}/describe"))

    async def composite(self, subrequests: list[dict[str, Any]]) -> dict[str, Any]:
        body = {"allOrNone": False, "compositeRequest": subrequests}
        return await self.request_json("POST", self.data_path("tooling/composite"), json=body)

    async def query(self, soql: str) -> list[dict[str, Any]]:
        payload = await self.request_json("GET", self.data_path("query"), params={"q": soql})
        records = list(payload.get("records") or [])
        next_url = payload.get("nextRecordsUrl")
        while next_url:
            payload = await self.request_json("GET", next_url)
            records.extend(payload.get("records") or [])
            next_url = payload.get("nextRecordsUrl")
        return records
