from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol
from urllib.parse import urlparse

from fillrate.config import ConnectionConfig


@dataclass(frozen=True)
class Session:
    domain: str
    token: str

    @property
    def base_url(self) -> str:
        return f"https://{self.domain}"


def sanitize_domain(domain: str | None) -> str:
    if not domain:
        raise ValueError("Session domain must be non-empty.")
    cleaned = domain.strip()
    if "://" in cleaned:
        cleaned = urlparse(cleaned).netloc
    cleaned = cleaned.rstrip("/")
    return cleaned[1:] if cleaned.startswith(".") else cleaned


class SessionProvider(Protocol):
    async def get_session(self, context_url: str | None = None) -> Session | None: ...


class ConfiguredSessionProvider:
    """Resolve sessions from connection settings, caching one per context URL."""

    def __init__(self, connection: ConnectionConfig) -> None:
        self._connection = connection
        self._cache: dict[str, Session] = {}

    async def get_session(self, context_url: str | None = None) -> Session | None:
        cache_key = context_url or ""
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        instance_url = self._connection.instance_url
        token = self._connection.access_token
        if not instance_url or not token:
            return None
        session = Session(domain=sanitize_domain(instance_url), token=token)
        self._cache[cache_key] = session
        return session
