from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Protocol

from fillrate.config import MAX_COMPOSITE_BATCH_SIZE, AppConfig, ConnectionConfig
from fillrate.errors import PreconditionError, RunInProgressError
from fillrate.io.client import RestClient
from fillrate.io.report_store import ReportStore
from fillrate.metadata import (
    EntitySummary,
    FieldMetadata,
    MetadataCache,
    filter_entities,
    match_entity,
)
from fillrate.pipeline.distribution import DistributionCollector
from fillrate.pipeline.orchestrator import BatchOrchestrator, ProgressCallback, build_batch_details
from fillrate.report.aggregator import build_report
from fillrate.report.contracts import BatchDetail, Report, ReportResult
from fillrate.selection import SelectionSet
from fillrate.session import ConfiguredSessionProvider, Session, SessionProvider

LOGGER = logging.getLogger(__name__)

NO_SESSION = "Unable to read session. Verify you are logged in."
NO_SELECTION = "Select at least one entity before processing."
NO_FIELDS = "No fields available to process."
RUN_ACTIVE = "A run is already in progress."


class ProfileClient(Protocol):
    async def list_entities(self) -> list[dict[str, Any]]: ...

    async def describe(self, entity: str) -> dict[str, Any]: ...

    def explain_url(self, entity: str, field: str) -> str: ...

    async def composite(self, subrequests: list[dict[str, Any]]) -> dict[str, Any]: ...

    async def query(self, soql: str) -> list[dict[str, Any]]: ...

    async def aclose(self) -> None: ...


ClientFactory = Callable[[Session], ProfileClient]


@dataclass(frozen=True)
class RunOutcome:
    report: Report
    completed: int
    total: int

    @property
    def report_id(self) -> str:
        return self.report.report_id

    @property
    def status_message(self) -> str:
        return f"Processed {len(self.report.results)} field(s)."

    @property
    def progress_message(self) -> str:
        if self.total > 0:
            return f"Completed {self.completed}/{self.total} API calls."
        return "Completed with skipped fields only."


class _ProgressTracker:
    def __init__(self, forward: ProgressCallback | None) -> None:
        self._forward = forward
        self.completed = 0
        self.total = 0

    def __call__(self, completed: int, total: int) -> None:
        self.completed = completed
        self.total = total
        if self._forward is not None:
            self._forward(completed, total)


class ProfileRunner:
    """Own the session-scoped state for fill-rate and distribution runs.

    Metadata caches live per session. Only one run may be active at a time;
    produced reports are placed in ``store`` for a viewer to consume.
    """

    def __init__(
        self,
        sessions: SessionProvider,
        *,
        client_factory: ClientFactory,
        store: ReportStore | None = None,
        batch_size: int = MAX_COMPOSITE_BATCH_SIZE,
        context_url: str | None = None,
    ) -> None:
        self._sessions = sessions
        self._client_factory = client_factory
        self.store = store or ReportStore()
        self.batch_size = batch_size
        self.context_url = context_url
        self._clients: dict[Session, ProfileClient] = {}
        self._caches: dict[Session, MetadataCache] = {}
        self._active = False

    @classmethod
    def from_config(cls, config: AppConfig, *, store: ReportStore | None = None) -> ProfileRunner:
        connection: ConnectionConfig = config.connection

        def _factory(session: Session) -> RestClient:
            return RestClient(
                session,
                api_version=connection.api_version,
                timeout=connection.timeout_seconds,
            )

        return cls(
            ConfiguredSessionProvider(connection),
            client_factory=_factory,
            store=store,
            batch_size=config.batch.batch_size,
            context_url=connection.instance_url,
        )

    @property
    def active(self) -> bool:
        return self._active

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()
        self._caches.clear()

    async def _connect(self) -> tuple[ProfileClient, MetadataCache]:
        session = await self._sessions.get_session(self.context_url)
        if session is None:
            raise PreconditionError(NO_SESSION)
        client = self._clients.get(session)
        if client is None:
            client = self._client_factory(session)
            self._clients[session] = client
            self._caches[session] = MetadataCache(client)
            LOGGER.info("Connected to %s", session.domain)
        return client, self._caches[session]

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if self._active:
            raise RunInProgressError(RUN_ACTIVE)
        self._active = True
        try:
            yield
        finally:
            self._active = False

    async def entities(self, filter_text: str | None = None) -> list[EntitySummary]:
        _, cache = await self._connect()
        return filter_entities(await cache.list_entities(), filter_text)

    async def fields(self, entity: str) -> tuple[FieldMetadata, ...]:
        _, cache = await self._connect()
        try:
            return await cache.describe(entity)
        except Exception as exc:
            raise PreconditionError(f"Unable to load fields: {exc}") from exc

    async def _prepare(
        self,
        selection: SelectionSet,
        entity_filter: str | None,
    ) -> tuple[ProfileClient, list[BatchDetail]]:
        client, cache = await self._connect()
        try:
            catalog = await cache.list_entities()
        except Exception as exc:
            raise PreconditionError(f"Unable to load entities: {exc}") from exc

        targets = selection.entities
        if not targets:
            matched = match_entity(catalog, entity_filter)
            targets = [matched.name] if matched is not None else []
        if not targets:
            raise PreconditionError(NO_SELECTION)

        try:
            await cache.ensure_loaded(targets)
        except Exception as exc:
            raise PreconditionError(f"Unable to load fields: {exc}") from exc

        refs = selection.expand_pairs(
            cache.field_names(),
            include_all_when_empty=True,
            target_entities=targets,
        )
        if not refs:
            raise PreconditionError(NO_FIELDS)
        return client, build_batch_details(refs, cache)

    def _finish(self, results: list[ReportResult], tracker: _ProgressTracker) -> RunOutcome:
        report = build_report(results)
        self.store.store(report)
        outcome = RunOutcome(report=report, completed=tracker.completed, total=tracker.total)
        LOGGER.info("%s %s", outcome.status_message, outcome.progress_message)
        return outcome

    async def run_fill_rate(
        self,
        selection: SelectionSet,
        *,
        entity_filter: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> RunOutcome:
        with self._exclusive():
            client, details = await self._prepare(selection, entity_filter)
            tracker = _ProgressTracker(on_progress)
            results = await BatchOrchestrator(client).run(
                details, batch_size=self.batch_size, on_progress=tracker
            )
            return self._finish(list(results), tracker)

    async def run_distribution(
        self,
        selection: SelectionSet,
        *,
        entity_filter: str | None = None,
        include_timeline: bool = True,
        on_progress: ProgressCallback | None = None,
    ) -> RunOutcome:
        with self._exclusive():
            client, details = await self._prepare(selection, entity_filter)
            tracker = _ProgressTracker(on_progress)
            collector = DistributionCollector(client, include_timeline=include_timeline)
            results = await collector.run(details, on_progress=tracker)
            return self._finish(list(results), tracker)
