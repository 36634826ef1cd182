from __future__ import annotations

import asyncio

import pytest

from fillrate.config import AppConfig
from fillrate.errors import PreconditionError, RemoteAPIError, RunInProgressError
from fillrate.pipeline.run_all import NO_FIELDS, NO_SELECTION, NO_SESSION, ProfileRunner
from fillrate.selection import FieldRef, SelectionSet


def _runner(sessions, client) -> ProfileRunner:
    return ProfileRunner(sessions, client_factory=lambda _session: client)


@pytest.mark.asyncio
async def test_missing_session_is_a_precondition_error(make_sessions, fake_client) -> None:
    runner = _runner(make_sessions(None), fake_client)

    with pytest.raises(PreconditionError, match=NO_SESSION):
        await runner.run_fill_rate(SelectionSet.from_mapping(["Account"]))

    assert fake_client.composite_calls == []
    assert not runner.active


@pytest.mark.asyncio
async def test_empty_selection_without_matching_filter_is_rejected(sessions, fake_client) -> None:
    runner = _runner(sessions, fake_client)

    with pytest.raises(PreconditionError, match=NO_SELECTION):
        await runner.run_fill_rate(SelectionSet(), entity_filter="acc")

    assert fake_client.describe_calls == []


@pytest.mark.asyncio
async def test_exact_filter_match_profiles_every_field_of_that_entity(
    sessions, fake_client
) -> None:
    runner = _runner(sessions, fake_client)
    progress: list[tuple[int, int]] = []

    outcome = await runner.run_fill_rate(
        SelectionSet(),
        entity_filter="ACCOUNT",
        on_progress=lambda done, total: progress.append((done, total)),
    )

    fields = [result.field for result in outcome.report.results]
    assert fields == ["Description", "Name", "Industry"]
    assert outcome.report.results[0].status.startswith("Skipped: ")
    assert outcome.report.results[1].entity_label == "Account (Account)"
    assert outcome.report.results[1].field_label == "Account Name"
    assert len(fake_client.composite_calls) == 1
    assert progress == [(2, 2)]
    assert outcome.status_message == "Processed 3 field(s)."
    assert outcome.progress_message == "Completed 2/2 API calls."
    assert runner.store.fetch(outcome.report_id) is outcome.report


@pytest.mark.asyncio
async def test_selected_fields_limit_the_run(sessions, make_client) -> None:
    client = make_client(cardinality={"Contact:Email": (0, 0)})
    runner = _runner(sessions, client)
    selection = SelectionSet()
    selection.add_entities(["Contact"])
    selection.add_fields([FieldRef("Contact", "Email")])

    outcome = await runner.run_fill_rate(selection)

    [entry] = outcome.report.results
    assert entry.field == "Email"
    assert entry.non_null_percentage == 0.0
    assert client.describe_calls == ["Contact"]


@pytest.mark.asyncio
async def test_only_skipped_fields_reports_no_api_calls(sessions, fake_client) -> None:
    runner = _runner(sessions, fake_client)
    selection = SelectionSet.from_mapping(["Contact"], {"Contact": ["MailingAddress"]})

    outcome = await runner.run_fill_rate(selection)

    assert fake_client.composite_calls == []
    assert outcome.total == 0
    assert outcome.progress_message == "Completed with skipped fields only."


@pytest.mark.asyncio
async def test_describe_failure_aborts_before_any_composite_call(sessions, make_client) -> None:
    client = make_client(describes={"Account": RemoteAPIError(503, "unavailable")})
    runner = _runner(sessions, client)

    with pytest.raises(PreconditionError, match="Unable to load fields: API error \\(503\\)"):
        await runner.run_fill_rate(SelectionSet.from_mapping(["Account"]))

    assert client.composite_calls == []


@pytest.mark.asyncio
async def test_entity_without_fields_is_rejected(sessions, make_client) -> None:
    client = make_client(describes={"Account": {"fields": []}})
    runner = _runner(sessions, client)

    with pytest.raises(PreconditionError, match=NO_FIELDS):
        await runner.run_fill_rate(SelectionSet.from_mapping(["Account"]))


@pytest.mark.asyncio
async def test_second_run_while_active_is_rejected(sessions, make_client) -> None:
    gate = asyncio.Event()
    client = make_client(gate=gate)
    runner = _runner(sessions, client)
    selection = SelectionSet.from_mapping(["Account"], {"Account": ["Name"]})

    first = asyncio.create_task(runner.run_fill_rate(selection))
    while not client.composite_calls:
        await asyncio.sleep(0)

    assert runner.active
    with pytest.raises(RunInProgressError):
        await runner.run_fill_rate(selection)

    gate.set()
    outcome = await first
    assert outcome.report.results[0].is_success
    assert not runner.active


@pytest.mark.asyncio
async def test_distribution_run_produces_distribution_report(sessions, make_client) -> None:
    client = make_client(
        query_results={"GROUP BY Industry ORDER BY": [{"val": "Tech", "cnt": 4}]}
    )
    runner = _runner(sessions, client)
    selection = SelectionSet.from_mapping(["Account"], {"Account": ["Industry"]})

    outcome = await runner.run_distribution(selection, include_timeline=False)

    assert outcome.report.mode == "distribution"
    [result] = outcome.report.results
    assert result.record_count == 4.0
    assert result.rows[0].percentage == 1.0
    assert outcome.progress_message == "Completed 1/1 API calls."


@pytest.mark.asyncio
async def test_metadata_is_reused_across_runs_and_clients_close(sessions, fake_client) -> None:
    runner = _runner(sessions, fake_client)
    selection = SelectionSet.from_mapping(["Account"], {"Account": ["Name"]})

    await runner.run_fill_rate(selection)
    await runner.run_fill_rate(selection)
    await runner.aclose()

    assert fake_client.describe_calls == ["Account"]
    assert fake_client.closed


def test_from_config_uses_batch_and_connection_settings() -> None:
    config = AppConfig.model_validate(
        {
            "connection": {"instance_url": "https://example.my.test", "access_token": "t"},
            "batch": {"batch_size": 2},
        }
    )

    runner = ProfileRunner.from_config(config)

    assert runner.batch_size == 2
    assert runner.context_url == "https://example.my.test"


@pytest.mark.asyncio
async def test_from_config_without_credentials_has_no_session() -> None:
    runner = ProfileRunner.from_config(AppConfig())

    with pytest.raises(PreconditionError, match=NO_SESSION):
        await runner.entities()
