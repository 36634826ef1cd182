from __future__ import annotations

import asyncio
from pathlib import Path

import typer

from fillrate.config import DEFAULT_CONFIG_PATH, AppConfig, load_config
from fillrate.errors import FillRateError
from fillrate.io.report_store import load_report
from fillrate.logging import configure_logging
from fillrate.metadata import EntitySummary, FieldMetadata
from fillrate.pipeline.run_all import ProfileRunner, RunOutcome
from fillrate.report.render import render_report
from fillrate.report.view import ReportView
from fillrate.selection import FieldRef, SelectionSet

app = typer.Typer(no_args_is_help=True, add_completion=False)


def _load_app_config(config_path: Path) -> AppConfig:
    return load_config(config_path)


def _build_runner(cfg: AppConfig) -> ProfileRunner:
    return ProfileRunner.from_config(cfg)


def _build_selection(cfg: AppConfig, entities: list[str], fields: list[str]) -> SelectionSet:
    selection = SelectionSet.from_mapping(cfg.selection.entities, cfg.selection.fields)
    selection.add_entities(entities)
    refs = []
    for value in fields:
        ref = FieldRef.parse(value)
        if ref is None:
            raise typer.BadParameter(f"Expected Entity:Field, got {value!r}.", param_hint="--field")
        refs.append(ref)
    selection.add_entities(ref.entity for ref in refs)
    selection.add_fields(refs)
    return selection


def _fail(exc: Exception) -> typer.Exit:
    typer.echo(f"Error: {exc}", err=True)
    return typer.Exit(code=1)


async def _list_entities(cfg: AppConfig, filter_text: str | None) -> list[EntitySummary]:
    runner = _build_runner(cfg)
    try:
        return await runner.entities(filter_text)
    finally:
        await runner.aclose()


async def _describe_entity(cfg: AppConfig, entity: str) -> tuple[FieldMetadata, ...]:
    runner = _build_runner(cfg)
    try:
        return await runner.fields(entity)
    finally:
        await runner.aclose()


async def _run_and_render(
    cfg: AppConfig,
    selection: SelectionSet,
    out: Path,
    *,
    distribution: bool,
    entity_filter: str | None,
    include_timeline: bool,
    sort_key: str | None,
    descending: bool,
) -> tuple[RunOutcome, Path]:
    runner = _build_runner(cfg)
    try:
        if distribution:
            outcome = await runner.run_distribution(
                selection,
                entity_filter=entity_filter,
                include_timeline=include_timeline,
            )
        else:
            outcome = await runner.run_fill_rate(selection, entity_filter=entity_filter)
    finally:
        await runner.aclose()

    view = ReportView(runner.store)
    view.load(outcome.report_id)
    if sort_key:
        view.sort_by(sort_key)
        if descending:
            view.sort_by(sort_key)
    report_path = view.render(
        out,
        charts=cfg.charts,
        tables_format=cfg.outputs.tables_format,
        figures_format=cfg.outputs.figures_format,
        run_summary=f"{outcome.status_message} {outcome.progress_message}",
    )
    return outcome, report_path


@app.command()
def entities(
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, exists=True, readable=True, resolve_path=True),
    filter_text: str | None = typer.Option(
        None, "--filter", help="Case-insensitive substring matched against name or label."
    ),
) -> None:
    """List queryable entities."""
    configure_logging()
    cfg = _load_app_config(config)
    try:
        catalog = asyncio.run(_list_entities(cfg, filter_text))
    except FillRateError as exc:
        raise _fail(exc) from exc
    for entity in catalog:
        typer.echo(entity.display_key)
    typer.echo(f"{len(catalog)} entities.")


@app.command()
def fields(
    entity: str = typer.Argument(..., help="Entity API name."),
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, exists=True, readable=True, resolve_path=True),
) -> None:
    """Describe the fields of one entity."""
    configure_logging()
    cfg = _load_app_config(config)
    try:
        described = asyncio.run(_describe_entity(cfg, entity))
    except FillRateError as exc:
        raise _fail(exc) from exc
    for field in described:
        typer.echo(f"{field.name}\t{field.label}\t{field.type or ''}")
    typer.echo(f"{len(described)} fields.")


@app.command()
def profile(
    out: Path = typer.Option(Path("out"), resolve_path=True),
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, exists=True, readable=True, resolve_path=True),
    entity: list[str] = typer.Option([], "--entity", help="Entity to profile (all fields)."),
    field: list[str] = typer.Option([], "--field", help="Field to profile, as Entity:Field."),
    entity_filter: str | None = typer.Option(
        None, "--filter", help="Entity name or label used when nothing is selected."
    ),
    sort: str | None = typer.Option(None, help="Initial sort column."),
    descending: bool = typer.Option(False, help="Sort descending."),
) -> None:
    """Measure non-null fill rates from query-plan cardinality estimates."""
    configure_logging()
    cfg = _load_app_config(config)
    selection = _build_selection(cfg, entity, field)
    try:
        outcome, report_path = asyncio.run(
            _run_and_render(
                cfg,
                selection,
                out,
                distribution=False,
                entity_filter=entity_filter or cfg.selection.entity_filter,
                include_timeline=False,
                sort_key=sort,
                descending=descending,
            )
        )
    except (FillRateError, ValueError) as exc:
        raise _fail(exc) from exc
    typer.echo(f"{outcome.status_message} {outcome.progress_message} Report: {report_path}")


@app.command()
def distribution(
    out: Path = typer.Option(Path("out"), resolve_path=True),
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, exists=True, readable=True, resolve_path=True),
    entity: list[str] = typer.Option([], "--entity", help="Entity to profile (all fields)."),
    field: list[str] = typer.Option([], "--field", help="Field to profile, as Entity:Field."),
    entity_filter: str | None = typer.Option(
        None, "--filter", help="Entity name or label used when nothing is selected."
    ),
    timeline: bool = typer.Option(True, help="Also collect monthly value counts."),
    sort: str | None = typer.Option(None, help="Initial sort column."),
    descending: bool = typer.Option(False, help="Sort descending."),
) -> None:
    """Collect value distributions, optionally with a monthly timeline."""
    configure_logging()
    cfg = _load_app_config(config)
    selection = _build_selection(cfg, entity, field)
    try:
        outcome, report_path = asyncio.run(
            _run_and_render(
                cfg,
                selection,
                out,
                distribution=True,
                entity_filter=entity_filter or cfg.selection.entity_filter,
                include_timeline=timeline,
                sort_key=sort,
                descending=descending,
            )
        )
    except (FillRateError, ValueError) as exc:
        raise _fail(exc) from exc
    typer.echo(f"{outcome.status_message} {outcome.progress_message} Report: {report_path}")


@app.command()
def render(
    payload: Path = typer.Argument(..., exists=True, readable=True, resolve_path=True),
    out: Path = typer.Option(Path("out"), resolve_path=True),
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, exists=True, readable=True, resolve_path=True),
    sort: str | None = typer.Option(None, help="Initial sort column."),
    descending: bool = typer.Option(False, help="Sort descending."),
) -> None:
    """Render a report from a JSON payload of summary or distribution results."""
    configure_logging()
    cfg = _load_app_config(config)
    try:
        report = load_report(payload)
    except (FillRateError, ValueError) as exc:
        raise _fail(exc) from exc
    report_path = render_report(
        report,
        out,
        sort_key=sort,
        sort_direction="desc" if descending else "asc",
        charts=cfg.charts,
        tables_format=cfg.outputs.tables_format,
        figures_format=cfg.outputs.figures_format,
    )
    typer.echo(f"Rendered {report.mode} report with {len(report.results)} results: {report_path}")


if __name__ == "__main__":
    app()
