from __future__ import annotations

import json
import logging
import math
from collections.abc import Callable, Iterable, Sequence
from typing import Any, Protocol, TypeVar

from fillrate.config import MAX_COMPOSITE_BATCH_SIZE
from fillrate.errors import CompositeResponseError
from fillrate.metadata import MetadataCache, is_filterable
from fillrate.report.contracts import (
    SKIP_REASON_NO_METADATA,
    SKIP_REASON_NOT_FILTERABLE,
    BatchDetail,
    QueryPlan,
    QueryPlanOutcome,
    ResultEntry,
)
from fillrate.selection import FieldRef

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]
T = TypeVar("T")

MISSING_CARDINALITY_ERROR = "Query plan missing cardinality data."
MISSING_SUBRESPONSE_ERROR = "Missing response from composite batch."
UNKNOWN_ERROR = "Unknown error."
REFERENCE_ID_PREFIX = "plan"


class CompositeCaller(Protocol):
    def explain_url(self, entity: str, field: str) -> str: ...

    async def composite(self, subrequests: list[dict[str, Any]]) -> dict[str, Any]: ...


def chunked(items: Sequence[T], size: int) -> list[list[T]]:
    if size < 1:
        raise ValueError(f"chunk size must be >= 1, got {size!r}.")
    return [list(items[start : start + size]) for start in range(0, len(items), size)]


def build_batch_details(refs: Iterable[FieldRef], cache: MetadataCache) -> list[BatchDetail]:
    details: list[BatchDetail] = []
    for ref in refs:
        metadata = cache.field_metadata(ref.entity, ref.field)
        details.append(
            BatchDetail(
                entity=ref.entity,
                field=ref.field,
                key=ref.key,
                entity_label=cache.entity_label(ref.entity),
                field_label=metadata.label if metadata else ref.field,
                metadata=metadata,
            )
        )
    return details


def skip_reason(detail: BatchDetail) -> str | None:
    if detail.metadata is None:
        return SKIP_REASON_NO_METADATA
    if not is_filterable(detail.metadata):
        return SKIP_REASON_NOT_FILTERABLE
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_count(value: Any) -> bool:
    return _is_number(value) and math.isfinite(value) and value >= 0


def parse_plan(body: Any) -> QueryPlan | None:
    if not isinstance(body, dict):
        return None
    plans = body.get("plans")
    if not isinstance(plans, list) or not plans or not isinstance(plans[0], dict):
        return None
    cardinality = plans[0].get("cardinality")
    entity_cardinality = plans[0].get("sobjectCardinality")
    if not _is_count(cardinality) or not _is_count(entity_cardinality):
        return None
    return QueryPlan.from_counts(non_null_count=cardinality, total_count=entity_cardinality)


def extract_composite_error(body: Any) -> str:
    if not body:
        return UNKNOWN_ERROR
    if isinstance(body, str):
        return body
    if isinstance(body, list):
        first = body[0]
        if isinstance(first, dict) and first.get("message"):
            return str(first["message"])
        return json.dumps(first)
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return json.dumps(body)


def build_subrequests(
    chunk: Sequence[BatchDetail], caller: CompositeCaller
) -> list[dict[str, Any]]:
    return [
        {
            "method": "GET",
            "url": caller.explain_url(detail.entity, detail.field),
            "referenceId": f"{REFERENCE_ID_PREFIX}{index}",
        }
        for index, detail in enumerate(chunk)
    ]


def demultiplex(
    chunk: Sequence[BatchDetail], response: Any
) -> dict[str, QueryPlanOutcome]:
    """Map each composite sub-response back onto the detail that requested it.

    Sub-responses are matched by reference id and fall back to position; the
    positional fallback never replaces an outcome already matched by id.
    """
    if not isinstance(response, dict) or not isinstance(response.get("compositeResponse"), list):
        raise CompositeResponseError("Composite API did not return the expected response.")

    by_reference = {f"{REFERENCE_ID_PREFIX}{index}": detail for index, detail in enumerate(chunk)}
    outcomes: dict[str, QueryPlanOutcome] = {}
    for position, sub_response in enumerate(response["compositeResponse"]):
        if not isinstance(sub_response, dict):
            continue
        detail = by_reference.get(str(sub_response.get("referenceId")))
        if detail is None and position < len(chunk) and chunk[position].key not in outcomes:
            detail = chunk[position]
        if detail is None:
            continue

        status_code = sub_response.get("httpStatusCode")
        body = sub_response.get("body")
        if _is_number(status_code) and 200 <= status_code < 300:
            plan = parse_plan(body)
            outcomes[detail.key] = (
                QueryPlanOutcome(plan=plan)
                if plan is not None
                else QueryPlanOutcome(error=MISSING_CARDINALITY_ERROR)
            )
        else:
            outcomes[detail.key] = QueryPlanOutcome(error=extract_composite_error(body))
    return outcomes


def entry_for(detail: BatchDetail, outcome: QueryPlanOutcome | None) -> ResultEntry:
    if outcome is None:
        return ResultEntry.failed(detail, MISSING_SUBRESPONSE_ERROR)
    if outcome.plan is None:
        return ResultEntry.failed(detail, outcome.error or UNKNOWN_ERROR)
    try:
        return ResultEntry.success(detail, outcome.plan)
    except ValueError as exc:
        LOGGER.warning("Rejected query plan for %s: %s", detail.key, exc)
        return ResultEntry.failed(detail, MISSING_CARDINALITY_ERROR)


class BatchOrchestrator:
    """Run query-plan lookups for batch details, one composite call per chunk.

    Chunks are awaited strictly one after another, so at most ``batch_size``
    plan queries are in flight. A failed composite call turns every member of
    its chunk into an error entry and the run moves on to the next chunk.
    """

    def __init__(self, caller: CompositeCaller) -> None:
        self._caller = caller
        self.calls_issued = 0

    async def fetch_chunk(self, chunk: Sequence[BatchDetail]) -> dict[str, QueryPlanOutcome]:
        if not chunk:
            return {}
        self.calls_issued += 1
        response = await self._caller.composite(build_subrequests(chunk, self._caller))
        return demultiplex(chunk, response)

    async def run(
        self,
        details: Sequence[BatchDetail],
        batch_size: int = MAX_COMPOSITE_BATCH_SIZE,
        on_progress: ProgressCallback | None = None,
    ) -> list[ResultEntry]:
        results: list[ResultEntry] = []
        dispatchable: list[BatchDetail] = []
        for detail in details:
            reason = skip_reason(detail)
            if reason is None:
                dispatchable.append(detail)
            else:
                results.append(ResultEntry.skipped(detail, reason))

        total = len(dispatchable)
        completed = 0
        for index, chunk in enumerate(chunked(dispatchable, batch_size), start=1):
            try:
                outcomes = await self.fetch_chunk(chunk)
            except Exception as exc:
                LOGGER.exception("Composite batch %d failed", index)
                message = str(exc) or exc.__class__.__name__
                results.extend(ResultEntry.failed(detail, message) for detail in chunk)
            else:
                results.extend(entry_for(detail, outcomes.get(detail.key)) for detail in chunk)

            completed += len(chunk)
            LOGGER.info("Query plans: %d/%d completed.", completed, total)
            if on_progress is not None:
                on_progress(completed, total)
        return results
