from __future__ import annotations


class FillRateError(Exception):
    """Base class for errors raised by fillrate."""


class PreconditionError(FillRateError):
    """A run cannot start: no session, no selections, or metadata failed to load."""


class RunInProgressError(PreconditionError):
    """A run for the same runner is already active."""


class RemoteAPIError(FillRateError):
    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"API error ({status_code}): {body}")
        self.status_code = status_code
        self.body = body


class CompositeResponseError(FillRateError):
    """The composite endpoint answered without a usable sub-response list."""


class EmptyReportError(FillRateError):
    """There is nothing to report."""


class ReportNotFoundError(FillRateError, KeyError):
    def __init__(self, report_id: str) -> None:
        super().__init__(report_id)
        self.report_id = report_id

    def __str__(self) -> str:
        return f"Report not found: {self.report_id}"
