from __future__ import annotations


class ReportError(Exception):
    """Base error for opportunity reporting."""


class ReportDataError(ReportError):
    """Raised when the underlying rows could not be fetched."""

    def __init__(self, report_type: str, message: str = "Failed to fetch data") -> None:
        self.report_type = report_type
        super().__init__(message)
