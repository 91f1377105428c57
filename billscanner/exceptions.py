"""
Exception hierarchy for the bill scanner.

Only two kinds of failure ever reach a caller of the analysis pipeline:
an invalid bill record and an extraction failure. Rate lookup problems are
absorbed by the lookup layer and never surface.
"""

from typing import List, Optional


class BillScannerError(Exception):
    """Base class for all bill scanner errors."""


class InvalidBillData(BillScannerError):
    """Raised when an extracted bill is missing fields required for analysis."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(f"Invalid bill data: {', '.join(self.errors)}")


class RateLookupUnavailable(BillScannerError):
    """Raised by a remote rate source that could not produce an answer."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ExtractionError(BillScannerError):
    """Base class for failures at the extraction service boundary."""


class ExtractionFailed(ExtractionError):
    """The extraction service could not be reached or returned an error."""


class MalformedResponse(ExtractionError):
    """The extraction service answered with data that is not a bill record."""
