"""
Medical Bill Scanner - price-fairness analysis of US medical bills.

This package provides:
- Medicare locality resolution and reference rate lookup
- Per-charge fairness classification against the Physician Fee Schedule
- Bill-level summaries with estimated fair price and potential overcharges
- Vision-model bill extraction and a FastAPI web service
"""

__version__ = "1.0.0"

from .bill_analyzer import BillAnalyzer
from .exceptions import (
    BillScannerError,
    ExtractionError,
    ExtractionFailed,
    InvalidBillData,
    MalformedResponse,
)
from .price_comparator import PriceComparator

__all__ = [
    "BillAnalyzer",
    "PriceComparator",
    "BillScannerError",
    "InvalidBillData",
    "ExtractionError",
    "ExtractionFailed",
    "MalformedResponse",
]
