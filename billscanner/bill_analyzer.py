"""
Bill Analysis Orchestrator for the Medical Bill Scanner

This module validates an extracted bill, resolves its Medicare locality once,
compares every line item against reference pricing and assembles the final
AnalysisReport.
"""

import asyncio
from datetime import datetime, timezone
from typing import List, Optional

import structlog

from billscanner.exceptions import ExtractionFailed, InvalidBillData
from billscanner.extraction import BillExtractor
from billscanner.localities import JurisdictionResolver
from billscanner.price_comparator import TIER_STATUS, PriceComparator
from billscanner.recommendations import generate_recommendations
from billscanner.summary import summarize
from shared.schemas.schemas import (
    AnalysisReport,
    BillRecord,
    FairnessComparison,
    FairnessTier,
    Jurisdiction,
    LineItem,
    LineItemAnalysis,
    SourceAttribution,
)

logger = structlog.get_logger(__name__)

MISSING_CODE_EXPLANATION = (
    "Unable to compare - CPT code not found on bill. Request an itemized bill "
    "with CPT codes for accurate pricing analysis."
)
MISSING_CODE_SOURCE = "N/A - Code Missing"


def validate_bill_record(bill: BillRecord) -> List[str]:
    """Check the fields required for analysis.

    Returns:
        Every violated requirement; empty when the bill can be analyzed
    """
    errors = []
    if not bill.provider.name.strip():
        errors.append("Provider name is required")
    if not bill.provider.state.strip():
        errors.append("Provider state is required for rate comparison")
    if not bill.line_items:
        errors.append("At least one procedure is required")
    if not bill.date_of_service:
        errors.append("Date of service is required")
    return errors


class BillAnalyzer:
    """Runs the full price-fairness analysis of a bill."""

    def __init__(
        self,
        comparator: PriceComparator,
        resolver: JurisdictionResolver,
        extractor: Optional[BillExtractor] = None,
    ):
        """Initialize the analyzer.

        Args:
            comparator: Price comparator used for every coded line item
            resolver: Jurisdiction resolver for the provider's locality
            extractor: Optional bill extractor for image analysis
        """
        self.comparator = comparator
        self.resolver = resolver
        self.extractor = extractor
        self.logger = logger.bind(component="bill_analyzer")

    async def analyze(self, bill: BillRecord) -> AnalysisReport:
        """Analyze a bill record.

        Line items are compared concurrently; the report lists them in bill
        order.

        Raises:
            InvalidBillData: If required fields are missing. Nothing is
                compared in that case.
        """
        errors = validate_bill_record(bill)
        if errors:
            self.logger.warning("Bill failed validation", errors=errors)
            raise InvalidBillData(errors)

        region = bill.provider.state.strip().upper()
        jurisdiction = self.resolver.resolve(region, bill.provider.city or bill.provider.zip)

        self.logger.info(
            "Starting bill analysis",
            provider=bill.provider.name,
            state=region,
            locality=jurisdiction.locality_code,
            line_items=len(bill.line_items),
        )

        analyses = await asyncio.gather(
            *(self._analyze_line_item(item, jurisdiction, bill.provider.zip) for item in bill.line_items)
        )

        report = AnalysisReport(
            bill=bill,
            line_items=list(analyses),
            summary=summarize(bill, analyses),
            generated_at=datetime.now(timezone.utc),
        )
        self.logger.info(
            "Bill analysis complete",
            overpriced=report.summary.overpriced_count,
            potential_overcharges=report.summary.potential_overcharges,
        )
        return report

    async def analyze_image(self, image: bytes, content_type: Optional[str] = None) -> AnalysisReport:
        """Extract a bill from an image, then analyze it.

        Raises:
            ExtractionFailed: If no extractor is configured or extraction failed
            MalformedResponse: If the extractor answered with unusable data
            InvalidBillData: If the extracted bill is incomplete
        """
        if self.extractor is None:
            raise ExtractionFailed("No bill extractor configured")

        bill = await self.extractor.extract(image, content_type)
        return await self.analyze(bill)

    async def _analyze_line_item(
        self, item: LineItem, jurisdiction: Jurisdiction, zip_code: str
    ) -> LineItemAnalysis:
        if not item.cpt_code:
            # Unpriced items get no recommendations.
            return LineItemAnalysis(
                line_item=item,
                comparison=self._missing_code_comparison(item, jurisdiction),
            )

        comparison = await self.comparator.compare(
            item.cpt_code,
            item.charge_amount,
            jurisdiction.locality_code,
            jurisdiction.region_code,
            zip_code or None,
        )
        return LineItemAnalysis(
            line_item=item,
            comparison=comparison,
            recommendations=generate_recommendations(comparison.tier),
        )

    def _missing_code_comparison(self, item: LineItem, jurisdiction: Jurisdiction) -> FairnessComparison:
        return FairnessComparison(
            tier=FairnessTier.ELEVATED,
            status=TIER_STATUS[FairnessTier.ELEVATED],
            explanation=MISSING_CODE_EXPLANATION,
            charged_amount=item.charge_amount,
            reference_rate=0,
            locality=jurisdiction.locality_code,
            percentage_of_reference=0,
            source=SourceAttribution(
                name=MISSING_CODE_SOURCE,
                year=str(self.comparator.rate_lookup.fallback_table.year),
                locality="N/A",
                reference="N/A",
            ),
        )
