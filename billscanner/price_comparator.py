"""
Price Comparison Engine for the Medical Bill Scanner

This module implements the core logic to compare a billed charge against its
Medicare Physician Fee Schedule rate and classify it into a fairness tier:

- FAIR:        charged <= 150% of the reference rate
- ELEVATED:    150% < charged <= 250%, and every charge that cannot be priced
- OVERPRICED:  charged > 250%

A missing rate never raises and never yields FAIR; the item is reported as
ELEVATED with a percentage of 0 so it stays visible in the report.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

import structlog

from billscanner.localities import JurisdictionResolver
from billscanner.rate_lookup import MPFS_SOURCE_URL, ReferenceRateLookup
from shared.schemas.schemas import (
    FairnessComparison,
    FairnessTier,
    PriceRange,
    ReferenceRate,
    SourceAttribution,
)

logger = structlog.get_logger(__name__)

SOURCE_NAME = "Medicare Physician Fee Schedule"

FAIR_THRESHOLD = 150
ELEVATED_THRESHOLD = 250

TIER_STATUS = {
    FairnessTier.FAIR: "Fair Price",
    FairnessTier.ELEVATED: "Elevated Price",
    FairnessTier.OVERPRICED: "Significantly Overpriced",
}

TIER_EXPLANATIONS = {
    FairnessTier.FAIR: (
        "This charge is within reasonable range compared to Medicare rates. "
        "Most private insurance plans pay 120-200% of Medicare rates."
    ),
    FairnessTier.ELEVATED: (
        "This charge is higher than typical but may be justified based on facility type, "
        "complexity, or regional factors. Consider requesting an itemized bill or billing review."
    ),
    FairnessTier.OVERPRICED: (
        "This charge is substantially higher than standard Medicare rates and significantly "
        "above typical private insurance payments. This may warrant investigation, negotiation, "
        "or dispute. You may want to request a billing review or contact the provider for clarification."
    ),
}

RATE_NOT_FOUND_EXPLANATION = "Unable to find standard Medicare rate for comparison."


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def percentage_of_reference(charged_amount: float, reference_rate: float) -> int:
    """Charged amount as a rounded percentage of the reference rate, 0 if unpriceable."""
    if reference_rate <= 0:
        return 0
    return round_half_up(charged_amount / reference_rate * 100)


def classify(percentage: int) -> FairnessTier:
    """Map a percentage of the reference rate to a fairness tier."""
    if percentage <= FAIR_THRESHOLD:
        return FairnessTier.FAIR
    if percentage <= ELEVATED_THRESHOLD:
        return FairnessTier.ELEVATED
    return FairnessTier.OVERPRICED


class PriceComparator:
    """Compares billed charges against Medicare reference rates."""

    def __init__(self, rate_lookup: ReferenceRateLookup, resolver: JurisdictionResolver):
        """Initialize the price comparator.

        Args:
            rate_lookup: Reference rate lookup (remote source with fallback table)
            resolver: Jurisdiction resolver used for attribution display names
        """
        self.rate_lookup = rate_lookup
        self.resolver = resolver
        self.logger = logger.bind(component="price_comparator")

    async def compare(
        self,
        code: str,
        charged_amount: float,
        locality: str,
        region: str,
        zip_code: Optional[str] = None,
    ) -> FairnessComparison:
        """Compare a charge against the reference rate for its CPT code.

        Args:
            code: CPT code of the billed service
            charged_amount: Amount billed
            locality: Medicare locality code
            region: State code
            zip_code: Optional provider zip code for the private insurance range

        Returns:
            FairnessComparison for the charge
        """
        reference = await self._lookup_rate(code, locality, region)
        if reference is None or reference.effective_rate <= 0:
            return self._unpriceable(code, charged_amount, locality, region)

        effective_rate = reference.effective_rate
        private_range = await self._lookup_private_range(code, zip_code) if zip_code else None

        percentage = percentage_of_reference(charged_amount, effective_rate)
        tier = classify(percentage)

        self.logger.debug(
            "Compared charge to reference rate",
            cpt_code=code,
            charged=charged_amount,
            reference_rate=effective_rate,
            percentage=percentage,
            tier=tier.value,
        )

        return FairnessComparison(
            tier=tier,
            status=TIER_STATUS[tier],
            explanation=TIER_EXPLANATIONS[tier],
            charged_amount=charged_amount,
            reference_rate=effective_rate,
            locality=locality,
            percentage_of_reference=percentage,
            private_insurance_range=private_range,
            source=SourceAttribution(
                name=SOURCE_NAME,
                year=str(reference.year),
                locality=reference.locality_name or self.resolver.locality_name(region, locality),
                reference=f"CMS-MPFS-{reference.year}-{code}-{locality}",
                url=MPFS_SOURCE_URL,
                last_updated=reference.effective_date,
            ),
        )

    async def _lookup_rate(self, code: str, locality: str, region: str) -> Optional[ReferenceRate]:
        try:
            return await self.rate_lookup.get_rate(code, locality, region)
        except Exception as e:
            self.logger.error("Rate lookup failed, treating as not found", cpt_code=code, error=str(e))
            return None

    async def _lookup_private_range(self, code: str, zip_code: str) -> Optional[PriceRange]:
        try:
            return await self.rate_lookup.get_private_insurance_range(code, zip_code)
        except Exception as e:
            self.logger.error("Private insurance lookup failed", cpt_code=code, error=str(e))
            return None

    def _unpriceable(
        self, code: str, charged_amount: float, locality: str, region: str
    ) -> FairnessComparison:
        self.logger.info("No usable reference rate", cpt_code=code, locality=locality)
        return FairnessComparison(
            tier=FairnessTier.ELEVATED,
            status=TIER_STATUS[FairnessTier.ELEVATED],
            explanation=RATE_NOT_FOUND_EXPLANATION,
            charged_amount=charged_amount,
            reference_rate=0,
            locality=locality,
            percentage_of_reference=0,
            source=SourceAttribution(
                name=SOURCE_NAME,
                year=str(self.rate_lookup.fallback_table.year),
                locality=self.resolver.locality_name(region, locality),
                reference=f"CPT-{code}-UNKNOWN",
                url=MPFS_SOURCE_URL,
            ),
        )
