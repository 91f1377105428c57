"""Summary Aggregator for bill analysis results."""

import math
from typing import Sequence

import structlog

from billscanner.price_comparator import round_half_up
from shared.schemas.schemas import (
    BillRecord,
    BillSummary,
    FairnessTier,
    LineItemAnalysis,
    PriceRange,
)

logger = structlog.get_logger(__name__)

# Fair price band per priced item, as multiples of the reference rate.
FAIR_PRICE_LOW_MULTIPLIER = 1.2
FAIR_PRICE_HIGH_MULTIPLIER = 2.0

# Overpriced charges count as overcharge only above this multiple of the rate.
REASONABLE_MAX_MULTIPLIER = 2.0


def summarize(bill: BillRecord, analyses: Sequence[LineItemAnalysis]) -> BillSummary:
    """Reduce per-item comparisons to bill-level totals.

    Sums go through math.fsum, which is exact before the final rounding, so
    the summary does not depend on the order of the analyses.

    Args:
        bill: Bill the analyses belong to; its total charges are reported as-is
        analyses: One analysis per line item

    Returns:
        BillSummary with tier counts, fair price band and potential overcharge
    """
    counts = {tier: 0 for tier in FairnessTier}
    overcharges = []
    fair_low = []
    fair_high = []

    for analysis in analyses:
        comparison = analysis.comparison
        reference_rate = comparison.reference_rate
        counts[comparison.tier] += 1

        if comparison.tier == FairnessTier.OVERPRICED:
            reasonable_max = reference_rate * REASONABLE_MAX_MULTIPLIER
            charge = analysis.line_item.charge_amount
            if charge > reasonable_max:
                overcharges.append(charge - reasonable_max)

        if reference_rate > 0:
            fair_low.append(reference_rate * FAIR_PRICE_LOW_MULTIPLIER)
            if comparison.private_insurance_range is not None:
                fair_high.append(comparison.private_insurance_range.high)
            else:
                fair_high.append(reference_rate * FAIR_PRICE_HIGH_MULTIPLIER)

    summary = BillSummary(
        total_charges=bill.total_charges,
        total_items=len(analyses),
        overpriced_count=counts[FairnessTier.OVERPRICED],
        elevated_count=counts[FairnessTier.ELEVATED],
        fair_count=counts[FairnessTier.FAIR],
        estimated_fair_price_range=PriceRange(
            low=round_half_up(math.fsum(fair_low)),
            high=round_half_up(math.fsum(fair_high)),
        ),
        potential_overcharges=round_half_up(math.fsum(overcharges)),
    )

    logger.info(
        "Summarized bill analysis",
        total_items=summary.total_items,
        overpriced=summary.overpriced_count,
        elevated=summary.elevated_count,
        fair=summary.fair_count,
        potential_overcharges=summary.potential_overcharges,
    )
    return summary
