"""
Explanation Builder for the Medical Bill Scanner
Renders analysis reports for display: flag glyphs, display ordering,
and Markdown/SSML summaries.
"""
from typing import Dict, List, Sequence, Tuple

from shared.schemas.schemas import AnalysisReport, FairnessTier, LineItemAnalysis

TIER_GLYPHS: Dict[FairnessTier, str] = {
    FairnessTier.FAIR: "🟢",
    FairnessTier.ELEVATED: "🟡",
    FairnessTier.OVERPRICED: "🔴",
}

DISPLAY_ORDER: Dict[FairnessTier, int] = {
    FairnessTier.OVERPRICED: 0,
    FairnessTier.ELEVATED: 1,
    FairnessTier.FAIR: 2,
}


def tier_glyph(tier: FairnessTier) -> str:
    return TIER_GLYPHS[tier]


def sort_for_display(analyses: Sequence[LineItemAnalysis]) -> List[LineItemAnalysis]:
    """Overpriced items first, then elevated, then fair; higher percentage first within a tier."""
    return sorted(
        analyses,
        key=lambda a: (DISPLAY_ORDER[a.comparison.tier], -a.comparison.percentage_of_reference),
    )


def filter_by_tier(analyses: Sequence[LineItemAnalysis], tier: FairnessTier) -> List[LineItemAnalysis]:
    return [a for a in analyses if a.comparison.tier == tier]


def build_explanation(report: AnalysisReport) -> Tuple[str, str]:
    """
    Generate Markdown and SSML explanations for an analysis report.
    Returns (markdown, ssml)
    """
    summary = report.summary
    fair_range = summary.estimated_fair_price_range

    if summary.overpriced_count == 0 and summary.elevated_count == 0:
        md = (
            "**Result:** 🟢 All charges appear reasonable compared to Medicare rates.\n\n"
            f"- **Provider:** {report.bill.provider.name}\n"
            f"- **Total Charges:** ${summary.total_charges:,.2f}\n"
            f"- **Estimated Fair Price:** ${fair_range.low:,.0f} - ${fair_range.high:,.0f}\n"
        )
        ssml = (
            "<speak>"
            "All charges appear reasonable compared to Medicare rates. "
            f"Total charges are ${summary.total_charges:,.2f}."
            "</speak>"
        )
        return md, ssml

    md = (
        f"**Result:** {'🔴' if summary.overpriced_count else '🟡'} "
        f"{summary.overpriced_count + summary.elevated_count} of {summary.total_items} "
        "charges need a closer look.\n\n"
        f"- **Provider:** {report.bill.provider.name}\n"
        f"- **Total Charges:** ${summary.total_charges:,.2f}\n"
        f"- **Estimated Fair Price:** ${fair_range.low:,.0f} - ${fair_range.high:,.0f}\n"
        f"- **Potential Overcharges:** ${summary.potential_overcharges:,}\n"
        f"- **Flags:** 🔴 {summary.overpriced_count} · 🟡 {summary.elevated_count} · 🟢 {summary.fair_count}\n\n"
    )
    for i, analysis in enumerate(sort_for_display(report.line_items), 1):
        comparison = analysis.comparison
        item = analysis.line_item
        code = item.cpt_code or "no CPT code"
        md += (
            f"{i}. {tier_glyph(comparison.tier)} **{item.description or code}** ({code}): "
            f"${comparison.charged_amount:,.2f}"
        )
        if comparison.percentage_of_reference:
            md += f", {comparison.percentage_of_reference}% of Medicare (${comparison.reference_rate:,.2f})"
        md += f" — {comparison.status}\n"
    md += "\nRequest an itemized bill and a billing review for any flagged charges."

    ssml = (
        "<speak>"
        f"{summary.overpriced_count} "
        f"{'charge appears' if summary.overpriced_count == 1 else 'charges appear'} "
        "significantly overpriced and "
        f"{summary.elevated_count} appear elevated. "
        f"Total charges are ${summary.total_charges:,.2f}. "
    )
    overpriced = filter_by_tier(sort_for_display(report.line_items), FairnessTier.OVERPRICED)
    if overpriced:
        worst = overpriced[0]
        ssml += (
            f"The highest is {worst.line_item.description or worst.line_item.cpt_code}, "
            f"at {worst.comparison.percentage_of_reference} percent of the Medicare rate. "
        )
    if summary.potential_overcharges:
        ssml += f"Potential overcharges are about ${summary.potential_overcharges:,}. "
    ssml += "Please review the flagged items. </speak>"
    return md, ssml
