"""
Recommendation Generator for the Medical Bill Scanner.
Maps a fairness tier to the actions suggested to the patient.
"""
from typing import Dict, List, Tuple

from shared.schemas.schemas import FairnessTier

RECOMMENDATIONS: Dict[FairnessTier, Tuple[str, ...]] = {
    FairnessTier.OVERPRICED: (
        "Request an itemized bill with CPT codes",
        "Ask the billing department for a billing review",
        "Contact patient financial services for assistance",
        "Consider filing an appeal with your insurance if applicable",
        "Request information about financial assistance programs",
    ),
    FairnessTier.ELEVATED: (
        "Request clarification on the billing charges",
        "Ask if there are any discounts or payment plans available",
    ),
    FairnessTier.FAIR: (
        "This charge appears to be within reasonable range",
    ),
}


def generate_recommendations(tier: FairnessTier) -> List[str]:
    """
    Return the suggested actions for a fairness tier, most important first.
    Always a fresh, non-empty list.
    """
    return list(RECOMMENDATIONS[tier])
