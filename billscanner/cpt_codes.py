"""
Catalog of common CPT codes.

Covers the office visits, emergency visits, labs, imaging and minor
procedures that appear most often on patient bills. Used to describe
fallback rates and to back the code search endpoint.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass(frozen=True)
class CPTCode:
    """Descriptive metadata for a CPT code."""
    code: str
    description: str
    category: str
    long_description: Optional[str] = None


def _catalog(*codes: CPTCode) -> Dict[str, CPTCode]:
    return {cpt.code: cpt for cpt in codes}


COMMON_CPT_CODES: Dict[str, CPTCode] = _catalog(
    # Office visits
    CPTCode(
        "99213",
        "Office visit, established patient, low complexity",
        "Office/Outpatient Visit",
        "Office or other outpatient visit for the evaluation and management of an established patient",
    ),
    CPTCode(
        "99214",
        "Office visit, established patient, moderate complexity",
        "Office/Outpatient Visit",
        "Office or other outpatient visit for the evaluation and management of an established patient",
    ),
    CPTCode("99215", "Office visit, established patient, high complexity", "Office/Outpatient Visit"),
    CPTCode("99203", "Office visit, new patient, low complexity", "Office/Outpatient Visit"),
    CPTCode("99204", "Office visit, new patient, moderate complexity", "Office/Outpatient Visit"),
    CPTCode("99205", "Office visit, new patient, high complexity", "Office/Outpatient Visit"),
    # Emergency department
    CPTCode("99284", "Emergency department visit, moderate severity", "Emergency Department"),
    CPTCode("99285", "Emergency department visit, high severity", "Emergency Department"),
    # Laboratory
    CPTCode("80053", "Comprehensive metabolic panel", "Laboratory"),
    CPTCode("85027", "Complete blood count (CBC) with automated differential", "Laboratory"),
    CPTCode("80061", "Lipid panel", "Laboratory"),
    CPTCode("81001", "Urinalysis, automated", "Laboratory"),
    CPTCode("85610", "Prothrombin time (PT)", "Laboratory"),
    # Radiology
    CPTCode("70450", "CT head without contrast", "Radiology"),
    CPTCode("72141", "MRI lumbar spine without contrast", "Radiology"),
    CPTCode("71020", "Chest X-ray, 2 views", "Radiology"),
    CPTCode("76700", "Ultrasound, abdominal, complete", "Radiology"),
    CPTCode("73060", "X-ray, knee, 3 views", "Radiology"),
    # Procedures
    CPTCode("12001", "Simple repair of superficial wounds, face/ears/eyelids", "Surgery"),
    CPTCode("36415", "Routine venipuncture for collection of specimen", "Surgery"),
    CPTCode("93000", "Electrocardiogram, routine ECG with at least 12 leads", "Cardiology"),
    CPTCode("45378", "Colonoscopy, flexible, diagnostic", "Gastroenterology"),
    CPTCode("29881", "Knee arthroscopy, surgical, with meniscectomy", "Orthopedic Surgery"),
)


def get_cpt_code_info(code: str) -> Optional[CPTCode]:
    """Get catalog metadata for a CPT code."""
    return COMMON_CPT_CODES.get((code or "").strip())


def search_cpt_codes(search_term: str) -> List[CPTCode]:
    """Search the catalog by code, description or category (case-insensitive)."""
    term = (search_term or "").strip().lower()
    return [
        cpt for cpt in COMMON_CPT_CODES.values()
        if term in cpt.code.lower()
        or term in cpt.description.lower()
        or term in cpt.category.lower()
    ]
