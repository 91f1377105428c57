"""
Pydantic schemas for the Medical Bill Scanner.

This module defines the bill record produced by the extraction service, the
reference-rate records consumed by the price comparator, and the analysis
report returned to callers. Field aliases follow the camelCase contract of the
extraction service and the HTTP API; snake_case names are accepted too.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Any

from pydantic import BaseModel, Field, field_validator
from pydantic.config import ConfigDict


class FairnessTier(str, Enum):
    """Fairness classification of a billed charge."""
    FAIR = "fair"                # <= 150% of the reference rate
    ELEVATED = "elevated"        # 150-250%, or unpriceable
    OVERPRICED = "overpriced"    # > 250% of the reference rate


class _Schema(BaseModel):
    """Immutable base model accepting both alias and field names."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class Provider(_Schema):
    """Billing provider as printed on the bill."""

    name: str = Field(default="", description="Provider or facility name")
    address: str = Field(default="", description="Street address")
    city: str = Field(default="", description="City")
    state: str = Field(
        default="",
        description="Two-letter state code used to resolve the Medicare locality",
        examples=["CA"],
    )
    zip: str = Field(default="", description="Postal code")
    npi: Optional[str] = Field(default=None, description="National Provider Identifier")

    @field_validator("npi", mode="before")
    @classmethod
    def _normalize_npi(cls, value):
        return _blank_to_none(value)


class Patient(_Schema):
    """Patient details as printed on the bill."""

    name: str = Field(default="", description="Patient name")
    account_number: Optional[str] = Field(default=None, alias="accountNumber")
    date_of_birth: Optional[str] = Field(default=None, alias="dateOfBirth")

    @field_validator("account_number", "date_of_birth", mode="before")
    @classmethod
    def _normalize_optional(cls, value):
        return _blank_to_none(value)


class LineItem(_Schema):
    """A single billed service. A missing CPT code is a normal case."""

    description: str = Field(default="", description="Service description")
    cpt_code: Optional[str] = Field(
        default=None,
        alias="cptCode",
        description="Five character CPT/HCPCS procedure code",
        examples=["99213"],
    )
    icd10_code: Optional[str] = Field(default=None, alias="icd10Code", description="ICD-10 diagnosis code")
    quantity: float = Field(default=1, ge=0)
    charge_amount: float = Field(default=0.0, alias="chargeAmount", ge=0, description="Billed amount in USD")
    units: float = Field(default=1, ge=0)
    date_of_service: Optional[str] = Field(default=None, alias="dateOfService")

    @field_validator("cpt_code", "icd10_code", "date_of_service", mode="before")
    @classmethod
    def _strip_codes(cls, value):
        value = _blank_to_none(value)
        if isinstance(value, str):
            return value.strip()
        return value


class InsuranceInfo(_Schema):
    payer_name: Optional[str] = Field(default=None, alias="payerName")
    policy_number: Optional[str] = Field(default=None, alias="policyNumber")


class BillRecord(_Schema):
    """Structured bill produced once by the extraction service."""

    provider: Provider = Field(default_factory=Provider)
    patient: Patient = Field(default_factory=Patient)
    date_of_service: Optional[str] = Field(default=None, alias="dateOfService", examples=["2024-03-14"])
    line_items: List[LineItem] = Field(
        default_factory=list,
        alias="procedures",
        description="Billed services in the order they appear on the bill",
    )
    total_charges: float = Field(default=0.0, alias="totalCharges", ge=0)
    insurance_payment: Optional[float] = Field(default=None, alias="insurancePayment")
    adjustments: Optional[float] = Field(default=None)
    patient_responsibility: Optional[float] = Field(default=None, alias="patientResponsibility")
    insurance_info: Optional[InsuranceInfo] = Field(default=None, alias="insuranceInfo")

    @field_validator("date_of_service", mode="before")
    @classmethod
    def _normalize_date(cls, value):
        return _blank_to_none(value)


class Jurisdiction(_Schema):
    """Medicare pricing locality resolved for a bill."""

    region_code: str = Field(..., alias="stateCode")
    locality_code: str = Field(..., alias="localityCode")
    display_name: str = Field(..., alias="localityName")


class ReferenceRate(_Schema):
    """Medicare Physician Fee Schedule rate for a procedure in a locality."""

    cpt_code: str = Field(..., alias="cptCode")
    description: str = Field(default="")
    facility_rate: Optional[float] = Field(default=None, alias="facilityRate", ge=0)
    non_facility_rate: Optional[float] = Field(default=None, alias="nonFacilityRate", ge=0)
    locality: str = Field(..., description="Locality code")
    locality_name: str = Field(default="", alias="localityName")
    year: int = Field(..., description="Fee schedule year")
    effective_date: str = Field(..., alias="effectiveDate")
    source_url: Optional[str] = Field(default=None, alias="sourceUrl")

    @property
    def effective_rate(self) -> float:
        """Non-facility rate when present and positive, else facility rate, else 0."""
        if self.non_facility_rate:
            return self.non_facility_rate
        return self.facility_rate or 0.0


class PriceRange(_Schema):
    low: float = Field(..., ge=0)
    high: float = Field(..., ge=0)


class SourceAttribution(_Schema):
    """Where a comparison's reference figure came from."""

    name: str
    year: str
    locality: str = Field(..., description="Locality display name")
    reference: str
    url: Optional[str] = None
    last_updated: Optional[str] = Field(default=None, alias="lastUpdated")


class FairnessComparison(_Schema):
    """Outcome of comparing one billed charge to its reference rate."""

    tier: FairnessTier
    status: str = Field(..., examples=["Fair Price"])
    explanation: str
    charged_amount: float = Field(..., alias="chargedAmount", ge=0)
    reference_rate: float = Field(
        ...,
        alias="medicareRate",
        ge=0,
        description="Resolved reference rate, 0 when the item could not be priced",
    )
    locality: str = Field(..., alias="medicareLocality", description="Locality code used")
    percentage_of_reference: int = Field(
        ...,
        alias="percentageOfMedicare",
        ge=0,
        description="Charged amount as a rounded percentage of the reference rate",
    )
    private_insurance_range: Optional[PriceRange] = Field(default=None, alias="privateInsuranceRange")
    source: SourceAttribution


class LineItemAnalysis(_Schema):
    line_item: LineItem = Field(..., alias="procedure")
    comparison: FairnessComparison
    recommendations: Optional[List[str]] = None


class BillSummary(_Schema):
    """Bill-level totals derived from the per-item comparisons."""

    total_charges: float = Field(..., alias="totalCharges")
    total_items: int = Field(..., alias="totalItems", ge=0)
    overpriced_count: int = Field(..., alias="redFlags", ge=0)
    elevated_count: int = Field(..., alias="yellowFlags", ge=0)
    fair_count: int = Field(..., alias="greenFlags", ge=0)
    estimated_fair_price_range: PriceRange = Field(..., alias="estimatedFairPriceRange")
    potential_overcharges: int = Field(..., alias="potentialOvercharges", ge=0)

    @property
    def tier_counts(self) -> Dict[FairnessTier, int]:
        return {
            FairnessTier.OVERPRICED: self.overpriced_count,
            FairnessTier.ELEVATED: self.elevated_count,
            FairnessTier.FAIR: self.fair_count,
        }


class AnalysisReport(_Schema):
    """Terminal artifact of a bill analysis."""

    bill: BillRecord = Field(..., alias="extractedData")
    line_items: List[LineItemAnalysis] = Field(..., alias="procedures")
    summary: BillSummary
    generated_at: datetime = Field(..., alias="generatedAt")


class AnalysisResponse(AnalysisReport):
    """Analysis report as returned by the API, with rendered explanations."""

    explanation_markdown: str = Field(default="", description="Markdown explanation", alias="explanationMarkdown")
    explanation_ssml: str = Field(default="", description="SSML explanation", alias="explanationSsml")


class HealthCheckResponse(BaseModel):
    """Health check response model."""

    status: str = Field(..., description="Service health status", examples=["ok"])
    version: str = Field(..., description="Service version")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    dependencies: Optional[Dict[str, str]] = Field(
        default=None,
        description="Configuration state of external collaborators",
    )


class ErrorResponse(BaseModel):
    """RFC 7807 problem details body."""

    model_config = ConfigDict(populate_by_name=True)

    type: str = Field(..., description="URI identifying the problem type")
    title: str = Field(..., description="Human-readable summary of the problem")
    status: int = Field(..., description="HTTP status code")
    detail: Optional[str] = Field(None, description="Human-readable explanation specific to this occurrence")
    instance: Optional[str] = Field(None, description="URI identifying the specific occurrence")
    request_id: Optional[str] = Field(None, alias="requestId")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    errors: Optional[List[str]] = Field(None, description="Individual validation failures")
