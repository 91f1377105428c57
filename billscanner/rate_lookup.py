"""Reference Rate Lookup for the Medical Bill Scanner.

This module resolves Medicare Physician Fee Schedule rates for a CPT code in
a locality. Rates come from:
- A remote rate service (optional, queried over HTTP with httpx)
- A static fallback table of common codes, injected at construction

Any failure of the remote service falls back to the static table without
surfacing an error. A code found in neither source is a normal "not found"
outcome and resolves to None.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

import httpx
import structlog
from pydantic import ValidationError

from billscanner.cpt_codes import get_cpt_code_info
from billscanner.exceptions import RateLookupUnavailable
from billscanner.localities import JurisdictionResolver
from libs.resilience import CircuitBreaker, CircuitBreakerConfig, CircuitBreakerError
from shared.schemas.schemas import PriceRange, ReferenceRate

logger = structlog.get_logger(__name__)

MPFS_SOURCE_URL = "https://www.cms.gov/medicare/payment/fee-schedules/physician"


@dataclass(frozen=True)
class FallbackRate:
    """Facility and non-facility payment amounts for one CPT code."""
    facility: float
    non_facility: float


# Approximate national amounts for the most common codes.
DEFAULT_FALLBACK_RATES: Mapping[str, FallbackRate] = MappingProxyType({
    "99213": FallbackRate(facility=85, non_facility=110),
    "99214": FallbackRate(facility=120, non_facility=140),
    "99215": FallbackRate(facility=175, non_facility=200),
    "80053": FallbackRate(facility=15, non_facility=25),
    "85027": FallbackRate(facility=12, non_facility=18),
    "70450": FallbackRate(facility=250, non_facility=280),
    "72141": FallbackRate(facility=500, non_facility=550),
    "71020": FallbackRate(facility=45, non_facility=65),
    "99284": FallbackRate(facility=300, non_facility=320),
    "99285": FallbackRate(facility=450, non_facility=500),
})


class FallbackRateTable:
    """Immutable, jurisdiction-insensitive table of reference rates."""

    def __init__(
        self,
        rates: Optional[Mapping[str, FallbackRate]] = None,
        year: int = 2024,
        effective_date: str = "2024-01-01",
        source_url: str = MPFS_SOURCE_URL,
    ):
        self._rates = MappingProxyType(dict(DEFAULT_FALLBACK_RATES if rates is None else rates))
        self.year = year
        self.effective_date = effective_date
        self.source_url = source_url

    def get(self, code: str) -> Optional[FallbackRate]:
        return self._rates.get(code)

    def __contains__(self, code: object) -> bool:
        return code in self._rates

    def __len__(self) -> int:
        return len(self._rates)

    @property
    def codes(self):
        return frozenset(self._rates)


class RemoteRateSource:
    """HTTP client for a Medicare rate service.

    Every failure (transport error, non-success status, undecodable payload,
    open circuit) is raised as RateLookupUnavailable.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        if client is None and not base_url:
            raise ValueError("RemoteRateSource needs a base_url or an httpx client")

        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._breaker = breaker or CircuitBreaker(
            "medicare_rate_api",
            CircuitBreakerConfig(expected_exceptions=(RateLookupUnavailable,)),
        )
        self.logger = logger.bind(component="remote_rate_source")

    async def fetch_rate(self, code: str, locality: str, region: str) -> ReferenceRate:
        """Fetch a rate record from GET /api/rates/medicare."""
        payload = await self._get_json(
            "/api/rates/medicare",
            {"cptCode": code, "locality": locality, "state": region},
        )
        try:
            return ReferenceRate.model_validate(payload)
        except ValidationError as e:
            raise RateLookupUnavailable(f"Invalid rate payload for CPT {code}: {e.error_count()} errors") from e

    async def fetch_private_insurance_range(self, code: str, zip_code: str) -> Optional[PriceRange]:
        """Fetch commercial payment percentiles from GET /api/rates/fair-health.

        Returns None when the service has no 80th percentile for the code.
        """
        payload = await self._get_json(
            "/api/rates/fair-health",
            {"cptCode": code, "zipCode": zip_code},
        )
        if not isinstance(payload, dict) or payload.get("percentile80") is None:
            return None
        try:
            return PriceRange(low=payload.get("percentile50") or 0, high=payload["percentile80"])
        except ValidationError as e:
            raise RateLookupUnavailable(f"Invalid percentile payload for CPT {code}") from e

    async def _get_json(self, path: str, params: Dict[str, str]) -> Any:
        try:
            response = await self._breaker.call(self._request, path, params)
        except CircuitBreakerError as e:
            raise RateLookupUnavailable(str(e)) from e

        if not response.is_success:
            raise RateLookupUnavailable(
                f"Rate service returned {response.status_code} for {path}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise RateLookupUnavailable(f"Rate service returned invalid JSON for {path}") from e

    async def _request(self, path: str, params: Dict[str, str]) -> httpx.Response:
        """Issue the request; only outages count against the circuit breaker."""
        try:
            response = await self._client.get(path, params=params)
        except httpx.HTTPError as e:
            raise RateLookupUnavailable(f"Rate service request failed: {e}") from e

        if response.status_code >= 500:
            raise RateLookupUnavailable(
                f"Rate service error {response.status_code}",
                status_code=response.status_code,
            )
        return response

    async def aclose(self) -> None:
        await self._client.aclose()


class ReferenceRateLookup:
    """Looks up reference rates, preferring the remote source when configured."""

    def __init__(
        self,
        fallback_table: FallbackRateTable,
        resolver: JurisdictionResolver,
        remote: Optional[RemoteRateSource] = None,
    ):
        """Initialize the rate lookup.

        Args:
            fallback_table: Static table used when the remote source is
                absent or unavailable
            resolver: Jurisdiction resolver used to name fallback localities
            remote: Optional remote rate service client
        """
        self.fallback_table = fallback_table
        self.resolver = resolver
        self.remote = remote
        self.logger = logger.bind(component="rate_lookup")

    async def get_rate(self, code: str, locality: str, region: str) -> Optional[ReferenceRate]:
        """Get the reference rate for a code in a locality, or None if not found."""
        if self.remote is not None:
            try:
                return await self.remote.fetch_rate(code, locality, region)
            except RateLookupUnavailable as e:
                self.logger.warning(
                    "Remote rate lookup unavailable, using fallback table",
                    cpt_code=code,
                    locality=locality,
                    error=str(e),
                )

        return self._fallback_rate(code, locality, region)

    async def get_private_insurance_range(
        self, code: str, zip_code: Optional[str]
    ) -> Optional[PriceRange]:
        """Get the commercial payment range for a code near a zip code."""
        if not zip_code or self.remote is None:
            return None
        try:
            return await self.remote.fetch_private_insurance_range(code, zip_code)
        except RateLookupUnavailable as e:
            self.logger.warning(
                "Private insurance range unavailable",
                cpt_code=code,
                zip_code=zip_code,
                error=str(e),
            )
            return None

    def _fallback_rate(self, code: str, locality: str, region: str) -> Optional[ReferenceRate]:
        rates = self.fallback_table.get(code)
        if rates is None:
            self.logger.info("No reference rate found", cpt_code=code, locality=locality)
            return None

        cpt_info = get_cpt_code_info(code)
        return ReferenceRate(
            cpt_code=code,
            description=cpt_info.description if cpt_info else f"CPT Code {code}",
            facility_rate=rates.facility,
            non_facility_rate=rates.non_facility,
            locality=locality,
            locality_name=self.resolver.locality_name(region, locality),
            year=self.fallback_table.year,
            effective_date=self.fallback_table.effective_date,
            source_url=self.fallback_table.source_url,
        )
