"""
Unit tests for ReferenceRateLookup and RemoteRateSource.

Tests cover:
- Static fallback table lookups
- Remote rate service over httpx.MockTransport
- Fallback on 404, 5xx, transport errors and bad payloads
- Private insurance percentiles
- Circuit breaker integration
"""

import httpx
import pytest

from billscanner.exceptions import RateLookupUnavailable
from billscanner.localities import JurisdictionResolver
from billscanner.rate_lookup import (
    DEFAULT_FALLBACK_RATES,
    MPFS_SOURCE_URL,
    FallbackRate,
    FallbackRateTable,
    ReferenceRateLookup,
    RemoteRateSource,
)
from libs.resilience import CircuitBreaker, CircuitBreakerConfig, CircuitBreakerState
from shared.schemas.schemas import PriceRange

REMOTE_RATE = {
    "cptCode": "99213",
    "description": "Office visit, established patient, low complexity",
    "facilityRate": 95.5,
    "nonFacilityRate": 130.25,
    "locality": "01",
    "localityName": "Los Angeles",
    "year": 2025,
    "effectiveDate": "2025-01-01",
}


def make_remote(handler, breaker=None) -> RemoteRateSource:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://rates.test")
    return RemoteRateSource(client=client, breaker=breaker)


@pytest.fixture
def resolver():
    return JurisdictionResolver()


@pytest.fixture
def fallback_table():
    return FallbackRateTable()


class TestFallbackRateTable:
    def test_default_codes(self, fallback_table):
        assert len(fallback_table) == 10
        assert fallback_table.codes == frozenset(DEFAULT_FALLBACK_RATES)
        assert fallback_table.get("99213") == FallbackRate(facility=85, non_facility=110)
        assert "99999" not in fallback_table

    def test_injected_rates_are_copied(self):
        rates = {"G0001": FallbackRate(facility=10, non_facility=12)}
        table = FallbackRateTable(rates, year=2023, effective_date="2023-01-01")
        rates["G0002"] = FallbackRate(facility=1, non_facility=1)

        assert table.codes == frozenset({"G0001"})
        assert table.year == 2023

    def test_table_is_read_only(self, fallback_table):
        with pytest.raises(TypeError):
            fallback_table._rates["99213"] = FallbackRate(facility=1, non_facility=1)


class TestFallbackLookup:
    @pytest.mark.asyncio
    async def test_known_code(self, fallback_table, resolver):
        lookup = ReferenceRateLookup(fallback_table, resolver)

        rate = await lookup.get_rate("99213", "01", "CA")

        assert rate.cpt_code == "99213"
        assert rate.description == "Office visit, established patient, low complexity"
        assert rate.facility_rate == 85
        assert rate.non_facility_rate == 110
        assert rate.effective_rate == 110
        assert rate.locality == "01"
        assert rate.locality_name == "Los Angeles"
        assert rate.year == 2024
        assert rate.effective_date == "2024-01-01"
        assert rate.source_url == MPFS_SOURCE_URL

    @pytest.mark.asyncio
    async def test_fallback_is_jurisdiction_insensitive(self, fallback_table, resolver):
        lookup = ReferenceRateLookup(fallback_table, resolver)

        ca = await lookup.get_rate("72141", "01", "CA")
        tx = await lookup.get_rate("72141", "99", "TX")

        assert ca.effective_rate == tx.effective_rate == 550
        assert tx.locality_name == "Rest of Texas"

    @pytest.mark.asyncio
    async def test_uncatalogued_code_description(self, resolver):
        table = FallbackRateTable({"G0001": FallbackRate(facility=10, non_facility=12)})
        lookup = ReferenceRateLookup(table, resolver)

        rate = await lookup.get_rate("G0001", "99", "TX")

        assert rate.description == "CPT Code G0001"

    @pytest.mark.asyncio
    async def test_unknown_code(self, fallback_table, resolver):
        lookup = ReferenceRateLookup(fallback_table, resolver)

        assert await lookup.get_rate("12345", "01", "CA") is None

    @pytest.mark.asyncio
    async def test_configured_year(self, resolver):
        table = FallbackRateTable(year=2025, effective_date="2025-01-01")
        lookup = ReferenceRateLookup(table, resolver)

        rate = await lookup.get_rate("99214", "01", "CA")

        assert rate.year == 2025
        assert rate.effective_date == "2025-01-01"


class TestRemoteLookup:
    @pytest.mark.asyncio
    async def test_remote_rate_preferred(self, fallback_table, resolver):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=REMOTE_RATE)

        lookup = ReferenceRateLookup(fallback_table, resolver, remote=make_remote(handler))

        rate = await lookup.get_rate("99213", "01", "CA")

        assert rate.effective_rate == 130.25
        assert rate.year == 2025
        assert seen[0].url.path == "/api/rates/medicare"
        assert dict(seen[0].url.params) == {"cptCode": "99213", "locality": "01", "state": "CA"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [404, 500, 503])
    async def test_error_status_falls_back(self, fallback_table, resolver, status_code):
        def handler(request):
            return httpx.Response(status_code, json={"error": "Rate not found"})

        lookup = ReferenceRateLookup(fallback_table, resolver, remote=make_remote(handler))

        rate = await lookup.get_rate("99213", "01", "CA")

        assert rate.effective_rate == 110
        assert rate.year == 2024

    @pytest.mark.asyncio
    async def test_transport_error_falls_back(self, fallback_table, resolver):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        lookup = ReferenceRateLookup(fallback_table, resolver, remote=make_remote(handler))

        rate = await lookup.get_rate("80053", "01", "CA")

        assert rate.effective_rate == 25

    @pytest.mark.asyncio
    async def test_invalid_json_falls_back(self, fallback_table, resolver):
        def handler(request):
            return httpx.Response(200, content=b"<html>maintenance</html>")

        lookup = ReferenceRateLookup(fallback_table, resolver, remote=make_remote(handler))

        rate = await lookup.get_rate("99213", "01", "CA")

        assert rate.effective_rate == 110

    @pytest.mark.asyncio
    async def test_invalid_payload_falls_back(self, fallback_table, resolver):
        def handler(request):
            return httpx.Response(200, json={"cptCode": "99213"})

        lookup = ReferenceRateLookup(fallback_table, resolver, remote=make_remote(handler))

        rate = await lookup.get_rate("99213", "01", "CA")

        assert rate.effective_rate == 110

    @pytest.mark.asyncio
    async def test_unknown_everywhere(self, fallback_table, resolver):
        def handler(request):
            return httpx.Response(404, json={"error": "Rate not found"})

        lookup = ReferenceRateLookup(fallback_table, resolver, remote=make_remote(handler))

        assert await lookup.get_rate("12345", "01", "CA") is None

    @pytest.mark.asyncio
    async def test_remote_source_raises_unavailable(self):
        def handler(request):
            return httpx.Response(502)

        remote = make_remote(handler)

        with pytest.raises(RateLookupUnavailable) as exc_info:
            await remote.fetch_rate("99213", "01", "CA")
        assert exc_info.value.status_code == 502

    def test_remote_source_requires_endpoint(self):
        with pytest.raises(ValueError):
            RemoteRateSource()


class TestCircuitBreaker:
    @pytest.mark.asyncio
    async def test_open_circuit_skips_remote(self, fallback_table, resolver):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        breaker = CircuitBreaker(
            "test_rates",
            CircuitBreakerConfig(failure_threshold=2, expected_exceptions=(RateLookupUnavailable,)),
        )
        lookup = ReferenceRateLookup(fallback_table, resolver, remote=make_remote(handler, breaker))

        for _ in range(4):
            rate = await lookup.get_rate("99213", "01", "CA")
            assert rate.effective_rate == 110

        assert len(calls) == 2
        assert breaker.state == CircuitBreakerState.OPEN
        assert breaker.total_rejections == 2

    @pytest.mark.asyncio
    async def test_not_found_does_not_trip_breaker(self, fallback_table, resolver):
        def handler(request):
            return httpx.Response(404)

        breaker = CircuitBreaker(
            "test_rates",
            CircuitBreakerConfig(failure_threshold=1, expected_exceptions=(RateLookupUnavailable,)),
        )
        lookup = ReferenceRateLookup(fallback_table, resolver, remote=make_remote(handler, breaker))

        await lookup.get_rate("99213", "01", "CA")
        await lookup.get_rate("99213", "01", "CA")

        assert breaker.state == CircuitBreakerState.CLOSED
        assert breaker.total_failures == 0


class TestPrivateInsuranceRange:
    @pytest.mark.asyncio
    async def test_percentiles(self, fallback_table, resolver):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"percentile50": 150, "percentile80": 240})

        lookup = ReferenceRateLookup(fallback_table, resolver, remote=make_remote(handler))

        price_range = await lookup.get_private_insurance_range("99213", "90048")

        assert price_range == PriceRange(low=150, high=240)
        assert seen[0].url.path == "/api/rates/fair-health"
        assert dict(seen[0].url.params) == {"cptCode": "99213", "zipCode": "90048"}

    @pytest.mark.asyncio
    async def test_missing_80th_percentile(self, fallback_table, resolver):
        def handler(request):
            return httpx.Response(200, json={"percentile50": 150, "percentile80": None})

        lookup = ReferenceRateLookup(fallback_table, resolver, remote=make_remote(handler))

        assert await lookup.get_private_insurance_range("99213", "90048") is None

    @pytest.mark.asyncio
    async def test_missing_50th_percentile(self, fallback_table, resolver):
        def handler(request):
            return httpx.Response(200, json={"percentile80": 240})

        lookup = ReferenceRateLookup(fallback_table, resolver, remote=make_remote(handler))

        assert await lookup.get_private_insurance_range("99213", "90048") == PriceRange(low=0, high=240)

    @pytest.mark.asyncio
    async def test_no_zip_does_not_call_remote(self, fallback_table, resolver):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"percentile50": 150, "percentile80": 240})

        lookup = ReferenceRateLookup(fallback_table, resolver, remote=make_remote(handler))

        assert await lookup.get_private_insurance_range("99213", None) is None
        assert await lookup.get_private_insurance_range("99213", "") is None
        assert calls == []

    @pytest.mark.asyncio
    async def test_no_remote(self, fallback_table, resolver):
        lookup = ReferenceRateLookup(fallback_table, resolver)

        assert await lookup.get_private_insurance_range("99213", "90048") is None

    @pytest.mark.asyncio
    async def test_failure_is_absorbed(self, fallback_table, resolver):
        def handler(request):
            return httpx.Response(500)

        lookup = ReferenceRateLookup(fallback_table, resolver, remote=make_remote(handler))

        assert await lookup.get_private_insurance_range("99213", "90048") is None
