"""
Medical Bill Scanner HTTP API

Endpoints:
- GET  /health                 service health
- POST /api/scan/analyze       analyze a photographed bill (multipart "image")
- POST /api/bills/analyze      analyze an already extracted bill record
- GET  /api/rates/medicare     reference rate lookup
- GET  /api/rates/fair-health  private insurance range lookup
- GET  /api/localities         Medicare localities of a state
- GET  /api/cpt-codes          common CPT code search
"""

import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from http import HTTPStatus
from typing import Dict, List, Optional

import structlog
from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from billscanner import __version__
from billscanner.bill_analyzer import BillAnalyzer
from billscanner.cpt_codes import search_cpt_codes
from billscanner.exceptions import ExtractionError, InvalidBillData, MalformedResponse
from billscanner.explanation_builder import build_explanation
from billscanner.extraction import OpenAIVisionExtractor, detect_image_type
from billscanner.localities import JurisdictionResolver
from billscanner.price_comparator import PriceComparator
from billscanner.rate_lookup import FallbackRateTable, ReferenceRateLookup, RemoteRateSource
from config.env_config import Config, check_required_config, get_config
from shared.schemas.schemas import (
    AnalysisReport,
    AnalysisResponse,
    BillRecord,
    ErrorResponse,
    HealthCheckResponse,
    PriceRange,
    ReferenceRate,
)

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)

PROBLEM_TYPES = {
    400: "https://tools.ietf.org/html/rfc7231#section-6.5.1",
    404: "https://tools.ietf.org/html/rfc7231#section-6.5.4",
    413: "https://tools.ietf.org/html/rfc7231#section-6.5.11",
    422: "https://tools.ietf.org/html/rfc4918#section-11.2",
    500: "https://tools.ietf.org/html/rfc7231#section-6.6.1",
    502: "https://tools.ietf.org/html/rfc7231#section-6.6.3",
}


@dataclass
class ScannerServices:
    """Service graph shared by all requests."""
    resolver: JurisdictionResolver
    rate_lookup: ReferenceRateLookup
    analyzer: BillAnalyzer
    extractor: Optional[OpenAIVisionExtractor] = None
    remote: Optional[RemoteRateSource] = None
    max_upload_bytes: int = 10 * 1024 * 1024

    async def aclose(self) -> None:
        if self.remote is not None:
            await self.remote.aclose()


def build_services(settings: Config) -> ScannerServices:
    """Wire the analysis pipeline from configuration."""
    resolver = JurisdictionResolver()
    fallback_table = FallbackRateTable(
        year=settings.reference_year,
        effective_date=settings.reference_effective_date,
    )
    remote = None
    if settings.rate_api_base_url:
        remote = RemoteRateSource(
            base_url=settings.rate_api_base_url,
            timeout=settings.rate_api_timeout_seconds,
        )
    rate_lookup = ReferenceRateLookup(fallback_table, resolver, remote=remote)
    extractor = OpenAIVisionExtractor(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        max_tokens=settings.openai_max_tokens,
    )
    analyzer = BillAnalyzer(PriceComparator(rate_lookup, resolver), resolver, extractor=extractor)

    return ScannerServices(
        resolver=resolver,
        rate_lookup=rate_lookup,
        analyzer=analyzer,
        extractor=extractor,
        remote=remote,
        max_upload_bytes=settings.max_upload_bytes,
    )


def get_services(request: Request) -> ScannerServices:
    return request.app.state.services


def get_request_id(request: Request) -> str:
    """Get request ID from request state."""
    return getattr(request.state, "request_id", str(uuid.uuid4()))


def with_explanation(report: AnalysisReport) -> AnalysisResponse:
    """Attach the Markdown and SSML explanations to a report."""
    markdown, ssml = build_explanation(report)
    return AnalysisResponse(**dict(report), explanation_markdown=markdown, explanation_ssml=ssml)


def _problem(request: Request, status: int, detail: str, errors: Optional[List[str]] = None) -> JSONResponse:
    body = ErrorResponse(
        type=PROBLEM_TYPES.get(status, "about:blank"),
        title=HTTPStatus(status).phrase,
        status=status,
        detail=detail,
        instance=str(request.url),
        request_id=get_request_id(request),
        errors=errors,
    )
    return JSONResponse(
        status_code=status,
        content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
        media_type="application/problem+json",
    )


def create_app(services: Optional[ScannerServices] = None, settings: Optional[Config] = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        services: Prebuilt service graph; built from configuration when omitted
        settings: Configuration used to build services and logging level
    """
    settings = settings or get_config()
    logging.basicConfig(level=settings.log_level, format="%(message)s")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Medical Bill Scanner API", version=__version__)
        owned = services is None
        if owned:
            check_required_config(settings)
        app.state.services = services or build_services(settings)
        yield
        if owned:
            await app.state.services.aclose()
        logger.info("Shutting down Medical Bill Scanner API")

    app = FastAPI(
        title="Medical Bill Scanner",
        description="Compares medical bill charges against Medicare reference pricing",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_request_id_header(request: Request, call_next):
        """Add unique request ID to all responses."""
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        logger.warning("HTTP exception occurred", status_code=exc.status_code, detail=exc.detail)
        return _problem(request, exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        ]
        logger.warning("Request validation failed", errors=errors)
        return _problem(request, 422, "Request validation failed", errors=errors)

    @app.exception_handler(InvalidBillData)
    async def invalid_bill_handler(request: Request, exc: InvalidBillData):
        return _problem(request, 422, str(exc), errors=exc.errors)

    @app.exception_handler(ExtractionError)
    async def extraction_error_handler(request: Request, exc: ExtractionError):
        logger.error(
            "Bill extraction failed",
            error=str(exc),
            malformed=isinstance(exc, MalformedResponse),
        )
        return _problem(request, 502, str(exc))

    @app.get("/health", response_model=HealthCheckResponse)
    async def health(services: ScannerServices = Depends(get_services)):
        extractor_ready = services.extractor is not None and services.extractor.is_configured
        return HealthCheckResponse(
            status="ok",
            version=__version__,
            dependencies={
                "extraction": "configured" if extractor_ready else "not_configured",
                "rate_source": "remote" if services.remote is not None else "fallback_table",
            },
        )

    @app.post("/api/scan/analyze", response_model=AnalysisResponse)
    async def scan_and_analyze(
        image: Optional[UploadFile] = File(None),
        services: ScannerServices = Depends(get_services),
    ):
        if image is None:
            raise HTTPException(status_code=400, detail="No image file provided")

        data = await image.read()
        if not data:
            raise HTTPException(status_code=400, detail="No image file provided")
        if len(data) > services.max_upload_bytes:
            raise HTTPException(
                status_code=413,
                detail=f"Image exceeds the {services.max_upload_bytes:,} byte limit",
            )

        content_type = detect_image_type(data)
        if content_type is None:
            raise HTTPException(status_code=400, detail="Unsupported image format")

        return with_explanation(await services.analyzer.analyze_image(data, content_type))

    @app.post("/api/bills/analyze", response_model=AnalysisResponse)
    async def analyze_bill(bill: BillRecord, services: ScannerServices = Depends(get_services)):
        return with_explanation(await services.analyzer.analyze(bill))

    @app.get("/api/rates/medicare", response_model=ReferenceRate)
    async def medicare_rate(
        cpt_code: Optional[str] = Query(None, alias="cptCode"),
        locality: Optional[str] = Query(None),
        state: Optional[str] = Query(None),
        services: ScannerServices = Depends(get_services),
    ):
        if not cpt_code or not locality or not state:
            raise HTTPException(
                status_code=400,
                detail="Missing required parameters: cptCode, locality, state",
            )
        rate = await services.rate_lookup.get_rate(cpt_code, locality, state.upper())
        if rate is None:
            raise HTTPException(status_code=404, detail="Rate not found")
        return rate

    @app.get("/api/rates/fair-health")
    async def fair_health_range(
        cpt_code: Optional[str] = Query(None, alias="cptCode"),
        zip_code: Optional[str] = Query(None, alias="zipCode"),
        services: ScannerServices = Depends(get_services),
    ):
        if not cpt_code or not zip_code:
            raise HTTPException(status_code=400, detail="Missing required parameters: cptCode, zipCode")
        price_range: Optional[PriceRange] = await services.rate_lookup.get_private_insurance_range(
            cpt_code, zip_code
        )
        return {
            "cptCode": cpt_code,
            "zipCode": zip_code,
            "low": price_range.low if price_range else None,
            "high": price_range.high if price_range else None,
        }

    @app.get("/api/localities", response_model=Dict[str, str])
    async def localities(
        state: Optional[str] = Query(None),
        services: ScannerServices = Depends(get_services),
    ):
        if not state:
            raise HTTPException(status_code=400, detail="Missing required parameter: state")
        state_localities = services.resolver.localities_for(state)
        if state_localities is None:
            raise HTTPException(status_code=404, detail="State not found")
        return state_localities

    @app.get("/api/cpt-codes")
    async def cpt_codes(search: str = Query("")):
        return [
            {"code": cpt.code, "description": cpt.description, "category": cpt.category}
            for cpt in search_cpt_codes(search)
        ]

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_config()
    uvicorn.run("billscanner.api:app", host=settings.host, port=settings.port, reload=settings.debug)
