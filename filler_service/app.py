"""FastAPI entry point for the PDF filler service.

Endpoints:
- POST   /v1/extract            Extract filled values (cached, deduplicated)
- POST   /v1/fill-instructions  Map free-form data onto form fields
- POST   /v1/validate           Report filled and missing fields
- POST   /v1/fill               Write values into the form
- POST   /v1/fields             List AcroForm fields (no backend call)
- DELETE /v1/cache              Drop cached extractions
- GET    /liveness              Health check
- GET    /readiness             Backend auth, fallback and rate-budget state
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from filler_service.config import (
    FILLER_CORS_ALLOW_CREDENTIALS,
    FILLER_CORS_ALLOW_HEADERS,
    FILLER_CORS_ALLOW_METHODS,
    FILLER_CORS_ALLOW_ORIGINS,
    FILLER_LOG_LEVEL,
)
from filler_service.errors import (
    AuthRequired,
    DocumentNotFound,
    DocumentUnreadable,
    MalformedResponse,
    ModelRefused,
    OrchestrationError,
    QuotaExhausted,
    SubprocessFailed,
    Timeout,
)
from filler_service.logging_config import generate_request_id, setup_logging
from filler_service.models import (
    CacheInvalidateResponse,
    ExtractRequest,
    FieldDescriptorModel,
    FieldsRequest,
    FieldsResponse,
    FillInstructionModel,
    FillInstructionsRequest,
    FillInstructionsResponse,
    FillRequest,
    FillResponse,
    HealthResponse,
    ProviderStatus,
    ValidateRequest,
    ValidationResponse,
)
from filler_service.pipeline import Orchestrator, build_orchestrator
from filler_service.types import FillInstruction

logger = logging.getLogger(__name__)

_orchestrator: Orchestrator | None = None


def get_orchestrator() -> Orchestrator:
    """Dependency: the process-wide orchestrator, built on first use."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_orchestrator()
    return _orchestrator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: configure logging and report backend state on startup."""
    setup_logging(level=FILLER_LOG_LEVEL)
    status = await get_orchestrator().status()
    logger.info(
        "PDF filler service started (backend=%s, authenticated=%s)",
        status["selected"],
        status["authenticated"],
    )
    yield
    logger.info("PDF filler service stopped")


app = FastAPI(
    title="PDF Filler API",
    version="0.1.0",
    lifespan=lifespan,
)

# -- Rate limiting ------------------------------------------------------------

limiter = Limiter(key_func=get_remote_address, default_limits=["120/minute"])
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(status_code=429, content={"detail": "Rate limit exceeded"})


# -- Orchestration errors -----------------------------------------------------

_ERROR_STATUS: dict[type[OrchestrationError], int] = {
    AuthRequired: 401,
    DocumentNotFound: 404,
    ModelRefused: 422,
    DocumentUnreadable: 422,
    QuotaExhausted: 429,
    MalformedResponse: 502,
    SubprocessFailed: 502,
    Timeout: 504,
}


@app.exception_handler(OrchestrationError)
async def _orchestration_error_handler(request: Request, exc: OrchestrationError) -> JSONResponse:
    status_code = next(
        (code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)), 500
    )
    if status_code >= 500:
        logger.error("%s on %s: %s", exc.code, request.url.path, exc)
    else:
        logger.info("%s on %s: %s", exc.code, request.url.path, exc.message)
    headers: dict[str, str] = {}
    if isinstance(exc, QuotaExhausted) and exc.retry_after_s is not None:
        headers["Retry-After"] = str(max(1, int(exc.retry_after_s)))
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "error": exc.code},
        headers=headers,
    )


if FILLER_CORS_ALLOW_CREDENTIALS and "*" in FILLER_CORS_ALLOW_ORIGINS:
    raise RuntimeError("Invalid CORS config: wildcard origin cannot be combined with credentials=true")

app.add_middleware(
    CORSMiddleware,
    allow_origins=FILLER_CORS_ALLOW_ORIGINS,
    allow_credentials=FILLER_CORS_ALLOW_CREDENTIALS,
    allow_methods=FILLER_CORS_ALLOW_METHODS,
    allow_headers=FILLER_CORS_ALLOW_HEADERS,
    expose_headers=["X-Extract-Source", "X-Extract-Provider", "X-Request-Id"],
)


# -- Body size limit ----------------------------------------------------------

_MAX_BODY_BYTES = 1 * 1024 * 1024  # 1 MB; bodies carry paths and JSON, not PDFs


@app.middleware("http")
async def body_size_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Reject requests with bodies exceeding the size limit."""
    content_length = request.headers.get("content-length")
    if content_length is not None and int(content_length) > _MAX_BODY_BYTES:
        return JSONResponse(status_code=413, content={"detail": "Request body too large"})
    return await call_next(request)


# -- Request ID middleware ----------------------------------------------------


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Attach a unique request ID for trace correlation."""
    request_id = request.headers.get("x-request-id") or generate_request_id()
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["x-request-id"] = request_id
    return response


OrchestratorDep = Annotated[Orchestrator, Depends(get_orchestrator)]


# -- Health -------------------------------------------------------------------


@app.get("/liveness", response_model=HealthResponse)
async def liveness() -> HealthResponse:
    return HealthResponse(status="ok")


@app.get("/readiness", response_model=HealthResponse)
async def readiness(orchestrator: OrchestratorDep) -> HealthResponse:
    status = await orchestrator.status()
    providers = {name: ProviderStatus(**p) for name, p in status["providers"].items()}
    if not status["authenticated"]:
        return HealthResponse(
            status="degraded",
            error="No AI backend is authenticated",
            selected=status["selected"],
            providers=providers,
            cache=status["cache"],
        )
    return HealthResponse(
        status="ok",
        selected=status["selected"],
        providers=providers,
        cache=status["cache"],
    )


# -- Extraction ---------------------------------------------------------------


@app.post("/v1/extract")
@limiter.limit("30/minute")
async def extract(
    request: Request,
    body: ExtractRequest,
    orchestrator: OrchestratorDep,
) -> JSONResponse:
    """Extract filled values; concurrent requests for one file share one backend call."""
    result = await orchestrator.extract(
        body.file_path, body.template, force_refresh=body.force_refresh
    )
    return JSONResponse(
        content=result.document,
        headers={
            "X-Extract-Source": result.source,
            "X-Extract-Provider": result.provider,
        },
    )


@app.delete("/v1/cache", response_model=CacheInvalidateResponse)
async def invalidate_cache(
    orchestrator: OrchestratorDep,
    file_path: str | None = None,
) -> CacheInvalidateResponse:
    if file_path:
        removed = orchestrator.cache.invalidate_path(file_path)
    else:
        removed = orchestrator.cache.invalidate()
    return CacheInvalidateResponse(removed=removed)


# -- Fill ---------------------------------------------------------------------


@app.post("/v1/fill-instructions", response_model=FillInstructionsResponse)
@limiter.limit("30/minute")
async def fill_instructions(
    request: Request,
    body: FillInstructionsRequest,
    orchestrator: OrchestratorDep,
) -> FillInstructionsResponse:
    if not body.data:
        raise HTTPException(status_code=400, detail="data must not be empty")
    instructions = await orchestrator.generate_fill_instructions(body.file_path, body.data)
    return FillInstructionsResponse(
        instructions=[
            FillInstructionModel(field=i.field, value=i.value, type=i.kind) for i in instructions
        ]
    )


@app.post("/v1/fill", response_model=FillResponse)
@limiter.limit("30/minute")
async def fill(
    request: Request,
    body: FillRequest,
    orchestrator: OrchestratorDep,
) -> FillResponse:
    """Fill a form from direct values, explicit instructions, or free-form data."""
    if body.values is not None:
        report = await orchestrator.fill_values(
            body.file_path, body.output_path, body.values, password=body.password
        )
    elif body.instructions is not None or body.data:
        instructions = (
            [FillInstruction(field=i.field, value=i.value, kind=i.type) for i in body.instructions]
            if body.instructions is not None
            else None
        )
        report = await orchestrator.fill(
            body.file_path,
            body.output_path,
            data=body.data,
            instructions=instructions,
            password=body.password,
        )
    else:
        raise HTTPException(status_code=400, detail="Provide values, instructions or data")
    return FillResponse(output_path=report.output_path, filled=report.filled, failed=report.failed)


# -- Validation ---------------------------------------------------------------


@app.post("/v1/validate", response_model=ValidationResponse)
@limiter.limit("30/minute")
async def validate(
    request: Request,
    body: ValidateRequest,
    orchestrator: OrchestratorDep,
) -> ValidationResponse:
    report = await orchestrator.validate(body.file_path, body.required_fields)
    return ValidationResponse(
        is_valid=report.is_valid,
        missing_fields=report.missing_fields,
        filled_fields=report.filled_fields,
        all_fields=report.all_fields,
        summary=report.summary,
    )


# -- Fields -------------------------------------------------------------------


@app.post("/v1/fields", response_model=FieldsResponse)
async def list_fields(
    body: FieldsRequest,
    orchestrator: OrchestratorDep,
) -> FieldsResponse:
    descriptors = await orchestrator.fields(body.file_path, body.password)
    return FieldsResponse(
        fields=[
            FieldDescriptorModel(name=d.name, type=d.type, value=d.value, options=d.options)
            for d in descriptors
        ],
        total=len(descriptors),
    )

