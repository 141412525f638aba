from __future__ import annotations

import json
import logging
import time
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.openapi.utils import get_openapi
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from paritymark.apps.api.errors import (
    http_exception_handler,
    paritymark_error_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from paritymark.apps.api.response import API_VERSION, is_versioned_request, success_envelope
from paritymark.apps.api.routes.assessment import router as assessment_router
from paritymark.apps.api.routes.audit import router as audit_router
from paritymark.apps.api.routes.config import router as config_router
from paritymark.apps.api.routes.health import router as health_router
from paritymark.apps.api.routes.identity import router as identity_router
from paritymark.apps.api.routes.marking import router as marking_router
from paritymark.core.config import get_settings
from paritymark.core.errors import ParityMarkError
from paritymark.core.logging import configure_logging


logger = logging.getLogger(__name__)

_ENVELOPE_EXEMPT_PREFIXES = (
    "/v1/openapi.json",
    "/v1/docs",
)


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title="ParityMark API", version=API_VERSION, openapi_url=None, docs_url=None, redoc_url=None)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.info(
            "request_completed method=%s path=%s status=%s latency_ms=%.1f request_id=%s caller_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
            request_id,
            getattr(request.state, "caller_id", None),
        )
        # Wrap versioned JSON responses in the standardized success envelope.
        if (
            is_versioned_request(request)
            and not request.url.path.startswith(_ENVELOPE_EXEMPT_PREFIXES)
            and response.status_code < 400
            and response.headers.get("content-type", "").startswith("application/json")
        ):
            raw_body = getattr(response, "body", None)
            if raw_body is None:
                chunks = [chunk async for chunk in response.body_iterator]
                raw_body = b"".join(chunks)
            payload = None
            if raw_body:
                try:
                    payload = json.loads(raw_body)
                except (TypeError, ValueError):
                    payload = None
            wrapped_response = JSONResponse(
                content=success_envelope(request_id=request_id, data=payload),
                status_code=response.status_code,
            )
            for key, value in response.headers.items():
                if key.lower() in {"content-length", "content-type"}:
                    continue
                wrapped_response.headers[key] = value
            response = wrapped_response

        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(ParityMarkError)
    async def _paritymark_error_handler(request: Request, exc: ParityMarkError):
        return await paritymark_error_handler(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    # Mount versioned v1 API routes.
    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(identity_router, prefix=f"/{API_VERSION}")
    app.include_router(config_router, prefix=f"/{API_VERSION}")
    app.include_router(assessment_router, prefix=f"/{API_VERSION}")
    app.include_router(marking_router, prefix=f"/{API_VERSION}")
    # Audit trail reads for investigations; writes only happen inside the core.
    app.include_router(audit_router, prefix=f"/{API_VERSION}")

    # Serve versioned OpenAPI JSON and docs endpoints for v1 consumers.
    @app.get("/v1/openapi.json", include_in_schema=False)
    async def openapi_json() -> JSONResponse:
        return JSONResponse(app.openapi())

    @app.get("/v1/docs", include_in_schema=False)
    async def v1_docs() -> HTMLResponse:
        return get_swagger_ui_html(openapi_url="/v1/openapi.json", title="ParityMark API v1")

    @app.get("/docs", include_in_schema=False)
    async def docs_redirect() -> RedirectResponse:
        return RedirectResponse(url="/v1/docs")

    def custom_openapi() -> dict:
        # Document the caller identity headers supplied by the upstream IdP.
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(
            title="ParityMark API",
            version=API_VERSION,
            routes=app.routes,
        )
        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes["CallerIdentity"] = {
            "type": "apiKey",
            "in": "header",
            "name": settings.identity_external_id_header,
        }
        public_paths = {"/v1/health"}
        for path, operations in schema.get("paths", {}).items():
            if path in public_paths:
                continue
            for operation in operations.values():
                operation.setdefault("security", [{"CallerIdentity": []}])
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi  # type: ignore[method-assign]

    return app


app = create_app()
