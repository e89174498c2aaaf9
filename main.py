"""
Ledgerwise - FastAPI Backend

Transaction categorization and pattern learning.

Run Instructions:
-----------------
1. Install the package:
   pip install -e .

2. Run the app locally with uvicorn:
   uvicorn main:app --host 0.0.0.0 --port 8000 --reload

3. Test /health endpoint:
   curl http://localhost:8000/health

4. Categorize a transaction:
   curl -X POST http://localhost:8000/categorize \
     -H "Content-Type: application/json" \
     -d '{"transaction": {"description": "Fuel Purchase Pump #4", "vendor": "Shell", "amount": 52.10}}'
"""
import time

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from ledgerwise.api import categorization_router, corrections_router, learning_router
from ledgerwise.di.container import get_container
from ledgerwise.services.errors import LedgerwiseError
from ledgerwise.services.logging import log_error, log_request

app = FastAPI(
    title="Ledgerwise API",
    description="""
    Ledgerwise - Transaction Categorization & Pattern Learning

    ## Categorization
    - Two-stage categorization: pattern matching, then decision
    - Learned vendor patterns and explicit receipt evidence bypass the generative service
    - Every result carries a confidence score and a review flag

    ## Learning
    - User edits become an append-only correction log
    - Vendor, category and payment patterns are rebuilt from that log
    - Card payment types (Credit/Debit) learned from confirmations
    """,
    version="1.0.0",
)

app.include_router(categorization_router)
app.include_router(corrections_router)
app.include_router(learning_router)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log requests."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        client_id = request.client.host if request.client else "unknown"

        try:
            response = await call_next(request)
        except Exception as e:
            log_error("request_exception", str(e), {"path": request.url.path, "method": request.method})
            raise

        duration_ms = (time.time() - start_time) * 1000
        log_request(
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
            client_id=client_id,
        )
        return response


app.add_middleware(RequestLoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Global exception handler for LedgerwiseErrors
@app.exception_handler(LedgerwiseError)
async def ledgerwise_exception_handler(request: Request, exc: LedgerwiseError):
    """Handle all LedgerwiseErrors with structured responses."""
    log_error(exc.code.value, str(exc), {"path": request.url.path, **exc.context})
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
    )


@app.get(
    "/health",
    tags=["System"],
    summary="Health Check",
    description="Check API health and generative service configuration",
)
def health():
    """
    Health check endpoint.

    Reports whether a generative service is configured; categorization
    works without one, on deterministic rules only.
    """
    settings = get_container().settings()
    return {
        "status": "healthy",
        "version": "v1.0.0",
        "llm": settings.llm.to_dict(),
        "fallback_mode": not settings.llm.is_configured,
    }
