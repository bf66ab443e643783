"""Commerce FastAPI application.

Web server that processes commands synchronously via HTTP. Every request
for a commerce route runs inside the commerce domain context.

Usage:
    uvicorn app:app --app-dir src --host 0.0.0.0 --port 8000 --reload
"""

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# The domain is initialized at module level so uvicorn workers share it.
# PROTEAN_ENV selects the config overlay (staging, production).
from commerce.domain import commerce  # noqa: E402
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

commerce.init()

_DOMAIN_PREFIXES = ("/payments", "/orders", "/licenses", "/refunds", "/cancellations", "/admin")


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Commerce API",
    description="Payments, fulfillment, refunds and order automation",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the commerce domain context for domain routes."""
    if request.url.path.startswith(_DOMAIN_PREFIXES):
        with commerce.domain_context():
            response = await call_next(request)
        return response
    # Health check, docs, etc.
    return await call_next(request)


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from commerce.api import (  # noqa: E402
    admin_router,
    cancellation_router,
    license_router,
    order_router,
    payment_router,
    refund_router,
    register_error_handlers,
)

app.include_router(payment_router)
app.include_router(order_router)
app.include_router(license_router)
app.include_router(refund_router)
app.include_router(cancellation_router)
app.include_router(admin_router)
register_error_handlers(app)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return JSONResponse(content={"status": "ok", "domain": {"name": commerce.name}})
