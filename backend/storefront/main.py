"""FastAPI application entry point"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from storefront.core.config import settings
from storefront.core.errors import StorefrontError
from storefront.core.logging import setup_logging
from storefront.core import otel
from storefront.db.session import engine, init_db
from storefront.api import checkout, invoices, webhooks
from storefront.services.credentials import new_credential_cache

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown"""
    logger.info("Initializing database...")
    init_db()

    # Shared by every request; tenant secrets stay in process memory
    app.state.credential_cache = new_credential_cache()

    if otel.initialize_otel():
        otel.instrument_app(app, engine)
        logger.info("OpenTelemetry initialized")

    yield

    logger.info("Shutting down...")


app = FastAPI(
    title="Storefront Payments",
    description="Checkout, payment webhooks and invoice reconciliation for hosted shops",
    version="1.0.0",
    lifespan=lifespan
)

allowed_origins = [settings.FRONTEND_URL]
if settings.ENVIRONMENT == "development":
    allowed_origins.extend(["http://localhost:3000", "http://127.0.0.1:3000"])

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(checkout.router)
app.include_router(webhooks.router)
app.include_router(invoices.router)


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    """Return checkout and invoice errors as user-displayable messages"""
    logger.info(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.message})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )


# Prometheus metrics endpoint
@app.get("/metrics")
def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Health check endpoint
@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}
