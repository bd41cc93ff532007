"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ticketauth.api.errors import register_exception_handlers
from ticketauth.api.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware
from ticketauth.api.pipeline import run_request_pipeline
from ticketauth.api.routes import approvals, audit, auth, event_staff, invites, metrics, roles
from ticketauth.core.config import get_settings
from ticketauth.core.database import AsyncSessionLocal
from ticketauth.core.structured_logging import configure_logging
from ticketauth.core.system_account import load_system_account
from ticketauth.services.identity_directory import KeycloakDirectory

APP_VERSION = "1.0.0"

settings = get_settings()
docs_enabled = settings.api_docs_enabled
if docs_enabled is None:
    docs_enabled = settings.environment != "production"


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    # Refuse to start without the SYSTEM account; audit records need an actor.
    async with AsyncSessionLocal() as session:
        app.state.system_account = await load_system_account(session)
    app.state.directory = KeycloakDirectory.from_settings(settings)
    try:
        yield
    finally:
        await app.state.directory.aclose()


app = FastAPI(
    title="TicketAuth API",
    description="Authorization and account lifecycle API for event ticketing",
    version=APP_VERSION,
    docs_url="/api/docs" if docs_enabled else None,
    redoc_url="/api/redoc" if docs_enabled else None,
    openapi_url="/api/openapi.json" if docs_enabled else None,
    lifespan=lifespan,
    # Every route, including ones added later, runs behind the access pipeline.
    dependencies=[Depends(run_request_pipeline)],
)

register_exception_handlers(app)

# Middleware configuration (order matters - applied in reverse order)
# 1. Request logging (outermost - logs all requests)
app.add_middleware(RequestLoggingMiddleware)

# 2. Security headers
app.add_middleware(SecurityHeadersMiddleware)

# 3. CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/api/info")
async def service_info():
    return {"name": "ticketauth", "version": APP_VERSION, "environment": settings.environment}


app.include_router(auth.router, prefix="/api/v1/auth", tags=["auth"])
app.include_router(invites.router, prefix="/api/v1/invites", tags=["invites"])
app.include_router(approvals.router, prefix="/api/v1/admin/approvals", tags=["approvals"])
app.include_router(roles.router, prefix="/api/v1/admin", tags=["roles"])
app.include_router(event_staff.router, prefix="/api/v1/events", tags=["event-staff"])
app.include_router(audit.router, prefix="/api/v1/audit", tags=["audit"])
app.include_router(metrics.router, prefix="/api", tags=["metrics"])
