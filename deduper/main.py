"""Main FastAPI application"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from starlette.requests import Request

from deduper.api import submit, webhook
from deduper.config import settings
from deduper.errors import AuthenticationError, ValidationError
from deduper.models.base import SessionLocal, init_db
from deduper.scheduler import SweepScheduler
from deduper.security import WebhookAuthenticator
from deduper.services.credentials import CredentialManager, InstallationTokenAuth, read_private_key
from deduper.services.github_client import GitHubClient
from deduper.services.reconciler import ReconciliationEngine

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    logger.info("Starting Issue Deduper")
    init_db()

    credentials = CredentialManager(
        app_id=settings.github_app_id,
        private_key=read_private_key(settings.github_private_key_file),
        organization=settings.github_organization,
        base_url=settings.github_api_url,
    )
    client = GitHubClient(
        settings.github_repository,
        InstallationTokenAuth(credentials),
        base_url=settings.github_api_url,
    )
    reconciler = ReconciliationEngine(SessionLocal, client, settings)
    sweeps = SweepScheduler(reconciler, run_on_start=settings.sweep_on_startup)

    app.state.engine = reconciler
    app.state.webhook_authenticator = WebhookAuthenticator(lambda: settings.github_webhook_secret)

    sweeps.start()
    yield
    # Shutdown
    logger.info("Stopping Issue Deduper")
    sweeps.stop()
    reconciler.shutdown()


app = FastAPI(
    title="Issue Deduper",
    description="Close duplicate crash reports on GitHub",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(AuthenticationError)
async def authentication_error_handler(request: Request, exc: AuthenticationError):
    logger.warning(f"Rejected request to {request.url.path}: {exc}")
    return JSONResponse(status_code=401, content={"message": "Unauthorized"})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"message": str(exc)})


# Include API routers
app.include_router(submit.router)
app.include_router(webhook.router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "Issue Deduper"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "deduper.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level.lower(),
    )
