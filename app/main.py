"""FastAPI application for the subscription sync and submission orchestrator.

This is the web service entry point. The lifespan builds the runtime, seeds
the credential pool and starts the recurring jobs; the routes expose job
status, manual triggers, the submission queue and the completion webhook.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, status
from fastapi.responses import JSONResponse

from app.database import async_session_factory
from app.entrypoints import build_runtime
from app.routes import jobs, webhooks
from app.utils.logging import configure_logging

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage startup/shutdown of the job runner.

    Startup:
    - Build the runtime if DATABASE_URL is configured
    - Bootstrap the credential pool and start all recurring jobs

    Shutdown:
    - Cancel scheduling loops and in-flight runs
    - Close HTTP clients
    """
    configure_logging()
    runtime = None

    if async_session_factory is not None:
        runtime = build_runtime(async_session_factory)
        await runtime.start()
        log.info("orchestrator_started", jobs=list(runtime.runner.jobs))
    else:
        log.warning(
            "orchestrator_disabled",
            message="DATABASE_URL not set, recurring jobs will not run",
        )
    app.state.runtime = runtime

    yield  # Application runs here

    if runtime is not None:
        log.info("shutting_down_orchestrator")
        await runtime.stop()


app = FastAPI(
    title="Subscription Sync Orchestrator",
    description=(
        "Syncs channel and playlist subscriptions and submits new items for AI processing"
    ),
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(jobs.router)
app.include_router(webhooks.router)


@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check() -> JSONResponse:
    """Health check endpoint for deployment validation.

    Returns:
        JSONResponse: Status and whether the job runner is active
    """
    runtime = getattr(app.state, "runtime", None)
    return JSONResponse(
        content={
            "status": "healthy",
            "service": "subscription-sync-orchestrator",
            "scheduler": "running" if runtime is not None else "disabled",
        }
    )


if __name__ == "__main__":
    import uvicorn

    # Binding to 0.0.0.0 is intentional for Docker/Railway compatibility
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",  # noqa: S104
        port=8000,
        reload=True,
    )
