"""Standalone orchestrator process (no HTTP surface).

Runs the same recurring jobs as the FastAPI lifespan, for deployments that
keep the scheduler in its own service.

Architecture Pattern:
    - Separate Process: independent Python process with its own engine
    - Async Execution: one event loop runs the job runner and submission queue
    - Short Transactions: services never hold a session across network calls
    - Graceful Shutdown: listens for SIGTERM, cancels loops and exits cleanly

Usage:
    Local Development:
        python -m app.worker

    Railway Deployment:
        Start command: python -m app.worker
"""

import asyncio
import os
import signal
import sys
from dataclasses import dataclass

from dotenv import load_dotenv
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.config import get_database_url, get_fernet_key
from app.utils.logging import configure_logging, get_logger

log = get_logger(__name__)

# Shutdown flag (set by SIGTERM handler)
shutdown_requested = False

# Engine reference (for cleanup in shutdown)
worker_engine: AsyncEngine | None = None


def signal_handler(signum: int, frame: object) -> None:
    """Handle SIGTERM/SIGINT for graceful shutdown.

    Side Effects:
        Sets global shutdown_requested flag to True
    """
    global shutdown_requested
    log.info(
        "shutdown_signal_received",
        signal=signum,
        signal_name=signal.Signals(signum).name,
    )
    shutdown_requested = True


async def worker_main_loop() -> None:
    """Build the runtime, start the jobs and idle until shutdown is requested."""
    global worker_engine

    from app.entrypoints import build_runtime

    worker_id = os.getenv("RAILWAY_SERVICE_NAME", "worker-local")
    worker_engine = create_async_engine(
        get_database_url(),
        pool_size=10,
        max_overflow=5,
        pool_pre_ping=True,
    )
    session_factory = async_sessionmaker(
        bind=worker_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    runtime = build_runtime(session_factory)
    try:
        await runtime.start()
        log.info("worker_started", worker_id=worker_id, jobs=list(runtime.runner.jobs))
        while not shutdown_requested:
            await asyncio.sleep(1)
    except asyncio.CancelledError:
        log.info("worker_cancelled", worker_id=worker_id)
        raise
    except Exception as e:
        log.error(
            "worker_fatal_error",
            worker_id=worker_id,
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        raise
    finally:
        await runtime.stop()
        await shutdown_worker()
        log.info("worker_shutdown", worker_id=worker_id)


async def shutdown_worker() -> None:
    """Dispose the database engine."""
    if worker_engine is not None:
        await worker_engine.dispose()
        log.info("database_connections_closed")


@dataclass
class WorkerConfig:
    """Worker configuration loaded from environment variables."""

    database_url: str
    fernet_key: str


def get_config() -> WorkerConfig:
    """Load and validate worker configuration.

    Raises:
        ValueError: If required environment variables not set.
    """
    return WorkerConfig(
        database_url=get_database_url(),
        fernet_key=get_fernet_key(),
    )


def main() -> None:
    """Worker process entry point.

    Exit Codes:
        0: Successful shutdown (SIGTERM received)
        1: Fatal error (configuration invalid, database unreachable)
    """
    load_dotenv()
    configure_logging()

    try:
        config = get_config()
        # Redact credentials when logging
        database_host = (
            config.database_url.split("@")[-1].split("/")[0]
            if "@" in config.database_url
            else "local"
        )
        log.info("worker_configuration_loaded", database_url_host=database_host)
    except Exception as e:
        log.error("configuration_load_failed", error=str(e), exc_info=True)
        sys.exit(1)

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)  # Also handle Ctrl+C for local dev

    exit_code = 0
    try:
        asyncio.run(worker_main_loop())
    except KeyboardInterrupt:
        log.info("worker_interrupted_by_user")
    except Exception as e:
        log.error("worker_fatal_error", error=str(e), exc_info=True)
        exit_code = 1
    log.info("worker_exited", exit_code=exit_code)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
