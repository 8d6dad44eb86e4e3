"""Completion webhook routes.

This module provides FastAPI routes for receiving completion events from the
AI processing service:
- POST /api/v1/webhooks/completion - Main webhook endpoint

Pattern:
- Verify signature (fast, no DB)
- Parse payload (fast, validation)
- Queue background task (async processing)
- Return 200 immediately (<500ms)
"""

import time

import structlog
from fastapi import APIRouter, BackgroundTasks, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from app.config import get_completion_webhook_secret
from app.routes.jobs import get_runtime
from app.schemas.webhook import CompletionWebhookPayload
from app.services.completion import process_completion_event, verify_completion_signature

log = structlog.get_logger()
router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])

COMPLETION_WEBHOOK_SECRET = get_completion_webhook_secret()


@router.post("/completion")
async def handle_completion_webhook(
    request: Request, background_tasks: BackgroundTasks
) -> JSONResponse:
    """Handle completion events.

    Returns:
        200 OK: Event accepted and queued for processing
        401 Unauthorized: Invalid signature
        400 Bad Request: Invalid payload format
        503 Service Unavailable: Orchestrator not running
    """
    start_time = time.time()

    # Step 1: Verify signature
    signature = request.headers.get("X-Completion-Signature", "")
    body = await request.body()

    if not verify_completion_signature(body, signature, COMPLETION_WEBHOOK_SECRET):
        log.warning(
            "webhook_unauthorized", signature=signature[:8] + "..." if signature else None
        )
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    # Step 2: Parse and validate payload
    try:
        payload = CompletionWebhookPayload.model_validate_json(body)
    except ValidationError as e:
        log.warning("webhook_invalid_payload", error=str(e), body=body.decode()[:200])
        raise HTTPException(status_code=400, detail="Invalid payload format") from e

    # Step 3: Queue background task
    runtime = get_runtime(request)
    background_tasks.add_task(process_completion_event, payload, runtime.session_factory)

    # Step 4: Return immediately
    elapsed_ms = (time.time() - start_time) * 1000
    log.info(
        "webhook_accepted",
        event_id=payload.event_id,
        external_id=payload.external_id,
        elapsed_ms=elapsed_ms,
    )
    if elapsed_ms > 500:
        log.warning("webhook_slow_response", elapsed_ms=elapsed_ms, target_ms=500)

    return JSONResponse(
        status_code=200, content={"status": "accepted", "event_id": payload.event_id}
    )
