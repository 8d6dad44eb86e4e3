"""Completion webhook payload schemas.

Defines Pydantic models for validating the out-of-band completion signal
sent by the AI processing service (or the mail bridge in front of it).
"""

from datetime import datetime

from pydantic import BaseModel, Field


class CompletionWebhookPayload(BaseModel):
    """Completion event for one upstream item.

    The processing service reports by upstream (external) id, since it never
    sees our internal item ids. Every subscription's copy of the item is
    marked completed.
    """

    event_id: str = Field(..., min_length=1, max_length=100)
    external_id: str = Field(..., min_length=1, max_length=50)
    output_ref: str = Field(..., min_length=1, max_length=500)
    completed_at: datetime | None = None
