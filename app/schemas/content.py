"""Schemas for items fetched from the content source."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class FetchedItem(BaseModel):
    """One upstream item as returned by a ContentSourceClient.

    duration_seconds is None when the source did not report a duration
    (the missing-data repair job fills it in later).
    """

    model_config = ConfigDict(frozen=True)

    external_id: str = Field(..., min_length=1, max_length=50)
    title: str
    description: str | None = None
    thumbnail_url: str | None = None
    published_at: datetime | None = None
    duration_seconds: int | None = Field(default=None, ge=0)
    owner_id: str | None = None
    owner_name: str | None = None
