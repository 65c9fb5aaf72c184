# outreach_server/schemas/batches.py
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ItemContentUpdateRequest(BaseModel):
    """Edited email for one batch item."""

    email_subject: str = Field(..., min_length=1, description="Subject line")
    email_body: str = Field(..., min_length=1, description="Plain-text body")


class BatchItemStatusResponse(BaseModel):
    """Batch item after an edit, send or skip."""

    id: int
    batch_id: int
    status: str  # "pending", "edited", "sent", "skipped"
    email_subject: str
    email_body: str
    sent_at: Optional[datetime] = None
