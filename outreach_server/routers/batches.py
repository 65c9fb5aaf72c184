# outreach_server/routers/batches.py
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from daily_outreach.batch_generator import GeneratedBatch, categorize_companies, to_generated_batch
from daily_outreach.db.batches import BatchStore
from daily_outreach.db.models import BatchItem, DailyBatch
from outreach_server.dependencies import get_batch_store
from outreach_server.schemas.batches import BatchItemStatusResponse, ItemContentUpdateRequest

# The secure token in the path is the credential; these routes take no API key.
router = APIRouter()


def _load_active_batch(token: str, store: BatchStore) -> DailyBatch:
    """Look up a batch by token; 404 when unknown, 410 once expired."""
    batch = store.get_batch_by_token(token)
    if batch is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Batch not found")

    if batch.status == "expired" or batch.expires_at < datetime.now(timezone.utc):
        store.mark_expired(batch.id)
        raise HTTPException(status_code=status.HTTP_410_GONE, detail="This batch has expired")
    return batch


def _item_to_response(item: Optional[BatchItem]) -> BatchItemStatusResponse:
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")
    return BatchItemStatusResponse(
        id=item.id,
        batch_id=item.batch_id,
        status=item.status,
        email_subject=item.email_subject,
        email_body=item.email_body,
        sent_at=item.sent_at,
    )


@router.get("/outreach/batch/{token}", response_model=GeneratedBatch)
def get_batch_endpoint(token: str, store: BatchStore = Depends(get_batch_store)):
    """Get a daily batch with its contacts and drafted emails."""
    batch = _load_active_batch(token, store)
    companies = {item.company_id: item.company for item in batch.items}
    return to_generated_batch(batch, categorize_companies(companies.values()))


@router.put("/outreach/batch/{token}/items/{item_id}", response_model=BatchItemStatusResponse)
def update_item_endpoint(
    token: str,
    item_id: int,
    request: ItemContentUpdateRequest,
    store: BatchStore = Depends(get_batch_store),
):
    """Replace the drafted subject and body of an item."""
    batch = _load_active_batch(token, store)
    return _item_to_response(store.update_item_content(batch.id, item_id, request.email_subject, request.email_body))


@router.post("/outreach/batch/{token}/items/{item_id}/sent", response_model=BatchItemStatusResponse)
def mark_item_sent_endpoint(token: str, item_id: int, store: BatchStore = Depends(get_batch_store)):
    """Record that the user sent an item's email."""
    batch = _load_active_batch(token, store)
    return _item_to_response(store.mark_item_sent(batch.id, item_id, datetime.now(timezone.utc)))


@router.post("/outreach/batch/{token}/items/{item_id}/skip", response_model=BatchItemStatusResponse)
def skip_item_endpoint(token: str, item_id: int, store: BatchStore = Depends(get_batch_store)):
    """Skip an item for today."""
    batch = _load_active_batch(token, store)
    return _item_to_response(store.skip_item(batch.id, item_id))
