"""
Dead Letter Queue Admin API

Operator endpoints for browsing and remediating dead outbox items.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from ...core.outbox import BatchRetryResult, DeadLetterPage, DLQManager, DLQStats, OutboxItem
from ...core.outbox.dlq import BULK_LIMIT
from ..deps import get_dlq, require_admin

router = APIRouter(prefix="/api/admin/dlq", tags=["dlq"])

MAX_BATCH_IDS = 500


class BatchRequest(BaseModel):
    """Ids to retry or purge."""
    ids: List[str] = Field(min_length=1, max_length=MAX_BATCH_IDS)
    reason: Optional[str] = None


class RetryAllRequest(BaseModel):
    kind: Optional[str] = None
    limit: int = Field(default=BULK_LIMIT, ge=1, le=BULK_LIMIT)
    reason: Optional[str] = None


@router.get("", response_model=DeadLetterPage)
async def list_dlq_entries(
    kind: Optional[str] = None,
    scope_id: Optional[str] = None,
    error_pattern: Optional[str] = Query(default=None, max_length=200),
    cursor: Optional[str] = None,
    limit: int = Query(20, ge=1, le=50),
    operator_id: Optional[str] = Depends(require_admin),
    manager: DLQManager = Depends(get_dlq),
):
    """List dead items, newest first. Invalid cursors restart from the first page."""
    return await manager.list(
        kind=kind,
        scope_id=scope_id,
        error_pattern=error_pattern,
        cursor=cursor,
        limit=limit,
    )


@router.get("/stats", response_model=DLQStats)
async def dlq_stats(
    operator_id: Optional[str] = Depends(require_admin),
    manager: DLQManager = Depends(get_dlq),
):
    """Get DLQ statistics."""
    return await manager.get_stats()


@router.get("/count")
async def dlq_count(
    kind: Optional[str] = None,
    scope_id: Optional[str] = None,
    operator_id: Optional[str] = Depends(require_admin),
    manager: DLQManager = Depends(get_dlq),
):
    return {"count": await manager.count(kind=kind, scope_id=scope_id)}


@router.post("/retry-batch", response_model=BatchRetryResult)
async def retry_dlq_batch(
    body: BatchRequest,
    operator_id: Optional[str] = Depends(require_admin),
    manager: DLQManager = Depends(get_dlq),
):
    """Retry several entries; the response lists every id's outcome."""
    return await manager.retry_batch(body.ids, operator_id=operator_id)


@router.post("/retry-all", response_model=BatchRetryResult)
async def retry_all_dlq(
    body: RetryAllRequest,
    operator_id: Optional[str] = Depends(require_admin),
    manager: DLQManager = Depends(get_dlq),
):
    """Retry up to `limit` dead entries."""
    return await manager.retry_all(kind=body.kind, limit=body.limit, operator_id=operator_id)


@router.post("/purge-batch")
async def purge_dlq_batch(
    body: BatchRequest,
    operator_id: Optional[str] = Depends(require_admin),
    manager: DLQManager = Depends(get_dlq),
):
    """Permanently delete several entries. Ids that are not dead are skipped."""
    count = await manager.purge_batch(body.ids, operator_id=operator_id)
    return {"status": "purged", "requested": len(body.ids), "count": count}


@router.get("/{entry_id}", response_model=OutboxItem)
async def get_dlq_entry(
    entry_id: str,
    operator_id: Optional[str] = Depends(require_admin),
    manager: DLQManager = Depends(get_dlq),
):
    item = await manager.get_by_id(entry_id)
    if item is None:
        raise HTTPException(status_code=404, detail="DLQ entry not found")
    return item


@router.post("/{entry_id}/retry")
async def retry_dlq_entry(
    entry_id: str,
    operator_id: Optional[str] = Depends(require_admin),
    manager: DLQManager = Depends(get_dlq),
):
    """Retry a specific DLQ entry."""
    if not await manager.retry(entry_id, operator_id=operator_id):
        raise HTTPException(status_code=404, detail="DLQ entry not found")
    return {"status": "queued_for_retry", "entry_id": entry_id}


@router.delete("/{entry_id}")
async def purge_dlq_entry(
    entry_id: str,
    operator_id: Optional[str] = Depends(require_admin),
    manager: DLQManager = Depends(get_dlq),
):
    """Permanently delete a DLQ entry."""
    if not await manager.purge(entry_id, operator_id=operator_id):
        raise HTTPException(status_code=404, detail="DLQ entry not found")
    return {"status": "purged", "entry_id": entry_id}
