"""Correction API endpoints.

The UI posts the transaction as it was and as the user left it; the diff,
the correction log entry and the pattern updates all happen server side.
"""
from typing import Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel

from ledgerwise.di.container import get_container
from ledgerwise.models.transactions import TransactionRecord

router = APIRouter(prefix="/corrections", tags=["corrections"])


class RecordEditRequest(BaseModel):
    """A finalized transaction before and after a user edit."""
    before: TransactionRecord
    after: TransactionRecord
    user_notes: Optional[str] = None


@router.post("")
def record_edit(request: RecordEditRequest):
    """
    Record a user edit and learn from it.

    Returns ``recorded: false`` when no tracked field changed. A failed save
    surfaces as PATTERN_STORE_WRITE_FAILED.
    """
    recorder = get_container().recorder()
    outcome = recorder.record_edit(request.before, request.after, user_notes=request.user_notes)
    if outcome is None:
        return {"recorded": False, "message": "No tracked fields changed"}

    return {
        "recorded": True,
        "correction": outcome["correction"].model_dump(mode="json", by_alias=True),
        "learned": outcome["learned"],
        "message": outcome["message"],
    }


@router.get("")
def list_corrections(limit: int = Query(default=50, ge=1, le=1000)):
    """Most recent corrections first."""
    corrections = get_container().recorder().corrections(limit=limit)
    return {
        "corrections": [c.model_dump(mode="json", by_alias=True) for c in corrections],
        "count": len(corrections),
    }
