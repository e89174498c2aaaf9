"""Learning API endpoints.

Provides access to the feedback loop:
- View learned patterns
- View learning statistics
- Rebuild patterns from the correction log
- Confirm and look up card payment types
"""
from typing import Literal, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ledgerwise.di.container import get_container
from ledgerwise.models.patterns import CardLearningContext

router = APIRouter(prefix="/learning", tags=["learning"])


# ============================================================================
# REQUEST MODELS
# ============================================================================

class ConfirmCardRequest(BaseModel):
    """User confirmation of a card's payment type."""
    payment_type: Literal["Credit", "Debit", "credit", "debit"]
    receipt_id: Optional[str] = None
    vendor: str = ""
    amount: float = 0.0


# ============================================================================
# ENDPOINTS
# ============================================================================

@router.get("/statistics")
def get_statistics():
    """Pattern and card learning statistics."""
    container = get_container()
    return {
        "patterns": container.store().statistics(),
        "cards": container.card_learner().statistics(),
    }


@router.get("/patterns")
def get_patterns(kind: Optional[Literal["vendor", "category", "payment", "calibration"]] = None):
    """All learned patterns and calibration records, optionally one kind."""
    snapshot = get_container().store().snapshot()
    kinds = [kind] if kind else list(snapshot)
    patterns = {
        name: [p.model_dump(mode="json") for p in snapshot[name]]
        for name in kinds
    }
    return {
        "patterns": patterns,
        "count": sum(len(v) for v in patterns.values()),
    }


@router.post("/rebuild")
def rebuild_patterns():
    """Replay the correction log into a fresh pattern store."""
    statistics = get_container().recorder().rebuild()
    return {"rebuilt": True, "statistics": statistics}


@router.post("/cards/{card_last_four}")
def confirm_card(card_last_four: str, request: ConfirmCardRequest):
    """Record that a card is Credit or Debit."""
    mapping = get_container().card_learner().learn(
        card_last_four,
        request.payment_type,
        context=CardLearningContext(
            receipt_id=request.receipt_id,
            vendor=request.vendor,
            amount=request.amount,
        ),
    )
    return {"mapping": mapping.model_dump(mode="json")}


@router.get("/cards/{card_last_four}")
def get_card(card_last_four: str):
    """Learned payment type for a card; 404 when we have no opinion."""
    mapping = get_container().card_learner().lookup(card_last_four)
    if mapping is None:
        raise HTTPException(status_code=404, detail=f"No payment type learned for card {card_last_four}")
    return {"mapping": mapping.model_dump(mode="json")}
