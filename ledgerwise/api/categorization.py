"""Categorization API endpoints.

- Categorize one transaction (Stage 1 pattern matching + Stage 2 decision)
- Categorize a batch with paced generative-service calls
"""
from typing import List, Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from ledgerwise.agents.base import AgentContext
from ledgerwise.di.container import get_container
from ledgerwise.models.transactions import TransactionCandidate
from ledgerwise.services.batch_categorization import categorize_batch

router = APIRouter(prefix="/categorize", tags=["categorization"])


# ============================================================================
# REQUEST MODELS
# ============================================================================

class CategorizeRequest(BaseModel):
    """One transaction as the OCR collaborator extracted it."""
    transaction: TransactionCandidate
    include_patterns: bool = False


class BatchCategorizeRequest(BaseModel):
    transactions: List[TransactionCandidate] = Field(..., min_length=1, max_length=500)
    spacing_seconds: Optional[float] = Field(default=None, ge=0.0, le=60.0)


# ============================================================================
# ENDPOINTS
# ============================================================================

@router.post("")
def categorize_transaction(request: CategorizeRequest):
    """
    Categorize a transaction.

    Always returns a best-effort result with a confidence score; when
    ``needs_review`` is true the caller should ask the user.
    """
    agent = get_container().categorization_agent()
    ctx = AgentContext(requester="api", state={"transaction": request.transaction})
    outcome = agent.execute(ctx)

    response = {
        "categorization": outcome["categorization"].model_dump(),
        "transaction_id": request.transaction.transaction_id,
    }
    if request.include_patterns:
        response["patterns"] = outcome["pattern_match"].model_dump()
    return response


@router.post("/batch")
def categorize_transactions(request: BatchCategorizeRequest):
    """Categorize many transactions in order."""
    container = get_container()
    spacing = request.spacing_seconds
    if spacing is None:
        spacing = container.settings().batch_call_spacing_seconds

    summary = categorize_batch(container.categorization_agent(), request.transactions, spacing_seconds=spacing)
    return {
        "results": [
            {"transaction_id": transaction.transaction_id, **result.model_dump()}
            for transaction, result in zip(request.transactions, summary["results"])
        ],
        "total": summary["total"],
        "needs_review": summary["needs_review"],
        "service_calls": summary["service_calls"],
    }
