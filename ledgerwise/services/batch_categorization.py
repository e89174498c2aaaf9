"""
Batch categorization.

Categorizes many transactions one at a time. Generative-service calls are
serialized with a pause between items so the provider's rate limits hold;
items decided without the service (deterministic bypass, no key
configured) do not wait.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Sequence

from ledgerwise.agents.base import AgentContext
from ledgerwise.agents.categorization import CategorizationAgent
from ledgerwise.models.categorization import CategorizationResult
from ledgerwise.models.transactions import TransactionCandidate

logger = logging.getLogger(__name__)


def categorize_batch(
    agent: CategorizationAgent,
    transactions: Sequence[TransactionCandidate],
    spacing_seconds: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, object]:
    """
    Categorize ``transactions`` in order.

    Returns the results in input order plus counts. The decision engine
    never raises for service trouble, so one bad item cannot stop the batch.
    """
    results: List[CategorizationResult] = []
    service_calls = 0
    waits = 0
    previous_called_service = False

    for transaction in transactions:
        if previous_called_service and spacing_seconds > 0:
            sleep(spacing_seconds)
            waits += 1

        ctx = AgentContext(requester="batch", state={"transaction": transaction})
        outcome = agent.execute(ctx)
        results.append(outcome["categorization"])

        calls = outcome["service_calls"]
        service_calls += calls
        previous_called_service = calls > 0

    needs_review = sum(1 for r in results if r.needs_review)
    logger.info(
        f"Batch categorized {len(results)} transaction(s): {service_calls} service call(s), "
        f"{needs_review} need review"
    )
    return {
        "results": results,
        "total": len(results),
        "needs_review": needs_review,
        "service_calls": service_calls,
        "waits": waits,
    }

