"""Categorization agent: Stage 1 pattern matching, then Stage 2 decision."""
from typing import Any, Dict, Optional

from ledgerwise.agents.base import AgentContext, BaseAgent
from ledgerwise.models.categorization import CategorizationResult, PatternMatchResult
from ledgerwise.models.transactions import TransactionCandidate
from ledgerwise.services.decision_engine import DecisionEngine
from ledgerwise.services.logging import log_categorization
from ledgerwise.services.pattern_matcher import PatternMatcher


class CategorizationAgent(BaseAgent):
    name = "CategorizationAgent"

    def __init__(self, matcher: PatternMatcher, engine: DecisionEngine) -> None:
        self.matcher = matcher
        self.engine = engine

    def validate(self, ctx: AgentContext) -> None:
        if "transaction" not in ctx.state:
            raise ValueError("Missing transaction for categorization")
        if not isinstance(ctx.state["transaction"], TransactionCandidate):
            ctx.state["transaction"] = TransactionCandidate.model_validate(ctx.state["transaction"])

    def execute(self, ctx: AgentContext) -> Dict[str, Any]:
        self.validate(ctx)
        transaction: TransactionCandidate = ctx.state["transaction"]

        # Stage 2 depends on the whole of Stage 1
        match = self.matcher.match(transaction)
        result = self.engine.decide(transaction, match)
        service_calls = self._service_calls(match)

        ctx.state["pattern_match"] = match
        ctx.state["categorization"] = result

        log_categorization(
            vendor=transaction.vendor,
            category=result.category,
            transaction_type=result.transaction_type,
            confidence=result.confidence,
            decided_by=result.decided_by,
            applied_patterns=result.applied_patterns,
        )
        self.log_event(
            ctx,
            action="transaction_categorized",
            entity_type="transaction",
            entity_id=transaction.transaction_id,
            metadata={
                "category": result.category,
                "confidence": result.confidence,
                "decided_by": result.decided_by,
            },
        )
        return {
            "categorization": result,
            "pattern_match": match,
            "service_calls": service_calls,
        }

    def categorize(self, transaction: TransactionCandidate, requester: Optional[str] = None) -> CategorizationResult:
        ctx = AgentContext(requester=requester, state={"transaction": transaction})
        return self.execute(ctx)["categorization"]

    def _service_calls(self, match: PatternMatchResult) -> int:
        """How many generative calls this transaction cost (attempted, not necessarily successful)."""
        calls = 0
        matcher_service = self.matcher.service
        if matcher_service is not None and matcher_service.is_available:
            calls += 1
        engine_service = self.engine.service
        if (
            engine_service is not None
            and engine_service.is_available
            and self.engine.bypass_reason(match) is None
        ):
            calls += 1
        return calls
