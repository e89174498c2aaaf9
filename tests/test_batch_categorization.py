from ledgerwise.agents.base import AgentContext
from ledgerwise.agents.categorization import CategorizationAgent
from ledgerwise.models.categorization import CategorizationJudgment
from ledgerwise.models.transactions import TransactionCandidate
from ledgerwise.services.batch_categorization import categorize_batch
from ledgerwise.services.decision_engine import DecisionEngine
from ledgerwise.services.errors import ExternalServiceError
from ledgerwise.services.pattern_matcher import PatternMatcher
from ledgerwise.services.pattern_store import PatternStore


class StubClassifier:
    name = "stub"
    is_available = True

    def __init__(self, fail_on=()):
        self.fail_on = set(fail_on)
        self.seen = []

    def classify(self, transaction, pattern_summary):
        self.seen.append(transaction.vendor)
        if transaction.vendor in self.fail_on:
            raise ExternalServiceError(self.name, "rate limited", status_code=429)
        return CategorizationJudgment(transaction_type="expense", category="advertising", confidence=0.75)


FUEL = TransactionCandidate(description="Fuel Purchase Pump #4", vendor="Shell", transaction_id="t-fuel")
AD = TransactionCandidate(description="Campaign", vendor="AdNet", transaction_id="t-ad")


def _agent(service):
    return CategorizationAgent(PatternMatcher(PatternStore()), DecisionEngine(service=service))


def test_waits_only_after_a_service_call():
    sleeps = []
    summary = categorize_batch(_agent(StubClassifier()), [FUEL, AD, FUEL, AD], spacing_seconds=1.0,
                               sleep=sleeps.append)

    assert [r.category for r in summary["results"]] == [
        "car_and_truck", "advertising", "car_and_truck", "advertising"
    ]
    assert summary["service_calls"] == 2
    assert summary["waits"] == 1
    assert sleeps == [1.0]


def test_consecutive_service_items_are_spaced():
    sleeps = []
    summary = categorize_batch(_agent(StubClassifier()), [AD, AD, AD], spacing_seconds=0.5, sleep=sleeps.append)
    assert sleeps == [0.5, 0.5]
    assert summary["total"] == 3


def test_one_failing_item_does_not_stop_the_batch():
    other = TransactionCandidate(description="Sponsorship", vendor="Local Team")
    service = StubClassifier(fail_on={"AdNet"})
    summary = categorize_batch(_agent(service), [AD, other], spacing_seconds=0, sleep=lambda s: None)

    first, second = summary["results"]
    assert first.decided_by == "deterministic"
    assert first.needs_review is True
    assert second.decided_by == "generative"
    assert summary["needs_review"] == 1
    assert service.seen == ["AdNet", "Local Team"]


def test_without_service_nothing_waits():
    sleeps = []
    summary = categorize_batch(_agent(None), [AD, AD], sleep=sleeps.append)
    assert sleeps == []
    assert summary["service_calls"] == 0


def test_agent_records_event_and_coerces_dict_input():
    agent = _agent(None)
    ctx = AgentContext(requester="tester", state={"transaction": {"description": "Toner", "vendor": "Quick Print"}})
    outcome = agent.execute(ctx)

    assert outcome["categorization"].category == "office_expense"
    assert isinstance(ctx.state["transaction"], TransactionCandidate)
    assert ctx.events[0]["action"] == "transaction_categorized"
    assert ctx.events[0]["requester"] == "tester"
