"""
Tests for the categorization decision (Stage 2), run through Stage 1 so the
evidence is built the same way production builds it.
"""
import httpx
import pytest

from ledgerwise.core.categories import INCOME_CATEGORIES
from ledgerwise.core.config import DecisionThresholds, LLMSettings
from ledgerwise.models.categorization import CategorizationJudgment
from ledgerwise.models.patterns import CategoryCalibration, VendorPattern
from ledgerwise.models.transactions import TransactionCandidate, TransactionRecord
from ledgerwise.services.correction_learning import apply_correction, build_correction
from ledgerwise.services.decision_engine import DecisionEngine
from ledgerwise.services.errors import ExternalServiceError, InvalidCategorizationInvariant, MalformedResponseError
from ledgerwise.services.llm import AnthropicCategorizationService
from ledgerwise.services.pattern_matcher import PatternMatcher
from ledgerwise.services.pattern_store import PatternStore


class StubClassifier:
    name = "stub"
    is_available = True

    def __init__(self, judgment=None, error=None):
        self.judgment = judgment
        self.error = error
        self.calls = 0

    def classify(self, transaction, pattern_summary):
        self.calls += 1
        if self.error:
            raise self.error
        return self.judgment


def categorize(transaction, store=None, service=None):
    store = store if store is not None else PatternStore()
    match = PatternMatcher(store).match(transaction)
    return DecisionEngine(service=service).decide(transaction, match)


def correct_vendor(store, vendor, category, times, transaction_type="expense"):
    for n in range(times):
        before = TransactionRecord(id=f"t{n}", vendor=vendor, description="receipt",
                                   transaction_type="expense", category="other")
        after = before.model_copy(update={"category": category, "transaction_type": transaction_type})
        apply_correction(store, build_correction(before, after))


class TestExamples:
    def test_fuel_at_shell(self):
        result = categorize(TransactionCandidate(description="Fuel Purchase Pump #4", vendor="Shell", amount=45.0))
        assert result.transaction_type == "expense"
        assert result.category == "car_and_truck"
        assert result.confidence == 0.9
        assert "fuel_detected" in result.applied_patterns
        assert result.payment_method == "Card"

    def test_vendor_pattern_beats_fuel_keyword(self):
        store = PatternStore()
        correct_vendor(store, "Home Depot", "supplies", 6)
        stored = store.find_vendor_pattern("Home Depot")

        result = categorize(
            TransactionCandidate(description="diesel exhaust fluid", vendor="Home Depot", amount=19.99),
            store=store,
        )
        assert result.category == "supplies"
        assert result.confidence == pytest.approx(stored.confidence)
        assert result.confidence != 0.9
        assert "vendor_exact_match" in result.applied_patterns

    def test_deposited_check(self):
        result = categorize(TransactionCandidate(description="Check #1042 deposited", vendor="Jane Roe"))
        assert result.payment_method == "Check"
        assert result.transaction_type == "income"
        assert result.category == "gross_receipts"
        assert result.confidence == 0.8
        assert result.income_source == "check"


class TestPriorityOrder:
    def test_deposit_outranks_vendor_history(self):
        store = PatternStore()
        correct_vendor(store, "Corner Market", "supplies", 4)
        result = categorize(
            TransactionCandidate(description="Bank deposit", vendor="Corner Market", amount=300.0),
            store=store,
        )
        assert result.transaction_type == "income"
        assert result.category == "gross_receipts"
        assert result.payment_method == "Deposit"
        assert result.income_source == "deposit"
        assert result.confidence == 0.85

    def test_written_check_is_expense(self):
        result = categorize(TransactionCandidate(description="Check #220, payment sent to landlord", vendor="Me"))
        assert result.transaction_type == "expense"
        assert result.category == "other"
        assert result.payment_method == "Check"

    @pytest.mark.parametrize(
        "description,vendor,category,confidence",
        [
            ("2x4 and screws", "Yard Supply Co", "repairs_maintenance", 0.85),
            ("Dinner, gratuity", "Luigi's", "meals", 0.85),
            ("Weekly produce", "Corner Market", "supplies", 0.8),
            ("Toner", "Quick Print", "office_expense", 0.85),
        ],
    )
    def test_keyword_rules(self, description, vendor, category, confidence):
        result = categorize(TransactionCandidate(description=description, vendor=vendor))
        assert result.transaction_type == "expense"
        assert result.category == category
        assert result.confidence == confidence

    def test_learned_vendor_payment_method_is_used(self):
        store = PatternStore()
        store.upsert_vendor_pattern(
            VendorPattern(key="acme", vendor="Acme", category="supplies", transaction_type="expense",
                          payment_method="Debit", confidence=0.7)
        )
        result = categorize(TransactionCandidate(description="widgets", vendor="Acme"), store=store)
        assert result.category == "supplies"
        assert result.payment_method == "Debit"
        assert result.confidence == 0.7

    def test_income_wording_fallback(self):
        result = categorize(TransactionCandidate(description="Payment received - invoice 12", vendor="Client"))
        assert result.transaction_type == "income"
        assert result.category == "gross_receipts"
        assert result.confidence == 0.6

    def test_last_resort_needs_review(self):
        result = categorize(TransactionCandidate(description="Misc", vendor="Unknown"))
        assert result.transaction_type == "expense"
        assert result.category == "other"
        assert result.confidence == 0.4
        assert result.needs_review is True
        assert result.applied_patterns == ["fallback_heuristics"]


class TestGenerativePath:
    def test_bypass_never_calls_service(self):
        service = StubClassifier(
            CategorizationJudgment(transaction_type="expense", category="meals", confidence=0.99)
        )
        result = categorize(
            TransactionCandidate(description="Fuel Purchase Pump #4", vendor="Shell"), service=service
        )
        assert service.calls == 0
        assert result.category == "car_and_truck"

    def test_service_used_without_bypass(self):
        service = StubClassifier(
            CategorizationJudgment(transaction_type="expense", category="advertising", confidence=0.82,
                                   applied_patterns=["vendor_history"], reasoning="ad network")
        )
        result = categorize(TransactionCandidate(description="Campaign", vendor="AdNet"), service=service)
        assert service.calls == 1
        assert result.decided_by == "generative"
        assert result.category == "advertising"
        assert result.confidence == 0.82
        assert result.payment_method == "Card"

    def test_income_with_expense_category_is_repaired(self):
        service = StubClassifier(
            CategorizationJudgment(transaction_type="income", category="other", confidence=0.9)
        )
        result = categorize(TransactionCandidate(description="Client retainer", vendor="Acme"), service=service)
        assert result.transaction_type == "income"
        assert result.category in INCOME_CATEGORIES
        assert result.category == "gross_receipts"
        assert result.confidence < 0.9

    @pytest.mark.parametrize(
        "error",
        [ExternalServiceError("stub", "timeout", status_code=503), MalformedResponseError("stub", "garbage")],
    )
    def test_service_failure_falls_back(self, error):
        service = StubClassifier(error=error)
        result = categorize(TransactionCandidate(description="Misc", vendor="Unknown"), service=service)
        assert result.decided_by == "deterministic"
        assert result.category == "other"
        assert result.confidence == 0.4

    @pytest.mark.parametrize(
        "transaction",
        [
            TransactionCandidate(description="Fuel Purchase Pump #4", vendor="Shell"),
            TransactionCandidate(description="Check #1042 deposited", vendor="Jane Roe"),
            TransactionCandidate(description="Bank deposit", vendor="Anyone"),
            TransactionCandidate(description="Widgets", vendor="Acme", ocr_payment_method="cash"),
        ],
    )
    def test_bypass_results_do_not_depend_on_service(self, transaction):
        with_service = categorize(
            transaction,
            service=StubClassifier(
                CategorizationJudgment(transaction_type="expense", category="travel", confidence=1.0)
            ),
        )
        failing = categorize(transaction, service=StubClassifier(error=ExternalServiceError("stub", "down")))
        without = categorize(transaction)
        assert (with_service.transaction_type, with_service.category) == (without.transaction_type, without.category)
        assert (failing.transaction_type, failing.category) == (without.transaction_type, without.category)


def test_validate_judgment_raises_for_income_expense_mismatch():
    judgment = CategorizationJudgment(transaction_type="income", category="supplies", confidence=0.8)
    with pytest.raises(InvalidCategorizationInvariant):
        DecisionEngine.validate_judgment(judgment)


class TestServiceBoundary:
    def test_unexpected_error_falls_back(self):
        service = StubClassifier(error=AttributeError("'list' object has no attribute 'get'"))
        result = categorize(TransactionCandidate(description="Misc", vendor="Unknown"), service=service)
        assert service.calls == 1
        assert result.decided_by == "deterministic"
        assert (result.category, result.confidence) == ("other", 0.4)

    @pytest.mark.parametrize("body", [[], {"content": [{"type": "text", "text": 7}]}])
    def test_odd_response_body_falls_back(self, body):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json=body))
        service = AnthropicCategorizationService(
            LLMSettings(provider="anthropic", anthropic_api_key="sk-test"),
            http_client=httpx.Client(transport=transport),
        )
        transaction = TransactionCandidate(description="Misc", vendor="Unknown")
        match = PatternMatcher(PatternStore(), service=service).match(transaction)
        result = DecisionEngine(service=service).decide(transaction, match)
        assert match.source == "deterministic"
        assert result.decided_by == "deterministic"
        assert (result.category, result.confidence) == ("other", 0.4)


class TestRepairs:
    def test_repair_never_drops_below_floor(self):
        service = StubClassifier(
            CategorizationJudgment(transaction_type="income", category="supplies", confidence=0.62)
        )
        result = categorize(TransactionCandidate(description="Client retainer", vendor="Acme"), service=service)
        assert result.category == "gross_receipts"
        assert result.confidence == 0.6
        assert result.needs_review is False

    def test_repair_floor_is_configurable(self):
        service = StubClassifier(
            CategorizationJudgment(transaction_type="income", category="supplies", confidence=0.62)
        )
        transaction = TransactionCandidate(description="Client retainer", vendor="Acme")
        match = PatternMatcher(PatternStore()).match(transaction)
        result = DecisionEngine(service=service, thresholds=DecisionThresholds(repair_floor=0.3)).decide(
            transaction, match
        )
        assert result.confidence == pytest.approx(0.52)
        assert result.needs_review is True

    def test_learned_vendor_with_mismatched_category_is_repaired(self):
        store = PatternStore()
        store.upsert_vendor_pattern(
            VendorPattern(key="jane roe", vendor="Jane Roe", category="supplies", transaction_type="income",
                          confidence=0.8)
        )
        result = categorize(TransactionCandidate(description="Monthly retainer", vendor="Jane Roe"), store=store)
        assert result.transaction_type == "income"
        assert result.category in INCOME_CATEGORIES
        assert result.category == "gross_receipts"
        assert result.confidence == pytest.approx(0.7)
        assert "vendor_exact_match" in result.applied_patterns


class TestAmountRange:
    def setup_method(self):
        self.store = PatternStore()
        self.store.upsert_vendor_pattern(
            VendorPattern(key="acme", vendor="Acme", category="supplies", transaction_type="expense",
                          confidence=0.9, amount_min=20.0, amount_max=60.0)
        )

    @pytest.mark.parametrize("amount", [0.0, 10.0, 40.0, 90.0])
    def test_usual_amount_keeps_vendor_confidence(self, amount):
        result = categorize(TransactionCandidate(description="widgets", vendor="Acme", amount=amount), store=self.store)
        assert result.confidence == 0.9
        assert "unusual_amount" not in result.applied_patterns

    @pytest.mark.parametrize("amount", [5.0, 500.0])
    def test_unusual_amount_lowers_confidence(self, amount):
        result = categorize(TransactionCandidate(description="widgets", vendor="Acme", amount=amount), store=self.store)
        assert result.category == "supplies"
        assert result.confidence == pytest.approx(0.72)
        assert "unusual_amount" in result.applied_patterns


class TestCalibration:
    def _categorize_advertising(self, sample_size, correct):
        store = PatternStore()
        store.upsert_calibration(CategoryCalibration(category="advertising", sample_size=sample_size, correct=correct))
        service = StubClassifier(
            CategorizationJudgment(transaction_type="expense", category="advertising", confidence=0.82)
        )
        return categorize(TransactionCandidate(description="Campaign", vendor="AdNet"), store=store, service=service)

    def test_enough_samples_replace_confidence_with_accuracy(self):
        result = self._categorize_advertising(sample_size=5, correct=1)
        assert result.confidence == pytest.approx(0.2)
        assert result.needs_review is True
        assert "confidence_calibrated" in result.applied_patterns

    def test_too_few_samples_leave_confidence_alone(self):
        result = self._categorize_advertising(sample_size=4, correct=0)
        assert result.confidence == 0.82
        assert "confidence_calibrated" not in result.applied_patterns

    def test_calibration_is_bounded(self):
        assert DecisionEngine.calibrate(0.0) == 0.1
        assert DecisionEngine.calibrate(1.0) == 0.99
        assert DecisionEngine.calibrate(0.75) == 0.75

    def test_deterministic_results_are_not_calibrated(self):
        store = PatternStore()
        store.upsert_calibration(CategoryCalibration(category="car_and_truck", sample_size=9, correct=0))
        result = categorize(TransactionCandidate(description="Fuel Purchase Pump #4", vendor="Shell"), store=store)
        assert result.confidence == 0.9
