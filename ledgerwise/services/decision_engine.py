"""
Stage 2: categorization decision.

Turns a PatternMatchResult into a final CategorizationResult.

The deterministic tree is evaluated top to bottom, first match wins:

1. Deposit indicator -> income / gross receipts / Deposit (0.85)
2. Check indicator -> income unless the check was written (0.8)
3. Learned vendor pattern at or above the bypass threshold -> vendor's
   learned fields, at the vendor's own confidence (scaled down when the
   amount is far outside the amounts it was learned on)
4. Fuel -> car and truck (0.9)
5. Hardware -> repairs and maintenance (0.85)
6. Restaurant -> meals (0.85)
7. Grocery -> supplies (0.8)
8. Office supply -> office expense (0.85)
9. Fallback heuristics (0.6 income / 0.4 expense)

A learned vendor outranks keyword indicators: a hardware store the user
always books as supplies stays supplies when a line item says "diesel".

The generative service is consulted only when none of the bypass
conditions hold, and any failure falls back to the deterministic tree.
Its confidence is replaced by the category's historical accuracy once
enough corrections have been seen for that category.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from ledgerwise.core.categories import (
    DEFAULT_EXPENSE_CATEGORY,
    DEFAULT_INCOME_CATEGORY,
    EXPENSE_CATEGORIES,
    infer_type_for_category,
    is_income_category,
)
from ledgerwise.core.config import DecisionThresholds
from ledgerwise.models.categorization import (
    CategorizationJudgment,
    CategorizationResult,
    PatternMatchResult,
)
from ledgerwise.models.patterns import amount_in_range
from ledgerwise.models.transactions import TransactionCandidate
from ledgerwise.services.errors import InvalidCategorizationInvariant, LedgerwiseError
from ledgerwise.services.llm import GenerativeCategorizationService

logger = logging.getLogger(__name__)

DEFAULT_PAYMENT_METHOD = "Card"

# (indicator family, category, confidence, applied pattern id), in priority order
KEYWORD_RULES = (
    ("fuel", "car_and_truck", 0.9, "fuel_detected"),
    ("hardware", "repairs_maintenance", 0.85, "hardware_detected"),
    ("restaurant", "meals", 0.85, "restaurant_detected"),
    ("grocery", "supplies", 0.8, "grocery_detected"),
    ("office_supply", "office_expense", 0.85, "office_supply_detected"),
)

CHECK_WRITTEN_PHRASES = ("payment sent", "check written")
INCOME_FALLBACK_PHRASES = ("deposit", "payment received")

CALIBRATED_MIN = 0.1
CALIBRATED_MAX = 0.99


class DecisionEngine:
    """Stateless per call; reads only the PatternMatchResult it is given."""

    def __init__(
        self,
        service: Optional[GenerativeCategorizationService] = None,
        thresholds: Optional[DecisionThresholds] = None,
    ) -> None:
        self.service = service
        self.thresholds = thresholds or DecisionThresholds()

    def bypass_reason(self, match: PatternMatchResult) -> Optional[str]:
        """Why the generative service must not be asked, or None."""
        vendor = match.vendor_match
        if vendor is not None and vendor.confidence >= self.thresholds.vendor_bypass:
            return f"learned vendor pattern for {vendor.vendor} ({vendor.confidence:.2f})"
        explicit = match.explicit_text
        if explicit.deposit:
            return "deposit indicator"
        if explicit.check:
            return "check indicator"
        if explicit.fuel:
            return "fuel indicator"
        if explicit.payment_method:
            return f"explicit payment method {explicit.payment_method}"
        return None

    def decide(self, transaction: TransactionCandidate, match: PatternMatchResult) -> CategorizationResult:
        reason = self.bypass_reason(match)
        if reason is not None:
            logger.debug(f"Deterministic bypass: {reason}")
            return self.decide_deterministic(transaction, match)

        if self.service is None or not self.service.is_available:
            return self.decide_deterministic(transaction, match)

        try:
            judgment = self.service.classify(transaction, match.to_summary())
        except LedgerwiseError as exc:
            logger.warning(
                f"Categorization via {self.service.name} failed ({exc.code.value}: {exc.detail}); "
                "falling back to deterministic rules"
            )
            return self.decide_deterministic(transaction, match)
        except Exception:
            logger.exception(
                f"Unexpected error from {self.service.name} during categorization; "
                "falling back to deterministic rules"
            )
            return self.decide_deterministic(transaction, match)

        return self._from_judgment(transaction, match, judgment)

    # ------------------------------------------------------------------
    # Deterministic tree
    # ------------------------------------------------------------------

    def decide_deterministic(
        self,
        transaction: TransactionCandidate,
        match: PatternMatchResult,
    ) -> CategorizationResult:
        explicit = match.explicit_text
        text = f"{transaction.description} {transaction.line_item_text}".lower()

        if explicit.deposit:
            return self._result(
                transaction_type="income",
                category=DEFAULT_INCOME_CATEGORY,
                confidence=0.85,
                payment_method="Deposit",
                income_source="deposit",
                applied=["deposit_detected"],
                reasoning=f"Deposit indicators found: {', '.join(explicit.deposit)}.",
            )

        if explicit.check:
            written = any(phrase in text for phrase in CHECK_WRITTEN_PHRASES)
            transaction_type = "expense" if written else "income"
            return self._result(
                transaction_type=transaction_type,
                category=DEFAULT_EXPENSE_CATEGORY if written else DEFAULT_INCOME_CATEGORY,
                confidence=0.8,
                payment_method="Check",
                income_source=None if written else "check",
                applied=["check_detected"],
                reasoning=(
                    f"Check indicators found: {', '.join(explicit.check)}. "
                    "The name on a check is the account holder, not the payee, so the "
                    f"type is {transaction_type} from the check wording rather than the vendor."
                ),
            )

        vendor = match.vendor_match
        if (
            vendor is not None
            and vendor.confidence >= self.thresholds.vendor_bypass
            and vendor.learned_category
        ):
            payment, payment_applied = self._resolve_payment(match)
            applied = ["vendor_exact_match"]
            reasoning = (
                f"Vendor {vendor.vendor} has {vendor.correction_count} correction(s) "
                f"to {vendor.learned_category}; learned vendor pattern outranks keyword indicators."
            )
            learned = self._checked(CategorizationJudgment(
                transaction_type=vendor.learned_type or infer_type_for_category(vendor.learned_category),
                category=vendor.learned_category,
                confidence=vendor.confidence,
            ))
            confidence = learned.confidence
            if not amount_in_range(transaction.amount, vendor.amount_min, vendor.amount_max):
                confidence = round(confidence * self.thresholds.unusual_amount_factor, 6)
                applied.append("unusual_amount")
                reasoning += (
                    f" Amount {transaction.amount:.2f} is outside the usual "
                    f"{vendor.amount_min:.2f}-{vendor.amount_max:.2f} for this vendor."
                )
            return self._result(
                transaction_type=learned.transaction_type,
                category=learned.category,
                confidence=confidence,
                payment_method=payment,
                income_source=vendor.learned_income_source if learned.transaction_type == "income" else None,
                applied=applied + payment_applied,
                reasoning=reasoning,
            )

        for family, category, confidence, pattern_id in KEYWORD_RULES:
            found = getattr(explicit, family)
            if found:
                payment, payment_applied = self._resolve_payment(match)
                return self._result(
                    transaction_type="expense",
                    category=category,
                    confidence=confidence,
                    payment_method=payment,
                    income_source=None,
                    applied=[pattern_id] + payment_applied,
                    reasoning=f"{family.replace('_', ' ').capitalize()} indicators found: {', '.join(found)}.",
                )

        applied = ["fallback_heuristics"]
        if explicit.payment_method:
            applied.append("explicit_payment_text")
        if any(phrase in text for phrase in INCOME_FALLBACK_PHRASES):
            return self._result(
                transaction_type="income",
                category=DEFAULT_INCOME_CATEGORY,
                confidence=0.6,
                payment_method=explicit.payment_method,
                income_source=None,
                applied=applied,
                reasoning="Income wording in the description; no stronger evidence.",
            )
        return self._result(
            transaction_type="expense",
            category=DEFAULT_EXPENSE_CATEGORY,
            confidence=0.4,
            payment_method=explicit.payment_method,
            income_source=None,
            applied=applied,
            reasoning="No learned patterns or indicators matched; needs manual review.",
        )

    @staticmethod
    def _resolve_payment(match: PatternMatchResult):
        """Vendor's learned method, then payment pattern, then receipt text, then Card."""
        vendor = match.vendor_match
        if vendor is not None and vendor.learned_payment_method:
            return vendor.learned_payment_method, []
        if match.learned_payment_method:
            return match.learned_payment_method, ["learned_payment_pattern"]
        if match.explicit_text.payment_method:
            return match.explicit_text.payment_method, ["explicit_payment_text"]
        return DEFAULT_PAYMENT_METHOD, []

    # ------------------------------------------------------------------
    # Generative path
    # ------------------------------------------------------------------

    def _from_judgment(
        self,
        transaction: TransactionCandidate,
        match: PatternMatchResult,
        judgment: CategorizationJudgment,
    ) -> CategorizationResult:
        judgment = self._checked(judgment)

        payment = judgment.payment_method
        if not payment:
            payment, _ = self._resolve_payment(match)
        income_source = judgment.income_source if judgment.transaction_type == "income" else None

        applied = list(judgment.applied_patterns)
        confidence = judgment.confidence
        calibration = match.calibrations.get(judgment.category)
        if calibration is not None and calibration.sample_size >= self.thresholds.calibration_min_samples:
            confidence = self.calibrate(calibration.accuracy)
            applied.append("confidence_calibrated")
            logger.debug(
                f"Calibrated {judgment.category} confidence {judgment.confidence:.2f} -> {confidence:.2f} "
                f"({calibration.correct}/{calibration.sample_size} kept)"
            )

        return self._result(
            transaction_type=judgment.transaction_type,
            category=judgment.category,
            confidence=confidence,
            payment_method=payment,
            income_source=income_source,
            applied=applied,
            reasoning=judgment.reasoning or "Categorized by the generative service.",
            decided_by="generative",
        )

    @staticmethod
    def calibrate(accuracy: float) -> float:
        """Historical accuracy stands in for the service's own confidence."""
        return min(CALIBRATED_MAX, max(CALIBRATED_MIN, round(accuracy, 6)))

    def _checked(self, judgment: CategorizationJudgment) -> CategorizationJudgment:
        try:
            self.validate_judgment(judgment)
        except InvalidCategorizationInvariant as exc:
            judgment = self.repair_judgment(judgment)
            logger.warning(f"{exc.message}: {exc.detail}; corrected to {judgment.category}")
        return judgment

    @staticmethod
    def validate_judgment(judgment: CategorizationJudgment) -> None:
        if judgment.transaction_type == "income" and not is_income_category(judgment.category):
            raise InvalidCategorizationInvariant(
                field="category",
                value=judgment.category,
                detail="Income transactions must use an income category",
            )
        if judgment.transaction_type == "expense" and judgment.category not in EXPENSE_CATEGORIES:
            raise InvalidCategorizationInvariant(
                field="category",
                value=judgment.category,
                detail="Expense transactions must use an expense category",
            )

    def repair_judgment(self, judgment: CategorizationJudgment) -> CategorizationJudgment:
        """Force the category into the right set and shave confidence, down to the floor."""
        fallback = DEFAULT_INCOME_CATEGORY if judgment.transaction_type == "income" else DEFAULT_EXPENSE_CATEGORY
        confidence = max(
            self.thresholds.repair_floor,
            round(judgment.confidence - self.thresholds.income_fix_penalty, 6),
        )
        return judgment.model_copy(update={"category": fallback, "confidence": confidence})

    def _result(
        self,
        transaction_type: str,
        category: str,
        confidence: float,
        payment_method: Optional[str],
        income_source: Optional[str],
        applied: List[str],
        reasoning: str,
        decided_by: str = "deterministic",
    ) -> CategorizationResult:
        return CategorizationResult(
            transaction_type=transaction_type,
            category=category,
            confidence=confidence,
            payment_method=payment_method,
            income_source=income_source,
            applied_patterns=applied,
            reasoning=reasoning,
            decided_by=decided_by,
            needs_review=confidence < self.thresholds.review,
        )
