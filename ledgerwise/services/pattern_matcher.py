"""
Stage 1: pattern matching.

Collects every piece of evidence the decision engine may use for one
transaction: deterministic signals, the learned vendor pattern, matching
category patterns, the vendor's payment pattern and the per-category
calibration records.

When a generative service is configured it is asked which of that
evidence is relevant. Its answer only labels evidence, it never adds a
category and it can never remove what the store found. On any failure
the deterministic selection is used as-is.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from ledgerwise.core.categories import EXPENSE_CATEGORIES, INCOME_CATEGORIES
from ledgerwise.models.categorization import (
    ExplicitTextFindings,
    PatternMatchResult,
    PatternRef,
    PatternSelection,
    VendorMatch,
)
from ledgerwise.models.patterns import CategoryPattern, PaymentPattern, VendorPattern
from ledgerwise.models.transactions import TransactionCandidate
from ledgerwise.services.errors import LedgerwiseError
from ledgerwise.services.llm import GenerativeCategorizationService
from ledgerwise.services.pattern_store import PatternStore
from ledgerwise.services.signal_extraction import (
    CATEGORY_INDICATOR_TAGS,
    PAYMENT_INDICATOR_TAGS,
    SignalReport,
    extract_signals,
)

logger = logging.getLogger(__name__)


def _label(category: str) -> str:
    return EXPENSE_CATEGORIES.get(category) or INCOME_CATEGORIES.get(category) or category or "uncategorized"


def category_pattern_ref(pattern: CategoryPattern) -> PatternRef:
    details = (
        f"Corrected from {_label(pattern.from_category)} to {_label(pattern.to_category)} "
        f"{pattern.occurrences} time(s)"
    )
    if pattern.reasons:
        details += f"; user notes: {'; '.join(pattern.reasons)}"
    return PatternRef(
        pattern_id=pattern.id,
        kind="category",
        confidence=pattern.confidence,
        details=details,
    )


def payment_pattern_ref(pattern: PaymentPattern) -> PatternRef:
    return PatternRef(
        pattern_id=pattern.id,
        kind="payment",
        confidence=pattern.confidence,
        details=f"{pattern.vendor} is paid by {pattern.payment_method} ({pattern.occurrences} correction(s))",
    )


def vendor_match_from(pattern: VendorPattern) -> VendorMatch:
    return VendorMatch(
        vendor=pattern.vendor,
        confidence=pattern.confidence,
        correction_count=pattern.correction_count,
        learned_category=pattern.category,
        learned_type=pattern.transaction_type,
        learned_payment_method=pattern.payment_method,
        learned_income_source=pattern.income_source,
        amount_min=pattern.amount_min,
        amount_max=pattern.amount_max,
    )


def _merge_tags(deterministic: List[str], suggested: List[str], vocabulary) -> List[str]:
    merged = list(deterministic)
    for tag in suggested:
        if tag in vocabulary and tag not in merged:
            merged.append(tag)
    return merged


class PatternMatcher:
    """Builds a PatternMatchResult for one transaction."""

    def __init__(
        self,
        store: PatternStore,
        service: Optional[GenerativeCategorizationService] = None,
    ) -> None:
        self.store = store
        self.service = service

    def match(self, transaction: TransactionCandidate) -> PatternMatchResult:
        result = self.match_deterministic(transaction)

        if self.service is None or not self.service.is_available:
            return result

        try:
            selection = self.service.select_relevant_patterns(transaction, result.to_summary())
        except LedgerwiseError as exc:
            logger.warning(
                f"Pattern selection via {self.service.name} failed ({exc.code.value}: {exc.detail}); "
                "using deterministic selection"
            )
            return result
        except Exception:
            logger.exception(
                f"Unexpected error from {self.service.name} during pattern selection; "
                "using deterministic selection"
            )
            return result

        return self._apply_selection(result, selection)

    def match_deterministic(self, transaction: TransactionCandidate) -> PatternMatchResult:
        signals = extract_signals(
            transaction.description,
            transaction.vendor,
            transaction.line_items,
            transaction.ocr_payment_method,
        )
        vendor_pattern = self.store.find_vendor_pattern(transaction.vendor)
        category_patterns = self.store.find_category_patterns(transaction.description, transaction.vendor)
        payment_pattern = self.store.find_payment_pattern(transaction.vendor)

        relevant = [category_pattern_ref(p) for p in category_patterns]
        if payment_pattern is not None:
            relevant.append(payment_pattern_ref(payment_pattern))

        payment_indicators = []
        if signals.payment_method:
            payment_indicators.append("explicit_text")
        if vendor_pattern is not None and vendor_pattern.payment_method:
            payment_indicators.append("learned_pattern")
        if payment_pattern is not None:
            payment_indicators.append("payment_correction")

        return PatternMatchResult(
            vendor_match=vendor_match_from(vendor_pattern) if vendor_pattern else None,
            category_indicators=signals.category_indicators,
            payment_indicators=payment_indicators,
            relevant_patterns=relevant,
            explicit_text=ExplicitTextFindings(**signals.to_dict()),
            learned_payment_method=payment_pattern.payment_method if payment_pattern else None,
            calibrations={c.category: c for c in self.store.calibrations()},
            source="deterministic",
            reasoning=self._describe(signals, vendor_pattern, category_patterns, payment_pattern),
        )

    def _apply_selection(self, result: PatternMatchResult, selection: PatternSelection) -> PatternMatchResult:
        """Fold the service's advice into the deterministic result without dropping anything."""
        selected_ids = set(selection.relevant_pattern_ids)
        relevant = [
            ref.model_copy(update={"selected": ref.pattern_id in selected_ids})
            for ref in result.relevant_patterns
        ]
        unknown = selected_ids - {ref.pattern_id for ref in result.relevant_patterns}
        if unknown:
            logger.debug(f"Ignoring pattern ids the store did not return: {sorted(unknown)}")

        omitted = [ref.pattern_id for ref in relevant if not ref.selected]
        if omitted:
            logger.info(f"Keeping {len(omitted)} learned pattern(s) the service did not select: {omitted}")
        if result.vendor_match is not None and selection.should_use_vendor_pattern is False:
            logger.info(
                f"Service advised against vendor pattern for {result.vendor_match.vendor}; keeping it"
            )

        reasoning = result.reasoning
        if selection.reasoning:
            reasoning = f"{reasoning} Service: {selection.reasoning}"

        return result.model_copy(
            update={
                "category_indicators": _merge_tags(
                    result.category_indicators, selection.category_indicators, CATEGORY_INDICATOR_TAGS
                ),
                "payment_indicators": _merge_tags(
                    result.payment_indicators, selection.payment_indicators, PAYMENT_INDICATOR_TAGS
                ),
                "relevant_patterns": relevant,
                "service_vendor_trusted": selection.should_use_vendor_pattern,
                "source": "generative",
                "reasoning": reasoning,
            }
        )

    @staticmethod
    def _describe(
        signals: SignalReport,
        vendor_pattern: Optional[VendorPattern],
        category_patterns: List[CategoryPattern],
        payment_pattern: Optional[PaymentPattern],
    ) -> str:
        parts = []
        if vendor_pattern is not None:
            parts.append(
                f"Vendor {vendor_pattern.vendor} learned as {vendor_pattern.category} "
                f"({vendor_pattern.correction_count} correction(s), {vendor_pattern.confidence:.2f})."
            )
        if category_patterns:
            parts.append(f"{len(category_patterns)} category pattern(s) matched.")
        if payment_pattern is not None:
            parts.append(f"Learned payment method {payment_pattern.payment_method}.")
        if signals.payment_method:
            parts.append(f"Receipt shows payment method {signals.payment_method}.")
        if signals.category_indicators:
            parts.append(f"Indicators: {', '.join(signals.category_indicators)}.")
        return " ".join(parts) or "No learned patterns or indicators found."
