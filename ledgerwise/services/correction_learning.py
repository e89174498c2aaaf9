"""
Correction Learning Service

When users edit a finalized transaction, record the edit and learn from it
so future categorization agrees with them.

Learns:
- Vendor patterns (category, type, payment method, income source per vendor)
- Category patterns ("X was really Y", keyed by keywords and vendor)
- Payment patterns (payment method per vendor, independent of category)
- Category calibration (how often a categorization survived review)
- Card payment types, when a card payment correction names the card

The correction log is the source of truth. ``apply_correction`` is the only
code that turns a correction into pattern updates, and replaying the whole
log through it from an empty store reproduces the live store.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from ledgerwise.core.categories import infer_type_for_category
from ledgerwise.core.config import LearningConfig
from ledgerwise.models.corrections import (
    CATEGORIZATION_FIELDS,
    TRACKED_FIELDS,
    CategorizationCorrection,
    CorrectedValues,
    FieldChange,
)
from ledgerwise.models.patterns import (
    CardLearningContext,
    CategoryCalibration,
    CategoryPattern,
    PaymentPattern,
    VendorPattern,
)
from ledgerwise.models.transactions import TransactionRecord
from ledgerwise.services.card_payment_learning import CardPaymentTypeLearner
from ledgerwise.services.confidence import occurrence_ratio, reinforce
from ledgerwise.services.errors import InvalidCorrectionError
from ledgerwise.services.logging import log_correction
from ledgerwise.services.pattern_repository import PatternRepository
from ledgerwise.services.pattern_store import PatternStore, normalize_vendor, tokenize

logger = logging.getLogger(__name__)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _same(before: Any, after: Any) -> bool:
    if _is_blank(before) and _is_blank(after):
        return True
    if isinstance(before, float) or isinstance(after, float):
        try:
            return round(float(before), 2) == round(float(after), 2)
        except (TypeError, ValueError):
            return False
    return before == after


def diff_transactions(before: TransactionRecord, after: TransactionRecord) -> Dict[str, FieldChange]:
    """Field-by-field changes between the pre-edit and post-edit transaction."""
    changes: Dict[str, FieldChange] = {}
    for name in TRACKED_FIELDS:
        old = getattr(before, name)
        new = getattr(after, name)
        if not _same(old, new):
            changes[name] = FieldChange(from_value=old, to_value=new)
    return changes


def build_correction(
    before: TransactionRecord,
    after: TransactionRecord,
    user_notes: Optional[str] = None,
    correction_id: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> Optional[CategorizationCorrection]:
    """The correction for an edit, or None when nothing tracked changed."""
    if before.id != after.id:
        raise InvalidCorrectionError(
            "Before and after must be the same transaction",
            context={"before_id": before.id, "after_id": after.id},
        )

    changes = diff_transactions(before, after)
    if not changes:
        return None

    return CategorizationCorrection(
        id=correction_id or f"corr_{uuid.uuid4().hex[:12]}",
        transaction_id=after.id,
        timestamp=timestamp or datetime.now(timezone.utc),
        vendor=after.vendor or before.vendor,
        description=after.description or before.description,
        amount=after.amount,
        changes=changes,
        corrected=CorrectedValues(
            transaction_type=after.transaction_type,
            category=after.category or None,
            payment_method=after.payment_method,
            income_source=after.income_source,
        ),
        user_notes=user_notes if not _is_blank(user_notes) else None,
        was_auto_categorization_correction=any(name in changes for name in CATEGORIZATION_FIELDS),
        receipt_id=after.receipt_id or before.receipt_id,
        card_last_four=after.card_last_four or before.card_last_four,
    )


# ----------------------------------------------------------------------
# Projection: correction -> pattern updates
# ----------------------------------------------------------------------

def _widen_range(low: Optional[float], high: Optional[float], amount: Optional[float]):
    if not amount or amount <= 0:
        return low, high
    if low is None or high is None:
        return amount, amount
    return min(low, amount), max(high, amount)


def _learn_vendor(store: PatternStore, correction: CategorizationCorrection, key: str) -> Optional[Dict[str, Any]]:
    config = store.config
    corrected = correction.corrected
    category = corrected.category
    if not category:
        return None
    transaction_type = corrected.transaction_type or infer_type_for_category(category)
    income_source = corrected.income_source if transaction_type == "income" else None

    existing = store.find_vendor_pattern(correction.vendor)
    fresh_min, fresh_max = _widen_range(None, None, correction.amount)
    if existing is None:
        pattern = VendorPattern(
            key=key,
            vendor=correction.vendor,
            category=category,
            transaction_type=transaction_type,
            payment_method=corrected.payment_method,
            income_source=income_source,
            confidence=config.vendor_initial,
            correction_count=1,
            amount_min=fresh_min,
            amount_max=fresh_max,
            last_updated=correction.timestamp,
        )
        outcome = "created"
    elif existing.category == category and existing.transaction_type == transaction_type:
        amount_min, amount_max = _widen_range(existing.amount_min, existing.amount_max, correction.amount)
        pattern = existing.model_copy(
            update={
                "confidence": reinforce(existing.confidence, config),
                "correction_count": existing.correction_count + 1,
                "amount_min": amount_min,
                "amount_max": amount_max,
                "payment_method": corrected.payment_method or existing.payment_method,
                "income_source": income_source or existing.income_source,
                "last_updated": correction.timestamp,
            }
        )
        outcome = "reinforced"
    else:
        # contradiction: replace the learned fields, start over
        pattern = existing.model_copy(
            update={
                "vendor": correction.vendor,
                "category": category,
                "transaction_type": transaction_type,
                "payment_method": corrected.payment_method or existing.payment_method,
                "income_source": income_source,
                "confidence": config.vendor_reset,
                "correction_count": 1,
                "amount_min": fresh_min,
                "amount_max": fresh_max,
                "last_updated": correction.timestamp,
            }
        )
        outcome = "reset"

    store.upsert_vendor_pattern(pattern)
    return {"id": pattern.pattern_id, "outcome": outcome, "confidence": pattern.confidence}


def _merge_limited(existing: List[str], new: Iterable[str], limit: int) -> List[str]:
    """Keep insertion order, drop duplicates, keep the most recent ``limit``."""
    merged = [item for item in existing]
    for item in new:
        if item in merged:
            merged.remove(item)
        merged.append(item)
    return merged[-limit:] if limit > 0 else merged


def _learn_category(store: PatternStore, correction: CategorizationCorrection, key: str) -> Optional[Dict[str, Any]]:
    change = correction.change("category")
    if change is None or _is_blank(change.to_value):
        return None
    config = store.config
    from_category = change.from_value or ""
    to_category = change.to_value
    pattern_id = CategoryPattern.make_id(from_category, to_category)

    keywords = sorted(tokenize(correction.vendor) | tokenize(correction.description))
    reasons = [correction.user_notes] if correction.user_notes else []
    vendors = [key] if key else []

    existing = store.get_category_pattern(pattern_id)
    if existing is None:
        pattern = CategoryPattern(
            id=pattern_id,
            from_category=from_category,
            to_category=to_category,
            occurrences=1,
            keywords=_merge_limited([], keywords, config.max_keywords),
            vendors=vendors,
            reasons=_merge_limited([], reasons, config.max_reasons),
            last_updated=correction.timestamp,
        )
    else:
        pattern = existing.model_copy(
            update={
                "occurrences": existing.occurrences + 1,
                "keywords": _merge_limited(existing.keywords, keywords, config.max_keywords),
                "vendors": _merge_limited(existing.vendors, vendors, 0),
                "reasons": _merge_limited(existing.reasons, reasons, config.max_reasons),
                "last_updated": correction.timestamp,
            }
        )

    siblings = [p for p in store.category_patterns_from(from_category) if p.id != pattern_id]
    total = pattern.occurrences + sum(p.occurrences for p in siblings)
    pattern = pattern.model_copy(update={"confidence": occurrence_ratio(pattern.occurrences, total)})
    store.upsert_category_pattern(pattern)
    for sibling in siblings:
        store.upsert_category_pattern(
            sibling.model_copy(update={"confidence": occurrence_ratio(sibling.occurrences, total)})
        )
    return {"id": pattern.id, "occurrences": pattern.occurrences, "confidence": pattern.confidence}


def _learn_payment(store: PatternStore, correction: CategorizationCorrection, key: str) -> Optional[Dict[str, Any]]:
    change = correction.change("payment_method")
    if change is None or _is_blank(change.to_value):
        return None
    config = store.config
    method = change.to_value

    existing = store.find_payment_pattern(correction.vendor)
    if existing is not None and existing.payment_method == method:
        pattern = existing.model_copy(
            update={
                "occurrences": existing.occurrences + 1,
                "confidence": reinforce(existing.confidence, config),
                "last_updated": correction.timestamp,
            }
        )
    else:
        pattern = PaymentPattern(
            key=key,
            vendor=correction.vendor,
            payment_method=method,
            occurrences=1,
            confidence=config.payment_reset if existing is not None else config.payment_initial,
            last_updated=correction.timestamp,
        )
    store.upsert_payment_pattern(pattern)

    vendor_pattern = store.find_vendor_pattern(correction.vendor)
    if vendor_pattern is not None and vendor_pattern.payment_method != method:
        store.upsert_vendor_pattern(vendor_pattern.model_copy(update={"payment_method": method}))

    return {"id": pattern.id, "payment_method": method, "confidence": pattern.confidence}


def _learn_calibration(store: PatternStore, correction: CategorizationCorrection) -> Optional[Dict[str, Any]]:
    """Corrected away from a category is a miss for it; kept is a hit."""
    change = correction.change("category")
    if change is None:
        category, hit = correction.corrected.category, True
    else:
        category, hit = change.from_value, False
    if _is_blank(category):
        return None
    existing = store.get_calibration(category) or CategoryCalibration(category=category)
    calibration = existing.model_copy(
        update={
            "sample_size": existing.sample_size + 1,
            "correct": existing.correct + (1 if hit else 0),
            "last_calibrated": correction.timestamp,
        }
    )
    store.upsert_calibration(calibration)
    return {"category": category, "sample_size": calibration.sample_size, "accuracy": calibration.accuracy}


def apply_correction(store: PatternStore, correction: CategorizationCorrection) -> Dict[str, Any]:
    """
    Project one correction onto the store, atomically.

    Returns what was learned. Touches nothing but ``store``.
    """
    learned: Dict[str, Any] = {
        "vendor_pattern": None,
        "category_pattern": None,
        "payment_pattern": None,
        "calibration": None,
    }
    key = normalize_vendor(correction.vendor)

    with store.transaction():
        store.count_correction()
        if correction.was_auto_categorization_correction:
            if key:
                learned["vendor_pattern"] = _learn_vendor(store, correction, key)
            learned["category_pattern"] = _learn_category(store, correction, key)
            learned["calibration"] = _learn_calibration(store, correction)
        if key:
            learned["payment_pattern"] = _learn_payment(store, correction, key)

    return learned


def replay_corrections(
    corrections: Iterable[CategorizationCorrection],
    config: Optional[LearningConfig] = None,
) -> PatternStore:
    """Rebuild a pattern store from an empty state by replaying the log in order."""
    store = PatternStore(config=config)
    for correction in corrections:
        apply_correction(store, correction)
    return store


class CorrectionRecorder:
    """
    Records user edits and feeds them into the learned patterns.

    Usage:
        recorder = CorrectionRecorder(store, repository, card_learner)
        outcome = recorder.record_edit(before, after, user_notes="This is a fuel card")
        if outcome:
            print(outcome["learned"])
    """

    def __init__(
        self,
        store: PatternStore,
        repository: PatternRepository,
        card_learner: Optional[CardPaymentTypeLearner] = None,
    ) -> None:
        self.store = store
        self.repository = repository
        self.card_learner = card_learner

    def record_edit(
        self,
        before: TransactionRecord,
        after: TransactionRecord,
        user_notes: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Diff, log and learn from one edit.

        Returns None when nothing tracked changed. A PatternStoreWriteFailure
        from the repository propagates: the caller must know the correction
        was not saved.
        """
        correction = build_correction(before, after, user_notes=user_notes)
        if correction is None:
            return None
        return self.record(correction)

    def record(self, correction: CategorizationCorrection) -> Dict[str, Any]:
        # the log is the source of truth, so it is written first; the store
        # lock keeps log order, live order and the saved snapshot in step
        with self.store.transaction():
            self.repository.append_correction(correction)
            learned = apply_correction(self.store, correction)
            self.store.persist(self.repository)

        card = self._learn_card(correction)
        if card is not None:
            learned["card"] = {
                "card_last_four": card.card_last_four,
                "payment_type": card.payment_type,
                "confidence": card.confidence,
            }

        log_correction(
            correction_id=correction.id,
            transaction_id=correction.transaction_id,
            vendor=correction.vendor,
            changed_fields=sorted(correction.changes),
            learned=learned,
        )
        return {
            "correction": correction,
            "learned": learned,
            "message": self._learning_message(correction, learned),
        }

    def _learn_card(self, correction: CategorizationCorrection):
        if self.card_learner is None or not correction.card_last_four:
            return None
        change = correction.change("payment_method")
        if change is None or change.to_value not in ("Credit", "Debit"):
            return None
        return self.card_learner.learn(
            correction.card_last_four,
            change.to_value,
            context=CardLearningContext(
                receipt_id=correction.receipt_id,
                vendor=correction.vendor,
                amount=correction.amount,
            ),
            learned_at=correction.timestamp,
        )

    @staticmethod
    def _learning_message(correction: CategorizationCorrection, learned: Dict[str, Any]) -> str:
        vendor_pattern = learned.get("vendor_pattern")
        if vendor_pattern and vendor_pattern["outcome"] == "reset":
            return f"Got it. {correction.vendor} will be categorized as {correction.corrected.category} from now on."
        if vendor_pattern:
            return f"Learned: {correction.vendor} is {correction.corrected.category}."
        if learned.get("payment_pattern"):
            return f"Learned: {correction.vendor} is paid by {learned['payment_pattern']['payment_method']}."
        if correction.was_auto_categorization_correction:
            return "Correction recorded."
        return "Edit recorded; nothing to learn from it."

    def rebuild(self) -> Dict[str, object]:
        """Replay the persisted log into the live store and save the result."""
        with self.store.transaction():
            corrections = self.repository.load_corrections()
            rebuilt = replay_corrections(corrections, config=self.store.config)
            self.store.replace_with(rebuilt)
            self.store.persist(self.repository)
        logger.info(f"Rebuilt pattern store from {len(corrections)} correction(s)")
        return self.store.statistics()

    def corrections(self, limit: Optional[int] = None) -> List[CategorizationCorrection]:
        """Most recent first."""
        items = list(reversed(self.repository.load_corrections()))
        return items[:limit] if limit else items
