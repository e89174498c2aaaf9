"""
Card payment-type learning.

Remembers whether a card (by last four digits) is Credit or Debit once the
user says so. Repeated confirmation raises confidence by a fixed step; a
contradiction overwrites the type and resets confidence to a baseline that
is below a fresh mapping's. Unknown cards have no opinion: lookups return
None and callers must not read that as "debit".
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

from ledgerwise.core.config import LearningConfig
from ledgerwise.models.patterns import CardLearningContext, CardPaymentTypeMapping
from ledgerwise.services.confidence import average, step_up
from ledgerwise.services.errors import InvalidCardError
from ledgerwise.services.pattern_repository import PatternRepository

logger = logging.getLogger(__name__)

CARD_PAYMENT_TYPES = ("Credit", "Debit")


def normalize_last_four(card_last_four: Optional[str]) -> str:
    digits = (card_last_four or "").strip()
    if len(digits) != 4 or not digits.isdigit():
        raise InvalidCardError(f"Card last four must be exactly four digits, got {card_last_four!r}")
    return digits


def normalize_card_payment_type(payment_type: Optional[str]) -> str:
    value = (payment_type or "").strip().capitalize()
    if value not in CARD_PAYMENT_TYPES:
        raise InvalidCardError(f"Card payment type must be Credit or Debit, got {payment_type!r}")
    return value


class CardPaymentTypeLearner:
    def __init__(
        self,
        repository: Optional[PatternRepository] = None,
        config: Optional[LearningConfig] = None,
    ) -> None:
        self.repository = repository
        self.config = config or LearningConfig()
        self._lock = threading.RLock()
        self._mappings: Dict[str, CardPaymentTypeMapping] = {}
        if repository is not None:
            for mapping in repository.load_all("card"):
                self._mappings[mapping.card_last_four] = mapping

    def learn(
        self,
        card_last_four: str,
        payment_type: str,
        context: Optional[CardLearningContext] = None,
        learned_at: Optional[datetime] = None,
    ) -> CardPaymentTypeMapping:
        """
        Record a user confirmation that a card is Credit or Debit.

        Raises InvalidCardError for bad input and PatternStoreWriteFailure
        when the mapping cannot be saved.
        """
        last_four = normalize_last_four(card_last_four)
        kind = normalize_card_payment_type(payment_type)
        context = context or CardLearningContext()
        learned_at = learned_at or datetime.now(timezone.utc)

        with self._lock:
            existing = self._mappings.get(last_four)
            if existing is None:
                mapping = CardPaymentTypeMapping(
                    card_last_four=last_four,
                    payment_type=kind,
                    confidence=self.config.card_initial,
                    times_confirmed=1,
                    learned_at=learned_at,
                    learned_from=context,
                )
                logger.info(f"Learned card ****{last_four} is {kind}")
            elif existing.payment_type == kind:
                mapping = existing.model_copy(
                    update={
                        "confidence": step_up(
                            existing.confidence, self.config.card_step, self.config.max_confidence
                        ),
                        "times_confirmed": existing.times_confirmed + 1,
                        "learned_at": learned_at,
                        "learned_from": context,
                    }
                )
                logger.info(
                    f"Confirmed card ****{last_four} is {kind} "
                    f"({mapping.times_confirmed}x, {mapping.confidence:.2f})"
                )
            else:
                mapping = CardPaymentTypeMapping(
                    card_last_four=last_four,
                    payment_type=kind,
                    confidence=self.config.card_reset,
                    times_confirmed=1,
                    learned_at=learned_at,
                    learned_from=context,
                )
                logger.info(f"Card ****{last_four} corrected from {existing.payment_type} to {kind}")

            self._mappings[last_four] = mapping
            self.persist()
            return mapping.model_copy(deep=True)

    def lookup(self, card_last_four: Optional[str]) -> Optional[CardPaymentTypeMapping]:
        try:
            last_four = normalize_last_four(card_last_four)
        except InvalidCardError:
            return None
        with self._lock:
            mapping = self._mappings.get(last_four)
            return mapping.model_copy(deep=True) if mapping else None

    def payment_type_for(self, card_last_four: Optional[str]) -> Optional[str]:
        mapping = self.lookup(card_last_four)
        return mapping.payment_type if mapping else None

    def mappings(self) -> List[CardPaymentTypeMapping]:
        with self._lock:
            return [m.model_copy(deep=True) for m in self._mappings.values()]

    def persist(self) -> None:
        if self.repository is None:
            return
        with self._lock:
            self.repository.save_all("card", list(self._mappings.values()))

    def statistics(self) -> Dict[str, object]:
        mappings = self.mappings()
        return {
            "total_cards": len(mappings),
            "credit_cards": sum(1 for m in mappings if m.payment_type == "Credit"),
            "debit_cards": sum(1 for m in mappings if m.payment_type == "Debit"),
            "average_confidence": average(m.confidence for m in mappings),
            "high_confidence_cards": sorted(m.card_last_four for m in mappings if m.confidence >= 0.9),
        }
