"""
Pattern store for learned categorization patterns.

Holds the three pattern kinds learned from corrections (vendor, category,
payment) in memory, indexed for the lookups the pattern matcher needs,
alongside per-category calibration records.
The store is a projection of the correction log: ``correction_learning``
is the only writer, and a store rebuilt by replaying the log must equal
the live one.

Writes replace whole records under a re-entrant lock. ``transaction()``
holds that lock across every write one correction makes, so two
corrections for the same vendor cannot interleave.
"""
from __future__ import annotations

import logging
import re
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Set

from ledgerwise.core.config import LearningConfig
from ledgerwise.models.patterns import CategoryCalibration, CategoryPattern, PaymentPattern, VendorPattern
from ledgerwise.services.confidence import average
from ledgerwise.services.pattern_repository import PatternRepository

logger = logging.getLogger(__name__)

_BUSINESS_SUFFIXES = {"inc", "llc", "ltd", "corp", "co"}

_STOPWORDS = {
    "the", "and", "for", "with", "from", "purchase", "payment", "store",
    "receipt", "total", "order", "invoice", "item", "items",
}


def normalize_vendor(vendor: Optional[str]) -> str:
    """
    Key a vendor name for exact lookup.

    "HOME DEPOT, Inc." and "home depot" both become ``home depot``.
    """
    if not vendor:
        return ""
    text = re.sub(r"[^a-z0-9\s]", " ", vendor.lower())
    words = [w for w in text.split() if w not in _BUSINESS_SUFFIXES]
    return " ".join(words)


def tokenize(text: Optional[str]) -> Set[str]:
    """Lowercase word tokens worth matching category-pattern keywords on."""
    if not text:
        return set()
    tokens = re.findall(r"[a-z0-9]+", text.lower())
    return {t for t in tokens if len(t) >= 3 and not t.isdigit() and t not in _STOPWORDS}


class PatternStore:
    """In-memory index of learned patterns."""

    def __init__(self, config: Optional[LearningConfig] = None) -> None:
        self.config = config or LearningConfig()
        self._lock = threading.RLock()
        self._vendors: Dict[str, VendorPattern] = {}
        self._categories: Dict[str, CategoryPattern] = {}
        self._payments: Dict[str, PaymentPattern] = {}
        self._calibrations: Dict[str, CategoryCalibration] = {}
        self.corrections_applied = 0

    @classmethod
    def from_repository(
        cls,
        repository: PatternRepository,
        config: Optional[LearningConfig] = None,
    ) -> "PatternStore":
        store = cls(config=config)
        store.load(
            vendors=repository.load_all("vendor"),
            categories=repository.load_all("category"),
            payments=repository.load_all("payment"),
            calibrations=repository.load_all("calibration"),
            corrections_applied=len(repository.load_corrections()),
        )
        logger.info(
            f"Loaded pattern store: {len(store._vendors)} vendor, "
            f"{len(store._categories)} category, {len(store._payments)} payment patterns"
        )
        return store

    @contextmanager
    def transaction(self) -> Iterator["PatternStore"]:
        with self._lock:
            yield self

    # ------------------------------------------------------------------
    # Lookups (return copies; callers never mutate live records)
    # ------------------------------------------------------------------

    def find_vendor_pattern(self, vendor: Optional[str]) -> Optional[VendorPattern]:
        key = normalize_vendor(vendor)
        if not key:
            return None
        with self._lock:
            pattern = self._vendors.get(key)
            return pattern.model_copy(deep=True) if pattern else None

    def find_category_patterns(self, description: Optional[str], vendor: Optional[str]) -> List[CategoryPattern]:
        """Patterns whose keywords intersect the text, or that were learned on this vendor."""
        tokens = tokenize(description) | tokenize(vendor)
        key = normalize_vendor(vendor)
        with self._lock:
            matches = [
                pattern.model_copy(deep=True)
                for pattern in self._categories.values()
                if (key and key in pattern.vendors) or tokens.intersection(pattern.keywords)
            ]
        matches.sort(key=lambda p: (-p.confidence, -p.occurrences, p.id))
        return matches

    def find_payment_pattern(self, vendor: Optional[str]) -> Optional[PaymentPattern]:
        key = normalize_vendor(vendor)
        if not key:
            return None
        with self._lock:
            pattern = self._payments.get(key)
            return pattern.model_copy(deep=True) if pattern else None

    def get_category_pattern(self, pattern_id: str) -> Optional[CategoryPattern]:
        with self._lock:
            pattern = self._categories.get(pattern_id)
            return pattern.model_copy(deep=True) if pattern else None

    def category_patterns_from(self, from_category: str) -> List[CategoryPattern]:
        with self._lock:
            return [
                p.model_copy(deep=True)
                for p in self._categories.values()
                if p.from_category == from_category
            ]

    def get_calibration(self, category: Optional[str]) -> Optional[CategoryCalibration]:
        if not category:
            return None
        with self._lock:
            calibration = self._calibrations.get(category)
            return calibration.model_copy(deep=True) if calibration else None

    def calibrations(self) -> List[CategoryCalibration]:
        with self._lock:
            return [c.model_copy(deep=True) for c in self._calibrations.values()]

    def vendor_patterns(self) -> List[VendorPattern]:
        with self._lock:
            return [p.model_copy(deep=True) for p in self._vendors.values()]

    def category_patterns(self) -> List[CategoryPattern]:
        with self._lock:
            return [p.model_copy(deep=True) for p in self._categories.values()]

    def payment_patterns(self) -> List[PaymentPattern]:
        with self._lock:
            return [p.model_copy(deep=True) for p in self._payments.values()]

    # ------------------------------------------------------------------
    # Writes (whole-record replacement, last writer wins)
    # ------------------------------------------------------------------

    def upsert_vendor_pattern(self, pattern: VendorPattern) -> None:
        with self._lock:
            self._vendors[pattern.key] = pattern.model_copy(deep=True)

    def upsert_category_pattern(self, pattern: CategoryPattern) -> None:
        with self._lock:
            self._categories[pattern.id] = pattern.model_copy(deep=True)

    def upsert_payment_pattern(self, pattern: PaymentPattern) -> None:
        with self._lock:
            self._payments[pattern.key] = pattern.model_copy(deep=True)

    def upsert_calibration(self, calibration: CategoryCalibration) -> None:
        with self._lock:
            self._calibrations[calibration.category] = calibration.model_copy(deep=True)

    def count_correction(self) -> None:
        with self._lock:
            self.corrections_applied += 1

    def clear(self) -> None:
        with self._lock:
            self._vendors.clear()
            self._categories.clear()
            self._payments.clear()
            self._calibrations.clear()
            self.corrections_applied = 0

    def load(
        self,
        vendors: List[VendorPattern],
        categories: List[CategoryPattern],
        payments: List[PaymentPattern],
        calibrations: Optional[List[CategoryCalibration]] = None,
        corrections_applied: int = 0,
    ) -> None:
        with self._lock:
            self._vendors = {p.key: p.model_copy(deep=True) for p in vendors}
            self._categories = {p.id: p.model_copy(deep=True) for p in categories}
            self._payments = {p.key: p.model_copy(deep=True) for p in payments}
            self._calibrations = {c.category: c.model_copy(deep=True) for c in calibrations or []}
            self.corrections_applied = corrections_applied

    def replace_with(self, other: "PatternStore") -> None:
        """Swap in another store's records, e.g. one rebuilt from the log."""
        snapshot = other.snapshot()
        self.load(
            vendors=snapshot["vendor"],
            categories=snapshot["category"],
            payments=snapshot["payment"],
            calibrations=snapshot["calibration"],
            corrections_applied=other.corrections_applied,
        )

    def snapshot(self) -> Dict[str, list]:
        with self._lock:
            return {
                "vendor": self.vendor_patterns(),
                "category": self.category_patterns(),
                "payment": self.payment_patterns(),
                "calibration": self.calibrations(),
            }

    def persist(self, repository: PatternRepository) -> None:
        """
        Save every pattern kind. Raises PatternStoreWriteFailure.

        The lock is held until the last kind is written, so a slower save
        can never overwrite a newer snapshot.
        """
        with self._lock:
            for kind, records in self.snapshot().items():
                repository.save_all(kind, records)

    def statistics(self) -> Dict[str, object]:
        with self._lock:
            vendors = list(self._vendors.values())
            categories = list(self._categories.values())
            payments = list(self._payments.values())
            return {
                "vendor_patterns": len(vendors),
                "category_patterns": len(categories),
                "payment_patterns": len(payments),
                "calibrated_categories": len(self._calibrations),
                "total_corrections": self.corrections_applied,
                "average_vendor_confidence": average(p.confidence for p in vendors),
                "average_category_confidence": average(p.confidence for p in categories),
                "high_confidence_vendors": sorted(
                    p.vendor for p in vendors if p.confidence >= 0.9
                ),
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._vendors) + len(self._categories) + len(self._payments)
