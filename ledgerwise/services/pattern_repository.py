"""
Persistence for learned patterns and the correction log.

The learning subsystem only needs load-all / save-all per record kind plus
an append-only correction log. ``PatternStore`` and the card learner hold
the live state; a repository is where that state survives restarts.
"""
from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Sequence

from pydantic import TypeAdapter, ValidationError

from ledgerwise.models.base import LWBaseModel
from ledgerwise.models.corrections import CategorizationCorrection
from ledgerwise.models.patterns import (
    CardPaymentTypeMapping,
    CategoryCalibration,
    CategoryPattern,
    PatternRecord,
    PaymentPattern,
    VendorPattern,
)
from ledgerwise.services.db import DB
from ledgerwise.services.errors import PatternStoreWriteFailure

logger = logging.getLogger(__name__)

RECORD_MODELS = {
    "vendor": VendorPattern,
    "category": CategoryPattern,
    "payment": PaymentPattern,
    "calibration": CategoryCalibration,
    "card": CardPaymentTypeMapping,
}

_PATTERN_RECORD = TypeAdapter(PatternRecord)


def parse_record(kind: str, payload: str) -> LWBaseModel:
    """Decode a stored record; pattern kinds go through the tagged union on ``kind``."""
    if kind == "card":
        return CardPaymentTypeMapping.model_validate_json(payload)
    record = _PATTERN_RECORD.validate_json(payload)
    if record.kind != kind:
        raise ValueError(f"Stored {record.kind} record under kind {kind}")
    return record


def record_key(kind: str, record: LWBaseModel) -> str:
    if kind == "vendor" or kind == "payment":
        return record.key
    if kind == "category":
        return record.id
    if kind == "calibration":
        return record.category
    if kind == "card":
        return record.card_last_four
    raise ValueError(f"Unknown record kind: {kind}")


def _check_kind(kind: str) -> None:
    if kind not in RECORD_MODELS:
        raise ValueError(f"Unknown record kind: {kind}")


class PatternRepository(ABC):
    """Load-all / save-all storage per record kind, plus the correction log."""

    @abstractmethod
    def load_all(self, kind: str) -> List[LWBaseModel]:
        ...

    @abstractmethod
    def save_all(self, kind: str, records: Sequence[LWBaseModel]) -> None:
        """Replace every stored record of ``kind``. Raises PatternStoreWriteFailure."""

    @abstractmethod
    def append_correction(self, correction: CategorizationCorrection) -> None:
        """Append to the log. Raises PatternStoreWriteFailure."""

    @abstractmethod
    def load_corrections(self) -> List[CategorizationCorrection]:
        """Every correction, oldest first."""


class InMemoryPatternRepository(PatternRepository):
    """Process-local repository, used in tests and when no state DB is wanted."""

    def __init__(self) -> None:
        self._records: Dict[str, List[LWBaseModel]] = {kind: [] for kind in RECORD_MODELS}
        self._corrections: List[CategorizationCorrection] = []
        self._lock = threading.Lock()

    def load_all(self, kind: str) -> List[LWBaseModel]:
        _check_kind(kind)
        with self._lock:
            return [record.model_copy(deep=True) for record in self._records[kind]]

    def save_all(self, kind: str, records: Sequence[LWBaseModel]) -> None:
        _check_kind(kind)
        with self._lock:
            self._records[kind] = [record.model_copy(deep=True) for record in records]

    def append_correction(self, correction: CategorizationCorrection) -> None:
        with self._lock:
            self._corrections.append(correction)

    def load_corrections(self) -> List[CategorizationCorrection]:
        with self._lock:
            return list(self._corrections)


class SQLitePatternRepository(PatternRepository):
    """Stores each record as a JSON document keyed by (kind, key)."""

    def __init__(self, db_path: str) -> None:
        # every DB call opens a fresh connection, so ":memory:" would lose the tables
        os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
        self.db = DB(sqlite_path=db_path)
        self._ensure_tables()

    def _ensure_tables(self) -> None:
        self.db.execute(
            """
            CREATE TABLE IF NOT EXISTS lw_patterns (
                kind TEXT NOT NULL,
                record_key TEXT NOT NULL,
                payload TEXT NOT NULL,
                updated_at TEXT,
                PRIMARY KEY (kind, record_key)
            )
            """
        )
        self.db.execute(
            """
            CREATE TABLE IF NOT EXISTS lw_corrections (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                correction_id TEXT UNIQUE NOT NULL,
                transaction_id TEXT,
                vendor TEXT,
                recorded_at TEXT,
                payload TEXT NOT NULL
            )
            """
        )

    def load_all(self, kind: str) -> List[LWBaseModel]:
        _check_kind(kind)
        rows = self.db.fetchall(
            "SELECT record_key, payload FROM lw_patterns WHERE kind = ? ORDER BY record_key",
            (kind,),
        )
        records: List[LWBaseModel] = []
        for key, payload in rows:
            try:
                records.append(parse_record(kind, payload))
            except (ValidationError, ValueError) as exc:
                logger.warning(f"Skipping unreadable {kind} record {key}: {exc}")
        return records

    def save_all(self, kind: str, records: Sequence[LWBaseModel]) -> None:
        _check_kind(kind)
        now = datetime.now(timezone.utc).isoformat()
        rows = [
            (kind, record_key(kind, record), record.model_dump_json(by_alias=True), now)
            for record in records
        ]
        try:
            self.db.replace_all(
                "DELETE FROM lw_patterns WHERE kind = ?",
                "INSERT INTO lw_patterns (kind, record_key, payload, updated_at) VALUES (?, ?, ?, ?)",
                rows,
                delete_params=(kind,),
            )
        except sqlite3.Error as exc:
            raise PatternStoreWriteFailure(kind=f"{kind} patterns", detail=str(exc)) from exc

    def append_correction(self, correction: CategorizationCorrection) -> None:
        try:
            self.db.execute(
                """
                INSERT INTO lw_corrections (correction_id, transaction_id, vendor, recorded_at, payload)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    correction.id,
                    correction.transaction_id,
                    correction.vendor,
                    correction.timestamp.isoformat(),
                    correction.model_dump_json(by_alias=True),
                ),
            )
        except sqlite3.Error as exc:
            raise PatternStoreWriteFailure(kind="correction", detail=str(exc)) from exc

    def load_corrections(self) -> List[CategorizationCorrection]:
        rows = self.db.fetchall("SELECT correction_id, payload FROM lw_corrections ORDER BY seq")
        corrections = []
        for correction_id, payload in rows:
            try:
                corrections.append(CategorizationCorrection.model_validate(json.loads(payload)))
            except (ValidationError, ValueError) as exc:
                logger.warning(f"Skipping unreadable correction {correction_id}: {exc}")
        return corrections
