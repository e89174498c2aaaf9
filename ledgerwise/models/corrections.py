"""Correction log records."""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import ConfigDict, Field

from ledgerwise.models.base import LWBaseModel

# Fields whose change means the categorizer itself got it wrong
CATEGORIZATION_FIELDS = ("transaction_type", "category")

TRACKED_FIELDS = (
    "date",
    "description",
    "vendor",
    "amount",
    "transaction_type",
    "category",
    "payment_method",
    "income_source",
    "notes",
)


class FieldChange(LWBaseModel):
    model_config = ConfigDict(frozen=True)

    from_value: Any = Field(default=None, alias="from")
    to_value: Any = Field(default=None, alias="to")


class CorrectedValues(LWBaseModel):
    """The transaction's categorization as the user left it."""

    model_config = ConfigDict(frozen=True)

    transaction_type: Optional[str] = None
    category: Optional[str] = None
    payment_method: Optional[str] = None
    income_source: Optional[str] = None


class CategorizationCorrection(LWBaseModel):
    """
    One user edit to a finalized transaction.

    Immutable and append-only. The pattern store is a projection of the
    full list of these records.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    transaction_id: str = Field(..., min_length=1)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    vendor: str = ""
    description: str = ""
    amount: float = 0.0
    changes: Dict[str, FieldChange] = Field(default_factory=dict)
    corrected: CorrectedValues = Field(default_factory=CorrectedValues)
    user_notes: Optional[str] = None
    was_auto_categorization_correction: bool = False
    receipt_id: Optional[str] = None
    card_last_four: Optional[str] = None

    def change(self, field_name: str) -> Optional[FieldChange]:
        return self.changes.get(field_name)
