"""Transaction models consumed by the categorizer."""
from typing import List, Literal, Optional

from pydantic import Field, field_validator

from ledgerwise.models.base import LWBaseModel

TransactionType = Literal["income", "expense"]


class LineItem(LWBaseModel):
    description: str = ""
    amount: Optional[float] = None


class TransactionCandidate(LWBaseModel):
    """What the OCR/extraction collaborator hands over for categorization."""

    description: str = ""
    amount: float = 0.0
    vendor: str = ""
    line_items: List[LineItem] = Field(default_factory=list)
    ocr_payment_method: Optional[str] = None
    transaction_id: Optional[str] = None

    @property
    def line_item_text(self) -> str:
        return " ".join(item.description for item in self.line_items if item.description)


class TransactionRecord(LWBaseModel):
    """A finalized transaction as the user sees it, before or after an edit."""

    id: str = Field(..., min_length=1)
    date: Optional[str] = None
    description: str = ""
    vendor: str = ""
    amount: float = 0.0
    transaction_type: TransactionType = "expense"
    category: str = ""
    payment_method: Optional[str] = None
    income_source: Optional[str] = None
    notes: Optional[str] = None
    receipt_id: Optional[str] = None
    card_last_four: Optional[str] = None

    @field_validator("id")
    @classmethod
    def normalize_id(cls, value: str) -> str:
        return value.strip()
