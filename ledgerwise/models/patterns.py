from datetime import datetime, timezone
from typing import Annotated, List, Literal, Optional, Union

from pydantic import Field, field_validator

from ledgerwise.models.base import LWBaseModel
from ledgerwise.models.transactions import TransactionType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def amount_in_range(
    amount: Optional[float],
    amount_min: Optional[float],
    amount_max: Optional[float],
    low: float = 0.5,
    high: float = 1.5,
) -> bool:
    """True unless the amount falls well outside the range seen while learning."""
    if not amount or amount_min is None or amount_max is None:
        return True
    return amount_min * low <= amount <= amount_max * high


class VendorPattern(LWBaseModel):
    """
    What the user has taught us about one vendor.

    Keyed by the normalized vendor name. Every categorization correction for
    the vendor either reinforces this record or replaces its learned fields.
    """

    kind: Literal["vendor"] = "vendor"
    key: str = Field(..., min_length=1)
    vendor: str
    category: Optional[str] = None
    transaction_type: Optional[TransactionType] = None
    payment_method: Optional[str] = None
    income_source: Optional[str] = None
    confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    correction_count: int = Field(default=1, ge=0)
    # amounts seen on corrections that agree with the learned category
    amount_min: Optional[float] = None
    amount_max: Optional[float] = None
    last_updated: datetime = Field(default_factory=_utcnow)

    @property
    def pattern_id(self) -> str:
        return f"vendor:{self.key}"


class CategoryPattern(LWBaseModel):
    """
    A learned "category X was really category Y" correction.

    Confidence is the share of all corrections away from ``from_category``
    that ended in ``to_category``.
    """

    kind: Literal["category"] = "category"
    id: str
    from_category: str
    to_category: str
    occurrences: int = Field(default=1, ge=0)
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    keywords: List[str] = Field(default_factory=list)
    vendors: List[str] = Field(default_factory=list)
    reasons: List[str] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=_utcnow)

    @staticmethod
    def make_id(from_category: str, to_category: str) -> str:
        return f"cat:{from_category or 'none'}->{to_category}"

    @property
    def pattern_id(self) -> str:
        return self.id


class PaymentPattern(LWBaseModel):
    """The payment method a vendor is paid with, learned independently of category."""

    kind: Literal["payment"] = "payment"
    key: str = Field(..., min_length=1)
    vendor: str
    payment_method: str
    occurrences: int = Field(default=1, ge=0)
    confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    last_updated: datetime = Field(default_factory=_utcnow)

    @property
    def id(self) -> str:
        return f"pay:{self.key}"

    @property
    def pattern_id(self) -> str:
        return self.id


class CategoryCalibration(LWBaseModel):
    """
    How often categorizations landing on ``category`` survived review.

    Every correction away from a category counts as a miss for it. A
    categorization edit that keeps the category (only the type changed)
    counts as a hit.
    """

    kind: Literal["calibration"] = "calibration"
    category: str = Field(..., min_length=1)
    sample_size: int = Field(default=0, ge=0)
    correct: int = Field(default=0, ge=0)
    last_calibrated: datetime = Field(default_factory=_utcnow)

    @property
    def accuracy(self) -> float:
        return self.correct / self.sample_size if self.sample_size else 0.0

    @property
    def pattern_id(self) -> str:
        return f"calibration:{self.category}"


PatternRecord = Annotated[
    Union[VendorPattern, CategoryPattern, PaymentPattern, CategoryCalibration],
    Field(discriminator="kind"),
]


class CardLearningContext(LWBaseModel):
    receipt_id: Optional[str] = None
    vendor: str = ""
    amount: float = 0.0


class CardPaymentTypeMapping(LWBaseModel):
    card_last_four: str
    payment_type: Literal["Credit", "Debit"]
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    times_confirmed: int = Field(default=1, ge=1)
    learned_at: datetime = Field(default_factory=_utcnow)
    learned_from: CardLearningContext = Field(default_factory=CardLearningContext)

    @field_validator("card_last_four")
    @classmethod
    def validate_last_four(cls, value: str) -> str:
        if len(value) != 4 or not value.isdigit():
            raise ValueError("card_last_four must be exactly four digits")
        return value
