"""Stage 1 / Stage 2 categorization models."""
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field

from ledgerwise.models.base import LWBaseModel
from ledgerwise.models.patterns import CategoryCalibration
from ledgerwise.models.transactions import TransactionType

DecisionSource = Literal["deterministic", "generative"]


class VendorMatch(LWBaseModel):
    vendor: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    correction_count: int = 0
    learned_category: Optional[str] = None
    learned_type: Optional[TransactionType] = None
    learned_payment_method: Optional[str] = None
    learned_income_source: Optional[str] = None
    amount_min: Optional[float] = None
    amount_max: Optional[float] = None


class PatternRef(LWBaseModel):
    pattern_id: str
    kind: Literal["category", "payment"]
    confidence: float = Field(..., ge=0.0, le=1.0)
    details: str = ""
    # False when the generative service did not pick this pattern; it is
    # still passed on to Stage 2.
    selected: bool = True


class ExplicitTextFindings(LWBaseModel):
    payment_method: Optional[str] = None
    fuel: List[str] = Field(default_factory=list)
    hardware: List[str] = Field(default_factory=list)
    restaurant: List[str] = Field(default_factory=list)
    grocery: List[str] = Field(default_factory=list)
    office_supply: List[str] = Field(default_factory=list)
    check: List[str] = Field(default_factory=list)
    deposit: List[str] = Field(default_factory=list)


class PatternMatchResult(LWBaseModel):
    """Stage 1 output: every piece of evidence Stage 2 may use."""

    vendor_match: Optional[VendorMatch] = None
    category_indicators: List[str] = Field(default_factory=list)
    payment_indicators: List[str] = Field(default_factory=list)
    relevant_patterns: List[PatternRef] = Field(default_factory=list)
    explicit_text: ExplicitTextFindings = Field(default_factory=ExplicitTextFindings)
    learned_payment_method: Optional[str] = None
    # keyed by category; only read on the generative path
    calibrations: Dict[str, CategoryCalibration] = Field(default_factory=dict)
    service_vendor_trusted: Optional[bool] = None
    source: DecisionSource = "deterministic"
    reasoning: str = ""

    def to_summary(self) -> Dict[str, Any]:
        """Compact structure sent to the generative service."""
        return {
            "vendorMatch": (
                {
                    "vendor": self.vendor_match.vendor,
                    "category": self.vendor_match.learned_category,
                    "type": self.vendor_match.learned_type,
                    "paymentMethod": self.vendor_match.learned_payment_method,
                    "incomeSource": self.vendor_match.learned_income_source,
                    "correctionCount": self.vendor_match.correction_count,
                    "confidence": round(self.vendor_match.confidence, 3),
                }
                if self.vendor_match
                else None
            ),
            "relevantPatterns": [
                {"id": ref.pattern_id, "kind": ref.kind, "details": ref.details,
                 "confidence": round(ref.confidence, 3)}
                for ref in self.relevant_patterns
            ],
            "categoryIndicators": list(self.category_indicators),
            "paymentIndicators": list(self.payment_indicators),
            "explicitText": self.explicit_text.model_dump(),
        }


class PatternSelection(LWBaseModel):
    """The generative service's advisory answer to the Stage 1 question."""

    vendor_match_confidence: Optional[float] = None
    should_use_vendor_pattern: Optional[bool] = None
    category_indicators: List[str] = Field(default_factory=list)
    payment_indicators: List[str] = Field(default_factory=list)
    relevant_pattern_ids: List[str] = Field(default_factory=list)
    reasoning: str = ""


class CategorizationJudgment(LWBaseModel):
    """The generative service's parsed Stage 2 answer, before validation."""

    transaction_type: TransactionType
    category: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    payment_method: Optional[str] = None
    income_source: Optional[str] = None
    applied_patterns: List[str] = Field(default_factory=list)
    reasoning: str = ""


class CategorizationResult(LWBaseModel):
    """Stage 2 output."""

    transaction_type: TransactionType
    category: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    payment_method: Optional[str] = None
    income_source: Optional[str] = None
    applied_patterns: List[str] = Field(default_factory=list)
    reasoning: str = ""
    decided_by: DecisionSource = "deterministic"
    needs_review: bool = False
