from ledgerwise.models.base import LWBaseModel
from ledgerwise.models.transactions import LineItem, TransactionCandidate, TransactionRecord, TransactionType
from ledgerwise.models.patterns import (
    CardLearningContext,
    CardPaymentTypeMapping,
    CategoryCalibration,
    CategoryPattern,
    PatternRecord,
    PaymentPattern,
    VendorPattern,
)
from ledgerwise.models.corrections import CategorizationCorrection, CorrectedValues, FieldChange
from ledgerwise.models.categorization import (
    CategorizationJudgment,
    CategorizationResult,
    ExplicitTextFindings,
    PatternMatchResult,
    PatternRef,
    PatternSelection,
    VendorMatch,
)

__all__ = [
    "CardLearningContext",
    "CardPaymentTypeMapping",
    "CategorizationCorrection",
    "CategorizationJudgment",
    "CategorizationResult",
    "CategoryCalibration",
    "CategoryPattern",
    "CorrectedValues",
    "ExplicitTextFindings",
    "FieldChange",
    "LWBaseModel",
    "LineItem",
    "PatternMatchResult",
    "PatternRecord",
    "PatternRef",
    "PatternSelection",
    "PaymentPattern",
    "TransactionCandidate",
    "TransactionRecord",
    "TransactionType",
    "VendorMatch",
    "VendorPattern",
]
