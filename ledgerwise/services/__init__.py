# Lazy imports to avoid dependency chains at startup
def __getattr__(name):
    if name == "PatternStore":
        from ledgerwise.services.pattern_store import PatternStore
        return PatternStore
    elif name == "PatternMatcher":
        from ledgerwise.services.pattern_matcher import PatternMatcher
        return PatternMatcher
    elif name == "DecisionEngine":
        from ledgerwise.services.decision_engine import DecisionEngine
        return DecisionEngine
    elif name == "CorrectionRecorder":
        from ledgerwise.services.correction_learning import CorrectionRecorder
        return CorrectionRecorder
    elif name == "CardPaymentTypeLearner":
        from ledgerwise.services.card_payment_learning import CardPaymentTypeLearner
        return CardPaymentTypeLearner
    elif name == "extract_signals":
        from ledgerwise.services.signal_extraction import extract_signals
        return extract_signals
    elif name == "categorize_batch":
        from ledgerwise.services.batch_categorization import categorize_batch
        return categorize_batch
    raise AttributeError(f"module 'ledgerwise.services' has no attribute '{name}'")

__all__ = [
    "PatternStore",
    "PatternMatcher",
    "DecisionEngine",
    "CorrectionRecorder",
    "CardPaymentTypeLearner",
    "extract_signals",
    "categorize_batch",
]
