"""
Ledgerwise Configuration

Settings for:
- Learning constants (how fast learned patterns gain or lose confidence)
- Decision thresholds (when learned evidence bypasses the generative service)
- Generative service provider, model and timeout
- State database location and batch pacing

The confidence constants are tuning knobs, not derived values. Only their
ordering is load-bearing, and that ordering is validated here.
"""

import logging
import os
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={raw!r}, using {default}")
        return default


@dataclass
class LearningConfig:
    """
    Confidence math for the feedback loop.

    - vendor_initial: confidence of a vendor pattern after its first correction
    - vendor_reset: confidence after a contradicting correction
    - vendor_reinforcement: fraction of the remaining gap to the cap closed
      by each repeated identical correction
    - card_initial / card_reset / card_step: card payment-type learner
    """
    vendor_initial: float = 0.7
    vendor_reset: float = 0.7
    vendor_reinforcement: float = 0.25
    payment_initial: float = 0.7
    payment_reset: float = 0.7
    card_initial: float = 0.8
    card_reset: float = 0.7
    card_step: float = 0.1
    max_confidence: float = 1.0
    max_reasons: int = 5
    max_keywords: int = 12

    def __post_init__(self):
        for name in ("vendor_initial", "vendor_reset", "payment_initial", "payment_reset",
                     "card_initial", "card_reset"):
            value = getattr(self, name)
            if not (0.0 < value <= self.max_confidence):
                raise ValueError(f"{name} must be in (0, max_confidence]")
        if not (0.0 < self.vendor_reinforcement < 1.0):
            raise ValueError("vendor_reinforcement must be between 0 and 1")
        if self.card_step <= 0:
            raise ValueError("card_step must be positive")
        if self.vendor_reset > self.vendor_initial or self.payment_reset > self.payment_initial:
            raise ValueError("A contradiction cannot be worth more than a first correction")
        if self.card_reset >= self.card_initial + self.card_step:
            raise ValueError("card_reset must stay below a confirmed card's confidence")
        if self.max_confidence > 1.0:
            raise ValueError("max_confidence cannot exceed 1.0")


@dataclass
class DecisionThresholds:
    """
    Thresholds used by the decision engine.

    - vendor_bypass: vendor confidence at or above this skips the generative
      service and applies the learned vendor pattern
    - review: results below this should be shown to the user for review
    - income_fix_penalty: confidence removed when a result had to be forced
      onto a category matching its type
    - repair_floor: a repaired result never drops below this
    - unusual_amount_factor: applied to a learned vendor's confidence when the
      amount is far outside the amounts it was learned on
    - calibration_min_samples: corrections a category needs before its
      historical accuracy replaces generative confidence
    """
    vendor_bypass: float = 0.6
    review: float = 0.6
    income_fix_penalty: float = 0.1
    repair_floor: float = 0.6
    unusual_amount_factor: float = 0.8
    calibration_min_samples: int = 5

    def __post_init__(self):
        if not (0.0 <= self.vendor_bypass <= 1.0):
            raise ValueError("vendor_bypass must be between 0 and 1")
        if not (0.0 <= self.review <= 1.0):
            raise ValueError("review must be between 0 and 1")
        if self.income_fix_penalty < 0:
            raise ValueError("income_fix_penalty cannot be negative")
        if not (0.0 <= self.repair_floor <= 1.0):
            raise ValueError("repair_floor must be between 0 and 1")
        if not (0.0 < self.unusual_amount_factor <= 1.0):
            raise ValueError("unusual_amount_factor must be in (0, 1]")
        if self.calibration_min_samples < 1:
            raise ValueError("calibration_min_samples must be at least 1")


@dataclass
class LLMSettings:
    """Generative categorization service settings."""
    provider: str = "gemini"  # gemini, anthropic
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.0-flash"
    anthropic_api_key: Optional[str] = None
    anthropic_model: str = "claude-sonnet-4-20250514"
    timeout_seconds: float = 15.0
    pattern_selection_temperature: float = 0.3
    categorization_temperature: float = 0.1
    max_tokens: int = 1024

    @property
    def api_key(self) -> Optional[str]:
        if self.provider == "anthropic":
            return self.anthropic_api_key
        return self.gemini_api_key

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["gemini_api_key"] = bool(self.gemini_api_key)
        data["anthropic_api_key"] = bool(self.anthropic_api_key)
        return data


@dataclass
class Settings:
    state_db: str = field(default_factory=lambda: os.path.join(os.getcwd(), "ledgerwise.sqlite3"))
    batch_call_spacing_seconds: float = 1.0
    learning: LearningConfig = field(default_factory=LearningConfig)
    thresholds: DecisionThresholds = field(default_factory=DecisionThresholds)
    llm: LLMSettings = field(default_factory=LLMSettings)

    @classmethod
    def from_env(cls) -> "Settings":
        llm = LLMSettings(
            provider=os.getenv("LLM_PROVIDER", "gemini").lower(),
            gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
            gemini_model=os.getenv("GEMINI_MODEL", LLMSettings.gemini_model),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY") or None,
            anthropic_model=os.getenv("ANTHROPIC_MODEL", LLMSettings.anthropic_model),
            timeout_seconds=_env_float("LLM_TIMEOUT_SECONDS", LLMSettings.timeout_seconds),
        )
        if llm.provider not in ("gemini", "anthropic"):
            logger.warning(f"Unknown LLM_PROVIDER {llm.provider!r}, using gemini")
            llm.provider = "gemini"

        thresholds = DecisionThresholds(
            review=_env_float("REVIEW_CONFIDENCE_THRESHOLD", DecisionThresholds.review),
        )
        return cls(
            state_db=os.getenv("LEDGERWISE_STATE_DB", os.path.join(os.getcwd(), "ledgerwise.sqlite3")),
            batch_call_spacing_seconds=_env_float("BATCH_CALL_SPACING_SECONDS", 1.0),
            thresholds=thresholds,
            llm=llm,
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None
