"""Generative categorization service.

The pattern matcher and decision engine only see the narrow
``GenerativeCategorizationService`` interface:

- ``select_relevant_patterns``: advisory Stage 1 question (which learned
  patterns and indicator tags apply)
- ``classify``: Stage 2 judgment (type, category, payment method)

Both receive a compact pattern summary, never the raw correction log.

Supports:
- Google Gemini ``generateContent`` (default)
- Anthropic Messages

Every call has a bounded timeout and no retries. Failures surface as
``ExternalServiceError`` or ``MalformedResponseError``; callers fall back to
deterministic rules.
"""
from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from ledgerwise.core.categories import (
    EXPENSE_CATEGORIES,
    INCOME_CATEGORIES,
    INCOME_SOURCES,
    normalize_category,
    normalize_income_source,
    normalize_payment_method,
)
from ledgerwise.core.config import LLMSettings
from ledgerwise.models.categorization import CategorizationJudgment, PatternSelection
from ledgerwise.models.transactions import TransactionCandidate
from ledgerwise.services.errors import ExternalServiceError, MalformedResponseError

logger = logging.getLogger(__name__)

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"


class GenerativeCategorizationService(ABC):
    """Swappable generative categorizer."""

    name = "generative"

    def __init__(self, settings: LLMSettings, http_client: Optional[httpx.Client] = None) -> None:
        self.settings = settings
        self.timeout = settings.timeout_seconds
        self._http_client = http_client

    @property
    def is_available(self) -> bool:
        return self.settings.is_configured

    def select_relevant_patterns(
        self,
        transaction: TransactionCandidate,
        pattern_summary: Dict[str, Any],
    ) -> PatternSelection:
        prompt = build_pattern_selection_prompt(transaction, pattern_summary)
        data = self.generate_json(prompt, temperature=self.settings.pattern_selection_temperature)
        return parse_pattern_selection(data, service=self.name)

    def classify(
        self,
        transaction: TransactionCandidate,
        pattern_summary: Dict[str, Any],
    ) -> CategorizationJudgment:
        prompt = build_categorization_prompt(transaction, pattern_summary)
        data = self.generate_json(prompt, temperature=self.settings.categorization_temperature)
        return parse_categorization_judgment(data, service=self.name)

    def generate_json(self, prompt: str, temperature: float) -> Dict[str, Any]:
        text = self._generate_text(prompt, temperature)
        if not text or not text.strip():
            raise MalformedResponseError(self.name, "Response contained no text")
        return _parse_llm_json(text, service=self.name)

    @abstractmethod
    def _generate_text(self, prompt: str, temperature: float) -> str:
        ...

    def _post(self, url: str, payload: Dict[str, Any], headers: Dict[str, str],
              params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        try:
            if self._http_client is not None:
                response = self._http_client.post(
                    url, json=payload, headers=headers, params=params, timeout=self.timeout
                )
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(url, json=payload, headers=headers, params=params)
        except httpx.TimeoutException as exc:
            raise ExternalServiceError(self.name, f"Timed out after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise ExternalServiceError(self.name, str(exc)) from exc

        if response.status_code >= 400:
            raise ExternalServiceError(
                self.name,
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise MalformedResponseError(self.name, "Response body was not JSON") from exc
        if not isinstance(data, dict):
            raise MalformedResponseError(self.name, f"Response body was a JSON {type(data).__name__}, not an object")
        return data


class GeminiCategorizationService(GenerativeCategorizationService):
    name = "gemini"

    def _generate_text(self, prompt: str, temperature: float) -> str:
        if not self.settings.gemini_api_key:
            raise ExternalServiceError(self.name, "Gemini API key not configured")

        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": temperature,
                "responseMimeType": "application/json",
            },
        }
        data = self._post(
            GEMINI_URL.format(model=self.settings.gemini_model),
            payload,
            headers={"Content-Type": "application/json"},
            params={"key": self.settings.gemini_api_key},
        )
        return _extract_gemini_text(data, service=self.name)


class AnthropicCategorizationService(GenerativeCategorizationService):
    name = "anthropic"

    def _generate_text(self, prompt: str, temperature: float) -> str:
        if not self.settings.anthropic_api_key:
            raise ExternalServiceError(self.name, "Anthropic key not configured")

        headers = {
            "x-api-key": self.settings.anthropic_api_key,
            "anthropic-version": "2023-06-01",
            "content-type": "application/json",
        }
        payload = {
            "model": self.settings.anthropic_model,
            "max_tokens": self.settings.max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        data = self._post(ANTHROPIC_URL, payload, headers=headers)
        return _extract_message_text(data, service=self.name)


def build_generative_service(
    settings: LLMSettings,
    http_client: Optional[httpx.Client] = None,
) -> Optional[GenerativeCategorizationService]:
    """The configured provider, or None when no key is set."""
    if not settings.is_configured:
        logger.info("No generative categorization key configured; using deterministic rules only")
        return None
    if settings.provider == "anthropic":
        return AnthropicCategorizationService(settings, http_client=http_client)
    return GeminiCategorizationService(settings, http_client=http_client)


# ----------------------------------------------------------------------
# Prompts
# ----------------------------------------------------------------------

def _transaction_block(transaction: TransactionCandidate) -> str:
    lines = [
        f"- Description: {transaction.description}",
        f"- Amount: ${transaction.amount:.2f}",
        f"- Vendor: {transaction.vendor}",
    ]
    if transaction.line_items:
        lines.append(f"- Line items: {transaction.line_item_text}")
    return "\n".join(lines)


def _tags(values: Optional[List[str]]) -> str:
    return ", ".join(values) if values else "none"


def build_pattern_selection_prompt(transaction: TransactionCandidate, summary: Dict[str, Any]) -> str:
    explicit = summary.get("explicitText") or {}
    learned = {
        "vendorMatch": summary.get("vendorMatch"),
        "relevantPatterns": summary.get("relevantPatterns") or [],
    }
    return f"""You are a pattern recognition system for financial transaction categorization.

Given this transaction, identify which learned patterns apply:

Transaction:
{_transaction_block(transaction)}

Learned Patterns Available:
{json.dumps(learned, indent=2, default=str)}

Explicit Indicators Detected:
- Payment method text: {explicit.get('payment_method') or 'none'}
- Fuel indicators: {_tags(explicit.get('fuel'))}
- Hardware indicators: {_tags(explicit.get('hardware'))}
- Restaurant indicators: {_tags(explicit.get('restaurant'))}
- Grocery indicators: {_tags(explicit.get('grocery'))}
- Office supply indicators: {_tags(explicit.get('office_supply'))}
- Check indicators: {_tags(explicit.get('check'))}
- Deposit indicators: {_tags(explicit.get('deposit'))}

Respond ONLY with valid JSON in this format:
{{
  "vendorMatchConfidence": 0.0 to 1.0,
  "shouldUseVendorPattern": true/false,
  "categoryIndicators": ["fuel", "hardware", "restaurant", "grocery", "office_supply", "check", "deposit"],
  "paymentIndicators": ["explicit_text", "learned_pattern", "card_brand"],
  "relevantPatternIds": ["id of each applicable learned pattern"],
  "reasoning": "brief explanation of which patterns apply and why"
}}

Rules:
1. If payment method text is detected, ALWAYS include "explicit_text" in paymentIndicators
2. If vendorMatch exists with high confidence (>0.8), set shouldUseVendorPattern: true
3. Include every indicator family that was detected in categoryIndicators
4. Only return pattern ids that appear in Learned Patterns Available
5. Do NOT suggest a category; only select from the evidence above"""


def build_categorization_prompt(transaction: TransactionCandidate, summary: Dict[str, Any]) -> str:
    expense = ", ".join(f"{label} ({value})" for value, label in EXPENSE_CATEGORIES.items())
    income = ", ".join(f"{label} ({value})" for value, label in INCOME_CATEGORIES.items())
    explicit = summary.get("explicitText") or {}
    vendor_match = summary.get("vendorMatch")

    absolute_rules = ""
    if vendor_match and vendor_match.get("category"):
        absolute_rules += "\nABSOLUTE RULE - Vendor Exact Match:\n"
        absolute_rules += (
            f"- Vendor \"{vendor_match['vendor']}\" has been corrected "
            f"{vendor_match.get('correctionCount', 1)} time(s)\n"
        )
        if vendor_match.get("paymentMethod"):
            absolute_rules += f"- Payment Method MUST be: \"{vendor_match['paymentMethod']}\"\n"
        if vendor_match.get("incomeSource"):
            absolute_rules += f"- Income Source MUST be: \"{vendor_match['incomeSource']}\"\n"
        absolute_rules += f"- Category MUST be: \"{vendor_match['category']}\"\n"
        if vendor_match.get("type"):
            absolute_rules += f"- Type MUST be: \"{vendor_match['type']}\"\n"
        absolute_rules += "- DO NOT DEVIATE from these learned patterns\n"

    if explicit.get("payment_method"):
        absolute_rules += "\nABSOLUTE RULE - Explicit Payment Method:\n"
        absolute_rules += f"- Receipt explicitly shows: \"{explicit['payment_method']}\"\n"
        absolute_rules += f"- Payment Method MUST be: \"{explicit['payment_method']}\"\n"

    detected = ""
    if explicit.get("deposit"):
        detected += f"\nDEPOSIT DETECTED ({_tags(explicit['deposit'])}): type income, category gross_receipts, payment Deposit\n"
    if explicit.get("check"):
        detected += (
            f"\nCHECK DETECTED ({_tags(explicit['check'])}): payment Check, income source check, "
            "type income unless the text says the check was written or sent. "
            "The vendor on a check is the ACCOUNT HOLDER, not the payee\n"
        )
    if explicit.get("fuel"):
        detected += f"\nFUEL DETECTED ({_tags(explicit['fuel'])}): category MUST be car_and_truck\n"
    for family, category in (
        ("hardware", "repairs_maintenance"),
        ("restaurant", "meals"),
        ("grocery", "supplies"),
        ("office_supply", "office_expense"),
    ):
        if explicit.get(family):
            detected += f"\n{family.upper()} DETECTED ({_tags(explicit[family])}): category should be {category}\n"

    patterns = summary.get("relevantPatterns") or []
    if patterns:
        detected += "\nLEARNED PATTERNS (from user corrections):\n"
        for pattern in patterns:
            detected += f"- [{pattern['id']}] {pattern['details']} (confidence: {pattern['confidence'] * 100:.0f}%)\n"

    if not absolute_rules and not detected:
        detected = "No specific patterns found. Use your best judgment based on the transaction details.\n"

    return f"""You are a focused categorization system. You have already identified the relevant patterns.
Now apply them to categorize this transaction.

Transaction:
{_transaction_block(transaction)}

Available EXPENSE categories: {expense}
Available INCOME categories: {income}
{absolute_rules}{detected}
Respond ONLY with valid JSON in this exact format:
{{
  "type": "income" or "expense",
  "category": "value from parentheses (e.g., car_and_truck, supplies)",
  "confidence": 0.0 to 1.0,
  "paymentMethod": "Card" | "Cash" | "Check" | "Credit" | "Debit" | "Deposit" (ONLY if indicated or clearly detectable),
  "incomeSource": {' | '.join(f'"{s}"' for s in INCOME_SOURCES)} (ONLY for income),
  "appliedPatterns": ["ids of the patterns you applied"],
  "reasoning": "brief explanation of which patterns were applied"
}}

CRITICAL RULES:
1. If an ABSOLUTE RULE gives a value, USE IT
2. Deposit outranks check, check outranks the learned vendor, the learned vendor outranks keyword indicators
3. Return the VALUE in parentheses (e.g., car_and_truck), NOT the label
4. For income transactions, ONLY use income categories (gross_receipts or other_income)
5. Confidence HIGH (>0.9) when applying absolute rules, MODERATE (0.7-0.9) for detected patterns, LOW (<0.7) when guessing"""


# ----------------------------------------------------------------------
# Response parsing
# ----------------------------------------------------------------------

def _extract_gemini_text(data: Dict[str, Any], service: str = "gemini") -> str:
    if not isinstance(data, dict):
        raise MalformedResponseError(service, "Response body was not a JSON object")
    try:
        text = data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return ""
    if text is None:
        return ""
    if not isinstance(text, str):
        raise MalformedResponseError(service, f"Response text was a {type(text).__name__}")
    return text


def _extract_message_text(data: Dict[str, Any], service: str = "anthropic") -> str:
    if not isinstance(data, dict):
        raise MalformedResponseError(service, "Response body was not a JSON object")
    content = data.get("content", [])
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        raise MalformedResponseError(service, f"Response content was a {type(content).__name__}")
    parts = []
    for block in content:
        if not isinstance(block, dict):
            continue
        text = block.get("text")
        if text is None:
            continue
        if not isinstance(text, str):
            raise MalformedResponseError(service, f"Response text was a {type(text).__name__}")
        parts.append(text)
    return "\n".join([p for p in parts if p])


def _parse_llm_json(text: str, service: str = "generative") -> Dict[str, Any]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", text, re.DOTALL)
        if not match:
            raise MalformedResponseError(service, "Response was not valid JSON")
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            raise MalformedResponseError(service, "Response was not valid JSON") from exc
    if not isinstance(data, dict):
        raise MalformedResponseError(service, "Response JSON was not an object")
    return data


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if isinstance(v, (str, int, float)) and str(v).strip()]


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _confidence(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    # some models answer in percent
    if number > 1.0 and number <= 100.0:
        number = number / 100.0
    return max(0.0, min(1.0, number))


def parse_pattern_selection(data: Dict[str, Any], service: str = "generative") -> PatternSelection:
    should_use = data.get("shouldUseVendorPattern")
    return PatternSelection(
        vendor_match_confidence=_confidence(data.get("vendorMatchConfidence")),
        should_use_vendor_pattern=should_use if isinstance(should_use, bool) else None,
        category_indicators=_string_list(data.get("categoryIndicators")),
        payment_indicators=_string_list(data.get("paymentIndicators")),
        relevant_pattern_ids=_string_list(data.get("relevantPatternIds")),
        reasoning=str(data.get("reasoning") or ""),
    )


def parse_categorization_judgment(data: Dict[str, Any], service: str = "generative") -> CategorizationJudgment:
    """
    Turn the Stage 2 JSON into a judgment.

    Structural problems raise MalformedResponseError. Domain rules (an
    income type with an expense category) are left to the decision engine,
    which repairs rather than discards.
    """
    raw_type = str(data.get("type") or "").strip().lower()
    if raw_type not in ("income", "expense"):
        raise MalformedResponseError(service, f"Unknown transaction type: {data.get('type')!r}")

    category = normalize_category(str(data.get("category") or ""))
    if not category:
        raise MalformedResponseError(service, "Response had no category")

    confidence = _confidence(data.get("confidence"))
    if confidence is None:
        raise MalformedResponseError(service, f"Unusable confidence: {data.get('confidence')!r}")

    return CategorizationJudgment(
        transaction_type=raw_type,
        category=category,
        confidence=confidence,
        payment_method=normalize_payment_method(_optional_str(data.get("paymentMethod"))),
        income_source=normalize_income_source(_optional_str(data.get("incomeSource"))),
        applied_patterns=_string_list(data.get("appliedPatterns")),
        reasoning=str(data.get("reasoning") or ""),
    )
