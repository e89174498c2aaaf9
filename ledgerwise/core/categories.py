"""
Category vocabulary

Schedule C style expense categories and the income categories the
categorizer is allowed to assign. Values are the stable snake_case
identifiers stored on transactions; labels are what the generative
service and the UI see.
"""
import re
from typing import Dict, Optional

EXPENSE_CATEGORIES: Dict[str, str] = {
    "advertising": "Advertising",
    "car_and_truck": "Car and truck expenses",
    "commissions_fees": "Commissions and fees",
    "contract_labor": "Contract labor",
    "insurance": "Insurance",
    "legal_professional": "Legal and professional services",
    "meals": "Meals",
    "office_expense": "Office expense",
    "rent_lease": "Rent or lease",
    "repairs_maintenance": "Repairs and maintenance",
    "supplies": "Supplies",
    "taxes_licenses": "Taxes and licenses",
    "travel": "Travel",
    "utilities": "Utilities",
    "other": "Other expenses",
}

INCOME_CATEGORIES: Dict[str, str] = {
    "gross_receipts": "Gross receipts",
    "other_income": "Other income",
}

DEFAULT_INCOME_CATEGORY = "gross_receipts"
DEFAULT_EXPENSE_CATEGORY = "other"

PAYMENT_METHODS = (
    "Card",
    "Cash",
    "Check",
    "Credit",
    "Debit",
    "Deposit",
    "Visa",
    "Mastercard",
    "American Express",
)

INCOME_SOURCES = ("check", "cash", "bank_transfer", "deposit", "card", "other")

_LABEL_LOOKUP = {
    label.lower(): value
    for value, label in {**EXPENSE_CATEGORIES, **INCOME_CATEGORIES}.items()
}


def is_income_category(category: Optional[str]) -> bool:
    return bool(category) and category in INCOME_CATEGORIES


def normalize_category(raw: Optional[str]) -> str:
    """
    Map a label or loosely formatted value back to a category value.

    "Car and truck expenses", "car-and-truck" and "Car And Truck" all
    resolve to ``car_and_truck``. Unknown input is returned slugified so
    the caller can decide what to do with it.
    """
    if not raw:
        return ""
    text = raw.strip()
    # "Car and truck expenses (car_and_truck)" - prompts list both forms
    paren = re.search(r"\(([a-z_]+)\)\s*$", text)
    if paren:
        text = paren.group(1)
    lowered = text.lower()
    if lowered in _LABEL_LOOKUP:
        return _LABEL_LOOKUP[lowered]
    return re.sub(r"[^a-z0-9]+", "_", lowered).strip("_")


def infer_type_for_category(category: Optional[str]) -> str:
    return "income" if is_income_category(category) else "expense"


def normalize_payment_method(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    lowered = raw.strip().lower()
    for method in PAYMENT_METHODS:
        if method.lower() == lowered:
            return method
    return None


def normalize_income_source(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    lowered = raw.strip().lower()
    return lowered if lowered in INCOME_SOURCES else None
