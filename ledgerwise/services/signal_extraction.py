"""
Signal extraction for transaction categorization.

Stateless scanners over the text a receipt gives us (description, vendor,
line items and the payment-method field OCR read off the slip). Each
scanner returns the tags it found, and an empty list when it found nothing,
so callers can test every family with plain truthiness.

Nothing in here raises: a scanner that cannot make sense of its input
reports no signal.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Union

from ledgerwise.models.transactions import LineItem

logger = logging.getLogger(__name__)

LineItems = Optional[Sequence[Union[LineItem, Dict[str, object], str]]]


@dataclass(frozen=True)
class IndicatorFamily:
    """A keyword list plus the brand names that imply the same category."""
    name: str
    brand_tag: str
    keywords: tuple
    brands: tuple


FUEL = IndicatorFamily(
    name="fuel",
    brand_tag="gas_station",
    keywords=(
        "fuel", "gas", "diesel", "unleaded", "premium", "regular",
        "gasoline", "petrol", "gal", "gallon", "pump",
    ),
    brands=(
        "shell", "chevron", "exxon", "mobil", "bp", "arco", "texaco", "citgo",
        "7-eleven", "circle k", "jacksons", "stinker", "maverik", "pilot",
        "flying j", "loves", "speedway", "marathon", "conoco", "phillips 66",
        "valero", "sunoco", "sinclair", "racetrac",
    ),
)

HARDWARE = IndicatorFamily(
    name="hardware",
    brand_tag="hardware_store",
    keywords=(
        "lumber", "wood", "hardware", "tools", "drill", "saw", "hammer",
        "nails", "screws", "bolts", "paint", "plywood", "2x4", "fence",
        "deck", "construction", "building", "supplies",
    ),
    brands=(
        "home depot", "lowes", "lowe's", "ace hardware", "true value",
        "menards", "harbor freight", "tractor supply", "rural king",
    ),
)

RESTAURANT = IndicatorFamily(
    name="restaurant",
    brand_tag="restaurant",
    keywords=(
        "menu", "dining", "restaurant", "cafe", "bistro", "grill",
        "server", "tip", "gratuity", "dine-in", "takeout",
        "appetizer", "entree", "dessert", "beverage",
    ),
    brands=(
        "mcdonalds", "mcdonald's", "burger king", "wendys", "wendy's", "taco bell",
        "subway", "chipotle", "panera", "olive garden", "applebees", "chilis",
        "outback", "red lobster", "starbucks", "dunkin", "pizza hut",
        "dominos", "domino's", "papa johns", "kfc", "popeyes", "arbys",
    ),
)

GROCERY = IndicatorFamily(
    name="grocery",
    brand_tag="grocery_store",
    keywords=(
        "grocery", "produce", "dairy", "meat", "bakery", "deli",
        "frozen", "canned", "organic", "vegetables", "fruit",
    ),
    brands=(
        "walmart", "kroger", "safeway", "albertsons", "publix",
        "whole foods", "trader joes", "trader joe's", "costco", "sam's club",
        "aldi", "food lion", "stop & shop", "wegmans", "winco",
        "fred meyer", "ralphs",
    ),
)

OFFICE_SUPPLY = IndicatorFamily(
    name="office_supply",
    brand_tag="office_store",
    keywords=(
        "paper", "ink", "toner", "pens", "pencils", "notebook",
        "folder", "binder", "envelope", "printer", "office supplies",
    ),
    brands=(
        "staples", "office depot", "officedepot", "office max", "officemax",
    ),
)

CATEGORY_FAMILIES = (FUEL, HARDWARE, RESTAURANT, GROCERY, OFFICE_SUPPLY)

# Tags Stage 1 may report; anything else a generative service suggests is dropped.
CATEGORY_INDICATOR_TAGS = tuple(f.name for f in CATEGORY_FAMILIES) + ("check", "deposit")
PAYMENT_INDICATOR_TAGS = ("explicit_text", "learned_pattern", "payment_correction", "card_brand")

_DEPOSIT_WORD = re.compile(r"\bdeposits?\b")
_AMBIGUOUS_CARD = ("debit/credit", "credit/debit", "debit / credit", "credit / debit")


def line_item_text(line_items: LineItems) -> str:
    """Flatten line items into one string; tolerates models, dicts and bare strings."""
    if not line_items:
        return ""
    parts: List[str] = []
    for item in line_items:
        if isinstance(item, LineItem):
            text = item.description
        elif isinstance(item, dict):
            text = item.get("description") or ""
        else:
            text = item
        if isinstance(text, str) and text:
            parts.append(text)
    return " ".join(parts)


def _combined_text(*parts: Optional[str]) -> str:
    return " ".join(p for p in parts if isinstance(p, str) and p).lower()


def _unique(tags: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for tag in tags:
        if tag not in seen:
            seen.add(tag)
            result.append(tag)
    return result


def detect_explicit_payment_method(
    description: str,
    line_items: LineItems = None,
    ocr_payment_method: Optional[str] = None,
) -> List[str]:
    """
    Payment method printed on the receipt, as a list of at most one tag.

    The OCR payment-method field wins over free text. Slips that print
    "DEBIT/CREDIT" tell us it was a card but not which kind, so they map to
    the generic ``Card``.
    """
    if isinstance(ocr_payment_method, str) and ocr_payment_method.strip():
        ocr = ocr_payment_method.lower()
        if "debit" in ocr and "credit" in ocr:
            return ["Card"]
        if "debit" in ocr:
            return ["Debit"]
        if "credit" in ocr:
            return ["Credit"]
        if "cash" in ocr:
            return ["Cash"]
        if "check" in ocr:
            return ["Check"]
        if "visa" in ocr:
            return ["Visa"]
        if "mastercard" in ocr:
            return ["Mastercard"]
        if "amex" in ocr or "american express" in ocr:
            return ["American Express"]

    text = _combined_text(description, line_item_text(line_items))
    if not text:
        return []

    if any(marker in text for marker in _AMBIGUOUS_CARD):
        return ["Card"]
    # "direct debit" is an ACH pull, not a debit card
    if "debit" in text.replace("direct debit", ""):
        return ["Debit"]
    if "credit card" in text or "credit" in text.replace("credit union", ""):
        return ["Credit"]
    if "cash" in text:
        return ["Cash"]
    if "check #" in text or "check no" in text:
        return ["Check"]
    if "deposit" in text:
        return ["Deposit"]
    return []


def detect_family(
    family: IndicatorFamily,
    description: str,
    vendor: str,
    line_items: LineItems = None,
) -> List[str]:
    """Keywords and ``<brand_tag>:<brand>`` tags of one family found in the text."""
    text = _combined_text(description, vendor, line_item_text(line_items))
    if not text:
        return []
    found = [keyword for keyword in family.keywords if keyword in text]
    found.extend(f"{family.brand_tag}:{brand}" for brand in family.brands if brand in text)
    return _unique(found)


def detect_fuel_indicators(description: str, vendor: str, line_items: LineItems = None) -> List[str]:
    return detect_family(FUEL, description, vendor, line_items)


def detect_hardware_indicators(description: str, vendor: str, line_items: LineItems = None) -> List[str]:
    return detect_family(HARDWARE, description, vendor, line_items)


def detect_restaurant_indicators(description: str, vendor: str, line_items: LineItems = None) -> List[str]:
    return detect_family(RESTAURANT, description, vendor, line_items)


def detect_grocery_indicators(description: str, vendor: str, line_items: LineItems = None) -> List[str]:
    return detect_family(GROCERY, description, vendor, line_items)


def detect_office_supply_indicators(description: str, vendor: str, line_items: LineItems = None) -> List[str]:
    return detect_family(OFFICE_SUPPLY, description, vendor, line_items)


def detect_check_indicators(description: str, ocr_payment_method: Optional[str] = None) -> List[str]:
    """OCR saying "check" is authoritative; otherwise look for check phrasing."""
    if isinstance(ocr_payment_method, str) and ocr_payment_method.strip().lower() == "check":
        return ["ocr_check"]

    desc = _combined_text(description)
    indicators = []
    if "check #" in desc or "check no" in desc:
        indicators.append("check_number")
    if "pay to the order of" in desc:
        indicators.append("check_payee_line")
    if "memo:" in desc:
        indicators.append("check_memo")
    return indicators


def detect_deposit_indicators(description: str, vendor: str) -> List[str]:
    """
    Bank-deposit evidence in vendor + description.

    "deposit" must be a whole word: "Check #1042 deposited" is a check
    being banked, not a bank-statement deposit line.
    """
    text = _combined_text(description, vendor)
    indicators = []
    if _DEPOSIT_WORD.search(text):
        indicators.append("deposit_keyword")
    if "bank" in text or "credit union" in text:
        indicators.append("bank_vendor")
    if "checking" in text or "savings" in text:
        indicators.append("account_type")
    return indicators


@dataclass
class SignalReport:
    """Every deterministic finding for one transaction."""
    payment_method: Optional[str] = None
    fuel: List[str] = field(default_factory=list)
    hardware: List[str] = field(default_factory=list)
    restaurant: List[str] = field(default_factory=list)
    grocery: List[str] = field(default_factory=list)
    office_supply: List[str] = field(default_factory=list)
    check: List[str] = field(default_factory=list)
    deposit: List[str] = field(default_factory=list)

    @property
    def category_indicators(self) -> List[str]:
        """Family names that fired, in decision priority order."""
        tags = []
        for name in ("fuel", "hardware", "restaurant", "grocery", "office_supply", "check", "deposit"):
            if getattr(self, name):
                tags.append(name)
        return tags

    def to_dict(self) -> Dict[str, object]:
        return {
            "payment_method": self.payment_method,
            "fuel": list(self.fuel),
            "hardware": list(self.hardware),
            "restaurant": list(self.restaurant),
            "grocery": list(self.grocery),
            "office_supply": list(self.office_supply),
            "check": list(self.check),
            "deposit": list(self.deposit),
        }


def extract_signals(
    description: str,
    vendor: str,
    line_items: LineItems = None,
    ocr_payment_method: Optional[str] = None,
) -> SignalReport:
    """Run every scanner over one transaction."""
    description = description if isinstance(description, str) else ""
    vendor = vendor if isinstance(vendor, str) else ""

    payment = detect_explicit_payment_method(description, line_items, ocr_payment_method)
    report = SignalReport(
        payment_method=payment[0] if payment else None,
        fuel=detect_fuel_indicators(description, vendor, line_items),
        hardware=detect_hardware_indicators(description, vendor, line_items),
        restaurant=detect_restaurant_indicators(description, vendor, line_items),
        grocery=detect_grocery_indicators(description, vendor, line_items),
        office_supply=detect_office_supply_indicators(description, vendor, line_items),
        check=detect_check_indicators(description, ocr_payment_method),
        deposit=detect_deposit_indicators(description, vendor),
    )

    fired = report.category_indicators
    if fired or report.payment_method:
        logger.debug(
            f"Signals for {vendor or '<no vendor>'}: {', '.join(fired) or 'none'}"
            f" (payment: {report.payment_method or 'none'})"
        )
    return report
