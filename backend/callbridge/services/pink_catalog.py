"""Pink Mobile demo catalogue: plan pricing, promotions and roaming passes."""
import math
import random
import re
from typing import Any, Dict, List, Optional, Tuple

from ..db import parse_timestamp

LINE_PRICING = {
    "phone": 35,
    "tablet": 10,
}
DEFAULT_LINE_PRICE = 35
MAX_LINES_PER_REQUEST = 5

FREE_IPAD_PROMO_ID = "5-line-ipad"

PROMOS: Dict[str, Dict[str, Any]] = {
    FREE_IPAD_PROMO_ID: {
        "id": FREE_IPAD_PROMO_ID,
        "name": "5-Line Free iPad Promo",
        "description": "Get a free iPad device when your account has 5 total lines",
        "requirement": 5,
        "benefit": "Free iPad",
        "deviceValue": 799,
    },
    "family-plan": {
        "id": "family-plan",
        "name": "Family Plan Discount",
        "description": "10% discount on 4+ lines",
        "requirement": 4,
        "benefit": "10% off monthly bill",
    },
}

_PASS_FEATURES = ["Unlimited voice", "Unlimited text", "Data at home rates"]

ROAMING_PASSES: Dict[str, Dict[str, Any]] = {
    "europe": {
        "id": "europe-pass",
        "name": "Europe Travel Pass",
        "regions": ["Europe", "EU", "UK", "European Union"],
        "dailyRate": 10,
        "features": _PASS_FEATURES,
        "autoStop": True,
    },
    "asia": {
        "id": "asia-pass",
        "name": "Asia Travel Pass",
        "regions": ["Asia", "Japan", "Korea", "China", "Southeast Asia"],
        "dailyRate": 15,
        "features": _PASS_FEATURES,
        "autoStop": True,
    },
    "americas": {
        "id": "americas-pass",
        "name": "Americas Travel Pass",
        "regions": ["Canada", "Mexico", "South America", "Central America"],
        "dailyRate": 10,
        "features": _PASS_FEATURES,
        "autoStop": True,
    },
}
DEFAULT_ROAMING_PASS = "europe"


def to_int(value: Any, default: int) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def plural(count: int, word: str) -> str:
    return word if count == 1 else f"{word}s"


def format_amount(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:.2f}"


def as_list(value: Any) -> List[Any]:
    if value in (None, ""):
        return []
    return list(value) if isinstance(value, (list, tuple)) else [value]


# Lines and billing

def normalize_line_type(raw: Optional[str]) -> str:
    lowered = (raw or "phone").lower()
    return "tablet" if "tablet" in lowered or "ipad" in lowered else "phone"


def default_device(line_type: str) -> str:
    return "iPad" if line_type == "tablet" else "iPhone"


def line_price(line: Dict[str, Any]) -> float:
    try:
        price = float(line.get("monthly_price"))
    except (TypeError, ValueError):
        return DEFAULT_LINE_PRICE
    return price or DEFAULT_LINE_PRICE


def monthly_bill(lines: List[Dict[str, Any]]) -> float:
    return sum(line_price(l) for l in lines)


def ipad_promo_status(total_lines: int) -> Tuple[bool, int]:
    """Whether the account is one or two lines short of the free iPad."""
    lines_needed = PROMOS[FREE_IPAD_PROMO_ID]["requirement"] - total_lines
    return 0 < lines_needed <= 2, lines_needed


def new_line_number() -> str:
    return f"+1-555-{random.randint(1000, 9999)}"


# Identity

def normalize_lookup_phone(raw: str) -> str:
    digits = re.sub(r"\D", "", str(raw))
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    return digits


def pin_matches(provided: Any, stored: Any) -> bool:
    # Only the last four digits count, so "00001234" matches "1234"
    return str(provided)[-4:] == str(stored or "")[-4:]


# Tickets

def new_ticket_id() -> str:
    return f"PMK-{random.randint(1000, 9999)}"


def ticket_summary(intents: List[Any], actions: List[Any], financial_impact: Any) -> str:
    parts = []
    intent_list = [str(i) for i in intents if i]
    action_list = [str(a) for a in actions if a]
    if intent_list:
        parts.append(f"Customer inquiry: {', '.join(intent_list)}.")
    if action_list:
        parts.append(f"Actions: {'; '.join(action_list)}.")
    if financial_impact:
        parts.append(f"Financial impact: {financial_impact}.")
    return " ".join(parts) or "Interaction completed."


# Roaming

def select_roaming_pass(destination: str) -> Dict[str, Any]:
    lowered = destination.lower()
    for roaming_pass in ROAMING_PASSES.values():
        if any(region.lower() in lowered for region in roaming_pass["regions"]):
            return roaming_pass
    return ROAMING_PASSES[DEFAULT_ROAMING_PASS]


def estimate_roaming_cost(start_date: Any, end_date: Any, daily_rate: int) -> Tuple[Optional[int], Optional[int]]:
    """Travel days (inclusive of both ends) and the cost if roaming every day."""
    start = parse_timestamp(start_date)
    end = parse_timestamp(end_date)
    if start is None or end is None:
        return None, None
    travel_days = math.ceil((end - start).total_seconds() / 86400) + 1
    return travel_days, travel_days * daily_rate
