"""
Cooperative catalogue: roles, record statuses, commodities, clusters and the
small validators shared by the sale, produce and order flows.
"""

import re
from typing import Dict, List


class SystemRole:
    SALES_AGENT = "Sales Agent"
    SUPPLIER = "Supplier"
    CUSTOMER = "Customer"
    FINANCE_OFFICER = "Finance Officer"
    AUDITOR = "Auditor"
    MANAGER = "Director"
    SYSTEM_DEVELOPER = "System Developer"


ALL_ROLES = (
    SystemRole.SALES_AGENT,
    SystemRole.SUPPLIER,
    SystemRole.CUSTOMER,
    SystemRole.FINANCE_OFFICER,
    SystemRole.AUDITOR,
    SystemRole.MANAGER,
    SystemRole.SYSTEM_DEVELOPER,
)

# Roles that belong to a field cluster; everyone else gets cluster "-"
CLUSTER_ROLES = (SystemRole.SALES_AGENT, SystemRole.SUPPLIER, SystemRole.CUSTOMER)
ADMIN_ROLES = (SystemRole.MANAGER, SystemRole.SYSTEM_DEVELOPER)
STAFF_ROLES = (
    SystemRole.SALES_AGENT,
    SystemRole.FINANCE_OFFICER,
    SystemRole.AUDITOR,
    SystemRole.MANAGER,
    SystemRole.SYSTEM_DEVELOPER,
)
SALES_ROLES = (SystemRole.SALES_AGENT, SystemRole.AUDITOR) + ADMIN_ROLES
FINANCE_ROLES = (SystemRole.FINANCE_OFFICER, SystemRole.AUDITOR) + ADMIN_ROLES
INTEGRITY_ROLES = (SystemRole.AUDITOR,) + ADMIN_ROLES
LISTING_ROLES = (SystemRole.SUPPLIER, SystemRole.SALES_AGENT) + ADMIN_ROLES


class RecordStatus:
    DRAFT = "DRAFT"
    PAID = "PAID"
    VERIFIED = "VERIFIED"
    VALIDATED = "VALIDATED"
    FLAGGED = "FLAGGED"


# Statuses that represent money that actually changed hands
REALIZED_STATUSES = (RecordStatus.PAID, RecordStatus.VERIFIED, RecordStatus.VALIDATED)

ORDER_STATUSES = ("PENDING", "CONFIRMED", "FULFILLED", "CANCELLED")
PROFILE_STATUSES = ("ACTIVE", "SUSPENDED")

COMMODITY_CATEGORIES: Dict[str, List[str]] = {
    "Farm Food Products": ["Tomatoes", "Onions", "Vegetables", "Cassava", "Maize", "Millet", "Beans", "Other"],
    "Food Products": ["Sugar", "Salt", "Cooking Oil", "Milk", "Bread", "Ngano", "Other"],
    "Non-food Products": ["Books", "Cloths", "Soap", "Farm tools", "Other"],
}

CROP_CONFIG: Dict[str, List[str]] = {
    # Farm Food Products
    "Tomatoes": ["Crate", "Box", "Kg"],
    "Onions": ["Bag", "Kg"],
    "Vegetables": ["Bundle", "Kg"],
    "Cassava": ["Bag", "Kg"],
    "Maize": ["2kg Tin", "1kg Tin", "1/2 kg Tin", "Bag/Sack", "Kg"],
    "Millet": ["2kg Tin", "1kg Tin", "Kg"],
    "Beans": ["2kg Tin", "1kg Tin", "1/2 kg Tin", "Bag/Sack", "Kg"],
    # Food Products
    "Sugar": ["Kg", "Packet"],
    "Salt": ["Packet", "Kg"],
    "Cooking Oil": ["Litre", "Bottle"],
    "Milk": ["Litre", "Packet"],
    "Bread": ["Loaf"],
    "Ngano": ["Kg", "Packet"],
    # Non-food Products
    "Books": ["Piece"],
    "Cloths": ["Piece"],
    "Soap": ["Piece", "Bar"],
    "Farm tools": ["Piece"],
    # Default for Other
    "Other": ["Units", "Kg", "Bag", "Litre", "Piece", "Packet"],
}

CROP_TYPES = list(CROP_CONFIG.keys())

PROFIT_MARGIN = 0.10  # coop margin on every sale
CLUSTER_SHARE = 0.60  # portion of coop profit reinvested in the supplier's cluster

CLUSTERS: Dict[str, Dict[str, float]] = {
    "Mariwa": {"lat": -0.783, "lng": 34.467},
    "Mulo": {"lat": -0.833, "lng": 34.617},
    "Rabolo": {"lat": 0.067, "lng": 34.317},
    "Nyamagagana": {"lat": -0.517, "lng": 37.083},
    "Kangemi": {"lat": -1.258, "lng": 36.746},
    "Kabarnet": {"lat": 0.492, "lng": 35.743},
    "Apuoyo": {"lat": -0.092, "lng": 34.758},
    "Sibembe": {"lat": 0.56, "lng": 34.56},
}

_PIN_RE = re.compile(r"[0-9]{4}")


def units_for(crop_type: str) -> List[str]:
    return CROP_CONFIG.get(crop_type) or CROP_CONFIG["Other"]


def resolve_unit(crop_type: str, unit_type: str) -> str:
    """Return unit_type when the crop sells in it, else the crop's default unit."""
    units = units_for(crop_type)
    if unit_type in units:
        return unit_type
    return units[0]


def normalize_phone(raw: str) -> str:
    """Normalize a Kenyan phone number to E.164 (+254...)."""
    if not raw:
        return ""
    cleaned = re.sub(r"[^\d+]", "", raw)
    if cleaned.startswith("+254"):
        return cleaned
    if cleaned.startswith("254"):
        return "+" + cleaned
    if cleaned.startswith("01") or cleaned.startswith("07"):
        return "+254" + cleaned[1:]
    if cleaned.startswith("7") or cleaned.startswith("1"):
        return "+254" + cleaned
    return cleaned if cleaned.startswith("+") else "+" + cleaned


def phone_search_term(raw: str) -> str:
    """Last nine digits of a phone number so 07.. and +2547.. match each other."""
    digits = re.sub(r"\D", "", (raw or "").strip())
    return digits[-9:] if len(digits) >= 9 else digits


def validate_pin(pin) -> bool:
    return isinstance(pin, str) and bool(_PIN_RE.fullmatch(pin))


def pin_to_password(pin: str) -> str:
    # Supabase enforces a six character minimum
    return f"{pin}00" if len(pin) == 4 else pin


def cluster_for_role(role: str, cluster) -> str:
    return cluster if role in CLUSTER_ROLES else "-"
