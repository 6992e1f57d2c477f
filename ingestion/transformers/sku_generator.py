"""
Derive a catalog-style SKU key from a canonical DeviceRecord.

Key layouts per category:
    PHONE     MODEL-CAPACITY-COLOR-CARRIER
    WATCH     WATCH-MODEL-SIZE[-CARRIER]-COLOR
    TABLET    TAB-MODEL-CAPACITY-COLOR[-CARRIER]
    COMPUTER  DESKTOP-MODEL-CAPACITY-COLOR

Absent tokens are skipped and an UNLOCKED carrier is never written.
"""

from typing import Optional
from schemas.device import DeviceRecord
from models.base import ProductCategory
import re

UNLOCKED = "UNLOCKED"
UNKNOWN_MODEL = "UNKNOWN"
MAX_COLOR_LENGTH = 12

RADIO_TOKENS = {"WIFI", "4G", "5G"}

CARRIER_ALIASES = {
    "ATT": "AT&T",
    "AT&T": "AT&T",
    "AT&TWIRELESS": "AT&T",
    "VERIZON": "VERIZON",
    "VER": "VERIZON",
    "VERZ": "VERIZON",
    "VZW": "VERIZON",
    "VERIZONWIRELESS": "VERIZON",
    "TMOBILE": "T-MOBILE",
    "TMB": "T-MOBILE",
    "T-MOBILE": "T-MOBILE",
    "UNLOCKED": UNLOCKED,
    "UNL": UNLOCKED,
}

COLOR_SYNONYMS = {
    "PHANTOMBLACK": "BLACK",
    "PHANTOMWHITE": "WHITE",
    "PHANTOMGREEN": "GREEN",
    "PHANTOMBLUE": "BLUE",
    "PHANTOMRED": "RED",
    "PHANTOMSILVER": "SILVER",
    "PHANTOMVIOLET": "VIOLET",
}

WATCH_KEYWORDS = ("watch",)
TABLET_KEYWORDS = ("tablet", "ipad", "galaxy tab")
TABLET_MODEL_KEYWORDS = ("tab", "tablet", "ipad")
COMPUTER_KEYWORDS = ("laptop", "desktop", "computer", "2-in-1", "macbook", "imac", "dell", "lenovo")
COMPUTER_MODEL_KEYWORDS = ("laptop", "desktop", "macbook", "imac")

_WHITESPACE = re.compile(r"\s+")


def _squash(value) -> str:
    return _WHITESPACE.sub("", str(value)).upper()


def detect_category(description: Optional[str], model: Optional[str], brand: Optional[str] = None) -> ProductCategory:
    """Keyword category detection; watch beats tablet beats computer, phone is the default."""
    desc = (description or "").lower()
    mod = (model or "").lower()
    br = (brand or "").lower()

    if any(k in desc or k in mod for k in WATCH_KEYWORDS):
        return ProductCategory.WATCH

    if any(k in desc for k in TABLET_KEYWORDS) or any(k in mod for k in TABLET_MODEL_KEYWORDS):
        return ProductCategory.TABLET

    if (any(k in desc for k in COMPUTER_KEYWORDS)
            or any(k in mod for k in COMPUTER_MODEL_KEYWORDS)
            or br in ("dell", "hp", "lenovo")
            or re.search(r"\bhp\b", desc)):
        return ProductCategory.COMPUTER

    return ProductCategory.PHONE


# ============================================================================
# Token normalization
# ============================================================================

def normalize_model(model: Optional[str], category: ProductCategory) -> str:
    if not model:
        return UNKNOWN_MODEL
    normalized = _squash(model)
    if category == ProductCategory.WATCH and "ULTRA" in normalized:
        return "ULTRA"
    return normalized


def normalize_capacity(capacity: Optional[str]) -> Optional[str]:
    if not capacity:
        return None
    return _squash(capacity) or None


def normalize_color(color: Optional[str]) -> Optional[str]:
    if not color:
        return None
    col = _squash(color)
    if not col:
        return None
    if col in COLOR_SYNONYMS:
        return COLOR_SYNONYMS[col]
    return col[:MAX_COLOR_LENGTH]


def normalize_carrier(carrier: Optional[str], category: ProductCategory) -> str:
    if not carrier:
        return UNLOCKED
    car = _squash(carrier)
    if category in (ProductCategory.WATCH, ProductCategory.TABLET) and car in RADIO_TOKENS:
        return car
    return CARRIER_ALIASES.get(car, car)


def normalize_size(size) -> Optional[str]:
    if size is None:
        return None
    match = re.search(r"\d+", str(size))
    return match.group(0) if match else None


# ============================================================================
# Generation
# ============================================================================

def _join(*parts) -> str:
    return "-".join(p for p in parts if p)


def generate_sku(record: DeviceRecord) -> str:
    """Build the SKU key for a device record."""
    category = detect_category(record.description, record.model, record.brand)

    model = normalize_model(record.model, category)
    capacity = normalize_capacity(record.storage)
    color = normalize_color(record.color)
    carrier = normalize_carrier(record.carrier, category)
    if carrier == UNLOCKED:
        carrier = None

    if category == ProductCategory.WATCH:
        return _join("WATCH", model, normalize_size(record.size), carrier, color)
    if category == ProductCategory.TABLET:
        return _join("TAB", model, capacity, color, carrier)
    if category == ProductCategory.COMPUTER:
        return _join("DESKTOP", model, capacity, color)
    return _join(model, capacity, color, carrier)
