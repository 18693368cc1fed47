"""Field matchers for the five regulated label fields.

Each matcher takes the value submitted on the application and the value
detected on the label and returns True when the label satisfies the
application. Absence never matches: an empty value on either side is a
mismatch, including empty vs empty.

Class/type rules follow T.D. TTB-158 and 27 CFR 5.22; the alcohol tolerance
follows 27 CFR 5.37(b).
"""

import re
from types import MappingProxyType
from typing import Callable, Optional, Tuple

from .normalization import normalize, collapse_whitespace


STANDARD_GOVERNMENT_WARNING = (
    "GOVERNMENT WARNING: (1) According to the Surgeon General, women should not "
    "drink alcoholic beverages during pregnancy because of the risk of birth defects. "
    "(2) Consumption of alcoholic beverages impairs your ability to drive a car or "
    "operate machinery, and may cause health problems."
)

# ±0.3% alcohol by volume, fixed by regulation (not configurable)
ALCOHOL_TOLERANCE = 0.3


# =============================================================================
# CLASS/TYPE TABLES
# =============================================================================
# General designation -> specific designations a label may use instead.
# The application may be coarser than the label, never the other way round.
# =============================================================================

WHISKY_TYPES = frozenset({
    "bourbon whisky", "bourbon whiskey",
    "straight bourbon whisky", "straight bourbon whiskey",
    "kentucky bourbon whisky", "kentucky bourbon whiskey",
    "kentucky straight bourbon whisky", "kentucky straight bourbon whiskey",
    "rye whisky", "rye whiskey",
    "straight rye whisky", "straight rye whiskey",
    "wheat whisky", "wheat whiskey",
    "malt whisky", "malt whiskey",
    "corn whisky", "corn whiskey",
    "tennessee whisky", "tennessee whiskey",
})

BOURBON_TYPES = frozenset({
    "straight bourbon whisky", "straight bourbon whiskey",
    "kentucky bourbon whisky", "kentucky bourbon whiskey",
    "kentucky straight bourbon whisky", "kentucky straight bourbon whiskey",
})

CLASS_TYPE_HIERARCHY = MappingProxyType({
    "whisky": WHISKY_TYPES,
    "whiskey": WHISKY_TYPES,
    "bourbon whisky": BOURBON_TYPES,
    "bourbon whiskey": BOURBON_TYPES,
    "agave spirits": frozenset({"tequila", "mezcal"}),
    "fruit wine": frozenset({"citrus wine", "citrus fruit wine"}),
})

# Interchangeable in either direction
EQUIVALENT_DESIGNATIONS = frozenset({
    frozenset({"tequila", "agave spirits"}),
    frozenset({"mezcal", "agave spirits"}),
    frozenset({"citrus wine", "fruit wine"}),
    frozenset({"citrus fruit wine", "fruit wine"}),
})

# "Straight" is an optional modifier
_STRAIGHT = re.compile(r"\bstraight\b\s*")

_PERCENT = re.compile(r"(\d+(?:\.\d+)?)\s*%")
_BARE_NUMBER = re.compile(r"^(\d+(?:\.\d+)?)$")
_NET_CONTENTS = re.compile(
    r"(\d+(?:\.\d+)?)\s*(ml|l|liter|liters|oz|fl\.?\s*oz\.?|gallon|gal)",
    re.IGNORECASE,
)


# =============================================================================
# BRAND NAME
# =============================================================================

def is_fuzzy_match(submitted: Optional[str], detected: Optional[str]) -> bool:
    """Equality after normalization (case, punctuation, diacritics, whitespace)."""
    if not submitted or not detected:
        return False
    submitted_norm = normalize(submitted)
    if not submitted_norm:
        return False
    return submitted_norm == normalize(detected)


def is_brand_match(submitted: Optional[str], detected: Optional[str]) -> bool:
    """Brand names match only on normalized equality; no semantic equivalence."""
    return is_fuzzy_match(submitted, detected)


# =============================================================================
# CLASS/TYPE
# =============================================================================

def _is_specific_of_general(submitted_norm: str, detected_norm: str) -> bool:
    valid_specifics = CLASS_TYPE_HIERARCHY.get(submitted_norm)
    if not valid_specifics:
        return False
    return detected_norm in valid_specifics


def _strip_straight(text_norm: str) -> str:
    return _STRAIGHT.sub("", text_norm).strip()


def _are_equivalent_designations(submitted_norm: str, detected_norm: str) -> bool:
    return frozenset({submitted_norm, detected_norm}) in EQUIVALENT_DESIGNATIONS


def is_class_type_match(submitted: Optional[str], detected: Optional[str]) -> bool:
    """
    Three-tier class/type equivalence.

    Matches when any of these holds:
    - exact normalized match
    - the application names a general type and the label a listed specific one
      (e.g. "Whisky" vs "Kentucky Straight Bourbon Whiskey")
    - both sides agree once the optional "straight" modifier is removed
    - the pair is a listed equivalent designation (e.g. Tequila <-> Agave Spirits)
    """
    if not submitted or not detected:
        return False

    submitted_norm = normalize(submitted)
    detected_norm = normalize(detected)
    if not submitted_norm or not detected_norm:
        return False

    if submitted_norm == detected_norm:
        return True
    if _is_specific_of_general(submitted_norm, detected_norm):
        return True
    if _strip_straight(submitted_norm) == _strip_straight(detected_norm):
        return True
    if _are_equivalent_designations(submitted_norm, detected_norm):
        return True

    return False


# =============================================================================
# ALCOHOL CONTENT
# =============================================================================

def extract_alcohol_percent(text: Optional[str]) -> Optional[float]:
    """
    Extract an alcohol percentage from text.

    Accepts "45%", "45.0%", "45% ABV", "45% Alc./Vol.", or a bare "45"
    (shorthand for 45%). Returns None when no number is found.
    """
    if not text:
        return None

    percent_match = _PERCENT.search(text)
    if percent_match:
        return float(percent_match.group(1))

    bare_match = _BARE_NUMBER.match(text.strip())
    if bare_match:
        return float(bare_match.group(1))

    return None


def is_alcohol_match(submitted: Optional[str], detected: Optional[str]) -> bool:
    """Numeric match within ±0.3%, falling back to normalized text equality."""
    if not submitted or not detected:
        return False

    submitted_percent = extract_alcohol_percent(submitted)
    detected_percent = extract_alcohol_percent(detected)

    if submitted_percent is None or detected_percent is None:
        return is_fuzzy_match(submitted, detected)

    # Rounded so float noise (40.6 - 40.3) cannot push an in-tolerance value out
    difference = round(abs(submitted_percent - detected_percent), 6)
    return difference <= ALCOHOL_TOLERANCE


# =============================================================================
# NET CONTENTS
# =============================================================================

def _format_amount(amount: float) -> str:
    if amount.is_integer():
        return str(int(amount))
    return repr(amount)


def _canonical_unit(unit: str) -> str:
    unit = unit.lower()
    if unit in ("l", "liter", "liters"):
        return "l"
    if "oz" in unit:
        return "oz"
    if unit in ("gal", "gallon"):
        return "gal"
    return unit


def normalize_net_contents(text: Optional[str]) -> str:
    """
    Canonicalize net contents to "<amount><unit>".

    "750 mL" -> "750ml", "1 Liter" -> "1l", "12 fl. oz." -> "12oz".
    A bare number is read as milliliters ("750" -> "750ml"). Anything else
    falls back to the generic normalizer. Units are never converted.
    """
    if not text:
        return ""

    trimmed = text.lower().strip()

    match = _NET_CONTENTS.search(trimmed)
    if match:
        amount = float(match.group(1))
        return f"{_format_amount(amount)}{_canonical_unit(match.group(2))}"

    bare_match = _BARE_NUMBER.match(trimmed)
    if bare_match:
        return f"{_format_amount(float(bare_match.group(1)))}ml"

    return normalize(text)


def is_net_contents_match(submitted: Optional[str], detected: Optional[str]) -> bool:
    """Strict equality of canonical "<amount><unit>" strings."""
    if not submitted or not detected:
        return False
    submitted_canonical = normalize_net_contents(submitted)
    if not submitted_canonical:
        return False
    return submitted_canonical == normalize_net_contents(detected)


# =============================================================================
# GOVERNMENT WARNING
# =============================================================================

def normalize_government_warning(text: Optional[str]) -> str:
    """Whitespace-only normalization; case and punctuation are significant."""
    return collapse_whitespace(text)


def is_government_warning_match(submitted: Optional[str], detected: Optional[str]) -> bool:
    """Strict match: the prescribed text, including "GOVERNMENT WARNING:" in capitals."""
    if not submitted or not detected:
        return False
    submitted_norm = normalize_government_warning(submitted)
    if not submitted_norm:
        return False
    return submitted_norm == normalize_government_warning(detected)


# =============================================================================
# REGISTRY
# =============================================================================
# Fixed verdict order. Field names are stable identifiers for API consumers.
# =============================================================================

Matcher = Callable[[Optional[str], Optional[str]], bool]

FIELD_MATCHERS: Tuple[Tuple[str, str, Matcher], ...] = (
    ("Brand Name", "brand_name", is_brand_match),
    ("Class/Type", "class_type", is_class_type_match),
    ("Alcohol Content", "alcohol_content", is_alcohol_match),
    ("Net Contents", "net_contents", is_net_contents_match),
    ("Government Warning", "government_warning", is_government_warning_match),
)
