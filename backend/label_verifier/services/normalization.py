"""Text canonicalization shared by the field matchers."""

import re
import unicodedata
from typing import Optional

# Apostrophe and quote variants are dropped outright: "Maker's" == "Makers"
_QUOTES = re.compile(r"['‘’‚‛`´\"“”„]")
# Punctuation that separates words
_SEPARATORS = re.compile(r"[.,\-():;!?]")
_WHITESPACE = re.compile(r"\s+")


def normalize(text: Optional[str]) -> str:
    """
    Canonicalize free text for fuzzy comparison.

    - Lower-case
    - Strip diacritics ("Château" -> "chateau")
    - Remove apostrophes/quotes entirely
    - Replace . , - ( ) : ; ! ? with a space
    - Collapse whitespace and trim

    Empty or missing input normalizes to "".
    """
    if not text:
        return ""

    text = text.lower()
    text = unicodedata.normalize("NFD", text)
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = _QUOTES.sub("", text)
    text = _SEPARATORS.sub(" ", text)
    text = _WHITESPACE.sub(" ", text)
    return text.strip()


def collapse_whitespace(text: Optional[str]) -> str:
    """Collapse whitespace runs and trim, preserving case and punctuation."""
    if not text:
        return ""
    return _WHITESPACE.sub(" ", text).strip()
