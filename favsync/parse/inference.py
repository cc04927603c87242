"""Gender inference from free text, catalog paths and URLs."""
import re
from typing import Optional
from urllib.parse import urlparse

FEMME = "Femme"
HOMME = "Homme"
ENFANT = "Enfant"

# Checked in this order; word boundaries keep "Vêtements" from matching "men"
GENDER_PATTERNS = (
    (FEMME, re.compile(r"\b(?:femmes?|women|woman)\b", re.IGNORECASE)),
    (HOMME, re.compile(r"\b(?:hommes?|men|man)\b", re.IGNORECASE)),
    (ENFANT, re.compile(r"\b(?:enfants?|kids?|bébés?|bebes?|filles?|garçons?|garcons?)\b", re.IGNORECASE)),
)

DIRECT_VALUES = {
    "f": FEMME,
    "female": FEMME,
    "women": FEMME,
    "woman": FEMME,
    "femme": FEMME,
    "femmes": FEMME,
    "m": HOMME,
    "male": HOMME,
    "men": HOMME,
    "man": HOMME,
    "homme": HOMME,
    "hommes": HOMME,
    "kids": ENFANT,
    "kid": ENFANT,
    "child": ENFANT,
    "children": ENFANT,
    "enfant": ENFANT,
    "enfants": ENFANT,
}


def infer_gender_from_text(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    for label, pattern in GENDER_PATTERNS:
        if pattern.search(text):
            return label
    return None


def canonical_gender(value: Optional[str]) -> Optional[str]:
    """Map a direct gender value to Femme/Homme/Enfant; unknown values pass through."""
    if not value or not value.strip():
        return None
    mapped = DIRECT_VALUES.get(value.strip().lower())
    if mapped:
        return mapped
    return infer_gender_from_text(value) or value.strip()


def infer_gender_from_url(url: Optional[str]) -> Optional[str]:
    """Scan the path segments of a product URL."""
    if not url:
        return None
    path = urlparse(url).path
    return infer_gender_from_text(re.sub(r"[/_]+", " ", path))
