"""Scrape category and gender from an item page when the JSON detail is blocked."""
import logging
import re
from typing import Optional

from selectolax.parser import HTMLParser

from favsync.parse.inference import ENFANT, FEMME, HOMME, infer_gender_from_text
from favsync.parse.models import ItemDetails

logger = logging.getLogger(__name__)

MAX_SCAN_CHARS = 100_000

BREADCRUMB_SELECTORS = (
    '[itemtype*="BreadcrumbList"] a',
    'nav[aria-label*="readcrumb"] a',
    '[data-testid*="breadcrumb"] a',
    ".breadcrumbs a",
    ".breadcrumb a",
)

GENERIC_BREADCRUMBS = frozenset({
    "accueil",
    "home",
    "vinted",
    "femme",
    "femmes",
    "homme",
    "hommes",
    "enfant",
    "enfants",
    "women",
    "men",
    "kids",
})

GENDER_MARKERS = (
    (FEMME, re.compile(r"/femmes\b|>\s*Femmes\s*<")),
    (HOMME, re.compile(r"/hommes\b|>\s*Hommes\s*<")),
    (ENFANT, re.compile(r"/enfants\b|>\s*Enfants\s*<")),
)

CATEGORY_VOCABULARY = (
    "Robes",
    "Jupes",
    "Jeans",
    "Pantalons",
    "Shorts",
    "T-shirts",
    "Chemises",
    "Blouses",
    "Pulls",
    "Sweats",
    "Manteaux",
    "Vestes",
    "Costumes",
    "Combinaisons",
    "Maillots de bain",
    "Lingerie",
    "Pyjamas",
    "Baskets",
    "Bottes",
    "Sandales",
    "Chaussures",
    "Sacs",
    "Bijoux",
    "Montres",
    "Lunettes",
    "Ceintures",
    "Chapeaux",
    "Écharpes",
    "Accessoires",
)


def _head(html: str) -> str:
    return html[:MAX_SCAN_CHARS] if html else ""


def extract_breadcrumbs(parser: HTMLParser) -> list[str]:
    """Breadcrumb anchor labels from the first selector that matches."""
    for selector in BREADCRUMB_SELECTORS:
        labels = [node.text(strip=True) for node in parser.css(selector)]
        labels = [label for label in labels if label]
        if labels:
            return labels
    return []


def infer_gender_from_html(html: str, parser: Optional[HTMLParser] = None) -> Optional[str]:
    snippet = _head(html)
    if not snippet:
        return None
    parser = parser or HTMLParser(snippet)

    for label in extract_breadcrumbs(parser):
        gender = infer_gender_from_text(label)
        if gender:
            return gender

    for gender, marker in GENDER_MARKERS:
        if marker.search(snippet):
            return gender
    return None


def infer_category_from_html(html: str, parser: Optional[HTMLParser] = None) -> Optional[str]:
    snippet = _head(html)
    if not snippet:
        return None
    parser = parser or HTMLParser(snippet)

    specific = [
        label for label in extract_breadcrumbs(parser)
        if label.strip().lower() not in GENERIC_BREADCRUMBS
    ]
    if specific:
        return specific[-1]

    for keyword in CATEGORY_VOCABULARY:
        if keyword in snippet:
            return keyword
    return None


def parse_item_html(html: str, external_id: Optional[str] = None) -> ItemDetails:
    """Details scraped from a rendered item page."""
    snippet = _head(html)
    parser = HTMLParser(snippet) if snippet else None
    details = ItemDetails(
        external_id=external_id,
        category=infer_category_from_html(snippet, parser),
        gender=infer_gender_from_html(snippet, parser),
        source="html",
    )
    details.missing = [name for name in ("category", "gender", "listed_at") if getattr(details, name) is None]
    if details.category is None or details.gender is None:
        logger.warning(f"HTML fallback incomplete for item {external_id}: missing {details.missing}")
    return details
