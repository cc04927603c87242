"""Tests for the item-page HTML fallback."""
from favsync.parse.html_parser import (
    MAX_SCAN_CHARS,
    infer_category_from_html,
    infer_gender_from_html,
    parse_item_html,
)

BREADCRUMB_PAGE = """
<html><body>
<nav aria-label="Breadcrumb">
  <a href="/">Accueil</a>
  <a href="/femmes">Femmes</a>
  <a href="/femmes/vetements">Vêtements</a>
  <a href="/femmes/vetements/robes">Robes</a>
</nav>
<h1>Robe rouge Zara</h1>
</body></html>
"""


def test_category_prefers_last_specific_breadcrumb():
    assert infer_category_from_html(BREADCRUMB_PAGE) == "Robes"


def test_gender_from_breadcrumb_label():
    assert infer_gender_from_html(BREADCRUMB_PAGE) == "Femme"


def test_gender_from_path_segment_without_breadcrumb():
    html = '<html><body><a href="/hommes/chaussures">Chaussures</a></body></html>'
    assert infer_gender_from_html(html) == "Homme"


def test_gender_from_capitalized_link_text():
    html = "<html><body><ul><li><span>Enfants</span></li></ul></body></html>"
    assert infer_gender_from_html(html) == "Enfant"


def test_category_falls_back_to_vocabulary():
    html = "<html><body><h1>Superbes Baskets blanches</h1></body></html>"
    assert infer_category_from_html(html) == "Baskets"


def test_breadcrumb_with_only_generic_nodes_uses_vocabulary():
    html = """
    <div class="breadcrumbs"><a href="/">Home</a><a href="/hommes">Hommes</a></div>
    <p>Manteaux</p>
    """
    assert infer_category_from_html(html) == "Manteaux"


def test_markup_beyond_scan_window_is_ignored():
    html = "<html><body>" + ("x" * MAX_SCAN_CHARS) + '<a href="/femmes">Femmes</a> Robes</body></html>'
    assert infer_gender_from_html(html) is None
    assert infer_category_from_html(html) is None


def test_parse_item_html():
    details = parse_item_html(BREADCRUMB_PAGE, external_id="55")

    assert details.source == "html"
    assert details.external_id == "55"
    assert details.category == "Robes"
    assert details.gender == "Femme"
    assert details.missing == ["listed_at"]


def test_empty_html():
    details = parse_item_html("")
    assert details.category is None
    assert details.gender is None
