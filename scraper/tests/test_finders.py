import re

from serp_ads.extraction.finders import (
    SHOPPING_AD_FINDER,
    TEXT_AD_FINDER,
    ContainerSpan,
    FallbackRule,
    PatternFinder,
    StructuralRule,
)


def test_structural_rules_are_concatenated_in_rule_order():
    markup = '<div class="ad-container">A</div><div data-text-ad>B</div>'
    spans = TEXT_AD_FINDER.find_containers(markup)
    assert [s.rule for s in spans] == ["text-ad-attribute", "ad-container-class"]
    assert [s.text for s in spans] == ["<div data-text-ad>B</div>", '<div class="ad-container">A</div>']


def test_fallback_window_is_capped():
    filler = "x" * 1500
    markup = filler + "<div>Sponsored</div>" + filler
    (span,) = TEXT_AD_FINDER.find_containers(markup)
    assert span.rule == "sponsored-label"
    assert len(span.text) == 2000
    assert span.start == 500
    assert span.end == len(markup) - 500


def test_fallback_windows_stop_at_neighbouring_blocks():
    markup = "aaa<div>Sponsored one</div>bbb<div>Sponsored two</div>ccc"
    spans = TEXT_AD_FINDER.find_containers(markup)
    assert [s.text for s in spans] == ["aaabbb", "bbbccc"]


def test_custom_rules_and_no_match():
    finder = PatternFinder(
        (
            StructuralRule("promo", re.compile(r"<section class=\"promo\">.*?</section>", re.DOTALL)),
            FallbackRule("label", anchor="Ad", window=3),
        )
    )
    assert finder.find_containers("") == []
    assert finder.find_containers("<p>plain</p>") == []
    (span,) = finder.find_containers('<section class="promo">hi</section>')
    assert span == ContainerSpan('<section class="promo">hi</section>', 0, 35, "promo")
    (fallback,) = finder.find_containers("12345<div>Ad</div>67890")
    assert fallback.text == "345678"


def test_shopping_rules():
    markup = (
        '<div class="commercial-unit-desktop-shopping">c</div>'
        '<div id="shopping-results">s</div>'
    )
    rules = [s.rule for s in SHOPPING_AD_FINDER.find_containers(markup)]
    assert rules == ["shopping-results", "shopping-pla-class", "commercial-unit-shopping"]
