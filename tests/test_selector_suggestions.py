import pytest

from pagewatch.services.selector_suggestions import looks_generated, suggest

from .conftest import page


PRODUCT = page(
    "<div class='product'>"
    "<h2 class='product-title'>Blue Kettle</h2>"
    "<span class='price-now'>$12.99</span>"
    "<span class='price-old'>$15.99</span>"
    "</div>"
)


@pytest.mark.parametrize("token, generated", [
    ("css-1x2y3z", True),
    ("sc-bdVaJa", True),
    ("Button_root__3xYz9", True),
    ("ember123", True),
    ("", True),
    ("price", False),
    ("product-title", False),
    ("col-12", False),
])
def test_looks_generated(token, generated):
    assert looks_generated(token) is generated


def test_expected_text_ranks_tightest_match_first():
    report = suggest(PRODUCT, ".gone", expected_text="$12.99")

    assert report.suggestions[0].selector == ".price-now"
    assert report.suggestions[0].count == 1
    assert report.suggestions[0].sample_text == "$12.99"
    assert ".price-old" not in [s.selector for s in report.suggestions]
    assert report.note is None
    assert report.page_title == "Shop"


def test_current_selector_info():
    assert suggest(PRODUCT, "price-now").current_selector.count == 1
    assert suggest(PRODUCT, "price-now").current_selector.selector == ".price-now"

    missing = suggest(PRODUCT, ".gone").current_selector
    assert missing.valid is False
    assert missing.count == 0
    assert missing.error is None

    broken = suggest(PRODUCT, "div[").current_selector
    assert broken.valid is False
    assert broken.error == "Invalid CSS selector syntax: div["


def test_generated_classes_are_skipped():
    html = page("<span class='css-1x2y3z price'>$5</span>")
    report = suggest(html, ".old", expected_text="5")
    assert report.suggestions[0].selector == ".price"


def test_stable_id_is_preferred():
    html = page("<span id='main-price' class='amount'>$7</span><span class='amount'>$8</span>")
    report = suggest(html, ".old", expected_text="$7")
    assert report.suggestions[0].selector == "#main-price"


def test_hidden_elements_are_not_suggested():
    html = page(
        "<div style='display:none'><span class='secret'>Hidden value</span></div>"
        "<span class='label'>Shown value</span>"
    )
    selectors = [s.selector for s in suggest(html, ".old").suggestions]
    assert ".label" in selectors
    assert ".secret" not in selectors


def test_no_match_for_expected_text_sets_note():
    report = suggest(PRODUCT, ".price-now", expected_text="$99.99")
    assert report.suggestions == []
    assert report.note == "No element matched expectedText"


def test_limit_and_sample_truncation():
    html = page("<p class='blurb'>" + "x" * 100 + "</p><span class='a'>A1</span><span class='b'>B1</span>")
    report = suggest(html, ".old", limit=2)

    assert len(report.suggestions) == 2
    samples = {s.selector: s.sample_text for s in suggest(html, ".old").suggestions}
    assert len(samples[".blurb"]) == 80
    assert samples[".blurb"].endswith("...")


def test_suggest_is_deterministic():
    first = suggest(PRODUCT, ".gone", expected_text="Kettle").to_dict()
    second = suggest(PRODUCT, ".gone", expected_text="Kettle").to_dict()
    assert first == second
    assert first["suggestions"][0]["selector"] == ".product-title"


def test_long_menu_does_not_hide_the_value():
    menu = "".join(f"<li class='nav-item'><a>Category {i}</a></li>" for i in range(160))
    html = page(f"<ul>{menu}</ul><span class='price'>$10.00</span>")

    report = suggest(html, ".old-price")

    assert report.suggestions[0].selector == ".price"
    assert report.suggestions[0].sample_text == "$10.00"
