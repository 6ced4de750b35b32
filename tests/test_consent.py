from pagewatch.extraction.consent import (
    ConsentHandler, detect_consent_overlay, detect_page_block_reason,
)

from .conftest import article, page


def test_cloudflare_interstitial_title():
    html = "<html><head><title>Just a moment...</title></head><body><div>Hold on</div></body></html>"
    assert detect_page_block_reason(html) == "Interstitial/Challenge (title)"


def test_specific_phrase_in_body():
    html = page("<p>Checking your browser before accessing example.com</p>")
    assert detect_page_block_reason(html) == "Browser check"


def test_short_page_with_broad_phrase_is_blocked():
    assert detect_page_block_reason(page("<h1>Access denied</h1>")) == "Access denied"


def test_broad_phrase_in_long_article_is_ignored():
    filler = "<p>" + "Long form writing about security products. " * 120 + "</p>"
    html = page(filler + "<p>We compared every captcha vendor.</p>")
    assert detect_page_block_reason(html) is None


def test_broad_phrase_repeated_in_long_page_counts():
    filler = "<p>" + "Lots of ordinary text here. " * 200 + "</p>"
    html = page(filler + "<p>access denied</p>" * 3)
    assert detect_page_block_reason(html) == "Access denied"


def test_script_text_is_not_visible_text():
    html = page("<script>var msg = 'please enable javascript';</script>" + "<p>Normal shop page</p>")
    assert detect_page_block_reason(html) is None


def test_challenge_element():
    html = page("<form><div class='g-recaptcha' data-sitekey='x'></div></form>")
    assert detect_page_block_reason(html) == "Challenge element detected"


def test_cloudflare_script_on_otherwise_normal_page():
    html = article("<script>window._cf_chl_opt = {cType: 'managed'};</script>")
    assert detect_page_block_reason(html) == "Cloudflare challenge script"


def test_normal_pages_are_not_blocked():
    assert detect_page_block_reason(article()) is None
    assert detect_page_block_reason("") is None
    assert detect_page_block_reason("<p>no body element</p>") is None


def test_detect_consent_overlay():
    html = page("<div id='onetrust-banner-sdk'><button id='onetrust-accept-btn-handler'>OK</button></div>")
    assert detect_consent_overlay(html).name == "onetrust"
    assert detect_consent_overlay(article()) is None


def test_reconcile_reports_block_and_overlay():
    handler = ConsentHandler()

    blocked = handler.reconcile(page("<h1>Access denied</h1>"))
    assert blocked.blocked is True
    assert blocked.block_reason == "Access denied"

    overlay = handler.reconcile(article("<div id='CybotCookiebotDialog'></div>"))
    assert overlay.blocked is False
    assert overlay.consent_overlay == "cookiebot"

    dismissed = handler.reconcile(article("<div id='CybotCookiebotDialog'></div>"), consent_dismissed=True)
    assert dismissed.consent_dismissed is True
    assert dismissed.consent_overlay is None


async def test_dismiss_consent_clicks_accept_button(mocker):
    html = page("<div id='onetrust-banner-sdk'><button id='onetrust-accept-btn-handler'>Accept</button></div>")
    live_page = mocker.MagicMock()
    live_page.url = "https://shop.example.com"
    live_page.content = mocker.AsyncMock(return_value=html)
    live_page.wait_for_load_state = mocker.AsyncMock()
    locator = mocker.MagicMock()
    locator.count = mocker.AsyncMock(return_value=1)
    locator.first.is_visible = mocker.AsyncMock(return_value=True)
    locator.first.click = mocker.AsyncMock()
    live_page.locator.return_value = locator

    dismissed = await ConsentHandler().dismiss_consent(live_page)

    assert dismissed == "onetrust"
    live_page.locator.assert_called_with("#onetrust-accept-btn-handler")
    locator.first.click.assert_awaited_once()


async def test_dismiss_consent_without_overlay(mocker):
    live_page = mocker.MagicMock()
    live_page.content = mocker.AsyncMock(return_value=article())

    assert await ConsentHandler().dismiss_consent(live_page) is None
    live_page.locator.assert_not_called()


async def test_wait_for_challenge_returns_cleared_html(mocker):
    challenge = "<html><head><title>Just a moment...</title></head><body></body></html>"
    live_page = mocker.MagicMock()
    live_page.content = mocker.AsyncMock(side_effect=[challenge, article()])

    html = await ConsentHandler().wait_for_challenge(live_page, budget_ms=5000)

    assert detect_page_block_reason(html) is None
