import hashlib

import pytest
import requests
from tenacity import RetryError

import discovery
from discovery import catalog, scraper


class FakeResponse:
    def __init__(self, text, content_type="text/html"):
        self.text = text
        self.headers = {"Content-Type": content_type}


@pytest.fixture
def api_key(monkeypatch):
    monkeypatch.setattr(scraper, "SCRAPER_API_KEY", "test-key")


def serve(monkeypatch, response=None, error=None):
    seen = []

    def fake_fetch(url):
        seen.append(url)
        if error is not None:
            raise error
        return response

    monkeypatch.setattr(scraper, "_fetch", fake_fetch)
    return seen


# -- catalog -------------------------------------------------------------------


def test_search_all_sources():
    products = discovery.search_products("anything")

    assert sorted(p.id for p in products) == ["1", "2", "3", "4"]
    assert discovery.SOURCES == ("amazon", "etsy")


def test_search_single_source_puts_matches_first():
    products = catalog.search_products("leather wallet", "etsy")

    assert [p.id for p in products] == ["3", "4"]


def test_search_matches_keyword_in_any_source():
    products = catalog.search_products("headphones", "all")

    assert products[0].id == "1"
    assert products[0].metadata["brand"] == "Sony"


def test_search_unknown_source():
    assert catalog.search_products("lamp", "ebay") == []


def test_search_returns_copies():
    products = catalog.search_products("", "amazon")
    products[0].metadata["brand"] = "Changed"

    assert catalog.MOCK_PRODUCTS["amazon"]["headphones"].metadata["brand"] == "Sony"


def test_product_to_wish_fields():
    product = catalog.search_products("headphones", "amazon")[0]

    fields = product.to_wish_fields("l1")

    assert fields["title"].startswith("Sony")
    assert fields["price"] == "348.00"
    assert fields["link"] == "https://amazon.com/sony-wh1000xm4"
    assert fields["source"] == "amazon"
    assert fields["list_id"] == "l1"
    assert fields["metadata"]["rating"] == 4.8
    assert fields["metadata"]["reviews"] == 2345


# -- scraper -------------------------------------------------------------------


def test_scrape_without_api_key(monkeypatch):
    monkeypatch.setattr(scraper, "SCRAPER_API_KEY", "")
    seen = serve(monkeypatch, FakeResponse("<html></html>"))

    assert scraper.scrape_product_info("https://www.amazon.com/dp/B000") is None
    assert seen == []


def test_scrape_empty_url(api_key, monkeypatch):
    seen = serve(monkeypatch, FakeResponse("<html></html>"))

    assert scraper.scrape_product_info("   ") is None
    assert seen == []


def test_scrape_structured_json(api_key, monkeypatch):
    url = "https://www.amazon.com/dp/B0TEST"
    payload = (
        '{"name": " Noise Cancelling Headphones ", "pricing": "$1,299.99", '
        '"feature_bullets": ["Quiet", "Comfy", "Ignored"], '
        '"images": ["https://img.test/1.jpg"], "brand": "Acme", '
        '"average_rating": 4.4, "total_reviews": 12}'
    )
    serve(monkeypatch, FakeResponse(payload, "application/json"))

    product = scraper.scrape_product_info(url)

    assert product.id == hashlib.sha1(url.encode()).hexdigest()
    assert product.title == "Noise Cancelling Headphones"
    assert product.price == "1299.99"
    assert product.description == "Quiet Comfy"
    assert product.image_url == "https://img.test/1.jpg"
    assert product.source == "amazon"
    assert product.rating == 4.4
    assert product.reviews == 12
    assert product.metadata["brand"] == "Acme"


def test_scrape_html_page(api_key, monkeypatch):
    html = """
    <html><head>
      <meta property="og:image" content="https://img.test/og.jpg">
    </head><body>
      <span id="productTitle"> Handmade Mug </span>
      <div id="feature-bullets"><ul><li>Stoneware</li><li>Dishwasher safe</li></ul></div>
      <span class="a-price"><span class="a-offscreen">$24.50</span></span>
    </body></html>
    """
    serve(monkeypatch, FakeResponse(html))

    product = scraper.scrape_product_info("https://www.etsy.com/listing/123")

    assert product.title == "Handmade Mug"
    assert product.description == "Stoneware Dishwasher safe"
    assert product.price == "24.50"
    assert product.image_url == "https://img.test/og.jpg"
    assert product.source == "etsy"


def test_scrape_html_without_details(api_key, monkeypatch):
    serve(monkeypatch, FakeResponse("<html><body><p>nothing here</p></body></html>"))

    product = scraper.scrape_product_info("https://shop.test/item")

    assert product.title == scraper.TITLE_NOT_FOUND
    assert product.description == scraper.DESCRIPTION_NOT_FOUND
    assert product.price == scraper.PRICE_NOT_FOUND
    assert product.source == "other"


def test_scrape_captcha_page(api_key, monkeypatch):
    html = "<html><title>Robot Check</title><form name='captcha'></form></html>"
    serve(monkeypatch, FakeResponse(html))

    product = scraper.scrape_product_info("https://www.amazon.com/dp/B0TEST")

    assert product.title == "CAPTCHA Detected"
    assert product.price == "Price Not Found"


@pytest.mark.parametrize(
    "error",
    [requests.ConnectionError("reset"), RetryError(last_attempt=None)],
)
def test_scrape_request_failure(api_key, monkeypatch, error):
    serve(monkeypatch, error=error)

    assert scraper.scrape_product_info("https://www.amazon.com/dp/B0TEST") is None


def test_captcha_heuristics():
    assert scraper.looks_like_captcha_or_block("Enter the characters you see below")
    assert scraper.looks_like_captcha_or_block('<form name="captcha"></form>')
    assert not scraper.looks_like_captcha_or_block("<html><body>Mug</body></html>")
