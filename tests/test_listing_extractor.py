import logging

import httpx
import pytest

from app.services import listing_extractor
from app.services.listing_extractor import (
    DEFAULT_ADDRESS,
    DEFAULT_DESCRIPTION,
    DEFAULT_PRICE,
    DEFAULT_TITLE,
    DEMO_LISTING_URL,
    FetchFailed,
    InvalidUrl,
    PLACEHOLDER_IMAGE,
    extract,
    extract_images,
    extract_price,
    fallback_fields,
    fetch_page,
    parse_listing,
    resolve_image_url,
    title_from_url,
)

PAGE_URL = "https://homes.example.com/listing/42"

FULL_PAGE = """
<html>
<head>
  <title>  Charming   Craftsman Bungalow  </title>
  <meta property="og:title" content="OG title should lose">
  <meta name="description" content="Sunny home with a big yard &amp; garden.">
  <meta property="og:image" content="https://cdn.example.com/og.jpg">
</head>
<body>
  <h1>Heading should lose</h1>
  <div class="listing-price">$725,000</div>
  <span class="street-address">42 Elm Street, Springfield</span>
  <img src="/photos/front.jpg">
  <img src="//cdn.example.com/photos/kitchen.png">
  <img src="photos/yard.webp">
  <img src="/photos/front.jpg">
  <img src="/icons/logo.svg">
  <img src="data:image/png;base64,AAAA">
  <p>HOA fee $350, property tax $4,200 per year</p>
</body>
</html>
"""


def mock_client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_parse_listing_full_page():
    data = parse_listing(FULL_PAGE, PAGE_URL)

    assert data.title == "Charming Craftsman Bungalow"
    assert data.description == "Sunny home with a big yard & garden."
    assert data.price == "$725,000"
    assert data.address == "42 Elm Street, Springfield"
    assert data.images == [
        "https://homes.example.com/photos/front.jpg",
        "https://cdn.example.com/photos/kitchen.png",
        "https://homes.example.com/photos/yard.webp",
        "https://cdn.example.com/og.jpg",
    ]


def test_parse_listing_empty_page_uses_defaults():
    data = parse_listing("<html><body>nothing here</body></html>", PAGE_URL)

    assert data.title == DEFAULT_TITLE
    assert data.description == DEFAULT_DESCRIPTION
    assert data.price == DEFAULT_PRICE
    assert data.address == DEFAULT_ADDRESS
    assert data.images == [PLACEHOLDER_IMAGE]


def test_title_falls_back_to_og_then_h1():
    assert parse_listing('<meta content="From OG" property="og:title">', PAGE_URL).title == "From OG"
    assert parse_listing("<h1>Only a heading</h1>", PAGE_URL).title == "Only a heading"


def test_title_from_known_portal_urls():
    assert title_from_url("https://www.zillow.com/homedetails/1") == "Property from Zillow"
    assert title_from_url("https://www.realtor.com/x") == "Property from Realtor.com"
    assert title_from_url("https://REDFIN.com/home/9") == "Property from Redfin"
    assert title_from_url(PAGE_URL) == DEFAULT_TITLE


def test_description_keeps_apostrophes():
    page = '<meta name="description" content="Owner\'s pride, it\'s move-in ready">'
    assert parse_listing(page, PAGE_URL).description == "Owner's pride, it's move-in ready"


def test_description_from_class_fallback():
    page = '<div class="property-description">Quiet street near schools</div>'
    assert parse_listing(page, PAGE_URL).description == "Quiet street near schools"


def test_price_ignores_small_amounts():
    assert extract_price("<p>Deposit $5,000 and fees $49,999</p>") == DEFAULT_PRICE
    assert extract_price("<p>$50,000</p>") == DEFAULT_PRICE
    assert extract_price("<p>$50,001</p>") == "$50,001"


def test_price_picks_largest_qualifying_amount():
    page = "<p>Was $1,250,000 now $999,000, estimate $ 1100000</p>"
    assert extract_price(page) == "$1,250,000"


def test_price_from_price_class_without_dollar_sign():
    assert extract_price('<span class="price">640000</span>') == "$640,000"


def test_images_capped_at_ten():
    page = "".join(f'<img src="/p/{i}.jpg">' for i in range(15))
    images = extract_images(page, PAGE_URL)

    assert len(images) == 10
    assert images[0] == "https://homes.example.com/p/0.jpg"
    assert images[-1] == "https://homes.example.com/p/9.jpg"


def test_images_require_known_extension():
    page = '<img src="/a.gif"><img src="/b.JPEG?w=800"><img src="/c">'
    assert extract_images(page, PAGE_URL) == ["https://homes.example.com/b.JPEG?w=800"]


def test_resolve_image_url_forms():
    assert resolve_image_url("//img.example.com/a.jpg", "http://x.com/l/1") == "http://img.example.com/a.jpg"
    assert resolve_image_url("/a.jpg", "https://x.com/l/1") == "https://x.com/a.jpg"
    assert resolve_image_url("a.jpg", "https://x.com/l/1") == "https://x.com/a.jpg"
    assert resolve_image_url("https://y.com/a.jpg", "https://x.com/") == "https://y.com/a.jpg"


def test_demo_url_needs_no_network():
    def handler(request):
        raise AssertionError("demo listing must not be fetched")

    data = extract(DEMO_LISTING_URL, client=mock_client(handler))

    assert data.title == "Stunning Modern Downtown Condo"
    assert data.price == "$850,000"
    assert data.address == "123 Main Street, Downtown District"
    assert len(data.images) == 3


@pytest.mark.parametrize(
    "url",
    [
        "",
        None,
        "not a url",
        "ftp://host/file",
        "/relative/path",
        "https://",
        "http://[::1",
        "https://exa mple.com/x",
        "https://example.com:abc/x",
        "https://example.com:99999/x",
    ],
)
def test_invalid_url_rejected_before_fetch(url):
    def handler(request):
        raise AssertionError("invalid URL must not be fetched")

    with pytest.raises(InvalidUrl):
        extract(url, client=mock_client(handler))


def test_non_success_status_is_fetch_failure():
    client = mock_client(lambda request: httpx.Response(404, text="gone"))

    with pytest.raises(FetchFailed) as exc:
        extract(PAGE_URL, client=client)
    assert exc.value.status == 404


def test_transport_error_is_fetch_failure():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(FetchFailed):
        extract(PAGE_URL, client=mock_client(handler))


def test_extract_sends_browser_user_agent():
    seen = {}

    def handler(request):
        seen["ua"] = request.headers.get("user-agent")
        return httpx.Response(200, text=FULL_PAGE)

    data = extract(PAGE_URL, client=mock_client(handler))

    assert data.title == "Charming Craftsman Bungalow"
    assert seen["ua"].startswith("Mozilla/5.0")


def test_extract_uses_cache_when_available(monkeypatch):
    cached = {
        "title": "Cached",
        "description": "d",
        "images": ["https://x.com/a.jpg"],
        "price": "$100,000",
        "address": "a",
    }
    monkeypatch.setattr(listing_extractor.Cache, "get_listing", staticmethod(lambda url: cached))

    def handler(request):
        raise AssertionError("cached listing must not be fetched")

    assert extract(PAGE_URL, client=mock_client(handler)).title == "Cached"


def test_transport_level_invalid_url_is_invalid_url():
    def handler(request):
        raise httpx.InvalidURL("Invalid non-printable ASCII character in URL")

    with pytest.raises(InvalidUrl):
        fetch_page(PAGE_URL, client=mock_client(handler))


def test_fallback_fields_reports_every_default():
    empty = parse_listing("<html></html>", PAGE_URL)
    assert fallback_fields(empty, PAGE_URL) == ["title", "description", "images", "price", "address"]

    full = parse_listing(FULL_PAGE, PAGE_URL)
    assert fallback_fields(full, PAGE_URL) == []


def test_degraded_extraction_is_logged(caplog):
    page = "<title>Only A Title</title><p>$600,000</p>"

    with caplog.at_level(logging.DEBUG, logger=listing_extractor.__name__):
        parse_listing(page, PAGE_URL)

    assert "fallbacks used: description, images, address" in caplog.text
