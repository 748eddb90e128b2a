"""
Listing Extractor

Turns an arbitrary real-estate listing page into structured listing data.

Listing sites share no schema, so every field is derived from an ordered
chain of small pattern functions. The first chain entry that produces a
non-empty value wins; when all of them miss, a fixed default is used so the
video pipeline never blocks on missing data. Only transport-level problems
(malformed URL, unreachable host, non-2xx response) fail the whole call.
"""

import html
import logging
import re
from typing import Callable, Iterable, List, Optional
from urllib.parse import urlsplit

import httpx
from pydantic import BaseModel, Field

from app.core.config import settings
from app.core.redis import Cache

logger = logging.getLogger(__name__)


class ListingData(BaseModel):
    title: str
    description: str
    images: List[str] = Field(default_factory=list)
    price: str
    address: str


class ExtractionError(Exception):
    """Base class for failures that abort an extraction."""

    error = "Failed to analyze listing"

    def __init__(self, details: str):
        super().__init__(details)
        self.details = details


class InvalidUrl(ExtractionError):
    error = "Invalid URL format"


class FetchFailed(ExtractionError):
    def __init__(self, details: str, status: Optional[int] = None):
        super().__init__(details)
        self.status = status


DEMO_LISTING_URL = "https://example.com/demo-listing"

DEMO_LISTING = ListingData(
    title="Stunning Modern Downtown Condo",
    description=(
        "Beautiful 2-bedroom, 2-bathroom condo in the heart of downtown. Features modern "
        "finishes, stainless steel appliances, hardwood floors, and panoramic city views. "
        "Building amenities include fitness center, rooftop deck, and concierge service."
    ),
    images=[
        "https://images.unsplash.com/photo-1560518883-ce09059eeffa?w=800&h=600&fit=crop",
        "https://images.unsplash.com/photo-1583608205776-bfd35f0d9f83?w=800&h=600&fit=crop",
        "https://images.unsplash.com/photo-1502672260266-1c1ef2d93688?w=800&h=600&fit=crop",
    ],
    price="$850,000",
    address="123 Main Street, Downtown District",
)

DEFAULT_TITLE = "Real Estate Property"
DEFAULT_DESCRIPTION = "Beautiful property with modern amenities and great location."
DEFAULT_PRICE = "Price upon request"
DEFAULT_ADDRESS = "Beautiful Location"
PLACEHOLDER_IMAGE = "https://images.unsplash.com/photo-1560518883-ce09059eeffa?w=800&h=600&fit=crop"

# Known portals, checked in order against the page URL
SITE_TITLES = (
    ("zillow", "Property from Zillow"),
    ("realtor", "Property from Realtor.com"),
    ("redfin", "Property from Redfin"),
)

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp")
MAX_IMAGES = 10
MIN_LISTING_PRICE = 50_000

_FLAGS = re.IGNORECASE | re.DOTALL


# Every pattern captures its result in the "value" group
_QUOTED_VALUE = r"(?P<q>[\"'])(?P<value>.*?)(?P=q)"


def _meta_pattern(attr: str, value: str) -> re.Pattern:
    # Attribute order inside <meta> varies between sites
    return re.compile(
        rf"<meta\b(?=[^>]*\b{attr}\s*=\s*[\"']{re.escape(value)}[\"'])"
        rf"[^>]*?\bcontent\s*=\s*{_QUOTED_VALUE}",
        _FLAGS,
    )


def _class_pattern(fragment: str) -> re.Pattern:
    return re.compile(
        rf"<[a-z0-9]+\b[^>]*\bclass\s*=\s*[\"'][^\"']*{fragment}[^\"']*[\"'][^>]*>(?P<value>[^<]+)",
        _FLAGS,
    )


TITLE_TAG = re.compile(r"<title\b[^>]*>(?P<value>[^<]+)</title>", _FLAGS)
OG_TITLE = _meta_pattern("property", "og:title")
H1_TAG = re.compile(r"<h1\b[^>]*>(?P<value>[^<]+)</h1>", _FLAGS)

META_DESCRIPTION = _meta_pattern("name", "description")
OG_DESCRIPTION = _meta_pattern("property", "og:description")
DESCRIPTION_CLASS = _class_pattern("description")

IMG_SRC = re.compile(rf"<img\b[^>]*?\bsrc\s*=\s*{_QUOTED_VALUE}", _FLAGS)
OG_IMAGE = _meta_pattern("property", "og:image")

DOLLAR_AMOUNT = re.compile(r"\$\s?(?P<value>\d[\d,]*)")
PRICE_CLASS = re.compile(
    r"<[a-z0-9]+\b[^>]*\bclass\s*=\s*[\"'][^\"']*price[^\"']*[\"'][^>]*>\s*\$?\s?(?P<value>\d[\d,]*)",
    _FLAGS,
)

ADDRESS_CLASS = _class_pattern("address")
OG_STREET_ADDRESS = _meta_pattern("property", "og:street-address")

WHITESPACE = re.compile(r"\s+")


def _clean(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    cleaned = WHITESPACE.sub(" ", html.unescape(text)).strip()
    return cleaned or None


def _first_value(pattern: re.Pattern) -> Callable[[str], Optional[str]]:
    def match(page: str) -> Optional[str]:
        for found in pattern.finditer(page):
            value = _clean(found.group("value"))
            if value:
                return value
        return None
    return match


def _all_values(pattern: re.Pattern, page: str) -> List[str]:
    return [found.group("value") for found in pattern.finditer(page)]


def first_match(page: str, extractors: Iterable[Callable[[str], Optional[str]]]) -> Optional[str]:
    """Run extractors in order and return the first non-empty result."""
    for extractor in extractors:
        value = extractor(page)
        if value:
            return value
    return None


TITLE_EXTRACTORS = (_first_value(TITLE_TAG), _first_value(OG_TITLE), _first_value(H1_TAG))
DESCRIPTION_EXTRACTORS = (
    _first_value(META_DESCRIPTION),
    _first_value(OG_DESCRIPTION),
    _first_value(DESCRIPTION_CLASS),
)
ADDRESS_EXTRACTORS = (_first_value(ADDRESS_CLASS), _first_value(OG_STREET_ADDRESS))


def title_from_url(url: str) -> str:
    lowered = url.lower()
    for token, label in SITE_TITLES:
        if token in lowered:
            return label
    return DEFAULT_TITLE


def extract_title(page: str, url: str) -> str:
    return first_match(page, TITLE_EXTRACTORS) or title_from_url(url)


def extract_description(page: str) -> str:
    return first_match(page, DESCRIPTION_EXTRACTORS) or DEFAULT_DESCRIPTION


def extract_address(page: str) -> str:
    return first_match(page, ADDRESS_EXTRACTORS) or DEFAULT_ADDRESS


def resolve_image_url(candidate: str, page_url: str) -> str:
    """Make an image reference absolute against the page origin."""
    parts = urlsplit(page_url)
    origin = f"{parts.scheme}://{parts.netloc}"
    candidate = html.unescape(candidate.strip())

    if candidate.startswith("//"):
        return f"{parts.scheme}:{candidate}"
    if candidate.startswith("/"):
        return origin + candidate
    if not candidate.lower().startswith(("http://", "https://")):
        return f"{origin}/{candidate}"
    return candidate


def is_image_url(url: str) -> bool:
    return urlsplit(url).path.lower().endswith(IMAGE_EXTENSIONS)


def select_images(candidates: Iterable[str], page_url: str, limit: int = MAX_IMAGES) -> List[str]:
    """Resolve, filter and dedupe candidate image URLs, keeping first-seen order."""
    images: List[str] = []
    for candidate in candidates:
        if not candidate or candidate.lower().startswith("data:"):
            continue
        resolved = resolve_image_url(candidate, page_url)
        if is_image_url(resolved) and resolved not in images:
            images.append(resolved)
            if len(images) >= limit:
                break
    return images


def extract_images(page: str, url: str) -> List[str]:
    candidates = _all_values(IMG_SRC, page) + _all_values(OG_IMAGE, page)
    return select_images(candidates, url) or [PLACEHOLDER_IMAGE]


def parse_amount(token: str) -> Optional[int]:
    digits = token.replace(",", "").strip()
    return int(digits) if digits.isdigit() else None


def format_price(amount: int) -> str:
    return f"${amount:,}"


def pick_listing_price(amounts: Iterable[int]) -> Optional[str]:
    """The largest amount above the listing threshold, formatted."""
    qualifying = [amount for amount in amounts if amount > MIN_LISTING_PRICE]
    if not qualifying:
        return None
    return format_price(max(qualifying))


def extract_price(page: str) -> str:
    tokens = _all_values(DOLLAR_AMOUNT, page) + _all_values(PRICE_CLASS, page)
    amounts = [amount for amount in map(parse_amount, tokens) if amount is not None]
    return pick_listing_price(amounts) or DEFAULT_PRICE


def fallback_fields(data: ListingData, url: str) -> List[str]:
    """Names of the fields that were filled from defaults."""
    defaults = (
        ("title", data.title == title_from_url(url)),
        ("description", data.description == DEFAULT_DESCRIPTION),
        ("images", data.images == [PLACEHOLDER_IMAGE]),
        ("price", data.price == DEFAULT_PRICE),
        ("address", data.address == DEFAULT_ADDRESS),
    )
    return [field for field, used in defaults if used]


def parse_listing(page: str, url: str) -> ListingData:
    """Extract every field from an already fetched page. Never raises on missing fields."""
    data = ListingData(
        title=extract_title(page, url),
        description=extract_description(page),
        images=extract_images(page, url),
        price=extract_price(page),
        address=extract_address(page),
    )
    fallbacks = fallback_fields(data, url)
    if fallbacks:
        logger.debug("Extraction degraded for %s, fallbacks used: %s", url, ", ".join(fallbacks))
    return data


def validate_url(url: Optional[str]) -> str:
    if not url or not isinstance(url, str) or not url.strip():
        raise InvalidUrl("URL is required")

    url = url.strip()
    try:
        parts = urlsplit(url)
        # Raises ValueError on a non-numeric or out-of-range port
        parts.port
    except ValueError as e:
        raise InvalidUrl(f"Malformed URL: {url} ({e})") from e

    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise InvalidUrl(f"Not an absolute http(s) URL: {url}")
    if any(ch.isspace() for ch in parts.netloc):
        raise InvalidUrl(f"Host contains whitespace: {url}")
    return url


def fetch_page(url: str, client: Optional[httpx.Client] = None) -> str:
    headers = {"User-Agent": settings.EXTRACTOR_USER_AGENT, "Accept": "text/html,*/*;q=0.8"}
    owns_client = client is None
    if owns_client:
        client = httpx.Client(timeout=settings.EXTRACTOR_TIMEOUT_SECONDS, follow_redirects=True)

    try:
        response = client.get(url, headers=headers)
    except httpx.InvalidURL as e:
        raise InvalidUrl(f"Malformed URL: {url} ({e})") from e
    except httpx.HTTPError as e:
        raise FetchFailed(f"Failed to fetch URL: {e}") from e
    finally:
        if owns_client:
            client.close()

    logger.info("Fetch response status for %s: %s", url, response.status_code)
    if not response.is_success:
        raise FetchFailed(f"Failed to fetch URL: {response.status_code}", status=response.status_code)
    return response.text


def extract(url: str, client: Optional[httpx.Client] = None, use_cache: bool = True) -> ListingData:
    """
    Fetch a listing URL and derive {title, description, images, price, address}.

    Raises:
        InvalidUrl: before any network access when `url` is not absolute
        FetchFailed: transport error or non-2xx response
    """
    url = validate_url(url)

    if url == DEMO_LISTING_URL:
        logger.info("Using demo listing data")
        return DEMO_LISTING.model_copy(deep=True)

    if use_cache:
        cached = Cache.get_listing(url)
        if cached:
            logger.info("Listing cache hit for %s", url)
            return ListingData(**cached)

    page = fetch_page(url, client=client)
    logger.info("HTML content length: %s", len(page))

    data = parse_listing(page, url)
    if use_cache:
        Cache.set_listing(url, data.model_dump())
    return data
