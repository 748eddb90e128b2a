import logging

from fastapi import APIRouter, Body, HTTPException, Request

from app.core.config import settings
from app.core.redis import RateLimiter
from app.core.responses import error_response
from app.services import listing_extractor
from app.services.listing_extractor import FetchFailed, InvalidUrl

router = APIRouter(prefix="/api/v1/listings", tags=["listings"])

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@router.post("/analyze")
def analyze_listing(request: Request, payload: dict = Body(...)):
    """
    Fetch a listing page and extract {title, description, images, price, address}.

    Missing fields fall back to fixed defaults; only a malformed URL (400)
    or a failed fetch (500) is reported as an error.
    """
    client_ip = request.client.host if request.client else "unknown"

    # Rate limit per client: the extractor fetches arbitrary third-party pages
    is_allowed, _ = RateLimiter.check_rate_limit(
        identifier=client_ip,
        action="analyze_listing",
        max_requests=settings.ANALYZE_RATE_LIMIT,
        window_seconds=60
    )

    if not is_allowed:
        retry_after = RateLimiter.get_remaining_time(client_ip, "analyze_listing")
        raise HTTPException(
            status_code=429,
            detail=f"Too many requests. Please try again in {retry_after} seconds.",
            headers={"Retry-After": str(retry_after)}
        )

    url = payload.get("url")
    if not url:
        return error_response(400, "URL is required")

    logger.info("Analyzing listing URL: %s", url)

    try:
        listing = listing_extractor.extract(url)
    except InvalidUrl as e:
        logger.info("Invalid URL format: %s", url)
        return error_response(400, e.error, e.details)
    except FetchFailed as e:
        logger.warning("Listing fetch failed for %s: %s", url, e.details)
        return error_response(500, "Failed to analyze listing", e.details)
    except Exception as e:
        logger.exception("Error analyzing listing %s", url)
        return error_response(500, "Failed to analyze listing", str(e))

    return listing.model_dump()
