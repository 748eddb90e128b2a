import io
import logging
import mimetypes
import os
from typing import List, Optional
from urllib.parse import urlsplit

import httpx
from PIL import Image

from app.core.config import settings
from app.core.s3 import delete_keys_from_s3, upload_bytes_to_s3

logger = logging.getLogger(__name__)


class AssetDownloadError(Exception):
    pass


def image_dimensions(data: bytes) -> tuple[Optional[int], Optional[int]]:
    """Width and height of an encoded image, (None, None) when Pillow can't read it."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.size
    except Exception as e:
        logger.debug("Could not read image dimensions: %s", e)
        return None, None


class AssetStore:
    """
    Prepares listing images for persistence as project assets.

    With probing enabled each image is downloaded once to record its
    dimensions; with mirroring enabled the bytes are also copied to our S3
    bucket and the asset points at the copy. Both are off by default, in
    which case the extracted URLs are stored as-is.
    """

    def __init__(
        self,
        probe_enabled: Optional[bool] = None,
        mirror_enabled: Optional[bool] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.probe_enabled = settings.ASSET_PROBE_ENABLED if probe_enabled is None else probe_enabled
        self.mirror_enabled = settings.ASSET_MIRROR_ENABLED if mirror_enabled is None else mirror_enabled
        self.client = client

    @property
    def needs_download(self) -> bool:
        return self.probe_enabled or self.mirror_enabled

    def download(self, url: str) -> tuple[bytes, str]:
        client = self.client or httpx.Client(timeout=20.0, follow_redirects=True)
        try:
            response = client.get(url, headers={"User-Agent": settings.EXTRACTOR_USER_AGENT})
        except httpx.HTTPError as e:
            raise AssetDownloadError(f"{url}: {e}") from e
        finally:
            if self.client is None:
                client.close()

        if not response.is_success:
            raise AssetDownloadError(f"{url}: HTTP {response.status_code}")
        if len(response.content) > settings.ASSET_MAX_BYTES:
            raise AssetDownloadError(f"{url}: larger than {settings.ASSET_MAX_BYTES} bytes")

        content_type = response.headers.get("content-type", "").split(";")[0].strip()
        if not content_type.startswith("image/"):
            content_type = mimetypes.guess_type(urlsplit(url).path)[0] or "image/jpeg"
        return response.content, content_type

    @staticmethod
    def mirror_key(project_id: str, index: int, url: str) -> str:
        ext = os.path.splitext(urlsplit(url).path)[1].lower() or ".jpg"
        return f"listing_assets/{project_id}/{index:02d}{ext}"

    def mirror(self, key: str, data: bytes, content_type: str) -> str:
        logger.info("Mirroring asset to S3: %s", key)
        return upload_bytes_to_s3(data, key, content_type)

    def discard(self, keys: List[str]) -> None:
        if not keys:
            return
        try:
            delete_keys_from_s3(keys)
            logger.info("Removed %s mirrored assets from abandoned batch", len(keys))
        except Exception as e:
            logger.error("Could not remove mirrored assets %s: %s", keys, e)

    def prepare_images(self, project_id: str, image_urls: List[str]) -> List[dict]:
        """
        Build asset row values for the images, in extraction order.

        Probe failures only leave width/height empty; a mirroring failure
        raises so the whole batch is abandoned, and objects already
        mirrored for the batch are deleted again.
        """
        uploaded: List[str] = []
        try:
            return self._prepare(project_id, image_urls, uploaded)
        except Exception:
            self.discard(uploaded)
            raise

    def _prepare(self, project_id: str, image_urls: List[str], uploaded: List[str]) -> List[dict]:
        rows = []
        for index, url in enumerate(image_urls):
            row = {"url": url, "type": "image", "sort_order": index, "width": None, "height": None, "meta": None}

            if self.needs_download:
                try:
                    data, content_type = self.download(url)
                except AssetDownloadError as e:
                    if self.mirror_enabled:
                        raise
                    logger.warning("Asset probe skipped: %s", e)
                    rows.append(row)
                    continue

                row["width"], row["height"] = image_dimensions(data)
                if self.mirror_enabled:
                    key = self.mirror_key(project_id, index, url)
                    row["url"] = self.mirror(key, data, content_type)
                    uploaded.append(key)
                    row["meta"] = {"source_url": url}

            rows.append(row)
        return rows
