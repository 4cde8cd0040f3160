"""
Cloudinary re-hosting for generated images.

Provider URLs expire, so the pipeline uploads each image to Cloudinary
with a signed upload and stores the durable delivery URL instead.
"""

import hashlib
import logging
import time
from typing import Callable, Dict, Optional

import httpx

from rapidalle.core.config import settings

logger = logging.getLogger("rapidalle")

UPLOAD_URL = "https://api.cloudinary.com/v1_1/{cloud_name}/image/upload"
DELIVERY_TRANSFORMATION = "f_auto,q_auto"


class MediaHostError(RuntimeError):
    """Upload to the media host failed."""


def sign_params(params: Dict[str, str], api_secret: str) -> str:
    """Cloudinary signature: sha1 of sorted key=value pairs joined by & plus the secret."""
    to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params) if params[k] not in (None, ""))
    return hashlib.sha1(f"{to_sign}{api_secret}".encode("utf-8")).hexdigest()


def delivery_url(secure_url: str) -> str:
    marker = "/upload/"
    if marker not in secure_url:
        return secure_url
    return secure_url.replace(marker, f"{marker}{DELIVERY_TRANSFORMATION}/", 1)


class CloudinaryHost:
    def __init__(
        self,
        cloud_name: Optional[str] = None,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        folder: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.Client] = None,
        time_fn: Callable[[], float] = time.time,
    ):
        self.cloud_name = cloud_name or settings.CLOUDINARY_CLOUD_NAME
        self.api_key = api_key or settings.CLOUDINARY_API_KEY
        self.api_secret = api_secret or settings.CLOUDINARY_API_SECRET
        self.folder = folder or settings.CLOUDINARY_FOLDER
        self.timeout = timeout or settings.PROVIDER_TIMEOUT_SECONDS
        self.http_client = http_client
        self.time_fn = time_fn

    @property
    def configured(self) -> bool:
        return bool(self.cloud_name and self.api_key and self.api_secret)

    def upload(self, source: str, public_id: str) -> str:
        """Upload a remote URL or data URI and return the delivery URL.

        Raises:
            MediaHostError: not configured, HTTP failure or malformed response
        """
        if not self.configured:
            raise MediaHostError("Media host is not configured")

        params = {
            "folder": self.folder,
            "public_id": public_id,
            "timestamp": str(int(self.time_fn())),
        }
        form = dict(params)
        form["api_key"] = self.api_key
        form["signature"] = sign_params(params, self.api_secret)
        form["file"] = source

        url = UPLOAD_URL.format(cloud_name=self.cloud_name)
        try:
            if self.http_client is not None:
                response = self.http_client.post(url, data=form, timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(url, data=form)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise MediaHostError(f"Upload failed: {e}") from e

        secure_url = body.get("secure_url") if isinstance(body, dict) else None
        if not secure_url:
            raise MediaHostError("Upload response had no secure_url")
        return delivery_url(secure_url)
