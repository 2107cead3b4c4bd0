"""Allow-listed image proxy for remote panel images.

Workflow-service image URLs are signed and served from a different origin.
The streaming resolver hands clients `/api/proxy-image?url=...` links and the
HTTP adapter serves them through `fetch_proxied_image`.

Failure model:
    - missing URL -> `ValidationError`
    - URL outside the allow-listed prefix -> `ForbiddenError`
    - upstream timeout -> `RemoteServiceError(status_code=504)`
    - upstream non-2xx -> `RemoteServiceError(status_code=<upstream>)`
"""

import logging
import os
from dataclasses import dataclass
from urllib.parse import quote

import requests

from manga_tutor.core.errors import ForbiddenError, RemoteServiceError, ValidationError

logger = logging.getLogger(__name__)

PROXY_ROUTE = "/api/proxy-image"
PROXY_USER_AGENT = "manga-tutor-proxy/1.0"
PROXY_CACHE_CONTROL = "public, max-age=3600"


@dataclass(frozen=True)
class ProxyConfig:
    allowed_prefix: str = os.getenv("PROXY_ALLOWED_PREFIX", "https://upload.dify.ai/")
    timeout_seconds: float = float(os.getenv("PROXY_TIMEOUT_SECONDS", "15"))


def proxy_path(url: str) -> str:
    """Client-facing proxy link for a remote image URL."""
    return f"{PROXY_ROUTE}?url={quote(url, safe='')}"


def fetch_proxied_image(url: str | None, config: ProxyConfig) -> tuple[bytes, str]:
    """Download an allow-listed image.

    Returns:
        `(body, content_type)`; content type defaults to `image/png`.
    """
    if not url:
        raise ValidationError("image url is required")

    if not url.startswith(config.allowed_prefix):
        logger.warning("Rejected proxy url outside allow-list: %s", url)
        raise ForbiddenError("image url is not allowed")

    try:
        response = requests.get(
            url,
            headers={"User-Agent": PROXY_USER_AGENT},
            timeout=config.timeout_seconds,
        )
    except requests.exceptions.Timeout as err:
        raise RemoteServiceError("image fetch timed out", status_code=504) from err
    except requests.exceptions.RequestException as err:
        raise RemoteServiceError(f"image fetch failed: {err}") from err

    if not response.ok:
        logger.error("Proxy fetch failed: status=%s url=%s", response.status_code, url)
        raise RemoteServiceError(
            f"image fetch failed: {response.status_code}",
            status_code=response.status_code,
        )

    content_type = response.headers.get("content-type") or "image/png"
    return response.content, content_type
