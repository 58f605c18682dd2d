"""Image resolution boundary.

Vendors on Bedrock accept image bytes only, so image URLs in canonical
requests are resolved to base64 before translation. ``data:`` URLs are
decoded inline; everything else is fetched over HTTP.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Protocol, runtime_checkable

import httpx

from bedrock_relay.errors import ImageFetchError

logger = logging.getLogger(__name__)

# Formats accepted by Bedrock image blocks, keyed by MIME subtype.
IMAGE_FORMATS: dict[str, str] = {
    "jpeg": "jpeg",
    "jpg": "jpeg",
    "pjpeg": "jpeg",
    "png": "png",
    "gif": "gif",
    "webp": "webp",
}

DEFAULT_IMAGE_FORMAT = "jpeg"


def image_format(mime_type: str) -> str:
    """Map a MIME type such as ``image/png`` to a Bedrock image format.

    Unknown subtypes fall back to ``jpeg``.
    """
    subtype = mime_type.split("/", 1)[-1].split(";")[0].strip().lower()
    return IMAGE_FORMATS.get(subtype, DEFAULT_IMAGE_FORMAT)


@runtime_checkable
class ImageFetcher(Protocol):
    """Resolves an image URL to ``(mime_type, base64_data)``."""

    async def fetch(self, url: str) -> tuple[str, str]:
        """Fetch the image at *url*.

        Raises:
            ImageFetchError: If the image cannot be resolved.
        """
        ...


def decode_data_url(url: str) -> tuple[str, str]:
    """Split a ``data:<mime>;base64,<payload>`` URL.

    Raises:
        ImageFetchError: If the URL is not a base64 data URL.
    """
    header, sep, payload = url.partition(",")
    if not sep or not header.startswith("data:") or ";base64" not in header:
        raise ImageFetchError("unsupported data URL")
    mime_type = header[len("data:") :].split(";")[0] or "image/jpeg"
    try:
        base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ImageFetchError(f"invalid base64 payload: {exc}") from exc
    return mime_type, payload


class HttpImageFetcher:
    """Fetches images with ``httpx`` and returns them base64-encoded."""

    def __init__(
        self,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport

    async def fetch(self, url: str) -> tuple[str, str]:
        if url.startswith("data:"):
            return decode_data_url(url)

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                resp = await client.get(url)
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise ImageFetchError(f"failed to fetch {url}: {exc}") from exc

        content_type = resp.headers.get("content-type", "image/jpeg").split(";")[0]
        if not content_type.startswith("image/"):
            raise ImageFetchError(f"{url} is not an image ({content_type})")
        logger.debug("Fetched image %s (%s, %d bytes)", url, content_type, len(resp.content))
        return content_type, base64.b64encode(resp.content).decode("ascii")
