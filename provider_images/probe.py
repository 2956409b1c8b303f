"""Probe an image URL for reachability, content type, size and dimensions."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from provider_images.config import PROBE_RANGE_BYTES, PROBE_TIMEOUT, USER_AGENT
from provider_images.dimensions import Dimensions, parse_dimensions
from provider_images.models import ProbeResult

logger = logging.getLogger(__name__)

_HEADERS = {"User-Agent": USER_AGENT}


def _media_type(resp: httpx.Response) -> Optional[str]:
    ct = resp.headers.get("content-type", "").split(";")[0].strip().lower()
    return ct or None


def _content_length(resp: httpx.Response) -> Optional[int]:
    value = resp.headers.get("content-length", "").strip()
    return int(value) if value.isdigit() else None


async def fetch_dimensions(client: httpx.AsyncClient, url: str) -> Optional[Dimensions]:
    """Download the first 16KB of an image and read its dimensions."""
    buf = bytearray()
    try:
        async with client.stream(
            "GET",
            url,
            timeout=PROBE_TIMEOUT,
            follow_redirects=False,
            headers={**_HEADERS, "Range": f"bytes=0-{PROBE_RANGE_BYTES - 1}"},
        ) as resp:
            async for chunk in resp.aiter_bytes():
                buf.extend(chunk)
                if len(buf) >= PROBE_RANGE_BYTES:
                    break
    except httpx.HTTPError as e:
        logger.debug(f"Range GET failed for {url}: {e!r}")
        if not buf:
            return None
    return parse_dimensions(bytes(buf[:PROBE_RANGE_BYTES]))


async def probe_image(client: httpx.AsyncClient, url: str) -> ProbeResult:
    """
    HEAD the URL, then read dimensions from a partial GET for image responses.
    Redirects are not followed: a 3xx answer already counts as accessible.

    Timeouts, connection errors and non-2xx/3xx statuses give an inaccessible
    result with every other field unset.
    """
    result = ProbeResult(url=url)

    try:
        resp = await client.head(
            url, timeout=PROBE_TIMEOUT, headers=_HEADERS, follow_redirects=False
        )
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.debug(f"HEAD failed for {url}: {e!r}")
        return result

    if not 200 <= resp.status_code < 400:
        logger.debug(f"HEAD {resp.status_code} for {url}")
        return result

    result.is_accessible = True
    result.content_type = _media_type(resp)
    result.file_size_bytes = _content_length(resp)

    if result.content_type and result.content_type.startswith("image/"):
        dims = await fetch_dimensions(client, url)
        if dims:
            result.width, result.height = dims.width, dims.height

    return result
