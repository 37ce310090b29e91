from __future__ import annotations

from typing import Optional

import httpx

from ..logging import get_logger

LOG = get_logger("image-download")

USER_AGENT = "Mozilla/5.0 (compatible; RefImageSeeder/1.0)"
RATE_LIMIT_STATUSES = frozenset({429, 503})


class DownloadError(RuntimeError):
    """Download failed; `status_code` is None for transport-level errors."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, timed_out: bool = False) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.timed_out = timed_out

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code in RATE_LIMIT_STATUSES

    @property
    def retryable(self) -> bool:
        return self.is_rate_limited or self.timed_out


class ImageTooLarge(DownloadError):
    """Body exceeded the byte cap; the rest of the stream was not read."""


class ImageDownloader:
    """Fetch candidate image bytes over a shared httpx.AsyncClient.

    Bodies are streamed and abandoned as soon as they pass `max_bytes`.
    """

    def __init__(self, client: httpx.AsyncClient, *, timeout: float = 15.0, max_bytes: Optional[int] = None) -> None:
        self.client = client
        self.timeout = float(timeout)
        self.max_bytes = max_bytes

    async def fetch(self, url: str) -> bytes:
        try:
            async with self.client.stream(
                "GET",
                url,
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT, "Accept": "image/*"},
            ) as r:
                if r.status_code != 200:
                    raise DownloadError(
                        f"Failed to fetch image: HTTP {r.status_code} {r.reason_phrase}",
                        status_code=r.status_code,
                    )
                content_type = r.headers.get("content-type", "").split(";")[0].strip().lower()
                if not content_type.startswith("image/"):
                    raise DownloadError(f"Invalid content type: {content_type or 'missing'}", status_code=r.status_code)
                data = await self._read_capped(r, url)
        except httpx.TimeoutException as e:
            raise DownloadError(f"Timed out fetching image: {e}", timed_out=True) from e
        except httpx.HTTPError as e:
            raise DownloadError(f"Failed to fetch image: {e}") from e

        LOG.debug(f"Downloaded {len(data)} bytes from {url}")
        return data

    async def _read_capped(self, response: httpx.Response, url: str) -> bytes:
        limit = self.max_bytes
        declared = response.headers.get("content-length", "")
        if limit is not None and declared.isdigit() and int(declared) > limit:
            raise ImageTooLarge(f"File too large: {declared} bytes (max {limit})", status_code=response.status_code)

        buf = bytearray()
        async for chunk in response.aiter_bytes():
            buf.extend(chunk)
            if limit is not None and len(buf) > limit:
                LOG.debug(f"Abandoned {url} after {len(buf)} bytes")
                raise ImageTooLarge(f"File too large: more than {limit} bytes", status_code=response.status_code)
        return bytes(buf)
