"""HTTP client for the URL shortening service."""

from typing import Optional

import httpx

from common.constants import DEFAULT_SHORTENER_URL, SHORTENER_TIMEOUT_SECONDS
from common.logging_config import get_logger

logger = get_logger(__name__)


class UrlShortener:
    """
    Shortens tunnel URLs through a TinyURL-style API (GET ?url=... returns the short URL as text).

    Shortening is cosmetic: every failure falls back to the original URL.
    """

    def __init__(
        self,
        api_url: str = DEFAULT_SHORTENER_URL,
        timeout: float = SHORTENER_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Args:
            api_url: Shortener endpoint
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests inject httpx.MockTransport)
        """
        self.api_url = api_url
        self.timeout = timeout
        self._transport = transport

    async def shorten(self, url: str) -> str:
        """
        Shorten a URL.

        Args:
            url: Long URL

        Returns:
            Short URL, or the input URL if the service is unavailable
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(self.api_url, params={'url': url})
        except httpx.HTTPError as e:
            logger.debug(f"URL shortening failed: {type(e).__name__}: {e}")
            return url

        shortened = response.text.strip()
        if response.status_code != 200 or not shortened.startswith(('http://', 'https://')):
            logger.debug(f"URL shortening returned status={response.status_code}, using original URL")
            return url

        logger.debug(f"Shortened {url} -> {shortened}")
        return shortened
