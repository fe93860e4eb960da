import logging
from typing import List, Optional
from urllib.parse import quote, urlparse

import httpx

from app.platform.config import settings
from app.platform.exceptions import SitemapFetchError

logger = logging.getLogger(__name__)

DIRECT_ENDPOINT = "direct"

HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; AffiliateSitemapAnalyzer/1.0)",
    "Accept": "application/xml,text/xml;q=0.9,*/*;q=0.8",
}


class SitemapFetcher:
    """
    Fetches a remote sitemap through a chain of endpoints.

    Each endpoint is either "direct" (request the sitemap URL itself) or a
    proxy template containing "{url}", which receives the percent-encoded
    sitemap URL. The first endpoint that answers with a 2xx wins.
    """

    def __init__(
        self,
        endpoints: Optional[List[str]] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.endpoints = endpoints if endpoints is not None else list(settings.SITEMAP_FETCH_ENDPOINTS)
        self.timeout = timeout if timeout is not None else settings.SITEMAP_FETCH_TIMEOUT
        self._client = client

    @staticmethod
    def build_request_url(endpoint: str, sitemap_url: str) -> str:
        if endpoint == DIRECT_ENDPOINT:
            return sitemap_url
        return endpoint.replace("{url}", quote(sitemap_url, safe=""))

    @staticmethod
    def _endpoint_label(endpoint: str) -> str:
        if endpoint == DIRECT_ENDPOINT:
            return DIRECT_ENDPOINT
        return urlparse(endpoint).netloc or endpoint

    async def fetch(self, sitemap_url: str) -> str:
        """
        Return the raw sitemap text.

        Raises:
            SitemapFetchError: when every endpoint failed, naming the last failure.
        """
        parsed = urlparse(sitemap_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise SitemapFetchError(f"Invalid sitemap URL: {sitemap_url}")

        if not self.endpoints:
            raise SitemapFetchError("Sitemap fetch failed. No fetch endpoints are configured.")

        client = self._client or httpx.AsyncClient(
            timeout=self.timeout, headers=HEADERS, follow_redirects=True
        )
        last_error: Optional[str] = None
        try:
            for endpoint in self.endpoints:
                label = self._endpoint_label(endpoint)
                request_url = self.build_request_url(endpoint, sitemap_url)
                try:
                    response = await client.get(request_url)
                    if response.status_code >= 400:
                        raise SitemapFetchError(f"Request failed with status: {response.status_code}")
                    logger.info(f"Fetched sitemap {sitemap_url} via {label}")
                    return response.text
                except (httpx.HTTPError, SitemapFetchError) as e:
                    last_error = str(e) or type(e).__name__
                    logger.warning(f"Sitemap fetch attempt via {label} failed: {last_error}")
        finally:
            if self._client is None:
                await client.aclose()

        logger.error(f"All fetch endpoints failed for sitemap: {sitemap_url}")
        raise SitemapFetchError(f"Sitemap fetch failed. Last attempt error: {last_error}")
