from fastapi import APIRouter

from app.features.sitemap.schemas.sitemap import (
    SitemapFetchRequest,
    SitemapParseRequest,
    SitemapUrlsResponse,
)
from app.features.sitemap.services.sitemap_fetcher import SitemapFetcher
from app.features.sitemap.services.sitemap_parser import parse_sitemap, require_urls
from app.platform.response import api_response
from app.platform.schemas import APIResponse

router = APIRouter(prefix="/sitemap", tags=["sitemap"])


@router.post("/parse", response_model=APIResponse[SitemapUrlsResponse])
async def parse_sitemap_xml(data: SitemapParseRequest):
    """Extract the page URLs from pasted sitemap XML."""
    urls = require_urls(parse_sitemap(data.xml))
    return api_response(
        data=SitemapUrlsResponse(urls=urls, count=len(urls)),
        message=f"Found {len(urls)} URLs in sitemap",
    )


@router.post("/fetch", response_model=APIResponse[SitemapUrlsResponse])
async def fetch_sitemap(data: SitemapFetchRequest):
    """Fetch a remote sitemap and extract its page URLs."""
    xml = await SitemapFetcher().fetch(str(data.url))
    urls = require_urls(parse_sitemap(xml))
    return api_response(
        data=SitemapUrlsResponse(urls=urls, count=len(urls)),
        message=f"Found {len(urls)} URLs in sitemap",
    )
