from typing import List

from pydantic import BaseModel, Field, HttpUrl


class SitemapParseRequest(BaseModel):
    xml: str = Field(..., description="Raw sitemap XML (<urlset> document)")


class SitemapFetchRequest(BaseModel):
    url: HttpUrl


class SitemapUrlsResponse(BaseModel):
    urls: List[str]
    count: int
