import logging
import xml.etree.ElementTree as ET
from typing import List

from app.platform.exceptions import SitemapError

logger = logging.getLogger(__name__)


def _localname(tag: str) -> str:
    """Strip the "{namespace}" prefix ElementTree puts on qualified tags."""
    if "}" in tag:
        return tag.rsplit("}", 1)[-1]
    return tag


def parse_sitemap(xml_content: str) -> List[str]:
    """
    Extract page URLs from a single-level sitemap.

    Accepts ``<urlset><url><loc>...</loc></url>...</urlset>`` with or without
    the sitemaps.org namespace. Document order and duplicates are kept,
    blank ``<loc>`` entries are dropped.

    Raises:
        SitemapError: if the content is empty, not well-formed XML, a
            sitemap index, or not a sitemap at all.
    """
    if not xml_content or not isinstance(xml_content, str) or not xml_content.strip():
        raise SitemapError("Invalid XML content provided. Content must be a non-empty string.")

    try:
        root = ET.fromstring(xml_content.lstrip("\ufeff").strip())
    except ET.ParseError as e:
        logger.error(f"XML parsing error: {e}")
        raise SitemapError(
            "Failed to parse the sitemap XML. The content may be malformed or not valid XML."
        ) from e

    root_name = _localname(root.tag)
    if root_name == "sitemapindex":
        raise SitemapError(
            "Sitemap index files are not supported. Please provide the XML from a "
            "specific sitemap (e.g., page-sitemap.xml)."
        )
    if root_name != "urlset":
        raise SitemapError(f"Unsupported sitemap root element: <{root_name}>. Expected <urlset>.")

    urls = []
    for url_node in root.iter():
        if _localname(url_node.tag) != "url":
            continue
        for child in url_node:
            if _localname(child.tag) == "loc":
                loc = (child.text or "").strip()
                if loc:
                    urls.append(loc)

    if not urls:
        logger.warning("Sitemap parsed successfully, but no URLs were found inside <url><loc> tags.")
    else:
        logger.info(f"Parsed {len(urls)} URLs from sitemap")

    return urls


def require_urls(urls: List[str]) -> List[str]:
    """Reject an empty URL list before any analysis is dispatched."""
    if not urls:
        raise SitemapError(
            "No URLs found in the sitemap XML. Please check the content."
        )
    return urls
