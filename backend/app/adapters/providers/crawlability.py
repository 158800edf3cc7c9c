"""
Crawlability Client
robots.txt rules and sitemap discovery
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

from .base import BaseProviderClient, ProviderResult
from app.utils.url_validator import validate_url

logger = logging.getLogger(__name__)

SITEMAP_PATHS = ["/sitemap.xml", "/sitemap_index.xml", "/sitemap/", "/sitemaps/sitemap.xml"]

_USER_AGENT = re.compile(r"^user-agent:\s*(.+)", re.IGNORECASE)
_DISALLOW = re.compile(r"^disallow:\s*(.*)", re.IGNORECASE)
_CRAWL_DELAY = re.compile(r"^crawl-delay:\s*(\d+)", re.IGNORECASE)
_SITEMAP = re.compile(r"^sitemap:\s*(.+)", re.IGNORECASE)
_LOC = re.compile(r"<loc>\s*([^<]+?)\s*</loc>", re.IGNORECASE)
_LASTMOD = re.compile(r"<lastmod>\s*([^<]+?)\s*</lastmod>", re.IGNORECASE)


@dataclass
class CrawlabilityResult(ProviderResult):
    has_robots_txt: bool = False
    robots_allows_index: bool = True
    robots_disallowed_paths: List[str] = field(default_factory=list)
    robots_crawl_delay: Optional[int] = None
    sitemaps_from_robots: List[str] = field(default_factory=list)
    has_sitemap: bool = False
    sitemap_url: Optional[str] = None
    sitemap_is_index: bool = False
    sitemap_url_count: Optional[int] = None
    sitemap_urls: List[str] = field(default_factory=list)
    sitemap_last_modified: Optional[str] = None


def _applies(agent: str) -> bool:
    return agent == "*" or "bot" in agent


def parse_robots_txt(content: str) -> Dict[str, Any]:
    """
    Walk robots.txt tracking the active User-agent group.

    Disallow and Crawl-delay rules count only for ``*`` and agents whose name
    contains "bot".
    """
    disallowed: List[str] = []
    sitemaps: List[str] = []
    crawl_delay: Optional[int] = None
    allows_index = True
    current_agent = ""

    for raw_line in content.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if not line:
            continue

        match = _USER_AGENT.match(line)
        if match:
            current_agent = match.group(1).strip().lower()
            continue

        match = _DISALLOW.match(line)
        if match:
            path = match.group(1).strip()
            if path and _applies(current_agent):
                disallowed.append(path)
                if path == "/":
                    allows_index = False
            continue

        match = _CRAWL_DELAY.match(line)
        if match:
            if _applies(current_agent):
                crawl_delay = int(match.group(1))
            continue

        match = _SITEMAP.match(line)
        if match:
            sitemaps.append(match.group(1).strip())

    return {
        "robots_allows_index": allows_index,
        "robots_disallowed_paths": disallowed[:20],
        "robots_crawl_delay": crawl_delay,
        "sitemaps_from_robots": sitemaps,
    }


def parse_sitemap(content: str) -> Dict[str, Any]:
    """Count entries; a sitemap index counts <sitemap>, a flat sitemap counts <url>"""
    is_index = "<sitemapindex" in content.lower()
    if is_index:
        count = len(re.findall(r"<sitemap>", content, re.IGNORECASE))
    else:
        count = len(re.findall(r"<url>", content, re.IGNORECASE))

    lastmods = sorted(_LASTMOD.findall(content), reverse=True)
    return {
        "sitemap_is_index": is_index,
        "sitemap_url_count": count,
        "sitemap_urls": _LOC.findall(content)[:10],
        "sitemap_last_modified": lastmods[0] if lastmods else None,
    }


class CrawlabilityClient(BaseProviderClient):
    name = "crawlability"
    timeout = 15.0

    async def _robots(self, origin: str) -> Dict[str, Any]:
        try:
            response = await self.request(f"{origin}/robots.txt", timeout=10.0)
        except Exception as e:
            logger.debug(f"No robots.txt at {origin}: {e}")
            return {"has_robots_txt": False, "robots_allows_index": True}
        return {"has_robots_txt": True, **parse_robots_txt(response.text)}

    async def _find_sitemap(self, origin: str) -> Optional[str]:
        for path in SITEMAP_PATHS:
            candidate = f"{origin}{path}"
            try:
                response = await self.call(
                    lambda: self.request(candidate, method="HEAD", timeout=5.0, raise_for_status=False)
                )
            except Exception:
                continue
            if response.status_code >= 400:
                continue
            content_type = response.headers.get("content-type", "")
            if "xml" in content_type or "text" in content_type:
                return candidate
        return None

    async def _sitemap(self, sitemap_url: str) -> Dict[str, Any]:
        response = await self.call(lambda: self.request(sitemap_url, timeout=15.0))
        return parse_sitemap(response.text)

    async def analyze(self, url: str) -> CrawlabilityResult:
        validation = self.validate(url)
        if not validation.valid:
            return CrawlabilityResult(success=False, error=validation.error)

        parts = urlsplit(validation.normalized_url)
        origin = f"{parts.scheme}://{parts.netloc}"

        try:
            data = await self.call(lambda: self._robots(origin))

            sitemap_url = None
            for candidate in data.get("sitemaps_from_robots", []):
                # Sitemap directives are remote-controlled, validate them too
                if validate_url(candidate).valid:
                    sitemap_url = validate_url(candidate).normalized_url
                    break
            if sitemap_url is None:
                sitemap_url = await self._find_sitemap(origin)

            if sitemap_url:
                try:
                    data.update(await self._sitemap(sitemap_url))
                    data.update(has_sitemap=True, sitemap_url=sitemap_url)
                except Exception as e:
                    logger.debug(f"Sitemap {sitemap_url} unreadable: {e}")
                    data["has_sitemap"] = False
        except Exception as e:
            return self.failure(CrawlabilityResult, e)

        return CrawlabilityResult(success=True, **data)
