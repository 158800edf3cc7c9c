"""
SEO Client
Regex-based scan of on-page SEO signals; attribute order does not matter
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .base import BaseProviderClient, ProviderResult

logger = logging.getLogger(__name__)

_TITLE = re.compile(r"<title[^>]*>([^<]*)</title>", re.IGNORECASE)
_H1 = re.compile(r"<h1[\s>]", re.IGNORECASE)
_H2 = re.compile(r"<h2[\s>]", re.IGNORECASE)
_META_TAG = re.compile(r"<meta\b[^>]*>", re.IGNORECASE)
_LINK_TAG = re.compile(r"<link\b[^>]*>", re.IGNORECASE)
_ATTRIBUTE = re.compile(r"""([a-zA-Z:-]+)\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s>]+))""")
_JSON_LD = re.compile(
    r"""<script[^>]*type\s*=\s*["']application/ld\+json["'][^>]*>([\s\S]*?)</script>""",
    re.IGNORECASE,
)
_CHARSET = re.compile(r"""<meta[^>]*charset\s*=\s*["']?([^"'\s/>;]+)""", re.IGNORECASE)
_HTML_LANG = re.compile(r"""<html[^>]*\blang\s*=\s*["']([^"']*)["']""", re.IGNORECASE)

OPEN_GRAPH_KEYS = ["title", "description", "image", "type", "url", "site_name"]
TWITTER_KEYS = ["card", "title", "description", "image", "site"]


@dataclass
class SeoResult(ProviderResult):
    title: Optional[str] = None
    description: Optional[str] = None
    keywords: Optional[str] = None
    h1_count: int = 0
    h2_count: int = 0
    has_canonical: bool = False
    canonical_url: Optional[str] = None
    indexable: bool = True
    has_open_graph: bool = False
    open_graph_data: Dict[str, str] = field(default_factory=dict)
    has_twitter_cards: bool = False
    twitter_card_data: Dict[str, str] = field(default_factory=dict)
    has_json_ld: bool = False
    json_ld_types: List[str] = field(default_factory=list)
    has_viewport: bool = False
    charset: Optional[str] = None
    language: Optional[str] = None
    issues: List[str] = field(default_factory=list)
    score: int = 0


def tag_attributes(tag: str) -> Dict[str, str]:
    """Attributes of a single tag, lower-cased names"""
    attributes = {}
    for name, double, single, bare in _ATTRIBUTE.findall(tag):
        attributes[name.lower()] = next((v for v in (double, single, bare) if v), "")
    return attributes


def meta_tags(html: str) -> List[Dict[str, str]]:
    return [tag_attributes(tag) for tag in _META_TAG.findall(html)]


def meta_content(metas: List[Dict[str, str]], key: str, value: str) -> Optional[str]:
    """content of the first meta whose ``key`` (name/property) equals ``value``"""
    for attributes in metas:
        if attributes.get(key, "").lower() == value and "content" in attributes:
            return attributes["content"].strip()
    return None


def _json_ld_types(data: Any) -> List[str]:
    types: List[str] = []
    items = data if isinstance(data, list) else [data]
    for item in items:
        if not isinstance(item, dict):
            continue
        declared = item.get("@type")
        if isinstance(declared, list):
            types.extend(str(t) for t in declared)
        elif declared:
            types.append(str(declared))
        if "@graph" in item:
            types.extend(_json_ld_types(item["@graph"]))
    return types


def parse_html(html: str) -> SeoResult:
    """Extract SEO data from raw HTML"""
    result = SeoResult(success=True)
    metas = meta_tags(html)

    title_match = _TITLE.search(html)
    result.title = title_match.group(1).strip() if title_match else None
    result.description = meta_content(metas, "name", "description")
    result.keywords = meta_content(metas, "name", "keywords")

    result.h1_count = len(_H1.findall(html))
    result.h2_count = len(_H2.findall(html))

    for link in _LINK_TAG.findall(html):
        attributes = tag_attributes(link)
        if "canonical" in attributes.get("rel", "").lower().split() and attributes.get("href"):
            result.canonical_url = attributes["href"]
            break
    result.has_canonical = bool(result.canonical_url)

    robots = (meta_content(metas, "name", "robots") or "").lower()
    result.indexable = "noindex" not in robots

    for key in OPEN_GRAPH_KEYS:
        value = meta_content(metas, "property", f"og:{key}")
        if value is not None:
            result.open_graph_data[key] = value
    result.has_open_graph = any(m.get("property", "").lower().startswith("og:") for m in metas)

    for key in TWITTER_KEYS:
        value = meta_content(metas, "name", f"twitter:{key}")
        if value is None:
            value = meta_content(metas, "property", f"twitter:{key}")
        if value is not None:
            result.twitter_card_data[key] = value
    result.has_twitter_cards = any(
        m.get("name", m.get("property", "")).lower().startswith("twitter:") for m in metas
    )

    for block in _JSON_LD.findall(html):
        try:
            data = json.loads(block.strip())
        except ValueError:
            continue
        result.has_json_ld = True
        result.json_ld_types.extend(_json_ld_types(data))

    result.has_viewport = any(m.get("name", "").lower() == "viewport" for m in metas)
    charset_match = _CHARSET.search(html)
    result.charset = charset_match.group(1) if charset_match else None
    lang_match = _HTML_LANG.search(html)
    result.language = lang_match.group(1) if lang_match else None

    result.issues, result.score = score_seo(result)
    return result


def score_seo(result: SeoResult):
    issues = []
    score = 100

    if not result.title:
        issues.append("Missing <title>")
        score -= 20
    elif not 10 <= len(result.title) <= 70:
        issues.append("Title length should be between 10 and 70 characters")
        score -= 5

    if not result.description:
        issues.append("Missing meta description")
        score -= 15
    elif not 50 <= len(result.description) <= 160:
        issues.append("Meta description should be between 50 and 160 characters")
        score -= 5

    if result.h1_count == 0:
        issues.append("No <h1> heading")
        score -= 10
    elif result.h1_count > 1:
        issues.append(f"{result.h1_count} <h1> headings, expected one")
        score -= 5

    if not result.indexable:
        issues.append("Page is marked noindex")
        score -= 20
    if not result.has_canonical:
        issues.append("No canonical URL")
        score -= 5
    if not result.has_open_graph:
        issues.append("No Open Graph tags")
        score -= 5
    if not result.has_twitter_cards:
        issues.append("No Twitter card tags")
        score -= 5
    if not result.has_json_ld:
        issues.append("No JSON-LD structured data")
        score -= 5
    if not result.has_viewport:
        issues.append("No viewport meta tag")
        score -= 5
    if not result.language:
        issues.append("No lang attribute on <html>")
        score -= 5

    return issues, max(score, 0)


class SeoClient(BaseProviderClient):
    name = "seo"
    timeout = 15.0

    async def analyze(self, url: str) -> SeoResult:
        validation = self.validate(url)
        if not validation.valid:
            return SeoResult(success=False, error=validation.error)

        try:
            response = await self.fetch_page(validation.normalized_url)
            return parse_html(response.text)
        except Exception as e:
            return self.failure(SeoResult, e)
