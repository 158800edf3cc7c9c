"""
Responsive Design Client
Heuristic scan combining five independent responsive-design signals
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .base import BaseProviderClient, ProviderResult
from .seo import meta_tags

logger = logging.getLogger(__name__)

_STYLE_BLOCK = re.compile(r"<style[^>]*>([\s\S]*?)</style>", re.IGNORECASE)
_INLINE_STYLE = re.compile(r"""style\s*=\s*(?:"([^"]*)"|'([^']*)')""", re.IGNORECASE)
_MEDIA_RULE = re.compile(r"@media[^{]*\{", re.IGNORECASE)
_WIDTH_BREAKPOINT = re.compile(r"(?:max|min)-width\s*:\s*(\d+)px", re.IGNORECASE)
_FLEX_OR_GRID = re.compile(r"display\s*:\s*(?:inline-)?(?:flex|grid)", re.IGNORECASE)
_FLEX_OR_GRID_CLASS = re.compile(r"""class\s*=\s*["'][^"']*\b(?:flex|grid)\b[^"']*["']""", re.IGNORECASE)
_RESPONSIVE_IMAGES = re.compile(r"<img[^>]*\b(?:srcset|sizes)\s*=|<picture[\s>]", re.IGNORECASE)
_RELATIVE_UNITS = re.compile(r"(?<![\w.])(?:\d*\.)?[1-9]\d*(?:vw|vh|rem|em|%)", re.IGNORECASE)

MOBILE_BREAKPOINT = 768


@dataclass
class ResponsiveResult(ProviderResult):
    is_responsive: bool = False
    confidence: Optional[str] = None
    signals: Dict[str, bool] = field(default_factory=dict)
    has_viewport_meta: bool = False
    viewport_content: Optional[str] = None
    media_queries_count: int = 0
    breakpoints: List[int] = field(default_factory=list)


def extract_styles(html: str) -> str:
    styles = [match for match in _STYLE_BLOCK.findall(html)]
    for double, single in _INLINE_STYLE.findall(html):
        styles.append(double or single)
    return "\n".join(styles)


def analyze_html(html: str) -> ResponsiveResult:
    """Classify a page from its markup and inline CSS"""
    viewport_content = None
    for attributes in meta_tags(html):
        if attributes.get("name", "").lower() == "viewport":
            viewport_content = attributes.get("content", "")
            break

    css = extract_styles(html)
    media_rules = _MEDIA_RULE.findall(css)
    breakpoints = sorted({int(value) for rule in media_rules for value in _WIDTH_BREAKPOINT.findall(rule)})

    has_mobile_breakpoint = any(bp <= MOBILE_BREAKPOINT for bp in breakpoints)
    has_flex_or_grid = bool(_FLEX_OR_GRID.search(css) or _FLEX_OR_GRID_CLASS.search(html))

    signals = {
        "viewport": bool(viewport_content) and (
            "width=device-width" in viewport_content.replace(" ", "").lower()
            or "initial-scale" in viewport_content.lower()
        ),
        "media_queries": len(media_rules) >= 3,
        "mobile_optimized": has_mobile_breakpoint or has_flex_or_grid,
        "responsive_images": bool(_RESPONSIVE_IMAGES.search(html)),
        "relative_units": bool(_RELATIVE_UNITS.search(css)),
    }
    positive = sum(signals.values())

    if positive >= 4:
        is_responsive, confidence = True, "high"
    elif positive >= 2:
        is_responsive, confidence = True, "medium"
    elif signals["viewport"]:
        is_responsive, confidence = True, "low"
    else:
        is_responsive, confidence = False, None

    return ResponsiveResult(
        success=True,
        is_responsive=is_responsive,
        confidence=confidence,
        signals=signals,
        has_viewport_meta=viewport_content is not None,
        viewport_content=viewport_content,
        media_queries_count=len(media_rules),
        breakpoints=breakpoints,
    )


class ResponsiveClient(BaseProviderClient):
    name = "responsive"
    timeout = 15.0

    async def analyze(self, url: str) -> ResponsiveResult:
        validation = self.validate(url)
        if not validation.valid:
            return ResponsiveResult(success=False, error=validation.error)

        try:
            response = await self.fetch_page(validation.normalized_url)
            return analyze_html(response.text)
        except Exception as e:
            return self.failure(ResponsiveResult, e)
