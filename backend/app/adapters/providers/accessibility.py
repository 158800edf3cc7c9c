"""
Accessibility Client
Static HTML checks approximating the most common WCAG failures
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List

from .base import BaseProviderClient, ProviderResult

logger = logging.getLogger(__name__)

SEVERITY_PENALTIES = {"critical": 20, "serious": 10, "moderate": 5, "minor": 2}

_I = re.IGNORECASE
_DOCTYPE = re.compile(r"<!doctype\s+html", _I)
_HTML_LANG = re.compile(r"""<html[^>]*\blang\s*=\s*["']([^"']+)["']""", _I)
_IMG = re.compile(r"<img\b[^>]*>", _I)
_IMG_WITH_ALT = re.compile(r"""\balt\s*=\s*["'][^"']*["']""", _I)
_LINK = re.compile(r"<a\b([^>]*)>([\s\S]*?)</a>", _I)
_TEXT_INPUT = re.compile(
    r"""<input\b[^>]*type\s*=\s*["'](?:text|email|password|tel|number|search|url)["'][^>]*>""", _I
)
_ARIA_LABEL = re.compile(r"""aria-label\s*=\s*["'][^"']+["']""", _I)
_ARIA_LABELLEDBY = re.compile(r"""aria-labelledby\s*=\s*["'][^"']+["']""", _I)
_TITLE_ATTR = re.compile(r"""\btitle\s*=\s*["'][^"']+["']""", _I)
_PLACEHOLDER = re.compile(r"""placeholder\s*=\s*["'][^"']+["']""", _I)
_ID = re.compile(r"""\bid\s*=\s*["']([^"']+)["']""", _I)
_H1 = re.compile(r"<h1[\s>]", _I)
_SKIP_LINK = re.compile(
    r"""<a[^>]*href\s*=\s*["']#(?:main|content|maincontent)[^"']*["']|skip[- ]?to[- ]?(?:main|content)""", _I
)
_LOW_CONTRAST = re.compile(
    r"color:\s*#(?:999|aaa|bbb|ccc|ddd|eee|[89a-f]{3})\b|color:\s*rgb\(\s*(?:1[5-9]\d|2[0-5]\d)", _I
)


@dataclass
class AccessibilityResult(ProviderResult):
    score: int = 0
    issues: List[Dict[str, Any]] = field(default_factory=list)
    summary: Dict[str, int] = field(
        default_factory=lambda: {severity: 0 for severity in SEVERITY_PENALTIES}
    )
    checks: Dict[str, Any] = field(default_factory=dict)


def _issue(severity: str, rule: str, message: str, count: int = None) -> Dict[str, Any]:
    issue = {"severity": severity, "rule": rule, "message": message}
    if count is not None:
        issue["count"] = count
    return issue


def analyze_html(html: str) -> AccessibilityResult:
    issues: List[Dict[str, Any]] = []
    checks: Dict[str, Any] = {}

    checks["has_doctype"] = bool(_DOCTYPE.search(html))
    if not checks["has_doctype"]:
        issues.append(_issue("moderate", "html-has-doctype", "Page is missing a DOCTYPE declaration"))

    checks["has_lang_attribute"] = bool(_HTML_LANG.search(html))
    if not checks["has_lang_attribute"]:
        issues.append(_issue("serious", "html-has-lang", "The <html> element does not have a lang attribute"))

    images = _IMG.findall(html)
    with_alt = sum(1 for image in images if _IMG_WITH_ALT.search(image))
    checks["images_with_alt"] = {"total": len(images), "with_alt": with_alt}
    missing_alt = len(images) - with_alt
    if missing_alt:
        issues.append(_issue("critical", "image-alt", f"{missing_alt} image(s) missing alt attribute", missing_alt))

    links = _LINK.findall(html)
    named_links = 0
    for attributes, inner in links:
        if re.search(r"[a-zA-Z]", re.sub(r"<[^>]+>", "", inner)) or _ARIA_LABEL.search(attributes) \
                or _TITLE_ATTR.search(attributes):
            named_links += 1
    checks["links_with_text"] = {"total": len(links), "with_text": named_links}
    unnamed = len(links) - named_links
    if unnamed:
        issues.append(_issue("serious", "link-name", f"{unnamed} link(s) without accessible name", unnamed))

    inputs = _TEXT_INPUT.findall(html)
    labelled = 0.0
    for tag in inputs:
        id_match = _ID.search(tag)
        has_label = bool(id_match) and re.search(
            r"""<label[^>]*for\s*=\s*["']""" + re.escape(id_match.group(1)) + r"""["']""", html, _I
        )
        if _ARIA_LABEL.search(tag) or _ARIA_LABELLEDBY.search(tag) or has_label:
            labelled += 1
        elif _PLACEHOLDER.search(tag):
            # placeholders count half
            labelled += 0.5
    checks["form_labels"] = {"total": len(inputs), "with_labels": round(labelled)}
    unlabelled = round(len(inputs) - labelled)
    if unlabelled > 0:
        issues.append(_issue("critical", "label", f"{unlabelled} form input(s) without proper label", unlabelled))

    h1_count = len(_H1.findall(html))
    if h1_count == 0:
        issues.append(_issue("serious", "page-has-heading-one", "Page does not have a main heading (h1)"))
    elif h1_count > 1:
        issues.append(_issue("moderate", "heading-order", f"Page has {h1_count} h1 headings (should have only one)"))
    checks["heading_hierarchy"] = h1_count == 1

    checks["skip_link"] = bool(_SKIP_LINK.search(html))
    if not checks["skip_link"]:
        issues.append(_issue("minor", "bypass", "Page does not have a skip link for keyboard navigation"))

    checks["color_contrast_estimate"] = (
        "Potential low contrast detected" if _LOW_CONTRAST.search(html) else "No obvious issues detected"
    )

    summary = {severity: 0 for severity in SEVERITY_PENALTIES}
    for issue in issues:
        summary[issue["severity"]] += 1

    return AccessibilityResult(
        success=True,
        score=score_summary(summary),
        issues=issues,
        summary=summary,
        checks=checks,
    )


def score_summary(summary: Dict[str, int]) -> int:
    penalty = sum(SEVERITY_PENALTIES[severity] * count for severity, count in summary.items())
    return max(0, 100 - penalty)


class AccessibilityClient(BaseProviderClient):
    name = "accessibility"
    timeout = 15.0

    async def analyze(self, url: str) -> AccessibilityResult:
        validation = self.validate(url)
        if not validation.valid:
            return AccessibilityResult(success=False, error=validation.error)

        try:
            response = await self.fetch_page(validation.normalized_url)
            return analyze_html(response.text)
        except Exception as e:
            return self.failure(AccessibilityResult, e)
