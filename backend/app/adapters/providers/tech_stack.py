"""
Tech Stack Client
Fingerprints CMS, e-commerce, frameworks, analytics, CDN and servers
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from .base import BaseProviderClient, ProviderResult
from .seo import meta_content, meta_tags

logger = logging.getLogger(__name__)

_I = re.IGNORECASE

# name, category, {html, scripts, meta: [(name, regex)], headers: [(name, regex)]}
TECH_SIGNATURES: List[Dict[str, Any]] = [
    # CMS
    {"name": "WordPress", "category": "CMS", "html": [r"wp-content", r"wp-includes"],
     "meta": [("generator", r"WordPress")]},
    {"name": "Drupal", "category": "CMS", "html": [r"sites/default/files", r"drupal\.js"],
     "meta": [("generator", r"Drupal")]},
    {"name": "Joomla", "category": "CMS", "html": [r"/media/jui/"], "meta": [("generator", r"Joomla")]},
    {"name": "Wix", "category": "CMS", "html": [r"wix\.com", r"wixstatic\.com"]},
    {"name": "Squarespace", "category": "CMS", "html": [r"squarespace\.com", r"static\.squarespace\.com"]},
    # E-commerce
    {"name": "Shopify", "category": "E-commerce", "html": [r"cdn\.shopify\.com", r"shopify\.com/s/"]},
    {"name": "WooCommerce", "category": "E-commerce", "html": [r"woocommerce", r"\bwc-"]},
    {"name": "Magento", "category": "E-commerce", "html": [r"magento", r"mage/"]},
    {"name": "PrestaShop", "category": "E-commerce", "html": [r"prestashop"],
     "meta": [("generator", r"PrestaShop")]},
    # Frameworks
    {"name": "React", "category": "JavaScript Framework", "html": [r"data-reactroot", r"__NEXT_DATA__"],
     "scripts": [r"react\.production\.min\.js", r"react-dom"]},
    {"name": "Vue.js", "category": "JavaScript Framework", "html": [r"data-v-[a-f0-9]", r"v-cloak"],
     "scripts": [r"vue(?:\.min)?\.js", r"vue@"]},
    {"name": "Angular", "category": "JavaScript Framework", "html": [r"ng-version", r"\*ngIf", r"\*ngFor"],
     "scripts": [r"angular"]},
    {"name": "Next.js", "category": "JavaScript Framework", "html": [r"__NEXT_DATA__", r"_next/static"]},
    {"name": "Nuxt.js", "category": "JavaScript Framework", "html": [r"__NUXT__", r"_nuxt/"]},
    {"name": "Svelte", "category": "JavaScript Framework", "html": [r"svelte-"]},
    # Libraries
    {"name": "jQuery", "category": "JavaScript Library", "scripts": [r"jquery[.-]?(\d+)?\.?(min\.)?js"]},
    {"name": "Bootstrap", "category": "CSS Framework", "html": [r"bootstrap"], "scripts": [r"bootstrap"]},
    {"name": "Tailwind CSS", "category": "CSS Framework", "html": [r"tailwind", r"\bmd:[a-z]", r"\blg:[a-z]"]},
    # Analytics
    {"name": "Google Analytics", "category": "Analytics",
     "html": [r"google-analytics\.com", r"googletagmanager\.com", r"gtag\(", r"ga\('send"]},
    {"name": "Google Tag Manager", "category": "Tag Manager", "html": [r"googletagmanager\.com/gtm\.js", r"GTM-"]},
    {"name": "Facebook Pixel", "category": "Analytics", "html": [r"connect\.facebook\.net", r"fbq\("]},
    {"name": "Hotjar", "category": "Analytics", "html": [r"hotjar\.com", r"\bhj\("]},
    # CDN
    {"name": "Cloudflare", "category": "CDN", "headers": [("server", r"cloudflare"), ("cf-ray", r".+")]},
    {"name": "Fastly", "category": "CDN", "headers": [("x-served-by", r"cache-"), ("via", r"varnish")]},
    {"name": "Akamai", "category": "CDN", "headers": [("x-akamai-transformed", r".+")]},
    # Web servers
    {"name": "nginx", "category": "Web Server", "headers": [("server", r"nginx")]},
    {"name": "Apache", "category": "Web Server", "headers": [("server", r"apache")]},
    {"name": "IIS", "category": "Web Server", "headers": [("server", r"microsoft-iis")]},
    # Languages
    {"name": "PHP", "category": "Programming Language",
     "headers": [("x-powered-by", r"php"), ("set-cookie", r"PHPSESSID")]},
    {"name": "ASP.NET", "category": "Programming Language",
     "headers": [("x-powered-by", r"asp\.net"), ("x-aspnet-version", r".+")]},
]

_SCRIPT_SRC = re.compile(r"""<script[^>]*\bsrc\s*=\s*["']([^"']+)["']""", _I)


@dataclass
class TechStackResult(ProviderResult):
    technologies: List[Dict[str, Any]] = field(default_factory=list)
    categories: Dict[str, List[str]] = field(default_factory=dict)


def detect_technologies(html: str, headers: Mapping[str, str]) -> TechStackResult:
    """Match every signature; confidence is matched / total patterns"""
    metas = meta_tags(html)
    scripts = "\n".join(_SCRIPT_SRC.findall(html))
    lowered_headers = {name.lower(): value for name, value in headers.items()}

    technologies = []
    for signature in TECH_SIGNATURES:
        total = 0
        matched = 0

        for pattern in signature.get("html", []):
            total += 1
            matched += bool(re.search(pattern, html, _I))
        for pattern in signature.get("scripts", []):
            total += 1
            matched += bool(re.search(pattern, scripts, _I))
        for meta_name, pattern in signature.get("meta", []):
            total += 1
            content = meta_content(metas, "name", meta_name)
            matched += bool(content and re.search(pattern, content, _I))
        for header_name, pattern in signature.get("headers", []):
            total += 1
            value = lowered_headers.get(header_name)
            matched += bool(value and re.search(pattern, value, _I))

        if matched:
            technologies.append({
                "name": signature["name"],
                "category": signature["category"],
                "confidence": min(100, round(matched / total * 100)),
            })

    technologies.sort(key=lambda tech: tech["confidence"], reverse=True)

    categories: Dict[str, List[str]] = {}
    for tech in technologies:
        categories.setdefault(tech["category"], []).append(tech["name"])

    return TechStackResult(success=True, technologies=technologies, categories=categories)


class TechStackClient(BaseProviderClient):
    name = "techstack"
    timeout = 15.0

    async def detect(self, url: str) -> TechStackResult:
        validation = self.validate(url)
        if not validation.valid:
            return TechStackResult(success=False, error=validation.error)

        try:
            response = await self.fetch_page(validation.normalized_url)
            return detect_technologies(response.text, response.headers)
        except Exception as e:
            return self.failure(TechStackResult, e)
