"""
Provider clients for external data sources
"""

from .base import BaseProviderClient, ProviderResult
from .screenshot import ScreenshotClient, ScreenshotResult
from .pagespeed import PageSpeedClient, PageSpeedResult, interpret_score
from .seo import SeoClient, SeoResult
from .crawlability import CrawlabilityClient, CrawlabilityResult
from .responsive import ResponsiveClient, ResponsiveResult
from .tech_stack import TechStackClient, TechStackResult
from .security_headers import SecurityHeadersClient, SecurityHeadersResult
from .accessibility import AccessibilityClient, AccessibilityResult
from .whois import WhoisClient, WhoisResult
from .server_location import ServerLocationClient, ServerLocationResult
from .url_verification import UrlVerificationClient, UrlVerificationResult
from .social_urls import SocialUrlValidator, SocialValidationResult, KNOWN_NETWORKS
from .builtwith import BuiltWithClient, BuiltWithResult
from .serpapi import SerpApiClient, SerpSearchResult, LocalBusinessResult
from .hunter import HunterClient, EmailVerificationResult
from .google_places import GooglePlacesClient, PlaceResult, map_types_to_industry
from .safe_browsing import SafeBrowsingClient, SafeBrowsingResult

__all__ = [
    "BaseProviderClient",
    "ProviderResult",
    "ScreenshotClient",
    "ScreenshotResult",
    "PageSpeedClient",
    "PageSpeedResult",
    "interpret_score",
    "SeoClient",
    "SeoResult",
    "CrawlabilityClient",
    "CrawlabilityResult",
    "ResponsiveClient",
    "ResponsiveResult",
    "TechStackClient",
    "TechStackResult",
    "SecurityHeadersClient",
    "SecurityHeadersResult",
    "AccessibilityClient",
    "AccessibilityResult",
    "WhoisClient",
    "WhoisResult",
    "ServerLocationClient",
    "ServerLocationResult",
    "UrlVerificationClient",
    "UrlVerificationResult",
    "SocialUrlValidator",
    "SocialValidationResult",
    "KNOWN_NETWORKS",
    "BuiltWithClient",
    "BuiltWithResult",
    "SerpApiClient",
    "SerpSearchResult",
    "LocalBusinessResult",
    "HunterClient",
    "EmailVerificationResult",
    "GooglePlacesClient",
    "PlaceResult",
    "map_types_to_industry",
    "SafeBrowsingClient",
    "SafeBrowsingResult",
]
