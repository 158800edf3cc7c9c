import json
from datetime import datetime, timezone

import httpx
import pytest

from app.adapters.providers import (
    PageSpeedClient,
    ScreenshotClient,
    SecurityHeadersClient,
    ServerLocationClient,
    SocialUrlValidator,
    UrlVerificationClient,
    WhoisClient,
    interpret_score,
)
from app.adapters.providers import accessibility, responsive, seo
from app.adapters.providers.crawlability import CrawlabilityClient, parse_robots_txt, parse_sitemap
from app.adapters.providers.security_headers import evaluate_headers
from app.adapters.providers.tech_stack import detect_technologies
from app.adapters.providers.whois import parse_date, parse_whois_record
from app.services.api_key_service import ApiKeyService
from app.services.quota_manager import QuotaManager
from app.utils.circuit_breaker import get_breaker
from app.utils.exceptions import ParseError

GOOD_PAGE = """<!DOCTYPE html>
<html lang="es">
<head>
  <meta charset="utf-8">
  <title>Panadería San Martín | Rosario</title>
  <meta content="Panadería artesanal en Rosario con pan de masa madre, facturas y tortas por encargo."
        name="description">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <link rel="canonical" href="https://example.com/">
  <meta property="og:title" content="Panadería San Martín">
  <meta property="og:type" content="website">
  <meta name="twitter:card" content="summary">
  <script type="application/ld+json">{"@context": "https://schema.org", "@type": "Bakery"}</script>
</head>
<body>
  <a href="#main">Saltar al contenido</a>
  <h1>Panadería San Martín</h1>
  <img src="pan.jpg" alt="Pan de masa madre">
  <label for="email">Email</label><input type="email" id="email">
  <a href="/contacto">Contacto</a>
</body>
</html>"""


# =========================================================================
# PARSERS
# =========================================================================

def test_seo_complete_page_scores_full_marks():
    result = seo.parse_html(GOOD_PAGE)

    assert result.success
    assert result.title == "Panadería San Martín | Rosario"
    assert result.description.startswith("Panadería artesanal")
    assert result.h1_count == 1
    assert result.canonical_url == "https://example.com/"
    assert result.open_graph_data == {"title": "Panadería San Martín", "type": "website"}
    assert result.twitter_card_data == {"card": "summary"}
    assert result.json_ld_types == ["Bakery"]
    assert result.charset == "utf-8"
    assert result.language == "es"
    assert result.issues == []
    assert result.score == 100


def test_seo_bare_page_lists_issues():
    result = seo.parse_html('<html><head><meta name="robots" content="noindex, nofollow"></head></html>')

    assert result.indexable is False
    assert "Missing <title>" in result.issues
    assert "Page is marked noindex" in result.issues
    assert result.score == 5


def test_responsive_signals_and_confidence():
    html = """<html><head><meta name="viewport" content="width=device-width">
    <style>
      .grid { display: grid; padding: 1.5rem; }
      @media (max-width: 480px) { .a { width: 100%; } }
      @media (max-width: 768px) { .b { width: 50%; } }
      @media (min-width: 1024px) { .c { width: 33%; } }
    </style></head>
    <body><img src="a.jpg" srcset="a-2x.jpg 2x"></body></html>"""
    result = responsive.analyze_html(html)

    assert result.is_responsive
    assert result.confidence == "high"
    assert all(result.signals.values())
    assert result.breakpoints == [480, 768, 1024]
    assert result.media_queries_count == 3


@pytest.mark.parametrize("html,is_responsive,confidence", [
    ("<html><body><table width=900></table></body></html>", False, None),
    ('<html><head><meta name="viewport" content="initial-scale=1"></head></html>', True, "low"),
])
def test_responsive_weak_pages(html, is_responsive, confidence):
    result = responsive.analyze_html(html)
    assert result.is_responsive is is_responsive
    assert result.confidence == confidence


def test_tech_stack_fingerprints():
    html = """<html><head><meta name="generator" content="WordPress 6.4">
    <link rel="stylesheet" href="/wp-content/themes/x/style.css">
    <script src="/wp-includes/js/jquery/jquery.min.js"></script></head></html>"""
    result = detect_technologies(html, {"Server": "cloudflare", "CF-Ray": "8a1b2c", "X-Powered-By": "PHP/8.2"})

    by_name = {tech["name"]: tech for tech in result.technologies}
    assert by_name["WordPress"]["confidence"] == 100
    assert by_name["Cloudflare"]["confidence"] == 100
    assert by_name["PHP"]["confidence"] == 50
    assert "jQuery" in by_name
    assert "nginx" not in by_name
    assert result.categories["CMS"] == ["WordPress"]
    confidences = [tech["confidence"] for tech in result.technologies]
    assert confidences == sorted(confidences, reverse=True)


def test_security_headers_full_score():
    result = evaluate_headers({
        "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
        "X-Frame-Options": "DENY",
        "Content-Security-Policy": "default-src 'self'; img-src *",
        "X-Content-Type-Options": "nosniff",
        "Referrer-Policy": "no-referrer",
        "Permissions-Policy": "camera=()",
    }, has_https=True)

    assert result.score == 100
    assert result.issues == []
    assert result.hsts_max_age == 31536000
    assert result.hsts_include_subdomains and result.hsts_preload
    assert result.csp_directives == ["default-src", "img-src"]


def test_security_headers_missing_everything():
    result = evaluate_headers({}, has_https=False)
    assert result.score == 0
    assert "Site does not use HTTPS" in result.issues
    assert "HSTS header missing" in result.issues


def test_accessibility_clean_page():
    result = accessibility.analyze_html(GOOD_PAGE)
    assert result.issues == []
    assert result.score == 100
    assert result.checks["images_with_alt"] == {"total": 1, "with_alt": 1}
    assert result.checks["heading_hierarchy"] is True


def test_accessibility_penalties_by_severity():
    html = '<html><body><img src="a.png"><a href="/x"><img src="b.png"></a><input type="text"></body></html>'
    result = accessibility.analyze_html(html)

    assert result.summary == {"critical": 2, "serious": 3, "moderate": 1, "minor": 1}
    assert result.score == 100 - (2 * 20 + 3 * 10 + 5 + 2)
    rules = {issue["rule"] for issue in result.issues}
    assert {"image-alt", "link-name", "label", "html-has-lang", "page-has-heading-one"} <= rules


def test_robots_txt_groups():
    parsed = parse_robots_txt("""
User-agent: *
Disallow: /admin
Disallow: /tmp  # scratch
Crawl-delay: 10

User-agent: Googlebot
Disallow: /

User-agent: SomeCrawler
Disallow: /private

Sitemap: https://example.com/sitemap.xml
""")
    assert parsed["robots_disallowed_paths"] == ["/admin", "/tmp", "/"]
    assert parsed["robots_allows_index"] is False
    assert parsed["robots_crawl_delay"] == 10
    assert parsed["sitemaps_from_robots"] == ["https://example.com/sitemap.xml"]


def test_crawl_delay_only_from_groups_that_apply_to_us():
    parsed = parse_robots_txt("""
User-agent: SomeCrawler
Crawl-delay: 60

User-agent: *
Disallow: /tmp
""")
    assert parsed["robots_crawl_delay"] is None

    parsed = parse_robots_txt("User-agent: bingbot\nCrawl-delay: 5\n")
    assert parsed["robots_crawl_delay"] == 5


def test_sitemap_counts():
    flat = parse_sitemap("""<urlset>
      <url><loc>https://example.com/</loc><lastmod>2026-01-01</lastmod></url>
      <url><loc>https://example.com/a</loc><lastmod>2026-02-15</lastmod></url>
      <url><loc>https://example.com/b</loc></url>
    </urlset>""")
    assert flat["sitemap_is_index"] is False
    assert flat["sitemap_url_count"] == 3
    assert flat["sitemap_urls"][0] == "https://example.com/"
    assert flat["sitemap_last_modified"] == "2026-02-15"

    index = parse_sitemap("<sitemapindex><sitemap><loc>a</loc></sitemap><sitemap><loc>b</loc></sitemap></sitemapindex>")
    assert index["sitemap_is_index"] is True
    assert index["sitemap_url_count"] == 2


def test_whois_record_trust_assessment():
    now = datetime(2026, 3, 10, tzinfo=timezone.utc)
    result = parse_whois_record({
        "domainName": "example.com.ar",
        "registrarName": "NIC Argentina",
        "createdDate": "2010-05-01T00:00:00Z",
        "expiresDate": "2026-03-20T00:00:00+0000",
        "registrant": {"organization": "REDACTED FOR PRIVACY"},
        "nameServers": {"hostNames": ["ns1.example.com", "ns2.example.com"]},
        "status": "clientTransferProhibited serverDeleteProhibited",
    }, now=now)

    assert result.domain_age_years == 15
    assert result.days_until_expiry == 10
    assert result.name_servers == ["ns1.example.com", "ns2.example.com"]
    assert result.status == ["clientTransferProhibited", "serverDeleteProhibited"]
    assert result.trust_score == 70
    assert "Domain expires soon" in result.trust_warnings
    assert "Registrant information is hidden" in result.trust_warnings


def test_whois_dates():
    assert parse_date("2020-01-02") == datetime(2020, 1, 2, tzinfo=timezone.utc)
    assert parse_date("not a date") is None
    assert parse_date(None) is None


def test_pagespeed_normalization():
    data = {"lighthouseResult": {
        "categories": {"performance": {"score": 0.87}},
        "audits": {
            "largest-contentful-paint": {"numericValue": 2400.5},
            "cumulative-layout-shift": {"numericValue": 0.05},
            "render-blocking-resources": {
                "score": 0.4, "title": "Eliminate render-blocking resources",
                "details": {"type": "opportunity"}, "displayValue": "Potential savings of 450 ms",
            },
            "uses-text-compression": {"score": 0.95, "details": {"type": "opportunity"}},
        },
    }}
    result = PageSpeedClient.process(data, "https://example.com/", "desktop")

    assert result.score == 87
    assert result.metrics["lcp"] == 2400.5
    assert result.metrics["fcp"] == 0
    assert [o["id"] for o in result.opportunities] == ["render-blocking-resources"]
    with pytest.raises(ParseError):
        PageSpeedClient.process({}, "https://example.com/", "mobile")


@pytest.mark.parametrize("score,label", [(95, "good"), (70, "needs improvement"), (50, "poor"), (10, "very poor")])
def test_interpret_score(score, label):
    assert interpret_score(score) == label


# =========================================================================
# CLIENTS
# =========================================================================

async def test_invalid_url_never_reaches_the_network(mock_http):
    seen = mock_http(lambda request: httpx.Response(200))
    result = await ServerLocationClient().locate("http://169.254.169.254/latest")
    assert not result.success
    assert seen == []


async def test_server_location(mock_http):
    seen = mock_http(lambda request: httpx.Response(200, json={
        "status": "success", "country": "Argentina", "countryCode": "AR", "regionName": "Santa Fe",
        "city": "Rosario", "isp": "Telecom", "query": "200.1.2.3", "hosting": False,
    }))
    result = await ServerLocationClient().locate("https://www.example.com/contact")

    assert result.success
    assert result.location == "Rosario, Santa Fe, Argentina"
    assert result.server_ip == "200.1.2.3"
    assert seen[0].url.host == "ip-api.com"
    assert seen[0].url.path == "/json/www.example.com"


async def test_server_location_reported_failure(mock_http):
    mock_http(lambda request: httpx.Response(200, json={"status": "fail", "message": "invalid query"}))
    result = await ServerLocationClient().locate("https://example.com")
    assert not result.success
    assert result.error == "invalid query"


async def test_url_verification_falls_back_to_http(mock_http):
    def handler(request):
        if request.url.scheme == "https":
            raise httpx.ConnectError("certificate verify failed", request=request)
        return httpx.Response(200)

    mock_http(handler)
    result = await UrlVerificationClient().verify("example.com")

    assert result.success
    assert result.is_accessible
    assert result.url == "http://example.com/"
    assert result.has_ssl is False


async def test_url_verification_reports_http_errors_as_results(mock_http):
    mock_http(lambda request: httpx.Response(404))
    result = await UrlVerificationClient().verify("https://example.com")
    assert result.success
    assert result.is_accessible is False
    assert result.status_code == 404
    assert result.has_ssl is True


async def test_url_verification_unreachable(mock_http):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    mock_http(handler)
    result = await UrlVerificationClient().verify("https://example.com")
    assert not result.success
    assert result.error == "URL not accessible via HTTPS or HTTP"


async def test_security_headers_client_uses_head(mock_http):
    seen = mock_http(lambda request: httpx.Response(200, headers={"X-Frame-Options": "SAMEORIGIN"}))
    result = await SecurityHeadersClient().analyze("https://example.com")
    assert result.success
    assert result.has_https
    assert result.x_frame_options == "SAMEORIGIN"
    assert seen[0].method == "HEAD"


async def test_crawlability_follows_robots_sitemap(mock_http):
    def handler(request):
        if request.url.path == "/robots.txt":
            return httpx.Response(200, text="User-agent: *\nDisallow: /cart\nSitemap: https://example.com/map.xml\n")
        if request.url.path == "/map.xml":
            return httpx.Response(200, text="<urlset><url><loc>https://example.com/</loc></url></urlset>")
        return httpx.Response(404)

    mock_http(handler)
    result = await CrawlabilityClient().analyze("https://example.com/shop")

    assert result.success
    assert result.has_robots_txt
    assert result.robots_disallowed_paths == ["/cart"]
    assert result.has_sitemap
    assert result.sitemap_url == "https://example.com/map.xml"
    assert result.sitemap_url_count == 1


async def test_crawlability_retries_a_flaky_sitemap(mock_http):
    attempts = []

    def handler(request):
        if request.url.path == "/robots.txt":
            return httpx.Response(404)
        if request.url.path == "/sitemap.xml":
            if request.method == "HEAD":
                return httpx.Response(200, headers={"content-type": "application/xml"})
            attempts.append(request)
            if len(attempts) == 1:
                return httpx.Response(503)
            return httpx.Response(200, text="<urlset><url><loc>https://example.com/</loc></url></urlset>")
        return httpx.Response(404)

    mock_http(handler)
    result = await CrawlabilityClient().analyze("https://example.com")

    assert result.success
    assert result.has_robots_txt is False
    assert result.sitemap_url == "https://example.com/sitemap.xml"
    assert result.sitemap_url_count == 1
    assert len(attempts) == 2


async def test_sitemap_lookups_respect_an_open_circuit(mock_http):
    client = CrawlabilityClient()
    for _ in range(client.breaker.failure_threshold):
        client.breaker._on_failure()
    seen = mock_http(lambda request: httpx.Response(200, text="<urlset></urlset>"))

    result = await client.analyze("https://example.com")

    assert not result.success
    assert seen == []


async def test_social_validation_keeps_reachable_profiles(mock_http):
    def handler(request):
        if request.url.host == "instagram.com":
            return httpx.Response(200)
        if request.url.host == "facebook.com":
            # rejects HEAD, serves GET
            return httpx.Response(405 if request.method == "HEAD" else 200)
        return httpx.Response(404)

    mock_http(handler)
    result = await SocialUrlValidator().validate_profiles({
        "instagram": "https://instagram.com/panaderia",
        "facebook": "https://facebook.com/panaderia",
        "linkedin": "https://linkedin.com/company/nope",
        "myspace": "https://myspace.com/panaderia",
    })

    assert result.total_count == 3
    assert result.accessible_count == 2
    assert set(result.validated_profiles) == {"instagram", "facebook"}
    assert result.validation_results["linkedin"]["error"] == "HTTP 404"


async def test_social_validation_without_profiles(mock_http):
    seen = mock_http(lambda request: httpx.Response(200))
    result = await SocialUrlValidator().validate_profiles({})
    assert result.success
    assert result.total_count == 0
    assert seen == []


async def test_whois_without_key_makes_no_request(db, mock_http):
    seen = mock_http(lambda request: httpx.Response(200, json={}))
    result = await WhoisClient(api_keys=ApiKeyService(db)).lookup("https://example.com")
    assert not result.success
    assert result.error == "WhoisXML API key not configured"
    assert seen == []


async def test_whois_lookup(db, mock_http):
    await ApiKeyService(db).create("whoisxml", "wx-secret")
    await db.commit()
    seen = mock_http(lambda request: httpx.Response(200, json={"WhoisRecord": {
        "domainName": "example.com", "registrant": {"organization": "Panadería San Martín SRL"},
    }}))

    result = await WhoisClient(api_keys=ApiKeyService(db)).lookup("https://www.example.com")

    assert result.success
    assert result.domain_name == "example.com"
    assert seen[0].url.params["domainName"] == "example.com"
    assert seen[0].url.params["apiKey"] == "wx-secret"


# =========================================================================
# METERED CLIENTS
# =========================================================================

async def test_screenshot_saved_and_metered(db, mock_http, tmp_path):
    quota = QuotaManager(db)
    seen = mock_http(lambda request: httpx.Response(
        200, content=b"\x89PNG fake", headers={"content-type": "image/png"}
    ))

    result = await ScreenshotClient(quota=quota).take_screenshot("https://Example.com/menu", "mobile")

    assert result.success
    assert result.file_name.startswith("example.com_mobile_")
    assert result.url == f"/screenshots/{result.file_name}"
    assert (tmp_path / "screenshots" / result.file_name).read_bytes() == b"\x89PNG fake"
    assert seen[0].url.params["width"] == "375"
    info = await quota.get_quota_info("screenshots")
    assert info["used"] == 1
    assert info["success_count"] == 1


async def test_screenshot_rejects_non_image_and_still_consumes(db, mock_http):
    quota = QuotaManager(db)
    mock_http(lambda request: httpx.Response(200, text="<html>rate limited</html>",
                                             headers={"content-type": "text/html"}))

    result = await ScreenshotClient(quota=quota).take_screenshot("https://example.com")

    assert not result.success
    assert "Unexpected response type" in result.error
    info = await quota.get_quota_info("screenshots")
    assert info["used"] == 1
    assert info["error_count"] == 1


async def test_screenshot_quota_reached(db, mock_http):
    quota = QuotaManager(db)
    assert await quota.increment_usage("screenshots", 33)
    seen = mock_http(lambda request: httpx.Response(200, content=b"x", headers={"content-type": "image/png"}))

    result = await ScreenshotClient(quota=quota).take_screenshot("https://example.com")

    assert not result.success
    assert result.quota_reached
    assert result.error.startswith("Quota exceeded: 33/33")
    assert seen == []


async def test_open_circuit_costs_no_quota(db, mock_http):
    quota = QuotaManager(db)
    breaker = get_breaker("pagespeed")
    for _ in range(breaker.failure_threshold):
        breaker._on_failure()
    seen = mock_http(lambda request: httpx.Response(200, json={}))

    result = await PageSpeedClient(quota=quota).analyze("https://example.com")

    assert not result.success
    assert seen == []
    assert (await quota.get_quota_info("pagespeed"))["used"] == 0


async def test_pagespeed_server_error_is_retried_and_counted_once(db, mock_http):
    quota = QuotaManager(db)
    seen = mock_http(lambda request: httpx.Response(500))

    result = await PageSpeedClient(quota=quota, base_delay=0.001).analyze("https://example.com", "desktop")

    assert not result.success
    assert "500" in result.error
    assert len(seen) == 3
    assert json.loads(json.dumps(result.to_dict()))["strategy"] == "desktop"
    info = await quota.get_quota_info("pagespeed")
    assert info["used"] == 1
    assert info["error_count"] == 1


def test_metered_client_requires_quota():
    with pytest.raises(ValueError):
        ScreenshotClient()
