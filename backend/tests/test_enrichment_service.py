import json
from uuid import uuid4

import httpx
import pytest

from app.models import Customer, EnrichmentRecord
from app.models.database import (
    EnrichmentRecordStatus,
    EnrichmentStatus,
    FieldReviewStatus,
    utcnow,
)
from app.services.api_key_service import ApiKeyService
from app.services.enrichment_service import EnrichmentService, customer_updates
from app.utils.exceptions import ConflictError, NotFoundError, ValidationError

AI_REPLY = {
    "website": {"value": "https://example.com", "score": 0.95, "source": "Official site"},
    "industry": {"value": "Panadería", "score": 0.9, "source": "Site content"},
    "emails": {"value": [{"email": "hola@example.com", "type": "general"}], "score": 0.8},
    "phones": {"value": [{"number": "+54 341 555 0000", "type": "main"}], "score": 0.3},
    "socialProfiles": {
        "value": {
            "instagram": "https://instagram.com/sanmartin",
            "facebook": "https://facebook.com/sanmartin",
        },
        "score": 0.7,
    },
    "companySize": None,
}

PAGE = "<html lang='es'><head><title>Panadería San Martín | Rosario</title></head><body><h1>Pan</h1></body></html>"


def world(request):
    host = request.url.host
    if host == "api.openai.com":
        return httpx.Response(200, json={
            "choices": [{"message": {"content": json.dumps(AI_REPLY)}, "finish_reason": "stop"}],
            "usage": {"prompt_tokens": 100, "completion_tokens": 50, "total_tokens": 150},
        })
    if host == "example.com":
        return httpx.Response(200, text=PAGE if request.method == "GET" else "")
    if host == "instagram.com":
        return httpx.Response(200)
    return httpx.Response(404)


@pytest.fixture
async def openai_key(db):
    await ApiKeyService(db).create("openai", "sk-test-openai-key")
    await db.commit()


@pytest.fixture
def service(db):
    return EnrichmentService(db)


async def pending_record(db, customer, **overrides):
    record = EnrichmentRecord(
        customer_id=customer.id,
        website="https://sanmartin.com.ar",
        website_score=0.9,
        industry="Panadería",
        industry_score=0.8,
        emails=[{"email": "ventas@sanmartin.com.ar", "type": "sales"}],
        emails_score=0.7,
        social_profiles={"instagram": "https://instagram.com/sanmartin"},
        social_profiles_score=0.7,
        sources={"website": "Official site"},
        ai_providers_used=["openai"],
        enriched_at=utcnow(),
        status=EnrichmentRecordStatus.PENDING,
        field_statuses={
            name: FieldReviewStatus.PENDING.value
            for name in ("website", "industry", "emails", "socialProfiles")
        },
    )
    for key, value in overrides.items():
        setattr(record, key, value)
    db.add(record)
    await db.commit()
    return record


# =========================================================================
# RUN ENRICHMENT
# =========================================================================

async def test_ai_website_and_social_facets(service, customer, openai_key, mock_http):
    mock_http(world)

    result = await service.run_enrichment(customer.id, ["ai", "seo", "social"])

    assert result["all_succeeded"]
    assert result["succeeded"] == ["ai", "seo", "social"]
    assert result["cooldown_warning"] is False
    assert result["results"]["seo"]["data"]["title"] == "Panadería San Martín | Rosario"
    assert result["results"]["social"]["data"]["accessible_count"] == 1

    latest = await service.get_latest(customer.id)
    record = latest["latest_enrichment"]
    assert record["id"] == result["enrichment_id"]
    assert record["industry"] == "Panadería"
    assert record["phones"] is None
    # unreachable profiles are dropped before review
    assert record["social_profiles"] == {"instagram": "https://instagram.com/sanmartin"}
    assert set(record["field_statuses"]) == {"website", "industry", "emails", "socialProfiles"}
    assert record["ai_providers_used"] == ["openai"]
    assert latest["enrichment_status"] == "PENDING"
    assert latest["last_enriched_at"] is not None
    assert latest["website_analysis"]["seo_title"] == "Panadería San Martín | Rosario"


async def test_reachable_ai_website_is_verified_before_storing(service, customer, openai_key, mock_http):
    seen = mock_http(world)

    result = await service.run_enrichment(customer.id, ["ai"])

    verification = result["results"]["ai"]["data"]["website_verification"]
    assert verification["is_accessible"] is True
    assert any(r.method == "HEAD" and r.url.host == "example.com" for r in seen)
    website = result["results"]["ai"]["data"]["fields"]["website"]
    assert website["value"] == "https://example.com/"
    assert website["score"] == pytest.approx((0.95 + 0.5) / 2 * 1.1)

    record = (await service.get_latest(customer.id))["latest_enrichment"]
    assert record["website"] == "https://example.com/"
    assert record["website_score"] == pytest.approx(0.7975)


async def test_redirected_ai_website_is_stored_at_its_final_url(service, customer, openai_key, mock_http):
    def redirecting(request):
        if request.url.host == "example.com":
            return httpx.Response(301, headers={"Location": "https://www.example.com/inicio"})
        if request.url.host == "www.example.com":
            return httpx.Response(200)
        return world(request)

    mock_http(redirecting)

    await service.run_enrichment(customer.id, ["ai"])

    record = (await service.get_latest(customer.id))["latest_enrichment"]
    assert record["website"] == "https://www.example.com/inicio"


@pytest.mark.parametrize("failure", ["refused", "missing"])
async def test_unreachable_ai_website_keeps_value_and_score(service, customer, openai_key, mock_http, failure):
    def unreachable(request):
        if request.url.host == "example.com":
            if failure == "refused":
                raise httpx.ConnectError("Connection refused", request=request)
            return httpx.Response(404)
        return world(request)

    mock_http(unreachable)

    result = await service.run_enrichment(customer.id, ["ai"])

    assert result["results"]["ai"]["data"]["website_verification"]["is_accessible"] is False
    record = (await service.get_latest(customer.id))["latest_enrichment"]
    assert record["website"] == "https://example.com"
    assert record["website_score"] == 0.95


async def test_external_facet_cross_checks_the_ai_answer(service, db, customer, openai_key, mock_http):
    keys = ApiKeyService(db)
    await keys.create("serpapi", "serp-secret")
    await keys.create("google_safe_browsing", "sb-secret")
    await db.commit()

    def external_world(request):
        if request.url.host == "serpapi.com":
            if request.url.params["engine"] == "google_maps":
                return httpx.Response(200, json={"local_results": [{
                    "address": "San Martín 1234, Rosario",
                    "phone": "+54 341 444-1234",
                }]})
            return httpx.Response(200, json={"organic_results": [{
                "link": "https://www.instagram.com/sanmartin",
                "title": "Panadería San Martín (@sanmartin)",
            }]})
        if request.url.host == "safebrowsing.googleapis.com":
            return httpx.Response(200, json={})
        return world(request)

    mock_http(external_world)

    result = await service.run_enrichment(customer.id, ["ai", "external"])

    assert result["succeeded"] == ["ai", "external"]
    assert result["results"]["external"]["data"]["external_data_used"] == [
        "serpapi_maps_address",
        "serpapi_maps_phone",
        "google_safe_browsing_safe",
        "social_media_profiles",
    ]
    record = (await service.get_latest(customer.id))["latest_enrichment"]
    assert record["address"] == "San Martín 1234, Rosario"
    assert record["address_score"] == 0.9
    assert record["phones"][0] == {"number": "+54 341 444-1234", "type": "business"}
    assert record["social_profiles"] == {"instagram": "https://www.instagram.com/sanmartin"}
    assert record["website_score"] == pytest.approx(0.7975 * 1.05)
    assert (await service.quota.get_quota_info("serpapi"))["used"] == 2


async def test_external_facet_reports_a_failed_ai_facet(service, customer, mock_http):
    mock_http(world)

    result = await service.run_enrichment(customer.id, ["ai", "external"])

    assert result["failed"] == ["ai", "external"]
    assert result["results"]["external"]["success"] is False


async def test_second_run_warns_about_cooldown(service, customer, openai_key, mock_http):
    mock_http(world)
    await service.run_enrichment(customer.id, ["ai_quick"])

    result = await service.run_enrichment(customer.id, ["ai_quick"], provider="openai")

    assert result["cooldown_warning"] is True
    assert result["hours_ago"] == 0.0
    latest = await service.get_latest(customer.id)
    assert len(latest["history"]) == 2


async def test_failing_facet_does_not_fail_the_run(service, customer, mock_http):
    mock_http(world)

    # no API keys configured at all
    result = await service.run_enrichment(customer.id, ["ai", "seo"])

    assert result["all_succeeded"] is False
    assert result["succeeded"] == ["seo"]
    assert result["failed"] == ["ai"]
    assert result["results"]["ai"] == {
        "success": False,
        "error": "No AI providers configured. Add API keys first.",
    }
    assert result["enrichment_id"] is None
    assert customer.last_enriched_at is not None
    assert customer.enrichment_status == EnrichmentStatus.NONE


async def test_social_alone_uses_customer_profiles(service, db, mock_http):
    customer = Customer(name="Librería Moreno", instagram="https://instagram.com/moreno",
                        facebook="https://facebook.com/moreno")
    db.add(customer)
    await db.commit()
    mock_http(world)

    result = await service.run_enrichment(customer.id, ["social"])

    data = result["results"]["social"]["data"]
    assert data["total_count"] == 2
    assert data["validated_profiles"] == {"instagram": "https://instagram.com/moreno"}
    assert result["enrichment_id"] is None


async def test_duplicate_services_run_once(service, customer, mock_http):
    mock_http(world)
    result = await service.run_enrichment(customer.id, ["seo", "seo"])
    assert result["services"] == ["seo"]


@pytest.mark.parametrize("services", [[], ["bogus"], ["ai", "ai_quick"], ["external"], ["seo", "external"]])
async def test_bad_service_lists(service, customer, services):
    with pytest.raises(ValidationError):
        await service.run_enrichment(customer.id, services)


async def test_unknown_fields_are_rejected(service, customer):
    with pytest.raises(ValidationError):
        await service.run_enrichment(customer.id, ["ai"], fields=["website", "favouriteColour"])


async def test_missing_customer(service):
    with pytest.raises(NotFoundError):
        await service.run_enrichment(uuid4(), ["seo"])


@pytest.mark.parametrize("website", [None, "http://192.168.0.10/admin"])
async def test_website_probes_need_a_safe_website(service, db, website, mock_http):
    seen = mock_http(world)
    customer = Customer(name="Sin Web", website=website)
    db.add(customer)
    await db.commit()

    with pytest.raises(ValidationError):
        await service.run_enrichment(customer.id, ["seo"])
    assert seen == []


async def test_quick_enrichment_with_unavailable_provider(service, customer, openai_key, mock_http):
    seen = mock_http(world)
    with pytest.raises(ValidationError):
        await service.run_enrichment(customer.id, ["ai_quick"], provider="deepseek")
    assert seen == []


# =========================================================================
# REVIEW
# =========================================================================

async def test_review_confirm_reject_edit(service, customer, db):
    record = await pending_record(db, customer)

    partial = await service.review(customer.id, "confirm", ["website", "emails"])
    assert partial["fields"] == ["website", "emails"]
    assert partial["all_reviewed"] is False
    assert partial["status"] == "PENDING"
    assert customer.website == "https://sanmartin.com.ar"
    assert customer.email == "ventas@sanmartin.com.ar"
    assert customer.enrichment_status == EnrichmentStatus.PARTIAL

    await service.review(customer.id, "reject", ["industry"])
    assert customer.industry is None

    done = await service.review(
        customer.id,
        "edit",
        ["socialProfiles"],
        edited_values={"socialProfiles": {"x": "https://x.com/sanmartin"}},
        enrichment_id=str(record.id),
        reviewed_by="user-42",
    )
    assert done["all_reviewed"] is True
    assert done["status"] == "CONFIRMED"
    assert done["field_statuses"] == {
        "website": "CONFIRMED",
        "industry": "REJECTED",
        "emails": "CONFIRMED",
        "socialProfiles": "CONFIRMED",
    }
    assert customer.twitter == "https://x.com/sanmartin"
    assert customer.enrichment_status == EnrichmentStatus.COMPLETE

    latest = await service.get_latest(customer.id)
    assert latest["latest_enrichment"]["reviewed_by"] == "user-42"
    assert latest["latest_enrichment"]["social_profiles"] == {"x": "https://x.com/sanmartin"}
    assert latest["history"][0]["fields_confirmed"] == 3
    assert latest["history"][0]["fields_rejected"] == 1


async def test_reviewed_record_cannot_be_reviewed_again(service, customer, db):
    record = await pending_record(db, customer, field_statuses={"website": "PENDING"})
    await service.review(customer.id, "confirm", ["website"])

    with pytest.raises(ConflictError):
        await service.review(customer.id, "confirm", ["website"], enrichment_id=str(record.id))
    with pytest.raises(NotFoundError):
        await service.review(customer.id, "confirm", ["website"])


async def test_review_of_already_settled_field(service, customer, db):
    await pending_record(db, customer)
    await service.review(customer.id, "reject", ["industry"])
    with pytest.raises(ConflictError):
        await service.review(customer.id, "confirm", ["industry"])


async def test_edit_without_value_confirms_stored_value(service, customer, db):
    await pending_record(db, customer)
    await service.review(customer.id, "edit", ["website", "industry"], edited_values={"industry": "Confitería"})
    assert customer.website == "https://sanmartin.com.ar"
    assert customer.industry == "Confitería"


@pytest.mark.parametrize("action,fields,edited", [
    ("approve", ["website"], None),
    ("confirm", [], None),
    ("confirm", ["favouriteColour"], None),
    ("edit", ["website"], None),
])
async def test_review_input_validation(service, customer, db, action, fields, edited):
    await pending_record(db, customer)
    with pytest.raises(ValidationError):
        await service.review(customer.id, action, fields, edited_values=edited)


async def test_review_of_foreign_enrichment(service, customer, db):
    other = Customer(name="Otro Cliente")
    db.add(other)
    await db.commit()
    record = await pending_record(db, other)

    with pytest.raises(NotFoundError):
        await service.review(customer.id, "confirm", ["website"], enrichment_id=str(record.id))
    with pytest.raises(NotFoundError):
        await service.review(customer.id, "confirm", ["website"], enrichment_id="not-a-uuid")


@pytest.mark.parametrize("field_name,value,expected", [
    ("description", "Panadería artesanal", {"description": "Panadería artesanal", "notes": "Panadería artesanal"}),
    ("companySize", "small", {"company_size": "small"}),
    ("emails", ["hola@example.com"], {"email": "hola@example.com"}),
    ("emails", [{"value": "a@example.com", "email": "b@example.com"}], {"email": "a@example.com"}),
    ("phones", [{"number": "+54 341 555"}], {"phone": "+54 341 555"}),
    ("phones", [], {}),
    ("socialProfiles", {"X": "https://x.com/a", "myspace": "m", "linkedin": ""}, {"twitter": "https://x.com/a"}),
])
def test_customer_updates(field_name, value, expected):
    assert customer_updates(field_name, value) == expected


# =========================================================================
# READS & BULK
# =========================================================================

async def test_get_latest_without_enrichment(service, customer):
    latest = await service.get_latest(customer.id)
    assert latest["enrichment_status"] == "NONE"
    assert latest["latest_enrichment"] is None
    assert latest["website_analysis"] is None
    assert latest["history"] == []


async def test_history_limit(service, customer, db):
    for _ in range(3):
        await pending_record(db, customer)
    latest = await service.get_latest(customer.id, history_limit=2)
    assert len(latest["history"]) == 2


async def test_quota_status(service):
    status = await service.get_quota_status()
    assert set(status) == {"screenshots", "pagespeed", "serpapi", "builtwith"}
    assert status["screenshots"] == {"used": 0, "limit": 33, "percentage": 0.0, "reset_in": status["screenshots"]["reset_in"]}


async def test_bulk_enrich_isolates_failures(service, customer, mock_http):
    mock_http(world)
    missing = uuid4()

    summary = await service.bulk_enrich([customer.id, missing], ["seo"])

    assert summary["total"] == 2
    assert summary["succeeded"] == 1
    assert summary["failed"] == 1
    assert summary["results"][1] == {
        "customer_id": str(missing),
        "success": False,
        "error": "Customer not found",
    }
