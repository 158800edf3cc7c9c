import json

import pytest

from app.services.ai_service import AICompletionResult
from app.services.consensus_service import ConsensusService
from app.services.enrichment_prompts import get_consensus_prompt, get_enrichment_prompt, get_system_prompt
from app.utils.exceptions import TransientProviderError, ValidationError

CUSTOMER = {"name": "Ferretería El Tornillo", "city": "Córdoba", "industry": "Retail"}


class FakeAI:
    """Stands in for AICompletionService with canned replies per provider"""

    def __init__(self, replies, failing=()):
        self.replies = replies
        self.failing = set(failing)
        self.calls = []

    async def get_available_providers(self):
        return list(self.replies)

    async def complete(self, provider, messages, options=None):
        self.calls.append((provider, messages))
        if provider in self.failing:
            raise TransientProviderError(f"{provider} is down")
        reply = self.replies[provider]
        if callable(reply):
            reply = reply(messages)
        return AICompletionResult(content=reply, provider=provider, model="test-model")

    async def complete_multiple(self, providers, messages, options=None):
        results, errors = [], []
        for provider in providers:
            try:
                results.append(await self.complete(provider, messages, options))
            except Exception as e:
                errors.append({"provider": provider, "error": str(e)})
        return results, errors


def reply(**fields):
    return json.dumps({name: {"value": value, "score": score, "source": f"src-{name}"}
                       for name, (value, score) in fields.items()})


async def test_agreement_earns_bonus_capped_at_one():
    ai = FakeAI({
        "openai": reply(industry=("Ferretería", 0.8), website=("https://tornillo.com.ar", 0.95)),
        "gemini": reply(industry=("Ferretería", 0.9), website=("https://tornillo.com.ar", 0.99)),
    })
    output = await ConsensusService(ai).enrich_client(CUSTOMER, ["industry", "website"])

    industry = output.fields["industry"]
    assert industry.value == "Ferretería"
    assert industry.consensus is True
    assert industry.score == pytest.approx(0.85 * 1.1)
    assert industry.providers == ["openai", "gemini"]
    assert output.fields["website"].score == 1.0
    assert output.providers_used == ["openai", "gemini"]


async def test_identical_structures_in_different_key_order_agree():
    ai = FakeAI({
        "openai": json.dumps({"socialProfiles": {"value": {"facebook": "f", "instagram": "i"}, "score": 0.7}}),
        "gemini": json.dumps({"socialProfiles": {"value": {"instagram": "i", "facebook": "f"}, "score": 0.7}}),
    })
    output = await ConsensusService(ai).enrich_client(CUSTOMER, ["socialProfiles"])
    assert output.fields["socialProfiles"].consensus is True
    assert len(ai.calls) == 2


async def test_disagreement_is_arbitrated_by_first_provider():
    def arbitrate(messages):
        if "Result 1" in messages[-1].content:
            return '{"bestValue": "Ferretería industrial", "confidence": 1.7, "reasoning": "more specific"}'
        return reply(industry=("Ferretería", 0.6))

    ai = FakeAI({
        "openai": arbitrate,
        "gemini": reply(industry=("Ferretería industrial", 0.7)),
    })
    output = await ConsensusService(ai).enrich_client(CUSTOMER, ["industry"])

    industry = output.fields["industry"]
    assert industry.value == "Ferretería industrial"
    assert industry.score == 1.0
    assert industry.source == "more specific"
    assert ai.calls[-1][0] == "openai"


async def test_failed_arbitration_keeps_best_with_penalty():
    def arbitrate(messages):
        if "Result 1" in messages[-1].content:
            return "I cannot decide"
        return reply(industry=("Retail", 0.6))

    ai = FakeAI({"openai": arbitrate, "gemini": reply(industry=("Hardware", 0.8))})
    output = await ConsensusService(ai).enrich_client(CUSTOMER, ["industry"])

    industry = output.fields["industry"]
    assert industry.value == "Hardware"
    assert industry.score == pytest.approx(0.72)
    assert industry.consensus is False
    assert industry.source == "Best result from gemini (no consensus)"


async def test_low_confidence_and_unparseable_replies_are_dropped():
    ai = FakeAI({
        "openai": reply(industry=("Retail", 0.3), address=("Av. Colón 123", 0.9)),
        "gemini": "sorry, no JSON today",
    })
    output = await ConsensusService(ai).enrich_client(CUSTOMER, ["industry", "address"])

    assert "industry" not in output.fields
    assert output.fields["address"].value == "Av. Colón 123"
    assert output.fields["address"].consensus is False
    assert output.errors == [{"provider": "gemini", "error": "Failed to parse response as JSON"}]
    assert output.providers_used == ["openai"]


async def test_provider_failures_are_reported_not_raised():
    ai = FakeAI({"openai": reply(phones=([{"number": "+54 351 555"}], 0.9)), "grok": "{}"}, failing=["grok"])
    output = await ConsensusService(ai).enrich_client(CUSTOMER, ["phones"])
    assert output.fields["phones"].value == [{"number": "+54 351 555"}]
    assert output.errors == [{"provider": "grok", "error": "grok is down"}]


async def test_verification_disabled_takes_highest_score(monkeypatch):
    service = ConsensusService(FakeAI({
        "openai": reply(industry=("Retail", 0.6)),
        "gemini": reply(industry=("Hardware", 0.9)),
    }))
    monkeypatch.setattr(service.settings, "ENRICHMENT_REQUIRE_VERIFICATION", False)
    output = await service.enrich_client(CUSTOMER, ["industry"])
    assert output.fields["industry"].value == "Hardware"
    assert output.fields["industry"].providers == ["gemini"]


async def test_no_providers_is_a_validation_error():
    with pytest.raises(ValidationError):
        await ConsensusService(FakeAI({})).enrich_client(CUSTOMER)


async def test_quick_enrich_falls_through_failing_providers():
    ai = FakeAI({
        "openai": "{}",
        "gemini": reply(website=("https://tornillo.com.ar", 0.9), companySize=("11-50", 0.9)),
    }, failing=["openai"])
    output = await ConsensusService(ai).quick_enrich(CUSTOMER)

    assert output.providers_used == ["gemini"]
    assert list(output.fields) == ["website"]


async def test_quick_enrich_reports_every_failure():
    ai = FakeAI({"openai": "{}", "gemini": "{}"}, failing=["openai", "gemini"])
    with pytest.raises(TransientProviderError) as exc_info:
        await ConsensusService(ai).quick_enrich(CUSTOMER)
    assert "All AI providers failed" in str(exc_info.value)
    assert "openai: openai is down" in str(exc_info.value)


async def test_quick_enrich_with_unavailable_provider():
    with pytest.raises(ValidationError):
        await ConsensusService(FakeAI({"openai": "{}"})).quick_enrich(CUSTOMER, provider="deepseek")


def test_prompts_render_customer_facts_and_settings():
    prompt = get_enrichment_prompt(CUSTOMER, ["website", "industry"])
    assert "Ferretería El Tornillo" in prompt
    assert "Córdoba" in prompt
    assert "- website:" in prompt
    assert "{customer_info}" not in prompt

    system = get_system_prompt("exact")
    assert "{mode_instructions}" not in system
    assert "Spanish" in system

    consensus = get_consensus_prompt("industry", [
        {"provider": "openai", "score": 0.7, "value": "Retail"},
        {"provider": "gemini", "score": 0.8, "value": "Hardware"},
    ])
    assert 'Result 1 (openai, confidence 0.7): "Retail"' in consensus
    assert "industry" in consensus
