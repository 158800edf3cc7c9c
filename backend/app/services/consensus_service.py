"""
Consensus Enrichment Service
Asks every configured AI provider about a customer and reconciles the answers
field by field
"""

import json
import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from app.adapters.llm import LLMMessage
from app.config import get_settings, ENRICHMENT_FIELDS, QUICK_ENRICHMENT_FIELDS
from app.services.ai_service import AICompletionOptions, AICompletionService, parse_json_response
from app.services.enrichment_prompts import (
    get_consensus_prompt,
    get_consensus_system_prompt,
    get_enrichment_prompt,
    get_system_prompt,
)
from app.utils.exceptions import TransientProviderError, ValidationError

logger = logging.getLogger(__name__)

CONSENSUS_BONUS = 1.1
NO_CONSENSUS_PENALTY = 0.9


@dataclass
class FieldResult:
    value: Any
    score: float
    source: str
    providers: List[str]
    consensus: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EnrichmentOutput:
    fields: Dict[str, FieldResult] = field(default_factory=dict)
    providers_used: List[str] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fields": {name: result.to_dict() for name, result in self.fields.items()},
            "providers_used": self.providers_used,
            "errors": self.errors,
        }


def _score(raw: Any) -> float:
    try:
        return float(raw)
    except (TypeError, ValueError):
        return 0.0


def _candidates(parsed: Any, field_name: str) -> Optional[Dict[str, Any]]:
    """The ``{value, score, source}`` entry for a field, or None when absent or null"""
    if not isinstance(parsed, dict):
        return None
    entry = parsed.get(field_name)
    if not isinstance(entry, dict) or entry.get("value") is None:
        return None
    return entry


def _same_value(values: List[Any]) -> bool:
    serialized = [json.dumps(value, sort_keys=True, ensure_ascii=False) for value in values]
    return all(item == serialized[0] for item in serialized)


class ConsensusService:
    """
    Multi-provider enrichment.

    Each provider answers the same prompt. Per field, low-confidence answers
    are dropped, agreement earns a bonus and disagreement is arbitrated by
    one more AI call.
    """

    def __init__(self, ai: AICompletionService):
        self.ai = ai
        self.settings = get_settings()

    def _messages(self, customer: Any, fields: List[str]) -> List[LLMMessage]:
        return [
            LLMMessage(role="system", content=get_system_prompt(self.settings.ENRICHMENT_MATCH_MODE)),
            LLMMessage(role="user", content=get_enrichment_prompt(customer, fields)),
        ]

    def _options(self) -> AICompletionOptions:
        return AICompletionOptions(
            temperature=self.settings.AI_DEFAULT_TEMPERATURE,
            top_p=self.settings.AI_DEFAULT_TOP_P,
            max_tokens=self.settings.AI_DEFAULT_MAX_TOKENS,
        )

    async def enrich_client(self, customer: Any, fields: Optional[List[str]] = None) -> EnrichmentOutput:
        fields = fields or list(ENRICHMENT_FIELDS)
        providers = await self.ai.get_available_providers()
        if not providers:
            raise ValidationError("No AI providers configured. Add API keys first.")

        logger.info(f"Consensus enrichment with {providers} for fields {fields}")
        options = self._options()
        results, errors = await self.ai.complete_multiple(providers, self._messages(customer, fields), options)

        parsed_by_provider: List[tuple] = []
        for result in results:
            parsed = parse_json_response(result.content)
            if isinstance(parsed, dict):
                parsed_by_provider.append((result.provider, parsed))
            else:
                logger.warning(f"Unparseable reply from {result.provider}: {result.content[:300]!r}")
                errors.append({"provider": result.provider, "error": "Failed to parse response as JSON"})

        output = EnrichmentOutput(
            providers_used=[provider for provider, _ in parsed_by_provider],
            errors=errors,
        )

        min_confidence = self.settings.ENRICHMENT_MIN_CONFIDENCE
        for field_name in fields:
            candidates = []
            for provider, parsed in parsed_by_provider:
                entry = _candidates(parsed, field_name)
                if entry is None:
                    continue
                candidates.append({
                    "provider": provider,
                    "value": entry["value"],
                    "score": _score(entry.get("score")),
                    "source": entry.get("source"),
                })

            valid = [c for c in candidates if c["score"] >= min_confidence]
            if not valid:
                continue

            if len(valid) == 1 or not self.settings.ENRICHMENT_REQUIRE_VERIFICATION:
                best = max(valid, key=lambda c: c["score"])
                output.fields[field_name] = FieldResult(
                    value=best["value"],
                    score=best["score"],
                    source=best["source"] or f"From {best['provider']}",
                    providers=[best["provider"]],
                )
            else:
                output.fields[field_name] = await self.build_consensus(field_name, valid, providers[0], options)

        logger.info(
            f"Consensus enrichment complete: fields={list(output.fields)} "
            f"providers={output.providers_used} errors={len(output.errors)}"
        )
        return output

    async def build_consensus(
        self,
        field_name: str,
        candidates: List[Dict[str, Any]],
        arbiter: str,
        options: AICompletionOptions,
    ) -> FieldResult:
        providers = [c["provider"] for c in candidates]

        if _same_value([c["value"] for c in candidates]):
            average = sum(c["score"] for c in candidates) / len(candidates)
            return FieldResult(
                value=candidates[0]["value"],
                score=min(average * CONSENSUS_BONUS, 1.0),
                source=f"Consensus from {len(candidates)} providers",
                providers=providers,
                consensus=True,
            )

        try:
            response = await self.ai.complete(
                arbiter,
                [
                    LLMMessage(role="system", content=get_consensus_system_prompt()),
                    LLMMessage(role="user", content=get_consensus_prompt(field_name, candidates)),
                ],
                options,
            )
            parsed = parse_json_response(response.content)
            if isinstance(parsed, dict) and "bestValue" in parsed:
                return FieldResult(
                    value=parsed["bestValue"],
                    score=min(max(_score(parsed.get("confidence")), 0.0), 1.0),
                    source=parsed.get("reasoning") or f"Arbitrated by {arbiter}",
                    providers=providers,
                    consensus=True,
                )
            logger.warning(f"Unusable arbitration reply for {field_name}")
        except Exception as e:
            logger.warning(f"Consensus arbitration for {field_name} failed: {e}")

        best = max(candidates, key=lambda c: c["score"])
        return FieldResult(
            value=best["value"],
            score=best["score"] * NO_CONSENSUS_PENALTY,
            source=f"Best result from {best['provider']} (no consensus)",
            providers=providers,
        )

    async def quick_enrich(self, customer: Any, provider: Optional[str] = None) -> EnrichmentOutput:
        """
        Single-provider enrichment over the reduced field set.

        With ``provider`` only that provider is used. Otherwise providers are
        tried in order until one answers.
        """
        available = await self.ai.get_available_providers()
        if not available:
            raise ValidationError("No AI providers available")

        fields = list(QUICK_ENRICHMENT_FIELDS)
        messages = self._messages(customer, fields)
        options = AICompletionOptions(
            temperature=self.settings.AI_DEFAULT_TEMPERATURE,
            top_p=self.settings.AI_DEFAULT_TOP_P,
        )

        if provider:
            if provider not in available:
                raise ValidationError(
                    f"Provider '{provider}' is not available. Available: {', '.join(available)}"
                )
            return await self._quick_with(provider, messages, options)

        failures = []
        for candidate in available:
            try:
                logger.info(f"Quick enrichment: trying {candidate}")
                return await self._quick_with(candidate, messages, options)
            except Exception as e:
                logger.warning(f"Quick enrichment with {candidate} failed, trying next: {e}")
                failures.append(f"{candidate}: {e}")

        raise TransientProviderError(f"All AI providers failed. {'; '.join(failures)}")

    async def _quick_with(
        self,
        provider: str,
        messages: List[LLMMessage],
        options: AICompletionOptions,
    ) -> EnrichmentOutput:
        result = await self.ai.complete(provider, messages, options)
        parsed = parse_json_response(result.content)
        if not isinstance(parsed, dict):
            raise TransientProviderError(f"Failed to parse AI response from {provider}")

        output = EnrichmentOutput(providers_used=[provider])
        min_confidence = self.settings.ENRICHMENT_MIN_CONFIDENCE
        for field_name in QUICK_ENRICHMENT_FIELDS:
            entry = _candidates(parsed, field_name)
            if entry is None:
                continue
            score = _score(entry.get("score"))
            if score < min_confidence:
                logger.debug(f"Quick enrichment dropped {field_name} (score {score})")
                continue
            output.fields[field_name] = FieldResult(
                value=entry["value"],
                score=score,
                source=entry.get("source") or f"From {provider}",
                providers=[provider],
            )
        return output
