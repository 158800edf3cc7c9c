"""
AI Completion Service
One complete() call over OpenAI, Gemini, Grok and DeepSeek, plus lenient
JSON recovery for model output
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional, Tuple

from app.adapters.llm import (
    get_adapter,
    LLMConfig,
    LLMMessage,
    LLMUsage,
    LLMAuthenticationError,
)
from app.config import get_settings
from app.services.api_key_service import ApiKeyService
from app.utils.circuit_breaker import get_breaker
from app.utils.retry import with_retry

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)


@dataclass
class AICompletionOptions:
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None


@dataclass
class AICompletionResult:
    content: str
    provider: str
    model: str
    usage: Optional[LLMUsage] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _balanced_substring(content: str, opener: str, closer: str) -> Optional[str]:
    """First bracket-balanced substring starting at ``opener``, ignoring brackets in strings"""
    start = content.find(opener)
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(content)):
            char = content[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == opener:
                depth += 1
            elif char == closer:
                depth -= 1
                if depth == 0:
                    return content[start:index + 1]
        start = content.find(opener, start + 1)
    return None


def parse_json_response(content: Optional[str]) -> Optional[Any]:
    """
    Recover structured output from free-form model text.

    Tries a direct parse, then a fenced code block, then the first balanced
    object or array. Returns None when nothing parses; never raises.
    """
    if not content or not isinstance(content, str):
        return None

    try:
        return json.loads(content)
    except ValueError:
        pass

    match = _FENCED_BLOCK.search(content)
    if match:
        try:
            return json.loads(match.group(1).strip())
        except ValueError:
            logger.debug("Fenced block did not contain valid JSON")

    candidates = []
    for opener, closer in (("{", "}"), ("[", "]")):
        position = content.find(opener)
        if position != -1:
            candidates.append((position, opener, closer))

    # Whichever structure starts first is the outermost one
    for _, opener, closer in sorted(candidates):
        fragment = _balanced_substring(content, opener, closer)
        if fragment is None:
            continue
        try:
            return json.loads(fragment)
        except ValueError:
            continue

    logger.warning(f"Could not extract JSON from model output: {content[:200]!r}")
    return None


class AICompletionService:
    """Dispatches completions to the provider adapters with resilience wrappers"""

    def __init__(self, api_keys: ApiKeyService):
        self.api_keys = api_keys
        self.settings = get_settings()

    async def get_available_providers(self) -> List[str]:
        keys = await self.api_keys.get_enabled_by_category("ai")
        return [key.provider for key in keys]

    def _config(self, model: str, options: Optional[AICompletionOptions]) -> LLMConfig:
        options = options or AICompletionOptions()
        return LLMConfig(
            model=model,
            temperature=(
                options.temperature if options.temperature is not None
                else self.settings.AI_DEFAULT_TEMPERATURE
            ),
            top_p=options.top_p if options.top_p is not None else self.settings.AI_DEFAULT_TOP_P,
            max_tokens=(
                options.max_tokens if options.max_tokens is not None
                else self.settings.AI_DEFAULT_MAX_TOKENS
            ),
            timeout=self.settings.AI_REQUEST_TIMEOUT,
        )

    async def complete(
        self,
        provider: str,
        messages: List[LLMMessage],
        options: Optional[AICompletionOptions] = None,
    ) -> AICompletionResult:
        """
        Run one chat completion.

        A missing or disabled key fails before any network call.
        """
        key = await self.api_keys.get_by_provider(provider)
        if key is None or not key.enabled:
            raise LLMAuthenticationError(
                f"Provider {provider} is not configured or disabled",
                provider,
            )

        adapter = get_adapter(provider, api_key=key.api_key)
        model = key.model or adapter.default_model
        config = self._config(model, options)
        breaker = get_breaker(f"ai:{provider}")

        response = await breaker.call(
            lambda: with_retry(
                lambda: adapter.execute_chat(messages, config),
                max_retries=self.settings.RETRY_MAX_RETRIES,
                base_delay=self.settings.RETRY_BASE_DELAY,
            )
        )

        await self.api_keys.mark_used(provider)

        return AICompletionResult(
            content=response.content,
            provider=provider,
            model=model,
            usage=response.usage,
        )

    async def complete_multiple(
        self,
        providers: List[str],
        messages: List[LLMMessage],
        options: Optional[AICompletionOptions] = None,
    ) -> Tuple[List[AICompletionResult], List[Dict[str, str]]]:
        """Fan out to several providers; failures are collected, not raised"""
        outcomes = await asyncio.gather(
            *(self.complete(provider, messages, options) for provider in providers),
            return_exceptions=True,
        )

        results: List[AICompletionResult] = []
        errors: List[Dict[str, str]] = []
        for provider, outcome in zip(providers, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.warning(f"AI provider {provider} failed: {outcome}")
                errors.append({"provider": provider, "error": str(outcome) or type(outcome).__name__})
            else:
                results.append(outcome)

        return results, errors

    # Kept on the service so callers holding only the service can parse
    parse_json_response = staticmethod(parse_json_response)
