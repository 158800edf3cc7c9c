"""
OpenAI-compatible Adapters
OpenAI, Grok (xAI) and DeepSeek share the chat-completions schema
"""

import logging
from datetime import datetime
from typing import List, Optional

import httpx
import tiktoken

from app.config import get_settings
from .base import (
    BaseLLMAdapter,
    LLMConfig,
    LLMMessage,
    LLMResponse,
    LLMUsage,
    LLMProviderType,
    LLMAdapterError,
    LLMRateLimitError,
    LLMAuthenticationError,
    LLMTimeoutError,
    LLMInvalidRequestError,
)

logger = logging.getLogger(__name__)

settings = get_settings()


class OpenAICompatibleAdapter(BaseLLMAdapter):
    """Shared implementation of POST {base}/chat/completions"""

    API_BASE: str = ""

    def __init__(self, api_key: str, config: Optional[LLMConfig] = None):
        super().__init__(api_key, config)
        self._tokenizer = None

    def _get_tokenizer(self):
        """cl100k_base is close enough for every provider on this schema"""
        if self._tokenizer is None:
            self._tokenizer = tiktoken.get_encoding("cl100k_base")
        return self._tokenizer

    def estimate_tokens(self, text: str) -> int:
        try:
            return len(self._get_tokenizer().encode(text))
        except Exception:
            return super().estimate_tokens(text)

    async def execute_chat(
        self,
        messages: List[LLMMessage],
        config: Optional[LLMConfig] = None,
    ) -> LLMResponse:
        """Execute a chat conversation"""
        cfg = config or self.config or LLMConfig(model=self.default_model)
        request_time = datetime.utcnow()

        # Build request
        payload = {
            "model": cfg.model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": cfg.temperature,
            "max_tokens": cfg.max_tokens,
        }

        if cfg.top_p is not None:
            payload["top_p"] = cfg.top_p
        if cfg.stop_sequences:
            payload["stop"] = cfg.stop_sequences
        payload.update(cfg.extra_params)

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                f"{self.provider.value} request: model={cfg.model}, messages={len(messages)}, "
                f"~{sum(self.estimate_tokens(m.content) for m in messages)} prompt tokens"
            )

        try:
            async with httpx.AsyncClient(timeout=cfg.timeout) as client:
                response = await client.post(
                    f"{self.API_BASE}/chat/completions",
                    json=payload,
                    headers=headers,
                )
        except httpx.TimeoutException as e:
            raise LLMTimeoutError(
                f"Request timeout after {cfg.timeout}s",
                self.provider,
            ) from e
        except httpx.RequestError as e:
            raise LLMAdapterError(
                f"Request failed: {str(e)}",
                self.provider,
            ) from e

        response_time = datetime.utcnow()

        if response.status_code in (401, 403):
            raise LLMAuthenticationError(
                "Invalid API key",
                self.provider,
                {"status_code": response.status_code}
            )
        elif response.status_code == 429:
            raise LLMRateLimitError(
                "Rate limit exceeded",
                self.provider,
                {"status_code": response.status_code}
            )
        elif response.status_code != 200:
            raise LLMAdapterError(
                f"API error: {response.status_code} - {response.text}",
                self.provider,
                {"status_code": response.status_code, "response": response.text}
            )

        try:
            data = response.json()
        except ValueError as e:
            raise LLMInvalidRequestError(
                "Provider returned a non-JSON body",
                self.provider,
            ) from e

        choices = data.get("choices") or [{}]
        choice = choices[0]
        usage_data = data.get("usage")

        usage = None
        if usage_data:
            usage = LLMUsage(
                prompt_tokens=usage_data.get("prompt_tokens", 0),
                completion_tokens=usage_data.get("completion_tokens", 0),
                total_tokens=usage_data.get("total_tokens", 0),
            )

        content = (choice.get("message") or {}).get("content") or ""
        logger.debug(
            f"{self.provider.value} response: {len(content)} chars, "
            f"finish_reason={choice.get('finish_reason')}"
        )

        return LLMResponse(
            content=content,
            raw_response=data,
            provider=self.provider,
            model=cfg.model,
            finish_reason=choice.get("finish_reason"),
            usage=usage,
            request_time=request_time,
            response_time=response_time,
            latency_ms=self._calculate_latency(request_time, response_time),
        )


class OpenAIAdapter(OpenAICompatibleAdapter):
    """Adapter for OpenAI ChatGPT API"""

    API_BASE = "https://api.openai.com/v1"

    @property
    def provider(self) -> LLMProviderType:
        return LLMProviderType.OPENAI

    @property
    def default_model(self) -> str:
        return settings.OPENAI_DEFAULT_MODEL


class GrokAdapter(OpenAICompatibleAdapter):
    """Adapter for xAI Grok"""

    API_BASE = "https://api.x.ai/v1"

    @property
    def provider(self) -> LLMProviderType:
        return LLMProviderType.GROK

    @property
    def default_model(self) -> str:
        return settings.GROK_DEFAULT_MODEL


class DeepSeekAdapter(OpenAICompatibleAdapter):
    """Adapter for DeepSeek"""

    API_BASE = "https://api.deepseek.com/v1"

    @property
    def provider(self) -> LLMProviderType:
        return LLMProviderType.DEEPSEEK

    @property
    def default_model(self) -> str:
        return settings.DEEPSEEK_DEFAULT_MODEL
