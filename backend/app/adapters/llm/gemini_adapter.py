"""
Google Gemini Adapter
Native generateContent shape: systemInstruction, model role, usageMetadata
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

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


class GeminiAdapter(BaseLLMAdapter):
    """Adapter for Google Gemini API"""

    API_BASE = "https://generativelanguage.googleapis.com/v1beta"

    @property
    def provider(self) -> LLMProviderType:
        return LLMProviderType.GEMINI

    @property
    def default_model(self) -> str:
        return settings.GEMINI_DEFAULT_MODEL

    @staticmethod
    def build_payload(messages: List[LLMMessage], cfg: LLMConfig) -> Dict[str, Any]:
        """Map chat messages onto Gemini contents plus a system instruction"""
        contents = []
        system_parts = []

        for msg in messages:
            if msg.role == "system":
                system_parts.append({"text": msg.content})
            else:
                role = "model" if msg.role == "assistant" else "user"
                contents.append({
                    "role": role,
                    "parts": [{"text": msg.content}]
                })

        payload: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "temperature": cfg.temperature,
                "maxOutputTokens": cfg.max_tokens,
            }
        }

        if cfg.top_p is not None:
            payload["generationConfig"]["topP"] = cfg.top_p
        if cfg.stop_sequences:
            payload["generationConfig"]["stopSequences"] = cfg.stop_sequences
        if system_parts:
            payload["systemInstruction"] = {"parts": system_parts}

        return payload

    async def execute_chat(
        self,
        messages: List[LLMMessage],
        config: Optional[LLMConfig] = None,
    ) -> LLMResponse:
        """Execute a chat conversation"""
        cfg = config or self.config or LLMConfig(model=self.default_model)
        request_time = datetime.utcnow()

        payload = self.build_payload(messages, cfg)
        url = f"{self.API_BASE}/models/{cfg.model}:generateContent"

        logger.debug(f"gemini request: model={cfg.model}, contents={len(payload['contents'])}")

        try:
            async with httpx.AsyncClient(timeout=cfg.timeout) as client:
                response = await client.post(
                    url,
                    params={"key": self.api_key},
                    json=payload,
                    headers={"Content-Type": "application/json"},
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

        if response.status_code == 401 or response.status_code == 403:
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

        # Check for errors in response
        if "error" in data:
            raise LLMAdapterError(
                data["error"].get("message", "Unknown error"),
                self.provider,
                {"error": data["error"]}
            )

        candidates = data.get("candidates") or []
        content = ""
        finish_reason = None
        if candidates:
            finish_reason = candidates[0].get("finishReason")
            for part in candidates[0].get("content", {}).get("parts", []):
                if "text" in part:
                    content += part["text"]

        usage = None
        usage_metadata = data.get("usageMetadata")
        if usage_metadata:
            usage = LLMUsage(
                prompt_tokens=usage_metadata.get("promptTokenCount", 0),
                completion_tokens=usage_metadata.get("candidatesTokenCount", 0),
                total_tokens=usage_metadata.get("totalTokenCount", 0),
            )

        logger.debug(f"gemini response: {len(content)} chars, finish_reason={finish_reason}")

        return LLMResponse(
            content=content,
            raw_response=data,
            provider=self.provider,
            model=cfg.model,
            finish_reason=finish_reason,
            usage=usage,
            request_time=request_time,
            response_time=response_time,
            latency_ms=self._calculate_latency(request_time, response_time),
        )
