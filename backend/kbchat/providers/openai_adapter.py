from __future__ import annotations

import json
from contextlib import aclosing
from typing import Any, AsyncIterator, Optional

from kbchat.providers.base import (
    HTTPProviderAdapter,
    LLMResult,
    ProviderError,
    ProviderRuntimeConfig,
    require_api_key,
)


class OpenAIAdapter(HTTPProviderAdapter):
    """Adapter for OpenAI-compatible chat completion APIs."""

    provider_label = "OpenAI"
    chat_path = "/v1/chat/completions"

    async def generate(self, cfg: ProviderRuntimeConfig, messages: list[dict]) -> LLMResult:
        url = self._join_url(cfg.base_url, self.chat_path)
        payload = {"model": cfg.model_name, "messages": messages, "stream": False}
        data = await self._request_json(
            "POST", url, headers=self._auth_headers(cfg.api_key), json=payload
        )
        choices = data.get("choices", [])
        if not choices:
            raise ProviderError("PROVIDER_PARSE_ERROR", "No choices returned by provider.")
        content = choices[0].get("message", {}).get("content")
        if not content:
            raise ProviderError("PROVIDER_PARSE_ERROR", "Provider returned empty content.")
        return LLMResult(
            content=content,
            model_provider=cfg.provider,
            model_name=cfg.model_name,
            token_in=self._get_int(data, "usage", "prompt_tokens"),
            token_out=self._get_int(data, "usage", "completion_tokens"),
        )

    async def stream_generate(
        self, cfg: ProviderRuntimeConfig, messages: list[dict]
    ) -> AsyncIterator[str]:
        url = self._join_url(cfg.base_url, self.chat_path)
        payload = {"model": cfg.model_name, "messages": messages, "stream": True}
        lines = self._stream_lines("POST", url, headers=self._auth_headers(cfg.api_key), json=payload)
        async with aclosing(lines):
            async for line in lines:
                if not line.startswith("data:"):
                    continue
                data = line[len("data:") :].strip()
                if data == "[DONE]":
                    return
                delta = self._parse_delta(data)
                if delta:
                    yield delta

    def _auth_headers(self, api_key: Optional[str]) -> dict[str, str]:
        return {"Authorization": f"Bearer {require_api_key(api_key, self.provider_label)}"}

    @staticmethod
    def _parse_delta(data: str) -> Optional[str]:
        try:
            chunk: Any = json.loads(data)
        except ValueError as exc:
            raise ProviderError("PROVIDER_PARSE_ERROR", "Invalid stream chunk from provider.") from exc
        if not isinstance(chunk, dict):
            return None
        error = chunk.get("error")
        if error:
            detail = error.get("message") if isinstance(error, dict) else str(error)
            raise ProviderError("PROVIDER_UPSTREAM", f"Provider stream failed: {detail}", retryable=True)
        choices = chunk.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return None
        content = (choices[0].get("delta") or {}).get("content")
        return content if isinstance(content, str) else None
