from __future__ import annotations

import json
from contextlib import aclosing
from typing import Any, AsyncIterator

from kbchat.providers.base import HTTPProviderAdapter, LLMResult, ProviderError, ProviderRuntimeConfig


class OllamaAdapter(HTTPProviderAdapter):
    """Adapter for the Ollama local API."""

    provider_label = "Ollama"

    async def generate(self, cfg: ProviderRuntimeConfig, messages: list[dict]) -> LLMResult:
        url = self._join_url(cfg.base_url, "/api/chat")
        payload = {"model": cfg.model_name, "messages": messages, "stream": False}
        data = await self._request_json("POST", url, json=payload)
        content = data.get("message", {}).get("content")
        if not content:
            raise ProviderError("PROVIDER_PARSE_ERROR", "Provider returned empty content.")
        return LLMResult(
            content=content,
            model_provider=cfg.provider,
            model_name=cfg.model_name,
            token_in=self._get_int(data, "prompt_eval_count"),
            token_out=self._get_int(data, "eval_count"),
        )

    async def stream_generate(
        self, cfg: ProviderRuntimeConfig, messages: list[dict]
    ) -> AsyncIterator[str]:
        url = self._join_url(cfg.base_url, "/api/chat")
        payload = {"model": cfg.model_name, "messages": messages, "stream": True}
        lines = self._stream_lines("POST", url, json=payload)
        async with aclosing(lines):
            async for line in lines:
                try:
                    chunk: Any = json.loads(line)
                except ValueError as exc:
                    raise ProviderError(
                        "PROVIDER_PARSE_ERROR", "Invalid stream chunk from provider."
                    ) from exc
                if not isinstance(chunk, dict):
                    continue
                if chunk.get("error"):
                    raise ProviderError(
                        "PROVIDER_UPSTREAM", f"Provider stream failed: {chunk['error']}", retryable=True
                    )
                content = (chunk.get("message") or {}).get("content")
                if content:
                    yield content
                if chunk.get("done"):
                    return
