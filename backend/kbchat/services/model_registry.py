from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from fastapi import Request

from kbchat.core.config import Settings
from kbchat.providers.base import LLMAdapter, ProviderError, ProviderRuntimeConfig
from kbchat.providers.deepseek_adapter import DeepSeekAdapter
from kbchat.providers.ollama_adapter import OllamaAdapter
from kbchat.providers.openai_adapter import OpenAIAdapter

logger = logging.getLogger(__name__)

SUPPORTED_MODELS = ("deepseek", "openai", "ollama")
DEFAULT_MODEL = "deepseek"


@dataclass
class ModelBackend:
    """A named generation backend: prompt in, text or text stream out."""

    name: str
    adapter: LLMAdapter
    config: ProviderRuntimeConfig

    @staticmethod
    def build_messages(system_prompt: str, user_prompt: str) -> list[dict]:
        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]

    async def generate(self, system_prompt: str, user_prompt: str) -> str:
        result = await self.adapter.generate(
            self.config, self.build_messages(system_prompt, user_prompt)
        )
        return result.content

    def generate_stream(self, system_prompt: str, user_prompt: str) -> AsyncIterator[str]:
        return self.adapter.stream_generate(
            self.config, self.build_messages(system_prompt, user_prompt)
        )


class ModelRegistry:
    """Generation backends keyed by logical model name."""

    def __init__(
        self,
        backends: Optional[dict[str, ModelBackend]] = None,
        default_model: str = DEFAULT_MODEL,
    ) -> None:
        self._backends: dict[str, ModelBackend] = {}
        self._default_model = default_model.strip().lower() or DEFAULT_MODEL
        for name, backend in (backends or {}).items():
            self.register(name, backend)

    @property
    def default_model(self) -> str:
        return self._default_model

    def register(self, name: str, backend: ModelBackend) -> None:
        self._backends[name.strip().lower()] = backend

    def set_backends(self, backends: dict[str, ModelBackend]) -> None:
        """Replace the registered backends (useful for tests)."""

        self._backends = {}
        for name, backend in backends.items():
            self.register(name, backend)

    def names(self) -> list[str]:
        return list(self._backends)

    def resolve(self, model: Optional[str]) -> ModelBackend:
        """Return the requested backend, else the default, else any registered one."""

        key = (model or "").strip().lower() or self._default_model
        backend = self._backends.get(key)
        if backend is not None:
            return backend
        backend = self._backends.get(self._default_model)
        if backend is not None:
            return backend
        for backend in self._backends.values():
            return backend
        raise ProviderError("NO_BACKEND_AVAILABLE", "No generation backend is configured.")


def build_model_registry(settings: Settings) -> ModelRegistry:
    """Register every backend whose credentials are configured."""

    registry = ModelRegistry(default_model=settings.default_model)
    if settings.deepseek_api_key.strip():
        registry.register(
            "deepseek",
            ModelBackend(
                name="deepseek",
                adapter=DeepSeekAdapter(),
                config=ProviderRuntimeConfig(
                    provider="deepseek",
                    model_name=settings.deepseek_model,
                    base_url=settings.deepseek_base_url,
                    api_key=settings.deepseek_api_key.strip(),
                ),
            ),
        )
    if settings.openai_api_key.strip():
        registry.register(
            "openai",
            ModelBackend(
                name="openai",
                adapter=OpenAIAdapter(),
                config=ProviderRuntimeConfig(
                    provider="openai",
                    model_name=settings.openai_model,
                    base_url=settings.openai_base_url,
                    api_key=settings.openai_api_key.strip(),
                ),
            ),
        )
    if settings.ollama_enabled:
        registry.register(
            "ollama",
            ModelBackend(
                name="ollama",
                adapter=OllamaAdapter(),
                config=ProviderRuntimeConfig(
                    provider="ollama",
                    model_name=settings.ollama_model,
                    base_url=settings.ollama_base_url,
                ),
            ),
        )
    if not registry.names():
        logger.warning("No generation backend configured; only direct Q/A answers will work")
    return registry


def get_model_registry(request: Request) -> ModelRegistry:
    """Dependency to access the model registry from app state."""

    return request.app.state.model_registry
