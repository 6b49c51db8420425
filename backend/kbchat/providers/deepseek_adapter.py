from __future__ import annotations

from kbchat.providers.openai_adapter import OpenAIAdapter


class DeepSeekAdapter(OpenAIAdapter):
    """Adapter for the DeepSeek OpenAI-compatible API (unversioned paths)."""

    provider_label = "DeepSeek"
    chat_path = "/chat/completions"
