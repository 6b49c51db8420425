from __future__ import annotations

from kbchat.rag.types import RetrievalResult

STREAM_SYSTEM_PROMPT = (
    "You are Mr Pot, a helpful assistant. "
    "Answer succinctly in the user's language, "
    "using only the provided context and chat history."
)
ANSWER_SYSTEM_PROMPT = (
    "You are Mr Pot, a helpful assistant. "
    "Use the provided context and chat history to answer succinctly."
)
TEXT_STREAM_SYSTEM_PROMPT = (
    "You are Mr Pot. Answer succinctly in the user's language "
    "using the given context and history."
)


class PromptBuilder:
    """Compose the user prompt sent to the generation backend."""

    def __init__(self, max_context_chars: int = 12000) -> None:
        self._max_context_chars = max(500, max_context_chars)

    def build_user_prompt(
        self, question: str, retrieval: RetrievalResult, history_text: str
    ) -> str:
        """Combine rendered history, retrieved context and the question."""

        context = retrieval.context
        if len(context) > self._max_context_chars:
            context = context[: self._max_context_chars].rstrip() + "\n…"
        return (
            "Conversation History:\n"
            f"{history_text}\n\n"
            "Retrieved Context:\n"
            f"{context}\n\n"
            f"User Question: {question}\n"
            "Answer with clear and concise. You can infer based on info."
        )
