from __future__ import annotations

import logging
from collections.abc import Sequence

from kbchat.memory.list_store import ListStore
from kbchat.memory.types import StoredMessage
from kbchat.utils.time_utils import epoch_millis

logger = logging.getLogger(__name__)

NO_HISTORY_TEXT = "(no prior conversation)"


class ChatMemoryService:
    """Session-scoped chat log with a bounded window and rolling TTL.

    ``append_turn`` is the only mutator. The stored window
    (``max_messages``) and the prompt window (``prompt_messages``) are
    independent; the prompt window is clamped to the stored one.
    """

    def __init__(
        self,
        store: ListStore,
        *,
        key_prefix: str = "chat:memory:",
        max_messages: int = 10,
        prompt_messages: int = 8,
        temporary_ttl_sec: float = 60,
        persistent_ttl_sec: float = 7 * 24 * 3600,
    ) -> None:
        self._store = store
        self._key_prefix = key_prefix
        self._max_messages = max(1, max_messages)
        self._prompt_messages = max(0, min(prompt_messages, self._max_messages))
        self._temporary_ttl = temporary_ttl_sec
        self._persistent_ttl = persistent_ttl_sec

    @property
    def max_messages(self) -> int:
        return self._max_messages

    def build_key(self, session_id: str) -> str:
        return f"{self._key_prefix}{session_id}"

    async def load_history(self, session_id: str) -> list[StoredMessage]:
        """Return the latest stored messages, oldest first."""

        key = self.build_key(session_id)
        size = await self._store.list_size(key)
        if size <= 0:
            return []

        start = max(0, size - self._max_messages)
        raw_messages = await self._store.list_range(key, start, size - 1)
        messages: list[StoredMessage] = []
        for raw in raw_messages:
            try:
                messages.append(StoredMessage.from_json(raw))
            except ValueError:
                logger.warning("Skipping malformed history entry for key=%s", key)
        return messages

    async def append_turn(
        self,
        session_id: str,
        user_message: str,
        assistant_message: str,
        temporary: bool,
    ) -> None:
        """Append one user/assistant pair, trim the window, refresh the TTL."""

        key = self.build_key(session_id)
        now = epoch_millis()
        turn = (
            StoredMessage(role="user", content=user_message, timestamp=now),
            StoredMessage(role="assistant", content=assistant_message, timestamp=now),
        )
        try:
            for message in turn:
                try:
                    raw = message.to_json()
                    # Stores persist UTF-8; lone surrogates only fail at write time.
                    raw.encode("utf-8")
                except (TypeError, ValueError):
                    logger.warning("Dropping %s message that failed to serialize", message.role)
                    continue
                await self._store.list_append(key, raw)
        finally:
            size = await self._store.list_size(key)
            if size > self._max_messages:
                await self._store.list_trim(key, size - self._max_messages, size - 1)

            ttl = self._temporary_ttl if temporary else self._persistent_ttl
            await self._store.expire(key, ttl)

    def render_history(self, messages: Sequence[StoredMessage]) -> str:
        """Render the prompt window as ``role: content`` lines."""

        if not messages or self._prompt_messages == 0:
            return NO_HISTORY_TEXT
        window = list(messages)[-self._prompt_messages :]
        return "\n".join(f"{message.role}: {message.content}" for message in window)
