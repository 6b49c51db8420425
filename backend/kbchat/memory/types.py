from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import Any

MESSAGE_ROLES = frozenset({"user", "assistant"})


@dataclass(frozen=True)
class StoredMessage:
    """One chat message persisted in session memory."""

    role: str
    content: str
    timestamp: int

    def to_json(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False, separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str) -> "StoredMessage":
        """Parse one stored entry; raises ValueError on malformed data."""

        data: Any = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("Stored message must be a JSON object")
        role = data.get("role")
        content = data.get("content")
        timestamp = data.get("timestamp", 0)
        if role not in MESSAGE_ROLES or not isinstance(content, str):
            raise ValueError("Stored message has an invalid role or content")
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            raise ValueError("Stored message has an invalid timestamp")
        return cls(role=role, content=content, timestamp=int(timestamp))


@dataclass(frozen=True)
class ResolvedSession:
    """Session id plus whether it was minted for a single request."""

    id: str
    temporary: bool
