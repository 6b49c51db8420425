from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Optional


class ToolProfile(str, Enum):
    """Named capability sets a request may ask for."""

    BASIC_CHAT = "basic_chat"
    FULL = "full"

    @classmethod
    def resolve(
        cls, value: Optional[str], default: Optional["ToolProfile"] = None
    ) -> "ToolProfile":
        """Map a client-supplied profile name, falling back to ``default``."""

        fallback = default or cls.BASIC_CHAT
        if not value:
            return fallback
        normalized = value.strip().lower().replace("-", "_")
        for profile in cls:
            if profile.value == normalized or profile.name.lower() == normalized:
                return profile
        return fallback


@dataclass(frozen=True)
class AiToolDefinition:
    """Metadata for a callable tool exposed to a chat model."""

    name: str
    description: str
    profiles: frozenset[ToolProfile]
    function: Callable[..., Any]


class ToolRegistry:
    """Index of tool definitions by name and by profile."""

    def __init__(self, definitions: Iterable[AiToolDefinition] = ()) -> None:
        self._by_name: dict[str, AiToolDefinition] = {}
        self._by_profile: dict[ToolProfile, list[AiToolDefinition]] = {}
        for definition in definitions:
            self.register(definition)

    def register(self, definition: AiToolDefinition) -> None:
        if definition.name in self._by_name:
            raise ValueError(f"Duplicate tool name: {definition.name}")
        self._by_name[definition.name] = definition
        for profile in definition.profiles:
            self._by_profile.setdefault(profile, []).append(definition)

    def tools_for_profile(self, profile: ToolProfile) -> list[AiToolDefinition]:
        return list(self._by_profile.get(profile, []))

    def tool_names_for_profile(self, profile: ToolProfile) -> list[str]:
        return [definition.name for definition in self.tools_for_profile(profile)]
