from __future__ import annotations

import pytest

from kbchat.tools.registry import AiToolDefinition, ToolProfile, ToolRegistry
from kbchat.tools.web_guide import WEB_GUIDE_TOOL, WebGuideRequest, run_web_guide


def test_profile_resolution_falls_back_to_basic_chat():
    assert ToolProfile.resolve("full") is ToolProfile.FULL
    assert ToolProfile.resolve("BASIC-CHAT") is ToolProfile.BASIC_CHAT
    assert ToolProfile.resolve(None) is ToolProfile.BASIC_CHAT
    assert ToolProfile.resolve("admin") is ToolProfile.BASIC_CHAT
    assert ToolProfile.resolve("admin", default=ToolProfile.FULL) is ToolProfile.FULL


def test_registry_indexes_tools_by_profile():
    full_only = AiToolDefinition(
        name="search",
        description="Search",
        profiles=frozenset({ToolProfile.FULL}),
        function=lambda: None,
    )
    registry = ToolRegistry([WEB_GUIDE_TOOL, full_only])

    assert registry.tool_names_for_profile(ToolProfile.BASIC_CHAT) == ["web_guide"]
    assert registry.tool_names_for_profile(ToolProfile.FULL) == ["web_guide", "search"]


def test_registry_rejects_duplicate_names():
    registry = ToolRegistry([WEB_GUIDE_TOOL])

    with pytest.raises(ValueError):
        registry.register(WEB_GUIDE_TOOL)


def test_web_guide_starts_at_init():
    response = run_web_guide(WebGuideRequest(user_question="hi"))

    assert response.current_step == "INIT"
    assert response.completed is False
    assert "Yes" in response.next_step_hint
