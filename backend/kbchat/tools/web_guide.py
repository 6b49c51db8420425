from __future__ import annotations

from dataclasses import dataclass

from kbchat.tools.registry import AiToolDefinition, ToolProfile

WEB_GUIDE_TOOL_NAME = "web_guide"


@dataclass(frozen=True)
class WebGuideRequest:
    user_question: str


@dataclass(frozen=True)
class WebGuideResponse:
    current_step: str
    next_step_hint: str
    completed: bool


def run_web_guide(request: WebGuideRequest) -> WebGuideResponse:
    """Start the onboarding guide; every conversation begins at INIT."""

    return WebGuideResponse(
        current_step="INIT",
        next_step_hint="Ask the user to reply 'Yes' if they want to start the web guide.",
        completed=False,
    )


WEB_GUIDE_TOOL = AiToolDefinition(
    name=WEB_GUIDE_TOOL_NAME,
    description=(
        "Web guide tool. Use this when the user asks for greeting, onboarding, "
        "or a website guide. It helps guide the user step by step."
    ),
    profiles=frozenset({ToolProfile.BASIC_CHAT, ToolProfile.FULL}),
    function=run_web_guide,
)
