from __future__ import annotations

import re

SECRET_PATTERN = re.compile(r"(sk-[A-Za-z0-9]{6,})")
BEARER_PATTERN = re.compile(r"(Bearer\s+)[A-Za-z0-9._\-]{6,}")
# C0 controls except tab and newline, plus DEL.
CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")


def redact_secrets(text: str) -> str:
    """Mask OpenAI-style keys and bearer tokens in log text."""

    masked = SECRET_PATTERN.sub("sk-***", text)
    return BEARER_PATTERN.sub(r"\1***", masked)


def sanitize_question(text: str, max_length: int) -> str:
    """Drop control characters, trim, and clamp a user question.

    An empty result means the question carries no usable text.
    """

    cleaned = CONTROL_CHARS.sub("", text.replace("\r\n", "\n")).strip()
    if max_length > 0 and len(cleaned) > max_length:
        cleaned = cleaned[:max_length].rstrip()
    return cleaned
