"""Log sanitizer: masks credentials and personal data in log output.

Masks bearer tokens, JWT-looking strings and e-mail addresses. Tokens are
issued by the school backend and must never reach stdout/file logs.
"""

from __future__ import annotations

import re

# "Bearer <token>" as it appears in headers and error bodies
_BEARER_RE = re.compile(r"(Bearer\s+)([A-Za-z0-9._~+/=-]{6})[A-Za-z0-9._~+/=-]*", re.IGNORECASE)

# Bare JWTs (three base64url segments)
_JWT_RE = re.compile(r"\b(eyJ[A-Za-z0-9_-]{3})[A-Za-z0-9_-]*\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\b")

# Email pattern
_EMAIL_RE = re.compile(
    r"\b([a-zA-Z0-9._%+-])([a-zA-Z0-9._%+-]*)@([a-zA-Z0-9.-]+)\.([a-zA-Z]{2,})\b"
)


def sanitize_token(text: str) -> str:
    """Mask bearer tokens and JWTs: Bearer abcdef123456 → Bearer abcdef***."""
    text = _BEARER_RE.sub(lambda m: f"{m.group(1)}{m.group(2)}***", text)
    return _JWT_RE.sub(lambda m: f"{m.group(1)}***", text)


def sanitize_email(text: str) -> str:
    """Mask emails: docente@school.edu.pe → d***@school.edu.pe."""

    def _mask(m: re.Match[str]) -> str:
        return f"{m.group(1)}***@{m.group(3)}.{m.group(4)}"

    return _EMAIL_RE.sub(_mask, text)


def sanitize(text: str) -> str:
    """Sanitize credentials and personal data in text for logging."""
    text = sanitize_token(text)
    text = sanitize_email(text)
    return text
