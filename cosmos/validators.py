from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

MIN_LENGTH = 10
MAX_LENGTH = 500
# Raw input beyond this is rejected before any markup is stripped
MAX_RAW_LENGTH = 4 * MAX_LENGTH

_SCRIPT_OPEN_RE = re.compile(r"<script\b", re.IGNORECASE)
_SCRIPT_CLOSE_RE = re.compile(r"</script\s*>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")

_SUSPICIOUS_PATTERNS = (
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"eval\(", re.IGNORECASE),
    re.compile(r"expression\(", re.IGNORECASE),
)


class ReasonCode(str, Enum):
    MISSING_QUESTION = "MissingQuestion"
    EMPTY_QUESTION = "EmptyQuestion"
    TOO_SHORT = "TooShort"
    TOO_LONG = "TooLong"
    SUSPICIOUS_CONTENT = "SuspiciousContent"


MESSAGES = {
    ReasonCode.MISSING_QUESTION: "Vraag is verplicht",
    ReasonCode.EMPTY_QUESTION: "Vraag kan niet leeg zijn",
    ReasonCode.TOO_SHORT: f"Vraag moet minimaal {MIN_LENGTH} karakters bevatten",
    ReasonCode.TOO_LONG: f"Vraag mag maximaal {MAX_LENGTH} karakters bevatten",
    ReasonCode.SUSPICIOUS_CONTENT: "Vraag bevat ongeldige karakters",
}
_NOT_A_STRING_MESSAGE = "Vraag moet een tekst zijn"


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    sanitized: Optional[str] = None
    error: Optional[ReasonCode] = None
    message: Optional[str] = None


def _reject(code: ReasonCode, message: Optional[str] = None) -> ValidationResult:
    return ValidationResult(ok=False, error=code, message=message or MESSAGES[code])


def _strip_script_blocks(text: str) -> str:
    """Remove each <script ...>...</script> block in a single left-to-right pass."""
    parts = []
    pos = 0
    while True:
        opener = _SCRIPT_OPEN_RE.search(text, pos)
        if opener is None:
            break
        tag_end = text.find(">", opener.end())
        if tag_end < 0:
            break
        closer = _SCRIPT_CLOSE_RE.search(text, tag_end + 1)
        # No later opener can have a closer either
        if closer is None:
            break
        parts.append(text[pos:opener.start()])
        pos = closer.end()
    parts.append(text[pos:])
    return "".join(parts)


def sanitize(text: str) -> str:
    """Strip script blocks and tag markup, then normalize whitespace.

    Script blocks go first so their bodies are dropped along with the tags.
    Applying sanitize to its own output returns it unchanged.
    """
    if not text:
        return ""
    out = _strip_script_blocks(text)
    out = _TAG_RE.sub("", out)
    return _WHITESPACE_RE.sub(" ", out).strip()


def is_suspicious(text: str) -> bool:
    return any(p.search(text) for p in _SUSPICIOUS_PATTERNS)


def validate_question(raw: Any) -> ValidationResult:
    """Return a ValidationResult; never raises.

    The HTTP layer turns a rejected result into a 400 keyed on ``error``.
    """
    if raw is None:
        return _reject(ReasonCode.MISSING_QUESTION)
    if not isinstance(raw, str):
        return _reject(ReasonCode.MISSING_QUESTION, _NOT_A_STRING_MESSAGE)
    if len(raw) > MAX_RAW_LENGTH:
        return _reject(ReasonCode.TOO_LONG)

    sanitized = sanitize(raw)
    if not sanitized:
        return _reject(ReasonCode.EMPTY_QUESTION)
    if len(sanitized) < MIN_LENGTH:
        return _reject(ReasonCode.TOO_SHORT)
    if len(sanitized) > MAX_LENGTH:
        return _reject(ReasonCode.TOO_LONG)
    if is_suspicious(sanitized):
        return _reject(ReasonCode.SUSPICIOUS_CONTENT)
    return ValidationResult(ok=True, sanitized=sanitized)
