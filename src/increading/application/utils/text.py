import math
import re
import secrets
import string
from datetime import datetime, timezone

from increading.domain.constants import (
    CARD_ANSWER_REPLACEMENT,
    CLOZE_DELIMITER_PATTERN,
    CONTENT_TITLE_SLICE_LENGTH,
    FORBIDDEN_TITLE_CHARS,
    GENERATED_ID_LENGTH,
    MAX_PRIORITY,
    MIN_PRIORITY,
)
from increading.domain.errors import ValidationError

_CLOZE_RE = re.compile(CLOZE_DELIMITER_PATTERN, re.DOTALL)
_ID_ALPHABET = string.ascii_lowercase + string.digits

# ---------- Titles ----------


def generate_id(length: int = GENERATED_ID_LENGTH) -> str:
    """Generate a short alphanumeric suffix used to disambiguate note names."""
    if length <= 0:
        raise ValueError(f"Length must be a positive integer; received {length}")
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def get_date_time_string(when: datetime | None = None) -> str:
    """Title-safe UTC date and time, e.g. ``2024-3-9T14H05M``."""
    when = (when or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return f"{when.year}-{when.month}-{when.day}T{when.hour}H{when.minute:02d}M"


def sanitize_for_title(text: str, check_final_char: bool = True) -> str:
    """
    Replace characters that cannot appear in file names or note titles with spaces.
    With ``check_final_char`` a trailing space or dot is replaced as well.
    """
    text = text.strip()
    chars = []
    for i, char in enumerate(text):
        is_last = i == len(text) - 1
        if char in FORBIDDEN_TITLE_CHARS or char in "\r\n\t":
            chars.append(" ")
        elif check_final_char and is_last and char in " .":
            chars.append(" ")
        else:
            chars.append(char)
    return "".join(chars)


def get_content_slice(content: str, slice_length: int, ellipses: bool = False) -> str:
    """Start of ``content`` no longer than ``slice_length``, with '...' if cut."""
    trimmed = content.strip()
    if not ellipses:
        return trimmed[:slice_length]
    if len(trimmed) > slice_length:
        return f"{trimmed[: slice_length - 3]}..."
    return trimmed


def create_title(content: str | None = None, when: datetime | None = None) -> str:
    """
    Title made of a slice of the content, a UTC timestamp and a random suffix.
    """
    segments = []
    if content:
        sliced = content.strip()[:CONTENT_TITLE_SLICE_LENGTH]
        sanitized = " ".join(sanitize_for_title(sliced, False).split())
        if sanitized:
            segments.append(sanitized)
    segments.extend([get_date_time_string(when), generate_id()])
    return " - ".join(segments)


# ---------- Cloze ----------


def find_cloze(text: str) -> re.Match | None:
    return _CLOZE_RE.search(text)


def hide_answer(text: str) -> str:
    """Replace the first cloze span with a placeholder."""
    m = find_cloze(text)
    if not m:
        raise ValidationError(f"Valid cloze delimiters not found in: {text!r}")
    return text[: m.start()] + CARD_ANSWER_REPLACEMENT + text[m.end() :]


def cloze_answer(text: str) -> str:
    m = find_cloze(text)
    if not m:
        raise ValidationError(f"Valid cloze delimiters not found in: {text!r}")
    return m.group(1).strip()


# ---------- Priority ----------


def transform_priority(raw: str | int | float) -> int:
    """
    Convert a user-entered display priority (1.0-5.0, e.g. ``2.5`` or ``"25"``)
    to the stored integer (10-50), clamping out-of-range values.
    """
    try:
        value = float(raw)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Priority must be a number; received {raw!r}") from e
    if math.isnan(value) or math.isinf(value):
        raise ValidationError(f"Priority must be finite; received {raw!r}")

    value = abs(value)
    # "25" and "250" mean 2.5, the same as the display value
    while value >= 10:
        value /= 10
    clamped = min(MAX_PRIORITY / 10, max(MIN_PRIORITY / 10, value))
    return int(math.floor(clamped * 10 + 0.5))
