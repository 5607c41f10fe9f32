"""User-facing error messages.

Hey future me - screens call get_friendly_api_error(e) in their except blocks and show the
result in a banner. It digs the backend's own message out of the error body when there is
one, strips the backend's generic "An unexpected error occurred:" prefix, and otherwise
falls back to a generic line (with the backend errorCode, so support can find it).
"""

import re
from typing import Any

from kbclient.infrastructure.http.errors import extract_message

DEFAULT_FALLBACK = "Something went wrong. Please try again."

_UNEXPECTED_PREFIX = re.compile(r"^an unexpected error occurred:?\s*", re.IGNORECASE)
_UNEXPECTED_ONLY = re.compile(r"^an unexpected error occurred:?$", re.IGNORECASE)


def _sanitize(message: str) -> str:
    trimmed = message.strip()
    without_prefix = _UNEXPECTED_PREFIX.sub("", trimmed, count=1).strip()
    return without_prefix or trimmed


def _first_non_empty(*candidates: Any) -> str | None:
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return None


def get_friendly_api_error(error: BaseException | None, fallback: str | None = None) -> str:
    """Turn any error into a message that can be shown to the user.

    Args:
        error: The caught exception (usually an ApiError), or None
        fallback: Message to use when the error carries nothing usable

    Returns:
        A single human readable sentence, never empty

    Example:
        >>> try:
        ...     await api.post("/api/v1/cars", json=payload)
        ... except ApiError as e:
        ...     show_banner(get_friendly_api_error(e, "Could not save your listing."))
    """
    base_message = fallback or DEFAULT_FALLBACK
    if error is None:
        return base_message

    data = getattr(error, "data", None)
    error_code = None
    body_message = None
    if isinstance(data, dict):
        error_code = _first_non_empty(data.get("errorCode"))
        body_message = extract_message(data)

    candidate = _first_non_empty(
        body_message,
        getattr(error, "message", None),
        str(error),
    )
    if candidate:
        sanitized = _sanitize(candidate)
        if sanitized and not _UNEXPECTED_ONLY.match(sanitized):
            return sanitized

    if error_code:
        return (
            f"{base_message} (Error code: {error_code}). "
            "If this keeps happening, please contact support with this code."
        )
    return f"{base_message} If this keeps happening, please contact support."
