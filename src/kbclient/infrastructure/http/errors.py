"""Error normalization for outbound HTTP calls.

Every failure leaving the HTTP layer has the same shape (ApiError): was there a
response at all, was it a timeout, which status, and a best-effort human message
pulled out of the body. Screens render that without caring which endpoint failed.
"""

from typing import Any

import httpx

from kbclient.domain.exceptions import (
    ApiError,
    AuthorizationFailure,
    NetworkError,
    RequestTimeoutError,
)

AUTH_FAILURE_STATUSES = frozenset({401, 403})


def _first_non_empty(*candidates: Any) -> str | None:
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return None


def decode_body(response: httpx.Response) -> Any:
    """Return the JSON body, the raw text, or None - never raises."""
    try:
        return response.json()
    except ValueError:
        text = response.text
        return text if text else None


def extract_message(data: Any) -> str | None:
    """Dig a human readable message out of a backend error body.

    The backend is inconsistent: errorMessage, message, error.message, details,
    or a bare "error" string all occur.
    """
    if isinstance(data, str):
        return _first_non_empty(data) if len(data) < 500 else None
    if not isinstance(data, dict):
        return None

    error = data.get("error")
    nested = error.get("message") if isinstance(error, dict) else error
    return _first_non_empty(
        data.get("errorMessage"),
        data.get("message"),
        nested,
        data.get("details"),
    )


def error_from_response(response: httpx.Response) -> ApiError:
    """Build the normalized error for a non-2xx response."""
    data = decode_body(response)
    status = response.status_code
    message = extract_message(data) or f"HTTP {status} {response.reason_phrase}".strip()
    error_cls = AuthorizationFailure if status in AUTH_FAILURE_STATUSES else ApiError
    return error_cls(
        message,
        status_code=status,
        data=data,
        url=_request_url(response),
    )


def _request_url(source: httpx.Response | httpx.RequestError) -> str | None:
    # .request raises RuntimeError when the object was built without one (tests, mocks).
    try:
        return str(source.request.url)
    except RuntimeError:
        return None


def error_from_exception(exc: httpx.RequestError) -> NetworkError:
    """Build the normalized error for a request that got no response."""
    url = _request_url(exc)
    detail = f": {exc}" if str(exc) else ""
    if isinstance(exc, httpx.TimeoutException):
        return RequestTimeoutError(f"Request timed out{detail}", url=url)
    return NetworkError(f"Network error{detail}", url=url)
