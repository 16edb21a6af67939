"""Secret masking for outbound-call diagnostics."""

from typing import Any, Mapping, Optional

_SENSITIVE_HEADERS = {"authorization", "proxy-authorization"}


def redact_authorization(value: Optional[str]) -> Optional[str]:
    """Mask the credential part of an Authorization header value.

    "Bearer sk_live_x" -> "Bearer redacted", "Ghost eyJ..." -> "Ghost redacted",
    anything without a scheme -> "redacted".
    """
    if not value:
        return value
    scheme, _, token = value.partition(" ")
    if token and scheme:
        return f"{scheme} redacted"
    return "redacted"


def redact_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Copy headers with credential headers masked."""
    return {
        key: redact_authorization(value) if key.lower() in _SENSITIVE_HEADERS else value
        for key, value in headers.items()
    }


def describe_http_error(
    method: str,
    url: str,
    headers: Mapping[str, str],
    status: Optional[int],
    body: Any = None,
) -> dict[str, Any]:
    """Build a loggable description of a failed outbound request."""
    return {
        "request": {
            "method": method,
            "url": url,
            "headers": redact_headers(headers),
        },
        "response": {
            "status": status,
            "body": body,
        },
    }
