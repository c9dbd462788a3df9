"""
HTTP plumbing shared by the voice REST endpoints.

Responsibilities:
- Build the one httpx.AsyncClient a ClientSession owns (base URL, bearer
  token, request timeout)
- Unwrap the server's {success, data | error} response envelope

Non-responsibilities:
- No retries (a failed request is terminal for that call)
- No endpoint-specific parsing
"""

from __future__ import annotations

from typing import Any

import httpx


class VoiceServiceError(Exception):
    """
    A voice endpoint call failed.

    status_code:
        HTTP status, when a response was received.
    code:
        Application error code from the envelope, when present.
    application:
        True when HTTP succeeded but the envelope reported success=false.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        application: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.application = application


def build_http_client(
    *,
    base_url: str,
    token: str | None,
    timeout_ms: int,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """
    Construct the session's HTTP client.

    `transport` is for tests (httpx.MockTransport).
    """
    headers = {"Accept": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return httpx.AsyncClient(
        base_url=base_url.rstrip("/"),
        headers=headers,
        timeout=httpx.Timeout(timeout_ms / 1000.0),
        transport=transport,
    )


def _error_detail(resp: httpx.Response) -> tuple[str, str | None]:
    """Best-effort (message, code) from an error response body."""
    try:
        body = resp.json()
    except ValueError:
        return resp.reason_phrase or f"HTTP {resp.status_code}", None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        err = body["error"]
        return str(err.get("message") or resp.reason_phrase), err.get("code")
    return resp.reason_phrase or f"HTTP {resp.status_code}", None


def raise_for_status(resp: httpx.Response) -> None:
    """Raise VoiceServiceError for a non-2xx response."""
    if resp.is_success:
        return
    message, code = _error_detail(resp)
    raise VoiceServiceError(
        f"HTTP {resp.status_code}: {message}",
        status_code=resp.status_code,
        code=code,
    )


def unwrap_envelope(resp: httpx.Response) -> Any:
    """
    Return the `data` member of a success envelope.

    Raises:
        VoiceServiceError for a non-2xx status, a non-JSON body, or
        success=false (application=True in that case).
    """
    raise_for_status(resp)

    try:
        body = resp.json()
    except ValueError as e:
        raise VoiceServiceError(
            "Response is not valid JSON",
            status_code=resp.status_code,
        ) from e

    if not isinstance(body, dict):
        raise VoiceServiceError(
            "Response envelope must be an object",
            status_code=resp.status_code,
        )

    if not body.get("success"):
        err = body.get("error") if isinstance(body.get("error"), dict) else {}
        raise VoiceServiceError(
            str(err.get("message") or "Request failed"),
            status_code=resp.status_code,
            code=err.get("code"),
            application=True,
        )

    return body.get("data")


def is_json_response(resp: httpx.Response) -> bool:
    content_type = resp.headers.get("content-type", "")
    return content_type.split(";", 1)[0].strip().lower() == "application/json"
