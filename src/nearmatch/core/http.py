"""
HTTP helpers.

This module centralizes the minimal HTTP client logic used by the content
generator clients.

Design goals:
- Small surface area (POST JSON).
- Deterministic defaults (timeout + User-Agent).
- Raise on non-2xx so callers can decide how to degrade (generators fall back).
"""

from __future__ import annotations

from typing import Any

import httpx


DEFAULT_USER_AGENT = "nearmatch/0.1.0 (+https://local)"


def post_json(
    url: str,
    *,
    payload: dict[str, Any],
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    timeout_seconds: float = 15,
) -> Any:
    """POST `payload` as a JSON body and return the decoded JSON response.

    Raises:
        httpx.HTTPError: On transport errors or non-2xx status codes.
        ValueError: If the response body is not valid JSON.
    """
    request_headers = {"User-Agent": DEFAULT_USER_AGENT}
    if headers:
        request_headers.update(headers)

    with httpx.Client(timeout=timeout_seconds) as client:
        resp = client.post(url, json=payload, params=params, headers=request_headers)
        resp.raise_for_status()
        return resp.json()
