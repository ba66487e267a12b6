"""
HTTP helpers.

This module centralizes the minimal async HTTP client logic used by ingestion clients.

Design goals:
- Small surface area (GET text, POST JSON).
- Deterministic defaults (timeout + User-Agent).
- Raise on non-2xx so callers can decide how to fail (census lookups turn errors into
  failure values, the orchestrator turns them into a single search error).
"""

from __future__ import annotations

from typing import Any

import httpx


DEFAULT_USER_AGENT = "gapscout/0.1.0 (+https://local)"


def _headers(headers: dict[str, str] | None) -> dict[str, str]:
    request_headers = {"User-Agent": DEFAULT_USER_AGENT}
    if headers:
        request_headers.update(headers)
    return request_headers


async def get_text(
    url: str,
    *,
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    timeout_seconds: float = 15,
) -> str:
    """GET `url` and return the raw response body.

    Raises:
        httpx.HTTPError: On transport errors or non-2xx status codes.
    """
    async with httpx.AsyncClient(timeout=timeout_seconds) as client:
        resp = await client.get(url, params=params, headers=_headers(headers))
        resp.raise_for_status()
        return resp.text


async def post_json(
    url: str,
    *,
    payload: dict[str, Any],
    headers: dict[str, str] | None = None,
    timeout_seconds: float = 60,
) -> Any:
    """POST `payload` as a JSON body and return the decoded JSON response.

    Used by the chat-completions gap-analysis client.

    Raises:
        httpx.HTTPError: On transport errors or non-2xx status codes.
        ValueError: If the response body is not valid JSON.
    """
    async with httpx.AsyncClient(timeout=timeout_seconds) as client:
        resp = await client.post(url, json=payload, headers=_headers(headers))
        resp.raise_for_status()
        return resp.json()
