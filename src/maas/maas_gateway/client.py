"""Upstream gateway client helpers: auth headers, URL building, body parsing."""

import json
from typing import Any

import httpx

from maas.maas_gateway.models import AnyDict

_BEARER_PREFIX = "Bearer "


def strip_bearer(authorization: str | None) -> str | None:
    """Return the raw key from an ``Authorization: Bearer <key>`` header value."""
    if not authorization:
        return None
    value = authorization.strip()
    if value.startswith(_BEARER_PREFIX):
        value = value[len(_BEARER_PREFIX) :].strip()
    return value or None


def auth_headers(api_key: str, json_body: bool = True) -> dict[str, str]:
    headers = {"Authorization": f"{_BEARER_PREFIX}{api_key}"}
    if json_body:
        headers["Content-Type"] = "application/json"
    return headers


def create_async_client(
    api_key: str, timeout: float, json_body: bool = True
) -> httpx.AsyncClient:
    """Create an httpx client that sends the caller's bearer token on every call."""
    return httpx.AsyncClient(
        headers=auth_headers(api_key, json_body=json_body),
        timeout=httpx.Timeout(timeout, connect=min(timeout, 30.0)),
    )


def join_url(base: str, *parts: str) -> str:
    """Join URL segments with single slashes."""
    url = base.rstrip("/")
    for part in parts:
        part = part.strip("/")
        if part:
            url = f"{url}/{part}"
    return url


def is_full_url(endpoint_path: str) -> bool:
    return endpoint_path.startswith("http")


def ai_service_base(base_url: str, endpoint_path: str) -> str:
    """Base URL for HL/KL calls.

    ``endpoint_path`` is either a bare routing id (``UfRLJwuMWPdfKWQg``),
    which is placed under ``{base_url}/v1/ai/``, or a full URL used as-is.
    """
    if is_full_url(endpoint_path):
        return endpoint_path.rstrip("/")
    return join_url(base_url, "v1/ai", endpoint_path)


def parse_body(response: httpx.Response) -> AnyDict:
    """Parse a response body as a JSON object.

    Non-JSON bodies come back as ``{"body": <text>}``; JSON values that are not
    objects come back as ``{"data": <value>}``.
    """
    try:
        payload: Any = response.json()
    except ValueError:
        return {"body": response.text}
    if isinstance(payload, dict):
        return payload
    return {"data": payload}


def parse_json_object(response: httpx.Response) -> AnyDict:
    """Parse a response body that must be a JSON object.

    Raises:
        ValueError: If the body is not JSON or not an object.
    """
    payload: Any = response.json()
    if not isinstance(payload, dict):
        raise ValueError(f"Expected a JSON object, got {type(payload).__name__}")
    return payload


def upstream_error_message(body: AnyDict) -> str:
    """Pick the most useful error text out of an upstream error body."""
    error = body.get("error")
    if isinstance(error, dict):
        message = error.get("message") or error.get("code")
        if message:
            return str(message)
        return json.dumps(error, ensure_ascii=False)
    if error:
        return str(error)
    if body.get("message"):
        return str(body["message"])
    if "body" in body and len(body) == 1:
        return str(body["body"])
    return json.dumps(body, ensure_ascii=False)
