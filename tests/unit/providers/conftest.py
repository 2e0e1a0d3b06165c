"""Shared fixtures for provider handler tests."""

import json

import httpx
import pytest

from maas.maas_gateway.client import auth_headers


class ScriptedTransport:
    """Answers requests by ``(method, path)`` from scripted response queues.

    The last response of a queue repeats once the queue is drained. Every
    request is recorded in ``requests``.
    """

    def __init__(self, routes: dict[tuple[str, str], list[httpx.Response | Exception]]):
        self.routes = {key: list(value) for key, value in routes.items()}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"error": f"no route for {request.url.path}"})
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return httpx.Response(item.status_code, headers=item.headers, content=item.content)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def json_body(self, method: str, path: str) -> dict:
        return json.loads(self.calls(method, path)[0].content)


@pytest.fixture
def install_transport():
    """Inject a scripted client into a handler's client cache for ``config``."""

    def install(handler, config, routes) -> ScriptedTransport:
        transport = ScriptedTransport(routes)
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(transport), headers=auth_headers(config.api_key)
        )
        handler._async_client_cache[f"{config.api_key}:{config.timeout}"] = client
        return transport

    return install
