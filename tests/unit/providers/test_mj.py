"""Tests for MJProviderHandler."""

import httpx
import pytest

from maas.maas_gateway.exceptions import (
    PollTransientError,
    TaskCreationError,
    TaskFailedError,
    TaskIdMissingError,
    TaskTimedOutError,
    ValidationError,
)
from maas.maas_gateway.models import GenerationConfig, GenerationRequest
from maas.maas_gateway.providers.mj import MJProviderHandler, parse_mj_status

CREATE = ("POST", "/v1/ai/mjPath/tob/diffusion")
JOB = ("GET", "/v1/ai/mjPath/tob/job/job-1")


# ==================== Fixtures ====================


@pytest.fixture
def handler():
    return MJProviderHandler()


@pytest.fixture
def config():
    return GenerationConfig(
        provider="mj",
        model="MaaS-MJ",
        api_key="sk-test",
        base_url="https://gw.example/",
        endpoint_path="v1/ai/mjPath",
        poll_interval=0,
        max_poll_attempts=3,
    )


@pytest.fixture
def request_():
    return GenerationRequest(prompt="a red fox in snow")


# ==================== Status parsing ====================


def test_parse_status_success_with_urls():
    result = parse_mj_status({"status": 2, "urls": ["https://cdn/a.png"], "text": "fox"})
    assert result.outcome == "succeeded"
    assert result.raw_status == "2"
    assert result.artifact[0].url == "https://cdn/a.png"


def test_parse_status_success_without_urls_keeps_polling():
    assert parse_mj_status({"status": 2, "urls": []}).outcome == "pending"


@pytest.mark.parametrize("status", [0, 1, "1", None, "weird"])
def test_parse_status_pending(status):
    assert parse_mj_status({"status": status}).outcome == "pending"


def test_parse_status_failure_reason():
    result = parse_mj_status({"status": 3, "comment": "banned prompt"})
    assert result.outcome == "failed"
    assert result.reason == "banned prompt"
    assert parse_mj_status({"status": 3}).reason == "Unknown error"


# ==================== Generation ====================


@pytest.mark.asyncio
async def test_generate_success(handler, config, request_, install_transport):
    transport = install_transport(
        handler,
        config,
        {
            CREATE: [httpx.Response(200, json={"id": "job-1"})],
            JOB: [
                httpx.Response(200, json={"status": 0}),
                httpx.Response(200, json={"status": 1}),
                httpx.Response(
                    200,
                    json={
                        "status": 2,
                        "urls": ["https://cdn/1.png", "https://cdn/2.png"],
                        "text": "a red fox in snow --v 6",
                    },
                ),
            ],
        },
    )
    updates = []

    response = await handler.generate_async(config, request_, on_progress=updates.append)

    assert transport.json_body(*CREATE) == {"text": "a red fox in snow"}
    assert transport.calls(*CREATE)[0].headers["Authorization"] == "Bearer sk-test"
    assert len(transport.calls(*JOB)) == 3
    assert response.task_id == "job-1"
    assert response.attempts == 3
    assert response.to_payload()["data"] == [
        {"url": "https://cdn/1.png", "revised_prompt": "a red fox in snow --v 6"},
        {"url": "https://cdn/2.png", "revised_prompt": "a red fox in snow --v 6"},
    ]
    assert [u.status for u in updates] == ["pending", "processing", "processing", "succeeded"]


@pytest.mark.asyncio
async def test_generate_failure_status(handler, config, request_, install_transport):
    install_transport(
        handler,
        config,
        {
            CREATE: [httpx.Response(200, json={"id": "job-1"})],
            JOB: [httpx.Response(200, json={"status": 3, "comment": "banned prompt"})],
        },
    )

    with pytest.raises(TaskFailedError) as exc_info:
        await handler.generate_async(config, request_)

    assert "banned prompt" in exc_info.value.message
    assert exc_info.value.task_id == "job-1"


@pytest.mark.asyncio
async def test_success_without_urls_runs_out_of_attempts(
    handler, config, request_, install_transport
):
    transport = install_transport(
        handler,
        config,
        {
            CREATE: [httpx.Response(200, json={"id": "job-1"})],
            JOB: [httpx.Response(200, json={"status": 2, "urls": []})],
        },
    )

    with pytest.raises(TaskTimedOutError) as exc_info:
        await handler.generate_async(config, request_)

    assert exc_info.value.attempts == 3
    assert len(transport.calls(*JOB)) == 3


@pytest.mark.asyncio
async def test_status_errors_are_retried(handler, config, request_, install_transport):
    install_transport(
        handler,
        config,
        {
            CREATE: [httpx.Response(200, json={"id": "job-1"})],
            JOB: [
                httpx.Response(502, text="bad gateway"),
                httpx.Response(200, text="not json"),
                httpx.Response(200, json={"status": 2, "urls": ["https://cdn/1.png"]}),
            ],
        },
    )

    response = await handler.generate_async(config, request_)

    assert response.attempts == 3
    assert response.data[0].url == "https://cdn/1.png"


@pytest.mark.asyncio
async def test_create_rejected(handler, config, request_, install_transport):
    transport = install_transport(
        handler,
        config,
        {CREATE: [httpx.Response(403, json={"error": {"message": "quota exceeded"}})]},
    )

    with pytest.raises(TaskCreationError) as exc_info:
        await handler.generate_async(config, request_)

    assert exc_info.value.status_code == 403
    assert "quota exceeded" in exc_info.value.message
    assert transport.calls(*JOB) == []


@pytest.mark.asyncio
async def test_create_without_task_id(handler, config, request_, install_transport):
    install_transport(handler, config, {CREATE: [httpx.Response(200, json={"ok": True})]})

    with pytest.raises(TaskIdMissingError) as exc_info:
        await handler.generate_async(config, request_)

    assert exc_info.value.raw_response == {"ok": True}


@pytest.mark.asyncio
@pytest.mark.parametrize("prompt", [None, "", "   "])
async def test_blank_prompt_rejected_before_any_call(
    handler, config, install_transport, prompt
):
    transport = install_transport(handler, config, {})

    with pytest.raises(ValidationError):
        await handler.generate_async(config, GenerationRequest(prompt=prompt))

    assert transport.requests == []


@pytest.mark.asyncio
async def test_same_request_twice_creates_independent_tasks(
    handler, config, request_, install_transport
):
    transport = install_transport(
        handler,
        config,
        {
            CREATE: [
                httpx.Response(200, json={"id": "job-1"}),
                httpx.Response(200, json={"id": "job-2"}),
            ],
            JOB: [httpx.Response(200, json={"status": 2, "urls": ["https://cdn/1.png"]})],
            ("GET", "/v1/ai/mjPath/tob/job/job-2"): [
                httpx.Response(200, json={"status": 1}),
                httpx.Response(200, json={"status": 2, "urls": ["https://cdn/2.png"]}),
            ],
        },
    )

    first = await handler.generate_async(config, request_)
    second = await handler.generate_async(config, request_)

    assert (first.task_id, first.attempts) == ("job-1", 1)
    assert (second.task_id, second.attempts) == ("job-2", 2)
    assert second.data[0].url == "https://cdn/2.png"
    assert len(transport.calls(*CREATE)) == 2


# ==================== Malformed status bodies ====================


@pytest.mark.parametrize("status", [True, 2.9, 2.0, "2.0", [2], {"code": 2}])
def test_parse_status_only_integer_codes_are_terminal(status):
    result = parse_mj_status({"status": status, "urls": ["https://cdn/a.png"]})
    assert result.outcome == "pending"
    assert result.raw_status is None


def test_parse_status_digit_string_is_accepted():
    result = parse_mj_status({"status": "2", "urls": ["https://cdn/a.png"]})
    assert result.outcome == "succeeded"


@pytest.mark.parametrize("urls", ["http://x/1.png", {"0": "http://x/1.png"}, 7])
def test_parse_status_non_list_urls_is_transient(urls):
    with pytest.raises(PollTransientError, match="'urls' is"):
        parse_mj_status({"status": 2, "urls": urls, "text": "t"})


@pytest.mark.asyncio
async def test_malformed_success_is_retried(handler, config, request_, install_transport):
    transport = install_transport(
        handler,
        config,
        {
            CREATE: [httpx.Response(200, json={"id": "job-1"})],
            JOB: [
                httpx.Response(200, json={"status": 2, "urls": "http://x/1.png", "text": "t"}),
                httpx.Response(200, json={"status": 2, "urls": ["https://cdn/1.png"], "text": "t"}),
            ],
        },
    )

    response = await handler.generate_async(config, request_)

    assert response.attempts == 2
    assert [a.url for a in response.data] == ["https://cdn/1.png"]
    assert len(transport.calls(*JOB)) == 2
