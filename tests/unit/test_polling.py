"""Tests for the TaskPoller loop."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from maas.maas_gateway.exceptions import (
    FileResolutionError,
    PollTransientError,
    TaskFailedError,
    TaskTimedOutError,
)
from maas.maas_gateway.models import GeneratedAsset, GenerationTask
from maas.maas_gateway.polling import PollResult, TaskPoller, emit_update, status_text


def _pending(status="1"):
    return PollResult(outcome="pending", raw_status=status)


def _succeeded(url="https://cdn/1.png"):
    return PollResult(
        outcome="succeeded", raw_status="2", artifact=[GeneratedAsset(url=url, revised_prompt="p")]
    )


@pytest.fixture
def task():
    return GenerationTask(task_id="task-1", provider="mj", model="MaaS-MJ")


@pytest.fixture
def sleep():
    return AsyncMock()


def test_poller_rejects_empty_budget():
    with pytest.raises(ValueError):
        TaskPoller(interval=5, max_attempts=0)


def test_budget_seconds():
    assert TaskPoller(interval=5, max_attempts=60).budget_seconds == 300


@pytest.mark.asyncio
async def test_success_on_first_poll(task, sleep):
    check = AsyncMock(return_value=_succeeded())
    poller = TaskPoller(interval=5, max_attempts=3, sleep=sleep)

    result = await poller.run(task, check)

    assert result is task
    assert task.state == "succeeded"
    assert task.attempts == 1
    sleep.assert_awaited_once_with(5)


@pytest.mark.asyncio
async def test_sleeps_before_every_check(task, sleep):
    check = AsyncMock(side_effect=[_pending(), _pending(), _succeeded()])
    poller = TaskPoller(interval=2, max_attempts=10, sleep=sleep)

    await poller.run(task, check)

    assert task.attempts == 3
    assert sleep.await_count == 3
    assert check.await_count == 3


@pytest.mark.asyncio
async def test_success_on_last_allowed_attempt(task, sleep):
    check = AsyncMock(side_effect=[_pending(), _pending(), _succeeded()])
    poller = TaskPoller(interval=0, max_attempts=3, sleep=sleep)

    await poller.run(task, check)

    assert task.state == "succeeded"
    assert task.attempts == 3


@pytest.mark.asyncio
async def test_times_out_after_max_attempts(task, sleep):
    check = AsyncMock(return_value=_pending())
    poller = TaskPoller(interval=5, max_attempts=3, sleep=sleep)

    with pytest.raises(TaskTimedOutError) as exc_info:
        await poller.run(task, check, label="MJ image task")

    error = exc_info.value
    assert error.attempts == 3
    assert error.timeout_seconds == 15
    assert error.task_id == "task-1"
    assert "MJ image task timed out after 3 attempts" in error.message
    assert check.await_count == 3
    assert task.state == "timed_out"


@pytest.mark.asyncio
async def test_provider_failure_raises_task_failed(task, sleep):
    failed = PollResult(outcome="failed", raw_status="3", payload={"comment": "banned"}, reason="banned")
    check = AsyncMock(side_effect=[_pending(), failed])
    poller = TaskPoller(interval=0, max_attempts=10, sleep=sleep)

    with pytest.raises(TaskFailedError) as exc_info:
        await poller.run(task, check, label="MJ image task")

    assert exc_info.value.message == "MJ image task failed: banned"
    assert exc_info.value.raw_response == {"comment": "banned"}
    assert task.state == "failed"
    assert task.failure_reason == "banned"
    assert check.await_count == 2


@pytest.mark.asyncio
async def test_transient_errors_are_absorbed_and_consume_attempts(task, sleep):
    check = AsyncMock(
        side_effect=[
            PollTransientError("Status check returned HTTP 502"),
            httpx.ConnectError("connection reset"),
            _succeeded(),
        ]
    )
    updates = []
    poller = TaskPoller(interval=0, max_attempts=5, sleep=sleep)

    await poller.run(task, check, on_progress=updates.append)

    assert task.state == "succeeded"
    assert task.attempts == 3
    assert [u.status for u in updates] == ["retrying", "retrying", "succeeded"]
    assert updates[0].error == "Status check returned HTTP 502"
    assert updates[1].attempt == 2


@pytest.mark.asyncio
async def test_only_transient_errors_until_budget_is_timeout(task, sleep):
    check = AsyncMock(side_effect=PollTransientError("HTTP 500"))
    poller = TaskPoller(interval=0, max_attempts=2, sleep=sleep)

    with pytest.raises(TaskTimedOutError):
        await poller.run(task, check)
    assert task.attempts == 2


@pytest.mark.asyncio
async def test_non_transient_error_marks_failed_and_propagates(task, sleep):
    check = AsyncMock(side_effect=FileResolutionError("File response has no mediaUrl"))
    poller = TaskPoller(interval=0, max_attempts=5, sleep=sleep)

    with pytest.raises(FileResolutionError):
        await poller.run(task, check)

    assert task.state == "failed"
    assert check.await_count == 1


@pytest.mark.asyncio
async def test_progress_updates_for_non_terminal_statuses(task, sleep):
    check = AsyncMock(side_effect=[_pending("0"), _pending("1"), _succeeded()])
    on_progress = AsyncMock()
    poller = TaskPoller(interval=0, max_attempts=5, sleep=sleep)

    await poller.run(task, check, on_progress=on_progress)

    statuses = [call.args[0].status for call in on_progress.await_args_list]
    raw = [call.args[0].raw_status for call in on_progress.await_args_list]
    assert statuses == ["processing", "processing", "succeeded"]
    assert raw == ["0", "1", "2"]


@pytest.mark.asyncio
async def test_emit_update_supports_sync_and_async_callbacks():
    from maas.maas_gateway.models import GenerationUpdate

    update = GenerationUpdate(task_id="t", provider="kl", status="pending")
    sync_callback = MagicMock(return_value=None)
    async_callback = AsyncMock()

    await emit_update(sync_callback, update)
    await emit_update(async_callback, update)
    await emit_update(None, update)

    sync_callback.assert_called_once_with(update)
    async_callback.assert_awaited_once_with(update)


def test_status_text_accepts_strings_and_missing_values():
    assert status_text({}, None, "status") is None
    assert status_text({"status": "Queueing"}, "Queueing", "status") == "Queueing"


def test_status_text_rejects_other_types():
    body = {"status": 1}
    with pytest.raises(PollTransientError) as exc_info:
        status_text(body, 1, "status")
    assert "'status' is int" in exc_info.value.message
    assert exc_info.value.raw_response == body
