"""Fixed-interval polling of upstream tasks until a terminal state."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Literal

import httpx

from maas.maas_gateway.exceptions import (
    PollTransientError,
    TaskFailedError,
    TaskTimedOutError,
)
from maas.maas_gateway.logging import ProviderLogger
from maas.maas_gateway.models import (
    AnyDict,
    GeneratedAsset,
    GenerationTask,
    GenerationUpdate,
    ProgressCallback,
)

_LOGGER_NAME = "maas.maas_gateway.polling"

PollOutcome = Literal["pending", "succeeded", "failed"]


@dataclass
class PollResult:
    """Outcome of one status check.

    ``artifact`` is required when ``outcome == "succeeded"`` and ``reason``
    describes the provider failure when ``outcome == "failed"``.
    """

    outcome: PollOutcome
    raw_status: str | None = None
    payload: AnyDict = field(default_factory=dict)
    artifact: list[GeneratedAsset] = field(default_factory=list)
    reason: str | None = None


def status_text(status_data: AnyDict, value: Any, field_name: str) -> str | None:
    """Return a status field as text, ``None`` when absent.

    A present value that is not a string makes the whole body malformed and
    raises ``PollTransientError``.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        raise PollTransientError(
            f"Malformed status response: '{field_name}' is "
            f"{type(value).__name__}, expected a string",
            raw_response=status_data,
        )
    return value


StatusCheck = Callable[[GenerationTask], Awaitable[PollResult]]
Sleeper = Callable[[float], Awaitable[None]]


async def emit_update(
    on_progress: ProgressCallback | None, update: GenerationUpdate
) -> None:
    """Invoke a sync or async progress callback."""
    if on_progress is None:
        return
    result = on_progress(update)
    if asyncio.iscoroutine(result):
        await result


class TaskPoller:
    """Drives a ``GenerationTask`` to a terminal state.

    Each iteration sleeps ``interval`` seconds, then runs one status check.
    The loop ends when the check reports success or failure, or once
    ``max_attempts`` checks have been made, which yields ``TaskTimedOutError``.

    Transient check errors (``PollTransientError`` and httpx transport errors)
    are logged, reported through ``on_progress`` with status ``"retrying"`` and
    consume one attempt. Any other exception marks the task failed and
    propagates.

    The budget is counted in attempts, not wall-clock time, so slow status
    responses stretch the effective timeout beyond ``interval * max_attempts``.
    """

    def __init__(
        self,
        interval: float,
        max_attempts: int,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.interval = interval
        self.max_attempts = max_attempts
        self._sleep = sleep

    @property
    def budget_seconds(self) -> float:
        return self.interval * self.max_attempts

    async def run(
        self,
        task: GenerationTask,
        check: StatusCheck,
        on_progress: ProgressCallback | None = None,
        label: str = "Generation task",
    ) -> GenerationTask:
        """Poll until ``task`` is terminal.

        Returns:
            The same task, in state ``succeeded`` with its artifact set.

        Raises:
            TaskFailedError: The provider reported a terminal failure.
            TaskTimedOutError: ``max_attempts`` checks without a terminal state.
        """
        logger = ProviderLogger(task.provider, task.model, _LOGGER_NAME, task.task_id)

        while task.attempts < self.max_attempts:
            await self._sleep(self.interval)
            task.attempts += 1

            try:
                result = await check(task)
            except (PollTransientError, httpx.HTTPError) as ex:
                logger.warning(
                    "Status check failed, retrying on next poll",
                    {
                        "poll_attempt": task.attempts,
                        "max_attempts": self.max_attempts,
                        "error_type": type(ex).__name__,
                        "error": str(ex),
                    },
                )
                await emit_update(
                    on_progress,
                    GenerationUpdate(
                        task_id=task.task_id,
                        provider=task.provider,
                        status="retrying",
                        attempt=task.attempts,
                        error=str(ex),
                    ),
                )
                continue
            except Exception as ex:
                if not task.is_terminal:
                    task.mark_failed(str(ex))
                raise

            logger.info(
                "Progress status update",
                {"status": result.raw_status, "poll_attempt": task.attempts},
            )

            if result.outcome == "succeeded":
                task.mark_succeeded(result.artifact)
                await emit_update(
                    on_progress,
                    GenerationUpdate(
                        task_id=task.task_id,
                        provider=task.provider,
                        status="succeeded",
                        attempt=task.attempts,
                        raw_status=result.raw_status,
                    ),
                )
                return task

            if result.outcome == "failed":
                reason = result.reason or "Unknown error"
                task.mark_failed(reason)
                await emit_update(
                    on_progress,
                    GenerationUpdate(
                        task_id=task.task_id,
                        provider=task.provider,
                        status="failed",
                        attempt=task.attempts,
                        raw_status=result.raw_status,
                        error=reason,
                    ),
                )
                logger.error("Provider reported task failure", {"reason": reason})
                raise TaskFailedError(
                    f"{label} failed: {reason}",
                    provider=task.provider,
                    model=task.model,
                    task_id=task.task_id,
                    raw_response=result.payload,
                )

            task.mark_processing()
            await emit_update(
                on_progress,
                GenerationUpdate(
                    task_id=task.task_id,
                    provider=task.provider,
                    status="processing",
                    attempt=task.attempts,
                    raw_status=result.raw_status,
                ),
            )

        message = (
            f"{label} timed out after {task.attempts} attempts "
            f"({self.budget_seconds:g}s), check the result later or retry"
        )
        task.mark_timed_out(message)
        logger.error("Task timed out", {"poll_attempts": task.attempts})
        raise TaskTimedOutError(
            message,
            provider=task.provider,
            model=task.model,
            task_id=task.task_id,
            raw_response={"status": "timeout", "poll_attempts": task.attempts},
            timeout_seconds=self.budget_seconds,
            attempts=task.attempts,
        )
