"""MJ provider handler for diffusion image tasks."""

from typing import Any

import httpx

from maas.maas_gateway.client import join_url
from maas.maas_gateway.exceptions import PollTransientError, ValidationError
from maas.maas_gateway.models import (
    AnyDict,
    GenerationConfig,
    GenerationRequest,
    GenerationTask,
)
from maas.maas_gateway.normalizer import mj_assets
from maas.maas_gateway.polling import PollResult
from maas.maas_gateway.providers.base import TaskProviderHandler

_LOGGER_NAME = "maas.maas_gateway.providers.mj"

# Numeric job states reported by /tob/job/{id}
MJ_STATUS_SUCCEEDED = 2
MJ_STATUS_FAILED = 3


def _as_status_code(value: Any) -> int | None:
    """Integer status codes, as ints or digit strings. Anything else is ``None``."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value)
    return None


def parse_mj_status(status_data: AnyDict) -> PollResult:
    """Classify one MJ job status payload.

    ``2`` with a non-empty ``urls`` list is success, ``3`` is failure with the
    reason in ``comment``. Everything else, including ``2`` without urls,
    keeps the task polling. A ``urls`` field that is not a list raises
    ``PollTransientError``.
    """
    status = _as_status_code(status_data.get("status"))
    raw_status = None if status is None else str(status)

    if status == MJ_STATUS_SUCCEEDED:
        urls = status_data.get("urls")
        if urls is not None and not isinstance(urls, list):
            raise PollTransientError(
                f"Malformed status response: 'urls' is {type(urls).__name__}, expected a list",
                raw_response=status_data,
            )
        assets = mj_assets(status_data)
        if assets:
            return PollResult(
                outcome="succeeded",
                raw_status=raw_status,
                payload=status_data,
                artifact=assets,
            )
    elif status == MJ_STATUS_FAILED:
        return PollResult(
            outcome="failed",
            raw_status=raw_status,
            payload=status_data,
            reason=str(status_data.get("comment") or "Unknown error"),
        )

    return PollResult(outcome="pending", raw_status=raw_status, payload=status_data)


class MJProviderHandler(TaskProviderHandler):
    """Handler for MJ image generation.

    Creates a job with ``POST {endpoint}/{mjPath}/tob/diffusion`` and polls
    ``GET {endpoint}/{mjPath}/tob/job/{id}``.
    """

    provider = "mj"
    label = "MJ image task"
    logger_name = _LOGGER_NAME

    def _base_url(self, config: GenerationConfig) -> str:
        return join_url(config.base_url, config.endpoint_path, "tob")

    def _convert_request(
        self, config: GenerationConfig, request: GenerationRequest
    ) -> AnyDict:
        if not (request.prompt or "").strip():
            raise ValidationError(
                "MJ image generation requires a prompt",
                provider=config.provider,
                model=config.model,
            )
        return {"text": request.prompt}

    def _create_url(self, config: GenerationConfig, request: GenerationRequest) -> str:
        return f"{self._base_url(config)}/diffusion"

    def _extract_task_id(self, config: GenerationConfig, body: AnyDict) -> str | None:
        task_id = body.get("id")
        return str(task_id) if task_id not in (None, "") else None

    async def _check_status(
        self,
        client: httpx.AsyncClient,
        config: GenerationConfig,
        request: GenerationRequest,
        task: GenerationTask,
    ) -> PollResult:
        status_data = await self._fetch_status(
            client, f"{self._base_url(config)}/job/{task.task_id}"
        )
        return parse_mj_status(status_data)
