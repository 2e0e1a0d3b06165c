"""KL provider handler for Kling video tasks."""

from typing import Literal

import httpx
from typing_extensions import TypedDict

from maas.maas_gateway.client import ai_service_base
from maas.maas_gateway.exceptions import PollTransientError, TaskFailedError
from maas.maas_gateway.logging import ProviderLogger
from maas.maas_gateway.models import (
    AnyDict,
    GenerationConfig,
    GenerationRequest,
    GenerationTask,
)
from maas.maas_gateway.normalizer import kl_assets
from maas.maas_gateway.polling import PollResult, status_text
from maas.maas_gateway.providers.base import TaskProviderHandler
from maas.maas_gateway.utils import validate_model_params

_LOGGER_NAME = "maas.maas_gateway.providers.kl"
DEFAULT_KL_MODEL = "kling-v1"

KLMode = Literal["text2video", "image2video"]


class KlingVideoParams(TypedDict, total=False):
    """Kling parameters passable as extra request fields."""

    negative_prompt: str
    cfg_scale: float  # 0-1
    mode: str  # "std" | "pro"
    aspect_ratio: str  # "16:9" | "9:16" | "1:1"
    duration: str  # "5" | "10"
    image_tail: str
    callback_url: str


def kl_mode(request: GenerationRequest) -> KLMode:
    """Requests carrying an image go to image2video, all others to text2video."""
    return "image2video" if request.image else "text2video"


def parse_kl_status(status_data: AnyDict) -> PollResult:
    """Classify one KL task status payload.

    ``succeed`` comes back without an artifact; the handler checks the videos
    list before accepting it. ``failed`` carries ``task_status_msg``. Any
    other value (``submitted``, ``processing``) keeps polling. A ``data``
    that is not an object, or a non-string ``task_status``, raises
    ``PollTransientError``.
    """
    inner = status_data.get("data") or {}
    if not isinstance(inner, dict):
        raise PollTransientError(
            f"Malformed status response: 'data' is {type(inner).__name__}, expected an object",
            raw_response=status_data,
        )
    task_status = status_text(status_data, inner.get("task_status"), "data.task_status")

    if task_status == "failed":
        return PollResult(
            outcome="failed",
            raw_status=task_status,
            payload=status_data,
            reason=str(inner.get("task_status_msg") or "Unknown error"),
        )
    if task_status == "succeed":
        return PollResult(outcome="succeeded", raw_status=task_status, payload=status_data)
    return PollResult(outcome="pending", raw_status=task_status, payload=status_data)


class KLProviderHandler(TaskProviderHandler):
    """Handler for KL text2video and image2video generation."""

    provider = "kl"
    label = "KL video task"
    logger_name = _LOGGER_NAME

    def _base_url(self, config: GenerationConfig, request: GenerationRequest) -> str:
        base = ai_service_base(config.base_url, config.endpoint_path)
        return f"{base}/kling/videos/{kl_mode(request)}"

    def _validate_params(
        self, config: GenerationConfig, request: GenerationRequest
    ) -> AnyDict:
        """Validate extra_params against KlingVideoParams schema."""
        return (
            validate_model_params(
                schema=KlingVideoParams,
                data=request.extra_params,
                provider=config.provider,
                model=config.model,
            )
            if request.extra_params
            else {}
        )

    def _convert_request(
        self, config: GenerationConfig, request: GenerationRequest
    ) -> AnyDict:
        payload: AnyDict = {"model_name": config.model or DEFAULT_KL_MODEL}
        if (request.prompt or "").strip():
            payload["prompt"] = request.prompt
        if request.image:
            # URLs and data: URLs are both passed through
            payload["image"] = request.image
        payload.update(self._validate_params(config, request))
        return payload

    def _create_url(self, config: GenerationConfig, request: GenerationRequest) -> str:
        return self._base_url(config, request)

    def _extract_task_id(self, config: GenerationConfig, body: AnyDict) -> str | None:
        data = body.get("data")
        if not isinstance(data, dict):
            return None
        task_id = data.get("task_id")
        return str(task_id) if task_id not in (None, "") else None

    def _missing_task_id_message(self, body: AnyDict) -> str:
        return f"No task ID in KL create response: {body}"

    async def _check_status(
        self,
        client: httpx.AsyncClient,
        config: GenerationConfig,
        request: GenerationRequest,
        task: GenerationTask,
    ) -> PollResult:
        status_data = await self._fetch_status(
            client, f"{self._base_url(config, request)}/{task.task_id}"
        )
        result = parse_kl_status(status_data)
        if result.outcome != "succeeded":
            return result

        task_result = status_data["data"].get("task_result") or {}
        videos = task_result.get("videos") if isinstance(task_result, dict) else None
        if videos is not None and not isinstance(videos, list):
            raise PollTransientError(
                "Malformed status response: 'videos' is not a list",
                provider=config.provider,
                model=config.model,
                task_id=task.task_id,
                raw_response=status_data,
            )
        first = videos[0] if videos else None
        if not isinstance(first, dict) or not first.get("url"):
            ProviderLogger(
                config.provider, config.model, self.logger_name, task.task_id
            ).error("Task succeeded without a video URL", {"task_result": task_result})
            raise TaskFailedError(
                "KL task succeeded but returned no video URL",
                provider=config.provider,
                model=config.model,
                task_id=task.task_id,
                raw_response=status_data,
            )

        result.artifact = kl_assets(videos, request.prompt)
        return result
