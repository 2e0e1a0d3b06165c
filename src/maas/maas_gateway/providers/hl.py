"""HL provider handler for Hailuo video tasks."""

import json

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from maas.maas_gateway.client import (
    ai_service_base,
    parse_body,
    parse_json_object,
    upstream_error_message,
)
from maas.maas_gateway.exceptions import (
    FileResolutionError,
    PollTransientError,
    ValidationError,
)
from maas.maas_gateway.logging import ProviderLogger
from maas.maas_gateway.models import (
    AnyDict,
    GenerationConfig,
    GenerationRequest,
    GenerationTask,
)
from maas.maas_gateway.normalizer import hl_assets
from maas.maas_gateway.polling import PollResult, status_text
from maas.maas_gateway.providers.base import TaskProviderHandler
from maas.maas_gateway.utils import first_non_empty

_LOGGER_NAME = "maas.maas_gateway.providers.hl"

# Candidate task-id locations on create responses, in priority order
TASK_ID_CANDIDATES: list[tuple[str, ...]] = [
    ("taskId",),
    ("task_id",),
    ("id",),
    ("requestId",),
    ("data", "taskId"),
    ("data", "task_id"),
    ("data", "id"),
    ("result", "taskId"),
    ("result", "task_id"),
    ("result", "id"),
]

# Statuses that keep the task polling: Preparing, Queueing, Processing
HL_STATUS_SUCCEEDED = "SUCCESS"
HL_STATUS_FAILED = "FAIL"


class HLTaskCreated(BaseModel):
    """Documented create-task response shape."""

    task_id: str | int = Field(alias="taskId")

    model_config = ConfigDict(extra="allow")


def extract_hl_task_id(body: AnyDict, allow_fallback: bool = True) -> str | None:
    """Read the task id from an HL create response.

    The documented ``taskId`` field is tried first. With ``allow_fallback``
    the remaining ``TASK_ID_CANDIDATES`` are probed in order and the first
    non-empty value wins.
    """
    try:
        created = HLTaskCreated.model_validate(body)
        if created.task_id not in ("", 0):
            return str(created.task_id)
    except PydanticValidationError:
        pass

    if not allow_fallback:
        return None
    task_id = first_non_empty(body, TASK_ID_CANDIDATES)
    return None if task_id is None else str(task_id)


def parse_hl_status(status_data: AnyDict) -> PollResult:
    """Classify one HL task status payload.

    A top-level ``error`` fails the task regardless of ``status``. ``SUCCESS``
    is reported as ``pending`` here with the file id left in ``payload``; the
    handler resolves the file before declaring success. A non-string
    ``status`` raises ``PollTransientError``.
    """
    if status_data.get("error"):
        raw_status = status_data.get("status")
        return PollResult(
            outcome="failed",
            raw_status=raw_status if isinstance(raw_status, str) else None,
            payload=status_data,
            reason=upstream_error_message({"error": status_data["error"]}),
        )

    raw_status = status_text(status_data, status_data.get("status"), "status")
    status = (raw_status or "").upper()
    if status == HL_STATUS_FAILED:
        return PollResult(
            outcome="failed",
            raw_status=raw_status,
            payload=status_data,
            reason=str(
                status_data.get("failReason")
                or status_data.get("message")
                or "Unknown error"
            ),
        )
    return PollResult(outcome="pending", raw_status=raw_status, payload=status_data)


class HLProviderHandler(TaskProviderHandler):
    """Handler for HL text-to-video generation.

    Creates tasks at ``.../hailuo/video/generate``, polls
    ``.../hailuo/video/task/{taskId}`` and, once the task reports
    ``SUCCESS``, resolves the result with ``.../hailuo/video/file``.
    """

    provider = "hl"
    label = "HL video task"
    logger_name = _LOGGER_NAME

    def _base_url(self, config: GenerationConfig) -> str:
        return f"{ai_service_base(config.base_url, config.endpoint_path)}/hailuo/video"

    def _convert_request(
        self, config: GenerationConfig, request: GenerationRequest
    ) -> AnyDict:
        model = config.model or request.model or ""
        if "t2v" not in model.lower():
            raise ValidationError(
                f"Unsupported HL model '{model}': only text-to-video (t2v) models are supported",
                provider=config.provider,
                model=model,
            )
        if not (request.prompt or "").strip():
            raise ValidationError(
                "T2V models require a prompt",
                provider=config.provider,
                model=model,
            )

        payload: AnyDict = {
            "model": model,
            "promptOptimizer": True,
            "prompt": request.prompt,
        }
        if request.image:
            payload["firstFrameImage"] = request.image
        return payload

    def _create_url(self, config: GenerationConfig, request: GenerationRequest) -> str:
        return f"{self._base_url(config)}/generate"

    def _extract_task_id(self, config: GenerationConfig, body: AnyDict) -> str | None:
        return extract_hl_task_id(
            body, allow_fallback=bool(config.provider_config.get("task_id_fallback", True))
        )

    def _missing_task_id_message(self, body: AnyDict) -> str:
        if body.get("error"):
            return f"Upstream returned an error: {upstream_error_message(body)}"
        return f"No task ID in HL create response: {json.dumps(body, ensure_ascii=False)}"

    async def _resolve_file(
        self,
        client: httpx.AsyncClient,
        config: GenerationConfig,
        task_id: str,
        file_id: str,
    ) -> str:
        """Look up the media URL for a finished task's file id."""
        logger = ProviderLogger(config.provider, config.model, self.logger_name, task_id)
        url = f"{self._base_url(config)}/file"
        try:
            response = await client.get(url, params={"taskId": task_id, "fileId": file_id})
        except httpx.HTTPError as ex:
            raise FileResolutionError(
                f"Failed to fetch video URL: {ex}",
                provider=config.provider,
                model=config.model,
                task_id=task_id,
                raw_response={"error": str(ex)},
            ) from ex

        if not response.is_success:
            raise FileResolutionError(
                f"Failed to fetch video URL: {response.status_code}",
                provider=config.provider,
                model=config.model,
                task_id=task_id,
                raw_response=parse_body(response),
                status_code=response.status_code,
            )

        try:
            file_data = parse_json_object(response)
        except ValueError as ex:
            raise FileResolutionError(
                f"Malformed file response: {ex}",
                provider=config.provider,
                model=config.model,
                task_id=task_id,
                raw_response={"body": response.text},
                status_code=response.status_code,
            ) from ex

        media_url = file_data.get("mediaUrl")
        if not media_url:
            raise FileResolutionError(
                "File response has no mediaUrl",
                provider=config.provider,
                model=config.model,
                task_id=task_id,
                raw_response=file_data,
                status_code=response.status_code,
            )
        logger.debug("Resolved video file", {"file_id": file_id})
        return str(media_url)

    async def _check_status(
        self,
        client: httpx.AsyncClient,
        config: GenerationConfig,
        request: GenerationRequest,
        task: GenerationTask,
    ) -> PollResult:
        status_data = await self._fetch_status(
            client, f"{self._base_url(config)}/task/{task.task_id}"
        )
        result = parse_hl_status(status_data)
        if result.outcome != "pending":
            return result
        if (result.raw_status or "").upper() != HL_STATUS_SUCCEEDED:
            return result

        file_id = status_data.get("fileId") or status_data.get("file_id")
        if not file_id:
            raise PollTransientError(
                "SUCCESS status without a file id",
                provider=config.provider,
                model=config.model,
                task_id=task.task_id,
                raw_response=status_data,
            )

        media_url = await self._resolve_file(client, config, task.task_id, str(file_id))
        return PollResult(
            outcome="succeeded",
            raw_status=result.raw_status,
            payload=status_data,
            artifact=hl_assets(media_url, request.prompt),
        )
