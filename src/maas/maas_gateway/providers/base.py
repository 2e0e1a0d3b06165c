"""Shared submit/poll/normalize flow for MaaS task providers."""

from typing import Any, ClassVar

import httpx

from maas.maas_gateway.client import (
    create_async_client,
    parse_body,
    parse_json_object,
    upstream_error_message,
)
from maas.maas_gateway.exceptions import (
    MaasException,
    PollTransientError,
    TaskCreationError,
    TaskIdMissingError,
    handle_generation_errors,
)
from maas.maas_gateway.logging import ProviderLogger
from maas.maas_gateway.models import (
    AnyDict,
    GenerationConfig,
    GenerationRequest,
    GenerationResponse,
    GenerationTask,
    GenerationUpdate,
    ProgressCallback,
    ProviderType,
)
from maas.maas_gateway.normalizer import build_response
from maas.maas_gateway.polling import PollResult, TaskPoller, emit_update


class TaskProviderHandler:
    """Base class for providers that create a task and poll it to completion.

    Subclasses supply the provider-specific pieces: request conversion, the
    create URL, task-id extraction and one status check. The flow itself is
    a single create call (no retry), a ``TaskPoller`` loop, then
    normalization into ``GenerationResponse``.
    """

    provider: ClassVar[ProviderType]
    label: ClassVar[str]
    logger_name: ClassVar[str]

    def __init__(self) -> None:
        self._async_client_cache: dict[str, httpx.AsyncClient] = {}

    def _get_client(self, config: GenerationConfig) -> httpx.AsyncClient:
        """Get or create an httpx client, cached by api_key and timeout."""
        cache_key = f"{config.api_key}:{config.timeout}"
        if cache_key not in self._async_client_cache:
            logger = ProviderLogger(config.provider, config.model, self.logger_name)
            logger.debug("Creating new async httpx client")
            self._async_client_cache[cache_key] = create_async_client(
                config.api_key, config.timeout
            )
        return self._async_client_cache[cache_key]

    async def aclose(self) -> None:
        for client in self._async_client_cache.values():
            await client.aclose()
        self._async_client_cache.clear()

    # ---- provider-specific hooks ----

    def _convert_request(
        self, config: GenerationConfig, request: GenerationRequest
    ) -> AnyDict:
        raise NotImplementedError

    def _create_url(self, config: GenerationConfig, request: GenerationRequest) -> str:
        raise NotImplementedError

    def _extract_task_id(self, config: GenerationConfig, body: AnyDict) -> str | None:
        raise NotImplementedError

    async def _check_status(
        self,
        client: httpx.AsyncClient,
        config: GenerationConfig,
        request: GenerationRequest,
        task: GenerationTask,
    ) -> PollResult:
        raise NotImplementedError

    def _missing_task_id_message(self, body: AnyDict) -> str:
        return f"No task ID in {self.label} create response: {body}"

    # ---- shared flow ----

    async def _fetch_status(
        self, client: httpx.AsyncClient, url: str, params: dict[str, Any] | None = None
    ) -> AnyDict:
        """GET a status URL, turning bad responses into ``PollTransientError``."""
        response = await client.get(url, params=params)
        if not response.is_success:
            raise PollTransientError(
                f"Status check returned HTTP {response.status_code}",
                provider=self.provider,
                raw_response=parse_body(response),
            )
        try:
            return parse_json_object(response)
        except ValueError as ex:
            raise PollTransientError(
                f"Malformed status response: {ex}",
                provider=self.provider,
                raw_response={"body": response.text},
            ) from ex

    async def _submit(
        self,
        client: httpx.AsyncClient,
        config: GenerationConfig,
        request: GenerationRequest,
        payload: AnyDict,
    ) -> tuple[str, AnyDict]:
        """POST the create-task call once and return ``(task_id, body)``."""
        url = self._create_url(config, request)
        logger = ProviderLogger(config.provider, config.model, self.logger_name)
        logger.debug("Creating task", {"url": url})

        try:
            response = await client.post(url, json=payload)
        except httpx.HTTPError as ex:
            raise TaskCreationError(
                f"Failed to create {self.label}: {ex}",
                provider=config.provider,
                model=config.model,
                raw_response={"error": str(ex), "error_type": type(ex).__name__},
            ) from ex

        if not response.is_success:
            body = parse_body(response)
            logger.error(
                "Create task rejected",
                {"status_code": response.status_code, "body": body},
            )
            raise TaskCreationError(
                f"Failed to create {self.label} ({response.status_code}): "
                f"{upstream_error_message(body)}",
                provider=config.provider,
                model=config.model,
                raw_response=body,
                status_code=response.status_code,
            )

        try:
            body = parse_json_object(response)
        except ValueError as ex:
            raise TaskCreationError(
                f"Failed to create {self.label}: invalid JSON response",
                provider=config.provider,
                model=config.model,
                raw_response={"body": response.text},
                status_code=response.status_code,
            ) from ex

        logger.info("Create task response", {"response_keys": sorted(body.keys())})
        task_id = self._extract_task_id(config, body)
        if not task_id:
            logger.error("No task ID found in create response", {"response": body})
            raise TaskIdMissingError(
                self._missing_task_id_message(body),
                provider=config.provider,
                model=config.model,
                raw_response=body,
            )
        return str(task_id), body

    @handle_generation_errors
    async def generate_async(
        self,
        config: GenerationConfig,
        request: GenerationRequest,
        on_progress: ProgressCallback | None = None,
    ) -> GenerationResponse:
        """Create a task, poll it to completion and return the normalized result.

        Raises:
            ValidationError: The request is not valid for this provider.
            TaskCreationError: The create call failed or was rejected.
            TaskIdMissingError: The create response carried no task ID.
            TaskFailedError: The provider reported a terminal failure.
            TaskTimedOutError: The attempt budget ran out.
            FileResolutionError: HL only, the result file lookup failed.
        """
        payload = self._convert_request(config, request)
        logger = ProviderLogger(config.provider, config.model, self.logger_name)
        logger.info("Mapped request to provider format", {"payload": payload}, redact=True)

        client = self._get_client(config)
        task_id, _ = await self._submit(client, config, request, payload)

        task = GenerationTask(task_id=task_id, provider=self.provider, model=config.model)
        logger = logger.with_request_id(task_id)
        logger.info("Task submitted")
        await emit_update(
            on_progress,
            GenerationUpdate(task_id=task_id, provider=self.provider, status="pending"),
        )

        poller = TaskPoller(config.poll_interval, config.max_poll_attempts)
        last_payload: AnyDict = {}

        async def check(current: GenerationTask) -> PollResult:
            nonlocal last_payload
            result = await self._check_status(client, config, request, current)
            last_payload = result.payload
            return result

        try:
            await poller.run(task, check, on_progress=on_progress, label=self.label)
        except MaasException as ex:
            if ex.task_id is None:
                ex.task_id = task_id
            raise

        response = build_response(task, last_payload)
        logger.info("Final generated response", {"response": response.to_payload()})
        return response
