import functools
import traceback
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, TypeVar, cast

from pydantic import ValidationError as PydanticValidationError

from maas.maas_gateway.logging import log_error

if TYPE_CHECKING:
    from maas.maas_gateway.models import (
        GenerationConfig,
        GenerationRequest,
        GenerationResponse,
        ProgressCallback,
        ProviderHandler,
    )

AnyDict = dict[str, Any]

F = TypeVar("F", bound=Callable[..., Awaitable["GenerationResponse"]])


class MaasException(Exception):
    """Base class for all exceptions raised by maas-gateway.

    Carries structured context (provider, model, task ID, raw upstream
    response) so a failed task can be diagnosed from the exception alone.

    Attributes:
        message: Human-readable error description.
        provider: Provider tag (``"mj"``, ``"hl"``, ``"kl"``) or ``None``.
        model: Model identifier at the time of the error.
        task_id: Upstream task ID, when one had been assigned.
        raw_response: Unmodified upstream response payload, if available.
    """

    message: str
    provider: str | None
    model: str | None
    task_id: str | None
    raw_response: AnyDict | None

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        model: str | None = None,
        task_id: str | None = None,
        raw_response: AnyDict | None = None,
    ):
        self.message = message
        self.provider = provider
        self.model = model
        self.task_id = task_id
        self.raw_response = raw_response
        super().__init__(message)


class ValidationError(MaasException):
    """Raised when a request is missing configuration or has invalid parameters.

    Surfaced to HTTP callers as a 400.
    """

    pass


class UpstreamError(MaasException):
    """Raised on a non-2xx response from a plain proxied upstream call.

    Attributes:
        status_code: HTTP status code returned by the upstream gateway.
    """

    status_code: int | None

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        model: str | None = None,
        task_id: str | None = None,
        raw_response: AnyDict | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message, provider, model, task_id, raw_response)
        self.status_code = status_code


class TaskCreationError(UpstreamError):
    """Raised when the provider rejects the create-task call.

    ``raw_response`` holds the parsed body, or ``{"body": <text>}`` when the
    body was not JSON.
    """

    pass


class TaskIdMissingError(MaasException):
    """Raised when a successful create-task response carries no task ID.

    The full response body is kept in ``raw_response`` for diagnosis.
    """

    pass


class PollTransientError(MaasException):
    """A single status check failed in a way that may succeed on the next poll.

    Covers network errors, non-2xx status responses and malformed bodies.
    The poller absorbs these; they never reach the caller.
    """

    pass


class TaskFailedError(MaasException):
    """Raised when the provider reports that the task failed.

    The provider's failure reason is preserved in ``message``.
    """

    pass


class TaskTimedOutError(MaasException):
    """Raised when the attempt budget is exhausted without a terminal state.

    Attributes:
        timeout_seconds: Nominal budget, ``max_poll_attempts * poll_interval``.
        attempts: Number of status polls performed.
    """

    timeout_seconds: float | None
    attempts: int | None

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        model: str | None = None,
        task_id: str | None = None,
        raw_response: AnyDict | None = None,
        timeout_seconds: float | None = None,
        attempts: int | None = None,
    ):
        super().__init__(message, provider, model, task_id, raw_response)
        self.timeout_seconds = timeout_seconds
        self.attempts = attempts


class FileResolutionError(MaasException):
    """Raised when the secondary file fetch for a finished HL task fails.

    Attributes:
        status_code: HTTP status of the file lookup, if it returned one.
    """

    status_code: int | None

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        model: str | None = None,
        task_id: str | None = None,
        raw_response: AnyDict | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message, provider, model, task_id, raw_response)
        self.status_code = status_code


class ConfigDetectionError(MaasException):
    """Raised inside model-endpoint detection when a probe fails.

    Always caught by the detector, which falls back to the static table.
    """

    pass


def is_transient_error(error: Exception) -> bool:
    """Return True if a status-check error should be retried on the next poll.

    Only ``PollTransientError`` is transient. Terminal provider failures,
    file resolution failures and timeouts end the task.
    """
    return isinstance(error, PollTransientError)


def http_status_for(error: Exception) -> int:
    """Map an exception raised by a generation route to an HTTP status code."""
    if isinstance(error, ValidationError):
        return 400
    return 500


def handle_generation_errors(func: F) -> F:
    """Decorator that wraps unhandled exceptions in ``MaasException``.

    Apply to provider ``generate_async`` methods.

    Behaviour:
    - ``MaasException`` subclasses propagate unchanged.
    - ``PydanticValidationError`` propagates unchanged.
    - Any other exception is wrapped in ``MaasException`` with the traceback
      captured in ``raw_response`` and logged at ERROR level.
    """

    @functools.wraps(func)
    async def async_wrapper(
        self: "ProviderHandler",
        config: "GenerationConfig",
        request: "GenerationRequest",
        on_progress: "ProgressCallback | None" = None,
    ) -> "GenerationResponse":
        try:
            return await func(self, config, request, on_progress)
        except (PydanticValidationError, MaasException):
            raise
        except Exception as ex:
            log_error(
                f"Unknown error while generating: {ex}",
                context={"provider": config.provider, "model": config.model},
                logger_name="maas.maas_gateway.exceptions",
                exc_info=True,
            )
            raise MaasException(
                f"Unknown error while generating: {ex}",
                provider=config.provider,
                model=config.model,
                raw_response={
                    "error": str(ex),
                    "error_type": type(ex).__name__,
                    "traceback": traceback.format_exc(),
                },
            ) from ex

    return cast(F, async_wrapper)
