"""Core data models for task submission, polling and model configuration."""

from collections.abc import Awaitable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import (
    Any,
    Callable,
    ClassVar,
    Literal,
    Protocol,
    TypeAlias,
    cast,
)

from pydantic import BaseModel, ConfigDict, Field, model_validator

# ==================== Type Aliases ====================
AnyDict: TypeAlias = dict[str, Any]

ProviderType = Literal["mj", "hl", "kl"]
TaskState = Literal["pending", "processing", "succeeded", "failed", "timed_out"]
UpdateStatus = Literal["pending", "processing", "retrying", "succeeded", "failed"]
ModelKind = Literal["image", "video"]
Capability = Literal["text_to_image", "text_to_video", "image_to_video", "speech_to_video"]
DetectionMethod = Literal["config_api", "individual_model_fetch", "static_configuration"]

DEFAULT_MAX_POLL_ATTEMPTS: dict[str, int] = {"mj": 60, "hl": 120, "kl": 120}
DEFAULT_REVISED_PROMPT = "视频生成"

# Progress callback types
SyncProgressCallback = Callable[["GenerationUpdate"], None]
AsyncProgressCallback = Callable[["GenerationUpdate"], Awaitable[None]]
ProgressCallback = SyncProgressCallback | AsyncProgressCallback


# ==================== Configuration ====================


class GenerationConfig(BaseModel):
    """Per-request configuration for a generation task.

    Built from the caller's headers on every HTTP request. Immutable; use
    ``model_copy(update={...})`` to change fields.

    Example:
        ```python
        config = GenerationConfig(
            provider="hl",
            model="MaaS_HL_Video_t2v",
            api_key="sk-...",
            base_url="https://genaiapi.cloudsway.net",
            endpoint_path="UfRLJwuMWPdfKWQg",
        )
        ```
    """

    provider: ProviderType = Field(description="Provider family: 'mj', 'hl' or 'kl'.")
    model: str = Field(default="", description="Model identifier sent upstream.")
    api_key: str = Field(description="Bearer token for the upstream gateway.")
    base_url: str = Field(description="Gateway base URL (the X-API-Endpoint header).")
    endpoint_path: str = Field(
        description="Provider routing segment, or a full URL for HL/KL."
    )
    poll_interval: float = Field(default=5.0, description="Seconds between status polls.")
    max_poll_attempts: int = Field(
        default=120, description="Maximum number of status polls before timing out."
    )
    timeout: float = Field(
        default=60.0, description="Network timeout in seconds for each upstream call."
    )
    provider_config: dict[str, Any] = Field(
        default_factory=dict,
        description="Provider-specific switches, e.g. {'task_id_fallback': False}.",
    )

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)

    @model_validator(mode="before")
    @classmethod
    def default_poll_budget(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("max_poll_attempts") is None:
            data = dict(data)
            data["max_poll_attempts"] = DEFAULT_MAX_POLL_ATTEMPTS.get(
                str(data.get("provider")), 120
            )
        return data


# ==================== Request ====================


class GenerationRequest(BaseModel):
    """Normalized generation request.

    Provider-specific fields with no standard equivalent are captured into
    ``extra_params`` by the ``capture_extra_fields`` validator.
    """

    prompt: str | None = Field(default=None, description="Text prompt.")
    image: str | None = Field(
        default=None, description="Input image as a URL or data URL."
    )
    audio: str | None = Field(default=None, description="Input audio URL.")
    model: str | None = Field(default=None, description="Model identifier.")

    extra_params: dict[str, object] = Field(
        default_factory=dict,
        description="Provider- or model-specific parameters with no standard equivalent.",
    )

    @model_validator(mode="before")
    @classmethod
    def capture_extra_fields(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        extra_params: dict[str, object] = cast(
            dict[str, object], data.pop("extra_params", None) or {}
        )

        known_fields = set(cls.model_fields.keys())
        extra = {k: v for k, v in data.items() if k not in known_fields}
        for k in extra.keys():
            _ = data.pop(k)

        extra_params.update(extra)
        data["extra_params"] = extra_params
        return data


# ==================== Task ====================

_TERMINAL_STATES: frozenset[str] = frozenset({"succeeded", "failed", "timed_out"})
_ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"processing", "succeeded", "failed", "timed_out"}),
    "processing": frozenset({"processing", "succeeded", "failed", "timed_out"}),
    "succeeded": frozenset(),
    "failed": frozenset(),
    "timed_out": frozenset(),
}


@dataclass
class GeneratedAsset:
    """A single generated artifact."""

    url: str
    revised_prompt: str | None = None

    def __post_init__(self) -> None:
        if not self.url:
            raise ValueError("GeneratedAsset.url must be non-empty")


@dataclass
class GenerationTask:
    """A task created on an upstream provider, owned by one poll loop.

    The state only moves forward: ``pending -> processing -> succeeded |
    failed | timed_out``. ``artifact`` is set only on success and
    ``failure_reason`` only on failure or timeout.
    """

    task_id: str
    provider: ProviderType
    model: str = ""
    state: TaskState = "pending"
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    attempts: int = 0
    artifact: list[GeneratedAsset] | None = None
    failure_reason: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in _TERMINAL_STATES

    def _transition(self, new_state: TaskState) -> None:
        if new_state not in _ALLOWED_TRANSITIONS[self.state]:
            raise ValueError(
                f"Illegal task transition {self.state} -> {new_state} for {self.task_id}"
            )
        self.state = new_state

    def mark_processing(self) -> None:
        self._transition("processing")

    def mark_succeeded(self, artifact: list[GeneratedAsset]) -> None:
        if not artifact:
            raise ValueError("A succeeded task needs at least one artifact")
        self._transition("succeeded")
        self.artifact = list(artifact)

    def mark_failed(self, reason: str) -> None:
        self._transition("failed")
        self.failure_reason = reason

    def mark_timed_out(self, reason: str) -> None:
        self._transition("timed_out")
        self.failure_reason = reason


# ==================== Response ====================


class GenerationResponse(BaseModel):
    """Canonical result of a succeeded task.

    ``to_payload()`` gives the OpenAI-style body returned to HTTP callers:
    ``{"created": <unix ts>, "data": [{"url", "revised_prompt"}]}``.
    """

    created: int = Field(description="Unix timestamp (seconds) of normalization.")
    data: list[GeneratedAsset] = Field(description="Generated assets, never empty.")
    task_id: str | None = Field(default=None, description="Upstream task ID.")
    provider: ProviderType | None = Field(default=None)
    attempts: int = Field(default=0, description="Status polls performed.")
    raw_response: AnyDict = Field(default_factory=dict)

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)

    def to_payload(self) -> AnyDict:
        return {
            "created": self.created,
            "data": [
                {"url": asset.url, "revised_prompt": asset.revised_prompt}
                for asset in self.data
            ],
        }


class GenerationUpdate(BaseModel):
    """Progress event emitted once per poll, and on each absorbed poll error."""

    task_id: str
    provider: ProviderType
    status: UpdateStatus
    attempt: int = 0
    raw_status: str | None = None
    error: str | None = None


# ==================== Handler Protocol ====================


class ProviderHandler(Protocol):
    """Protocol every provider handler implements."""

    async def generate_async(
        self,
        config: GenerationConfig,
        request: GenerationRequest,
        on_progress: ProgressCallback | None = None,
    ) -> GenerationResponse: ...


# ==================== Model Configuration ====================


class _CamelModel(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(populate_by_name=True)

    def to_payload(self) -> AnyDict:
        return self.model_dump(by_alias=True, exclude_none=True)


class ModelEndpointConfig(_CamelModel):
    """Endpoint routing for one model id."""

    endpoint: str
    type: str
    real_model_id: str | None = Field(default=None, alias="realModelId")


class ModelConfigSnapshot(_CamelModel):
    """One wholesale result of model endpoint detection."""

    model_configs: dict[str, ModelEndpointConfig] = Field(
        default_factory=dict, alias="modelConfigs"
    )
    detection_method: DetectionMethod = Field(alias="detectionMethod")
    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )


class EndpointSettings(_CamelModel):
    """Provider paths folded out of a snapshot, as a client would store them."""

    mj_endpoint_path: str = Field(default="", alias="mjEndpointPath")
    hl_endpoint_path: str = Field(default="", alias="hlEndpointPath")
    mj_model_endpoints: dict[str, str] = Field(
        default_factory=dict, alias="mjModelEndpoints"
    )
    hl_model_endpoints: dict[str, str] = Field(
        default_factory=dict, alias="hlModelEndpoints"
    )


class ModelSpec(BaseModel):
    """Registry entry describing which provider serves a model id."""

    model_id: str = Field(min_length=1)
    provider: ProviderType
    kind: ModelKind
    capabilities: frozenset[Capability] = Field(default_factory=frozenset)
    default_endpoint: str | None = None

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def check_capabilities(self) -> "ModelSpec":
        image_caps = {"text_to_image"}
        if self.kind == "image" and not self.capabilities <= image_caps:
            raise ValueError(f"Image model {self.model_id} has video capabilities")
        if self.kind == "video" and self.capabilities & image_caps:
            raise ValueError(f"Video model {self.model_id} has image capabilities")
        return self
