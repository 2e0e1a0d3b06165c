"""MaaS Gateway - proxy and task runner for MaaS image and video generation."""

import importlib.metadata

try:
    __version__ = importlib.metadata.version("maas-gateway")
except importlib.metadata.PackageNotFoundError:
    __version__ = "0.1.0"

from .api import (
    generate_async,
    get_model_configs_async,
    register_provider,
    resolve_endpoint_settings_async,
)
from .exceptions import (
    ConfigDetectionError,
    FileResolutionError,
    MaasException,
    PollTransientError,
    TaskCreationError,
    TaskFailedError,
    TaskIdMissingError,
    TaskTimedOutError,
    UpstreamError,
    ValidationError,
)
from .models import (
    EndpointSettings,
    GeneratedAsset,
    GenerationConfig,
    GenerationRequest,
    GenerationResponse,
    GenerationTask,
    GenerationUpdate,
    ModelConfigSnapshot,
    ModelEndpointConfig,
    ModelSpec,
)

__all__ = [
    # API functions
    "generate_async",
    "get_model_configs_async",
    "resolve_endpoint_settings_async",
    "register_provider",
    # Models
    "GenerationConfig",
    "GenerationRequest",
    "GenerationResponse",
    "GenerationTask",
    "GenerationUpdate",
    "GeneratedAsset",
    "ModelEndpointConfig",
    "ModelConfigSnapshot",
    "EndpointSettings",
    "ModelSpec",
    # Exceptions
    "MaasException",
    "ValidationError",
    "UpstreamError",
    "TaskCreationError",
    "TaskIdMissingError",
    "PollTransientError",
    "TaskFailedError",
    "TaskTimedOutError",
    "FileResolutionError",
    "ConfigDetectionError",
]
