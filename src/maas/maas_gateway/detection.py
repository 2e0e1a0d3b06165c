"""Model endpoint detection: config API, per-model probing, static table."""

from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from maas.maas_gateway.client import join_url, parse_body, upstream_error_message
from maas.maas_gateway.config_cache import ModelConfigCache
from maas.maas_gateway.exceptions import ConfigDetectionError, MaasException, UpstreamError
from maas.maas_gateway.logging import log_debug, log_info, log_warning
from maas.maas_gateway.models import (
    AnyDict,
    EndpointSettings,
    ModelConfigSnapshot,
    ModelEndpointConfig,
)
from maas.maas_gateway.registry import (
    DEFAULT_HL_ENDPOINT,
    DEFAULT_MJ_ENDPOINT,
    get_model_spec,
)

_LOGGER_NAME = "maas.maas_gateway.detection"

# Model ids containing any of these are probed individually
PROBE_TOKENS: tuple[str, ...] = ("video", "hl_video", "haiper", "mj")

_ENDPOINT_FIELDS = ("endpoint", "api_endpoint", "service_endpoint")
_REAL_MODEL_FIELDS = ("real_model_id", "actual_model")


def is_probe_candidate(model_id: str) -> bool:
    model_id = model_id.lower()
    return any(token in model_id for token in PROBE_TOKENS)


def default_endpoint_for_model(model_id: str) -> str:
    """Static endpoint for a model id, by registry entry then substring."""
    spec = get_model_spec(model_id)
    if spec is not None and spec.default_endpoint:
        return spec.default_endpoint

    model_id = model_id.lower()
    if "maas_hl_video" in model_id:
        return DEFAULT_HL_ENDPOINT
    if "haiper" in model_id:
        return "haiper_default_endpoint"
    if "mj" in model_id:
        return DEFAULT_MJ_ENDPOINT
    return "default_endpoint"


def model_type_for(model_id: str) -> str:
    spec = get_model_spec(model_id)
    if spec is not None:
        return f"{spec.provider}_{spec.kind}"

    model_id = model_id.lower()
    if "hl_video" in model_id:
        return "hl_video"
    if "haiper" in model_id:
        return "haiper_video"
    if "mj" in model_id:
        return "mj_image"
    return "unknown"


def static_model_config(model_id: str) -> ModelEndpointConfig:
    return ModelEndpointConfig(
        endpoint=default_endpoint_for_model(model_id),
        type=model_type_for(model_id),
        real_model_id=model_id,
    )


def model_ids_from_listing(models_data: AnyDict) -> list[str]:
    """Pull ``id`` values out of a ``/v1/models`` listing.

    Raises:
        ConfigDetectionError: If the listing has no ``data`` array.
    """
    data = models_data.get("data")
    if not isinstance(data, list):
        raise ConfigDetectionError(
            "Invalid models data format", raw_response=models_data
        )
    return [str(item["id"]) for item in data if isinstance(item, dict) and item.get("id")]


class ModelConfigDetector:
    """Works out which endpoint path serves which model.

    Tier 1 asks the gateway's config API. When that endpoint does not exist
    (404), the model list is fetched and every video/image model is probed
    through ``/v1/models/{id}``; any probe that fails or lacks endpoint data
    falls back to the static table. Tier 2/3 snapshots are cached.
    """

    def __init__(self, cache: ModelConfigCache[ModelConfigSnapshot]) -> None:
        self.cache = cache

    async def detect(
        self, client: httpx.AsyncClient, base_url: str, authorization: str
    ) -> AnyDict:
        """Return the model configuration payload for the caller's gateway.

        Raises:
            UpstreamError: The config API failed with a status other than 404.
                ``raw_response["body"]`` holds the upstream error text.
            MaasException: The model list could not be fetched or parsed.
        """
        cached = self.cache.get()
        if cached is not None:
            self.cache.hits += 1
            log_info("Using cached endpoint detection results", logger_name=_LOGGER_NAME)
            return cached.to_payload()

        headers = {"Authorization": authorization}
        config_url = join_url(base_url, "v1/models/config")
        log_info(
            "Fetching models config",
            context={"url": config_url},
            logger_name=_LOGGER_NAME,
        )
        response = await client.get(config_url, headers=headers)

        if response.is_success:
            return parse_body(response)

        if response.status_code != 404:
            raise UpstreamError(
                f"Config API request failed: {response.status_code} {response.reason_phrase}",
                raw_response={"body": response.text},
                status_code=response.status_code,
            )

        log_info(
            "Config endpoint not found, using per-model detection",
            logger_name=_LOGGER_NAME,
        )

        async def compute() -> ModelConfigSnapshot:
            return await self._probe_all(client, base_url, headers)

        snapshot = await self.cache.get_or_compute(compute)
        return snapshot.to_payload()

    async def _probe_all(
        self, client: httpx.AsyncClient, base_url: str, headers: dict[str, str]
    ) -> ModelConfigSnapshot:
        models_response = await client.get(join_url(base_url, "v1/models"), headers=headers)
        if not models_response.is_success:
            raise MaasException(
                f"Failed to fetch models: {models_response.status_code}",
                raw_response=parse_body(models_response),
            )

        try:
            model_ids = model_ids_from_listing(parse_body(models_response))
        except ConfigDetectionError as ex:
            raise MaasException(ex.message, raw_response=ex.raw_response) from ex

        candidates = [model_id for model_id in model_ids if is_probe_candidate(model_id)]
        log_info(
            f"Found {len(candidates)} video/image models to configure",
            logger_name=_LOGGER_NAME,
        )

        model_configs: dict[str, ModelEndpointConfig] = {}
        for model_id in candidates:
            try:
                model_configs[model_id] = await self._probe_model(
                    client, base_url, headers, model_id
                )
            except ConfigDetectionError as ex:
                log_warning(
                    "Model detail probe failed, using static config",
                    context={"model": model_id, "error": ex.message},
                    logger_name=_LOGGER_NAME,
                )
                model_configs[model_id] = static_model_config(model_id)

        return ModelConfigSnapshot(
            model_configs=model_configs,
            detection_method="individual_model_fetch",
        )

    async def _probe_model(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        headers: dict[str, str],
        model_id: str,
    ) -> ModelEndpointConfig:
        """Fetch ``/v1/models/{id}`` and read endpoint routing from it.

        Raises:
            ConfigDetectionError: The probe failed or returned no endpoint.
        """
        url = join_url(base_url, "v1/models", model_id)
        try:
            response = await client.get(url, headers=headers)
        except httpx.HTTPError as ex:
            raise ConfigDetectionError(
                f"Probe failed: {ex}", model=model_id
            ) from ex

        if not response.is_success:
            raise ConfigDetectionError(
                f"Probe returned {response.status_code}",
                model=model_id,
                raw_response=parse_body(response),
            )

        detail = parse_body(response)
        endpoint: Any = next(
            (detail[name] for name in _ENDPOINT_FIELDS if detail.get(name)), None
        )
        if not endpoint:
            raise ConfigDetectionError(
                f"No endpoint in model detail: {upstream_error_message(detail)}",
                model=model_id,
                raw_response=detail,
            )

        real_model_id = next(
            (detail[name] for name in _REAL_MODEL_FIELDS if detail.get(name)), model_id
        )
        log_debug(
            "Configured model from detail",
            context={"model": model_id, "endpoint": endpoint, "real_model_id": real_model_id},
            logger_name=_LOGGER_NAME,
        )
        return ModelEndpointConfig(
            endpoint=str(endpoint),
            type=model_type_for(model_id),
            real_model_id=str(real_model_id),
        )


async def detect_model_configs(
    client: httpx.AsyncClient,
    base_url: str,
    authorization: str,
    cache: ModelConfigCache[ModelConfigSnapshot],
) -> AnyDict:
    """Run the three-tier detection against ``base_url``, sharing ``cache``."""
    return await ModelConfigDetector(cache).detect(client, base_url, authorization)


# ==================== Endpoint settings ====================

_MJ_TOKENS = ("mj", "midjourney")
_HL_TOKENS = ("hl_video", "hailuo")


def resolve_endpoint_settings(snapshot: AnyDict | ModelConfigSnapshot) -> EndpointSettings:
    """Fold a detection snapshot into per-provider endpoint paths.

    ``mj_image`` models go to the MJ map, ``hl_video`` models to the HL map.
    The first model of each type supplies the provider's default path.

    Raises:
        ConfigDetectionError: If ``snapshot`` has no ``modelConfigs`` object.
    """
    if isinstance(snapshot, dict):
        try:
            snapshot = ModelConfigSnapshot.model_validate(
                {"detectionMethod": "config_api", **snapshot}
            )
        except PydanticValidationError as ex:
            raise ConfigDetectionError(
                f"Invalid model config snapshot: {ex}", raw_response=snapshot
            ) from ex

    settings = EndpointSettings()
    for model_id, model_config in snapshot.model_configs.items():
        if model_config.type == "mj_image":
            settings.mj_model_endpoints[model_id] = model_config.endpoint
            settings.mj_endpoint_path = settings.mj_endpoint_path or model_config.endpoint
        elif model_config.type == "hl_video":
            settings.hl_model_endpoints[model_id] = model_config.endpoint
            settings.hl_endpoint_path = settings.hl_endpoint_path or model_config.endpoint
    return settings


def static_endpoint_settings(model_ids: list[str]) -> EndpointSettings:
    """Endpoint settings guessed from model names alone."""
    settings = EndpointSettings()
    for model_id in model_ids:
        lowered = model_id.lower()
        if any(token in lowered for token in _MJ_TOKENS):
            settings.mj_model_endpoints[model_id] = DEFAULT_MJ_ENDPOINT
            settings.mj_endpoint_path = DEFAULT_MJ_ENDPOINT
        elif any(token in lowered for token in _HL_TOKENS):
            settings.hl_model_endpoints[model_id] = DEFAULT_HL_ENDPOINT
            settings.hl_endpoint_path = DEFAULT_HL_ENDPOINT
    return settings


# ==================== Endpoint discovery ====================

_AUTO_NOTE = "Auto-configured from user model permissions"


def _fallback_endpoints() -> dict[str, list[AnyDict]]:
    return {
        "mj": [
            {
                "path": DEFAULT_MJ_ENDPOINT,
                "status": "fallback",
                "note": "Generic MJ endpoint pattern",
            }
        ],
        "hl": [
            {
                "path": DEFAULT_HL_ENDPOINT,
                "status": "fallback",
                "note": "Generic HL endpoint pattern",
            }
        ],
    }


def _discovery_payload(endpoints: dict[str, list[AnyDict]]) -> AnyDict:
    return {
        "endpoints": endpoints,
        "note": "Endpoints detected based on available models",
        "recommendation": "Select endpoints when using image/video generation features",
    }


async def discover_endpoints(
    client: httpx.AsyncClient, base_url: str, authorization: str, timeout: float = 10.0
) -> AnyDict:
    """Suggest MJ/HL endpoint paths based on the caller's model permissions.

    Never raises: any failure returns the generic fallback suggestions.
    """
    endpoints: dict[str, list[AnyDict]] = {"mj": [], "hl": []}
    try:
        response = await client.get(
            join_url(base_url, "v1/models"),
            headers={"Authorization": authorization},
            timeout=timeout,
        )
        model_ids = model_ids_from_listing(parse_body(response)) if response.is_success else []
    except (httpx.HTTPError, ConfigDetectionError) as ex:
        log_warning(
            "Endpoint discovery failed, returning fallback endpoints",
            context={"error": str(ex)},
            logger_name=_LOGGER_NAME,
        )
        return _discovery_payload(_fallback_endpoints())

    lowered = [model_id.lower() for model_id in model_ids]
    if any(token in model_id for model_id in lowered for token in _MJ_TOKENS):
        endpoints["mj"].append(
            {"path": DEFAULT_MJ_ENDPOINT, "status": "auto-configured", "note": _AUTO_NOTE}
        )
    if any(token in model_id for model_id in lowered for token in _HL_TOKENS):
        endpoints["hl"].append(
            {"path": DEFAULT_HL_ENDPOINT, "status": "auto-configured", "note": _AUTO_NOTE}
        )

    if not endpoints["mj"] and not endpoints["hl"]:
        endpoints = _fallback_endpoints()
    return _discovery_payload(endpoints)


def hl_endpoint_suggestions() -> AnyDict:
    """Known working HL endpoint paths."""
    return {
        "availableEndpoints": [
            {
                "path": DEFAULT_HL_ENDPOINT,
                "status": "recommended",
                "tested": False,
                "note": "User-verified working endpoint",
            }
        ],
        "recommended": DEFAULT_HL_ENDPOINT,
        "note": "Based on user feedback and testing",
    }
