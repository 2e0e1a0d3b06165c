"""Public API for MaaS task generation and endpoint configuration."""

import httpx

from maas.maas_gateway.client import auth_headers, join_url, parse_body
from maas.maas_gateway.config_cache import ModelConfigCache
from maas.maas_gateway.detection import (
    detect_model_configs,
    model_ids_from_listing,
    resolve_endpoint_settings,
    static_endpoint_settings,
)
from maas.maas_gateway.exceptions import ConfigDetectionError, MaasException
from maas.maas_gateway.logging import log_info, log_warning
from maas.maas_gateway.models import (
    AnyDict,
    EndpointSettings,
    GenerationConfig,
    GenerationRequest,
    GenerationResponse,
    ModelConfigSnapshot,
    ProgressCallback,
    ProviderHandler,
)
from maas.maas_gateway.registry import (
    DEFAULT_HL_ENDPOINT,
    DEFAULT_MJ_ENDPOINT,
    get_handler,
)
from maas.maas_gateway.registry import register_provider as _register_provider
from maas.maas_gateway.settings import get_settings

_LOGGER_NAME = "maas.maas_gateway.api"

# Process-wide caches, created on first use with TTLs from settings
_MODEL_CONFIG_CACHE: ModelConfigCache[ModelConfigSnapshot] | None = None
_ENDPOINT_SETTINGS_CACHE: ModelConfigCache[EndpointSettings] | None = None


def _model_config_cache() -> ModelConfigCache[ModelConfigSnapshot]:
    global _MODEL_CONFIG_CACHE
    if _MODEL_CONFIG_CACHE is None:
        _MODEL_CONFIG_CACHE = ModelConfigCache(
            get_settings().config_cache_ttl, name="model_configs"
        )
    return _MODEL_CONFIG_CACHE


def _endpoint_settings_cache() -> ModelConfigCache[EndpointSettings]:
    global _ENDPOINT_SETTINGS_CACHE
    if _ENDPOINT_SETTINGS_CACHE is None:
        _ENDPOINT_SETTINGS_CACHE = ModelConfigCache(
            get_settings().client_config_cache_ttl, name="endpoint_settings"
        )
    return _ENDPOINT_SETTINGS_CACHE


def register_provider(provider: str, handler: ProviderHandler) -> None:
    """Register a custom provider handler.

    The handler is used for every later call whose ``config.provider``
    matches ``provider``.

    Example:
        ```python
        from maas.maas_gateway import register_provider

        class EchoHandler:
            async def generate_async(self, config, request, on_progress=None):
                ...

        register_provider("echo", EchoHandler())
        ```
    """
    _register_provider(provider, handler)


async def generate_async(
    config: GenerationConfig,
    request: GenerationRequest,
    on_progress: ProgressCallback | None = None,
) -> GenerationResponse:
    """Submit a task to the configured provider and wait for its result.

    Args:
        config: Provider, credentials, endpoint path and poll budget.
        request: Prompt and optional image/audio inputs.
        on_progress: Optional sync or async callback, called once per poll
            and once per absorbed poll error.

    Returns:
        [GenerationResponse][] with at least one asset.

    Raises:
        MaasException: On any failure; see ``TaskProviderHandler.generate_async``
            for the concrete subclasses.

    Example:
        ```python
        import asyncio
        from maas.maas_gateway import generate_async
        from maas.maas_gateway.models import GenerationConfig, GenerationRequest

        async def main():
            config = GenerationConfig(
                provider="mj",
                model="MaaS-MJ",
                api_key="sk-...",
                base_url="https://genaiapi.cloudsway.net",
                endpoint_path="v1/ai/eljciTfuqTxBSjXl",
            )
            response = await generate_async(config, GenerationRequest(prompt="a red fox"))
            print(response.to_payload())

        asyncio.run(main())
        ```
    """
    log_info(
        "Generation request received",
        context={"config": config, "request": request},
        logger_name=_LOGGER_NAME,
        redact=True,
    )
    handler = get_handler(config.provider)
    return await handler.generate_async(config, request, on_progress=on_progress)


async def get_model_configs_async(
    base_url: str,
    api_key: str,
    *,
    client: httpx.AsyncClient | None = None,
    cache: ModelConfigCache[ModelConfigSnapshot] | None = None,
) -> AnyDict:
    """Detect which endpoint path serves each video/image model.

    Raises:
        UpstreamError: The config API or model list failed upstream.
    """
    cache = cache or _model_config_cache()
    authorization = auth_headers(api_key, json_body=False)["Authorization"]
    if client is not None:
        return await detect_model_configs(client, base_url, authorization, cache)

    async with httpx.AsyncClient(timeout=get_settings().request_timeout) as owned:
        return await detect_model_configs(owned, base_url, authorization, cache)


async def _list_model_ids(client: httpx.AsyncClient, base_url: str, api_key: str) -> list[str]:
    response = await client.get(
        join_url(base_url, "v1/models"), headers=auth_headers(api_key, json_body=False)
    )
    if not response.is_success:
        raise ConfigDetectionError(
            f"Failed to fetch models: {response.status_code}",
            raw_response=parse_body(response),
        )
    return model_ids_from_listing(parse_body(response))


async def _compute_endpoint_settings(
    client: httpx.AsyncClient,
    base_url: str,
    api_key: str,
    model_cache: ModelConfigCache[ModelConfigSnapshot],
) -> EndpointSettings:
    try:
        snapshot = await detect_model_configs(
            client, base_url, auth_headers(api_key, json_body=False)["Authorization"], model_cache
        )
        return resolve_endpoint_settings(snapshot)
    except (MaasException, httpx.HTTPError) as ex:
        log_warning(
            "Model config detection failed, using static endpoint settings",
            context={"error": str(ex)},
            logger_name=_LOGGER_NAME,
        )

    try:
        return static_endpoint_settings(await _list_model_ids(client, base_url, api_key))
    except (MaasException, httpx.HTTPError) as ex:
        log_warning(
            "Model list unavailable, using default endpoint paths",
            context={"error": str(ex)},
            logger_name=_LOGGER_NAME,
        )
        return EndpointSettings(
            mj_endpoint_path=DEFAULT_MJ_ENDPOINT, hl_endpoint_path=DEFAULT_HL_ENDPOINT
        )


async def resolve_endpoint_settings_async(
    base_url: str,
    api_key: str,
    *,
    client: httpx.AsyncClient | None = None,
    cache: ModelConfigCache[EndpointSettings] | None = None,
    model_cache: ModelConfigCache[ModelConfigSnapshot] | None = None,
) -> EndpointSettings:
    """Return the MJ/HL endpoint paths to use, cached for 30 minutes.

    Detection failures never surface: the result degrades to paths guessed
    from the model list, then to the built-in defaults.
    """
    cache = cache or _endpoint_settings_cache()
    model_cache = model_cache or _model_config_cache()

    async def compute() -> EndpointSettings:
        if client is not None:
            return await _compute_endpoint_settings(client, base_url, api_key, model_cache)
        async with httpx.AsyncClient(timeout=get_settings().detection_timeout) as owned:
            return await _compute_endpoint_settings(owned, base_url, api_key, model_cache)

    return await cache.get_or_compute(compute)
