"""FastAPI application exposing the MaaS proxy and task routes."""

from contextlib import asynccontextmanager
from typing import Any

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError as PydanticValidationError

from maas.maas_gateway.api import generate_async
from maas.maas_gateway.client import strip_bearer
from maas.maas_gateway.config_cache import ModelConfigCache
from maas.maas_gateway.detection import (
    ModelConfigDetector,
    discover_endpoints,
    hl_endpoint_suggestions,
)
from maas.maas_gateway.exceptions import MaasException, UpstreamError, http_status_for
from maas.maas_gateway.logging import configure_logging, log_error, log_info
from maas.maas_gateway.models import (
    AnyDict,
    GenerationConfig,
    GenerationRequest,
    ModelConfigSnapshot,
    ProviderType,
)
from maas.maas_gateway.providers.kl import DEFAULT_KL_MODEL
from maas.maas_gateway.proxy import (
    internal_error,
    proxy_chat_completions,
    proxy_image_generations,
    proxy_models,
    proxy_video_generations,
)
from maas.maas_gateway.registry import close_handlers, validate_registry
from maas.maas_gateway.search import run_search
from maas.maas_gateway.settings import Settings, get_settings

_LOGGER_NAME = "maas.maas_gateway.server"

MISSING_AUTH = {"error": "Missing authorization header"}
MISSING_CONFIG = {"error": "Missing API configuration"}

# provider -> (endpoint path header, display name)
_PROVIDER_HEADERS: dict[str, tuple[str, str]] = {
    "mj": ("X-MJ-Endpoint-Path", "MaaS-MJ"),
    "hl": ("X-HL-Endpoint-Path", "MaaS-HL"),
    "kl": ("X-KL-Endpoint-Path", "MaaS-KL"),
}


def _ensure_runtime_state(
    app: FastAPI, *, settings: Settings, http_client: httpx.AsyncClient | None
) -> None:
    if not hasattr(app.state, "settings"):
        app.state.settings = settings

    if not hasattr(app.state, "http_client"):
        app.state.http_client = http_client or httpx.AsyncClient(
            timeout=settings.request_timeout
        )
        app.state.owns_http_client = http_client is None

    if not hasattr(app.state, "detector"):
        cache: ModelConfigCache[ModelConfigSnapshot] = ModelConfigCache(
            settings.config_cache_ttl, name="route_model_configs"
        )
        app.state.detector = ModelConfigDetector(cache)


def _upstream_base(request: Request, settings: Settings) -> str:
    return request.headers.get("X-API-Endpoint") or settings.default_api_endpoint


def _api_credentials(request: Request) -> tuple[str | None, str | None]:
    """``(api_key, endpoint)`` from the caller's headers, no defaults applied."""
    return (
        strip_bearer(request.headers.get("Authorization")),
        request.headers.get("X-API-Endpoint"),
    )


def build_generation_config(
    request: Request, provider: ProviderType, model: str, settings: Settings
) -> GenerationConfig | None:
    """Build the per-request config from headers; None when a header is missing."""
    api_key, endpoint = _api_credentials(request)
    endpoint_path = request.headers.get(_PROVIDER_HEADERS[provider][0])
    if not api_key or not endpoint or not endpoint_path:
        return None

    max_poll_attempts = (
        settings.mj_max_poll_attempts
        if provider == "mj"
        else settings.video_max_poll_attempts
    )
    return GenerationConfig(
        provider=provider,
        model=model,
        api_key=api_key,
        base_url=endpoint,
        endpoint_path=endpoint_path,
        poll_interval=settings.poll_interval,
        max_poll_attempts=max_poll_attempts,
        timeout=settings.request_timeout,
        provider_config={"task_id_fallback": settings.task_id_fallback},
    )


async def run_generation(
    request: Request,
    settings: Settings,
    provider: ProviderType,
    model: str,
    fields: AnyDict,
) -> Response:
    """Run one provider task end to end and map failures to HTTP errors."""
    config = build_generation_config(request, provider, model, settings)
    if config is None:
        display_name = _PROVIDER_HEADERS[provider][1]
        return JSONResponse(
            {"error": f"Missing API configuration for {display_name}"}, status_code=400
        )

    try:
        generation_request = GenerationRequest(**fields)
    except PydanticValidationError as ex:
        return JSONResponse({"error": str(ex)}, status_code=400)

    try:
        response = await generate_async(config, generation_request)
    except MaasException as ex:
        log_error(
            f"{_PROVIDER_HEADERS[provider][1]} generation error: {ex.message}",
            context={"provider": provider, "model": model, "task_id": ex.task_id},
            logger_name=_LOGGER_NAME,
        )
        return JSONResponse({"error": ex.message}, status_code=http_status_for(ex))
    return JSONResponse(response.to_payload())


def create_app(
    *,
    settings_override: Settings | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    settings = settings_override or get_settings()
    configure_logging(settings.log_level)
    validate_registry()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _ensure_runtime_state(app, settings=settings, http_client=http_client)
        yield
        await close_handlers()
        if app.state.owns_http_client:
            await app.state.http_client.aclose()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)

    # Keep test paths reliable when lifespan is not executed by the client.
    if http_client is not None:
        _ensure_runtime_state(app, settings=settings, http_client=http_client)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    # ---- passthrough proxies ----

    @app.post("/chat/completions")
    async def chat_completions(body: dict[str, Any], request: Request) -> Response:
        authorization = request.headers.get("Authorization")
        if not authorization:
            return JSONResponse(MISSING_AUTH, status_code=401)
        return await proxy_chat_completions(
            request.app.state.http_client,
            _upstream_base(request, settings),
            authorization,
            body,
        )

    @app.get("/models")
    async def models(request: Request) -> Response:
        authorization = request.headers.get("Authorization")
        if not authorization:
            return JSONResponse(MISSING_AUTH, status_code=401)
        return await proxy_models(
            request.app.state.http_client, _upstream_base(request, settings), authorization
        )

    @app.post("/images/generations")
    async def image_generations(body: dict[str, Any], request: Request) -> Response:
        authorization = request.headers.get("Authorization")
        if not authorization:
            return JSONResponse(MISSING_AUTH, status_code=401)
        return await proxy_image_generations(
            request.app.state.http_client,
            _upstream_base(request, settings),
            authorization,
            body,
        )

    @app.post("/videos/generations")
    async def video_generations(body: dict[str, Any], request: Request) -> Response:
        api_key, endpoint = _api_credentials(request)
        if not api_key or not endpoint:
            return JSONResponse(MISSING_CONFIG, status_code=400)
        return await proxy_video_generations(
            request.app.state.http_client, endpoint, api_key, body
        )

    # ---- provider tasks ----

    @app.post("/images/mj")
    async def mj_image(body: dict[str, Any], request: Request) -> Response:
        return await run_generation(
            request, settings, "mj", "MaaS-MJ", {"prompt": body.get("prompt")}
        )

    @app.post("/videos/hl")
    async def hl_video(body: dict[str, Any], request: Request) -> Response:
        fields = {key: body.get(key) for key in ("model", "prompt", "image", "audio")}
        return await run_generation(request, settings, "hl", body.get("model") or "", fields)

    @app.post("/videos/kl")
    async def kl_video(body: dict[str, Any], request: Request) -> Response:
        fields = dict(body)
        model_name = fields.pop("model_name", None) or DEFAULT_KL_MODEL
        return await run_generation(request, settings, "kl", model_name, fields)

    # ---- configuration and discovery ----

    @app.get("/models/config")
    async def models_config(request: Request) -> Response:
        authorization = request.headers.get("Authorization")
        if not authorization:
            return JSONResponse(MISSING_AUTH, status_code=401)
        detector: ModelConfigDetector = request.app.state.detector
        try:
            payload = await detector.detect(
                request.app.state.http_client,
                _upstream_base(request, settings),
                authorization,
            )
        except UpstreamError as ex:
            return JSONResponse(
                {"error": ex.message, "details": (ex.raw_response or {}).get("body")},
                status_code=ex.status_code or 500,
            )
        except (MaasException, httpx.HTTPError) as ex:
            return internal_error(ex)
        return JSONResponse(payload)

    @app.get("/endpoints")
    async def endpoints(request: Request) -> Response:
        api_key, endpoint = _api_credentials(request)
        if not api_key or not endpoint:
            return JSONResponse(MISSING_CONFIG, status_code=400)
        payload = await discover_endpoints(
            request.app.state.http_client,
            endpoint,
            f"Bearer {api_key}",
            timeout=settings.detection_timeout,
        )
        return JSONResponse(payload)

    @app.get("/hl-endpoints")
    async def hl_endpoints(request: Request) -> Response:
        api_key, endpoint = _api_credentials(request)
        if not api_key or not endpoint:
            return JSONResponse(MISSING_CONFIG, status_code=400)
        return JSONResponse(hl_endpoint_suggestions())

    # ---- search ----

    @app.post("/search")
    async def search(body: dict[str, Any], request: Request) -> Response:
        api_key, endpoint = _api_credentials(request)
        if not api_key or not endpoint:
            return JSONResponse(MISSING_CONFIG, status_code=400)

        query = body.get("query")
        model = body.get("model")
        if not query or not model:
            return JSONResponse({"error": "Missing query or model"}, status_code=400)

        endpoint_id = request.headers.get("X-Search-Endpoint-Id")
        if not endpoint_id:
            return JSONResponse(
                {
                    "error": "Missing search endpoint configuration. "
                    "Please configure the search endpoint ID in settings."
                },
                status_code=400,
            )

        try:
            payload = await run_search(
                request.app.state.http_client,
                search_base_url=settings.search_base_url,
                api_key=api_key,
                endpoint_id=endpoint_id,
                query=query,
                model=model,
                search_params=body.get("searchParams"),
            )
        except MaasException as ex:
            status_code = http_status_for(ex)
            error_body: AnyDict = {"error": ex.message}
            if status_code != 400:
                error_body["success"] = False
            return JSONResponse(error_body, status_code=status_code)
        except (httpx.HTTPError, ValueError) as ex:
            log_error(f"Search error: {ex}", logger_name=_LOGGER_NAME, exc_info=True)
            return JSONResponse({"error": str(ex), "success": False}, status_code=500)
        return JSONResponse(payload)

    log_info(
        "Application created",
        context={"app_name": settings.app_name},
        logger_name=_LOGGER_NAME,
    )
    return app


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "maas.maas_gateway.server:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


# Module-level app for `uvicorn maas.maas_gateway.server:app`.
app = create_app()
