"""Provider handler registry and model registry."""

from maas.maas_gateway.exceptions import ValidationError
from maas.maas_gateway.logging import log_debug, log_error, log_info
from maas.maas_gateway.models import Capability, ModelSpec, ProviderHandler
from maas.maas_gateway.providers import (
    HLProviderHandler,
    KLProviderHandler,
    MJProviderHandler,
)

_LOGGER_NAME = "maas.maas_gateway.registry"

DEFAULT_HL_ENDPOINT = "UfRLJwuMWPdfKWQg"
DEFAULT_MJ_ENDPOINT = "v1/ai/eljciTfuqTxBSjXl"

# Singleton instances of handlers
_HANDLER_INSTANCES: dict[str, ProviderHandler] = {}

BUILTIN_MODELS: tuple[ModelSpec, ...] = (
    ModelSpec(
        model_id="MaaS-MJ",
        provider="mj",
        kind="image",
        capabilities=frozenset({"text_to_image"}),
        default_endpoint=DEFAULT_MJ_ENDPOINT,
    ),
    ModelSpec(
        model_id="MaaS_HL_Video_t2v",
        provider="hl",
        kind="video",
        capabilities=frozenset({"text_to_video"}),
        default_endpoint=DEFAULT_HL_ENDPOINT,
    ),
    ModelSpec(
        model_id="MaaS_HL_Video_t2v_director",
        provider="hl",
        kind="video",
        capabilities=frozenset({"text_to_video"}),
        default_endpoint=DEFAULT_HL_ENDPOINT,
    ),
    ModelSpec(
        model_id="MaaS_HL_Video_i2v",
        provider="hl",
        kind="video",
        capabilities=frozenset({"image_to_video"}),
        default_endpoint=DEFAULT_HL_ENDPOINT,
    ),
    ModelSpec(
        model_id="MaaS_HL_Video_i2v_director",
        provider="hl",
        kind="video",
        capabilities=frozenset({"image_to_video"}),
        default_endpoint=DEFAULT_HL_ENDPOINT,
    ),
    ModelSpec(
        model_id="MaaS_HL_Video_i2v_live",
        provider="hl",
        kind="video",
        capabilities=frozenset({"image_to_video"}),
        default_endpoint=DEFAULT_HL_ENDPOINT,
    ),
    ModelSpec(
        model_id="MaaS_HL_Video_s2v",
        provider="hl",
        kind="video",
        capabilities=frozenset({"speech_to_video"}),
        default_endpoint=DEFAULT_HL_ENDPOINT,
    ),
    ModelSpec(
        model_id="kling-v1",
        provider="kl",
        kind="video",
        capabilities=frozenset({"text_to_video", "image_to_video"}),
    ),
)

_MODEL_SPECS: dict[str, ModelSpec] = {spec.model_id: spec for spec in BUILTIN_MODELS}


def get_handler(provider: str) -> ProviderHandler:
    """Get or create the handler instance for a provider tag.

    Raises:
        ValidationError: If provider is not supported
    """
    if provider not in _HANDLER_INSTANCES:
        log_debug(
            "Selected provider",
            context={"provider": provider},
            logger_name=_LOGGER_NAME,
        )
        if provider == "mj":
            _HANDLER_INSTANCES[provider] = MJProviderHandler()
        elif provider == "hl":
            _HANDLER_INSTANCES[provider] = HLProviderHandler()
        elif provider == "kl":
            _HANDLER_INSTANCES[provider] = KLProviderHandler()
        else:
            log_error(
                "Unsupported provider",
                context={"provider": provider},
                logger_name=_LOGGER_NAME,
            )
            raise ValidationError(f"Unsupported provider: {provider}", provider=provider)

    return _HANDLER_INSTANCES[provider]


def register_provider(provider: str, handler: ProviderHandler) -> None:
    """Register a custom provider handler, replacing any existing one.

    Args:
        provider: Provider tag used in ``GenerationConfig.provider``
        handler: Instance implementing the ``ProviderHandler`` protocol
    """
    if provider in _HANDLER_INSTANCES:
        log_info(
            f"Overwriting existing provider handler: {provider}",
            context={"provider": provider},
            logger_name=_LOGGER_NAME,
        )

    _HANDLER_INSTANCES[provider] = handler
    log_debug(
        "Registered custom provider handler",
        context={"provider": provider},
        logger_name=_LOGGER_NAME,
    )


async def close_handlers() -> None:
    """Close the cached httpx clients of every handler that keeps any.

    Handlers stay registered and open new clients on their next call.
    """
    for provider, handler in _HANDLER_INSTANCES.items():
        aclose = getattr(handler, "aclose", None)
        if aclose is None:
            continue
        await aclose()
        log_debug(
            "Closed provider handler clients",
            context={"provider": provider},
            logger_name=_LOGGER_NAME,
        )


def register_model(spec: ModelSpec) -> None:
    """Add or replace a model entry. ``spec`` is validated on construction."""
    if spec.model_id in _MODEL_SPECS:
        log_info(
            f"Overwriting model spec: {spec.model_id}",
            context={"model": spec.model_id, "provider": spec.provider},
            logger_name=_LOGGER_NAME,
        )
    _MODEL_SPECS[spec.model_id] = spec


def get_model_spec(model_id: str) -> ModelSpec | None:
    return _MODEL_SPECS.get(model_id)


def list_model_specs() -> list[ModelSpec]:
    return list(_MODEL_SPECS.values())


def supports(model_id: str, capability: Capability) -> bool:
    """True if the registered model declares ``capability``; unknown ids are False."""
    spec = _MODEL_SPECS.get(model_id)
    return spec is not None and capability in spec.capabilities


def validate_registry() -> None:
    """Check that every registered model points at a resolvable provider.

    Called once at application startup.

    Raises:
        ValidationError: If a model names a provider with no handler.
    """
    for spec in _MODEL_SPECS.values():
        get_handler(spec.provider)
    log_info(
        "Model registry validated",
        context={"models": len(_MODEL_SPECS)},
        logger_name=_LOGGER_NAME,
    )
