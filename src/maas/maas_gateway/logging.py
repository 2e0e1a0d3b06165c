"""Logging utilities for maas-gateway."""

import logging
from typing import Any

# Sensitive fields that should be sanitized in logs
_SENSITIVE_FIELDS = {
    "api_key",
    "apikey",
    "password",
    "token",
    "secret",
    "authorization",
    "auth",
    "credentials",
}

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _redact_value(value: Any) -> Any:
    """Redact a value by replacing bulky or opaque data with safe representations.

    Handles:
    - Bytes: Shows length instead of content
    - Dicts: Recursively processes each value
    - Lists/Tuples: Recursively processes each item
    - Pydantic models: Converts to dict first
    - Long strings (base64 images, data URLs): Truncates with ellipsis
    """
    if value is None or isinstance(value, (int, float, bool)):
        return value

    if isinstance(value, bytes):
        return f"<bytes: length={len(value)}>"

    if hasattr(value, "model_dump"):
        value = value.model_dump()

    if isinstance(value, dict):
        return _redact_context(value)

    if isinstance(value, (list, tuple)):
        redacted = [_redact_value(item) for item in value]
        return redacted if isinstance(value, list) else tuple(redacted)

    if isinstance(value, str) and len(value) > 100:
        return f"{value[:50]}...{value[-50:]}"

    return value


def _redact_context(context: dict[str, Any] | None) -> dict[str, Any]:
    """Redact sensitive fields in a context dictionary.

    Keys are matched case-insensitively against known sensitive names; matching
    values are replaced entirely. Everything else goes through ``_redact_value``.
    """
    if not context:
        return {}

    redacted = {}
    for key, value in context.items():
        key_lower = str(key).lower()
        if any(sensitive in key_lower for sensitive in _SENSITIVE_FIELDS):
            redacted[key] = "***REDACTED***"
        else:
            redacted[key] = _redact_value(value)

    return redacted


def _get_logger(logger_name: str) -> logging.Logger:
    """Get or create a logger with the given name."""
    return logging.getLogger(logger_name)


def configure_logging(level: str = "INFO") -> None:
    """Attach a stream handler to the package logger if none is configured yet."""
    logger = _get_logger("maas.maas_gateway")
    logger.setLevel(level.upper())
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        logger.addHandler(handler)


def _emit(
    level: int,
    message: str,
    context: dict[str, Any] | None,
    logger_name: str,
    redact: bool,
    exc_info: bool = False,
) -> None:
    logger = _get_logger(logger_name)
    if context:
        if redact:
            context = _redact_context(context)
        message = f"{message} | Context: {context}"
    logger.log(level, message, exc_info=exc_info)


def log_debug(
    message: str,
    context: dict[str, Any] | None = None,
    logger_name: str = "maas.maas_gateway",
    redact: bool = False,
) -> None:
    """Log a debug message with optional context.

    Args:
        message: The log message
        context: Optional dictionary of context data, appended to the message
        logger_name: Name of the logger to use
        redact: If True, redact sensitive fields in context
    """
    _emit(logging.DEBUG, message, context, logger_name, redact)


def log_info(
    message: str,
    context: dict[str, Any] | None = None,
    logger_name: str = "maas.maas_gateway",
    redact: bool = False,
) -> None:
    _emit(logging.INFO, message, context, logger_name, redact)


def log_warning(
    message: str,
    context: dict[str, Any] | None = None,
    logger_name: str = "maas.maas_gateway",
    redact: bool = False,
) -> None:
    _emit(logging.WARNING, message, context, logger_name, redact)


def log_error(
    message: str,
    context: dict[str, Any] | None = None,
    logger_name: str = "maas.maas_gateway",
    redact: bool = False,
    exc_info: bool = False,
) -> None:
    """Log an error message, with the active traceback when ``exc_info`` is set."""
    _emit(logging.ERROR, message, context, logger_name, redact, exc_info=exc_info)


class ProviderLogger:
    """Logger bound to a provider/model pair, and optionally a task id.

    Every message carries ``provider`` and ``model`` (and ``request_id`` once
    known) in its context, so a single task can be followed across submission,
    polling and normalization.
    """

    def __init__(
        self,
        provider: str,
        model: str,
        logger_name: str,
        request_id: str | None = None,
    ) -> None:
        self.provider = provider
        self.model = model
        self.logger_name = logger_name
        self.request_id = request_id

    def with_request_id(self, request_id: str) -> "ProviderLogger":
        """Return a copy of this logger bound to ``request_id``."""
        return ProviderLogger(self.provider, self.model, self.logger_name, request_id)

    def _build_context(self, extra: dict[str, Any] | None = None) -> dict[str, Any]:
        context: dict[str, Any] = {"provider": self.provider, "model": self.model}
        if self.request_id is not None:
            context["request_id"] = self.request_id
        if extra:
            context.update(extra)
        return context

    def debug(
        self, message: str, extra: dict[str, Any] | None = None, redact: bool = False
    ) -> None:
        log_debug(
            message,
            context=self._build_context(extra),
            logger_name=self.logger_name,
            redact=redact,
        )

    def info(
        self, message: str, extra: dict[str, Any] | None = None, redact: bool = False
    ) -> None:
        log_info(
            message,
            context=self._build_context(extra),
            logger_name=self.logger_name,
            redact=redact,
        )

    def warning(
        self, message: str, extra: dict[str, Any] | None = None, redact: bool = False
    ) -> None:
        log_warning(
            message,
            context=self._build_context(extra),
            logger_name=self.logger_name,
            redact=redact,
        )

    def error(
        self,
        message: str,
        extra: dict[str, Any] | None = None,
        redact: bool = False,
        exc_info: bool = False,
    ) -> None:
        log_error(
            message,
            context=self._build_context(extra),
            logger_name=self.logger_name,
            redact=redact,
            exc_info=exc_info,
        )
