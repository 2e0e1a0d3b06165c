"""Unit tests for logging utilities."""

import logging
from unittest.mock import patch

import pytest

from maas.maas_gateway.logging import (
    ProviderLogger,
    _redact_context,
    _redact_value,
    configure_logging,
    log_error,
    log_info,
    log_warning,
)


class TestRedaction:
    """Tests for _redact_value and _redact_context."""

    def test_scalars_pass_through(self):
        assert _redact_value(None) is None
        assert _redact_value(7) == 7
        assert _redact_value(True) is True

    def test_bytes_replaced_with_length(self):
        assert _redact_value(b"abc") == "<bytes: length=3>"

    def test_data_url_truncated(self):
        data_url = "data:image/png;base64," + "A" * 300
        result = _redact_value(data_url)
        assert result == f"{data_url[:50]}...{data_url[-50:]}"

    def test_authorization_header_redacted(self):
        result = _redact_context({"Authorization": "Bearer sk-123", "model": "MaaS-MJ"})
        assert result["Authorization"] == "***REDACTED***"
        assert result["model"] == "MaaS-MJ"

    def test_nested_config_api_key_redacted(self):
        """GenerationConfig logged as a nested dict still hides the key."""
        result = _redact_context({"config": {"api_key": "sk-123", "provider": "hl"}})
        assert result["config"]["api_key"] == "***REDACTED***"
        assert result["config"]["provider"] == "hl"

    def test_pydantic_model_redacted(self):
        from maas.maas_gateway.models import GenerationConfig

        config = GenerationConfig(
            provider="mj",
            api_key="sk-secret",
            base_url="https://gw.example",
            endpoint_path="v1/ai/abc",
        )
        result = _redact_context({"config": config})
        assert result["config"]["api_key"] == "***REDACTED***"
        assert result["config"]["max_poll_attempts"] == 60

    def test_empty_context(self):
        assert _redact_context(None) == {}


class TestLogFunctions:
    def test_log_info_with_context(self):
        with patch("logging.Logger.log") as mock_log:
            log_info("Task submitted", context={"task_id": "t1"})
            mock_log.assert_called_once_with(
                logging.INFO, "Task submitted | Context: {'task_id': 't1'}", exc_info=False
            )

    def test_log_warning_redacts_when_asked(self):
        with patch("logging.Logger.log") as mock_log:
            log_warning("Retrying", context={"token": "abc", "attempt": 2}, redact=True)
            level, message = mock_log.call_args[0]
            assert level == logging.WARNING
            assert "***REDACTED***" in message
            assert "abc" not in message

    def test_log_error_passes_exc_info(self):
        with patch("logging.Logger.log") as mock_log:
            log_error("Boom", exc_info=True)
            mock_log.assert_called_once_with(logging.ERROR, "Boom", exc_info=True)


def test_configure_logging_adds_single_handler():
    logger = logging.getLogger("maas.maas_gateway")
    original_handlers = list(logger.handlers)
    logger.handlers = []
    try:
        configure_logging("debug")
        configure_logging("info")
        assert len(logger.handlers) == 1
        assert logger.level == logging.INFO
    finally:
        logger.handlers = original_handlers


# ==================== ProviderLogger Tests ====================


@pytest.fixture
def provider_logger():
    return ProviderLogger(provider="hl", model="MaaS_HL_Video_t2v", logger_name="test.logger")


def test_provider_logger_context_without_request_id(provider_logger):
    assert provider_logger._build_context() == {"provider": "hl", "model": "MaaS_HL_Video_t2v"}


def test_with_request_id_returns_bound_copy(provider_logger):
    bound = provider_logger.with_request_id("task-9")

    assert bound is not provider_logger
    assert bound.request_id == "task-9"
    assert provider_logger.request_id is None
    assert bound._build_context({"poll_attempt": 3}) == {
        "provider": "hl",
        "model": "MaaS_HL_Video_t2v",
        "request_id": "task-9",
        "poll_attempt": 3,
    }


def test_provider_logger_info_calls_log_info(provider_logger):
    with patch("maas.maas_gateway.logging.log_info") as mock_log_info:
        provider_logger.info("Task submitted", {"status": "pending"}, redact=True)

        call_kwargs = mock_log_info.call_args[1]
        assert call_kwargs["context"]["provider"] == "hl"
        assert call_kwargs["context"]["status"] == "pending"
        assert call_kwargs["logger_name"] == "test.logger"
        assert call_kwargs["redact"] is True


def test_provider_logger_error_forwards_exc_info(provider_logger):
    with patch("maas.maas_gateway.logging.log_error") as mock_log_error:
        provider_logger.error("Failed", exc_info=True)

        call_kwargs = mock_log_error.call_args[1]
        assert call_kwargs["exc_info"] is True
        assert call_kwargs["context"]["model"] == "MaaS_HL_Video_t2v"
