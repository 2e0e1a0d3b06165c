"""Utility functions shared by provider handlers."""

from typing import Any

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from typing_extensions import TypedDict

from maas.maas_gateway.exceptions import ValidationError


def validate_model_params(
    *,
    schema: type[TypedDict],
    data: dict[str, Any],
    provider: str,
    model: str,
) -> dict[str, Any]:
    """Check extra request fields against a provider's ``TypedDict`` schema.

    Keys the schema does not declare are dropped, as are ``None`` values.

    Raises:
        ValidationError: If a declared field has the wrong type.
    """
    try:
        validated = TypeAdapter(schema).validate_python(data)
    except PydanticValidationError as ex:
        raise ValidationError(
            f"Invalid parameters for {model or provider}: {ex}",
            provider=provider,
            model=model,
        ) from ex
    return {key: value for key, value in validated.items() if value is not None}


def first_non_empty(data: dict[str, Any], paths: list[tuple[str, ...]]) -> Any:
    """Return the first non-empty value found along ``paths`` in nested dicts.

    Example:
        >>> first_non_empty({"data": {"id": 7}}, [("taskId",), ("data", "id")])
        7
    """
    for path in paths:
        value: Any = data
        for key in path:
            if not isinstance(value, dict):
                value = None
                break
            value = value.get(key)
        if value not in (None, "", 0):
            return value
    return None
