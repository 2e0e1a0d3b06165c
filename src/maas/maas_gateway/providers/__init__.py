"""Provider implementations."""

from maas.maas_gateway.providers.base import TaskProviderHandler
from maas.maas_gateway.providers.hl import (
    HLProviderHandler,
    extract_hl_task_id,
    parse_hl_status,
)
from maas.maas_gateway.providers.kl import (
    KLProviderHandler,
    KlingVideoParams,
    parse_kl_status,
)
from maas.maas_gateway.providers.mj import MJProviderHandler, parse_mj_status

__all__ = [
    "TaskProviderHandler",
    "MJProviderHandler",
    "parse_mj_status",
    "HLProviderHandler",
    "extract_hl_task_id",
    "parse_hl_status",
    "KLProviderHandler",
    "KlingVideoParams",
    "parse_kl_status",
]
