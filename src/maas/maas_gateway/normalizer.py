"""Map provider success payloads onto ``GenerationResponse``."""

import time
from typing import Any

from maas.maas_gateway.models import (
    DEFAULT_REVISED_PROMPT,
    AnyDict,
    GeneratedAsset,
    GenerationResponse,
    GenerationTask,
)


def mj_assets(status_data: AnyDict) -> list[GeneratedAsset]:
    """One asset per entry of ``urls``, each with the job's ``text`` as prompt."""
    urls: Any = status_data.get("urls")
    if not isinstance(urls, list):
        return []
    text = status_data.get("text")
    if not isinstance(text, str):
        text = None
    return [
        GeneratedAsset(url=url, revised_prompt=text)
        for url in urls
        if isinstance(url, str) and url
    ]


def hl_assets(media_url: str, prompt: str | None) -> list[GeneratedAsset]:
    return [
        GeneratedAsset(url=media_url, revised_prompt=prompt or DEFAULT_REVISED_PROMPT)
    ]


def kl_assets(videos: list[AnyDict], prompt: str | None) -> list[GeneratedAsset]:
    """Only the first video of a Kling result is returned."""
    first = videos[0]
    return [
        GeneratedAsset(
            url=str(first.get("url") or ""),
            revised_prompt=prompt or DEFAULT_REVISED_PROMPT,
        )
    ]


def build_response(
    task: GenerationTask, raw_response: AnyDict | None = None
) -> GenerationResponse:
    """Build the canonical response for a succeeded task."""
    if task.state != "succeeded" or not task.artifact:
        raise ValueError(f"Task {task.task_id} has no artifact (state={task.state})")
    return GenerationResponse(
        created=int(time.time()),
        data=list(task.artifact),
        task_id=task.task_id,
        provider=task.provider,
        attempts=task.attempts,
        raw_response=raw_response or {},
    )
