"""Search proxy for the SmartSearch and FullTextSearch models."""

from datetime import datetime, timezone
from typing import Any, Literal
from urllib.parse import urlparse

import httpx

from maas.maas_gateway.client import join_url
from maas.maas_gateway.exceptions import UpstreamError, ValidationError
from maas.maas_gateway.logging import log_error, log_info
from maas.maas_gateway.models import AnyDict

_LOGGER_NAME = "maas.maas_gateway.search"

SearchType = Literal["smart", "fulltext"]

# model name -> (search type, URL suffix)
SEARCH_MODELS: dict[str, tuple[SearchType, str]] = {
    "SmartSearch": ("smart", "smart"),
    "FullTextSearch": ("fulltext", "full"),
}

_NO_RESULTS = {
    "smart": "🧠 智能搜索完成，但AI未找到相关的语义匹配内容。建议尝试调整关键词或使用全文搜索模式。",
    "fulltext": "📄 全文搜索完成，但未找到包含指定关键词的内容。建议尝试其他关键词或使用智能搜索模式。",
}
_RESULTS_HEADER = {
    "smart": "找到相关结果约 {count} 个，以下是按相关度排序的结果：",
    "fulltext": "找到相关结果约 {count} 个，以下是按关键词匹配度排序的结果：",
}


def search_target(search_base_url: str, endpoint_id: str, model: str) -> tuple[SearchType, str]:
    """Return ``(search_type, url)`` for a search model.

    Raises:
        ValidationError: If the model is not a supported search model.
    """
    if model not in SEARCH_MODELS:
        raise ValidationError("Unsupported search model", model=model)
    search_type, suffix = SEARCH_MODELS[model]
    return search_type, join_url(search_base_url, "search", endpoint_id, suffix)


def build_query_params(query: str, search_params: AnyDict | None) -> dict[str, str]:
    search_params = search_params or {}
    params = {
        "q": query,
        "safeSearch": str(search_params.get("safeSearch") or "Moderate"),
        "count": str(search_params.get("count") or "10"),
    }
    if search_params.get("freshness"):
        params["freshness"] = str(search_params["freshness"])
    offset = search_params.get("offset")
    if offset and str(offset) != "0":
        params["offset"] = str(offset)
    for key in ("mkt", "cc", "setLang"):
        if search_params.get(key):
            params[key] = str(search_params[key])
    return params


def _hostname(url: Any) -> str:
    if not url or not isinstance(url, str):
        return ""
    return urlparse(url).hostname or ""


def _web_pages(search_data: Any) -> list[AnyDict]:
    """``webPages.value`` entries that are objects; anything else is no results."""
    web_pages = search_data.get("webPages") if isinstance(search_data, dict) else None
    value = web_pages.get("value") if isinstance(web_pages, dict) else None
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _offset(search_params: AnyDict | None) -> int:
    try:
        return int((search_params or {}).get("offset") or 0)
    except (TypeError, ValueError):
        return 0


def normalize_results(
    web_pages: list[AnyDict], search_type: SearchType, search_params: AnyDict | None
) -> list[AnyDict]:
    """Map ``webPages.value`` items to the result list shown to callers.

    ``relevanceScore`` counts down from the number of results, and
    ``globalIndex`` is 1-based across pages using the request offset.
    """
    items = [item for item in web_pages if isinstance(item, dict)]
    total = len(items)
    offset = _offset(search_params)
    results = []
    for index, item in enumerate(items):
        url = item.get("url")
        results.append(
            {
                "title": item.get("name") or item.get("title") or "Unknown",
                "url": url,
                "displayUrl": item.get("displayUrl") or url,
                "snippet": item.get("snippet") or item.get("content") or "No description",
                "content": item.get("content") or item.get("snippet") or "No description",
                "fullContent": item.get("fullContent") or item.get("content") or "",
                "siteName": item.get("siteName") or _hostname(url),
                "datePublished": item.get("datePublished") or item.get("dateLastCrawled") or "",
                "dateLastCrawled": item.get("dateLastCrawled") or "",
                "thumbnailUrl": item.get("thumbnailUrl") or "",
                "relevanceScore": total - index,
                "searchType": search_type,
                "isSmartMatch": search_type == "smart",
                "isFulltextMatch": search_type == "fulltext",
                "resultIndex": index + 1,
                "globalIndex": offset + index + 1,
            }
        )
    return results


async def run_search(
    client: httpx.AsyncClient,
    *,
    search_base_url: str,
    api_key: str,
    endpoint_id: str,
    query: str,
    model: str,
    search_params: AnyDict | None = None,
) -> AnyDict:
    """Run one search and return the normalized response body.

    Raises:
        ValidationError: Unsupported search model.
        UpstreamError: The search API returned a non-2xx status.
    """
    search_type, url = search_target(search_base_url, endpoint_id, model)
    params = build_query_params(query, search_params)
    log_info(
        "Search request",
        context={"model": model, "query": query, "endpoint_id": endpoint_id},
        logger_name=_LOGGER_NAME,
    )

    response = await client.get(
        url,
        params=params,
        headers={
            "Authorization": f"Bearer {api_key}",
            "Accept": "application/json",
            "pragma": "no-cache",
        },
    )
    if not response.is_success:
        log_error(
            "Search API error",
            context={"status_code": response.status_code, "body": response.text},
            logger_name=_LOGGER_NAME,
        )
        raise UpstreamError(
            f"搜索请求失败: {response.status_code} {response.reason_phrase}",
            model=model,
            raw_response={"body": response.text},
            status_code=response.status_code,
        )

    web_pages = _web_pages(response.json())

    results: list[AnyDict] = []
    if web_pages:
        content = _RESULTS_HEADER[search_type].format(count=len(web_pages))
        results = normalize_results(web_pages, search_type, search_params)
    else:
        content = _NO_RESULTS[search_type]

    return {
        "query": query,
        "model": model,
        "content": content,
        "results": results,
        "searchType": search_type,
        "searchEndpointId": endpoint_id,
        "searchParams": search_params or {},
        "total": len(results),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "success": True,
    }
