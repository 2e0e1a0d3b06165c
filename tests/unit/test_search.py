"""Tests for the search proxy."""

import httpx
import pytest

from maas.maas_gateway.exceptions import UpstreamError, ValidationError
from maas.maas_gateway.search import (
    build_query_params,
    normalize_results,
    run_search,
    search_target,
)

SEARCH_BASE = "https://search.example"

WEB_PAGES = {
    "webPages": {
        "value": [
            {
                "name": "Python",
                "url": "https://www.python.org/about",
                "snippet": "About Python",
                "dateLastCrawled": "2024-01-01",
            },
            {"url": "https://docs.python.org", "content": "Docs"},
        ]
    }
}


def make_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_search_target():
    assert search_target(SEARCH_BASE, "ep1", "SmartSearch") == (
        "smart",
        "https://search.example/search/ep1/smart",
    )
    assert search_target(SEARCH_BASE, "ep1", "FullTextSearch") == (
        "fulltext",
        "https://search.example/search/ep1/full",
    )
    with pytest.raises(ValidationError, match="Unsupported search model"):
        search_target(SEARCH_BASE, "ep1", "WebSearch")


def test_query_params_defaults():
    assert build_query_params("python", None) == {
        "q": "python",
        "safeSearch": "Moderate",
        "count": "10",
    }


def test_query_params_optional_fields():
    params = build_query_params(
        "python",
        {"count": 20, "offset": "0", "freshness": "Week", "mkt": "zh-CN", "setLang": "zh"},
    )
    assert params == {
        "q": "python",
        "safeSearch": "Moderate",
        "count": "20",
        "freshness": "Week",
        "mkt": "zh-CN",
        "setLang": "zh",
    }
    assert build_query_params("python", {"offset": 10})["offset"] == "10"


def test_normalize_results():
    results = normalize_results(WEB_PAGES["webPages"]["value"], "fulltext", {"offset": 10})

    first, second = results
    assert first["title"] == "Python"
    assert first["siteName"] == "www.python.org"
    assert first["datePublished"] == "2024-01-01"
    assert first["content"] == "About Python"
    assert first["relevanceScore"] == 2
    assert first["globalIndex"] == 11
    assert first["isFulltextMatch"] and not first["isSmartMatch"]

    assert second["title"] == "Unknown"
    assert second["snippet"] == "Docs"
    assert second["displayUrl"] == "https://docs.python.org"
    assert second["resultIndex"] == 2
    assert second["relevanceScore"] == 1


@pytest.mark.asyncio
async def test_run_search_with_results():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/search/ep1/smart"
        assert request.url.params["q"] == "python"
        assert request.headers["Authorization"] == "Bearer sk-search"
        assert request.headers["pragma"] == "no-cache"
        return httpx.Response(200, json=WEB_PAGES)

    body = await run_search(
        make_client(handler),
        search_base_url=SEARCH_BASE,
        api_key="sk-search",
        endpoint_id="ep1",
        query="python",
        model="SmartSearch",
    )

    assert body["success"] is True
    assert body["total"] == 2
    assert body["searchType"] == "smart"
    assert body["searchEndpointId"] == "ep1"
    assert body["searchParams"] == {}
    assert body["content"] == "找到相关结果约 2 个，以下是按相关度排序的结果："
    assert body["results"][0]["isSmartMatch"] is True


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"webPages": {"value": []}},
        {"webPages": []},
        {"webPages": {"value": "none"}},
        {"webPages": {"value": [1, "x", None]}},
        ["not", "an", "object"],
    ],
)
async def test_run_search_without_results(payload):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=payload)

    body = await run_search(
        make_client(handler),
        search_base_url=SEARCH_BASE,
        api_key="k",
        endpoint_id="ep1",
        query="zzz",
        model="FullTextSearch",
    )

    assert body["results"] == []
    assert body["total"] == 0
    assert body["content"].startswith("📄 全文搜索完成")


@pytest.mark.asyncio
async def test_run_search_upstream_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, text="forbidden")

    with pytest.raises(UpstreamError) as exc_info:
        await run_search(
            make_client(handler),
            search_base_url=SEARCH_BASE,
            api_key="k",
            endpoint_id="ep1",
            query="q",
            model="SmartSearch",
        )

    assert exc_info.value.message == "搜索请求失败: 403 Forbidden"
    assert exc_info.value.status_code == 403


@pytest.mark.asyncio
async def test_run_search_skips_non_object_items():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"webPages": {"value": ["junk", {"name": "Docs", "url": "https://docs.python.org/"}, 3]}},
        )

    body = await run_search(
        make_client(handler),
        search_base_url=SEARCH_BASE,
        api_key="k",
        endpoint_id="ep1",
        query="python",
        model="SmartSearch",
    )

    assert body["total"] == 1
    assert [r["title"] for r in body["results"]] == ["Docs"]
    assert body["results"][0]["siteName"] == "docs.python.org"
    assert body["content"] == "找到相关结果约 1 个，以下是按相关度排序的结果："
