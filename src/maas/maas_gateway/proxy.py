"""Passthrough proxies for chat, model listing, image and generic video calls."""

from typing import Any

import httpx
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.background import BackgroundTask

from maas.maas_gateway.client import auth_headers, join_url
from maas.maas_gateway.logging import log_error, log_info
from maas.maas_gateway.models import AnyDict

_LOGGER_NAME = "maas.maas_gateway.proxy"

STREAM_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}
STREAM_MEDIA_TYPE = "text/plain; charset=utf-8"

CONTENT_POLICY_SUGGESTIONS = [
    "使用更加具体和积极的描述词汇",
    "避免涉及暴力、成人内容或其他敏感主题",
    "尝试用更中性的表达方式重新描述您想要的图像",
    "确保描述内容符合AI生成图像的使用规范",
]


def internal_error(ex: Exception) -> JSONResponse:
    log_error(
        f"Proxy error: {ex}",
        context={"error_type": type(ex).__name__},
        logger_name=_LOGGER_NAME,
        exc_info=True,
    )
    return JSONResponse(
        {"error": "Internal server error", "details": str(ex)}, status_code=500
    )


def _api_failed(response: httpx.Response) -> JSONResponse:
    log_error(
        "Upstream API error response",
        context={"status_code": response.status_code, "body": response.text},
        logger_name=_LOGGER_NAME,
    )
    return JSONResponse(
        {
            "error": f"API request failed: {response.status_code} {response.reason_phrase}",
            "details": response.text,
        },
        status_code=response.status_code,
    )


async def proxy_chat_completions(
    client: httpx.AsyncClient, base_url: str, authorization: str, body: AnyDict
) -> Response:
    """Forward a chat completion request, relaying the byte stream when asked.

    Streamed bodies are passed through untouched; the upstream connection is
    closed once the relay finishes.
    """
    url = join_url(base_url, "v1/chat/completions")
    log_info("Proxying chat completion request", context={"url": url}, logger_name=_LOGGER_NAME)
    request = client.build_request(
        "POST",
        url,
        json=body,
        headers={"Content-Type": "application/json", "Authorization": authorization},
    )
    try:
        response = await client.send(request, stream=True)
    except httpx.HTTPError as ex:
        return internal_error(ex)

    if not response.is_success:
        await response.aread()
        await response.aclose()
        return _api_failed(response)

    if body.get("stream"):
        return StreamingResponse(
            response.aiter_raw(),
            media_type=STREAM_MEDIA_TYPE,
            headers=STREAM_HEADERS,
            background=BackgroundTask(response.aclose),
        )

    try:
        await response.aread()
        data: Any = response.json()
    except (httpx.HTTPError, ValueError) as ex:
        return internal_error(ex)
    finally:
        await response.aclose()
    return JSONResponse(data)


async def proxy_models(
    client: httpx.AsyncClient, base_url: str, authorization: str
) -> Response:
    url = join_url(base_url, "v1/models")
    log_info("Fetching models", context={"url": url}, logger_name=_LOGGER_NAME)
    try:
        response = await client.get(url, headers={"Authorization": authorization})
        if not response.is_success:
            return _api_failed(response)
        return JSONResponse(response.json())
    except (httpx.HTTPError, ValueError) as ex:
        return internal_error(ex)


def _image_error_body(response: httpx.Response) -> AnyDict:
    content_type = response.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            data = response.json()
        except ValueError:
            return {"message": response.text}
        return data if isinstance(data, dict) else {"message": response.text}
    return {"message": response.text}


def classify_image_error(
    status_code: int, reason_phrase: str, error_data: AnyDict
) -> tuple[int, AnyDict]:
    """Turn an upstream image generation failure into a localized error body.

    Returns:
        ``(status_code, body)`` where ``body`` carries ``error``, ``message``,
        ``type`` and, for some types, ``suggestions`` or ``details``.
    """
    error = error_data.get("error")
    error_obj = error if isinstance(error, dict) else {}
    error_message = str(error_obj.get("message") or error_data.get("message") or "")
    error_code = str(error_obj.get("code") or error_data.get("code") or "")

    if status_code == 400:
        if (
            error_code == "content_policy_violation"
            or "content_policy_violation" in error_message
        ):
            return 400, {
                "error": "内容安全检查失败",
                "message": "您的图像生成请求被安全系统拒绝。请修改您的描述，避免使用可能违反内容政策的词汇。",
                "suggestions": list(CONTENT_POLICY_SUGGESTIONS),
                "type": "content_policy_violation",
            }
        if "billing" in error_message or "quota" in error_message:
            return 400, {
                "error": "账户配额不足",
                "message": "当前API账户的图像生成配额已用完，请检查您的账户余额或升级套餐。",
                "type": "quota_exceeded",
            }
        if "invalid_request" in error_message or "invalid prompt" in error_message:
            return 400, {
                "error": "请求参数无效",
                "message": "图像生成请求的参数有误，请检查您的输入内容。",
                "details": error_message,
                "type": "invalid_request",
            }

    if status_code == 429:
        return 429, {
            "error": "请求频率过高",
            "message": "图像生成请求过于频繁，请稍后再试。",
            "type": "rate_limit_exceeded",
        }
    if status_code == 401:
        return 401, {
            "error": "API密钥验证失败",
            "message": "请检查您的API密钥是否正确配置。",
            "type": "authentication_failed",
        }
    if status_code >= 500:
        return status_code, {
            "error": "服务器错误",
            "message": "图像生成服务暂时不可用，请稍后重试。",
            "type": "server_error",
        }

    return status_code, {
        "error": f"图像生成失败: {status_code} {reason_phrase}",
        "message": error_message or "未知错误",
        "details": error_data,
        "type": "api_error",
    }


async def proxy_image_generations(
    client: httpx.AsyncClient, base_url: str, authorization: str, body: AnyDict
) -> Response:
    url = join_url(base_url, "v1/images/generations")
    log_info(
        "Proxying image generation request",
        context={"url": url, "body": body},
        logger_name=_LOGGER_NAME,
    )
    try:
        response = await client.post(
            url,
            json=body,
            headers={"Content-Type": "application/json", "Authorization": authorization},
        )
        if response.is_success:
            return JSONResponse(response.json())
    except (httpx.HTTPError, ValueError) as ex:
        return internal_error(ex)

    error_data = _image_error_body(response)
    log_error(
        "Image API error response",
        context={"status_code": response.status_code, "error": error_data},
        logger_name=_LOGGER_NAME,
    )
    status_code, payload = classify_image_error(
        response.status_code, response.reason_phrase, error_data
    )
    return JSONResponse(payload, status_code=status_code)


def video_generation_payload(body: AnyDict) -> AnyDict:
    """``{model, ...others}`` plus prompt, image and audio only when truthy."""
    payload = {key: value for key, value in body.items() if key not in ("prompt", "image", "audio")}
    payload["model"] = body.get("model")
    for key in ("prompt", "image", "audio"):
        if body.get(key):
            payload[key] = body[key]
    return payload


async def proxy_video_generations(
    client: httpx.AsyncClient, base_url: str, api_key: str, body: AnyDict
) -> Response:
    """Forward an OpenAI-style video generation call.

    Any failure becomes a 500 with ``{"error": <message>}``.
    """
    payload = video_generation_payload(body)
    log_info("Video generation request", context={"payload": payload}, logger_name=_LOGGER_NAME)
    try:
        response = await client.post(
            join_url(base_url, "v1/videos/generations"),
            json=payload,
            headers=auth_headers(api_key),
        )
        if not response.is_success:
            log_error(
                "Video generation API error",
                context={"status_code": response.status_code, "body": response.text},
                logger_name=_LOGGER_NAME,
            )
            return JSONResponse(
                {"error": f"API请求失败 ({response.status_code}): {response.text}"},
                status_code=500,
            )
        return JSONResponse(response.json())
    except (httpx.HTTPError, ValueError) as ex:
        log_error(
            f"Video generation error: {ex}",
            logger_name=_LOGGER_NAME,
            exc_info=True,
        )
        return JSONResponse({"error": str(ex) or "Video generation failed"}, status_code=500)
