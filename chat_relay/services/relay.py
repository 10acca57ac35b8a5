import asyncio
import json
import logging
import math
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from pydantic import ValidationError

from chat_relay.core.config import Settings
from chat_relay.core.exceptions import (
    BadRequest,
    ClientDisconnected,
    ServerMisconfigured,
    TransportFault,
    UpstreamError,
)
from chat_relay.schemas.chat import InboundChatRequest, UpstreamChatRequest, UpstreamMessage

logger = logging.getLogger("chat_relay.relay")

# 与 JavaScript parseFloat 一致：只取开头合法的数字部分
_FLOAT_PREFIX = re.compile(r"[+-]?(?:Infinity|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


def _reject_constant(name: str):
    raise ValueError(f"invalid JSON constant {name}")


def parse_payload(raw: bytes) -> Any:
    """把原始请求体解码并解析为 JSON"""
    if not raw:
        raise BadRequest("Request body is empty.")
    text = raw.decode("utf-8", errors="replace")
    try:
        return json.loads(text, parse_constant=_reject_constant)
    except ValueError as e:
        logger.error("Failed to parse body JSON: %s", e)
        raise BadRequest("Invalid JSON format.")


def _js_string(value: Any) -> str:
    # JavaScript String() 的转换结果，数组按逗号拼接
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        return str(int(value)) if value.is_integer() else repr(value)
    if isinstance(value, list):
        return ",".join("" if item is None else _js_string(item) for item in value)
    if isinstance(value, dict):
        return "[object Object]"
    return str(value)


def parse_float(value: Any) -> Optional[float]:
    """
    数值参数转换，规则同 JavaScript parseFloat。
    无法转换（或结果不是有限数）时返回 None，转发时序列化为 null。
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            number = float(value)
        except OverflowError:
            return None
    else:
        match = _FLOAT_PREFIX.match(_js_string(value).strip())
        if not match:
            return None
        number = float(match.group(0).replace("Infinity", "inf"))
    return number if math.isfinite(number) else None


def build_messages(req: InboundChatRequest) -> List[UpstreamMessage]:
    """system 提示 + 有内容的历史消息 + 本次用户消息"""
    description = req.character.description if req.character else None
    messages = [UpstreamMessage(role="system", content=description or "")]
    for item in req.chat_history:
        if not item.main:
            continue
        role = "assistant" if item.sender == "ai" else "user"
        messages.append(UpstreamMessage(role=role, content=item.main))
    messages.append(UpstreamMessage(role="user", content=req.user_message))
    return messages


class UpstreamStream:
    """上游流式响应，按块原样转发"""

    def __init__(self, client: httpx.AsyncClient, response: httpx.Response):
        self.client = client
        self.response = response

    async def iter_bytes(self):
        try:
            async for chunk in self.response.aiter_bytes():
                yield chunk
        except httpx.HTTPError as e:
            # 响应头已发送，只能记录并结束
            logger.error("Upstream stream failed after headers were sent: %s", e)
        except asyncio.CancelledError:
            logger.info("Client disconnected during streaming, closing upstream response.")
            raise
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        await self.response.aclose()
        await self.client.aclose()


class ChatRelay:
    """把聊天请求转换为上游 chat-completion 流式调用"""

    def __init__(
        self,
        api_key: str,
        *,
        url: str,
        referer: str,
        title: str,
        default_model: str,
        default_temperature: float = 0.7,
        default_frequency_penalty: float = 0.0,
        default_presence_penalty: float = 0.0,
        max_body_size: int = 100 * 1024 * 1024,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.url = url
        self.referer = referer
        self.title = title
        self.default_model = default_model
        self.default_temperature = default_temperature
        self.default_frequency_penalty = default_frequency_penalty
        self.default_presence_penalty = default_presence_penalty
        self.max_body_size = max_body_size
        # 不设超时，只受上游和传输层自身限制
        self.timeout = httpx.Timeout(None)
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> "ChatRelay":
        return cls(
            settings.OPENROUTER_API_KEY,
            url=settings.PROXY_API_URL,
            referer=settings.HTTP_REFERER,
            title=settings.APP_TITLE,
            default_model=settings.DEFAULT_MODEL,
            default_temperature=settings.DEFAULT_TEMPERATURE,
            default_frequency_penalty=settings.DEFAULT_FREQUENCY_PENALTY,
            default_presence_penalty=settings.DEFAULT_PRESENCE_PENALTY,
            max_body_size=settings.MAX_BODY_SIZE,
            transport=transport,
        )

    def ensure_configured(self) -> None:
        if not self.api_key:
            logger.error("OPENROUTER_API_KEY not found on the server!")
            raise ServerMisconfigured("API key is not configured on the server.")

    def validate(self, payload: Any) -> InboundChatRequest:
        if not isinstance(payload, dict):
            raise BadRequest("Character data and a message are required.")
        try:
            req = InboundChatRequest.model_validate(payload)
        except ValidationError as e:
            logger.warning("Rejected chat payload: %s", e)
            raise BadRequest("Character data and a message are required.")
        if req.character is None or req.user_message is None:
            raise BadRequest("Character data and a message are required.")
        return req

    def _tuning(self, req: InboundChatRequest, field: str, default: float) -> Optional[float]:
        # 字段缺省时用默认值，显式给出（包括 null）则按原值转换
        if field not in req.model_fields_set:
            return default
        return parse_float(getattr(req, field))

    def build_upstream_request(self, req: InboundChatRequest) -> UpstreamChatRequest:
        return UpstreamChatRequest(
            model=req.model_name or self.default_model,
            messages=build_messages(req),
            temperature=self._tuning(req, "temperature", self.default_temperature),
            frequency_penalty=self._tuning(req, "frequency_penalty", self.default_frequency_penalty),
            presence_penalty=self._tuning(req, "presence_penalty", self.default_presence_penalty),
        )

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
            "HTTP-Referer": self.referer,
            "X-Title": self.title,
        }

    async def open_stream(
        self,
        upstream: UpstreamChatRequest,
        disconnected: Callable[[], Awaitable[Any]],
    ) -> UpstreamStream:
        """
        发送流式 POST，等待上游响应头。
        调用方先断开时取消上游请求并抛出 ClientDisconnected；
        上游非 2xx 时读取完整错误体并抛出 UpstreamError。
        """
        client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        request = client.build_request("POST", self.url, headers=self.headers, json=upstream.model_dump())

        send_task = asyncio.ensure_future(client.send(request, stream=True))
        watch_task = asyncio.ensure_future(disconnected())
        try:
            done, _ = await asyncio.wait({send_task, watch_task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            send_task.cancel()
            watch_task.cancel()
            await asyncio.gather(send_task, watch_task, return_exceptions=True)
            await client.aclose()
            raise

        if send_task not in done:
            logger.info("Client disconnected, aborting request to upstream.")
            send_task.cancel()
            await asyncio.gather(send_task, return_exceptions=True)
            await client.aclose()
            raise ClientDisconnected()

        watch_task.cancel()
        await asyncio.gather(watch_task, return_exceptions=True)

        try:
            response = send_task.result()
        except httpx.HTTPError as e:
            logger.error("Error processing the request: %s", e)
            await client.aclose()
            raise TransportFault(str(e))
        except Exception:
            await client.aclose()
            raise

        if not response.is_success:
            try:
                body = await response.aread()
            finally:
                await response.aclose()
                await client.aclose()
            logger.error("Proxy API Error: %s %s", response.status_code, body.decode("utf-8", errors="replace"))
            raise UpstreamError(response.status_code, body)

        return UpstreamStream(client, response)
