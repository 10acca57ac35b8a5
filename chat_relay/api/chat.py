import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response, StreamingResponse
from starlette.background import BackgroundTask
from starlette.requests import ClientDisconnect

from chat_relay.core.exceptions import ClientDisconnected, PayloadTooLarge
from chat_relay.schemas.response import ErrorResponse
from chat_relay.services.relay import ChatRelay, parse_payload

logger = logging.getLogger("chat_relay.api")

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    413: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


class ClientGoneResponse(Response):
    """调用方已断开，不再写任何响应"""

    def __init__(self):
        super().__init__(status_code=499)

    async def __call__(self, scope, receive, send):
        return None


def get_relay(request: Request) -> ChatRelay:
    return request.app.state.relay


async def read_body(request: Request, limit: int) -> bytes:
    """完整读取原始请求体（不经框架的 body 解析）"""
    length = request.headers.get("content-length")
    if length and length.isdigit() and int(length) > limit:
        raise PayloadTooLarge("Request body is too large.")

    chunks = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > limit:
            raise PayloadTooLarge("Request body is too large.")
        chunks.append(chunk)
    return b"".join(chunks)


async def wait_for_disconnect(request: Request) -> None:
    # 请求体已读完，之后只会收到 http.disconnect
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


@router.post("/chat", response_class=StreamingResponse, responses=ERROR_RESPONSES)
async def chat(request: Request, relay: ChatRelay = Depends(get_relay)):
    """转发聊天请求到上游，并以 event-stream 返回"""
    try:
        raw = await read_body(request, relay.max_body_size)
    except ClientDisconnect:
        logger.info("Client disconnected while sending the request body.")
        return ClientGoneResponse()

    payload = parse_payload(raw)
    relay.ensure_configured()
    chat_request = relay.validate(payload)
    upstream = relay.build_upstream_request(chat_request)

    try:
        stream = await relay.open_stream(upstream, lambda: wait_for_disconnect(request))
    except ClientDisconnected:
        return ClientGoneResponse()

    return StreamingResponse(
        stream.iter_bytes(),
        headers={"Content-Type": "text/event-stream"},
        background=BackgroundTask(stream.aclose),
    )
