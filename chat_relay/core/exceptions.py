import logging
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, Response

logger = logging.getLogger("chat_relay.errors")


class RelayError(Exception):
    """中继处理过程中可直接返回给调用方的错误"""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class BadRequest(RelayError):
    status_code = status.HTTP_400_BAD_REQUEST


class PayloadTooLarge(BadRequest):
    status_code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE


class ServerMisconfigured(RelayError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class TransportFault(RelayError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class UpstreamError(Exception):
    """上游返回非 2xx，状态码和原始响应体原样转发"""

    def __init__(self, status_code: int, body: bytes):
        super().__init__(f"upstream responded with {status_code}")
        self.status_code = status_code
        self.body = body


class ClientDisconnected(Exception):
    """调用方在上游响应前断开"""


async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def upstream_error_handler(request: Request, exc: UpstreamError) -> Response:
    return Response(content=exc.body, status_code=exc.status_code)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Error processing the request: %s", exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": str(exc)},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RelayError, relay_error_handler)
    app.add_exception_handler(UpstreamError, upstream_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
