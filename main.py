import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chat_relay.api import chat
from chat_relay.core.config import Settings, settings
from chat_relay.core.exceptions import register_exception_handlers
from chat_relay.core.logging import setup_logging
from chat_relay.services.relay import ChatRelay

logger = logging.getLogger("chat_relay")


@asynccontextmanager
async def lifespan(app: FastAPI):
    app_settings = app.state.settings
    logger.info(
        "Server is running on port %s and is ready for connections.",
        app_settings.PORT,
    )
    if not app_settings.OPENROUTER_API_KEY:
        logger.warning("OPENROUTER_API_KEY is not set; /chat will answer 500 until it is configured.")
    yield


def create_app(
    app_settings: Settings = settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    setup_logging(app_settings.LOG_LEVEL)

    app = FastAPI(
        title="Charakter-Chat Relay",
        description="角色聊天请求中继（OpenRouter 流式转发）",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = app_settings
    # 凭据在启动时注入，请求处理期间只读
    app.state.relay = ChatRelay.from_settings(app_settings, transport=transport)

    # CORS配置
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # 注册路由
    app.include_router(chat.router, tags=["聊天"])

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host=settings.HOST, port=settings.PORT)
