from pydantic_settings import BaseSettings
from typing import List

class Settings(BaseSettings):
    # 上游接口配置（OpenRouter，OpenAI 兼容）
    OPENROUTER_API_KEY: str = ""
    PROXY_API_URL: str = "https://openrouter.ai/api/v1/chat/completions"
    HTTP_REFERER: str = "https://charakter-chat-backend.onrender.com"
    APP_TITLE: str = "AI Charakter-Chat App"
    DEFAULT_MODEL: str = "deepseek/deepseek-r1-0528:free"

    # 采样参数默认值
    DEFAULT_TEMPERATURE: float = 0.7
    DEFAULT_FREQUENCY_PENALTY: float = 0.0
    DEFAULT_PRESENCE_PENALTY: float = 0.0

    # 请求体上限
    MAX_BODY_SIZE: int = 100 * 1024 * 1024  # 100MB

    # 服务监听
    HOST: str = "0.0.0.0"
    PORT: int = 3000

    # CORS
    CORS_ORIGINS: List[str] = ["*"]

    # 日志
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"

settings = Settings()
