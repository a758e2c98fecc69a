"""Runtime settings."""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="COMPATGATE_", extra="ignore")

    app_name: str = "CompatGate"
    log_level: str = "info"
    # 为空时不写日志文件，只输出到 stderr
    log_dir: str = "logs"
    # DEBUG 下是否打印完整请求正文；False 时只打 method/path/headers + body_size
    log_full_request_body: bool = False
    host: str = "127.0.0.1"
    port: int = 18080

    # first: 首个 tool-call 即结束流；all: 累积全部 tool-call，直到 finish/error
    stream_tool_calls: Literal["first", "all"] = "first"

    # build_default_app() 使用的 mock 模型与静态 key；api_key 为空表示不校验
    mock_model_id: str = "mock-echo"
    api_key: str = ""


settings = Settings()
