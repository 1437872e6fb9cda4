"""Stream configuration via environment variables (SSEWIRE_ prefix) or defaults."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class StreamConfig(BaseSettings):
    host: str = "127.0.0.1"
    port: int = 8080
    retry_ms: int = 0  # 0 = don't send a retry hint
    queue_size: int = 0  # 0 = unbounded per-connection queue
    disconnect_poll_seconds: float = 1.0
    connect_timeout_seconds: float = 10.0
    read_timeout_seconds: float | None = None  # streams may idle indefinitely
    http2: bool = False
    output_buffer: int = 16
    log_dir: str = "logs"
    log_level: str = "INFO"
    json_logs: bool = True

    model_config = {"env_prefix": "SSEWIRE_"}
