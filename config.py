from __future__ import annotations

from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    min_players: int = 5
    dev_min_players: int = 2

    # Seconds the room survives without its host. 0 closes it immediately.
    host_grace_seconds: float = 90.0

    room_code_length: int = 4
    room_code_fallback_length: int = 6
    room_code_attempts: int = 200

    max_name_length: int = 24

    log_level: str = "INFO"
    allowed_origins: List[str] = ["*"]

    model_config = SettingsConfigDict(
        env_prefix="MAFIA_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
    )


settings = Settings()
