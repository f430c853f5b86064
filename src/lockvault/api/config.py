from __future__ import annotations

import os
from dataclasses import dataclass

from lockvault.env import env_int


@dataclass(frozen=True)
class ApiConfig:
    mode: str  # "prod" | "dev"
    host: str
    port: int
    max_request_bytes: int

    @property
    def docs_enabled(self) -> bool:
        return self.mode != "prod"


def load_api_config() -> ApiConfig:
    return ApiConfig(
        mode=(os.getenv("LOCKVAULT_MODE") or "prod").strip().lower(),
        host=os.getenv("LOCKVAULT_API_HOST", "127.0.0.1"),
        port=env_int("LOCKVAULT_API_PORT", 8080),
        max_request_bytes=env_int("LOCKVAULT_MAX_REQUEST_BYTES", 64_000),
    )
