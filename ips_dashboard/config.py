"""config.yaml → Pydantic settings"""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel


_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.yaml"


class AppConfig(BaseModel):
    api_base_url: str = "http://localhost:8080/api/v1"
    server_url: str = "http://localhost:8080"  # /health lives outside /api/v1
    request_timeout: float = 30.0
    poll_interval: float = 5.0
    toast_duration: float = 3.0
    search_debounce: float = 0.3
    default_page_size: int = 10
    storage_path: str = "data/client.db"
    # Routing
    login_route: str = "/login"
    landing_route: str = "/dashboard"
    protected_prefixes: list[str] = [
        "/dashboard", "/views", "/tasks", "/scheduled", "/library", "/secrets", "/users", "/account",
        "/confirm", "/modals", "/toasts", "/events",
    ]


def load_config(path: Path | None = None) -> AppConfig:
    p = path or _CONFIG_PATH
    if not p.exists():
        return AppConfig()
    with open(p) as f:
        raw = yaml.safe_load(f) or {}
    return AppConfig(**raw)
