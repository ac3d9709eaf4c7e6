from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from .errors import ValidationFailed
from .status import load_zone


DEFAULT_JWT_SECRET = "taskhub-dev-secret-change-me"


def _read_env_str(name: str, default: str) -> str:
    raw = os.environ.get(name)
    if raw is None:
        return default
    raw = raw.strip()
    return raw or default


def _read_env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _read_env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _default_data_dir() -> Path:
    if os.name == "nt":
        base = os.environ.get("APPDATA") or str(Path.home())
        return Path(base) / "taskhub"
    base = os.environ.get("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
    return Path(base) / "taskhub"


def _cors_origins() -> List[str]:
    defaults = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]
    raw = str(os.environ.get("TASKHUB_CORS_ORIGINS") or "").strip()
    if not raw:
        return defaults
    extras = [item.strip() for item in raw.split(",") if item.strip()]
    out: List[str] = []
    for origin in defaults + extras:
        if origin not in out:
            out.append(origin)
    return out


@dataclass
class Settings:
    env: str = "development"
    db_path: str = ""
    jwt_secret: str = DEFAULT_JWT_SECRET
    jwt_expire_hours: int = 12
    cache_ttl_seconds: float = 8.0
    default_timezone: str = "America/Sao_Paulo"
    cors_origins: List[str] = field(default_factory=list)
    log_level: str = "INFO"
    log_dir: str = ""
    login_window_seconds: int = 300
    login_max_attempts: int = 8

    @property
    def is_production(self) -> bool:
        return self.env in {"prod", "production"}

    def validate(self) -> None:
        if self.is_production:
            if self.jwt_secret == DEFAULT_JWT_SECRET or len(self.jwt_secret) < 32:
                raise RuntimeError("Defina TASKHUB_AUTH_SECRET com no minimo 32 caracteres em producao.")
        if self.cache_ttl_seconds < 0:
            raise RuntimeError("TASKHUB_CACHE_TTL_SECONDS nao pode ser negativo.")
        try:
            load_zone(self.default_timezone)
        except ValidationFailed as exc:
            raise RuntimeError(f"TASKHUB_DEFAULT_TIMEZONE invalido: {self.default_timezone}") from exc


def load_settings() -> Settings:
    db_path = os.environ.get("TASKHUB_DB_PATH")
    if not db_path:
        data_dir = _default_data_dir()
        data_dir.mkdir(parents=True, exist_ok=True)
        db_path = str(data_dir / "taskhub.db")
    settings = Settings(
        env=_read_env_str("TASKHUB_ENV", "development").lower(),
        db_path=db_path,
        jwt_secret=_read_env_str("TASKHUB_AUTH_SECRET", DEFAULT_JWT_SECRET),
        jwt_expire_hours=max(1, _read_env_int("TASKHUB_AUTH_EXPIRE_HOURS", 12)),
        cache_ttl_seconds=_read_env_float("TASKHUB_CACHE_TTL_SECONDS", 8.0),
        default_timezone=_read_env_str("TASKHUB_DEFAULT_TIMEZONE", "America/Sao_Paulo"),
        cors_origins=_cors_origins(),
        log_level=_read_env_str("TASKHUB_LOG_LEVEL", "INFO").upper(),
        log_dir=_read_env_str("TASKHUB_LOG_DIR", ""),
        login_window_seconds=max(30, _read_env_int("TASKHUB_LOGIN_WINDOW_SECONDS", 300)),
        login_max_attempts=max(3, _read_env_int("TASKHUB_LOGIN_MAX_ATTEMPTS", 8)),
    )
    settings.validate()
    return settings
