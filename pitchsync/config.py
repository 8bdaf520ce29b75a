from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field


def _resolve_project_root() -> Path:
    override = os.getenv("PITCHSYNC_HOME", "").strip()
    if override:
        return Path(override).expanduser().resolve()
    return Path.cwd().resolve()


def _env_path(name: str, default: Path) -> Path:
    value = os.getenv(name, "").strip()
    return Path(value).expanduser().resolve() if value else default


class Settings(BaseModel):
    project_root: Path = Field(default_factory=_resolve_project_root)
    data_dir: Path = Field(default_factory=lambda: _resolve_project_root() / "data")
    database_path: Path = Field(
        default_factory=lambda: _env_path("PITCHSYNC_DB", _resolve_project_root() / "data" / "pitchsync.db")
    )

    storage_dir: Path = Field(
        default_factory=lambda: _env_path("PITCHSYNC_STORAGE_DIR", _resolve_project_root() / "data" / "storage")
    )
    public_files_url: str = Field(
        default_factory=lambda: os.getenv("PITCHSYNC_PUBLIC_URL", "http://127.0.0.1:8001/files")
    )
    app_url: str = Field(default_factory=lambda: os.getenv("PITCHSYNC_APP_URL", "http://localhost:8080"))

    resend_api_key: str = Field(default_factory=lambda: os.getenv("RESEND_API_KEY", "").strip())
    email_from: str = Field(
        default_factory=lambda: os.getenv("PITCHSYNC_EMAIL_FROM", "PitchSync <notifications@resend.dev>")
    )
    email_api_url: str = "https://api.resend.com/emails"
    request_timeout_seconds: float = 15.0


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
