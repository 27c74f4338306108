"""Centralised configuration via Pydantic Settings."""

from __future__ import annotations

import os

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide configuration loaded from environment variables."""

    model_config = {"env_prefix": "DROIDBRIDGE_", "frozen": True}

    # Android SDK root; adb lives under platform-tools/
    android_home: str | None = Field(
        default=None,
        validation_alias=AliasChoices("ANDROID_HOME", "DROIDBRIDGE_ANDROID_HOME", "android_home"),
    )

    # Bridge lifecycle
    init_poll_interval_seconds: float = 1.0
    init_max_attempts: int = 200
    track_retry_seconds: float = 1.0

    # Command channel
    # None means unbounded; callers poll on their own when they need a deadline.
    command_timeout_seconds: float | None = None
    stream_poll_interval_seconds: float = 0.5

    # Artifact push pool
    push_concurrency: int = 4
    push_timeout_seconds: float = 120.0

    # Bootstrap
    artifact_root: str = "mini"
    staging_dir: str = "/data/local/tmp"
    presence_timeout_seconds: float = 60.0
    presence_initial_delay_seconds: float = 0.1
    presence_max_delay_seconds: float = 2.0
    capture_quality: int = 80

    # Fleet supervisor
    auto_bootstrap_capture: bool = True
    auto_bootstrap_input: bool = True
    # 0 disables the forward
    capture_forward_port: int = 0
    input_forward_port: int = 0

    def adb_path(self) -> str | None:
        """Return the adb executable path derived from the SDK root."""
        if not self.android_home:
            return None
        return os.path.join(self.android_home, "platform-tools", "adb")


def get_settings() -> Settings:
    """Build settings from the environment; tests patch this."""
    return Settings()
