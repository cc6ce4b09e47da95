"""Pydantic models for autorelay configuration.

Nested section models use plain ``BaseModel`` to avoid pydantic-settings
reading environment variables for fields like ``host`` or ``port``.  Only
the top-level :class:`RelayConfig` extends ``BaseSettings``.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class RelaySection(BaseModel):
    """Core settings."""

    version: str = "0.1.0"
    data_dir: str = "~/.local/share/autorelay"
    workflows_dir: str = "~/.local/share/autorelay/workflows"


class ServicesSection(BaseModel):
    """HTTP ingress settings."""

    host: str = "127.0.0.1"
    port: int = 7710
    log_level: str = "info"


class NotificationsSection(BaseModel):
    """Notification trigger settings."""

    debounce_ms: int = 3000
    packages: dict[str, str] = Field(
        default_factory=lambda: {
            "com.google.android.gm": "Gmail",
            "org.telegram.messenger": "Telegram",
        }
    )


class GeofenceSection(BaseModel):
    """Geofence trigger settings."""

    loitering_delay_seconds: int = 60
    debounce_ms: int = 3000


class PhotosSection(BaseModel):
    """Photo trigger settings."""

    enabled: bool = True
    watch_dir: str = "~/Pictures"
    decision_timeout_seconds: float = 7.0
    match_threshold: float = 0.65
    face_service_url: str = ""
    extensions: list[str] = Field(
        default_factory=lambda: [".jpg", ".jpeg", ".png", ".heic", ".webp"]
    )


class LlmSection(BaseModel):
    """Inference backend settings (Ollama)."""

    host: str = "http://localhost:11434"
    text_model: str = "gemma3:1b"
    vision_model: str = "gemma3:4b"
    max_tokens: int = 512
    text_temperature: float = 0.7
    text_top_p: float = 0.95
    vision_temperature: float = 0.3
    vision_top_p: float = 0.9
    top_k: int = 40
    timeout_seconds: float = 120.0


class GmailSection(BaseModel):
    """Gmail API settings."""

    credentials_path: str = "~/.config/autorelay/gmail_credentials.json"
    token_path: str = "~/.config/autorelay/gmail_token.json"
    max_results: int = 10
    query: str = "is:unread in:inbox"


class TelegramSection(BaseModel):
    """Telegram Bot API settings."""

    bot_token: str = ""
    chat_ids: dict[str, str] = Field(default_factory=dict)


class RemoteSection(BaseModel):
    """Remote workflow store settings."""

    enabled: bool = False
    base_url: str = ""
    user_id: str = ""
    api_key: str = ""
    timeout_seconds: float = 15.0


class RelayConfig(BaseSettings):
    """Top-level autorelay configuration model.

    Maps to the TOML structure:
        [relay] / [services] / [notifications] / [geofence] / [photos]
        [llm] / [gmail] / [telegram] / [remote]

    All fields are optional with sensible defaults. Config file lives at
    ``~/.config/autorelay/config.toml``.
    """

    relay: RelaySection = Field(default_factory=RelaySection)
    services: ServicesSection = Field(default_factory=ServicesSection)
    notifications: NotificationsSection = Field(default_factory=NotificationsSection)
    geofence: GeofenceSection = Field(default_factory=GeofenceSection)
    photos: PhotosSection = Field(default_factory=PhotosSection)
    llm: LlmSection = Field(default_factory=LlmSection)
    gmail: GmailSection = Field(default_factory=GmailSection)
    telegram: TelegramSection = Field(default_factory=TelegramSection)
    remote: RemoteSection = Field(default_factory=RemoteSection)

    def get_data_path(self) -> Path:
        """Return the resolved data directory path."""
        return Path(self.relay.data_dir).expanduser()

    def get_workflows_path(self) -> Path:
        """Return the resolved local workflow directory."""
        return Path(self.relay.workflows_dir).expanduser()
