"""Default configuration values for autorelay."""

from __future__ import annotations

DEFAULT_CONFIG: dict[str, dict[str, object]] = {
    "relay": {
        "version": "0.1.0",
        "data_dir": "~/.local/share/autorelay",
        "workflows_dir": "~/.local/share/autorelay/workflows",
    },
    "services": {
        "host": "127.0.0.1",
        "port": 7710,
        "log_level": "info",
    },
    "notifications": {
        "debounce_ms": 3000,
        "packages": {
            "com.google.android.gm": "Gmail",
            "org.telegram.messenger": "Telegram",
        },
    },
    "geofence": {
        "loitering_delay_seconds": 60,
        "debounce_ms": 3000,
    },
    "photos": {
        "enabled": True,
        "watch_dir": "~/Pictures",
        "decision_timeout_seconds": 7.0,
        "match_threshold": 0.65,
        "face_service_url": "",
        "extensions": [".jpg", ".jpeg", ".png", ".heic", ".webp"],
    },
    "llm": {
        "host": "http://localhost:11434",
        "text_model": "gemma3:1b",
        "vision_model": "gemma3:4b",
        "max_tokens": 512,
        "text_temperature": 0.7,
        "text_top_p": 0.95,
        "vision_temperature": 0.3,
        "vision_top_p": 0.9,
        "top_k": 40,
        "timeout_seconds": 120.0,
    },
    "gmail": {
        "credentials_path": "~/.config/autorelay/gmail_credentials.json",
        "token_path": "~/.config/autorelay/gmail_token.json",
        "max_results": 10,
        "query": "is:unread in:inbox",
    },
    "telegram": {
        "bot_token": "",
        "chat_ids": {},
    },
    "remote": {
        "enabled": False,
        "base_url": "",
        "user_id": "",
        "api_key": "",
        "timeout_seconds": 15.0,
    },
}
