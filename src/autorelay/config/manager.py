"""Config file handling: locate, load, edit, and persist ``config.toml``."""

from __future__ import annotations

import logging
import os
import platform
import stat
import tomllib
from pathlib import Path
from typing import Any

import tomli_w
from pydantic import ValidationError

from autorelay.config.defaults import DEFAULT_CONFIG
from autorelay.config.schema import RelayConfig

logger = logging.getLogger(__name__)

CONFIG_DIR_ENV = "AUTORELAY_CONFIG_DIR"
_CONFIG_FILE = "config.toml"


def default_config_dir() -> Path:
    """``$AUTORELAY_CONFIG_DIR`` when set, else ``~/.config/autorelay``."""
    override = os.environ.get(CONFIG_DIR_ENV)
    return Path(override or "~/.config/autorelay").expanduser()


class ConfigManager:
    """Owns the relay's ``config.toml``.

    :meth:`load` never fails: a missing, unreadable, or invalid file yields
    defaults.  Edits made through :meth:`set_value` and :meth:`unset_value`
    are validated against :class:`RelayConfig` before anything is written,
    so a bad value never reaches disk.
    """

    def __init__(self, config_dir: Path | str | None = None) -> None:
        self._config_dir = Path(config_dir) if config_dir else default_config_dir()

    def get_config_path(self) -> Path:
        return self._config_dir / _CONFIG_FILE

    def exists(self) -> bool:
        return self.get_config_path().is_file()

    # ------------------------------------------------------------------
    # Read / write
    # ------------------------------------------------------------------

    def load(self) -> RelayConfig:
        """Load configuration from disk, falling back to defaults."""
        path = self.get_config_path()
        if not path.is_file():
            logger.debug("Config file not found at %s, using defaults", path)
            return RelayConfig()

        try:
            with open(path, "rb") as fh:
                raw = tomllib.load(fh)
        except (tomllib.TOMLDecodeError, OSError) as exc:
            logger.warning("Failed to read config at %s: %s (using defaults)", path, exc)
            return RelayConfig()

        try:
            return RelayConfig(**_deep_merge(DEFAULT_CONFIG, raw))
        except ValidationError as exc:
            logger.warning("Invalid config at %s (using defaults): %s", path, exc)
            return RelayConfig()

    def save(self, config: RelayConfig) -> Path:
        """Write *config* as TOML and return the path.

        On Linux and macOS the file is ``chmod 600``; it holds bot tokens
        and API keys.
        """
        path = self.get_config_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as fh:
            tomli_w.dump(config.model_dump(), fh)

        if platform.system() in ("Linux", "Darwin"):
            os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)

        logger.debug("Config saved to %s", path)
        return path

    def init(self, force: bool = False) -> bool:
        """Write a defaults-only file. Returns ``False`` if one exists and not *force*."""
        if self.exists() and not force:
            return False
        self.save(RelayConfig())
        return True

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def set_value(self, key: str, value: str) -> RelayConfig:
        """Set ``section.field`` (or ``section.table.entry``) from a string.

        Values are coerced by the schema, list fields take comma-separated
        items.  Raises ``KeyError`` for unknown keys and ``ValueError`` when
        the value does not validate.
        """
        data, section, field, entry = self._locate(key)
        current = data[section][field]
        if isinstance(current, dict):
            if not entry:
                raise KeyError(f"{section}.{field} is a table; use {section}.{field}.<key>")
            current[entry] = value
        elif entry:
            raise KeyError(f"{section}.{field} is not a table")
        elif isinstance(current, list):
            data[section][field] = [item.strip() for item in value.split(",") if item.strip()]
        else:
            data[section][field] = value
        return self._commit(data, key)

    def unset_value(self, key: str) -> RelayConfig:
        """Remove a table entry, or reset a field to its default."""
        data, section, field, entry = self._locate(key)
        if entry:
            table = data[section][field]
            if not isinstance(table, dict) or entry not in table:
                raise KeyError(f"No entry {key!r}")
            del table[entry]
        else:
            data[section][field] = DEFAULT_CONFIG[section][field]
        return self._commit(data, key)

    def _locate(self, key: str) -> tuple[dict[str, Any], str, str, str]:
        section, _, rest = key.partition(".")
        field, _, entry = rest.partition(".")
        data = self.load().model_dump()
        if section not in data:
            raise KeyError(f"Unknown config section {section!r}")
        if not field or field not in data[section]:
            raise KeyError(f"Unknown setting {section}.{field or '?'}")
        return data, section, field, entry

    def _commit(self, data: dict[str, Any], key: str) -> RelayConfig:
        config = RelayConfig(**data)
        self.save(config)
        logger.info("Config %s updated", key)
        return config


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _deep_merge(base: dict[str, object], override: dict[str, object]) -> dict[str, object]:
    """Recursively merge *override* into a copy of *base*.

    Keys in *override* take precedence.  Nested dicts are merged rather
    than replaced so that partial TOML sections work correctly.
    """
    merged: dict[str, object] = {}
    for key in {*base, *override}:
        base_val = base.get(key)
        over_val = override.get(key)
        if isinstance(base_val, dict) and isinstance(over_val, dict):
            merged[key] = _deep_merge(base_val, over_val)  # type: ignore[arg-type]
        elif key in override:
            merged[key] = over_val
        else:
            merged[key] = base_val
    return merged
