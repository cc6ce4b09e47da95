"""autorelay configuration system."""

from autorelay.config.manager import ConfigManager
from autorelay.config.schema import RelayConfig

__all__ = ["ConfigManager", "RelayConfig"]
