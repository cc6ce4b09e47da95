"""autorelay — when something happens on one app, rewrite it and deliver it via another."""

__version__ = "0.1.0"
