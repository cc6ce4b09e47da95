"""Allow ``python -m autorelay``."""

from autorelay.cli import app

app()
