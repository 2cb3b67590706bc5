from __future__ import annotations

import logging

from beauty_app.config import settings

_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_configured = False


def configure_logging(level: int | str | None = None) -> None:
    """Attach one stream handler to the package logger."""
    global _configured
    root = logging.getLogger("beauty_app")
    if not _configured:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        root.addHandler(handler)
        root.propagate = False
        _configured = True
    root.setLevel(level or settings.log_level.upper())


def get_logger(name: str) -> logging.Logger:
    if not _configured:
        configure_logging()
    return logging.getLogger(f"beauty_app.{name}")
