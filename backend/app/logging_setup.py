"""Process-wide logging configuration."""
from __future__ import annotations

import logging

from rich.logging import RichHandler

from app.config import AppConfig

_configured = False


def configure_logging(config: AppConfig) -> None:
    global _configured
    if _configured:
        logging.getLogger().setLevel(config.log_level)
        return
    logging.basicConfig(
        level=config.log_level,
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
    # matplotlib font discovery is noisy at INFO
    logging.getLogger("matplotlib").setLevel(logging.WARNING)
    _configured = True
