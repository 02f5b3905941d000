"""
Logging setup shared by the engine and the housekeeping worker.
"""
import logging
from typing import Optional

from pythonjsonlogger.json import JsonFormatter

from .config import Settings, get_settings

TEXT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
JSON_FORMAT = '%(asctime)s %(name)s %(levelname)s %(message)s'

def configure_logging(settings: Optional[Settings] = None) -> None:
    """Install the root handler according to LOG_LEVEL / LOG_FORMAT."""
    settings = settings or get_settings()

    if settings.LOG_FILE:
        handler: logging.Handler = logging.FileHandler(settings.LOG_FILE)
    else:
        handler = logging.StreamHandler()

    if settings.LOG_FORMAT.lower() == "json":
        handler.setFormatter(JsonFormatter(JSON_FORMAT))
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, settings.LOG_LEVEL, logging.INFO))
