"""Logging setup for storybot.

JSON lines in production, readable console lines elsewhere. Chatty client
libraries used by the LLM layer are held at WARNING.
"""
import logging
import logging.config
import sys
from typing import Any, Dict, Optional

from .settings import ClusterSettings, resolve_settings

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
QUIET_LOGGERS = ("openai", "httpx", "httpcore", "redis")


def _formatters(service_name: Optional[str]) -> Dict[str, Dict[str, str]]:
    service = f" {service_name}" if service_name else ""
    console_service = f" [{service_name}]" if service_name else ""
    return {
        "json": {
            "class": "pythonjsonlogger.jsonlogger.JsonFormatter",
            "format": f"%(asctime)s %(levelname)s{service} %(name)s %(message)s",
            "datefmt": DATE_FORMAT,
        },
        "console": {
            "format": f"%(asctime)s{console_service} [%(levelname)s] %(name)s: %(message)s",
            "datefmt": DATE_FORMAT,
        },
    }


def get_logging_config(service_name: str = None,
                       settings: Optional[ClusterSettings] = None) -> Dict[str, Any]:
    """Build the dictConfig mapping for the current environment."""
    settings = resolve_settings(settings)
    level = settings.log_level.upper()
    formatter = "json" if settings.environment == "production" else "console"

    loggers: Dict[str, Dict[str, Any]] = {
        "storybot": {"level": level, "handlers": ["console"], "propagate": False},
    }
    for name in QUIET_LOGGERS:
        loggers[name] = {"level": "WARNING", "handlers": ["console"], "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": _formatters(service_name),
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": formatter,
                "stream": sys.stdout,
            }
        },
        "loggers": loggers,
        "root": {"level": level, "handlers": ["console"]},
    }


def setup_logging(service_name: str = None, settings: Optional[ClusterSettings] = None) -> None:
    """Configure logging for a process embedding the pipeline."""
    logging.config.dictConfig(get_logging_config(service_name, settings))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
