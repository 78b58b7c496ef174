from __future__ import annotations

import logging
import logging.config

from docgate.core.config import get_settings


_CONFIGURED = False


def configure_logging() -> None:
    # Apply one process-wide logging config; repeated app factories must not stack handlers.
    global _CONFIGURED
    if _CONFIGURED:
        return
    settings = get_settings()
    level = settings.log_level.upper()
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "root": {"handlers": ["console"], "level": "WARNING"},
            "loggers": {
                "docgate": {"level": level},
                # Keep SQL echo out of application logs unless explicitly raised.
                "sqlalchemy.engine": {"level": "WARNING"},
            },
        }
    )
    _CONFIGURED = True
    logging.getLogger(__name__).debug("logging configured level=%s", level)
