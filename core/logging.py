"""
Logging configuration
"""

import logging
import sys
from typing import Any, Dict
from core.config import settings

SENSITIVE_KEY_FRAGMENTS = ("password", "secret", "token", "apikey", "api.key", "jaas.config")
MASK = "*****"


def setup_logging():
    """Configure application logging"""
    
    # Get log level from settings
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    
    # Configure root logger
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )
    
    # Set SQLAlchemy logging to WARNING to reduce noise
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    
    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured at {settings.LOG_LEVEL} level")


def mask_sensitive(config: Any) -> Any:
    """Return a copy of a connector config safe to write to the log."""
    if isinstance(config, dict):
        masked: Dict[str, Any] = {}
        for key, value in config.items():
            if any(fragment in str(key).lower() for fragment in SENSITIVE_KEY_FRAGMENTS):
                masked[key] = MASK
            else:
                masked[key] = mask_sensitive(value)
        return masked
    if isinstance(config, list):
        return [mask_sensitive(item) for item in config]
    return config
