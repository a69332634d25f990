import logging
import sys
from typing import Optional

from kpiwatch.core.config import get_settings


def setup_logging(log_level: Optional[str] = None) -> None:
    """Configure application logging."""
    settings = get_settings()
    level = log_level or settings.LOG_LEVEL or (logging.DEBUG if settings.ENV == "dev" else logging.INFO)
    
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )
    
    # asyncio reports its event loop selector at DEBUG
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name."""
    return logging.getLogger(name)
