# src/common/logging_config.py

import logging

from src.common.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = None) -> None:
    """Configure root logging once for the API process."""
    logging.basicConfig(
        level=getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    # passlib probes bcrypt.__about__, which newer bcrypt releases dropped
    logging.getLogger("passlib").setLevel(logging.ERROR)
