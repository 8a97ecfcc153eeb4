"""Service-wide logger. Modules import it as ``from logger import logger``."""

import logging

from config import LOG_LEVEL

logger = logging.getLogger("analytics_service")

if not logger.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
    )
    logger.addHandler(_handler)

logger.setLevel(LOG_LEVEL.upper())
logger.propagate = False
