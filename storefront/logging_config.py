import logging
from typing import Optional

FORMAT = "%(asctime)s %(levelname)s:%(name)s: %(message)s"


def setup_logging(level: Optional[str] = None) -> logging.Logger:
    logger = logging.getLogger("storefront")
    logger.setLevel(level or logging.INFO)

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(FORMAT))
        logger.addHandler(handler)

    return logger
