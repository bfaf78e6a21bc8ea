import logging
import sys
from typing import Optional


def get_logger(name: Optional[str] = None):
    logger = logging.getLogger("prooflane")
    if not logger.handlers:
        h = logging.StreamHandler(sys.stdout)
        fmt = logging.Formatter("[%(asctime)s] %(levelname)s %(message)s")
        h.setFormatter(fmt)
        logger.addHandler(h)
        logger.setLevel(logging.INFO)
    if name:
        return logger.getChild(name)
    return logger
