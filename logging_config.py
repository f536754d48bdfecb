import logging
import sys


def setup_logging(level=logging.INFO) -> logging.Logger:
    logger = logging.getLogger("foodshare")
    if logger.handlers:
        return logger  # already configured
    logger.setLevel(level)
    handler = logging.StreamHandler(sys.stdout)
    fmt = logging.Formatter("[%(asctime)s] %(levelname)s %(name)s: %(message)s")
    handler.setFormatter(fmt)
    logger.addHandler(handler)
    # per-request access lines are noise next to our own event logs
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    return logger
