import logging
import os
import sys

logger = logging.getLogger("nihongo")
logger.setLevel(getattr(logging, os.getenv("NIHONGO_LOG_LEVEL", "INFO").upper(), logging.INFO))

stdout_handler = logging.StreamHandler(sys.stdout)
stderr_handler = logging.StreamHandler(sys.stderr)

stdout_handler.setLevel(logging.INFO)     # INFO and below
stderr_handler.setLevel(logging.WARNING)  # WARNING and above
stdout_handler.addFilter(lambda record: record.levelno < logging.WARNING)

formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
stdout_handler.setFormatter(formatter)
stderr_handler.setFormatter(formatter)

if not logger.handlers:
    logger.addHandler(stdout_handler)
    logger.addHandler(stderr_handler)
logger.propagate = False
