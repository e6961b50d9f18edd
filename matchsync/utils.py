# matchsync/utils.py
"""Shared utilities: logging and the millisecond clock."""
import os
import logging
import time


def get_logger(name=__name__):
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        level=getattr(logging, level, logging.INFO)
    )
    return logging.getLogger(name)

logger = get_logger("matchsync")


def now_ms() -> int:
    return int(time.time() * 1000)
