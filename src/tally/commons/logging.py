"""
Centralized logging.

Stdlib logging, configured once. Every module logs through the `tally` logger so
that downstream-dependency failures (PostHog, Upstash, OTLP) end up in one stream.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache


@lru_cache
def initialize_logger() -> logging.Logger:
    logging.basicConfig(
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    )
    return logging.getLogger("tally")


logger = initialize_logger()
