"""
config.py
Runtime settings (paths, hashing cost, logging) with environment overrides.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

DB_FILE = Path(os.environ.get("GYM_DB_FILE", Path(__file__).with_name("gym.db")))
DB_TIMEOUT_SECONDS = float(os.environ.get("GYM_DB_TIMEOUT", "30"))

# bcrypt accepts 4..31
BCRYPT_ROUNDS = int(os.environ.get("GYM_BCRYPT_ROUNDS", "12"))
MIN_SECRET_LENGTH = int(os.environ.get("GYM_MIN_SECRET_LENGTH", "6"))

DEFAULT_OPERATOR_ID = "admin"
DEFAULT_OPERATOR_SECRET = "admin123"
DEFAULT_OPERATOR_NAME = "Default Administrator"

LOG_LEVEL = os.environ.get("GYM_LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str | None = None) -> logging.Logger:
    """Configure root logging once for the process. GymSystem(bootstrap=True) calls this."""
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    return logging.getLogger("gym")
