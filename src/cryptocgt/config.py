# config.py
"""
Runtime configuration.

Values come from environment variables; a `.env` file at the project root is
loaded first when present (python-dotenv), so local runs don't need exports.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

from .schemas import CalcConfig

# src/cryptocgt/config.py -> parents[2] == project root
PROJECT_ROOT = Path(__file__).resolve().parents[2]
load_dotenv(PROJECT_ROOT / ".env")

DB_URL = os.getenv("CRYPTOCGT_DB_URL", "sqlite:///./cryptocgt.db")
LOG_LEVEL = os.getenv("CRYPTOCGT_LOG_LEVEL", "INFO").upper()

DEFAULT_ANNUAL_EXEMPTION = os.getenv("CRYPTOCGT_ANNUAL_EXEMPTION", "3000")  # UK 2024-25
DEFAULT_FLAT_TAX_RATE = os.getenv("CRYPTOCGT_FLAT_TAX_RATE", "0.20")
DEFAULT_MATCHING_STRATEGY = os.getenv("CRYPTOCGT_MATCHING_STRATEGY", "PURE_FIFO").upper()
DEFAULT_UNMATCHED_POLICY = os.getenv("CRYPTOCGT_UNMATCHED_POLICY", "IGNORE").upper()

# No authentication: requests without X-User-Id act on this ledger
DEFAULT_USER_ID = os.getenv("CRYPTOCGT_DEFAULT_USER", "local-user")


def default_calc_config() -> CalcConfig:
    """Build a validated CalcConfig from the environment defaults."""
    return CalcConfig(
        annual_exemption=DEFAULT_ANNUAL_EXEMPTION,
        flat_tax_rate=DEFAULT_FLAT_TAX_RATE,
        matching_strategy=DEFAULT_MATCHING_STRATEGY,
        unmatched_policy=DEFAULT_UNMATCHED_POLICY,
    )


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
