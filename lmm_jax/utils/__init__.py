"""Utility functions and classes for lmm-jax."""

from .logging import get_logger, setup_logging, log_performance
from .validation import (
    validate_confidence_level,
    validate_count,
    validate_columns_present,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "log_performance",
    "validate_confidence_level",
    "validate_count",
    "validate_columns_present",
]
