"""
Validation utilities for lmm-jax.

Common argument checks shared by the data, model and inference layers.
"""

from typing import Iterable

import numpy as np
import pandas as pd

from ..core.exceptions import ValidationError, SchemaMismatch


def validate_confidence_level(level: float, name: str = "confidence_level") -> None:
    """Validate that a confidence level lies strictly between 0 and 1."""
    if not isinstance(level, (int, float)) or not 0 < level < 1:
        raise ValidationError(
            f"{name} must lie strictly between 0 and 1, got {level}",
            suggestions=["Use e.g. 0.95 for a 95% interval"],
            context={"name": name, "value": level},
        )


def validate_count(value: int, name: str = "count", minimum: int = 1) -> None:
    """Validate an integer count such as a number of simulations."""
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)) or value < minimum:
        raise ValidationError(
            f"{name} must be an integer >= {minimum}, got {value!r}",
            suggestions=[f"Provide an integer {name} of at least {minimum}"],
            context={"name": name, "value": value},
        )


def validate_columns_present(table: pd.DataFrame, columns: Iterable[str]) -> None:
    """
    Validate that a table carries all the given columns.

    Raises:
        SchemaMismatch: If any column is missing
    """
    missing = [col for col in columns if col not in table.columns]
    if missing:
        raise SchemaMismatch(
            missing_columns=missing,
            available_columns=[str(col) for col in table.columns],
        )
