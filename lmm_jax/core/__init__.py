"""Core functionality for lmm-jax."""

from .exceptions import (
    LmmJaxError,
    DataUnavailable,
    SchemaMismatch,
    NoData,
    ModelSpecificationError,
    SingularFit,
    RankDeficient,
    OptimizationError,
    ValidationError,
    DataQualityError,
    ConfigurationError,
)

__all__ = [
    "LmmJaxError",
    "DataUnavailable",
    "SchemaMismatch",
    "NoData",
    "ModelSpecificationError",
    "SingularFit",
    "RankDeficient",
    "OptimizationError",
    "ValidationError",
    "DataQualityError",
    "ConfigurationError",
]
