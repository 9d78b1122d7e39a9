"""Linear mixed model fitting for lmm-jax."""

from .base import FittedModel, VarianceComponent
from .lmm import LinearMixedModel

__all__ = [
    "FittedModel",
    "VarianceComponent",
    "LinearMixedModel",
]
