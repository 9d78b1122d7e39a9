"""
Model comparison for lmm-jax.

Parametric bootstrap intervals, interval widths and information criteria.
"""

from .uncertainty import (
    BootstrapResult,
    ParametricBootstrap,
    parametric_bootstrap_ci,
    interval_width,
    compare_interval_widths,
)
from .diagnostics import (
    ModelComparisonResult,
    information_criteria,
    compare_models,
)

__all__ = [
    "BootstrapResult",
    "ParametricBootstrap",
    "parametric_bootstrap_ci",
    "interval_width",
    "compare_interval_widths",
    "ModelComparisonResult",
    "information_criteria",
    "compare_models",
]
