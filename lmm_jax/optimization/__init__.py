"""Bounded optimization of profiled deviances for lmm-jax."""

from .optimizers import (
    OptimizationStrategy,
    OptimizationConfig,
    OptimizationResult,
    BaseOptimizer,
    ScipyLBFGSOptimizer,
    ScipyPowellOptimizer,
    HybridOptimizer,
    create_optimizer,
    minimize_with_strategy,
)

__all__ = [
    "OptimizationStrategy",
    "OptimizationConfig",
    "OptimizationResult",
    "BaseOptimizer",
    "ScipyLBFGSOptimizer",
    "ScipyPowellOptimizer",
    "HybridOptimizer",
    "create_optimizer",
    "minimize_with_strategy",
]
