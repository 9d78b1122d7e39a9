"""
Optimization implementations for lmm-jax.

Wraps scipy.optimize for the bounded minimisation of profiled deviances:
- L-BFGS-B with an analytic (JAX) gradient for well-behaved problems
- Bounded Powell as a derivative-free fallback
- A hybrid strategy trying the first and falling back to the second
"""

import copy
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import numpy as np
import scipy.optimize

from ..core.exceptions import OptimizationError
from ..utils.logging import get_logger


logger = get_logger(__name__)

Bounds = Optional[List[Tuple[Optional[float], Optional[float]]]]


class OptimizationStrategy(str, Enum):
    """Available optimization strategies."""

    SCIPY_LBFGS = "scipy_lbfgs"
    SCIPY_POWELL = "scipy_powell"
    HYBRID = "hybrid"


@dataclass
class OptimizationConfig:
    """Configuration for an optimizer."""

    max_iter: int = 1000
    tolerance: float = 1e-10
    verbose: bool = False

    def copy_with_overrides(self, **kwargs) -> "OptimizationConfig":
        """Create copy with specified overrides."""
        new_config = copy.deepcopy(self)
        for key, value in kwargs.items():
            if hasattr(new_config, key):
                setattr(new_config, key, value)
        return new_config


@dataclass
class OptimizationResult:
    """Standard optimization result following scipy.optimize conventions."""

    success: bool
    x: np.ndarray  # Final parameters
    fun: float  # Final objective value
    nit: int  # Number of iterations
    nfev: int  # Number of function evaluations
    message: str  # Convergence message
    jac: Optional[np.ndarray] = None  # Final gradient

    # Additional metadata
    optimization_time: float = 0.0
    strategy_used: str = ""

    def summary(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "fun": self.fun,
            "nit": self.nit,
            "nfev": self.nfev,
            "message": self.message,
            "strategy": self.strategy_used,
            "time_seconds": round(self.optimization_time, 4),
        }


def _failed_result(x0: np.ndarray, message: str, start_time: float, strategy: str) -> OptimizationResult:
    return OptimizationResult(
        success=False,
        x=np.asarray(x0, dtype=float),
        fun=float("inf"),
        nit=0,
        nfev=0,
        message=message,
        optimization_time=time.time() - start_time,
        strategy_used=strategy,
    )


class BaseOptimizer(ABC):
    """
    Base optimizer.

    Provides a consistent interface across all optimization strategies.
    """

    strategy = ""

    def __init__(self, config: Optional[OptimizationConfig] = None):
        self.config = config or OptimizationConfig()

    @abstractmethod
    def minimize(
        self,
        objective: Callable,
        x0: np.ndarray,
        bounds: Bounds = None,
        gradient: Optional[Callable] = None,
    ) -> OptimizationResult:
        """Minimize objective function."""
        pass

    def _run_scipy(self, method: str, objective, x0, bounds, jac, options) -> OptimizationResult:
        start_time = time.time()
        try:
            scipy_result = scipy.optimize.minimize(
                fun=objective,
                x0=np.asarray(x0, dtype=float),
                method=method,
                jac=jac,
                bounds=bounds,
                options=options,
            )
        except (ValueError, ArithmeticError, np.linalg.LinAlgError) as e:
            logger.debug(f"{method} optimization failed: {e}")
            return _failed_result(x0, f"Optimization failed: {e}", start_time, self.strategy)

        fun = float(scipy_result.fun)
        result = OptimizationResult(
            success=bool(scipy_result.success) and np.isfinite(fun),
            x=np.asarray(scipy_result.x, dtype=float),
            fun=fun,
            nit=int(getattr(scipy_result, "nit", 0)),
            nfev=int(getattr(scipy_result, "nfev", 0)),
            message=str(scipy_result.message),
            jac=getattr(scipy_result, "jac", None),
            optimization_time=time.time() - start_time,
            strategy_used=self.strategy,
        )
        logger.debug(
            f"{method} finished in {result.nit} iterations, "
            f"{result.nfev} function evaluations",
            success=result.success,
        )
        return result


class ScipyLBFGSOptimizer(BaseOptimizer):
    """
    L-BFGS-B optimizer using scipy.optimize.minimize.

    Standard choice for bound-constrained variance-parameter optimization.
    """

    strategy = OptimizationStrategy.SCIPY_LBFGS.value

    def minimize(
        self,
        objective: Callable,
        x0: np.ndarray,
        bounds: Bounds = None,
        gradient: Optional[Callable] = None,
    ) -> OptimizationResult:
        """Minimize using L-BFGS-B, with finite differences when no gradient is given."""
        options = {
            "maxiter": self.config.max_iter,
            "ftol": self.config.tolerance,
            # Projected gradients below 1e-6 are at the limit of double precision here
            "gtol": max(self.config.tolerance, 1e-6),
        }
        jac = gradient if gradient is not None else "2-point"
        return self._run_scipy("L-BFGS-B", objective, x0, bounds, jac, options)


class ScipyPowellOptimizer(BaseOptimizer):
    """
    Derivative-free bounded Powell optimizer.

    Slower than L-BFGS-B but robust when the gradient path misbehaves
    near the boundary of the parameter space.
    """

    strategy = OptimizationStrategy.SCIPY_POWELL.value

    def minimize(
        self,
        objective: Callable,
        x0: np.ndarray,
        bounds: Bounds = None,
        gradient: Optional[Callable] = None,
    ) -> OptimizationResult:
        """Minimize using Powell's method (``gradient`` is ignored)."""
        options = {
            "maxiter": self.config.max_iter,
            "xtol": self.config.tolerance,
            "ftol": self.config.tolerance,
            "disp": self.config.verbose,
        }
        return self._run_scipy("Powell", objective, x0, bounds, None, options)


class HybridOptimizer(BaseOptimizer):
    """
    Hybrid optimization combining the gradient method with a derivative-free fallback.

    Strategy:
    1. L-BFGS-B with the analytic gradient
    2. If unsuccessful, bounded Powell started from the better of the
       L-BFGS-B end point and the original start
    The best successful result wins.
    """

    strategy = OptimizationStrategy.HYBRID.value

    def __init__(self, config: Optional[OptimizationConfig] = None):
        super().__init__(config)
        self.quick_optimizer = ScipyLBFGSOptimizer(self.config)
        self.fallback_optimizer = ScipyPowellOptimizer(
            self.config.copy_with_overrides(tolerance=max(self.config.tolerance, 1e-8))
        )

    def minimize(
        self,
        objective: Callable,
        x0: np.ndarray,
        bounds: Bounds = None,
        gradient: Optional[Callable] = None,
    ) -> OptimizationResult:
        start_time = time.time()

        quick_result = self.quick_optimizer.minimize(objective, x0, bounds=bounds, gradient=gradient)
        if quick_result.success:
            return self._finalize_result(quick_result, start_time, quick_result.nfev, "hybrid_lbfgs")

        logger.debug(f"L-BFGS-B did not converge ({quick_result.message}); falling back to Powell")
        restart = quick_result.x if np.isfinite(quick_result.fun) else x0
        fallback_result = self.fallback_optimizer.minimize(objective, restart, bounds=bounds)
        total_nfev = quick_result.nfev + fallback_result.nfev

        if fallback_result.success:
            return self._finalize_result(fallback_result, start_time, total_nfev, "hybrid_powell")

        logger.warning("All hybrid optimization phases failed")
        best = min((quick_result, fallback_result), key=lambda r: r.fun)
        result = self._finalize_result(best, start_time, total_nfev, "hybrid_failed")
        result.success = False
        return result

    def _finalize_result(
        self,
        result: OptimizationResult,
        start_time: float,
        total_nfev: int,
        strategy_used: str,
    ) -> OptimizationResult:
        """Finalize optimization result with hybrid-specific metadata."""
        return OptimizationResult(
            success=result.success,
            x=result.x,
            fun=result.fun,
            nit=result.nit,
            nfev=total_nfev,
            message=f"{result.message} ({strategy_used})",
            jac=result.jac,
            optimization_time=time.time() - start_time,
            strategy_used=strategy_used,
        )


def create_optimizer(
    strategy: Union[OptimizationStrategy, str],
    config: Optional[OptimizationConfig] = None,
) -> BaseOptimizer:
    """Factory function to create optimizer instances."""
    try:
        strategy = OptimizationStrategy(strategy)
    except ValueError as e:
        raise OptimizationError(
            optimizer=str(strategy),
            reason="unknown optimization strategy",
            suggestions=[f"Use one of {[s.value for s in OptimizationStrategy]}"],
        ) from e

    optimizers = {
        OptimizationStrategy.SCIPY_LBFGS: ScipyLBFGSOptimizer,
        OptimizationStrategy.SCIPY_POWELL: ScipyPowellOptimizer,
        OptimizationStrategy.HYBRID: HybridOptimizer,
    }
    return optimizers[strategy](config)


def minimize_with_strategy(
    objective: Callable,
    x0: np.ndarray,
    strategy: Union[OptimizationStrategy, str] = OptimizationStrategy.HYBRID,
    bounds: Bounds = None,
    gradient: Optional[Callable] = None,
    config: Optional[OptimizationConfig] = None,
) -> OptimizationResult:
    """
    Minimize an objective with the named strategy.

    Args:
        objective: Scalar objective of a parameter vector
        x0: Starting parameters
        strategy: Optimization strategy
        bounds: Per-parameter (lower, upper) bounds
        gradient: Gradient callable (finite differences when omitted)
        config: Optimizer configuration

    Returns:
        OptimizationResult
    """
    optimizer = create_optimizer(strategy, config)
    return optimizer.minimize(objective, x0, bounds=bounds, gradient=gradient)
