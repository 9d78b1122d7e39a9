"""
Linear mixed model fitting engine for lmm-jax.

Profiled REML/ML deviance of a linear mixed model with independent
random-effect terms, in the relative-covariance parameterisation
(theta_k = sigma_k / sigma) of Bates et al. (2015, lme4). The deviance is
written in JAX, differentiated automatically and minimised over theta >= 0
with scipy.

All fixed and random-effect cross-products are computed once per design,
so a refit to a new response only costs the optimisation itself.
"""

import time
from typing import Callable, Dict, Optional

import numpy as np
import pandas as pd
import jax
import jax.numpy as jnp
from jax.scipy.linalg import solve_triangular

from .base import FittedModel
from ..config.settings import ModelConfig, SingularAction, get_default_config
from ..formulas.spec import ModelSpecification
from ..formulas.design_matrix import DesignMatrices, DesignMatrixBuilder, validate_design_matrix
from ..optimization.optimizers import (
    OptimizationConfig,
    OptimizationStrategy,
    minimize_with_strategy,
)
from ..core.exceptions import ModelSpecificationError, OptimizationError, SingularFit
from ..utils.logging import get_logger, log_performance


# Variance parameters near the boundary need double precision
jax.config.update("jax_enable_x64", True)

logger = get_logger(__name__)


def _make_decomposition(
    ZtZ: np.ndarray,
    ZtX: np.ndarray,
    XtX: np.ndarray,
    theta_index: np.ndarray,
) -> Callable:
    """
    Build the penalised least squares decomposition for a fixed design.

    Returns a function of (theta, Zty, Xty, yty) giving the Cholesky
    factors L and LX, the intermediate solutions cu, cb and RZX, and the
    penalised residual sum of squares.
    """
    ZtZ = jnp.asarray(ZtZ)
    ZtX = jnp.asarray(ZtX)
    XtX = jnp.asarray(XtX)
    index = jnp.asarray(theta_index)
    q = ZtZ.shape[0]
    identity = jnp.eye(q)

    def decompose(theta, Zty, Xty, yty):
        lam = theta[index]
        L = jnp.linalg.cholesky(lam[:, None] * ZtZ * lam[None, :] + identity)
        cu = solve_triangular(L, lam * Zty, lower=True)
        RZX = solve_triangular(L, lam[:, None] * ZtX, lower=True)
        LX = jnp.linalg.cholesky(XtX - RZX.T @ RZX)
        cb = solve_triangular(LX, Xty - RZX.T @ cu, lower=True)
        pwrss = yty - cu @ cu - cb @ cb
        return {'L': L, 'LX': LX, 'cu': cu, 'cb': cb, 'RZX': RZX, 'pwrss': pwrss}

    return decompose


def _make_deviance(decompose: Callable, n_obs: int, n_fixed: int, reml: bool) -> Callable:
    """Profiled deviance (REML criterion when ``reml``) as a function of theta."""

    def deviance(theta, Zty, Xty, yty):
        parts = decompose(theta, Zty, Xty, yty)
        logdet = 2.0 * jnp.sum(jnp.log(jnp.diag(parts['L'])))
        if reml:
            dof = n_obs - n_fixed
            logdet = logdet + 2.0 * jnp.sum(jnp.log(jnp.diag(parts['LX'])))
        else:
            dof = n_obs
        return logdet + dof * (1.0 + jnp.log(2.0 * jnp.pi * parts['pwrss'] / dof))

    return deviance


class DevianceObjective:
    """
    Profiled deviance of one response as scipy callbacks.

    Value and gradient come from a single ``value_and_grad`` evaluation that
    is kept for the last theta, so an optimizer asking for both at the same
    point pays for one decomposition.
    """

    def __init__(self, engine: 'LinearMixedModel', Zty, Xty, yty, with_gradient: bool = True):
        self._engine = engine
        self._args = (Zty, Xty, yty)
        self.with_gradient = with_gradient
        self.n_evaluations = 0
        self._theta: Optional[np.ndarray] = None
        self._value = np.nan
        self._gradient: Optional[np.ndarray] = None

    def _evaluate(self, theta: np.ndarray, need_gradient: bool) -> None:
        theta = np.asarray(theta, dtype=float)
        cached = self._theta is not None and np.array_equal(theta, self._theta)
        if cached and (self._gradient is not None or not need_gradient):
            return

        self.n_evaluations += 1
        if need_gradient or self.with_gradient:
            value, gradient = self._engine._value_and_grad(jnp.asarray(theta), *self._args)
            self._gradient = np.asarray(gradient, dtype=float)
        else:
            value = self._engine._deviance(jnp.asarray(theta), *self._args)
            self._gradient = None
        self._theta = theta.copy()
        self._value = float(value)

    def value(self, theta: np.ndarray) -> float:
        self._evaluate(theta, need_gradient=False)
        return self._value

    def gradient(self, theta: np.ndarray) -> np.ndarray:
        self._evaluate(theta, need_gradient=True)
        return self._gradient.copy()


class LinearMixedModel:
    """
    Fitting engine for one model specification on one design.

    Example:
        >>> engine = LinearMixedModel(spec, data)
        >>> model = engine.fit()
        >>> model.coefficients
    """

    def __init__(
        self,
        spec: ModelSpecification,
        data: Optional[pd.DataFrame] = None,
        design: Optional[DesignMatrices] = None,
        reml: Optional[bool] = None,
        config: Optional[ModelConfig] = None,
        strategy: OptimizationStrategy = OptimizationStrategy.HYBRID,
    ):
        if design is None:
            if data is None:
                raise ModelSpecificationError(
                    formula=spec.to_formula(),
                    specific_issue="either data or a prebuilt design is required",
                )
            design = DesignMatrixBuilder().build(spec, data)

        self.spec = spec
        self.design = design
        self.config = config or get_default_config().model
        self.reml = self.config.reml if reml is None else bool(reml)
        self.strategy = strategy
        self.logger = get_logger(self.__class__.__name__)

        n_obs, n_fixed = design.n_obs, design.n_fixed
        if n_fixed == 0 or n_obs <= n_fixed:
            raise ModelSpecificationError(
                formula=spec.to_formula(),
                specific_issue=f"{n_obs} observations for {n_fixed} fixed-effect columns",
            )
        for issue in validate_design_matrix(design):
            self.logger.warning(f"Design issue: {issue}", model=self.name)

        Z = design.Z
        X = design.X
        self._ZtZ = np.asarray((Z.T @ Z).toarray())
        self._ZtX = np.asarray(Z.T @ X)
        self._XtX = X.T @ X
        self._theta_index = design.theta_index
        self._build_functions()

    def _build_functions(self) -> None:
        self._decompose = jax.jit(_make_decomposition(
            self._ZtZ, self._ZtX, self._XtX, self._theta_index
        ))
        deviance = _make_deviance(self._decompose, self.design.n_obs, self.design.n_fixed, self.reml)
        self._deviance = jax.jit(deviance)
        self._value_and_grad = jax.jit(jax.value_and_grad(deviance))

    @property
    def name(self) -> str:
        return self.spec.name or self.spec.to_formula()

    @property
    def n_theta(self) -> int:
        return len(self.design.blocks)

    def with_criterion(self, reml: bool) -> 'LinearMixedModel':
        """Engine for the same design with the REML or ML criterion."""
        return LinearMixedModel(
            self.spec, design=self.design, reml=reml, config=self.config, strategy=self.strategy,
        )

    def objective(self, Zty, Xty, yty) -> DevianceObjective:
        """Deviance callbacks for the response with the given cross-products."""
        with_gradient = OptimizationStrategy(self.strategy) != OptimizationStrategy.SCIPY_POWELL
        return DevianceObjective(self, Zty, Xty, yty, with_gradient=with_gradient)

    def deviance(self, theta: np.ndarray, response: Optional[np.ndarray] = None) -> float:
        """Profiled deviance at ``theta`` for the observed (or given) response."""
        Zty, Xty, yty = self._response_products(self.design.y if response is None else response)
        return float(self._deviance(jnp.asarray(theta, dtype=float), Zty, Xty, yty))

    @log_performance
    def fit(self, start_theta: Optional[np.ndarray] = None) -> FittedModel:
        """
        Fit the model to the observed response.

        Raises:
            OptimizationError: If the deviance cannot be minimised
            SingularFit: On a boundary fit when ``on_singular`` is 'error'
        """
        self.logger.info(
            f"Fitting {'REML' if self.reml else 'ML'} model",
            model=self.name,
            n_obs=self.design.n_obs,
            n_fixed=self.design.n_fixed,
            n_random=self.design.n_random,
        )
        model = self.fit_response(self.design.y, start_theta=start_theta)
        self.logger.info(
            "Model fitted",
            model=self.name,
            loglik=round(model.log_likelihood, 4),
            converged=model.converged,
            singular=model.is_singular,
        )
        return model

    def fit_response(
        self,
        response: np.ndarray,
        start_theta: Optional[np.ndarray] = None,
    ) -> FittedModel:
        """Fit the design to a response vector aligned with its rows."""
        start_time = time.time()
        y = np.asarray(response, dtype=float)
        Zty, Xty, yty = self._response_products(y)

        evaluator = self.objective(Zty, Xty, yty)

        x0 = np.ones(self.n_theta) if start_theta is None else np.asarray(start_theta, dtype=float)
        result = minimize_with_strategy(
            evaluator.value,
            x0,
            strategy=self.strategy,
            bounds=[(0.0, None)] * self.n_theta,
            gradient=evaluator.gradient,
            config=OptimizationConfig(max_iter=self.config.max_iterations, tolerance=self.config.tolerance),
        )

        if not np.isfinite(result.fun):
            raise OptimizationError(
                optimizer=result.strategy_used,
                reason=result.message,
                iterations=result.nit,
            )

        warnings = []
        if not result.success:
            message = f"optimizer did not converge: {result.message}"
            warnings.append(message)
            self.logger.warning(message, model=self.name)

        theta = np.maximum(result.x, 0.0)
        return self._build_result(theta, y, Zty, Xty, yty, result, warnings, start_time)

    def _response_products(self, y: np.ndarray):
        y = np.asarray(y, dtype=float)
        Zty = jnp.asarray(self.design.Z.T @ y)
        Xty = jnp.asarray(self.design.X.T @ y)
        yty = jnp.asarray(float(y @ y))
        return Zty, Xty, yty

    def _build_result(self, theta, y, Zty, Xty, yty, result, warnings, start_time) -> FittedModel:
        design = self.design
        parts = {k: np.asarray(v) for k, v in self._decompose(jnp.asarray(theta), Zty, Xty, yty).items()}
        L, LX = parts['L'], parts['LX']
        n_obs, n_fixed = design.n_obs, design.n_fixed

        dof = n_obs - n_fixed if self.reml else n_obs
        sigma2 = float(parts['pwrss']) / dof

        beta = _upper_solve(LX.T, parts['cb'])
        u = _upper_solve(L.T, parts['cu'] - parts['RZX'] @ beta)
        b = theta[self._theta_index] * u

        LX_inv = _lower_solve(LX, np.eye(n_fixed))
        beta_covariance = sigma2 * LX_inv.T @ LX_inv

        fitted = design.X @ beta + design.Z @ b
        deviance = float(self._deviance(jnp.asarray(theta), Zty, Xty, yty))

        singular_terms = [
            block.factor.label for block, value in zip(design.blocks, theta)
            if value < self.config.singular_tolerance
        ]
        if singular_terms:
            if SingularAction(self.config.on_singular) == SingularAction.ERROR:
                raise SingularFit(
                    grouping_factor=", ".join(singular_terms),
                    reason="has a variance estimate on the boundary (zero)",
                    suggestions=[
                        "Remove the random-effect terms with zero variance",
                        "Set model.on_singular to 'warn' to accept boundary fits",
                    ],
                )
            message = f"boundary (singular) fit: zero variance for {singular_terms}"
            warnings.append(message)
            self.logger.warning(message, model=self.name)

        n_groups: Dict[str, int] = {}
        for block in design.blocks:
            n_groups[block.factor.column] = block.n_levels

        return FittedModel(
            spec=self.spec,
            coefficient_names=tuple(design.column_names),
            beta=beta,
            beta_covariance=beta_covariance,
            theta=theta,
            sigma=float(np.sqrt(sigma2)),
            random_effect_values=b,
            fitted_values=fitted,
            residuals=y - fitted,
            deviance=deviance,
            reml=self.reml,
            n_obs=n_obs,
            n_groups=n_groups,
            converged=bool(result.success),
            is_singular=bool(singular_terms),
            n_iter=result.nit,
            optimizer_used=result.strategy_used,
            fit_time=time.time() - start_time,
            warnings=tuple(warnings),
            design=design,
            engine=self,
        )


def _upper_solve(upper: np.ndarray, rhs: np.ndarray) -> np.ndarray:
    return np.asarray(solve_triangular(jnp.asarray(upper), jnp.asarray(rhs), lower=False))


def _lower_solve(lower: np.ndarray, rhs: np.ndarray) -> np.ndarray:
    return np.asarray(solve_triangular(jnp.asarray(lower), jnp.asarray(rhs), lower=True))
