"""
Fitted model container for lmm-jax.

A ``FittedModel`` is immutable once built: its arrays are read-only and
derived tables are computed on access.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from ..formulas.spec import ModelSpecification
from ..formulas.design_matrix import DesignMatrices
from ..core.exceptions import ValidationError
from ..utils.logging import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class VarianceComponent:
    """
    Variance component summary for one random-effect term.

    Attributes:
        group: Grouping column (e.g. 'dlc_id'), or 'Residual'
        term: Term name within the group ('(Intercept)' or a slope column)
        variance: Estimated variance
        std_dev: Standard deviation (sqrt of variance)
    """
    group: str
    term: str
    variance: float
    std_dev: float


def _read_only(values) -> np.ndarray:
    array = np.array(values, dtype=float, copy=True)
    array.setflags(write=False)
    return array


@dataclass(frozen=True)
class FittedModel:
    """Result of fitting a linear mixed model by REML or ML."""

    spec: ModelSpecification
    coefficient_names: Tuple[str, ...]
    beta: np.ndarray                   # fixed effects (p,)
    beta_covariance: np.ndarray        # (p, p)
    theta: np.ndarray                  # relative std devs sigma_k / sigma (K,)
    sigma: float                       # residual std dev
    random_effect_values: np.ndarray   # conditional modes b (q,)
    fitted_values: np.ndarray
    residuals: np.ndarray
    deviance: float                    # REML criterion or ML deviance at the optimum
    reml: bool
    n_obs: int
    n_groups: Dict[str, int]

    # Convergence
    converged: bool
    is_singular: bool = False
    n_iter: int = 0
    optimizer_used: str = ""
    fit_time: Optional[float] = None
    warnings: Tuple[str, ...] = ()

    design: DesignMatrices = field(default=None, repr=False, compare=False)
    engine: Any = field(default=None, repr=False, compare=False)

    def __post_init__(self):
        for name in ('beta', 'beta_covariance', 'theta', 'random_effect_values',
                     'fitted_values', 'residuals'):
            object.__setattr__(self, name, _read_only(getattr(self, name)))
        object.__setattr__(self, 'coefficient_names', tuple(self.coefficient_names))
        object.__setattr__(self, 'n_groups', dict(self.n_groups))
        object.__setattr__(self, 'warnings', tuple(self.warnings))

    @property
    def name(self) -> str:
        return self.spec.name or self.spec.to_formula()

    @property
    def log_likelihood(self) -> float:
        return -0.5 * self.deviance

    @property
    def n_parameters(self) -> int:
        """Fixed effects, one variance per random-effect term, and the residual variance."""
        return len(self.beta) + len(self.theta) + 1

    @property
    def aic(self) -> float:
        return self.deviance + 2 * self.n_parameters

    @property
    def bic(self) -> float:
        return self.deviance + np.log(self.n_obs) * self.n_parameters

    @property
    def std_errors(self) -> np.ndarray:
        return np.sqrt(np.maximum(np.diag(self.beta_covariance), 0.0))

    @property
    def coefficients(self) -> pd.DataFrame:
        """Fixed-effect table with term, estimate, std_error and t_value."""
        se = self.std_errors
        with np.errstate(divide='ignore', invalid='ignore'):
            t_values = np.where(se > 0, self.beta / se, np.nan)
        return pd.DataFrame({
            'term': list(self.coefficient_names),
            'estimate': np.asarray(self.beta),
            'std_error': se,
            't_value': t_values,
        })

    @property
    def variance_component_list(self) -> List[VarianceComponent]:
        components = []
        for block, theta in zip(self.design.blocks, self.theta):
            std_dev = float(theta * self.sigma)
            components.append(VarianceComponent(
                group=block.factor.column,
                term=block.factor.term_name,
                variance=std_dev ** 2,
                std_dev=std_dev,
            ))
        components.append(VarianceComponent(
            group='Residual', term='', variance=self.sigma ** 2, std_dev=self.sigma,
        ))
        return components

    @property
    def variance_components(self) -> pd.DataFrame:
        """Variance components with group, term, variance and std_dev."""
        return pd.DataFrame(
            [vars(c) for c in self.variance_component_list],
            columns=['group', 'term', 'variance', 'std_dev'],
        )

    @property
    def random_effects(self) -> Dict[str, pd.DataFrame]:
        """Conditional modes per random-effect term as (level, estimate) tables."""
        tables = {}
        for block in self.design.blocks:
            tables[block.factor.label] = pd.DataFrame({
                'level': list(block.levels),
                'estimate': np.asarray(self.random_effect_values[block.start:block.stop]),
            })
        return tables

    def simulate(self, rng: np.random.Generator) -> np.ndarray:
        """
        Draw a synthetic response from the fitted parameters.

        New random effects are drawn for every level of every grouping
        factor together with new residuals.
        """
        design = self.design
        draws = rng.standard_normal(design.n_random)
        scale = self.sigma * self.theta[design.theta_index]
        random_part = design.Z @ (scale * draws)
        noise = self.sigma * rng.standard_normal(design.n_obs)
        return design.X @ self.beta + random_part + noise

    def refit(
        self,
        response: Optional[np.ndarray] = None,
        reml: Optional[bool] = None,
    ) -> 'FittedModel':
        """
        Refit the same design, optionally to a new response vector or criterion.

        Args:
            response: Response aligned with the rows of the original fit;
                defaults to the observed response
            reml: Criterion for the refit; defaults to this model's

        Returns:
            New FittedModel
        """
        if self.engine is None:
            raise ValidationError(
                "Model was built without a fitting engine and cannot be refitted",
                suggestions=["Fit models through LinearMixedModel or fit_model()"],
            )
        y = self.design.y if response is None else np.asarray(response, dtype=float)
        if y.shape != (self.n_obs,):
            raise ValidationError(
                f"Response must have shape ({self.n_obs},), got {y.shape}",
                suggestions=["Pass one value per row used in the original fit"],
            )
        reml = self.reml if reml is None else reml
        engine = self.engine if reml == self.reml else self.engine.with_criterion(reml)
        return engine.fit_response(y, start_theta=np.asarray(self.theta))

    def get_summary_stats(self) -> Dict[str, Any]:
        """Get summary statistics for the model fit."""
        return {
            'model': self.name,
            'log_likelihood': self.log_likelihood,
            'deviance': self.deviance,
            'aic': self.aic,
            'bic': self.bic,
            'df': self.n_parameters,
            'n_obs': self.n_obs,
            'reml': self.reml,
            'converged': self.converged,
            'is_singular': self.is_singular,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary representation."""
        return {
            **self.get_summary_stats(),
            'formula': self.spec.to_formula(),
            'coefficients': self.coefficients.to_dict(orient='records'),
            'variance_components': self.variance_components.to_dict(orient='records'),
            'n_groups': dict(self.n_groups),
            'theta': self.theta.tolist(),
            'sigma': self.sigma,
            'n_iter': self.n_iter,
            'optimizer_used': self.optimizer_used,
            'warnings': list(self.warnings),
        }

    def __str__(self) -> str:
        criterion = "REML" if self.reml else "ML"
        lines = [
            f"Linear mixed model fit by {criterion}: {self.spec.to_formula()}",
            f"  n_obs={self.n_obs}  groups={self.n_groups}",
            f"  logLik={self.log_likelihood:.3f}  AIC={self.aic:.3f}  BIC={self.bic:.3f}",
        ]
        if self.is_singular:
            lines.append("  boundary (singular) fit")
        return "\n".join(lines)
