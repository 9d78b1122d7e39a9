"""
Parametric bootstrap uncertainty for lmm-jax.

Simulates responses from a fitted model's estimated parameters, refits the
same design to every simulated response and summarises the sampling
distribution of the estimates by percentile intervals.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from ..config.settings import BootstrapConfig, get_default_config
from ..core.exceptions import LmmJaxError, OptimizationError, ValidationError
from ..models.base import FittedModel
from ..utils.logging import get_logger, log_performance
from ..utils.validation import validate_confidence_level, validate_count


logger = get_logger(__name__)

CI_COLUMNS = ['term', 'estimate', 'lower', 'upper']


def _variance_parameter_names(model: FittedModel) -> List[str]:
    names = [f"sd_{block.factor.term_name}|{block.factor.column}" for block in model.design.blocks]
    names.append("sigma")
    return names


def _variance_parameters(model: FittedModel) -> np.ndarray:
    return np.append(np.asarray(model.theta) * model.sigma, model.sigma)


@dataclass(frozen=True)
class BootstrapResult:
    """
    Parametric bootstrap draws of a fitted model.

    Intervals at any confidence level are computed from the same stored
    draws, so interval widths never shrink as the level increases.
    """
    model_name: str
    parameter_names: Tuple[str, ...]
    estimates: np.ndarray
    samples: np.ndarray                   # (n_successful, n_parameters)
    n_requested: int
    confidence_level: float
    random_seed: Optional[int] = None
    variance_parameter_names: Tuple[str, ...] = ()
    variance_estimates: Optional[np.ndarray] = None
    variance_samples: Optional[np.ndarray] = None

    @property
    def n_successful(self) -> int:
        return self.samples.shape[0]

    @property
    def n_failed(self) -> int:
        return self.n_requested - self.n_successful

    @property
    def standard_errors(self) -> np.ndarray:
        return np.std(self.samples, axis=0, ddof=1)

    @property
    def bias(self) -> np.ndarray:
        return np.mean(self.samples, axis=0) - self.estimates

    @property
    def ci_table(self) -> pd.DataFrame:
        """Intervals at the level the bootstrap was run with."""
        return self.confidence_intervals()

    def confidence_intervals(
        self,
        confidence_level: Optional[float] = None,
        include_variance_components: bool = False,
    ) -> pd.DataFrame:
        """
        Percentile confidence intervals.

        Args:
            confidence_level: Level in (0, 1); defaults to the bootstrap's level
            include_variance_components: Append rows for the random-effect
                standard deviations and residual sigma, when they were kept

        Returns:
            DataFrame with term, estimate, lower and upper
        """
        level = self.confidence_level if confidence_level is None else confidence_level
        validate_confidence_level(level)
        alpha = 1 - level

        table = self._interval_table(self.parameter_names, self.estimates, self.samples, alpha)
        if include_variance_components:
            if self.variance_samples is None:
                raise ValidationError(
                    "Variance component draws were not kept for this bootstrap",
                    suggestions=["Run parametric_bootstrap_ci with include_variance_components=True"],
                )
            variance_table = self._interval_table(
                self.variance_parameter_names, self.variance_estimates, self.variance_samples, alpha
            )
            table = pd.concat([table, variance_table], ignore_index=True)
        return table

    @staticmethod
    def _interval_table(names, estimates, samples, alpha) -> pd.DataFrame:
        lower = np.quantile(samples, alpha / 2, axis=0)
        upper = np.quantile(samples, 1 - alpha / 2, axis=0)
        return pd.DataFrame({
            'term': list(names),
            'estimate': np.asarray(estimates),
            'lower': lower,
            'upper': upper,
        }, columns=CI_COLUMNS)

    def get_parameter_summary(self) -> Dict[str, Dict[str, float]]:
        """Get summary statistics for each parameter."""
        summary = {}
        table = self.ci_table
        for i, name in enumerate(self.parameter_names):
            summary[name] = {
                'estimate': float(self.estimates[i]),
                'bootstrap_se': float(self.standard_errors[i]),
                'bias': float(self.bias[i]),
                'lower': float(table['lower'].iloc[i]),
                'upper': float(table['upper'].iloc[i]),
            }
        return summary


class ParametricBootstrap:
    """
    Computes parametric bootstrap intervals for a fitted linear mixed model.

    All simulated responses come from one seeded generator before any refit
    starts, so the draws and therefore the intervals do not depend on the
    number of workers.
    """

    def __init__(self, max_workers: Optional[int] = None, min_success_fraction: Optional[float] = None):
        config = get_default_config().bootstrap
        self.max_workers = max_workers if max_workers is not None else config.max_workers
        self.min_success_fraction = (
            min_success_fraction if min_success_fraction is not None else config.min_success_fraction
        )
        self.logger = get_logger(self.__class__.__name__)

    def simulate_responses(
        self,
        model: FittedModel,
        n_simulations: int,
        random_seed: Optional[int] = None,
    ) -> np.ndarray:
        """Draw ``n_simulations`` synthetic responses, one per row."""
        rng = np.random.default_rng(random_seed)
        return np.vstack([model.simulate(rng) for _ in range(n_simulations)])

    @log_performance
    def run(
        self,
        model: FittedModel,
        n_simulations: int,
        confidence_level: float,
        random_seed: Optional[int] = None,
        include_variance_components: bool = False,
    ) -> BootstrapResult:
        validate_count(n_simulations, "n_simulations", minimum=2)
        validate_confidence_level(confidence_level)

        self.logger.info(
            f"Computing parametric bootstrap with {n_simulations} simulations",
            model=model.name,
            workers=self.max_workers,
        )

        responses = self.simulate_responses(model, n_simulations, random_seed)

        if self.max_workers and self.max_workers > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                refits = list(executor.map(lambda y: self._refit(model, y), responses))
        else:
            refits = [self._refit(model, y) for y in responses]

        successful = [fit for fit in refits if fit is not None]
        n_failed = n_simulations - len(successful)
        if len(successful) < max(2, self.min_success_fraction * n_simulations):
            raise OptimizationError(
                reason=(
                    f"too many bootstrap refits failed ({n_failed}/{n_simulations}); "
                    "model may be unstable or data insufficient"
                ),
                suggestions=[
                    "Simplify the random-effect structure",
                    "Check the fitted model for boundary (singular) estimates",
                    "Lower bootstrap.min_success_fraction to accept more failures",
                ],
            )
        if n_failed:
            self.logger.warning(f"{n_failed}/{n_simulations} bootstrap refits failed and were skipped")

        samples = np.vstack([np.asarray(fit.beta) for fit in successful])
        variance_samples = None
        variance_estimates = None
        variance_names: Tuple[str, ...] = ()
        if include_variance_components:
            variance_samples = np.vstack([_variance_parameters(fit) for fit in successful])
            variance_estimates = _variance_parameters(model)
            variance_names = tuple(_variance_parameter_names(model))

        self.logger.info(f"Successfully completed {len(successful)} bootstrap refits", model=model.name)

        return BootstrapResult(
            model_name=model.name,
            parameter_names=tuple(model.coefficient_names),
            estimates=np.asarray(model.beta),
            samples=samples,
            n_requested=n_simulations,
            confidence_level=confidence_level,
            random_seed=random_seed,
            variance_parameter_names=variance_names,
            variance_estimates=variance_estimates,
            variance_samples=variance_samples,
        )

    def _refit(self, model: FittedModel, response: np.ndarray) -> Optional[FittedModel]:
        try:
            refit = model.refit(response)
        except (LmmJaxError, np.linalg.LinAlgError, FloatingPointError) as e:
            self.logger.debug(f"Bootstrap refit failed: {e}")
            return None
        if not refit.converged or not np.all(np.isfinite(refit.beta)):
            self.logger.debug("Bootstrap refit did not converge")
            return None
        return refit


def parametric_bootstrap_ci(
    model: FittedModel,
    n_simulations: Optional[int] = None,
    confidence_level: Optional[float] = None,
    random_seed: Optional[int] = None,
    max_workers: Optional[int] = None,
    include_variance_components: Optional[bool] = None,
    config: Optional[BootstrapConfig] = None,
) -> BootstrapResult:
    """
    Parametric bootstrap confidence intervals for the fixed effects.

    Each simulation draws new random effects and residuals from the fitted
    parameters, refits the model and records the coefficients. Intervals
    are the empirical quantiles of the recorded coefficients.

    Args:
        model: Fitted model
        n_simulations: Number of simulated datasets (defaults to configuration)
        confidence_level: Interval level in (0, 1) (defaults to configuration)
        random_seed: Seed of the simulation generator
        max_workers: Refit on a thread pool of this size
        include_variance_components: Also keep random-effect standard
            deviation and residual sigma draws
        config: Bootstrap settings supplying the defaults (global configuration
            when omitted)

    Returns:
        BootstrapResult; ``result.ci_table`` holds term, estimate, lower, upper

    Raises:
        ValidationError: On invalid ``n_simulations`` or ``confidence_level``
        OptimizationError: If fewer than ``min_success_fraction`` refits succeed
    """
    config = config or get_default_config().bootstrap
    n_simulations = config.n_simulations if n_simulations is None else n_simulations
    confidence_level = config.confidence_level if confidence_level is None else confidence_level
    random_seed = config.random_seed if random_seed is None else random_seed
    if include_variance_components is None:
        include_variance_components = config.include_variance_components

    bootstrap = ParametricBootstrap(
        max_workers=config.max_workers if max_workers is None else max_workers,
        min_success_fraction=config.min_success_fraction,
    )
    return bootstrap.run(
        model,
        n_simulations=n_simulations,
        confidence_level=confidence_level,
        random_seed=random_seed,
        include_variance_components=include_variance_components,
    )


def interval_width(ci_table: Union[pd.DataFrame, BootstrapResult]) -> pd.DataFrame:
    """
    Width (upper minus lower) of every interval in a CI table.

    Returns:
        DataFrame with term and width
    """
    table = ci_table.ci_table if isinstance(ci_table, BootstrapResult) else ci_table
    missing = [col for col in ('term', 'lower', 'upper') if col not in table.columns]
    if missing:
        raise ValidationError(
            f"CI table lacks columns {missing}",
            suggestions=["Pass the output of parametric_bootstrap_ci or its ci_table"],
        )
    return pd.DataFrame({
        'term': table['term'].to_numpy(),
        'width': (table['upper'] - table['lower']).to_numpy(),
    })


def compare_interval_widths(
    tables: Union[Dict[str, pd.DataFrame], Sequence[BootstrapResult]],
) -> pd.DataFrame:
    """
    Side-by-side interval widths of the terms shared by several models.

    Args:
        tables: Mapping of model name to CI table, or bootstrap results

    Returns:
        DataFrame with a term column and one width column per model
    """
    if not isinstance(tables, dict):
        tables = {result.model_name: result for result in tables}
    if len(tables) < 2:
        raise ValidationError(
            "At least two CI tables are needed for a comparison",
            suggestions=["Bootstrap each candidate model first"],
        )

    combined = None
    for name, table in tables.items():
        widths = interval_width(table).rename(columns={'width': name})
        combined = widths if combined is None else combined.merge(widths, on='term', how='inner')
    return combined.reset_index(drop=True)
