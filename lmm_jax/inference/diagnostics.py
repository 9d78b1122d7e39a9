"""
Information criteria and model comparison for lmm-jax.

AIC and BIC follow the lme4 convention: they are computed from the
criterion the model was fitted with, so REML fits should only be compared
when their fixed effects agree. ``compare_models(refit_ml=True)`` refits by
maximum likelihood first for comparisons across fixed-effect structures.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, Union

import pandas as pd

from ..config.settings import get_default_config
from ..core.exceptions import ValidationError
from ..models.base import FittedModel
from ..utils.logging import get_logger


logger = get_logger(__name__)


def information_criteria(model: FittedModel) -> Dict[str, float]:
    """
    AIC, BIC and the quantities they are built from.

    Returns:
        Dictionary with aic, bic, log_likelihood, df and n_obs
    """
    return {
        'aic': float(model.aic),
        'bic': float(model.bic),
        'log_likelihood': float(model.log_likelihood),
        'df': int(model.n_parameters),
        'n_obs': int(model.n_obs),
    }


@dataclass
class ModelComparisonResult:
    """Results of model comparison analysis."""

    models: Dict[str, FittedModel]
    aic_ranking: List[Tuple[str, float]]  # (name, AIC) sorted by AIC
    bic_ranking: List[Tuple[str, float]]  # (name, BIC) sorted by BIC
    delta_aic: Dict[str, float]  # AIC differences from best model
    delta_bic: Dict[str, float]  # BIC differences from best model
    best_aic_model: str
    best_bic_model: str
    criterion: str = "REML"

    @property
    def table(self) -> pd.DataFrame:
        """One row per model ordered by AIC."""
        rows = []
        for name, aic in self.aic_ranking:
            criteria = information_criteria(self.models[name])
            rows.append({
                'model': name,
                'df': criteria['df'],
                'log_likelihood': criteria['log_likelihood'],
                'aic': aic,
                'bic': criteria['bic'],
                'delta_aic': self.delta_aic[name],
                'delta_bic': self.delta_bic[name],
            })
        return pd.DataFrame(rows, columns=[
            'model', 'df', 'log_likelihood', 'aic', 'bic', 'delta_aic', 'delta_bic',
        ])

    def suggest_preferred(self, bic_threshold: Optional[float] = None) -> Tuple[str, str]:
        """
        Suggest a preferred model for the analyst to confirm.

        The lower-AIC model is suggested unless BIC favours a different
        model by more than ``bic_threshold``. This is a suggestion only;
        interpretability of added interaction terms is left to the analyst.

        Returns:
            (model name, rationale)
        """
        if bic_threshold is None:
            bic_threshold = get_default_config().report.bic_threshold

        best_aic = self.best_aic_model
        best_bic = self.best_bic_model
        if best_aic == best_bic:
            return best_aic, f"'{best_aic}' has the lowest AIC and the lowest BIC"

        disagreement = self.delta_bic[best_aic]
        if disagreement > bic_threshold:
            return best_bic, (
                f"BIC favours '{best_bic}' over the lowest-AIC model '{best_aic}' "
                f"by {disagreement:.2f} (> {bic_threshold})"
            )
        return best_aic, (
            f"'{best_aic}' has the lowest AIC; BIC prefers '{best_bic}' "
            f"by only {disagreement:.2f} (<= {bic_threshold})"
        )


def compare_models(
    models: Union[Dict[str, FittedModel], Sequence[FittedModel]],
    refit_ml: bool = False,
) -> ModelComparisonResult:
    """
    Compare multiple models using information criteria.

    Args:
        models: Mapping of name to fitted model, or fitted models named by
            their specifications
        refit_ml: Refit REML fits by maximum likelihood before comparing,
            as needed when fixed effects differ between models

    Returns:
        ModelComparisonResult with rankings and comparisons
    """
    if not isinstance(models, dict):
        models = {model.name: model for model in models}
    if not models:
        raise ValidationError(
            "No models to compare",
            suggestions=["Fit at least one model first"],
        )

    if refit_ml:
        models = {
            name: model.refit(reml=False) if model.reml else model
            for name, model in models.items()
        }
    else:
        fixed_structures = {tuple(m.coefficient_names) for m in models.values() if m.reml}
        if len(fixed_structures) > 1:
            logger.warning(
                "Comparing REML fits with different fixed effects; "
                "use refit_ml=True for likelihood-based comparison"
            )

    criteria = {name: information_criteria(model) for name, model in models.items()}
    aic_values = {name: c['aic'] for name, c in criteria.items()}
    bic_values = {name: c['bic'] for name, c in criteria.items()}

    aic_ranking = sorted(aic_values.items(), key=lambda x: x[1])
    bic_ranking = sorted(bic_values.items(), key=lambda x: x[1])

    best_aic = aic_ranking[0][1]
    best_bic = bic_ranking[0][1]

    reml_flags = {model.reml for model in models.values()}
    criterion = "REML" if reml_flags == {True} else "ML" if reml_flags == {False} else "mixed"

    return ModelComparisonResult(
        models=dict(models),
        aic_ranking=aic_ranking,
        bic_ranking=bic_ranking,
        delta_aic={name: aic - best_aic for name, aic in aic_values.items()},
        delta_bic={name: bic - best_bic for name, bic in bic_values.items()},
        best_aic_model=aic_ranking[0][0],
        best_bic_model=bic_ranking[0][0],
        criterion=criterion,
    )
