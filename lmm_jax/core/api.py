"""
Main API functions for lmm-jax.

High-level user interface for model fitting and the end-to-end analysis
of body-weight records: load, filter, summarise, fit candidate models and
compare them.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import pandas as pd

from ..config.settings import LmmJaxConfig, get_default_config
from ..data.loader import load_data
from ..data.summary import count_by_group, mean_of_max_by_group, rank_predictors
from ..data.transforms import (
    check_no_cooccurrence,
    derive_age_category,
    filter_by_taxon,
    filter_valid_sex,
    per_individual_max,
)
from ..formulas.parser import parse_formula
from ..formulas.spec import ModelSpecification, build_specification
from ..inference.diagnostics import ModelComparisonResult, compare_models
from ..inference.uncertainty import BootstrapResult, compare_interval_widths, parametric_bootstrap_ci
from ..models.base import FittedModel
from ..models.lmm import LinearMixedModel
from ..optimization.optimizers import OptimizationStrategy
from ..utils.logging import get_logger
from .exceptions import LmmJaxError, ModelSpecificationError, OptimizationError
from .export import ResultsExporter


logger = get_logger(__name__)


def fit_model(
    spec: Union[ModelSpecification, str],
    data: Union[pd.DataFrame, str, Path],
    config: Optional[LmmJaxConfig] = None,
    reml: Optional[bool] = None,
    strategy: Union[str, OptimizationStrategy] = OptimizationStrategy.HYBRID,
) -> FittedModel:
    """
    Fit a linear mixed model to data.

    Args:
        spec: Model specification or lme4-style formula string
        data: Observation table or path to a delimited file
        config: Configuration (defaults to the global configuration)
        reml: Use REML (default from configuration) or ML
        strategy: Optimization strategy ("hybrid", "scipy_lbfgs", "scipy_powell")

    Returns:
        FittedModel with estimates and diagnostics

    Examples:
        >>> model = fit_model("weight_g ~ taxon + (1 | dlc_id)", table)
        >>> model.coefficients
    """
    config = config or get_default_config()

    if isinstance(spec, str):
        spec = parse_formula(spec)
    if isinstance(data, (str, Path)):
        data = load_data(data, config.data)

    try:
        strategy = OptimizationStrategy(strategy)
    except ValueError as e:
        raise ModelSpecificationError(
            specific_issue=f"Invalid optimization strategy: {strategy}",
            suggestions=[f"Valid strategies: {[s.value for s in OptimizationStrategy]}"],
        ) from e

    try:
        engine = LinearMixedModel(spec, data, reml=reml, config=config.model, strategy=strategy)
        return engine.fit()
    except LmmJaxError:
        raise
    except Exception as e:
        raise OptimizationError(
            reason=f"Model fitting failed: {e}",
            optimizer=strategy.value,
        ) from e


@dataclass
class CandidateFits:
    """Fitted candidate models and the specifications that could not be fitted."""
    models: Dict[str, FittedModel] = field(default_factory=dict)
    failures: Dict[str, ModelSpecificationError] = field(default_factory=dict)


def fit_candidates(
    specs: Iterable[ModelSpecification],
    data: pd.DataFrame,
    config: Optional[LmmJaxConfig] = None,
) -> CandidateFits:
    """
    Fit several specifications, continuing past those that cannot be fitted.

    Specification errors (including singular and rank-deficient designs)
    are logged and recorded per specification.
    """
    fits = CandidateFits()
    for i, spec in enumerate(specs):
        name = spec.name or f"model_{i + 1}"
        try:
            fits.models[name] = fit_model(spec, data, config=config)
        except ModelSpecificationError as e:
            logger.warning(f"Skipping specification '{name}': {e.args[0] if e.args else e}")
            fits.failures[name] = e
    return fits


def candidate_specifications(
    table: pd.DataFrame,
    config: Optional[LmmJaxConfig] = None,
) -> List[ModelSpecification]:
    """
    The two standard candidate models for body-weight records.

    Both have the age, taxon, sex and pregnancy-status main effects and
    random intercepts for the individual and for the raw age value. The
    second adds the taxon-by-age, taxon-by-sex and sex-by-pregnancy
    interactions, keeping only those the data supports.
    """
    data_config = (config or get_default_config()).data
    fixed = [
        col for col in (
            data_config.age_column,
            data_config.taxon_column,
            data_config.sex_column,
            data_config.pregnancy_column,
        )
        if col in table.columns
    ]
    grouping = [data_config.id_column, data_config.age_column]
    interactions = [
        (data_config.taxon_column, data_config.age_column),
        (data_config.taxon_column, data_config.sex_column),
        (data_config.sex_column, data_config.pregnancy_column),
    ]
    interactions = [pair for pair in interactions if set(pair) <= set(fixed)]

    main_effects = build_specification(
        table,
        response=data_config.weight_column,
        fixed_effects=fixed,
        grouping_factors=grouping,
        name="main_effects",
        description="Main effects with random intercepts for individual and age",
    )
    with_interactions = build_specification(
        table,
        response=data_config.weight_column,
        fixed_effects=fixed,
        interactions=interactions,
        grouping_factors=grouping,
        name="interactions",
        description="Main effects plus supported pairwise interactions",
    )
    return [main_effects, with_interactions]


@dataclass
class AnalysisReport:
    """Everything produced by :func:`run_analysis`."""
    data: pd.DataFrame
    summaries: Dict[str, pd.DataFrame]
    predictor_ranking: pd.DataFrame
    specifications: List[ModelSpecification]
    models: Dict[str, FittedModel]
    failures: Dict[str, str]
    bootstrap: Dict[str, BootstrapResult]
    interval_widths: Optional[pd.DataFrame]
    comparison: ModelComparisonResult
    preferred_model: Tuple[str, str]

    def tables(self, exporter: Optional[ResultsExporter] = None) -> Dict[str, pd.DataFrame]:
        """All result tables keyed by a file-friendly name."""
        exporter = exporter or ResultsExporter()
        tables = {f"summary_{name}": exporter.round_table(t) for name, t in self.summaries.items()}
        tables["predictor_ranking"] = exporter.round_table(self.predictor_ranking)
        for name, model in self.models.items():
            key = _file_name(name)
            tables[f"coefficients_{key}"] = exporter.coefficient_table(model)
            tables[f"variance_components_{key}"] = exporter.variance_component_table(model)
        for name, result in self.bootstrap.items():
            tables[f"ci_{_file_name(name)}"] = exporter.ci_table(result)
        if self.interval_widths is not None:
            tables["interval_widths"] = exporter.round_table(self.interval_widths)
        tables["comparison"] = exporter.comparison_table(self.comparison)
        return tables


def _file_name(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]+", "_", name).strip("_") or "model"


def _exploratory_summaries(table: pd.DataFrame, config: LmmJaxConfig) -> Tuple[Dict[str, pd.DataFrame], pd.DataFrame]:
    data_config = config.data
    taxon, sex = data_config.taxon_column, data_config.sex_column
    weight = data_config.weight_column

    max_table = per_individual_max(table, weight)
    summaries = {
        "count_taxon": count_by_group(table, taxon),
        "count_taxon_sex": count_by_group(table, [taxon, sex]),
        "mean_max_taxon": mean_of_max_by_group(max_table, taxon),
        "mean_max_taxon_sex": mean_of_max_by_group(max_table, [taxon, sex]),
    }

    for extra in (data_config.pregnancy_column, data_config.age_category_column):
        if extra and extra in table.columns:
            keyed = per_individual_max(table, weight, extra_keys=[extra])
            summaries[f"mean_max_{extra}"] = mean_of_max_by_group(keyed, extra)
            summaries[f"mean_max_{taxon}_{extra}"] = mean_of_max_by_group(keyed, [taxon, extra])

    return summaries, rank_predictors(max_table, [taxon, sex], weight)


def run_analysis(
    file_path: Union[str, Path],
    taxa: Sequence[str],
    config: Optional[LmmJaxConfig] = None,
    n_simulations: Optional[int] = None,
    confidence_level: Optional[float] = None,
    random_seed: Optional[int] = None,
    max_workers: Optional[int] = None,
    specifications: Optional[Sequence[ModelSpecification]] = None,
) -> AnalysisReport:
    """
    Run the full body-weight analysis.

    Steps: load, keep ``taxa``, drop undetermined sex, validate that no male
    is recorded pregnant, summarise, fit the candidate models, bootstrap
    their coefficients and compare them by information criteria.

    Args:
        file_path: Delimited input file
        taxa: Taxon codes to analyse
        config: Configuration (defaults to the global configuration)
        n_simulations: Bootstrap simulations per model
        confidence_level: Bootstrap interval level
        random_seed: Bootstrap seed
        max_workers: Bootstrap worker threads
        specifications: Models to fit instead of :func:`candidate_specifications`

    Returns:
        AnalysisReport

    Raises:
        DataUnavailable, SchemaMismatch: On unreadable input
        DataQualityError: If a male is recorded pregnant
        ModelSpecificationError: If no candidate model can be fitted
    """
    config = config or get_default_config()
    data_config = config.data

    table = load_data(file_path, data_config)
    table = filter_by_taxon(table, taxa, data_config.taxon_column)
    table = filter_valid_sex(table, data_config.sex_column, data_config.undetermined_sex)

    if config.model.check_male_pregnancy:
        check_no_cooccurrence(
            table,
            data_config.sex_column, data_config.male_value,
            data_config.pregnancy_column, data_config.pregnant_value,
            id_column=data_config.id_column,
        )

    if data_config.age_category_column and data_config.age_category_column not in table.columns:
        table = derive_age_category(
            table,
            age_column=data_config.age_column,
            category_column=data_config.age_category_column,
            thresholds=data_config.age_category_thresholds,
            labels=data_config.age_category_labels,
        )

    summaries, ranking = _exploratory_summaries(table, config)

    specs = list(specifications) if specifications is not None else candidate_specifications(table, config)
    fits = fit_candidates(specs, table, config)
    if not fits.models:
        raise ModelSpecificationError(
            specific_issue="no candidate specification could be fitted",
            suggestions=[str(e) for e in fits.failures.values()][:3] or None,
        )

    bootstrap = {
        name: parametric_bootstrap_ci(
            model,
            n_simulations=n_simulations,
            confidence_level=confidence_level,
            random_seed=random_seed,
            max_workers=max_workers,
            config=config.bootstrap,
        )
        for name, model in fits.models.items()
    }
    widths = compare_interval_widths(list(bootstrap.values())) if len(bootstrap) > 1 else None

    comparison = compare_models(fits.models, refit_ml=True)
    preferred = comparison.suggest_preferred(config.report.bic_threshold)
    logger.info(f"Suggested model: {preferred[0]}", rationale=preferred[1])

    report = AnalysisReport(
        data=table,
        summaries=summaries,
        predictor_ranking=ranking,
        specifications=specs,
        models=fits.models,
        failures={name: str(e) for name, e in fits.failures.items()},
        bootstrap=bootstrap,
        interval_widths=widths,
        comparison=comparison,
        preferred_model=preferred,
    )

    if config.report.export_directory is not None:
        exporter = ResultsExporter(config.report.decimal_precision, config.report.export_directory)
        exporter.export_tables(report.tables(exporter))

    return report
