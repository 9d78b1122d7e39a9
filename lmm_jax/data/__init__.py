"""Data loading, filtering and exploratory summaries for lmm-jax."""

from .loader import ObservationSchema, load_data
from .transforms import (
    filter_by_taxon,
    filter_valid_sex,
    per_individual_max,
    check_no_cooccurrence,
    derive_age_category,
)
from .summary import count_by_group, mean_of_max_by_group, rank_predictors

__all__ = [
    "ObservationSchema",
    "load_data",
    "filter_by_taxon",
    "filter_valid_sex",
    "per_individual_max",
    "check_no_cooccurrence",
    "derive_age_category",
    "count_by_group",
    "mean_of_max_by_group",
    "rank_predictors",
]
