"""
Exploratory summaries for lmm-jax.

Pure aggregation functions used to rank candidate predictors by observed
effect size before committing to a model specification.
"""

from typing import List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from ..config.settings import get_default_config
from ..core.exceptions import NoData, ValidationError
from ..utils.logging import get_logger
from ..utils.validation import validate_columns_present


logger = get_logger(__name__)


def _as_columns(group_columns: Union[str, Sequence[str]]) -> List[str]:
    columns = [group_columns] if isinstance(group_columns, str) else list(group_columns)
    if not columns:
        raise ValidationError(
            "At least one group column is required",
            suggestions=["Pass a column name or a list of column names"],
        )
    return columns


def count_by_group(
    table: pd.DataFrame,
    group_columns: Union[str, Sequence[str]],
) -> pd.DataFrame:
    """
    Frequency table of ``group_columns``, sorted by descending count.

    Missing values form their own group so that the counts always add up
    to the number of input rows. Ties keep first-seen order.

    Returns:
        DataFrame with the group columns and a count column ``n``
    """
    columns = _as_columns(group_columns)
    validate_columns_present(table, columns)

    counts = (
        table.groupby(columns, sort=False, dropna=False)
        .size()
        .reset_index(name='n')
        .sort_values('n', ascending=False, kind='stable')
        .reset_index(drop=True)
    )
    return counts


def mean_of_max_by_group(
    max_table: pd.DataFrame,
    group_columns: Union[str, Sequence[str]],
    value_column: Optional[str] = None,
    include_empty: bool = True,
) -> pd.DataFrame:
    """
    Mean of per-individual maxima grouped by one or two categorical columns.

    Empty-group convention: with ``include_empty`` every combination of the
    observed levels is reported, and combinations without any individual
    carry ``NaN`` as the mean and ``0`` as ``n``. They are never reported as
    zero. Without ``include_empty`` only observed combinations appear.

    Args:
        max_table: Output of :func:`per_individual_max`
        group_columns: One or two grouping columns
        value_column: Column holding the maxima (defaults to the weight column)
        include_empty: Report empty level combinations explicitly

    Returns:
        DataFrame with the group columns, ``mean_max`` and ``n``

    Raises:
        NoData: If ``max_table`` has no rows
    """
    columns = _as_columns(group_columns)
    if len(columns) > 2:
        raise ValidationError(
            f"Group by one or two columns, got {columns}",
            suggestions=["Summarise larger crossings one pair at a time"],
        )
    value_column = value_column or get_default_config().data.weight_column
    validate_columns_present(max_table, columns + [value_column])

    if max_table.empty:
        raise NoData(operation="mean_of_max_by_group")

    summary = (
        max_table.groupby(columns, dropna=False)[value_column]
        .agg(mean_max='mean', n='count')
        .reset_index()
    )

    if include_empty:
        levels = [sorted(max_table[col].dropna().unique().tolist()) for col in columns]
        combinations = pd.MultiIndex.from_product(levels, names=columns).to_frame(index=False)
        summary = combinations.merge(summary, on=columns, how='outer')
        summary['n'] = summary['n'].fillna(0).astype(int)
        empty = int((summary['n'] == 0).sum())
        if empty:
            logger.info(f"{empty} group combinations have no individuals", groups=columns)

    return summary[columns + ['mean_max', 'n']]


def rank_predictors(
    max_table: pd.DataFrame,
    candidate_columns: Sequence[str],
    value_column: Optional[str] = None,
) -> pd.DataFrame:
    """
    Rank categorical predictors by the spread of their group means.

    The spread is the largest minus the smallest mean of per-individual
    maxima across the levels of each candidate.

    Returns:
        DataFrame with ``predictor``, ``n_levels`` and ``spread``, largest first
    """
    value_column = value_column or get_default_config().data.weight_column
    rows = []
    for column in candidate_columns:
        means = mean_of_max_by_group(max_table, column, value_column, include_empty=False)
        means = means.dropna(subset=['mean_max'])
        spread = float(means['mean_max'].max() - means['mean_max'].min()) if len(means) else np.nan
        rows.append({'predictor': column, 'n_levels': len(means), 'spread': spread})

    return (
        pd.DataFrame(rows, columns=['predictor', 'n_levels', 'spread'])
        .sort_values('spread', ascending=False, kind='stable', na_position='last')
        .reset_index(drop=True)
    )
