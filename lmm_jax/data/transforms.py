"""
Filter and transform stage for lmm-jax.

Every function returns a new table; inputs are never modified in place.
"""

from typing import Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from ..config.settings import get_default_config
from ..core.exceptions import DataQualityError, ValidationError
from ..utils.logging import get_logger
from ..utils.validation import validate_columns_present


logger = get_logger(__name__)


def filter_by_taxon(
    table: pd.DataFrame,
    allowed_set: Iterable,
    taxon_column: Optional[str] = None,
) -> pd.DataFrame:
    """
    Keep only rows whose taxon is in ``allowed_set``.

    Row order and index of the remaining rows are preserved and all other
    columns are left untouched. An empty result is returned as is.

    Args:
        table: Observation table
        allowed_set: Taxon codes to keep
        taxon_column: Taxon column name (defaults to the configured one)

    Returns:
        Filtered copy of ``table``
    """
    taxon_column = taxon_column or get_default_config().data.taxon_column
    validate_columns_present(table, [taxon_column])

    allowed = set(allowed_set)
    observed = set(table[taxon_column].dropna().unique())
    unknown = allowed - observed
    if unknown:
        logger.warning(f"Taxa not present in data: {sorted(unknown, key=str)}")

    result = table.loc[table[taxon_column].isin(allowed)].copy()

    logger.info(
        "Filtered by taxon",
        kept=len(result),
        removed=len(table) - len(result),
        taxa=sorted(allowed & observed, key=str),
    )
    if result.empty:
        logger.warning("Taxon filter removed every observation")

    return result


def filter_valid_sex(
    table: pd.DataFrame,
    sex_column: Optional[str] = None,
    undetermined: Optional[str] = None,
) -> pd.DataFrame:
    """
    Remove rows whose sex is undetermined or missing.

    Args:
        table: Observation table
        sex_column: Sex column name (defaults to the configured one)
        undetermined: Sentinel for undetermined sex (defaults to the configured one)

    Returns:
        Filtered copy of ``table``
    """
    data_config = get_default_config().data
    sex_column = sex_column or data_config.sex_column
    undetermined = undetermined if undetermined is not None else data_config.undetermined_sex
    validate_columns_present(table, [sex_column])

    keep = table[sex_column].notna() & (table[sex_column] != undetermined)
    result = table.loc[keep].copy()

    logger.info("Removed rows with undetermined sex", removed=int((~keep).sum()), kept=len(result))
    return result


def per_individual_max(
    table: pd.DataFrame,
    value_column: str,
    id_column: Optional[str] = None,
    carry_columns: Optional[Sequence[str]] = None,
    extra_keys: Sequence[str] = (),
) -> pd.DataFrame:
    """
    Reduce a table to one row per individual holding the maximum of a column.

    Group-invariant attributes (taxon and sex by default) are carried from
    the first record of each individual; if they vary within an individual
    the carried value is whichever comes first.

    Args:
        table: Observation table
        value_column: Column whose per-individual maximum is computed
        id_column: Individual identifier column
        carry_columns: Columns to carry along; defaults to the configured
            taxon and sex columns that are present in ``table``
        extra_keys: Additional grouping columns (e.g. pregnancy status),
            giving one row per individual and key combination

    Returns:
        Table with the id column, ``extra_keys``, ``value_column`` and the
        carried columns, in order of first appearance
    """
    data_config = get_default_config().data
    id_column = id_column or data_config.id_column
    keys = [id_column] + [key for key in extra_keys if key != id_column]

    if carry_columns is None:
        carry_columns = [
            col for col in (data_config.taxon_column, data_config.sex_column)
            if col in table.columns
        ]
    carry = [col for col in carry_columns if col not in keys and col != value_column]

    validate_columns_present(table, keys + [value_column] + carry)

    grouped = table.groupby(keys, sort=False, dropna=False)
    result = grouped[value_column].max().to_frame()
    for col in carry:
        result[col] = grouped[col].first()

    return result.reset_index()[keys + [value_column] + carry]


def check_no_cooccurrence(
    table: pd.DataFrame,
    column_a: str,
    value_a: str,
    column_b: str,
    value_b: str,
    id_column: Optional[str] = None,
) -> None:
    """
    Check that no row carries ``value_a`` in ``column_a`` together with
    ``value_b`` in ``column_b`` (e.g. a male recorded as pregnant).

    Raises:
        DataQualityError: Listing the offending individuals
    """
    id_column = id_column or get_default_config().data.id_column
    validate_columns_present(table, [column_a, column_b])

    both = (table[column_a] == value_a) & (table[column_b] == value_b)
    n_rows = int(both.sum())
    if n_rows == 0:
        return

    offenders: List[str] = []
    if id_column in table.columns:
        offenders = sorted(table.loc[both, id_column].astype(str).unique().tolist())

    raise DataQualityError(
        quality_issues=[
            f"{n_rows} rows have {column_a}={value_a} and {column_b}={value_b}"
            + (f" (individuals: {offenders[:10]})" if offenders else "")
        ],
        context={"n_rows": n_rows, "individuals": offenders},
    )


def derive_age_category(
    table: pd.DataFrame,
    age_column: Optional[str] = None,
    category_column: Optional[str] = None,
    thresholds: Optional[Sequence[float]] = None,
    labels: Optional[Sequence[str]] = None,
    overwrite: bool = False,
) -> pd.DataFrame:
    """
    Add an age-category column from age thresholds.

    Ages below ``thresholds[0]`` get ``labels[0]``, ages in
    ``[thresholds[i-1], thresholds[i])`` get ``labels[i]`` and the rest get
    the last label. Existing non-missing categories are kept unless
    ``overwrite`` is set. Missing ages give missing categories.
    """
    data_config = get_default_config().data
    age_column = age_column or data_config.age_column
    category_column = category_column or data_config.age_category_column or "age_category"
    thresholds = list(thresholds if thresholds is not None else data_config.age_category_thresholds)
    labels = list(labels if labels is not None else data_config.age_category_labels)

    if len(labels) != len(thresholds) + 1:
        raise ValidationError(
            f"Need {len(thresholds) + 1} labels for {len(thresholds)} thresholds, got {len(labels)}",
            suggestions=["Provide one more label than thresholds"],
        )
    validate_columns_present(table, [age_column])

    ages = table[age_column].to_numpy(dtype=float)
    codes = np.searchsorted(np.asarray(thresholds, dtype=float), ages, side='right')
    derived = pd.Series(
        np.where(np.isnan(ages), None, np.asarray(labels, dtype=object)[np.minimum(codes, len(labels) - 1)]),
        index=table.index,
        dtype=object,
    )

    result = table.copy()
    if category_column in result.columns and not overwrite:
        result[category_column] = result[category_column].where(result[category_column].notna(), derived)
    else:
        result[category_column] = derived
    return result
