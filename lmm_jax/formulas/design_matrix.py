"""
Design matrix construction for lmm-jax.

Converts a model specification and a data table into the fixed-effect
matrix ``X``, the sparse random-effect matrix ``Z`` and the response ``y``.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Set, Tuple

import numpy as np
import pandas as pd
from scipy import sparse

from .terms import Term, TermType, VariableTerm, InteractionTerm, GroupingFactor
from .spec import ModelSpecification
from ..core.exceptions import (
    ModelSpecificationError,
    NoData,
    RankDeficient,
    SingularFit,
)
from ..utils.logging import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class RandomEffectBlock:
    """Columns of ``Z`` belonging to one grouping factor."""
    factor: GroupingFactor
    levels: Tuple[Any, ...]
    start: int
    stop: int

    @property
    def n_levels(self) -> int:
        return len(self.levels)


@dataclass
class DesignMatrices:
    """Design matrices of a model specification on a data table."""
    X: np.ndarray
    Z: sparse.csc_matrix
    y: np.ndarray
    column_names: List[str]
    blocks: List[RandomEffectBlock]
    row_index: pd.Index
    n_dropped: int = 0
    factor_levels: Dict[str, List[Any]] = field(default_factory=dict)

    @property
    def n_obs(self) -> int:
        return self.X.shape[0]

    @property
    def n_fixed(self) -> int:
        return self.X.shape[1]

    @property
    def n_random(self) -> int:
        return self.Z.shape[1]

    @property
    def theta_index(self) -> np.ndarray:
        """Block number of every column of ``Z``."""
        index = np.empty(self.n_random, dtype=int)
        for k, block in enumerate(self.blocks):
            index[block.start:block.stop] = k
        return index


class DesignMatrixBuilder:
    """
    Builds design matrices from a model specification and data.

    Categorical predictors use treatment coding with the first level in
    sorted order as reference.
    """

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    def complete_rows(self, spec: ModelSpecification, table: pd.DataFrame) -> pd.DataFrame:
        """Rows of ``table`` without missing values in any column the model uses."""
        spec.validate_columns(table.columns)
        used = sorted(spec.variables())
        return table.loc[table[used].notna().all(axis=1)]

    def categorical_columns(self, spec: ModelSpecification, rows: pd.DataFrame) -> Set[str]:
        """Fixed-effect columns coded as factors."""
        columns = set(spec.categorical)
        for term in spec.fixed_terms():
            for name in term.get_variable_names():
                if not pd.api.types.is_numeric_dtype(rows[name]) or pd.api.types.is_bool_dtype(rows[name]):
                    columns.add(name)
        return columns

    def build(self, spec: ModelSpecification, table: pd.DataFrame) -> DesignMatrices:
        """
        Build ``X``, ``Z`` and ``y`` for a specification.

        Args:
            spec: Model specification
            table: Observation table

        Returns:
            DesignMatrices on the complete rows of ``table``

        Raises:
            ModelSpecificationError: On missing or non-numeric columns
            NoData: If no complete rows remain
            SingularFit: If a grouping factor cannot be identified
            RankDeficient: If ``X`` does not have full column rank
        """
        self.logger.debug(f"Building design matrices for {spec.to_formula()}")

        rows = self.complete_rows(spec, table)
        n_dropped = len(table) - len(rows)
        if n_dropped:
            self.logger.info(
                "Dropped rows with missing values",
                dropped=n_dropped,
                kept=len(rows),
            )
        if rows.empty:
            raise NoData(operation=f"fitting {spec.to_formula()}")

        y = self._numeric(rows, spec.response, role="response")
        categorical = self.categorical_columns(spec, rows)

        matrix_columns: List[np.ndarray] = []
        column_names: List[str] = []
        for term in spec.fixed_terms():
            columns, names = self._build_term_columns(term, rows, categorical)
            matrix_columns.extend(columns)
            column_names.extend(names)

        if matrix_columns:
            X = np.column_stack(matrix_columns).astype(float)
        else:
            X = np.zeros((len(rows), 0))
        self._check_rank(X, column_names)

        Z, blocks = self._build_random_effects(spec.grouping_factors, rows)

        factor_levels = {
            name: list(self._levels(rows[name])) for name in sorted(categorical)
            if name in spec.variables()
        }

        return DesignMatrices(
            X=X,
            Z=Z,
            y=y,
            column_names=column_names,
            blocks=blocks,
            row_index=rows.index,
            n_dropped=n_dropped,
            factor_levels=factor_levels,
        )

    def interaction_supported(
        self,
        rows: pd.DataFrame,
        pair: Tuple[str, str],
        categorical: Set[str],
    ) -> bool:
        """
        Whether the interaction of ``pair`` is estimable on ``rows``.

        The intercept, both main effects and the interaction columns must
        have full column rank; an unobserved level combination breaks this.
        """
        columns, _ = self._build_intercept_columns(len(rows))
        for term in (VariableTerm(pair[0]), VariableTerm(pair[1]), InteractionTerm(pair)):
            term_columns, _ = self._build_term_columns(term, rows, categorical)
            columns.extend(term_columns)
        if len(rows) < len(columns):
            return False
        matrix = np.column_stack(columns).astype(float)
        return np.linalg.matrix_rank(matrix) == matrix.shape[1]

    def _build_term_columns(
        self,
        term: Term,
        rows: pd.DataFrame,
        categorical: Set[str],
    ) -> Tuple[List[np.ndarray], List[str]]:
        """Build columns for a specific term."""
        if term.term_type == TermType.INTERCEPT:
            return self._build_intercept_columns(len(rows))
        if term.term_type == TermType.VARIABLE:
            return self._build_variable_columns(rows, term.variable_name, categorical)
        if term.term_type == TermType.INTERACTION:
            return self._build_interaction_columns(rows, term, categorical)
        raise ModelSpecificationError(
            specific_issue=f"unsupported fixed-effect term: {term.to_string()}",
        )

    def _build_intercept_columns(self, n_rows: int) -> Tuple[List[np.ndarray], List[str]]:
        return [np.ones(n_rows)], ["(Intercept)"]

    def _build_variable_columns(
        self,
        rows: pd.DataFrame,
        variable_name: str,
        categorical: Set[str],
    ) -> Tuple[List[np.ndarray], List[str]]:
        if variable_name not in categorical:
            return [self._numeric(rows, variable_name, role="predictor")], [variable_name]

        values = rows[variable_name]
        levels = self._levels(values)
        if len(levels) < 2:
            raise ModelSpecificationError(
                specific_issue=(
                    f"categorical predictor '{variable_name}' has a single level "
                    f"{list(levels)} in the data"
                ),
                suggestions=[
                    f"Remove '{variable_name}' from the fixed effects",
                    "Check the filters applied before fitting",
                ],
            )

        # Treatment coding: first sorted level is the reference
        columns = [(values == level).to_numpy(dtype=float) for level in levels[1:]]
        names = [f"{variable_name}[{level}]" for level in levels[1:]]
        return columns, names

    def _build_interaction_columns(
        self,
        rows: pd.DataFrame,
        term: InteractionTerm,
        categorical: Set[str],
    ) -> Tuple[List[np.ndarray], List[str]]:
        first, second = term.variables
        first_columns, first_names = self._build_variable_columns(rows, first, categorical)
        second_columns, second_names = self._build_variable_columns(rows, second, categorical)

        columns = []
        names = []
        for col_a, name_a in zip(first_columns, first_names):
            for col_b, name_b in zip(second_columns, second_names):
                columns.append(col_a * col_b)
                names.append(f"{name_a}:{name_b}")
        return columns, names

    def _build_random_effects(
        self,
        grouping_factors: Tuple[GroupingFactor, ...],
        rows: pd.DataFrame,
    ) -> Tuple[sparse.csc_matrix, List[RandomEffectBlock]]:
        n_obs = len(rows)
        row_ids = np.arange(n_obs)
        blocks: List[RandomEffectBlock] = []
        pieces = []
        start = 0

        for factor in grouping_factors:
            codes, levels = pd.factorize(rows[factor.column], sort=True)
            n_levels = len(levels)
            if n_levels < 2:
                raise SingularFit(grouping_factor=factor.label, n_levels=n_levels, n_obs=n_obs)
            if n_levels >= n_obs:
                raise SingularFit(
                    grouping_factor=factor.label,
                    n_levels=n_levels,
                    n_obs=n_obs,
                    reason=(
                        f"has {n_levels} levels for {n_obs} observations; "
                        "its variance is confounded with the residual"
                    ),
                )

            if factor.slope is None:
                values = np.ones(n_obs)
            else:
                values = self._numeric(rows, factor.slope, role="random slope")

            pieces.append(sparse.coo_matrix((values, (row_ids, codes)), shape=(n_obs, n_levels)))
            blocks.append(RandomEffectBlock(
                factor=factor.with_levels(n_levels),
                levels=tuple(levels.tolist()),
                start=start,
                stop=start + n_levels,
            ))
            start += n_levels

        Z = sparse.hstack(pieces, format='csc')
        return Z, blocks

    def _check_rank(self, X: np.ndarray, column_names: List[str]) -> None:
        n_columns = X.shape[1]
        if n_columns == 0:
            return
        rank = int(np.linalg.matrix_rank(X))
        if rank == n_columns:
            return

        # Columns that add nothing to the span of the columns before them
        collinear = []
        kept = []
        current = 0
        for j in range(n_columns):
            candidate = kept + [j]
            candidate_rank = int(np.linalg.matrix_rank(X[:, candidate]))
            if candidate_rank > current:
                kept = candidate
                current = candidate_rank
            else:
                collinear.append(column_names[j])

        raise RankDeficient(collinear_columns=collinear, rank=rank, n_columns=n_columns)

    @staticmethod
    def _levels(values: pd.Series) -> List[Any]:
        return sorted(values.dropna().unique().tolist())

    @staticmethod
    def _numeric(rows: pd.DataFrame, column: str, role: str) -> np.ndarray:
        values = rows[column]
        if not pd.api.types.is_numeric_dtype(values) or pd.api.types.is_bool_dtype(values):
            raise ModelSpecificationError(
                specific_issue=f"{role} column '{column}' is not numeric (dtype {values.dtype})",
                suggestions=[
                    f"Convert '{column}' to numbers",
                    "List categorical predictors in the fixed effects, not as slopes or response",
                ],
            )
        return values.to_numpy(dtype=float)


def build_design_matrices(spec: ModelSpecification, table: pd.DataFrame) -> DesignMatrices:
    """
    Convenience function to build design matrices.

    Args:
        spec: Model specification
        table: Observation table

    Returns:
        DesignMatrices for the complete rows of ``table``
    """
    return DesignMatrixBuilder().build(spec, table)


def validate_design_matrix(design: DesignMatrices) -> List[str]:
    """
    List problems of a built design.

    Returns:
        Descriptions of non-finite values or columns without variation
    """
    issues = []
    if not np.all(np.isfinite(design.X)):
        issues.append("fixed-effect matrix contains non-finite values")
    if not np.all(np.isfinite(design.y)):
        issues.append("response contains non-finite values")
    for j, name in enumerate(design.column_names):
        if name != "(Intercept)" and np.ptp(design.X[:, j]) == 0:
            issues.append(f"column '{name}' is constant")
    return issues
