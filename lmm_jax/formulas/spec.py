"""
Model specification classes for lmm-jax.

Defines the structure and validation of linear mixed model specifications:
a response, fixed-effect main effects, pairwise interactions and one or
more grouping factors carrying independent random effects.
"""

from dataclasses import dataclass, replace
from typing import List, Dict, Optional, Any, Sequence, Set, Tuple, Union

import pandas as pd

from ..core.exceptions import ModelSpecificationError, SingularFit
from ..utils.logging import get_logger
from .terms import Term, InterceptTerm, VariableTerm, InteractionTerm, GroupingFactor


logger = get_logger(__name__)

GroupingInput = Union[str, GroupingFactor, Dict[str, Any], Tuple[str, Optional[str]]]


def _as_grouping_factor(value: GroupingInput) -> GroupingFactor:
    if isinstance(value, GroupingFactor):
        return value
    if isinstance(value, str):
        return GroupingFactor(value)
    if isinstance(value, dict):
        return GroupingFactor(**value)
    if isinstance(value, (tuple, list)) and 1 <= len(value) <= 2:
        return GroupingFactor(*value)
    raise ModelSpecificationError(
        specific_issue=f"cannot interpret {value!r} as a grouping factor",
        suggestions=[
            "Pass a column name, a GroupingFactor or a (column, slope) pair",
        ],
    )


def _dedupe(values: Sequence[str]) -> Tuple[str, ...]:
    return tuple(dict.fromkeys(values))


@dataclass(frozen=True)
class ModelSpecification:
    """
    Complete linear mixed model specification.

    Examples:
        weight_g ~ taxon + sex + (1 | dlc_id)
        weight_g ~ taxon + sex + taxon:sex + (1 | dlc_id) + (1 | age_at_wt_mo)
    """

    response: str
    fixed_effects: Tuple[str, ...] = ()
    interactions: Tuple[Tuple[str, str], ...] = ()
    grouping_factors: Tuple[GroupingFactor, ...] = ()

    # Metadata
    name: Optional[str] = None
    description: Optional[str] = None

    # Columns treated as categorical even when stored as numbers
    categorical: Tuple[str, ...] = ()
    intercept: bool = True

    def __post_init__(self):
        """Normalise containers and validate the specification shape."""
        if not self.response or not isinstance(self.response, str):
            raise ModelSpecificationError(
                specific_issue=f"invalid response column: {self.response!r}",
                suggestions=["Provide the name of a numeric response column"],
            )

        fixed = _dedupe(self.fixed_effects)
        for variable in fixed:
            VariableTerm(variable)
        if self.response in fixed:
            raise ModelSpecificationError(
                specific_issue=f"response '{self.response}' is also a fixed effect",
            )

        pairs: List[Tuple[str, str]] = []
        for pair in self.interactions:
            term = InteractionTerm(tuple(pair))
            if not any(term.same_pair(InteractionTerm(p)) for p in pairs):
                pairs.append(term.variables)

        groups: List[GroupingFactor] = []
        for value in self.grouping_factors:
            factor = _as_grouping_factor(value)
            if any(factor.same_term(g) for g in groups):
                raise ModelSpecificationError(
                    specific_issue=f"duplicate random-effect term {factor.to_string()}",
                )
            groups.append(factor)

        if not groups:
            raise ModelSpecificationError(
                formula=self._render(fixed, pairs, groups),
                specific_issue="at least one grouping factor is required",
                suggestions=[
                    "Add a random intercept, e.g. GroupingFactor('dlc_id')",
                    "Use ordinary least squares for models without random effects",
                ],
            )

        object.__setattr__(self, 'fixed_effects', fixed)
        object.__setattr__(self, 'interactions', tuple(pairs))
        object.__setattr__(self, 'grouping_factors', tuple(groups))
        object.__setattr__(self, 'categorical', _dedupe(self.categorical))

    def _render(self, fixed, pairs, groups) -> str:
        parts = [] if self.intercept else ["0"]
        parts.extend(fixed)
        parts.extend(":".join(pair) for pair in pairs)
        parts.extend(g.to_string() for g in groups)
        return f"{self.response} ~ {' + '.join(parts) or '1'}"

    def to_formula(self) -> str:
        """Render an lme4-style formula string."""
        return self._render(self.fixed_effects, self.interactions, self.grouping_factors)

    def fixed_terms(self) -> List[Term]:
        """Fixed-effect terms in design-matrix column order."""
        terms: List[Term] = [InterceptTerm()] if self.intercept else []
        terms.extend(VariableTerm(v) for v in self.fixed_effects)
        terms.extend(InteractionTerm(pair) for pair in self.interactions)
        return terms

    def variables(self) -> Set[str]:
        """All data columns the specification uses."""
        names = {self.response}
        for term in self.fixed_terms():
            names |= term.get_variable_names()
        for factor in self.grouping_factors:
            names |= factor.get_variable_names()
        return names

    def validate_columns(self, available_columns: Sequence[str]) -> None:
        """
        Check that every column the specification uses is available.

        Raises:
            ModelSpecificationError: If any column is missing
        """
        missing = self.variables() - set(available_columns)
        if missing:
            raise ModelSpecificationError(
                formula=self.to_formula(),
                available_columns=[str(c) for c in available_columns],
                missing_columns=sorted(missing),
            )

    def without_interactions(self, pairs: Sequence[Tuple[str, str]]) -> 'ModelSpecification':
        """Copy of the specification with the given interaction pairs removed."""
        drop = [InteractionTerm(tuple(p)) for p in pairs]
        kept = tuple(
            pair for pair in self.interactions
            if not any(InteractionTerm(pair).same_pair(d) for d in drop)
        )
        return replace(self, interactions=kept)

    def with_grouping_factors(self, grouping_factors: Sequence[GroupingInput]) -> 'ModelSpecification':
        return replace(self, grouping_factors=tuple(grouping_factors))

    def get_parameter_count(self) -> int:
        """Number of variance parameters: one per grouping factor plus the residual."""
        return len(self.grouping_factors) + 1

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "response": self.response,
            "fixed_effects": list(self.fixed_effects),
            "interactions": [list(pair) for pair in self.interactions],
            "grouping_factors": [
                {"column": g.column, "slope": g.slope, "n_levels": g.n_levels}
                for g in self.grouping_factors
            ],
            "name": self.name,
            "description": self.description,
            "categorical": list(self.categorical),
            "intercept": self.intercept,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ModelSpecification':
        """Create a specification from its dictionary representation."""
        return cls(
            response=data["response"],
            fixed_effects=tuple(data.get("fixed_effects", ())),
            interactions=tuple(tuple(p) for p in data.get("interactions", ())),
            grouping_factors=tuple(data.get("grouping_factors", ())),
            name=data.get("name"),
            description=data.get("description"),
            categorical=tuple(data.get("categorical", ())),
            intercept=data.get("intercept", True),
        )

    def __str__(self) -> str:
        label = f"{self.name}: " if self.name else ""
        return f"{label}{self.to_formula()}"


def find_unsupported_interactions(
    spec: ModelSpecification,
    table: pd.DataFrame,
) -> List[Tuple[str, str]]:
    """
    Interaction pairs of ``spec`` without support in ``table``.

    A pair is unsupported when its interaction columns cannot be estimated
    alongside the intercept and the two main effects on the rows the model
    would use, which happens when a combination of levels has no
    observations (e.g. males recorded as pregnant).
    """
    from .design_matrix import DesignMatrixBuilder

    builder = DesignMatrixBuilder()
    rows = builder.complete_rows(spec, table)
    categorical = builder.categorical_columns(spec, rows)

    return [
        pair for pair in spec.interactions
        if not builder.interaction_supported(rows, pair, categorical)
    ]


def build_specification(
    table: pd.DataFrame,
    response: str,
    fixed_effects: Sequence[str] = (),
    interactions: Sequence[Tuple[str, str]] = (),
    grouping_factors: Sequence[GroupingInput] = (),
    name: Optional[str] = None,
    description: Optional[str] = None,
    categorical: Sequence[str] = (),
    intercept: bool = True,
) -> ModelSpecification:
    """
    Build a model specification validated against a data table.

    Every column must exist in ``table``. Grouping factors are annotated
    with their cardinality on the rows the model will use, and interaction
    pairs without observed support are dropped with a warning so that the
    fitting stage never sees them.

    Args:
        table: Observation table the model will be fitted to
        response: Response column
        fixed_effects: Main-effect columns
        interactions: Pairs of columns to interact
        grouping_factors: Column names, ``(column, slope)`` pairs or
            ``GroupingFactor`` objects
        name: Optional model label
        description: Optional free-text description
        categorical: Numeric columns to treat as categorical
        intercept: Include a fixed intercept

    Returns:
        Validated ModelSpecification

    Raises:
        ModelSpecificationError: If a column is missing or the shape is invalid
        SingularFit: If a grouping factor has fewer than two levels
    """
    spec = ModelSpecification(
        response=response,
        fixed_effects=tuple(fixed_effects),
        interactions=tuple(tuple(p) for p in interactions),
        grouping_factors=tuple(grouping_factors),
        name=name,
        description=description,
        categorical=tuple(categorical),
        intercept=intercept,
    )
    spec.validate_columns(table.columns)

    unsupported = find_unsupported_interactions(spec, table)
    if unsupported:
        logger.warning(
            "Dropping interactions without data support",
            model=spec.name or spec.to_formula(),
            interactions=[":".join(p) for p in unsupported],
        )
        spec = spec.without_interactions(unsupported)

    from .design_matrix import DesignMatrixBuilder
    rows = DesignMatrixBuilder().complete_rows(spec, table)

    annotated = []
    for factor in spec.grouping_factors:
        n_levels = int(rows[factor.column].nunique())
        if n_levels < 2:
            raise SingularFit(grouping_factor=factor.label, n_levels=n_levels, n_obs=len(rows))
        annotated.append(factor.with_levels(n_levels))

    return spec.with_grouping_factors(annotated)
