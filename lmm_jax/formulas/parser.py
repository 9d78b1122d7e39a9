"""
Formula parser for lmm-jax.

Provides lme4-style formula parsing for linear mixed models.
"""

import re
from typing import List, Optional, Tuple

from .spec import ModelSpecification
from .terms import GroupingFactor
from ..core.exceptions import ModelSpecificationError
from ..utils.logging import get_logger


logger = get_logger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_.][A-Za-z0-9_.]*$")
_FACTOR_CALL = re.compile(r"^(?:C|factor)\(\s*([^()]+?)\s*\)$")
_NO_INTERCEPT = re.compile(r"-\s*1\b")


class FormulaParser:
    """
    Parser for lme4-style model formulas.

    Supports:
    - Main effects: taxon + sex
    - Interactions: taxon:sex, or taxon*sex (expands to taxon + sex + taxon:sex)
    - Forced factors: C(age_category) or factor(age_category)
    - Random intercepts: (1 | dlc_id)
    - Uncorrelated random slopes: (0 + age_at_wt_mo | dlc_id)
    - Intercept plus uncorrelated slope: (1 + age_at_wt_mo || dlc_id)
    - Intercept control: + 1 (default), - 1 or 0 (no intercept)
    """

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    def parse(
        self,
        formula_string: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> ModelSpecification:
        """
        Parse a formula string into a model specification.

        Args:
            formula_string: lme4-style formula
            name: Optional model label
            description: Optional description

        Returns:
            ModelSpecification

        Examples:
            "weight_g ~ taxon + (1 | dlc_id)"
            "weight_g ~ taxon * sex + (1 | dlc_id) + (1 | age_at_wt_mo)"
        """
        original = formula_string.strip() if isinstance(formula_string, str) else ""
        self.logger.debug(f"Parsing formula: {original}")

        if original.count("~") != 1:
            raise ModelSpecificationError(
                formula=original or repr(formula_string),
                suggestions=[
                    "Formula should have format 'response ~ predictors'",
                    "Example: 'weight_g ~ taxon + sex + (1 | dlc_id)'",
                ],
            )

        response_part, predictor_part = (part.strip() for part in original.split("~"))
        response = self._variable(response_part, original)

        fixed: List[str] = []
        interactions: List[Tuple[str, str]] = []
        groups: List[GroupingFactor] = []
        categorical: List[str] = []
        intercept = True

        predictor_part = _NO_INTERCEPT.sub("+ 0", predictor_part)
        for token in self._split_top_level(predictor_part, original):
            if token == "1":
                intercept = True
            elif token == "0":
                intercept = False
            elif token.startswith("(") and token.endswith(")"):
                groups.extend(self._parse_random(token[1:-1], original))
            elif "*" in token:
                variables = [self._variable(v, original, categorical) for v in token.split("*")]
                if len(variables) != 2:
                    raise self._error(original, f"'{token}' expands beyond pairwise interactions")
                fixed.extend(variables)
                interactions.append((variables[0], variables[1]))
            elif ":" in token:
                variables = [self._variable(v, original, categorical) for v in token.split(":")]
                if len(variables) != 2:
                    raise self._error(original, f"'{token}' is not a pairwise interaction")
                interactions.append((variables[0], variables[1]))
            else:
                fixed.append(self._variable(token, original, categorical))

        spec = ModelSpecification(
            response=response,
            fixed_effects=tuple(fixed),
            interactions=tuple(interactions),
            grouping_factors=tuple(groups),
            name=name,
            description=description,
            categorical=tuple(categorical),
            intercept=intercept,
        )

        self.logger.debug(
            f"Parsed formula: response={response}, {len(spec.fixed_effects)} main effects, "
            f"{len(spec.interactions)} interactions, {len(spec.grouping_factors)} random terms"
        )
        return spec

    def _split_top_level(self, text: str, original: str) -> List[str]:
        """Split on '+' outside parentheses."""
        tokens = []
        depth = 0
        current = []
        for char in text:
            if char == "(":
                depth += 1
            elif char == ")":
                depth -= 1
                if depth < 0:
                    raise self._error(original, "unbalanced parentheses")
            if char == "+" and depth == 0:
                tokens.append("".join(current).strip())
                current = []
            else:
                current.append(char)
        if depth != 0:
            raise self._error(original, "unbalanced parentheses")
        tokens.append("".join(current).strip())

        if any(not token for token in tokens):
            raise self._error(original, "empty term")
        return tokens

    def _parse_random(self, inner: str, original: str) -> List[GroupingFactor]:
        uncorrelated = "||" in inner
        separator = "||" if uncorrelated else "|"
        parts = inner.split(separator)
        if len(parts) != 2:
            raise self._error(original, f"random term '({inner})' needs one '|'")

        lhs, group = parts[0].strip(), parts[1].strip()
        column = self._variable(group, original)
        effects = [effect.strip() for effect in lhs.split("+")]

        has_intercept = "0" not in effects
        slopes = [self._variable(e, original) for e in effects if e not in ("0", "1")]

        if has_intercept and slopes and not uncorrelated:
            raise self._error(
                original,
                f"correlated random effects '({inner})' are not supported",
                suggestions=[
                    f"Use '(1 + {' + '.join(slopes)} || {column})' for uncorrelated effects",
                    f"Or '(0 + {slopes[0]} | {column})' for a random slope only",
                ],
            )

        factors = [GroupingFactor(column)] if has_intercept else []
        factors.extend(GroupingFactor(column, slope) for slope in slopes)
        if not factors:
            raise self._error(original, f"random term '({inner})' has no effects")
        return factors

    def _variable(
        self,
        text: str,
        original: str,
        categorical: Optional[List[str]] = None,
    ) -> str:
        text = text.strip()
        match = _FACTOR_CALL.match(text)
        if match:
            text = match.group(1).strip()
            if categorical is not None and text not in categorical:
                categorical.append(text)
        if not _IDENTIFIER.match(text):
            raise self._error(original, f"'{text}' is not a valid column name")
        return text

    @staticmethod
    def _error(original: str, issue: str, suggestions: Optional[List[str]] = None) -> ModelSpecificationError:
        return ModelSpecificationError(
            formula=original,
            specific_issue=f"{issue} in '{original}'",
            suggestions=suggestions or [
                "Check formula syntax",
                "Supported: +, *, :, C(), (1 | g), (0 + x | g), (1 + x || g)",
                "Example: 'weight_g ~ taxon + sex + (1 | dlc_id)'",
            ],
        )


def parse_formula(
    formula_string: str,
    name: Optional[str] = None,
    description: Optional[str] = None,
) -> ModelSpecification:
    """
    Parse a single formula string.

    Args:
        formula_string: lme4-style formula string
        name: Optional model label
        description: Optional description

    Returns:
        ModelSpecification object
    """
    parser = FormulaParser()
    return parser.parse(formula_string, name=name, description=description)
