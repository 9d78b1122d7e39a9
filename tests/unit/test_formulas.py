"""
Tests for model specifications, formula parsing and specification building.
"""

import pytest

from lmm_jax.core.exceptions import ModelSpecificationError, SingularFit
from lmm_jax.formulas import (
    GroupingFactor,
    InteractionTerm,
    ModelSpecification,
    build_specification,
    find_unsupported_interactions,
    parse_formula,
)


pytestmark = pytest.mark.unit


class TestTerms:

    def test_interaction_needs_two_distinct_variables(self):
        with pytest.raises(ModelSpecificationError):
            InteractionTerm(('sex', 'sex'))
        with pytest.raises(ModelSpecificationError):
            InteractionTerm(('sex', 'taxon', 'preg_status'))

    def test_interaction_pairs_are_unordered(self):
        assert InteractionTerm(('sex', 'taxon')).same_pair(InteractionTerm(('taxon', 'sex')))

    def test_grouping_factor_labels(self):
        intercept = GroupingFactor('dlc_id')
        slope = GroupingFactor('dlc_id', 'age_at_wt_mo')

        assert intercept.to_string() == "(1 | dlc_id)"
        assert intercept.term_name == "(Intercept)"
        assert slope.to_string() == "(0 + age_at_wt_mo | dlc_id)"
        assert slope.label == "dlc_id:age_at_wt_mo"
        assert slope.with_levels(12).n_levels == 12


class TestModelSpecification:

    def test_normalises_inputs(self):
        spec = ModelSpecification(
            response='weight_g',
            fixed_effects=['taxon', 'sex', 'taxon'],
            interactions=[('taxon', 'sex'), ('sex', 'taxon')],
            grouping_factors=['dlc_id', ('dlc_id', 'age_at_wt_mo')],
        )

        assert spec.fixed_effects == ('taxon', 'sex')
        assert spec.interactions == (('taxon', 'sex'),)
        assert spec.grouping_factors[1] == GroupingFactor('dlc_id', 'age_at_wt_mo')

    def test_requires_grouping_factor(self):
        with pytest.raises(ModelSpecificationError):
            ModelSpecification(response='weight_g', fixed_effects=('taxon',))

    def test_duplicate_random_term(self):
        with pytest.raises(ModelSpecificationError):
            ModelSpecification(response='weight_g', grouping_factors=('dlc_id', 'dlc_id'))

    def test_response_cannot_be_predictor(self):
        with pytest.raises(ModelSpecificationError):
            ModelSpecification(
                response='weight_g', fixed_effects=('weight_g',), grouping_factors=('dlc_id',),
            )

    def test_formula_rendering(self):
        spec = ModelSpecification(
            response='weight_g',
            fixed_effects=('taxon', 'sex'),
            interactions=(('taxon', 'sex'),),
            grouping_factors=('dlc_id', 'age_at_wt_mo'),
        )
        assert spec.to_formula() == (
            "weight_g ~ taxon + sex + taxon:sex + (1 | dlc_id) + (1 | age_at_wt_mo)"
        )
        assert spec.get_parameter_count() == 3

    def test_dict_round_trip(self):
        spec = ModelSpecification(
            response='weight_g',
            fixed_effects=('taxon',),
            grouping_factors=(GroupingFactor('dlc_id', n_levels=4),),
            name='taxon_only',
        )
        assert ModelSpecification.from_dict(spec.to_dict()) == spec

    def test_missing_columns(self, tiny_table):
        spec = ModelSpecification(
            response='weight_g', fixed_effects=('habitat',), grouping_factors=('dlc_id',),
        )
        with pytest.raises(ModelSpecificationError) as exc_info:
            spec.validate_columns(tiny_table.columns)
        assert exc_info.value.context['missing_columns'] == ['habitat']


class TestFormulaParser:

    def test_main_effects_and_random_intercepts(self):
        spec = parse_formula("weight_g ~ taxon + sex + (1 | dlc_id) + (1 | age_at_wt_mo)")

        assert spec.response == 'weight_g'
        assert spec.fixed_effects == ('taxon', 'sex')
        assert [g.column for g in spec.grouping_factors] == ['dlc_id', 'age_at_wt_mo']
        assert spec.intercept

    def test_star_expands_to_main_effects_and_interaction(self):
        spec = parse_formula("weight_g ~ taxon * sex + (1 | dlc_id)")

        assert spec.fixed_effects == ('taxon', 'sex')
        assert spec.interactions == (('taxon', 'sex'),)

    def test_colon_interaction_and_factor_call(self):
        spec = parse_formula("weight_g ~ C(age_category) + sex + C(age_category):sex + (1 | dlc_id)")

        assert spec.categorical == ('age_category',)
        assert spec.interactions == (('age_category', 'sex'),)

    def test_no_intercept(self):
        assert not parse_formula("weight_g ~ 0 + taxon + (1 | dlc_id)").intercept
        assert not parse_formula("weight_g ~ taxon - 1 + (1 | dlc_id)").intercept

    def test_uncorrelated_slope(self):
        spec = parse_formula("weight_g ~ taxon + (1 + age_at_wt_mo || dlc_id)")
        assert spec.grouping_factors == (
            GroupingFactor('dlc_id'), GroupingFactor('dlc_id', 'age_at_wt_mo'),
        )

    def test_correlated_slope_rejected(self):
        with pytest.raises(ModelSpecificationError):
            parse_formula("weight_g ~ taxon + (1 + age_at_wt_mo | dlc_id)")

    @pytest.mark.parametrize("formula", [
        "weight_g taxon + (1 | dlc_id)",
        "weight_g ~ taxon + + (1 | dlc_id)",
        "weight_g ~ taxon + (1 | dlc_id",
        "weight_g ~ taxon * sex * preg_status + (1 | dlc_id)",
        "weight_g ~ taxon",
    ])
    def test_invalid_formulas(self, formula):
        with pytest.raises(ModelSpecificationError):
            parse_formula(formula)

    def test_round_trip_through_formula(self):
        formula = "weight_g ~ taxon + sex + taxon:sex + (1 | dlc_id) + (1 | age_at_wt_mo)"
        assert parse_formula(formula).to_formula() == formula


class TestBuildSpecification:

    def test_annotates_grouping_levels(self, tiny_table):
        spec = build_specification(
            tiny_table, 'weight_g', fixed_effects=['taxon'], grouping_factors=['dlc_id', 'age_at_wt_mo'],
        )
        assert [g.n_levels for g in spec.grouping_factors] == [4, 3]

    def test_drops_zero_support_interaction(self, longitudinal_table):
        spec = build_specification(
            longitudinal_table,
            'weight_g',
            fixed_effects=['taxon', 'sex', 'preg_status'],
            interactions=[('taxon', 'sex'), ('sex', 'preg_status')],
            grouping_factors=['dlc_id'],
        )
        assert spec.interactions == (('taxon', 'sex'),)

    def test_find_unsupported_interactions(self, longitudinal_table):
        spec = ModelSpecification(
            response='weight_g',
            fixed_effects=('sex', 'preg_status'),
            interactions=(('sex', 'preg_status'),),
            grouping_factors=('dlc_id',),
        )
        assert find_unsupported_interactions(spec, longitudinal_table) == [('sex', 'preg_status')]

    def test_single_level_grouping_factor(self, tiny_table):
        with pytest.raises(SingularFit):
            build_specification(tiny_table, 'weight_g', fixed_effects=['taxon'], grouping_factors=['preg_status'])

    def test_missing_column(self, tiny_table):
        with pytest.raises(ModelSpecificationError):
            build_specification(tiny_table, 'weight_g', fixed_effects=['habitat'], grouping_factors=['dlc_id'])
