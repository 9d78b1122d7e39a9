"""
Tests for exploratory summaries.
"""

import pytest
import numpy as np
import pandas as pd

from lmm_jax.core.exceptions import NoData, ValidationError
from lmm_jax.data.summary import count_by_group, mean_of_max_by_group, rank_predictors
from lmm_jax.data.transforms import per_individual_max


pytestmark = pytest.mark.unit


class TestCountByGroup:

    def test_counts_sum_to_rows(self, longitudinal_table):
        counts = count_by_group(longitudinal_table, ['taxon', 'sex'])
        assert counts['n'].sum() == len(longitudinal_table)

    def test_sorted_descending(self):
        table = pd.DataFrame({'taxon': ['A', 'B', 'B', 'C', 'C', 'C']})
        counts = count_by_group(table, 'taxon')

        assert counts['taxon'].tolist() == ['C', 'B', 'A']
        assert counts['n'].tolist() == [3, 2, 1]

    def test_missing_values_form_a_group(self):
        table = pd.DataFrame({'preg_status': ['P', None, None]})
        counts = count_by_group(table, 'preg_status')

        assert counts['n'].sum() == 3
        assert counts['preg_status'].isna().any()

    def test_requires_group_columns(self, tiny_table):
        with pytest.raises(ValidationError):
            count_by_group(tiny_table, [])


class TestMeanOfMaxByGroup:

    def test_mean_of_maxima(self, tiny_table):
        max_table = per_individual_max(tiny_table, 'weight_g')
        result = mean_of_max_by_group(max_table, 'taxon').set_index('taxon')

        assert result.loc['A', 'mean_max'] == pytest.approx((498.0 + 470.0) / 2)
        assert result.loc['B', 'mean_max'] == pytest.approx((701.0 + 688.0) / 2)
        assert result.loc['A', 'n'] == 2

    def test_empty_combination_is_nan_not_zero(self, longitudinal_table):
        keyed = per_individual_max(longitudinal_table, 'weight_g', extra_keys=['preg_status'])
        result = mean_of_max_by_group(keyed, ['sex', 'preg_status'])

        empty = result[(result['sex'] == 'M') & (result['preg_status'] == 'P')]
        assert len(empty) == 1
        assert np.isnan(empty['mean_max'].iloc[0])
        assert empty['n'].iloc[0] == 0

    def test_observed_combinations_only(self, longitudinal_table):
        keyed = per_individual_max(longitudinal_table, 'weight_g', extra_keys=['preg_status'])
        result = mean_of_max_by_group(keyed, ['sex', 'preg_status'], include_empty=False)

        assert len(result) == 3
        assert result['mean_max'].notna().all()

    def test_empty_table_raises(self, tiny_table):
        max_table = per_individual_max(tiny_table.iloc[:0], 'weight_g')
        with pytest.raises(NoData):
            mean_of_max_by_group(max_table, 'taxon')

    def test_at_most_two_group_columns(self, tiny_table):
        max_table = per_individual_max(tiny_table, 'weight_g')
        with pytest.raises(ValidationError):
            mean_of_max_by_group(max_table, ['taxon', 'sex', 'dlc_id'])


class TestRankPredictors:

    def test_largest_spread_first(self, longitudinal_table):
        max_table = per_individual_max(longitudinal_table, 'weight_g')
        ranking = rank_predictors(max_table, ['sex', 'taxon'])

        assert ranking['predictor'].tolist() == ['taxon', 'sex']
        assert (ranking['n_levels'] == 2).all()
        assert ranking['spread'].iloc[0] > ranking['spread'].iloc[1]
