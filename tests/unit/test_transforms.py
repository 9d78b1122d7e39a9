"""
Tests for the filter and transform stage.
"""

import pytest
import numpy as np
import pandas as pd

from lmm_jax.core.exceptions import DataQualityError, SchemaMismatch, ValidationError
from lmm_jax.data.transforms import (
    check_no_cooccurrence,
    derive_age_category,
    filter_by_taxon,
    filter_valid_sex,
    per_individual_max,
)


pytestmark = pytest.mark.unit


@pytest.fixture
def mixed_table(longitudinal_table):
    extra = pd.DataFrame([
        {'weight_g': 900.0, 'dlc_id': '9001', 'taxon': 'OGG', 'age_at_wt_mo': 12.0,
         'sex': 'F', 'preg_status': 'N'},
        {'weight_g': 1510.0, 'dlc_id': '9002', 'taxon': 'EMAC', 'age_at_wt_mo': 12.0,
         'sex': 'ND', 'preg_status': 'N'},
        {'weight_g': 1490.0, 'dlc_id': '9003', 'taxon': 'VRUB', 'age_at_wt_mo': 6.0,
         'sex': None, 'preg_status': 'N'},
    ])
    # Interleave so that order preservation is meaningful
    return pd.concat([extra.iloc[:1], longitudinal_table, extra.iloc[1:]], ignore_index=True)


class TestFilterByTaxon:

    def test_keeps_only_allowed_taxa(self, mixed_table):
        result = filter_by_taxon(mixed_table, {'EMAC', 'VRUB'})

        assert set(result['taxon']) <= {'EMAC', 'VRUB'}
        assert len(result) == int(mixed_table['taxon'].isin({'EMAC', 'VRUB'}).sum())

    def test_preserves_order_and_columns(self, mixed_table):
        result = filter_by_taxon(mixed_table, ['EMAC'])

        expected = mixed_table.loc[mixed_table['taxon'] == 'EMAC']
        pd.testing.assert_frame_equal(result, expected)

    def test_does_not_modify_input(self, mixed_table):
        before = mixed_table.copy()
        filter_by_taxon(mixed_table, ['OGG'])
        pd.testing.assert_frame_equal(mixed_table, before)

    def test_no_op_when_all_taxa_allowed(self, tiny_table):
        result = filter_by_taxon(tiny_table, ['A', 'B'])
        assert len(result) == len(tiny_table)

    def test_unknown_taxon_gives_empty_table(self, tiny_table):
        result = filter_by_taxon(tiny_table, ['ZZZ'])
        assert result.empty
        assert list(result.columns) == list(tiny_table.columns)

    def test_integer_taxon_codes(self, tiny_table):
        table = tiny_table.assign(taxon=tiny_table['taxon'].map({'A': 1, 'B': 2}))
        result = filter_by_taxon(table, {1})

        assert len(result) == int((table['taxon'] == 1).sum()) == 6
        assert set(result['taxon']) == {1}

    def test_missing_taxon_column(self, tiny_table):
        with pytest.raises(SchemaMismatch):
            filter_by_taxon(tiny_table.drop(columns=['taxon']), ['A'])


class TestFilterValidSex:

    def test_removes_undetermined_and_missing(self, mixed_table):
        result = filter_valid_sex(mixed_table)

        assert 'ND' not in set(result['sex'])
        assert result['sex'].notna().all()
        assert len(result) == len(mixed_table) - 2

    def test_custom_sentinel(self, tiny_table):
        table = tiny_table.copy()
        table.loc[0, 'sex'] = 'U'
        assert len(filter_valid_sex(table, undetermined='U')) == 11


class TestPerIndividualMax:

    def test_one_row_per_individual(self, longitudinal_table):
        result = per_individual_max(longitudinal_table, 'weight_g')

        assert len(result) == longitudinal_table['dlc_id'].nunique()
        assert result['dlc_id'].is_unique

    def test_maximum_is_an_observed_upper_bound(self, longitudinal_table):
        result = per_individual_max(longitudinal_table, 'weight_g').set_index('dlc_id')

        for individual, group in longitudinal_table.groupby('dlc_id'):
            maximum = result.loc[individual, 'weight_g']
            assert (group['weight_g'] <= maximum).all()
            assert (group['weight_g'] == maximum).any()

    def test_carries_taxon_and_sex(self, tiny_table):
        result = per_individual_max(tiny_table, 'weight_g')

        assert list(result.columns) == ['dlc_id', 'weight_g', 'taxon', 'sex']
        row = result.set_index('dlc_id').loc['B1']
        assert row['weight_g'] == 701.0
        assert row['taxon'] == 'B'
        assert row['sex'] == 'M'

    def test_single_observation_individual(self, tiny_table):
        table = pd.concat([tiny_table, pd.DataFrame([{
            'weight_g': 333.0, 'dlc_id': 'C1', 'taxon': 'A', 'age_at_wt_mo': 3.0,
            'sex': 'F', 'preg_status': 'N',
        }])], ignore_index=True)

        result = per_individual_max(table, 'weight_g').set_index('dlc_id')
        assert result.loc['C1', 'weight_g'] == 333.0

    def test_idempotent(self, longitudinal_table):
        once = per_individual_max(longitudinal_table, 'weight_g')
        twice = per_individual_max(once, 'weight_g')
        pd.testing.assert_frame_equal(once, twice)

    def test_extra_keys(self, longitudinal_table):
        result = per_individual_max(longitudinal_table, 'weight_g', extra_keys=['preg_status'])

        pairs = longitudinal_table[['dlc_id', 'preg_status']].drop_duplicates()
        assert len(result) == len(pairs)
        assert list(result.columns[:3]) == ['dlc_id', 'preg_status', 'weight_g']


class TestCheckNoCooccurrence:

    def test_passes_on_consistent_data(self, longitudinal_table):
        check_no_cooccurrence(longitudinal_table, 'sex', 'M', 'preg_status', 'P')

    def test_pregnant_male_fails_loudly(self, longitudinal_table):
        table = longitudinal_table.copy()
        male = table.index[table['sex'] == 'M'][0]
        table.loc[male, 'preg_status'] = 'P'

        with pytest.raises(DataQualityError) as exc_info:
            check_no_cooccurrence(table, 'sex', 'M', 'preg_status', 'P')

        assert exc_info.value.context['n_rows'] == 1
        assert exc_info.value.context['individuals'] == [table.loc[male, 'dlc_id']]


class TestDeriveAgeCategory:

    def test_thresholds(self):
        table = pd.DataFrame({'age_at_wt_mo': [0.0, 11.9, 12.0, 35.0, 36.0, 120.0, np.nan]})
        result = derive_age_category(table)

        assert result['age_category'].tolist()[:6] == [
            'IJ', 'IJ', 'young_adult', 'young_adult', 'adult', 'adult',
        ]
        assert pd.isna(result['age_category'].iloc[6])
        assert 'age_category' not in table.columns

    def test_keeps_existing_categories(self):
        table = pd.DataFrame({
            'age_at_wt_mo': [6.0, 50.0],
            'age_category': ['adult', None],
        })
        result = derive_age_category(table)
        assert result['age_category'].tolist() == ['adult', 'adult']

        overwritten = derive_age_category(table, overwrite=True)
        assert overwritten['age_category'].tolist() == ['IJ', 'adult']

    def test_label_count_must_match(self):
        table = pd.DataFrame({'age_at_wt_mo': [1.0]})
        with pytest.raises(ValidationError):
            derive_age_category(table, thresholds=[12.0], labels=['a', 'b', 'c'])
