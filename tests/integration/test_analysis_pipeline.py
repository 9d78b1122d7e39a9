"""
End-to-end tests of the body-weight analysis pipeline.

Load, filter, summarise, fit the candidate models, bootstrap their
coefficients and compare them.
"""

import pytest
import numpy as np
import pandas as pd

from lmm_jax import (
    candidate_specifications,
    fit_candidates,
    fit_model,
    parse_formula,
    run_analysis,
)
from lmm_jax.core.exceptions import (
    DataQualityError,
    DataUnavailable,
    ModelSpecificationError,
    NoData,
    RankDeficient,
)


pytestmark = pytest.mark.integration


class TestFitModel:

    def test_formula_and_path(self, observation_file, config):
        model = fit_model("weight_g ~ taxon + (1 | dlc_id)", observation_file, config=config)

        # The file still holds the extra taxon and the undetermined-sex row
        assert model.n_obs == 152
        assert model.coefficients['term'].tolist() == ['(Intercept)', 'taxon[OGG]', 'taxon[VRUB]']

    def test_ml_fit(self, longitudinal_table, config):
        model = fit_model("weight_g ~ taxon + (1 | dlc_id)", longitudinal_table, config=config, reml=False)
        assert not model.reml

    def test_invalid_strategy(self, longitudinal_table, config):
        with pytest.raises(ModelSpecificationError):
            fit_model("weight_g ~ taxon + (1 | dlc_id)", longitudinal_table, config=config, strategy="newton")


class TestCandidateSpecifications:

    def test_interactions_without_support_are_dropped(self, longitudinal_table, config):
        main_effects, interactions = candidate_specifications(longitudinal_table, config)

        assert main_effects.fixed_effects == ('age_at_wt_mo', 'taxon', 'sex', 'preg_status')
        assert [g.column for g in main_effects.grouping_factors] == ['dlc_id', 'age_at_wt_mo']
        assert interactions.interactions == (('taxon', 'age_at_wt_mo'), ('taxon', 'sex'))

    def test_fit_candidates_records_failures(self, longitudinal_table, config):
        specs = [
            parse_formula("weight_g ~ taxon + (1 | dlc_id)", name="ok"),
            parse_formula("weight_g ~ sex * preg_status + (1 | dlc_id)", name="unsupported"),
        ]
        fits = fit_candidates(specs, longitudinal_table, config)

        assert set(fits.models) == {'ok'}
        assert isinstance(fits.failures['unsupported'], RankDeficient)


@pytest.mark.slow
class TestRunAnalysis:

    @pytest.fixture
    def report(self, observation_file, config, tmp_path):
        config.report.export_directory = tmp_path / "results"
        return run_analysis(observation_file, ['EMAC', 'VRUB'], config=config, random_seed=21)

    def test_filters(self, report):
        assert set(report.data['taxon']) == {'EMAC', 'VRUB'}
        assert 'ND' not in set(report.data['sex'])
        assert len(report.data) == 150
        assert 'age_category' in report.data.columns

    def test_summaries(self, report):
        counts = report.summaries['count_taxon']
        assert counts['n'].sum() == 150

        by_pregnancy = report.summaries['mean_max_preg_status']
        assert set(by_pregnancy['preg_status']) == {'N', 'P'}
        assert report.predictor_ranking['predictor'].iloc[0] == 'taxon'

    def test_models(self, report):
        assert set(report.models) == {'main_effects', 'interactions'}
        assert report.failures == {}

        main = report.models['main_effects']
        assert len(main.coefficients) == 5
        assert set(main.n_groups) == {'dlc_id', 'age_at_wt_mo'}
        assert len(report.models['interactions'].coefficients) == 7

    def test_bootstrap_and_widths(self, report):
        assert set(report.bootstrap) == {'main_effects', 'interactions'}
        for result in report.bootstrap.values():
            assert result.n_requested == 40
            assert result.random_seed == 21

        widths = report.interval_widths
        assert list(widths.columns) == ['term', 'main_effects', 'interactions']
        assert '(Intercept)' in widths['term'].tolist()
        assert (widths[['main_effects', 'interactions']] > 0).all().all()

    def test_comparison(self, report):
        assert report.comparison.criterion == "ML"
        name, rationale = report.preferred_model
        assert name in report.models
        assert rationale

    def test_exported_tables(self, report, config):
        directory = config.report.export_directory
        written = {path.stem for path in directory.glob("*.csv")}

        assert {'coefficients_main_effects', 'ci_interactions', 'comparison', 'interval_widths'} <= written
        coefficients = pd.read_csv(directory / "coefficients_main_effects.csv")
        assert np.allclose(coefficients['estimate'], coefficients['estimate'].round(3))


class TestPipelineFailures:

    def test_missing_input(self, tmp_path, config):
        with pytest.raises(DataUnavailable):
            run_analysis(tmp_path / "missing.csv", ['EMAC'], config=config)

    def test_pregnant_male_aborts(self, tmp_path, longitudinal_table, config):
        table = longitudinal_table.copy()
        table.loc[table.index[table['sex'] == 'M'][0], 'preg_status'] = 'P'
        path = tmp_path / "weights.csv"
        table.to_csv(path, index=False)

        with pytest.raises(DataQualityError):
            run_analysis(path, ['EMAC', 'VRUB'], config=config)

    def test_no_matching_taxa(self, observation_file, config):
        with pytest.raises(NoData):
            run_analysis(observation_file, ['ZZZ'], config=config)
