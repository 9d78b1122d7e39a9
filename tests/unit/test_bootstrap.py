"""
Tests for parametric bootstrap confidence intervals.
"""

import pytest
import numpy as np
import pandas as pd

from lmm_jax.config.settings import BootstrapConfig
from lmm_jax.core.exceptions import OptimizationError, ValidationError
from lmm_jax.formulas import parse_formula
from lmm_jax.inference import (
    BootstrapResult,
    ParametricBootstrap,
    compare_interval_widths,
    interval_width,
    parametric_bootstrap_ci,
)
from lmm_jax.models import LinearMixedModel


pytestmark = pytest.mark.unit


@pytest.fixture
def fitted_model(longitudinal_table):
    spec = parse_formula("weight_g ~ taxon + sex + (1 | dlc_id) + (1 | age_at_wt_mo)", name="taxon_sex")
    return LinearMixedModel(spec, longitudinal_table).fit()


@pytest.fixture
def bootstrap_result(fitted_model):
    return parametric_bootstrap_ci(fitted_model, n_simulations=30, confidence_level=0.95, random_seed=3)


class TestParametricBootstrap:

    def test_ci_table_layout(self, bootstrap_result, fitted_model):
        table = bootstrap_result.ci_table

        assert list(table.columns) == ['term', 'estimate', 'lower', 'upper']
        assert table['term'].tolist() == list(fitted_model.coefficient_names)
        assert (table['lower'] <= table['upper']).all()
        np.testing.assert_allclose(table['estimate'], fitted_model.beta)

    def test_counts(self, bootstrap_result):
        assert bootstrap_result.n_requested == 30
        assert bootstrap_result.n_successful + bootstrap_result.n_failed == 30
        assert bootstrap_result.samples.shape[1] == 3

    def test_intervals_widen_with_confidence_level(self, bootstrap_result):
        widths = [
            interval_width(bootstrap_result.confidence_intervals(level))['width'].to_numpy()
            for level in (0.5, 0.8, 0.9, 0.95, 0.99)
        ]
        for narrower, wider in zip(widths, widths[1:]):
            assert np.all(wider >= narrower)

    def test_same_seed_same_intervals(self, fitted_model, bootstrap_result):
        again = parametric_bootstrap_ci(fitted_model, n_simulations=30, confidence_level=0.95, random_seed=3)
        pd.testing.assert_frame_equal(again.ci_table, bootstrap_result.ci_table)

    def test_workers_do_not_change_draws(self, fitted_model):
        serial = parametric_bootstrap_ci(fitted_model, n_simulations=12, random_seed=5, max_workers=1)
        threaded = parametric_bootstrap_ci(fitted_model, n_simulations=12, random_seed=5, max_workers=3)
        np.testing.assert_allclose(serial.samples, threaded.samples)

    def test_simulated_responses_are_seeded(self, fitted_model):
        bootstrap = ParametricBootstrap()
        first = bootstrap.simulate_responses(fitted_model, 4, random_seed=9)
        second = bootstrap.simulate_responses(fitted_model, 4, random_seed=9)

        assert first.shape == (4, fitted_model.n_obs)
        np.testing.assert_array_equal(first, second)

    def test_variance_components(self, fitted_model):
        result = parametric_bootstrap_ci(
            fitted_model, n_simulations=10, random_seed=1, include_variance_components=True,
        )
        table = result.confidence_intervals(include_variance_components=True)

        assert table['term'].tolist()[-3:] == [
            'sd_(Intercept)|dlc_id', 'sd_(Intercept)|age_at_wt_mo', 'sigma',
        ]
        assert table['estimate'].iloc[-1] == pytest.approx(fitted_model.sigma)

    def test_variance_components_not_kept(self, bootstrap_result):
        with pytest.raises(ValidationError):
            bootstrap_result.confidence_intervals(include_variance_components=True)

    def test_parameter_summary(self, bootstrap_result):
        summary = bootstrap_result.get_parameter_summary()
        assert set(summary) == {'(Intercept)', 'taxon[VRUB]', 'sex[M]'}
        assert summary['taxon[VRUB]']['bootstrap_se'] > 0

    @pytest.mark.parametrize("kwargs", [
        {'n_simulations': 1},
        {'n_simulations': 2.5},
        {'confidence_level': 1.0},
        {'confidence_level': 0.0},
    ])
    def test_invalid_arguments(self, fitted_model, kwargs):
        with pytest.raises(ValidationError):
            parametric_bootstrap_ci(fitted_model, **{'n_simulations': 5, **kwargs})

    def test_defaults_from_config(self, fitted_model):
        config = BootstrapConfig(n_simulations=6, confidence_level=0.9, random_seed=2)
        result = parametric_bootstrap_ci(fitted_model, config=config)

        assert result.n_requested == 6
        assert result.confidence_level == 0.9
        assert result.random_seed == 2

    def test_too_many_failed_refits(self, fitted_model, monkeypatch):
        monkeypatch.setattr(ParametricBootstrap, '_refit', lambda self, model, response: None)
        with pytest.raises(OptimizationError):
            parametric_bootstrap_ci(fitted_model, n_simulations=5, random_seed=1)

    def test_failed_refits_are_skipped(self, fitted_model, monkeypatch):
        original = ParametricBootstrap._refit
        calls = []

        def flaky(self, model, response):
            calls.append(1)
            return None if len(calls) % 4 == 0 else original(self, model, response)

        monkeypatch.setattr(ParametricBootstrap, '_refit', flaky)
        result = parametric_bootstrap_ci(fitted_model, n_simulations=8, random_seed=1)

        assert result.n_failed == 2
        assert result.samples.shape == (6, 3)


class TestIntervalWidths:

    def test_interval_width(self):
        table = pd.DataFrame({
            'term': ['(Intercept)', 'taxon[B]'],
            'estimate': [1.0, 2.0],
            'lower': [0.5, 1.0],
            'upper': [1.5, 4.0],
        })
        widths = interval_width(table)

        assert widths['term'].tolist() == ['(Intercept)', 'taxon[B]']
        np.testing.assert_allclose(widths['width'], [1.0, 3.0])

    def test_interval_width_requires_bounds(self):
        with pytest.raises(ValidationError):
            interval_width(pd.DataFrame({'term': ['a'], 'lower': [0.0]}))

    def test_compare_shared_terms(self):
        first = pd.DataFrame({'term': ['a', 'b'], 'lower': [0.0, 0.0], 'upper': [1.0, 2.0]})
        second = pd.DataFrame({'term': ['a', 'b', 'c'], 'lower': [0.0, 0.0, 0.0], 'upper': [3.0, 1.0, 1.0]})
        comparison = compare_interval_widths({'small': first, 'large': second})

        assert list(comparison.columns) == ['term', 'small', 'large']
        assert comparison['term'].tolist() == ['a', 'b']
        np.testing.assert_allclose(comparison['large'], [3.0, 1.0])

    def test_compare_needs_two_tables(self, bootstrap_result):
        with pytest.raises(ValidationError):
            compare_interval_widths([bootstrap_result])

    def test_compare_bootstrap_results(self, bootstrap_result):
        other = BootstrapResult(
            model_name='other',
            parameter_names=bootstrap_result.parameter_names,
            estimates=bootstrap_result.estimates,
            samples=bootstrap_result.samples * 2,
            n_requested=bootstrap_result.n_requested,
            confidence_level=0.95,
        )
        comparison = compare_interval_widths([bootstrap_result, other])
        assert list(comparison.columns) == ['term', 'taxon_sex', 'other']
