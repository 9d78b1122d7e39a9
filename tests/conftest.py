"""
Shared pytest configuration and fixtures for lmm-jax tests.

This module provides synthetic body-weight tables, temporary input files
and configuration used across the test suite.
"""

import pytest
import numpy as np
import pandas as pd

from lmm_jax.config.settings import LmmJaxConfig, reset_default_config


COLUMNS = ['weight_g', 'dlc_id', 'taxon', 'age_at_wt_mo', 'sex', 'preg_status']


@pytest.fixture
def tiny_table():
    """Four individuals measured at three ages each, two taxa and both sexes."""
    rows = []
    weights = {
        'A1': [410.0, 455.0, 498.0],
        'A2': [380.0, 431.0, 470.0],
        'B1': [612.0, 660.0, 701.0],
        'B2': [590.0, 655.0, 688.0],
    }
    sexes = {'A1': 'M', 'A2': 'F', 'B1': 'M', 'B2': 'F'}
    for individual, values in weights.items():
        for age, weight in zip([6.0, 12.0, 18.0], values):
            rows.append({
                'weight_g': weight,
                'dlc_id': individual,
                'taxon': individual[0],
                'age_at_wt_mo': age,
                'sex': sexes[individual],
                'preg_status': 'N',
            })
    return pd.DataFrame(rows, columns=COLUMNS)


def make_longitudinal_table(n_individuals=30, seed=7):
    """
    Simulated weights with individual and age random intercepts.

    Females are recorded pregnant at some adult measurements; males never are.
    """
    rng = np.random.default_rng(seed)
    ages = np.array([6.0, 12.0, 24.0, 36.0, 48.0])
    age_effects = rng.normal(0.0, 20.0, size=len(ages))

    rows = []
    for i in range(n_individuals):
        taxon = 'EMAC' if i % 2 == 0 else 'VRUB'
        sex = 'F' if (i // 2) % 2 == 0 else 'M'
        individual_effect = rng.normal(0.0, 80.0)
        for j, age in enumerate(ages):
            pregnant = sex == 'F' and age >= 36 and rng.random() < 0.5
            weight = (
                1500.0
                + (300.0 if taxon == 'VRUB' else 0.0)
                + (60.0 if sex == 'M' else 0.0)
                + 4.0 * age
                + (120.0 if pregnant else 0.0)
                + individual_effect
                + age_effects[j]
                + rng.normal(0.0, 25.0)
            )
            rows.append({
                'weight_g': round(weight, 1),
                'dlc_id': f"{i + 1:04d}",
                'taxon': taxon,
                'age_at_wt_mo': age,
                'sex': sex,
                'preg_status': 'P' if pregnant else 'N',
            })
    return pd.DataFrame(rows, columns=COLUMNS)


@pytest.fixture
def longitudinal_table():
    """Thirty individuals of two taxa measured at five ages."""
    return make_longitudinal_table()


@pytest.fixture
def observation_file(tmp_path, longitudinal_table):
    """CSV input file with an extra taxon and undetermined-sex rows."""
    extra = pd.DataFrame([
        {'weight_g': 900.0, 'dlc_id': '9001', 'taxon': 'OGG', 'age_at_wt_mo': 12.0,
         'sex': 'F', 'preg_status': 'N'},
        {'weight_g': 1510.0, 'dlc_id': '9002', 'taxon': 'EMAC', 'age_at_wt_mo': 12.0,
         'sex': 'ND', 'preg_status': 'N'},
    ], columns=COLUMNS)
    path = tmp_path / "weights.csv"
    pd.concat([longitudinal_table, extra], ignore_index=True).to_csv(path, index=False)
    return path


@pytest.fixture
def config(tmp_path, monkeypatch):
    """Isolated configuration with small bootstrap settings."""
    for var in ('LMM_JAX_LOG_LEVEL', 'LMM_JAX_N_SIMULATIONS', 'LMM_JAX_RANDOM_SEED',
                'LMM_JAX_MAX_WORKERS', 'LMM_JAX_DECIMAL_PRECISION'):
        monkeypatch.delenv(var, raising=False)
    return LmmJaxConfig(bootstrap={'n_simulations': 40, 'random_seed': 11})


@pytest.fixture(autouse=True)
def fresh_default_config(monkeypatch, tmp_path):
    """Keep the global configuration independent of the user's home directory."""
    monkeypatch.setenv("HOME", str(tmp_path))
    reset_default_config()
    yield
    reset_default_config()


@pytest.fixture(autouse=True)
def set_random_seed():
    """Set random seed for reproducible tests."""
    np.random.seed(42)


# Markers for different test types
def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test (fast)"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test (medium speed)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow (may take >10 seconds)"
    )
