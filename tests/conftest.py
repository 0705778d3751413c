"""
Pytest configuration and fixtures for reproducible testing.

This file provides centralized test configuration including:
- Random seed management for reproducibility
- A non-interactive matplotlib backend
- Shared survey data, prediction grid and fitted-model fixtures
"""
import matplotlib
matplotlib.use('Agg')

import matplotlib.pyplot as plt
import numpy as np
import pytest

from epistemic_glmm.survey_data import (
    SurveySchema, simulate_survey_data, transform_features,
    make_prediction_grid, write_survey_csv,
)
from epistemic_glmm.formula import ModelFormula
from epistemic_glmm.frequentist import FrequentistGLMM, FrequentistConfig


def pytest_configure(config):
    config.addinivalue_line("markers", "slow: MCMC or bootstrap-heavy test")


@pytest.fixture(scope="session", autouse=True)
def set_random_seeds():
    """Set random seeds at the start of test session for reproducibility."""
    np.random.seed(42)
    yield


@pytest.fixture(autouse=True)
def close_figures():
    """Close figures created by a test."""
    yield
    plt.close('all')


@pytest.fixture(scope="session")
def schema():
    return SurveySchema()


@pytest.fixture(scope="session")
def raw_surveys(schema):
    """Raw simulated survey table (30 sites x 3 visits, 6 observers)."""
    return simulate_survey_data(n_sites=30, n_observers=6, visits_per_site=3,
                                seed=7, schema=schema)


@pytest.fixture(scope="session")
def survey_csv(raw_surveys, schema, tmp_path_factory):
    path = tmp_path_factory.mktemp("surveys") / "surveys.csv"
    return write_survey_csv(raw_surveys, path, schema)


@pytest.fixture(scope="session")
def prepared(raw_surveys, schema):
    """(transformed data, standardization)."""
    return transform_features(raw_surveys, schema)


@pytest.fixture(scope="session")
def survey_data(prepared):
    return prepared[0]


@pytest.fixture(scope="session")
def grid(prepared, schema):
    data, scaling = prepared
    return make_prediction_grid(data, schema, n_points=20, exposure=16.0, scaling=scaling)


@pytest.fixture(scope="session")
def glmm_fit(survey_data, schema):
    formula = ModelFormula.from_schema(schema)
    return FrequentistGLMM(formula, FrequentistConfig(verbose=False)).fit(survey_data)
