"""
Epistemic GLMM - Bootstrap vs Bayesian Uncertainty for Bird Counts

A tutorial package comparing two ways of quantifying epistemic uncertainty
in the predictions of a Poisson generalized linear mixed model: the
frequentist parametric bootstrap and Bayesian posterior inference.
"""

__version__ = "0.1.0"

# Data loading and preparation
from .survey_data import (
    SurveySchema,
    SurveyDataLoader,
    Standardization,
    standardize,
    bucket_covariate,
    transform_features,
    make_prediction_grid,
    simulate_survey_data,
    write_survey_csv,
)

# Model fitting
from .formula import ModelFormula
from .frequentist import (
    FrequentistGLMM,
    FrequentistConfig,
    GLMMFit,
    bootstrap_predictions,
    bootstrap_with_group_variability,
)
from .bayesian import BayesianGLMM, BayesianConfig

# Plotting
from .plotting import INTERVAL_WIDTHS, interval_bands

__all__ = [
    "SurveySchema",
    "SurveyDataLoader",
    "Standardization",
    "standardize",
    "bucket_covariate",
    "transform_features",
    "make_prediction_grid",
    "simulate_survey_data",
    "write_survey_csv",
    "ModelFormula",
    "FrequentistGLMM",
    "FrequentistConfig",
    "GLMMFit",
    "bootstrap_predictions",
    "bootstrap_with_group_variability",
    "BayesianGLMM",
    "BayesianConfig",
    "INTERVAL_WIDTHS",
    "interval_bands",
]
