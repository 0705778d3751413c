"""
Unit tests for the Bayesian GLMM (bambi/PyMC)
"""

import warnings
from contextlib import contextmanager

import numpy as np
import pytest
from matplotlib.figure import Figure

bmb = pytest.importorskip("bambi")
az = pytest.importorskip("arviz")

from epistemic_glmm import plotting
from epistemic_glmm.bayesian import BayesianGLMM, BayesianConfig
from epistemic_glmm.formula import ModelFormula


@contextmanager
def _ignore_warnings():
    """Sampler and diagnostic warnings are expected with tiny chains."""
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        yield


def _small_config(**overrides):
    """Minimal MCMC settings for fast testing."""
    settings = dict(n_chains=2, n_draws=100, n_tune=150, cores=1,
                    progressbar=False, random_seed=123)
    settings.update(overrides)
    return BayesianConfig(**settings)


class TestBayesianSetup:
    """Construction and guards that need no sampling."""

    def test_initialization(self, schema):
        bayes = BayesianGLMM(ModelFormula.from_schema(schema), _small_config())
        assert bayes.model is None
        assert bayes.trace is None
        assert bayes.config.cores == 1

    def test_default_config(self):
        config = BayesianConfig()
        assert config.n_chains == 4
        assert 0.0 < config.target_accept < 1.0

    def test_build_model(self, schema, survey_data):
        bayes = BayesianGLMM(ModelFormula.from_schema(schema), _small_config())
        model = bayes.build(survey_data)
        assert isinstance(model, bmb.Model)
        assert bayes.model is None  # build() does not store or sample

    def test_predict_before_fit_raises(self, grid):
        bayes = BayesianGLMM(config=_small_config())
        with pytest.raises(ValueError, match="fit"):
            bayes.predict_samples(grid)

    def test_summary_before_fit_raises(self):
        bayes = BayesianGLMM(config=_small_config())
        with pytest.raises(ValueError, match="No trace"):
            bayes.summarize_posterior()

    def test_save_without_trace_raises(self, tmp_path):
        bayes = BayesianGLMM(config=_small_config())
        with pytest.raises(ValueError, match="No trace"):
            bayes.save_trace(str(tmp_path / 'trace.nc'))


@pytest.mark.slow
class TestMCMCSampling:
    """Sampling and posterior predictions (slow)."""

    @pytest.fixture(scope="class")
    def fitted(self, survey_data, schema):
        bayes = BayesianGLMM(ModelFormula.from_schema(schema), _small_config())
        with _ignore_warnings():
            bayes.fit(survey_data)
        return bayes

    def test_trace(self, fitted):
        assert isinstance(fitted.trace, az.InferenceData)
        assert fitted.trace.posterior.sizes['chain'] == 2
        assert fitted.trace.posterior.sizes['draw'] == 100

    def test_posterior_summary(self, fitted):
        summary = fitted.summarize_posterior()
        assert 'elevation_z' in summary
        assert '1|site_sigma' in summary
        for stats in summary.values():
            assert stats['ci_lower'] <= stats['mean'] <= stats['ci_upper']
            assert stats['std'] >= 0

    def test_convergence_report(self, fitted, capsys):
        with _ignore_warnings():
            diagnostics = fitted.check_convergence()
        assert 'r_hat' in diagnostics.columns
        assert 'Divergent transitions' in capsys.readouterr().out

    def test_fixed_only_predictions(self, fitted, grid):
        samples = fitted.predict_samples(grid)
        assert samples.shape == (200, 40)
        assert (samples > 0).all()

    def test_group_predictions_for_new_levels(self, fitted, grid):
        fixed_only = fitted.predict_samples(grid)
        with_groups = fitted.predict_samples(grid, include_group_specific=True,
                                             sample_new_groups=True)
        assert with_groups.shape == (200, 40)
        assert (with_groups > 0).all()
        # Sampling new group effects adds spread on the log scale
        assert (np.log(with_groups).std(axis=0).mean()
                > np.log(fixed_only).std(axis=0).mean())

    def test_trace_plot(self, fitted, tmp_path):
        path = tmp_path / 'trace.png'
        fig = plotting.plot_trace(fitted.trace, var_names=['elevation_z', '1|site_sigma'],
                                  save_path=str(path))
        assert isinstance(fig, Figure)
        assert path.exists()

    def test_max_draws(self, fitted, grid):
        samples = fitted.predict_samples(grid, max_draws=50)
        assert samples.shape == (50, 40)

    def test_save_load_trace(self, fitted, tmp_path):
        path = str(tmp_path / 'trace.nc')
        fitted.save_trace(path)
        loaded = BayesianGLMM.load_trace(path)
        np.testing.assert_allclose(
            loaded.posterior['elevation_z'].values,
            fitted.trace.posterior['elevation_z'].values,
        )
