"""
End-to-end test of the bootstrap vs Bayes comparison
"""

import warnings

import numpy as np
import pytest

pytest.importorskip("bambi")

from epistemic_glmm.bayesian import BayesianConfig
from epistemic_glmm.frequentist import FrequentistConfig
from epistemic_glmm.workflow import WorkflowConfig, run_comparison


@pytest.mark.slow
def test_full_comparison(survey_csv, tmp_path):
    """20 elevations x 2 forest classes at effort 16 -> 40 columns everywhere."""
    config = WorkflowConfig(
        n_boot=3,
        grid_points=20,
        grid_exposure=16.0,
        output_dir=str(tmp_path / 'figures'),
        frequentist=FrequentistConfig(verbose=False),
        bayesian=BayesianConfig(n_chains=2, n_draws=60, n_tune=100, cores=1,
                                progressbar=False, check_convergence=False),
    )

    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        results = run_comparison(str(survey_csv), config)

    assert len(results['grid']) == 40
    assert (results['grid']['effort'] == 16.0).all()

    samples = results['samples']
    assert samples['Bootstrap'].shape == (3, 40)
    assert samples['Bootstrap + group variability'].shape == (3, 40)
    assert samples['Bayes'].shape == (120, 40)
    assert samples['Bayes + group effects'].shape == (120, 40)
    for s in samples.values():
        assert np.isfinite(s).all()
        assert (s > 0).all()

    for name in ('observations.png', 'residuals.png', 'uncertainty_comparison.png'):
        assert (tmp_path / 'figures' / name).exists()


def test_missing_file_is_fatal(tmp_path):
    with pytest.raises(FileNotFoundError):
        run_comparison(str(tmp_path / 'missing.csv'), WorkflowConfig(output_dir=None))
