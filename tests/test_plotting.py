"""
Tests for interval bands and uncertainty plots
"""

import numpy as np
import pytest
from matplotlib.figure import Figure

from epistemic_glmm import plotting
from epistemic_glmm.plotting import INTERVAL_WIDTHS, interval_bands


@pytest.fixture
def lognormal_samples(grid):
    rng = np.random.default_rng(0)
    return np.exp(rng.normal(1.0, 0.4, size=(300, len(grid))))


class TestIntervalBands:

    def test_columns(self, lognormal_samples):
        bands = interval_bands(lognormal_samples)
        assert len(bands) == lognormal_samples.shape[1]
        expected = {'median'} | {f'{side}_{w}' for w in INTERVAL_WIDTHS
                                 for side in ('lower', 'upper')}
        assert set(bands.columns) == expected

    def test_nested(self, lognormal_samples):
        bands = interval_bands(lognormal_samples)
        assert (bands['lower_0.95'] <= bands['lower_0.8']).all()
        assert (bands['lower_0.8'] <= bands['lower_0.5']).all()
        assert (bands['lower_0.5'] <= bands['median']).all()
        assert (bands['median'] <= bands['upper_0.5']).all()
        assert (bands['upper_0.5'] <= bands['upper_0.8']).all()
        assert (bands['upper_0.8'] <= bands['upper_0.95']).all()

    def test_coverage(self):
        samples = np.random.default_rng(1).normal(size=(20000, 1))
        bands = interval_bands(samples, widths=(0.95,))
        assert bands['lower_0.95'].iloc[0] == pytest.approx(-1.96, abs=0.05)
        assert bands['upper_0.95'].iloc[0] == pytest.approx(1.96, abs=0.05)

    def test_rejects_1d(self):
        with pytest.raises(ValueError, match="2D"):
            interval_bands(np.ones(10))

    def test_rejects_bad_width(self, lognormal_samples):
        with pytest.raises(ValueError, match="width"):
            interval_bands(lognormal_samples, widths=(1.5,))


class TestFigures:

    def test_observations(self, survey_data):
        fig = plotting.plot_observations(survey_data)
        assert isinstance(fig, Figure)

    def test_residuals(self, glmm_fit):
        fig = plotting.plot_residuals(glmm_fit)
        assert len(fig.axes) == 2

    def test_ribbons(self, grid, lognormal_samples, survey_data):
        fig = plotting.plot_ribbons(grid, lognormal_samples, title='test',
                                    observed=survey_data)
        ax = fig.axes[0]
        # One median line per forest class, three ribbons each
        assert len(ax.lines) == 2
        assert len(ax.collections) >= 2 * len(INTERVAL_WIDTHS)

    def test_ribbons_shape_mismatch(self, grid, lognormal_samples):
        with pytest.raises(ValueError, match="columns"):
            plotting.plot_ribbons(grid.iloc[:10], lognormal_samples)

    def test_comparison_saved(self, grid, lognormal_samples, tmp_path):
        path = tmp_path / 'comparison.png'
        samples = {
            'Bootstrap': lognormal_samples,
            'Bootstrap + group variability': lognormal_samples * 1.1,
            'Bayes': lognormal_samples * 0.9,
        }
        fig = plotting.plot_uncertainty_comparison(grid, samples, save_path=str(path))
        assert path.exists()
        visible = [ax for ax in fig.axes if ax.get_visible()]
        assert len(visible) == 3

    def test_comparison_empty_raises(self, grid):
        with pytest.raises(ValueError, match="empty"):
            plotting.plot_uncertainty_comparison(grid, {})
