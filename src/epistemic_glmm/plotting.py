"""
Plots for comparing bootstrap and Bayesian predictive uncertainty.

All functions draw with matplotlib/seaborn and return the Figure; saving
(``save_path``) and showing (``show``) are optional side effects.
"""

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from scipy import stats
from typing import Dict, Optional, Sequence

from .survey_data import SurveySchema

sns.set_style('whitegrid')

INTERVAL_WIDTHS = (0.5, 0.8, 0.95)


def interval_bands(samples: np.ndarray,
                   widths: Sequence[float] = INTERVAL_WIDTHS) -> pd.DataFrame:
    """Central quantile intervals per column of a sample matrix.

    Args:
        samples: [n_draws, n_points] array
        widths: Interval probability masses

    Returns:
        DataFrame with one row per point: 'median' plus 'lower_<w>' and
        'upper_<w>' for every width (e.g. 'lower_0.95')
    """
    samples = np.asarray(samples, dtype=float)
    if samples.ndim != 2:
        raise ValueError(f"samples must be 2D [draws, points], got shape {samples.shape}")

    bands = {'median': np.quantile(samples, 0.5, axis=0)}
    for w in widths:
        if not 0.0 < w < 1.0:
            raise ValueError(f"Interval width must be in (0, 1), got {w}")
        bands[f'lower_{w}'] = np.quantile(samples, (1.0 - w) / 2.0, axis=0)
        bands[f'upper_{w}'] = np.quantile(samples, (1.0 + w) / 2.0, axis=0)
    return pd.DataFrame(bands)


def _finish(fig, save_path: Optional[str], show: bool):
    fig.tight_layout()
    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
        print(f"[Plot] Saved {save_path}")
    if show:
        plt.show()
    return fig


def plot_observations(data: pd.DataFrame,
                      schema: Optional[SurveySchema] = None,
                      save_path: Optional[str] = None,
                      show: bool = False):
    """Scatter of counts per unit effort against standardized elevation."""
    schema = schema or SurveySchema()
    plot_df = data.assign(
        rate=data[schema.response_col] / data[schema.exposure_col]
    )
    fig, ax = plt.subplots(figsize=(7, 5))
    sns.scatterplot(data=plot_df, x=schema.elevation_z_col, y='rate',
                    hue=schema.forest_class_col, alpha=0.7, ax=ax)
    ax.set_xlabel('Elevation (standardized)')
    ax.set_ylabel(f'{schema.response_col} / {schema.exposure_col}')
    ax.set_title('Observed counts per unit effort')
    return _finish(fig, save_path, show)


def plot_residuals(fit, save_path: Optional[str] = None, show: bool = False):
    """Residual diagnostics for a frequentist GLMMFit.

    Left: Pearson residuals vs fitted values. Right: normal QQ plot of the
    conditional modes of every grouping factor.
    """
    fitted = fit.fitted_values()
    resid = fit.resid_pearson()

    fig, axes = plt.subplots(1, 2, figsize=(12, 5))
    ax = axes[0]
    ax.scatter(np.log(fitted), resid, s=12, alpha=0.6)
    ax.axhline(0.0, color='k', lw=1, ls='--')
    ax.set_xlabel('log fitted value')
    ax.set_ylabel('Pearson residual')
    ax.set_title('Residuals vs fitted')

    ax = axes[1]
    for g in fit.formula.groups:
        modes = np.sort(fit.modes[g].to_numpy())
        theoretical = stats.norm.ppf((np.arange(1, len(modes) + 1) - 0.5) / len(modes))
        ax.scatter(theoretical, modes, s=14, alpha=0.7, label=g)
    lim = ax.get_xlim()
    ax.plot(lim, lim, color='k', lw=1, ls='--')
    ax.set_xlabel('Theoretical quantile')
    ax.set_ylabel('Conditional mode')
    ax.set_title('Random effects QQ plot')
    ax.legend()
    return _finish(fig, save_path, show)


def plot_ribbons(grid: pd.DataFrame,
                 samples: np.ndarray,
                 ax=None,
                 title: str = '',
                 schema: Optional[SurveySchema] = None,
                 widths: Sequence[float] = INTERVAL_WIDTHS,
                 observed: Optional[pd.DataFrame] = None):
    """Nested 50/80/95 % ribbons and the median, one colour per forest class.

    Args:
        grid: Prediction grid (one row per column of samples)
        samples: [n_draws, len(grid)] prediction sample matrix
        ax: Axes to draw on (new figure if None)
        observed: Optional observation table drawn as points
    """
    schema = schema or SurveySchema()
    samples = np.asarray(samples)
    if samples.shape[1] != len(grid):
        raise ValueError(f"samples has {samples.shape[1]} columns but grid has {len(grid)} rows")

    if ax is None:
        fig, ax = plt.subplots(figsize=(7, 5))
    else:
        fig = ax.figure

    bands = interval_bands(samples, widths)
    palette = sns.color_palette(n_colors=len(schema.forest_labels))
    x_all = grid[schema.elevation_z_col].to_numpy()

    for color, label in zip(palette, schema.forest_labels):
        mask = (grid[schema.forest_class_col] == label).to_numpy()
        order = np.argsort(x_all[mask])
        x = x_all[mask][order]
        for w in sorted(widths, reverse=True):
            ax.fill_between(x,
                            bands[f'lower_{w}'].to_numpy()[mask][order],
                            bands[f'upper_{w}'].to_numpy()[mask][order],
                            color=color, alpha=0.15 + 0.15 * (1.0 - w) / 0.5, lw=0)
        ax.plot(x, bands['median'].to_numpy()[mask][order], color=color, lw=2, label=label)

        if observed is not None:
            obs = observed[observed[schema.forest_class_col] == label]
            scale = grid[schema.exposure_col].iloc[0] / obs[schema.exposure_col]
            ax.scatter(obs[schema.elevation_z_col], obs[schema.response_col] * scale,
                       color=color, s=8, alpha=0.4)

    ax.set_xlabel('Elevation (standardized)')
    ax.set_ylabel(f'Expected {schema.response_col}')
    ax.set_title(title)
    ax.legend(title=schema.forest_class_col)
    return fig


def plot_uncertainty_comparison(grid: pd.DataFrame,
                                samples_by_method: Dict[str, np.ndarray],
                                schema: Optional[SurveySchema] = None,
                                observed: Optional[pd.DataFrame] = None,
                                save_path: Optional[str] = None,
                                show: bool = False):
    """Side-by-side ribbon panels, one per method, sharing the y axis."""
    n = len(samples_by_method)
    if n == 0:
        raise ValueError("samples_by_method is empty")
    ncols = 2 if n > 1 else 1
    nrows = int(np.ceil(n / ncols))

    fig, axes = plt.subplots(nrows, ncols, figsize=(7 * ncols, 5 * nrows),
                             sharex=True, sharey=True, squeeze=False)
    for ax, (name, samples) in zip(axes.flat, samples_by_method.items()):
        plot_ribbons(grid, samples, ax=ax, title=name, schema=schema, observed=observed)
    for ax in list(axes.flat)[n:]:
        ax.set_visible(False)
    return _finish(fig, save_path, show)


def plot_trace(trace, var_names=None, save_path: Optional[str] = None, show: bool = False):
    """MCMC trace plot (arviz)."""
    import arviz as az

    axes = az.plot_trace(trace, var_names=var_names, compact=True, figsize=(12, 8))
    fig = np.asarray(axes).flat[0].figure
    return _finish(fig, save_path, show)
