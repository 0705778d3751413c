"""
Complete uncertainty comparison: survey data -> two model fits -> ribbon plots

Runs the whole tutorial pipeline: load and transform the survey table, fit the
Poisson GLMM by maximum likelihood and by MCMC, draw bootstrap and posterior
prediction samples on a common grid and plot the bands side by side.

Run from the command line:
    python -m epistemic_glmm.workflow surveys.csv
    python -m epistemic_glmm.workflow            # simulated survey data
"""
import sys
import numpy as np
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from .survey_data import (
    SurveyDataLoader, SurveySchema, transform_features, make_prediction_grid,
    simulate_survey_data, write_survey_csv,
)
from .formula import ModelFormula
from .frequentist import (
    FrequentistGLMM, FrequentistConfig,
    bootstrap_predictions, bootstrap_with_group_variability,
)
from .bayesian import BayesianGLMM, BayesianConfig
from . import plotting


@dataclass
class WorkflowConfig:
    """Settings for one end-to-end comparison run."""
    n_boot: int = 200                   # Bootstrap replicates
    grid_points: int = 20               # Elevation values in the prediction grid
    grid_exposure: float = 16.0         # Constant exposure on the grid
    variability_group: Optional[str] = None   # Default: first grouping factor
    seed: int = 2024
    output_dir: Optional[str] = 'figures'
    show_plots: bool = False
    schema: SurveySchema = field(default_factory=SurveySchema)
    frequentist: FrequentistConfig = field(default_factory=FrequentistConfig)
    bayesian: BayesianConfig = field(default_factory=BayesianConfig)


def _figure_path(config: WorkflowConfig, name: str) -> Optional[str]:
    if not config.output_dir:
        return None
    out = Path(config.output_dir)
    out.mkdir(parents=True, exist_ok=True)
    return str(out / name)


def run_comparison(csv_path: str, config: Optional[WorkflowConfig] = None) -> Dict:
    """Bootstrap vs Bayesian predictive uncertainty for one survey file.

    Args:
        csv_path: Semicolon-delimited survey table
        config: Run settings (defaults to WorkflowConfig())

    Returns:
        dict with 'data', 'grid', 'scaling', 'frequentist_fit', 'bayesian',
        'samples' (method name -> [draws, grid rows] array) and 'figures'
    """
    config = config or WorkflowConfig()
    schema = config.schema
    formula = ModelFormula.from_schema(schema)
    figures = {}

    print("\n" + "=" * 70)
    print("EPISTEMIC UNCERTAINTY: BOOTSTRAP vs BAYES")
    print("=" * 70)

    # Step 1-2: Load and transform
    print("\n[1/7] Loading survey data...")
    loader = SurveyDataLoader(str(Path(csv_path).parent), schema=schema)
    raw = loader.load_csv(Path(csv_path).name)

    print("\n[2/7] Deriving covariates...")
    data, scaling = transform_features(raw, schema)
    grid = make_prediction_grid(data, schema, n_points=config.grid_points,
                                exposure=config.grid_exposure, scaling=scaling)
    print(f"  Elevation mean {scaling.mean:.1f}, sd {scaling.sd:.1f}; "
          f"grid of {len(grid)} rows")
    figures['observations'] = plotting.plot_observations(
        data, schema, save_path=_figure_path(config, 'observations.png'),
        show=config.show_plots)

    # Step 3: Frequentist fit
    print("\n[3/7] Fitting GLMM by maximum likelihood...")
    freq_fit = FrequentistGLMM(formula, config.frequentist).fit(data)
    freq_fit.print_summary()
    figures['residuals'] = plotting.plot_residuals(
        freq_fit, save_path=_figure_path(config, 'residuals.png'),
        show=config.show_plots)

    # Step 4: Bootstrap
    print(f"\n[4/7] Parametric bootstrap ({config.n_boot} replicates)...")
    rng = np.random.default_rng(config.seed)
    samples = {
        'Bootstrap': bootstrap_predictions(freq_fit, grid, n_boot=config.n_boot, seed=rng),
        'Bootstrap + group variability': bootstrap_with_group_variability(
            freq_fit, grid, n_boot=config.n_boot,
            group=config.variability_group, seed=rng),
    }

    # Step 5: Bayesian fit
    print("\n[5/7] Fitting GLMM by MCMC...")
    bayes = BayesianGLMM(formula, config.bayesian)
    bayes.fit(data)
    bayes.print_summary()

    # Step 6: Posterior predictions
    print("\n[6/7] Drawing posterior predictions...")
    samples['Bayes'] = bayes.predict_samples(grid, include_group_specific=False)
    samples['Bayes + group effects'] = bayes.predict_samples(
        grid, include_group_specific=True, sample_new_groups=True)

    # Step 7: Plots
    print("\n[7/7] Plotting uncertainty bands...")
    figures['comparison'] = plotting.plot_uncertainty_comparison(
        grid, samples, schema, observed=data,
        save_path=_figure_path(config, 'uncertainty_comparison.png'),
        show=config.show_plots)

    print("\n" + "=" * 70)
    print(f"{'Method':<32} {'draws':>8} {'mean width 95%':>16}")
    print("-" * 70)
    for name, s in samples.items():
        bands = plotting.interval_bands(s, (0.95,))
        width = float((bands['upper_0.95'] - bands['lower_0.95']).mean())
        print(f"{name:<32} {s.shape[0]:>8d} {width:>16.3f}")
    print("=" * 70)

    return {
        'data': data,
        'grid': grid,
        'scaling': scaling,
        'frequentist_fit': freq_fit,
        'bayesian': bayes,
        'samples': samples,
        'figures': figures,
    }


if __name__ == '__main__':
    if len(sys.argv) > 1:
        results = run_comparison(sys.argv[1])
    else:
        print("No survey file given. Creating simulated survey data...")
        path = write_survey_csv(simulate_survey_data(seed=1), Path('data') / 'simulated_surveys.csv')
        results = run_comparison(str(path))
