"""
Epistemic GLMM — Bayesian Inference
====================================
Posterior inference for the bird-count Poisson GLMM via MCMC sampling.

Key Features:
- Same model structure as the frequentist fit (ModelFormula)
- NUTS sampling through bambi/PyMC, chains optionally in parallel processes
- Convergence diagnostics (R-hat, effective sample size, divergences)
- Posterior predictive draws of the expected count on a prediction grid,
  with or without group-level (random-effect) uncertainty

Mathematical Framework:
    p(β, σ, b | y) ∝ p(y | β, b) × p(b | σ) × p(β) × p(σ)

    The posterior draws are themselves the uncertainty representation:
    each draw of (β, b) gives one curve on the prediction grid, so no
    resampling is needed.

Comparison to the parametric bootstrap:
    - Bootstrap: refit per replicate, approximate sampling distribution
    - Bayesian: one sampling run, full posterior, prior-dependent

Usage:
    from epistemic_glmm.formula import ModelFormula
    from epistemic_glmm.bayesian import BayesianGLMM, BayesianConfig

    bayes = BayesianGLMM(ModelFormula(), BayesianConfig(cores=4))
    trace = bayes.fit(data)
    bayes.check_convergence()

    fixed_only = bayes.predict_samples(grid)                        # [draws, len(grid)]
    with_groups = bayes.predict_samples(grid, include_group_specific=True)

License: MIT
"""

import numpy as np
import pandas as pd
import arviz as az
import bambi as bmb
from dataclasses import dataclass
from typing import Dict, Optional
import warnings

from .formula import ModelFormula


# ═══════════════════════════════════════════════════════════════
# Configuration
# ═══════════════════════════════════════════════════════════════

@dataclass
class BayesianConfig:
    """Configuration for Bayesian MCMC inference."""
    n_chains: int = 4              # Number of MCMC chains
    n_draws: int = 1000            # Samples per chain (post-tuning)
    n_tune: int = 1000             # Tuning steps
    target_accept: float = 0.9     # Target acceptance rate (NUTS)

    # Computational
    cores: int = 4                 # Processes for chains (1 = sequential)
    progressbar: bool = True
    random_seed: Optional[int] = 42

    # Diagnostics
    check_convergence: bool = True
    rhat_threshold: float = 1.01

    # Optional bambi prior overrides, e.g. {'elevation_z': bmb.Prior('Normal', mu=0, sigma=1)}
    priors: Optional[Dict] = None


# ═══════════════════════════════════════════════════════════════
# Bayesian GLMM
# ═══════════════════════════════════════════════════════════════

class BayesianGLMM:
    """Bayesian Poisson GLMM fitted by MCMC."""

    def __init__(self,
                 formula: Optional[ModelFormula] = None,
                 config: Optional[BayesianConfig] = None):
        """
        Args:
            formula: Model structure (defaults to ModelFormula())
            config: MCMC configuration
        """
        self.formula = formula or ModelFormula()
        self.config = config or BayesianConfig()

        # Populated by fit()
        self.model = None
        self.trace = None

        print(f"[Bayesian] Model: {self.formula.to_bambi()}")
        print(f"[Bayesian] Chains: {self.config.n_chains}, cores: {self.config.cores}")

    def build(self, data: pd.DataFrame) -> 'bmb.Model':
        """Build (without sampling) the bambi model for the given data."""
        return bmb.Model(self.formula.to_bambi(), data,
                         family=self.formula.family,
                         priors=self.config.priors)

    def fit(self, data: pd.DataFrame) -> 'az.InferenceData':
        """Sample the posterior.

        Args:
            data: Transformed survey table

        Returns:
            arviz.InferenceData with posterior draws and sampler statistics
        """
        self.model = self.build(data)

        print(f"[Bayesian] Starting MCMC sampling on {len(data)} rows...")
        print(f"  Draws per chain: {self.config.n_draws}")
        print(f"  Tuning steps: {self.config.n_tune}")

        self.trace = self.model.fit(
            draws=self.config.n_draws,
            tune=self.config.n_tune,
            chains=self.config.n_chains,
            cores=self.config.cores,
            target_accept=self.config.target_accept,
            random_seed=self.config.random_seed,
            progressbar=self.config.progressbar,
        )

        if self.config.check_convergence:
            self.check_convergence()

        print("[Bayesian] Sampling complete!")
        return self.trace

    def _require_trace(self, trace=None) -> 'az.InferenceData':
        trace = self.trace if trace is None else trace
        if trace is None:
            raise ValueError("No trace available. Run fit() first.")
        return trace

    def _parameter_names(self, trace) -> list:
        """Population-level terms and group standard deviations."""
        parent = self.model.family.likelihood.parent if self.model is not None else 'mu'
        return [
            name for name in trace.posterior.data_vars
            if name != parent and not (name.startswith('1|') and not name.endswith('_sigma'))
        ]

    def check_convergence(self, trace: Optional['az.InferenceData'] = None) -> pd.DataFrame:
        """Report R-hat, bulk ESS and divergent transitions.

        Diagnostics only: problems are reported through warnings, never
        retried or corrected.
        """
        trace = self._require_trace(trace)
        print("\n[Bayesian] Convergence Diagnostics:")

        diagnostics = az.summary(trace, var_names=self._parameter_names(trace),
                                 kind='diagnostics')
        total_samples = trace.posterior.sizes['chain'] * trace.posterior.sizes['draw']

        print(f"  R-hat (target < {self.config.rhat_threshold}) and bulk ESS:")
        for name, row in diagnostics.iterrows():
            status = "OK" if row['r_hat'] < self.config.rhat_threshold else "WARNING"
            print(f"    {name:<32} r_hat={row['r_hat']:.3f}  "
                  f"ess={row['ess_bulk']:.0f} ({row['ess_bulk'] / total_samples:.1%})  {status}")

        bad = diagnostics.index[diagnostics['r_hat'] >= self.config.rhat_threshold].tolist()
        if bad:
            warnings.warn(f"R-hat >= {self.config.rhat_threshold} for {bad}; "
                          "chains may not have converged")

        n_divergent = int(trace.sample_stats['diverging'].sum()) if hasattr(trace, 'sample_stats') else 0
        print(f"  Divergent transitions: {n_divergent}")
        if n_divergent:
            warnings.warn(f"{n_divergent} divergent transitions; consider a higher target_accept")
        return diagnostics

    def summarize_posterior(self,
                            trace: Optional['az.InferenceData'] = None,
                            credible_interval: float = 0.95) -> Dict:
        """Posterior summary per parameter.

        Returns:
            Dict with mean, std, HDI bounds, rhat and ess for each parameter
        """
        trace = self._require_trace(trace)
        az_summary = az.summary(trace, var_names=self._parameter_names(trace),
                                hdi_prob=credible_interval)

        summary = {}
        for var_name in az_summary.index:
            summary[var_name] = {
                'mean': float(az_summary.loc[var_name, 'mean']),
                'std': float(az_summary.loc[var_name, 'sd']),
                'ci_lower': float(az_summary.loc[var_name, f'hdi_{(1 - credible_interval) / 2:.1%}']),
                'ci_upper': float(az_summary.loc[var_name, f'hdi_{(1 + credible_interval) / 2:.1%}']),
                'rhat': float(az_summary.loc[var_name, 'r_hat']) if 'r_hat' in az_summary.columns else None,
                'ess': float(az_summary.loc[var_name, 'ess_bulk']) if 'ess_bulk' in az_summary.columns else None,
            }
        return summary

    def print_summary(self, credible_interval: float = 0.95):
        summary = self.summarize_posterior(credible_interval=credible_interval)
        print(f"\n{'Parameter':<32} {'Mean':>10} {'SD':>10} {f'{credible_interval:.0%} HDI':>24}")
        print("-" * 80)
        for name, s in summary.items():
            print(f"{name:<32} {s['mean']:>10.4f} {s['std']:>10.4f} "
                  f"[{s['ci_lower']:>9.4f}, {s['ci_upper']:>9.4f}]")

    def predict_samples(self,
                        grid: pd.DataFrame,
                        include_group_specific: bool = False,
                        sample_new_groups: bool = True,
                        max_draws: Optional[int] = None) -> np.ndarray:
        """Posterior draws of the expected count on a prediction grid.

        Args:
            grid: Rows to predict for (same columns as the fitted data)
            include_group_specific: Add group-level effects. For levels not
                seen in fitting this needs sample_new_groups=True.
            sample_new_groups: Draw effects for unseen levels from the
                fitted group distributions
            max_draws: Keep at most this many (evenly spaced) draws

        Returns:
            [n_draws, len(grid)] array of strictly positive expected counts
        """
        if self.model is None or self.trace is None:
            raise ValueError("Model has not been fitted. Run fit() first.")

        predictions = self.model.predict(
            self.trace,
            kind='response_params',
            data=grid,
            inplace=False,
            include_group_specific=include_group_specific,
            sample_new_groups=sample_new_groups,
        )
        parent = self.model.family.likelihood.parent
        samples = (predictions.posterior[parent]
                   .stack(sample=('chain', 'draw'))
                   .transpose('sample', ...)
                   .values)

        if max_draws is not None and max_draws < len(samples):
            keep = np.linspace(0, len(samples) - 1, max_draws).round().astype(int)
            samples = samples[keep]
        return np.asarray(samples, dtype=float)

    def save_trace(self, filepath: str):
        """Save MCMC trace to file."""
        if self.trace is None:
            raise ValueError("No trace to save")

        az.to_netcdf(self.trace, filepath)
        print(f"[Bayesian] Trace saved to {filepath}")

    @staticmethod
    def load_trace(filepath: str) -> 'az.InferenceData':
        """Load saved MCMC trace."""
        trace = az.from_netcdf(filepath)
        print(f"[Bayesian] Trace loaded from {filepath}")
        return trace
