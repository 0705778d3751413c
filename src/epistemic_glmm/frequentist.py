"""
Epistemic GLMM — Frequentist Fitting and Parametric Bootstrap
==============================================================
Maximum-likelihood Poisson GLMM with crossed random intercepts and a
log-exposure offset, plus parametric bootstrap of predictions.

Key Features:
- Laplace approximation to the marginal likelihood
- Fixed effects with standard errors, variance components per grouping factor
- Point predictions with all, one, or no random effects
- Parametric bootstrap of predictions (parameter uncertainty)
- Bootstrap with added group-level variability

Mathematical Framework:
    log E[y] = log(exposure) + X β + Σ_g Z_g b_g,   b_g ~ N(0, σ_g² I)

    Random effects are written in spherical form b_g = σ_g v_g with
    v ~ N(0, I). For fixed log σ the joint mode (β̂, v̂) of the penalized
    log-likelihood is found by trust-region Newton steps, and

    -log L(σ) ≈ -log p(y | β̂, v̂) + ½ v̂ᵀv̂ + ½ log det(Z̃ᵀ W Z̃ + I)

    is minimized over log σ.

Usage:
    from epistemic_glmm.formula import ModelFormula
    from epistemic_glmm.frequentist import FrequentistGLMM, bootstrap_predictions

    fit = FrequentistGLMM(ModelFormula()).fit(data)
    fit.print_summary()

    mean = fit.predict(grid, re_form=None)
    boot = bootstrap_predictions(fit, grid, n_boot=200, seed=1)  # [200, len(grid)]
"""

import numpy as np
import pandas as pd
import patsy
import statsmodels.api as sm
from dataclasses import dataclass, replace
from scipy import optimize, stats
from scipy.special import gammaln
from statsmodels.tools.sm_exceptions import ConvergenceWarning
from tqdm import tqdm
from typing import Callable, Dict, List, Optional, Tuple
import warnings

from .formula import ModelFormula


# ═══════════════════════════════════════════════════════════════
# Configuration
# ═══════════════════════════════════════════════════════════════

@dataclass
class FrequentistConfig:
    """Configuration for maximum-likelihood GLMM fitting."""
    inner_maxiter: int = 200             # Newton iterations for the joint mode
    inner_gtol: float = 1e-6             # Gradient tolerance for the joint mode
    outer_method: str = 'Nelder-Mead'    # scipy.optimize method over log σ
    outer_maxiter: int = 400
    outer_xatol: float = 1e-4
    outer_fatol: float = 1e-7
    log_sd_start: float = np.log(0.5)
    log_sd_bounds: Tuple[float, float] = (-8.0, 3.0)
    verbose: bool = True


# ═══════════════════════════════════════════════════════════════
# Laplace objective
# ═══════════════════════════════════════════════════════════════

class _LaplaceObjective:
    """Negative Laplace log-likelihood of a Poisson GLMM as a function of log σ."""

    def __init__(self, y: np.ndarray, X: np.ndarray, Z: np.ndarray,
                 offset: np.ndarray, group_sizes: List[int],
                 config: FrequentistConfig):
        self.y = y
        self.X = X
        self.Z = Z
        self.offset = offset
        self.group_sizes = group_sizes
        self.config = config
        self.n_fe = X.shape[1]
        self.n_re = Z.shape[1]
        self.log_factorial = float(gammaln(y + 1.0).sum())
        self.n_evals = 0

    def augmented_design(self, log_sd: np.ndarray) -> np.ndarray:
        scale = np.repeat(np.exp(log_sd), self.group_sizes)
        return np.hstack([self.X, self.Z * scale])

    def _mean(self, A: np.ndarray, p: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        eta = self.offset + A @ p
        return np.exp(np.clip(eta, -700.0, 700.0)), eta

    def joint_mode(self, log_sd: np.ndarray, start: np.ndarray):
        """Maximize the penalized log-likelihood over (β, v) for fixed log σ."""
        A = self.augmented_design(log_sd)
        k = self.n_fe
        re_idx = np.arange(k, k + self.n_re)

        def fun(p):
            mu, eta = self._mean(A, p)
            v = p[k:]
            return -(self.y @ eta - mu.sum()) + 0.5 * v @ v

        def jac(p):
            mu, _ = self._mean(A, p)
            g = -A.T @ (self.y - mu)
            g[k:] += p[k:]
            return g

        def hess(p):
            mu, _ = self._mean(A, p)
            H = (A * mu[:, None]).T @ A
            H[re_idx, re_idx] += 1.0
            return H

        res = optimize.minimize(
            fun, start, jac=jac, hess=hess, method='trust-exact',
            options={'gtol': self.config.inner_gtol,
                     'maxiter': self.config.inner_maxiter},
        )
        return res, A

    def evaluate(self, log_sd: np.ndarray, start: np.ndarray):
        """Return (negative Laplace log-likelihood, inner result, design)."""
        self.n_evals += 1
        res, A = self.joint_mode(log_sd, start)
        mu, _ = self._mean(A, res.x)
        Zs = A[:, self.n_fe:]
        M = (Zs * mu[:, None]).T @ Zs
        M[np.diag_indices_from(M)] += 1.0
        _, logdet = np.linalg.slogdet(M)
        return res.fun + self.log_factorial + 0.5 * logdet, res, A


# ═══════════════════════════════════════════════════════════════
# Fitted model
# ═══════════════════════════════════════════════════════════════

class GLMMFit:
    """Read-only result of a maximum-likelihood GLMM fit."""

    def __init__(self,
                 formula: ModelFormula,
                 config: FrequentistConfig,
                 data: pd.DataFrame,
                 design_info,
                 coef: pd.Series,
                 cov_fe: pd.DataFrame,
                 group_sds: Dict[str, float],
                 modes: Dict[str, pd.Series],
                 loglik: float,
                 converged: bool,
                 n_evals: int):
        self.formula = formula
        self.config = config
        self.data = data
        self.design_info = design_info
        self.coef = coef
        self.cov_fe = cov_fe
        self.group_sds = group_sds
        self.modes = modes
        self.loglik = loglik
        self.converged = converged
        self.n_evals = n_evals

    @property
    def n_obs(self) -> int:
        return len(self.data)

    @property
    def aic(self) -> float:
        return -2.0 * self.loglik + 2.0 * (len(self.coef) + len(self.group_sds))

    def group_sd(self, group: str) -> float:
        """Estimated random-intercept standard deviation of one grouping factor."""
        if group not in self.group_sds:
            raise ValueError(f"Unknown grouping factor '{group}'. "
                             f"Available: {list(self.group_sds)}")
        return self.group_sds[group]

    def variance_components(self) -> pd.DataFrame:
        return pd.DataFrame({
            'sd': [self.group_sds[g] for g in self.formula.groups],
            'variance': [self.group_sds[g] ** 2 for g in self.formula.groups],
            'n_levels': [len(self.modes[g]) for g in self.formula.groups],
        }, index=pd.Index(self.formula.groups, name='group'))

    def summary(self) -> pd.DataFrame:
        """Fixed-effect table with Wald statistics."""
        se = np.sqrt(np.diag(self.cov_fe.values))
        z = self.coef.values / se
        return pd.DataFrame({
            'estimate': self.coef.values,
            'std_err': se,
            'z_value': z,
            'p_value': 2.0 * stats.norm.sf(np.abs(z)),
        }, index=self.coef.index)

    def print_summary(self):
        print(f"\n[GLMM] {self.formula}  (family: {self.formula.family})")
        print(f"  n = {self.n_obs}, log-likelihood = {self.loglik:.2f}, "
              f"AIC = {self.aic:.2f}, converged = {self.converged}")
        print("\n  Fixed effects:")
        print(self.summary().round(4).to_string())
        print("\n  Random effects:")
        print(self.variance_components().round(4).to_string())

    # ── Prediction ──────────────────────────────────────────────

    def _groups_for(self, re_form) -> Tuple[str, ...]:
        if re_form is None:
            return ()
        if re_form == 'all':
            return self.formula.groups
        if re_form in self.formula.groups:
            return (re_form,)
        raise ValueError(f"re_form must be 'all', None or one of "
                         f"{self.formula.groups}, got {re_form!r}")

    def linear_predictor(self, newdata: Optional[pd.DataFrame] = None,
                         re_form='all') -> np.ndarray:
        """Linear predictor including the offset.

        Args:
            newdata: Table with the model columns (fitted data if None)
            re_form: 'all' (every random effect), a grouping factor name
                     (that effect only) or None (population level)
        """
        newdata = self.data if newdata is None else newdata
        groups = self._groups_for(re_form)

        X = patsy.build_design_matrices([self.design_info], newdata,
                                        return_type='matrix')[0]
        eta = np.asarray(X) @ self.coef.values

        if self.formula.exposure:
            eta = eta + np.log(newdata[self.formula.exposure].to_numpy(dtype=float))

        for g in groups:
            levels = newdata[g].astype(str)
            # Unseen levels sit at the population mean
            eta = eta + levels.map(self.modes[g]).fillna(0.0).to_numpy(dtype=float)
        return eta

    def predict(self, newdata: Optional[pd.DataFrame] = None,
                re_form='all', linear: bool = False) -> np.ndarray:
        """Predicted expected counts (or linear predictor if linear=True)."""
        eta = self.linear_predictor(newdata, re_form=re_form)
        return eta if linear else np.exp(eta)

    def fitted_values(self) -> np.ndarray:
        return self.predict(self.data, re_form='all')

    def resid_pearson(self) -> np.ndarray:
        mu = self.fitted_values()
        y = self.data[self.formula.response].to_numpy(dtype=float)
        return (y - mu) / np.sqrt(mu)

    # ── Simulation / refitting ──────────────────────────────────

    def simulate(self, rng=None, use_conditional_modes: bool = False) -> np.ndarray:
        """Simulate a response vector for the fitted rows.

        New random effects are drawn from the estimated variance components
        unless use_conditional_modes=True.
        """
        rng = np.random.default_rng(rng)
        if use_conditional_modes:
            eta = self.linear_predictor(self.data, re_form='all')
        else:
            eta = self.linear_predictor(self.data, re_form=None)
            for g in self.formula.groups:
                levels = self.modes[g].index
                draws = pd.Series(rng.normal(0.0, self.group_sds[g], size=len(levels)),
                                  index=levels)
                eta = eta + self.data[g].astype(str).map(draws).to_numpy(dtype=float)
        return rng.poisson(np.exp(eta))

    def refit(self, response: np.ndarray) -> 'GLMMFit':
        """Refit the same model to a replacement response vector."""
        data = self.data.copy()
        data[self.formula.response] = np.asarray(response)
        fitter = FrequentistGLMM(self.formula, replace(self.config, verbose=False))
        start_log_sd = np.log(np.maximum([self.group_sds[g] for g in self.formula.groups],
                                         np.exp(self.config.log_sd_bounds[0])))
        return fitter.fit(data, start_log_sd=start_log_sd, start_fe=self.coef.values)


# ═══════════════════════════════════════════════════════════════
# Fitter
# ═══════════════════════════════════════════════════════════════

class FrequentistGLMM:
    """Maximum-likelihood (Laplace) fitting of a Poisson GLMM."""

    def __init__(self, formula: Optional[ModelFormula] = None,
                 config: Optional[FrequentistConfig] = None):
        self.formula = formula or ModelFormula()
        self.config = config or FrequentistConfig()

    def _group_design(self, data: pd.DataFrame):
        blocks, levels = [], {}
        for g in self.formula.groups:
            codes, uniques = pd.factorize(data[g].astype(str), sort=True)
            block = np.zeros((len(data), len(uniques)))
            block[np.arange(len(data)), codes] = 1.0
            blocks.append(block)
            levels[g] = pd.Index(uniques, name=g)
        Z = np.hstack(blocks) if blocks else np.zeros((len(data), 0))
        return Z, levels

    def fit(self, data: pd.DataFrame,
            start_log_sd: Optional[np.ndarray] = None,
            start_fe: Optional[np.ndarray] = None) -> GLMMFit:
        """Fit the model by maximizing the Laplace-approximate likelihood.

        Args:
            data: Transformed survey table with response, covariates,
                  grouping factors and exposure
            start_log_sd: Starting log standard deviations (one per group)
            start_fe: Starting fixed effects

        Returns:
            GLMMFit (converged=False and a ConvergenceWarning if either
            optimization stage did not report success)
        """
        f = self.formula
        cfg = self.config
        required = [f.response, *f.groups] + ([f.exposure] if f.exposure else [])
        missing = [c for c in required if c not in data.columns]
        if missing:
            raise ValueError(f"Columns {missing} required by the model are missing")

        data = data.reset_index(drop=True)
        X_df = patsy.dmatrix(f.fixed, data, return_type='dataframe')
        X = X_df.to_numpy(dtype=float)
        y = data[f.response].to_numpy(dtype=float)
        offset = (np.log(data[f.exposure].to_numpy(dtype=float))
                  if f.exposure else np.zeros(len(data)))
        if not np.isfinite(offset).all():
            raise ValueError(f"'{f.exposure}' must be strictly positive for the log offset")
        Z, levels = self._group_design(data)
        group_sizes = [len(levels[g]) for g in f.groups]

        if cfg.verbose:
            print(f"[GLMM] Fitting {f} on {len(data)} rows "
                  f"({', '.join(f'{g}: {n}' for g, n in zip(f.groups, group_sizes))})")

        if start_fe is None:
            start_fe = sm.GLM(y, X, family=sm.families.Poisson(), offset=offset).fit().params
        if start_log_sd is None:
            start_log_sd = np.full(len(f.groups), cfg.log_sd_start)

        objective = _LaplaceObjective(y, X, Z, offset, group_sizes, cfg)
        state = {'p': np.concatenate([np.asarray(start_fe, dtype=float),
                                      np.zeros(Z.shape[1])])}

        def neg_loglik(log_sd):
            value, res, _ = objective.evaluate(np.asarray(log_sd), state['p'])
            if res.success:
                state['p'] = res.x  # Warm start the next evaluation
            return value

        log_sd = np.asarray(start_log_sd, dtype=float)
        outer_ok = True
        if len(f.groups):
            outer = optimize.minimize(
                neg_loglik, log_sd, method=cfg.outer_method,
                bounds=[cfg.log_sd_bounds] * len(f.groups),
                options={'maxiter': cfg.outer_maxiter,
                         'xatol': cfg.outer_xatol,
                         'fatol': cfg.outer_fatol}
                if cfg.outer_method == 'Nelder-Mead' else {'maxiter': cfg.outer_maxiter},
            )
            log_sd = outer.x
            outer_ok = bool(outer.success)

        value, inner, A = objective.evaluate(log_sd, state['p'])
        converged = outer_ok and bool(inner.success)
        if not converged:
            warnings.warn(f"GLMM optimization did not converge "
                          f"(inner: {inner.message}); using the last estimate",
                          ConvergenceWarning)

        k = X.shape[1]
        H = (A * np.exp(np.clip(offset + A @ inner.x, -700.0, 700.0))[:, None]).T @ A
        H[np.arange(k, H.shape[0]), np.arange(k, H.shape[0])] += 1.0
        cov = np.linalg.pinv(H)[:k, :k]

        sds = np.exp(log_sd)
        modes, start = {}, k
        for g, sd in zip(f.groups, sds):
            n = len(levels[g])
            modes[g] = pd.Series(sd * inner.x[start:start + n], index=levels[g])
            start += n

        names = list(X_df.columns)
        fit = GLMMFit(
            formula=f,
            config=cfg,
            data=data,
            design_info=X_df.design_info,
            coef=pd.Series(inner.x[:k], index=names),
            cov_fe=pd.DataFrame(cov, index=names, columns=names),
            group_sds={g: float(sd) for g, sd in zip(f.groups, sds)},
            modes=modes,
            loglik=-float(value),
            converged=converged,
            n_evals=objective.n_evals,
        )
        if cfg.verbose:
            print(f"[GLMM] Done after {objective.n_evals} likelihood evaluations "
                  f"(log-likelihood {fit.loglik:.2f})")
        return fit


# ═══════════════════════════════════════════════════════════════
# Parametric bootstrap
# ═══════════════════════════════════════════════════════════════

def population_prediction(fit: GLMMFit, grid: pd.DataFrame) -> np.ndarray:
    """Default bootstrap statistic: population-level expected counts."""
    return fit.predict(grid, re_form=None)


def bootstrap_predictions(fit: GLMMFit,
                          grid: pd.DataFrame,
                          n_boot: int = 100,
                          predict_fn: Optional[Callable[[GLMMFit, pd.DataFrame], np.ndarray]] = None,
                          seed=None,
                          progressbar: bool = True) -> np.ndarray:
    """Parametric bootstrap of predictions on a grid.

    Each replicate simulates a response from the fitted model (fresh random
    effects), refits the model and evaluates predict_fn on the grid.

    Args:
        fit: Fitted model to resample from
        grid: Prediction grid
        n_boot: Number of replicates (fixed; no adaptive stopping)
        predict_fn: (refit, grid) -> array of len(grid); defaults to
                    population-level expected counts
        seed: int, numpy Generator or None

    Returns:
        [n_boot, len(grid)] array
    """
    if n_boot < 1:
        raise ValueError(f"n_boot must be >= 1, got {n_boot}")
    predict_fn = predict_fn or population_prediction
    rng = np.random.default_rng(seed)

    samples = np.empty((n_boot, len(grid)))
    for i in tqdm(range(n_boot), desc='[Bootstrap]', disable=not progressbar):
        refit = fit.refit(fit.simulate(rng))
        samples[i] = predict_fn(refit, grid)
    return samples


def bootstrap_with_group_variability(fit: GLMMFit,
                                     grid: pd.DataFrame,
                                     n_boot: int = 100,
                                     group: Optional[str] = None,
                                     seed=None,
                                     progressbar: bool = True) -> np.ndarray:
    """Parametric bootstrap plus unexplained between-group variability.

    Each replicate's population-level linear predictor gets an independent
    Normal(0, σ_group) draw per grid row before exponentiating, with σ_group
    read by name from the replicate's own variance components.

    Args:
        group: Grouping factor whose variance is added (default: the first
               grouping factor of the formula)
    """
    if group is None:
        if not fit.formula.groups:
            raise ValueError("Group variability needs a model with at least one grouping factor")
        group = fit.formula.groups[0]
    fit.group_sd(group)
    rng = np.random.default_rng(seed)

    def predict_with_group_noise(refit: GLMMFit, newdata: pd.DataFrame) -> np.ndarray:
        eta = refit.linear_predictor(newdata, re_form=None)
        return np.exp(eta + rng.normal(0.0, refit.group_sd(group), size=len(newdata)))

    return bootstrap_predictions(fit, grid, n_boot=n_boot,
                                 predict_fn=predict_with_group_noise,
                                 seed=rng, progressbar=progressbar)
