"""
Bird-count survey data loading and feature preparation.

Supports:
- Semicolon-delimited CSV survey tables (one row per site/observer/visit)
- Synthetic survey tables drawn from a known Poisson GLMM
- Prediction grids sharing the survey column schema

Example CSV format:
    site;observer;abundance;elevation;forest;effort
    S01;O03;4;812.5;0.62;16
    S01;O07;2;812.5;0.62;12
    ...
"""
import numpy as np
import pandas as pd
from pathlib import Path
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple
import warnings


@dataclass
class SurveySchema:
    """Column names and transformation constants for a survey table."""
    site_col: str = 'site'
    observer_col: str = 'observer'
    raw_response_col: str = 'abundance'
    response_col: str = 'count'          # Name after renaming
    elevation_col: str = 'elevation'
    elevation_z_col: str = 'elevation_z'
    forest_col: str = 'forest'
    forest_class_col: str = 'forest_class'
    exposure_col: str = 'effort'
    forest_threshold: float = 0.5        # Values >= threshold are 'forested'
    forest_labels: Tuple[str, str] = ('open', 'forested')
    delimiter: str = ';'

    @property
    def group_cols(self) -> Tuple[str, str]:
        return (self.site_col, self.observer_col)

    @property
    def raw_columns(self) -> Tuple[str, ...]:
        return (self.site_col, self.observer_col, self.raw_response_col,
                self.elevation_col, self.forest_col, self.exposure_col)


@dataclass(frozen=True)
class Standardization:
    """Location and scale used to standardize a covariate."""
    mean: float
    sd: float

    def apply(self, x) -> np.ndarray:
        return (np.asarray(x, dtype=float) - self.mean) / self.sd

    def invert(self, z) -> np.ndarray:
        return np.asarray(z, dtype=float) * self.sd + self.mean


# ═══════════════════════════════════════════════════════════════
# Pure helpers
# ═══════════════════════════════════════════════════════════════

def standardize(x) -> Tuple[np.ndarray, Standardization]:
    """Standardize to zero mean and unit (sample) standard deviation.

    Returns:
        z: standardized values
        standardization: the mean and sd used
    """
    x = np.asarray(x, dtype=float)
    if np.isnan(x).any():
        raise ValueError("Cannot standardize missing covariate values")
    sd = float(np.std(x, ddof=1)) if len(x) > 1 else 0.0
    if not np.isfinite(sd) or sd < 1e-12:
        raise ValueError("Cannot standardize a covariate with zero variance")
    scaling = Standardization(mean=float(np.mean(x)), sd=sd)
    return scaling.apply(x), scaling


def bucket_covariate(x, threshold: float,
                     labels: Tuple[str, str] = ('open', 'forested')) -> pd.Categorical:
    """Split a continuous covariate into two labelled classes.

    Values below ``threshold`` get ``labels[0]``, values at or above it get
    ``labels[1]``. Missing values are rejected so every row gets a label.
    """
    x = np.asarray(x, dtype=float)
    if np.isnan(x).any():
        raise ValueError("Cannot bucket missing covariate values")
    codes = (x >= threshold).astype(int)
    return pd.Categorical.from_codes(codes, categories=list(labels), ordered=True)


def transform_features(df: pd.DataFrame,
                       schema: Optional[SurveySchema] = None
                       ) -> Tuple[pd.DataFrame, Standardization]:
    """Derive model covariates from a raw (or already transformed) survey table.

    - drops rows whose exposure is missing or non-positive (log-offset)
    - renames the raw response column to ``schema.response_col``
    - adds the standardized elevation column
    - adds the two-level forest class column

    The input frame is not modified.

    Returns:
        data: transformed copy
        standardization: mean/sd used for the elevation column
    """
    schema = schema or SurveySchema()
    data = df.copy()

    if schema.raw_response_col in data.columns:
        data = data.rename(columns={schema.raw_response_col: schema.response_col})
    if schema.response_col not in data.columns:
        raise ValueError(f"Response column '{schema.raw_response_col}' not found")

    exposure = pd.to_numeric(data[schema.exposure_col], errors='coerce')
    keep = exposure.notna() & (exposure > 0)
    n_dropped = int((~keep).sum())
    if n_dropped:
        warnings.warn(f"Dropping {n_dropped} rows with missing or non-positive "
                      f"'{schema.exposure_col}' (log-offset undefined)")
    data = data.loc[keep].reset_index(drop=True)

    response = data[schema.response_col].to_numpy(dtype=float)
    if (response < 0).any() or not np.allclose(response, np.round(response)):
        raise ValueError(f"'{schema.response_col}' must hold non-negative integer counts")
    data[schema.response_col] = np.round(response).astype(np.int64)

    data[schema.elevation_z_col], scaling = standardize(data[schema.elevation_col])
    data[schema.forest_class_col] = bucket_covariate(
        data[schema.forest_col], schema.forest_threshold, schema.forest_labels
    )
    return data, scaling


def make_prediction_grid(data: pd.DataFrame,
                         schema: Optional[SurveySchema] = None,
                         n_points: int = 20,
                         exposure: float = 16.0,
                         scaling: Optional[Standardization] = None,
                         new_site: str = 'new_site',
                         new_observer: str = 'new_observer') -> pd.DataFrame:
    """Cross ``n_points`` elevation values with both forest classes.

    Elevation runs evenly over the observed standardized range. Group columns
    hold levels absent from the data so that group-level predictions use the
    population mean (frequentist) or a freshly sampled group (Bayesian).
    """
    schema = schema or SurveySchema()
    if n_points < 2:
        raise ValueError("n_points must be at least 2")
    if exposure <= 0:
        raise ValueError("Grid exposure must be strictly positive")

    z = data[schema.elevation_z_col].to_numpy(dtype=float)
    z_seq = np.linspace(z.min(), z.max(), n_points)
    labels = list(schema.forest_labels)

    grid = pd.DataFrame({
        schema.elevation_z_col: np.tile(z_seq, len(labels)),
        schema.forest_class_col: pd.Categorical(np.repeat(labels, n_points),
                                                categories=labels, ordered=True),
    })
    grid[schema.exposure_col] = float(exposure)
    grid[schema.site_col] = new_site
    grid[schema.observer_col] = new_observer
    if scaling is not None:
        grid[schema.elevation_col] = scaling.invert(grid[schema.elevation_z_col])
    return grid


# ═══════════════════════════════════════════════════════════════
# Loader
# ═══════════════════════════════════════════════════════════════

class SurveyDataLoader:
    """Load and validate bird-count survey tables."""

    def __init__(self, data_dir: str = 'data',
                 schema: Optional[SurveySchema] = None):
        """
        Args:
            data_dir: Directory containing survey CSV files
            schema: Expected column layout (defaults to SurveySchema())
        """
        self.data_dir = Path(data_dir)
        self.schema = schema or SurveySchema()
        if not self.data_dir.exists():
            warnings.warn(f"Data directory does not exist: {self.data_dir}")

    def load_csv(self, filename: str,
                 delimiter: Optional[str] = None) -> pd.DataFrame:
        """Load a survey table.

        Args:
            filename: Filename relative to data_dir, or absolute path.
            delimiter: Column delimiter (default: schema delimiter, ';').

        Returns:
            DataFrame with group columns as str and all other required
            columns as float64.
        """
        filepath = self.data_dir / filename if not Path(filename).is_absolute() else Path(filename)

        if not filepath.exists():
            raise FileNotFoundError(f"Survey file not found: {filepath}")

        sep = delimiter or self.schema.delimiter
        try:
            df = pd.read_csv(filepath, sep=sep,
                             dtype={c: str for c in self.schema.group_cols})
        except pd.errors.ParserError as exc:
            raise ValueError(f"Malformed survey file {filepath}: {exc}") from exc

        missing = [c for c in self.schema.raw_columns if c not in df.columns]
        if missing:
            raise ValueError(f"Columns {missing} not found in {filename} "
                             f"(found {list(df.columns)}; delimiter '{sep}')")

        numeric_cols = [c for c in self.schema.raw_columns if c not in self.schema.group_cols]
        for col in numeric_cols:
            values = pd.to_numeric(df[col], errors='coerce')
            bad = values.isna() & df[col].notna()
            if bad.any():
                raise ValueError(f"Non-numeric values in column '{col}' of {filename}")
            df[col] = values.astype(np.float64)

        print(f"[OK] Loaded survey data: {len(df)} rows, "
              f"{df[self.schema.site_col].nunique()} sites, "
              f"{df[self.schema.observer_col].nunique()} observers")
        return df


# ═══════════════════════════════════════════════════════════════
# Synthetic data
# ═══════════════════════════════════════════════════════════════

def simulate_survey_data(n_sites: int = 40,
                         n_observers: int = 8,
                         visits_per_site: int = 3,
                         intercept: float = -1.5,
                         slope_elevation: float = -0.4,
                         effect_forested: float = 0.6,
                         interaction: float = 0.3,
                         sd_site: float = 0.5,
                         sd_observer: float = 0.3,
                         seed: Optional[int] = None,
                         schema: Optional[SurveySchema] = None) -> pd.DataFrame:
    """Draw a raw survey table from a Poisson GLMM with known parameters.

    log E[count] = log(effort) + intercept + slope_elevation * z
                   + effect_forested * forested + interaction * z * forested
                   + b_site + b_observer
    """
    schema = schema or SurveySchema()
    rng = np.random.default_rng(seed)

    site_ids = [f"S{i + 1:02d}" for i in range(n_sites)]
    observer_ids = [f"O{j + 1:02d}" for j in range(n_observers)]
    site_elevation = rng.uniform(200.0, 1800.0, size=n_sites)
    site_forest = rng.beta(2.0, 2.0, size=n_sites)
    b_site = rng.normal(0.0, sd_site, size=n_sites)
    b_observer = rng.normal(0.0, sd_observer, size=n_observers)

    site_idx = np.repeat(np.arange(n_sites), visits_per_site)
    observer_idx = rng.integers(0, n_observers, size=len(site_idx))
    effort = rng.integers(8, 25, size=len(site_idx)).astype(float)

    elevation = site_elevation[site_idx]
    forest = site_forest[site_idx]
    z = (elevation - elevation.mean()) / elevation.std(ddof=1)
    forested = (forest >= schema.forest_threshold).astype(float)

    eta = (np.log(effort) + intercept + slope_elevation * z
           + effect_forested * forested + interaction * z * forested
           + b_site[site_idx] + b_observer[observer_idx])
    counts = rng.poisson(np.exp(eta))

    return pd.DataFrame({
        schema.site_col: [site_ids[i] for i in site_idx],
        schema.observer_col: [observer_ids[j] for j in observer_idx],
        schema.raw_response_col: counts,
        schema.elevation_col: np.round(elevation, 1),
        schema.forest_col: np.round(forest, 3),
        schema.exposure_col: effort,
    })


def write_survey_csv(df: pd.DataFrame, path,
                     schema: Optional[SurveySchema] = None) -> Path:
    """Write a survey table with the schema delimiter."""
    schema = schema or SurveySchema()
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, sep=schema.delimiter, index=False)
    print(f"[Data] Wrote {len(df)} survey rows to {path}")
    return path
