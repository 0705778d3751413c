"""
Model structure shared by the frequentist and Bayesian fitters.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from .survey_data import SurveySchema


SUPPORTED_FAMILIES = ('poisson',)


@dataclass(frozen=True)
class ModelFormula:
    """Poisson GLMM: fixed effects + random intercepts + log-exposure offset."""
    response: str = 'count'
    fixed: str = 'elevation_z * forest_class'   # patsy/formulae right-hand side
    groups: Tuple[str, ...] = ('site', 'observer')
    exposure: Optional[str] = 'effort'           # Enters as offset(log(exposure))
    family: str = 'poisson'

    def __post_init__(self):
        if self.family not in SUPPORTED_FAMILIES:
            raise ValueError(f"Unsupported family '{self.family}'. "
                             f"Supported: {SUPPORTED_FAMILIES}")
        if len(set(self.groups)) != len(self.groups):
            raise ValueError(f"Duplicate grouping factors: {self.groups}")

    @classmethod
    def from_schema(cls, schema: SurveySchema) -> 'ModelFormula':
        return cls(
            response=schema.response_col,
            fixed=f"{schema.elevation_z_col} * {schema.forest_class_col}",
            groups=schema.group_cols,
            exposure=schema.exposure_col,
        )

    def to_bambi(self) -> str:
        """Render as a bambi formula string."""
        terms = [self.fixed] + [f"(1|{g})" for g in self.groups]
        if self.exposure:
            terms.append(f"offset(log({self.exposure}))")
        return f"{self.response} ~ " + " + ".join(terms)

    def __str__(self):
        return self.to_bambi()
