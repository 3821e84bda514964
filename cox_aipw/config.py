"""
Configuration for a single Cox AIPW estimation run.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import numpy as np

from .exceptions import InvalidConfig
from .nuisance import resolve_propensity_model, resolve_survival_model


class Augmentation(str, Enum):
    """
    Augmentation variant of the estimating equation.

    AIPTCW : observational data, informative censoring (treatment + censoring).
    AIPTW  : observational data, random censoring (treatment only).
    AIPCW  : randomized group assignment, informative censoring (censoring only).
    """

    AIPTCW = 'AIPTCW'
    AIPTW = 'AIPTW'
    AIPCW = 'AIPCW'

    @property
    def uses_propensity(self) -> bool:
        return self is not Augmentation.AIPCW

    @property
    def models_censoring(self) -> bool:
        return self is not Augmentation.AIPTW

    @classmethod
    def parse(cls, value) -> 'Augmentation':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value))
        except ValueError:
            options = ', '.join(m.value for m in cls)
            raise InvalidConfig(
                f"augmentation must be one of {options}, got {value!r}"
            ) from None


@dataclass
class CoxAIPWConfig:
    """
    Options of the estimator.

    Nuisance models may be given by registry name ('Cox', 'Spline', 'RSF' for
    survival; 'logit', 'RF', 'GBM' for the propensity score) or as adapter
    instances. Everything is validated on construction.
    """

    T_model: Any = 'Cox'
    C_model: Any = 'Cox'
    PS_model: Any = 'logit'
    tau: Optional[float] = None
    k: int = 5
    beta0: float = 0.0
    min_S: float = 0.05
    min_PS: float = 0.1
    augmentation: Any = 'AIPTCW'
    cross_fit: bool = True
    n_jobs: Optional[int] = 1

    def __post_init__(self):
        self.augmentation = Augmentation.parse(self.augmentation)
        self.T_model = resolve_survival_model(self.T_model)
        self.C_model = resolve_survival_model(self.C_model)
        self.PS_model = resolve_propensity_model(self.PS_model)

        if isinstance(self.k, bool) or not isinstance(self.k, (int, np.integer)) or self.k < 1:
            raise InvalidConfig(f"k must be a positive integer, got {self.k!r}")
        self.k = int(self.k)
        if self.tau is not None:
            self.tau = float(self.tau)
            if not math.isfinite(self.tau) or self.tau <= 0:
                raise InvalidConfig(f"tau must be a positive finite number, got {self.tau!r}")
        self.beta0 = float(self.beta0)
        if not math.isfinite(self.beta0):
            raise InvalidConfig(f"beta0 must be finite, got {self.beta0!r}")
        if not 0.0 < self.min_S < 1.0:
            raise InvalidConfig(f"min_S must lie in (0, 1), got {self.min_S!r}")
        if not 0.0 < self.min_PS < 0.5:
            raise InvalidConfig(f"min_PS must lie in (0, 0.5), got {self.min_PS!r}")
        self.cross_fit = bool(self.cross_fit)
