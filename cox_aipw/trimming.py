"""
Clipping of nuisance predictions to keep inverse weights bounded.
"""

import numpy as np

from .config import Augmentation
from .crossfit import NuisancePredictions


def clip_predictions(predictions: NuisancePredictions, augmentation,
                     min_S=0.05, min_PS=0.1) -> NuisancePredictions:
    """
    Floor survival curves at min_S and clip propensity scores to
    [min_PS, 1 - min_PS].

    Under AIPTW censoring is assumed random and contributes no augmentation,
    so both censoring curves are identically 1. Under AIPCW no propensity is
    carried.
    """
    augmentation = Augmentation.parse(augmentation)

    def floor(curves):
        return np.clip(curves, min_S, 1.0)

    event0 = floor(predictions.event0)
    event1 = floor(predictions.event1)
    if augmentation is Augmentation.AIPTW:
        censor0 = np.ones_like(event0)
        censor1 = np.ones_like(event1)
    else:
        censor0 = floor(predictions.censor0)
        censor1 = floor(predictions.censor1)

    propensity = None
    if augmentation.uses_propensity:
        propensity = np.clip(predictions.propensity, min_PS, 1.0 - min_PS)

    return NuisancePredictions(event0, event1, censor0, censor1, propensity)
