"""Map a model probability to a result label and advice."""

import math
from typing import Tuple

CANCER = 'Cancer'
NON_CANCER = 'Non-cancer'

DECISION_THRESHOLD = 0.5

SUGGESTIONS = {
    CANCER: 'Segera periksa ke dokter!',
    NON_CANCER: 'Anda sehat!',
}


def suggestion_for(result: str) -> str:
    """Return the fixed advice for a result label."""
    try:
        return SUGGESTIONS[result]
    except KeyError:
        raise ValueError(f"Unknown result: {result!r}")


def classify(probability: float) -> Tuple[str, str]:
    """
    Classify a probability.

    Strictly above 0.5 is Cancer; 0.5 itself is Non-cancer.

    Returns:
        (result, suggestion)
    """
    if math.isnan(probability):
        raise ValueError("Probability is NaN")
    result = CANCER if probability > DECISION_THRESHOLD else NON_CANCER
    return result, SUGGESTIONS[result]
