"""
Trans-effect propagation.

With y = B y + F x + e and I - B invertible, the total effect of the
markers on expression is T = (I - B)^{-1} F: the cis effects in F plus every
path they take through the network.
"""

import numpy as np

from .errors import NumericalError
from .linalg import solve_i_minus


def trans_effects(B, F):
    """Total genetic effects (I - B)^{-1} F, by linear solve.

    Raises NumericalError when I - B is singular.
    """
    return solve_i_minus(B, F)


def neumann_trans_effects(B, F, order=50):
    """Truncated Neumann series sum_{j=0}^{order} B^j F.

    Converges to trans_effects(B, F) when the spectral radius of B is below
    one; exact for a nilpotent (acyclic) B once order >= p - 1.
    """
    B = np.asarray(B, dtype=np.float64)
    term = np.asarray(F, dtype=np.float64).copy()
    total = term.copy()
    for _ in range(int(order)):
        term = B @ term
        total += term
        if not np.all(np.isfinite(total)):
            raise NumericalError("Neumann series diverged; spectral radius of B >= 1",
                                 block='trans')
    return total


def fit_trans_effects(fit):
    """Per-condition trans effects of an SEMFit."""
    return [trans_effects(b, f) for b, f in zip(fit['B'], fit['F'])]
