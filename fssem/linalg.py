"""
Dense linear-algebra kernels used by the estimators.

Thin wrappers over scipy.linalg that translate breakdowns into
NumericalError, so the ridge, PALM and trans-effect code never touches
LAPACK error handling directly.
"""

import warnings

import numpy as np
from scipy import linalg as sla

from .errors import InvalidInputError, NumericalError


def spectral_radius(B):
    """Largest absolute eigenvalue of a square matrix."""
    B = np.asarray(B, dtype=np.float64)
    if B.size == 0:
        return 0.0
    ev = sla.eigvals(B, check_finite=False)
    return float(np.max(np.abs(ev)))


def spectral_norm(A):
    """Largest singular value; for a Gram matrix this is its Lipschitz constant."""
    A = np.asarray(A, dtype=np.float64)
    if A.size == 0:
        return 0.0
    if A.shape[0] == A.shape[1] and np.allclose(A, A.T):
        ev = sla.eigvalsh(A, check_finite=False)
        return float(np.max(np.abs(ev)))
    return float(sla.svdvals(A, check_finite=False)[0])


def logabsdet_i_minus(B):
    """log|det(I - B)|, -inf when I - B is singular."""
    B = np.asarray(B, dtype=np.float64)
    sign, logdet = np.linalg.slogdet(np.eye(B.shape[0]) - B)
    if sign == 0:
        return -np.inf
    return float(logdet)


def inv_i_minus_t(B):
    """(I - B)^{-T}, the gradient of log|det(I - B)| with respect to -B."""
    B = np.asarray(B, dtype=np.float64)
    p = B.shape[0]
    try:
        with warnings.catch_warnings():
            warnings.simplefilter('error', sla.LinAlgWarning)
            return sla.solve((np.eye(p) - B).T, np.eye(p), check_finite=False)
    except (np.linalg.LinAlgError, sla.LinAlgWarning) as e:
        raise NumericalError(f"I - B is singular or ill-conditioned: {e}")


def solve_i_minus(B, F):
    """Solve (I - B) T = F for T."""
    B = np.asarray(B, dtype=np.float64)
    F = np.asarray(F, dtype=np.float64)
    p = B.shape[0]
    if B.shape != (p, p) or F.shape[0] != p:
        raise InvalidInputError(f"incompatible shapes {B.shape} and {F.shape}")
    try:
        with warnings.catch_warnings():
            warnings.simplefilter('error', sla.LinAlgWarning)
            T = sla.solve(np.eye(p) - B, F, check_finite=False)
    except (np.linalg.LinAlgError, sla.LinAlgWarning) as e:
        raise NumericalError(f"I - B is singular or ill-conditioned: {e}", block='trans')
    if not np.all(np.isfinite(T)):
        raise NumericalError("non-finite trans effects", block='trans')
    return T


def ridge_solve(G, rhs, penalty):
    """Solve (G + diag(penalty)) theta = rhs for a symmetric PSD Gram matrix G."""
    A = np.array(G, dtype=np.float64)
    A[np.diag_indices_from(A)] += penalty
    try:
        return sla.solve(A, rhs, assume_a='pos', check_finite=False)
    except np.linalg.LinAlgError as e:
        raise NumericalError(f"regularized normal equations are not solvable: {e}",
                             block='ridge')
