"""
Penalties and their proximal operators.

A penalty is an immutable configuration object holding its strength and its
adaptive weights. It exposes ``value(mats)`` and ``prox(mats, step)`` on a
list of matrices (one per condition); PALM only talks to this interface, so
the single-condition adaptive lasso and the two-condition fused variant are
interchangeable.
"""

from dataclasses import dataclass

import numpy as np
from numba import njit, prange

from .errors import InvalidInputError

_WEIGHT_EPS = 1e-8


def soft_threshold(x, thresh):
    """Proximal operator of thresh * |x| (elementwise)."""
    return np.sign(x) * np.maximum(np.abs(x) - thresh, 0.0)


def adaptive_weights(x, eps=_WEIGHT_EPS):
    """Adaptive lasso weights 1 / |x|, with magnitudes floored at eps."""
    return 1.0 / np.maximum(np.abs(np.asarray(x, dtype=np.float64)), eps)


# ---------------------------------------------------------------------------
# Two-condition fused proximal operator
# ---------------------------------------------------------------------------

@njit(cache=True)
def _soft(a, t):
    if a > t:
        return a - t
    if a < -t:
        return a + t
    return 0.0


@njit(cache=True)
def _pair_objective(x1, x2, a1, a2, l1, l2, r):
    return (0.5 * (x1 - a1) ** 2 + 0.5 * (x2 - a2) ** 2
            + l1 * abs(x1) + l2 * abs(x2) + r * abs(x1 - x2))


@njit(cache=True)
def _fused_pair(a1, a2, l1, l2, r):
    """Exact minimizer of the two-point fused lasso problem.

    The optimum is either fused (x1 == x2) or has a fixed sign of x1 - x2;
    each case has a closed form, so the three candidates are compared.
    """
    z = _soft(0.5 * (a1 + a2), 0.5 * (l1 + l2))
    b1 = z
    b2 = z
    best = _pair_objective(z, z, a1, a2, l1, l2, r)

    u1 = _soft(a1 - r, l1)
    u2 = _soft(a2 + r, l2)
    if u1 > u2:
        obj = _pair_objective(u1, u2, a1, a2, l1, l2, r)
        if obj < best:
            best = obj
            b1 = u1
            b2 = u2

    v1 = _soft(a1 + r, l1)
    v2 = _soft(a2 - r, l2)
    if v1 < v2:
        obj = _pair_objective(v1, v2, a1, a2, l1, l2, r)
        if obj < best:
            best = obj
            b1 = v1
            b2 = v2
    return b1, b2


@njit(cache=True, parallel=True)
def _fused_prox_kernel(a1, a2, l1, l2, r, out1, out2):
    """Elementwise fused proximal operator over flattened arrays."""
    n = a1.shape[0]
    for i in prange(n):
        x1, x2 = _fused_pair(a1[i], a2[i], l1[i], l2[i], r[i])
        out1[i] = x1
        out2[i] = x2


def fused_prox(A1, A2, L1, L2, R):
    """Proximal operator of L1|x1| + L2|x2| + R|x1 - x2|, elementwise.

    Parameters
    ----------
    A1, A2 : ndarray
        Points to project (same shape).
    L1, L2, R : ndarray or float
        Per-entry thresholds (already multiplied by the step size).

    Returns
    -------
    tuple of ndarray
    """
    A1 = np.ascontiguousarray(A1, dtype=np.float64)
    A2 = np.ascontiguousarray(A2, dtype=np.float64)
    shape = A1.shape
    L1 = np.ascontiguousarray(np.broadcast_to(L1, shape), dtype=np.float64).ravel()
    L2 = np.ascontiguousarray(np.broadcast_to(L2, shape), dtype=np.float64).ravel()
    R = np.ascontiguousarray(np.broadcast_to(R, shape), dtype=np.float64).ravel()
    out1 = np.empty(A1.size)
    out2 = np.empty(A1.size)
    _fused_prox_kernel(A1.ravel(), A2.ravel(), L1, L2, R, out1, out2)
    return out1.reshape(shape), out2.reshape(shape)


# ---------------------------------------------------------------------------
# Penalty configurations
# ---------------------------------------------------------------------------

def _per_condition(m):
    if isinstance(m, np.ndarray) and m.ndim == 2:
        return [m]
    return list(m)


@dataclass(frozen=True)
class AdaptiveWeights:
    """Adaptive lasso weights derived once from a prior fit.

    B, F : tuple of ndarray, one per condition.
    fused : ndarray or None, weights on B_1 - B_2 (two conditions only).
    """
    B: tuple
    F: tuple
    fused: object = None

    @classmethod
    def from_fit(cls, fit, eps=_WEIGHT_EPS):
        """Weights from a fit's 'B' and 'F'; a single 2D array means one condition."""
        Bs, Fs = _per_condition(fit['B']), _per_condition(fit['F'])
        if len(Bs) != len(Fs):
            raise InvalidInputError("fit must provide B and F for the same conditions")
        B = tuple(adaptive_weights(b, eps) for b in Bs)
        F = tuple(adaptive_weights(f, eps) for f in Fs)
        fused = None
        if len(Bs) == 2:
            fused = adaptive_weights(Bs[0] - Bs[1], eps)
        return cls(B=B, F=F, fused=fused)

    @classmethod
    def uniform(cls, p, k, n_conditions=1):
        """Plain (non-adaptive) lasso weights."""
        B = tuple(np.ones((p, p)) for _ in range(n_conditions))
        F = tuple(np.ones((p, k)) for _ in range(n_conditions))
        fused = np.ones((p, p)) if n_conditions == 2 else None
        return cls(B=B, F=F, fused=fused)


@dataclass(frozen=True)
class AdaptiveLasso:
    """lam * sum_c sum_ij W_c[i, j] |M_c[i, j]|, separable across conditions."""
    weights: tuple
    lam: float

    def __post_init__(self):
        if not self.lam >= 0:
            raise InvalidInputError("lam must be non-negative")

    def value(self, mats):
        return float(sum(self.lam * np.sum(w * np.abs(m))
                         for w, m in zip(self.weights, mats)))

    def prox(self, mats, step):
        return [soft_threshold(m, step * self.lam * w)
                for w, m in zip(self.weights, mats)]


@dataclass(frozen=True)
class FusedAdaptiveLasso:
    """Adaptive lasso on B_1 and B_2 plus rho * sum R |B_1 - B_2|."""
    weights: tuple
    fused_weights: np.ndarray
    lam: float
    rho: float

    def __post_init__(self):
        if not self.lam >= 0:
            raise InvalidInputError("lam must be non-negative")
        if not self.rho >= 0:
            raise InvalidInputError("rho must be non-negative")
        if len(self.weights) != 2:
            raise InvalidInputError("the fused penalty couples exactly two conditions")

    def value(self, mats):
        B1, B2 = mats
        W1, W2 = self.weights
        return float(self.lam * (np.sum(W1 * np.abs(B1)) + np.sum(W2 * np.abs(B2)))
                     + self.rho * np.sum(self.fused_weights * np.abs(B1 - B2)))

    def prox(self, mats, step):
        W1, W2 = self.weights
        B1, B2 = fused_prox(mats[0], mats[1],
                            step * self.lam * W1, step * self.lam * W2,
                            step * self.rho * self.fused_weights)
        return [B1, B2]


def network_penalty(weights, lam, rho=0.0):
    """Penalty on B for the given number of conditions."""
    if len(weights.B) == 2:
        return FusedAdaptiveLasso(weights=weights.B, fused_weights=weights.fused,
                                  lam=float(lam), rho=float(rho))
    return AdaptiveLasso(weights=weights.B, lam=float(lam))


def cis_penalty(weights, lam):
    """Penalty on F: per-condition adaptive lasso."""
    return AdaptiveLasso(weights=weights.F, lam=float(lam))
