"""
Proximal alternating linearized minimization (PALM) for the sparse SEM.

The fit minimizes, over one or two conditions c,

    f(B, F, s2) = sum_c [ ||R_c||^2 / (2 s2) - n_c log|det(I - B_c)| ]
                  + (N p / 2) log s2
    R_c         = Y_c - Y_c B_cᵀ - X_c F_cᵀ

plus a penalty on B (adaptive lasso, or adaptive lasso with a fused term
between conditions) and an adaptive lasso on F. Each outer iteration takes
one proximal-gradient step on B, one on F (projected onto the candidate
pools), then sets s2 to its closed-form minimizer.

Step sizes start at 1/L with L the Lipschitz constant of the least-squares
part of the block and are halved until the quadratic majorization holds, the
log-determinant stays finite and, in strict mode, every B_c keeps spectral
radius below one. A block step is accepted only if the penalized objective
does not increase, so the objective trace is non-increasing.
"""

import enum
import time
import warnings

import numpy as np

from .classes import SEMFit
from .data import (valid_sem_data, _check_model, intercepts, residuals,
                   mle_sigma2, _SIGMA2_FLOOR)
from .errors import ConvergenceWarning, InvalidInputError, NumericalError
from .linalg import inv_i_minus_t, logabsdet_i_minus, spectral_norm, spectral_radius
from .penalties import AdaptiveWeights, network_penalty, cis_penalty

# Strict mode rescales an initial B with spectral radius >= 1 to this radius.
_STRICT_RESCALE = 0.95


class PALMState(enum.Enum):
    INITIALIZED = 'initialized'
    BLOCK_UPDATE_B = 'block_update_B'
    BLOCK_UPDATE_F = 'block_update_F'
    VARIANCE_UPDATE = 'variance_update'
    CONVERGENCE_CHECK = 'convergence_check'
    CONVERGED = 'converged'
    MAX_ITER_REACHED = 'max_iter_reached'
    TIMED_OUT = 'timed_out'

    @property
    def terminal(self):
        return self in (PALMState.CONVERGED, PALMState.MAX_ITER_REACHED,
                        PALMState.TIMED_OUT)


def _smooth_loss(data, R, B, sigma2):
    """Smooth part f of the objective; +inf when some I - B_c is singular."""
    rss = sum(float(np.sum(r * r)) for r in R)
    val = rss / (2.0 * sigma2) + 0.5 * data['p'] * sum(data['n']) * np.log(sigma2)
    for c, n_c in enumerate(data['n']):
        ld = logabsdet_i_minus(B[c])
        if not np.isfinite(ld):
            return np.inf
        val -= n_c * ld
    return float(val)


def sem_loglik(data, B, F, sigma2=None):
    """Gaussian SEM log-likelihood of (B, F, sigma2) on centered data.

    sigma2 defaults to its maximum-likelihood value given B and F.
    """
    B, F = _check_model(data, B, F, what='model')
    R = residuals(data, B, F)
    if sigma2 is None:
        sigma2 = mle_sigma2(data, R)
    N = sum(data['n'])
    rss = sum(float(np.sum(r * r)) for r in R)
    ll = -rss / (2.0 * sigma2) - 0.5 * data['p'] * N * np.log(2.0 * np.pi * sigma2)
    for c, n_c in enumerate(data['n']):
        ll += n_c * logabsdet_i_minus(B[c])
    return float(ll)


def sem_objective(data, B, F, sigma2, penalty_B=None, penalty_F=None):
    """Penalized objective f + g_B + g_F at (B, F, sigma2)."""
    B, F = _check_model(data, B, F, what='model')
    val = _smooth_loss(data, residuals(data, B, F), B, sigma2)
    if penalty_B is not None:
        val += penalty_B.value(B)
    if penalty_F is not None:
        val += penalty_F.value(F)
    return val


class PALMSolver:
    """Resumable PALM iteration for one (lam, rho) configuration.

    The solver is an explicit state machine: every call to ``step()``
    performs the action of the current state and returns the next one,

        INITIALIZED -> BLOCK_UPDATE_B -> BLOCK_UPDATE_F -> VARIANCE_UPDATE
        -> CONVERGENCE_CHECK -> BLOCK_UPDATE_B ... | CONVERGED
                                                   | MAX_ITER_REACHED
                                                   | TIMED_OUT

    ``run()`` steps until a terminal state and returns the SEMFit.

    Parameters
    ----------
    data : SEMData
        Output of make_sem_data().
    init : dict
        Starting point with 'B' and 'F' (per-condition lists or single
        arrays) and optionally 'sigma2'.
    penalty_B, penalty_F : penalty objects
        See fssem.penalties; held fixed for the whole run.
    maxit : int
        Maximum number of outer iterations.
    tol : float
        Relative tolerance on the objective and on the parameters.
    strict : bool
        Keep the spectral radius of every B_c below one.
    max_backtrack : int
        Maximum number of step halvings per block update.
    time_limit : float, optional
        Wall-clock budget in seconds, checked between outer iterations.
    verbose : bool
        Print the objective after each iteration.
    """

    def __init__(self, data, init, penalty_B, penalty_F, maxit=1000, tol=1e-6,
                 strict=True, max_backtrack=30, time_limit=None, verbose=False):
        data = valid_sem_data(data)
        if int(maxit) < 1:
            raise InvalidInputError("maxit must be at least 1")
        if not tol > 0:
            raise InvalidInputError("tol must be positive")
        if int(max_backtrack) < 0:
            raise InvalidInputError("max_backtrack must be non-negative")
        if time_limit is not None and not time_limit > 0:
            raise InvalidInputError("time_limit must be positive")
        if 'B' not in init or 'F' not in init:
            raise InvalidInputError("init must provide 'B' and 'F'")

        self.data = data
        self.penalty_B = penalty_B
        self.penalty_F = penalty_F
        self.maxit = int(maxit)
        self.tol = float(tol)
        self.strict = bool(strict)
        self.max_backtrack = int(max_backtrack)
        self.time_limit = time_limit
        self.verbose = verbose

        B, F = _check_model(data, init['B'], init['F'])
        mask = data['mask']
        for c in range(len(B)):
            np.fill_diagonal(B[c], 0.0)
            F[c][~mask] = 0.0
            if self.strict:
                rad = spectral_radius(B[c])
                if rad >= 1.0:
                    B[c] *= _STRICT_RESCALE / rad
        self.B = B
        self.F = F

        sigma2 = init.get('sigma2')
        if sigma2 is None:
            sigma2 = mle_sigma2(data, residuals(data, B, F))
        sigma2 = float(sigma2)
        if not np.isfinite(sigma2) or sigma2 <= 0:
            raise InvalidInputError("initial sigma2 must be positive and finite")
        self.sigma2 = max(sigma2, _SIGMA2_FLOOR)

        self._lip_B = max(spectral_norm(y.T @ y) for y in data['Y'])
        pooled = [s for s in data['Sk'] if len(s) > 0]
        if pooled:
            self._lip_F = max(spectral_norm(x[:, s].T @ x[:, s])
                              for x in data['X'] for s in pooled)
        else:
            self._lip_F = None

        self.state = PALMState.INITIALIZED
        self.iteration = 0
        self.trace = []
        self.step_sizes = {'B': [], 'F': []}
        self._snapshot = None
        self._t0 = None

    # -- objective -------------------------------------------------------

    def objective(self, B=None, F=None, sigma2=None):
        B = self.B if B is None else B
        F = self.F if F is None else F
        sigma2 = self.sigma2 if sigma2 is None else sigma2
        val = _smooth_loss(self.data, residuals(self.data, B, F), B, sigma2)
        return val + self.penalty_B.value(B) + self.penalty_F.value(F)

    # -- state machine ---------------------------------------------------

    def step(self):
        """Perform the current state's action and return the next state."""
        state = self.state
        if state.terminal:
            return state
        if state is PALMState.INITIALIZED:
            self._t0 = time.perf_counter()
            obj = self.objective()
            if not np.isfinite(obj):
                raise NumericalError("initial objective is not finite; I - B is singular",
                                     iteration=0, block='B')
            self.trace.append(obj)
            self.iteration = 1
            self.state = PALMState.BLOCK_UPDATE_B
        elif state is PALMState.BLOCK_UPDATE_B:
            self._snapshot = ([b.copy() for b in self.B], [f.copy() for f in self.F])
            self._update_B()
            self.state = PALMState.BLOCK_UPDATE_F
        elif state is PALMState.BLOCK_UPDATE_F:
            self._update_F()
            self.state = PALMState.VARIANCE_UPDATE
        elif state is PALMState.VARIANCE_UPDATE:
            self._update_sigma2()
            self.state = PALMState.CONVERGENCE_CHECK
        elif state is PALMState.CONVERGENCE_CHECK:
            self.state = self._check()
        return self.state

    def run(self):
        """Iterate to a terminal state and return the fit."""
        while not self.state.terminal:
            self.step()
        if self.state is not PALMState.CONVERGED:
            warnings.warn(
                f"PALM stopped ({self.state.value}) after {self.iteration} "
                f"iterations without reaching tol={self.tol:g}",
                ConvergenceWarning, stacklevel=2,
            )
        return self.result()

    def result(self):
        """SEMFit for the current iterate."""
        data = self.data
        rho = getattr(self.penalty_B, 'rho', 0.0)
        return SEMFit(
            B=[b.copy() for b in self.B],
            F=[f.copy() for f in self.F],
            mu=intercepts(data, self.B, self.F),
            sigma2=self.sigma2,
            lam=self.penalty_B.lam,
            rho=rho,
            status=self.state.value,
            converged=self.state is PALMState.CONVERGED,
            niter=self.iteration,
            objective=np.asarray(self.trace),
            loglik=sem_loglik(data, self.B, self.F, self.sigma2),
            p=data['p'],
            k=data['k'],
            genes=data.get('genes'),
            markers=data.get('markers'),
            conditions=data.get('conditions'),
        )

    # -- block updates ---------------------------------------------------

    def _lipschitz(self, raw, block):
        L = raw / self.sigma2
        if not np.isfinite(L) or L <= 0:
            raise NumericalError(f"degenerate Lipschitz constant ({L}) for {block}",
                                 iteration=self.iteration, block=block)
        return L

    def _prox_step(self, block, current, grad, L, prox, f0, g0, smooth):
        """Backtracking proximal-gradient step; returns the accepted point or None."""
        t = 1.0 / L
        for _ in range(self.max_backtrack + 1):
            cand = prox([m - t * g for m, g in zip(current, grad)], t)
            f1 = smooth(cand)
            if np.isfinite(f1):
                d = [a - b for a, b in zip(cand, current)]
                quad = (f0 + sum(float(np.sum(g * di)) for g, di in zip(grad, d))
                        + sum(float(np.sum(di * di)) for di in d) / (2.0 * t))
                if f1 <= quad:
                    penalty = self.penalty_B if block == 'B' else self.penalty_F
                    if f1 + penalty.value(cand) <= f0 + g0:
                        self.step_sizes[block].append(t)
                        return cand
            t *= 0.5
        return None

    def _update_B(self):
        data = self.data
        s2 = self.sigma2
        L = self._lipschitz(self._lip_B, 'B')
        R = residuals(data, self.B, self.F)
        f0 = _smooth_loss(data, R, self.B, s2)

        grad = []
        for c, (y, n_c) in enumerate(zip(data['Y'], data['n'])):
            try:
                g = -(R[c].T @ y) / s2 + n_c * inv_i_minus_t(self.B[c])
            except NumericalError as e:
                raise NumericalError(str(e), iteration=self.iteration, block='B') from e
            np.fill_diagonal(g, 0.0)
            grad.append(g)
        if not all(np.all(np.isfinite(g)) for g in grad):
            raise NumericalError("non-finite gradient", iteration=self.iteration, block='B')

        def prox(V, t):
            out = self.penalty_B.prox(V, t)
            for b in out:
                np.fill_diagonal(b, 0.0)
            if self.strict and any(spectral_radius(b) >= 1.0 for b in out):
                # Rejected: an infinite loss forces another halving.
                return None
            return out

        def smooth(cand):
            if cand is None:
                return np.inf
            return _smooth_loss(data, residuals(data, cand, self.F), cand, s2)

        new = self._prox_step('B', self.B, grad, L, prox, f0,
                              self.penalty_B.value(self.B), smooth)
        if new is not None:
            self.B = new

    def _update_F(self):
        if self._lip_F is None:
            return
        data = self.data
        s2 = self.sigma2
        mask = data['mask']
        L = self._lipschitz(self._lip_F, 'F')
        R = residuals(data, self.B, self.F)
        f0 = _smooth_loss(data, R, self.B, s2)

        grad = []
        for c, x in enumerate(data['X']):
            g = -(R[c].T @ x) / s2
            g[~mask] = 0.0
            grad.append(g)
        if not all(np.all(np.isfinite(g)) for g in grad):
            raise NumericalError("non-finite gradient", iteration=self.iteration, block='F')

        def prox(V, t):
            out = self.penalty_F.prox(V, t)
            for f in out:
                f[~mask] = 0.0
            return out

        def smooth(cand):
            return _smooth_loss(data, residuals(data, self.B, cand), self.B, s2)

        new = self._prox_step('F', self.F, grad, L, prox, f0,
                              self.penalty_F.value(self.F), smooth)
        if new is not None:
            self.F = new

    def _update_sigma2(self):
        s2 = mle_sigma2(self.data, residuals(self.data, self.B, self.F))
        if self.objective(sigma2=s2) <= self.objective():
            self.sigma2 = s2

    def _check(self):
        obj = self.objective()
        prev = self.trace[-1]
        self.trace.append(obj)

        B0, F0 = self._snapshot
        dpar = np.sqrt(sum(float(np.sum((b - b0) ** 2)) for b, b0 in zip(self.B, B0))
                       + sum(float(np.sum((f - f0) ** 2)) for f, f0 in zip(self.F, F0)))
        size = np.sqrt(sum(float(np.sum(b * b)) for b in self.B)
                       + sum(float(np.sum(f * f)) for f in self.F))

        if self.verbose:
            print(f"Iteration {self.iteration}: objective = {obj:.6f}, "
                  f"sigma2 = {self.sigma2:.5g}")

        if (abs(prev - obj) <= self.tol * max(1.0, abs(prev))
                or dpar <= self.tol * max(1.0, size)):
            return PALMState.CONVERGED
        if self.iteration >= self.maxit:
            return PALMState.MAX_ITER_REACHED
        if (self.time_limit is not None
                and time.perf_counter() - self._t0 > self.time_limit):
            return PALMState.TIMED_OUT
        self.iteration += 1
        return PALMState.BLOCK_UPDATE_B


def sem_palm(data, init, lam, rho=0.0, weights=None, maxit=1000, tol=1e-6,
             strict=True, max_backtrack=30, time_limit=None, verbose=False):
    """Fit the sparse SEM at one (lam, rho) by PALM.

    Parameters
    ----------
    data : SEMData
        Output of make_sem_data().
    init : RidgeFit, SEMFit, or dict
        Starting point with 'B', 'F' and optionally 'sigma2'.
    lam : float
        Adaptive-lasso strength on B and F.
    rho : float
        Fused-penalty strength on B_1 - B_2 (two conditions only).
    weights : AdaptiveWeights, optional
        Adaptive weights; by default derived from ``init``. Pass the same
        weights to every run that should share one objective.
    maxit, tol, strict, max_backtrack, time_limit, verbose :
        See PALMSolver.

    Returns
    -------
    SEMFit
    """
    data = valid_sem_data(data)
    if not lam >= 0:
        raise InvalidInputError("lam must be non-negative")
    if not rho >= 0:
        raise InvalidInputError("rho must be non-negative")
    if weights is None:
        B, F = _check_model(data, init['B'], init['F'])
        weights = AdaptiveWeights.from_fit({'B': B, 'F': F})
    if len(weights.B) != len(data['Y']):
        raise InvalidInputError("weights do not match the number of conditions")
    if len(data['Y']) == 1 and rho > 0:
        warnings.warn("rho is ignored with a single condition", stacklevel=2)

    solver = PALMSolver(data, init,
                        penalty_B=network_penalty(weights, lam, rho),
                        penalty_F=cis_penalty(weights, lam),
                        maxit=maxit, tol=tol, strict=strict,
                        max_backtrack=max_backtrack, time_limit=time_limit,
                        verbose=verbose)
    return solver.run()
