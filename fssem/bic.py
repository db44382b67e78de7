"""
BIC-driven hyperparameter search for the sparse SEM.

A log-spaced grid of lam (adaptive-lasso strength) and rho (fused strength)
values is fitted by PALM and the point with the smallest

    BIC = -2 loglik + log(N) * df

is selected, ties going to the sparser model. With warm starts each rho
value forms a chain walked from the largest lam down, every fit starting from
the previous one; chains are independent of each other.
"""

from concurrent.futures import ProcessPoolExecutor
import warnings

import numpy as np
import pandas as pd

from .classes import BICPath
from .data import valid_sem_data, _check_model, mle_sigma2
from .errors import ConvergenceWarning, InvalidInputError, NumericalError
from .palm import sem_palm, sem_loglik
from .penalties import AdaptiveWeights
from .ridge import cv_ridge_regression, ridge_regression


def sem_df(B, F):
    """Effective number of nonzero parameters.

    Off-diagonal nonzeros of B, with entries equal in both conditions
    counted once, plus the nonzeros of every F_c.
    """
    df = 0
    if len(B) == 2:
        B1, B2 = B
        nz1, nz2 = B1 != 0, B2 != 0
        shared = nz1 & nz2 & (B1 == B2)
        df += int(np.sum(nz1)) + int(np.sum(nz2)) - int(np.sum(shared))
    else:
        df += sum(int(np.sum(b != 0)) for b in B)
    for b in B:
        df -= int(np.sum(np.diag(b) != 0))
    df += sum(int(np.sum(f != 0)) for f in F)
    return df


def bic_score(data, B, F, sigma2=None):
    """BIC of a fitted SEM.

    Parameters
    ----------
    data : SEMData
        Output of make_sem_data().
    B, F : list of ndarray or ndarray
        Per-condition network and cis-effect matrices.
    sigma2 : float, optional
        Noise variance; defaults to the residual maximum-likelihood value.

    Returns
    -------
    dict with 'bic', 'loglik' and 'df'.
    """
    data = valid_sem_data(data)
    B, F = _check_model(data, B, F, what='model')
    ll = sem_loglik(data, B, F, sigma2)
    df = sem_df(B, F)
    return {'bic': -2.0 * ll + np.log(sum(data['n'])) * df, 'loglik': ll, 'df': df}


def select_by_bic(bic, df, rtol=1e-10):
    """Index of the minimal BIC, preferring fewer parameters among ties.

    Non-finite BIC values (failed fits) are never selected. Returns None
    when nothing is selectable.
    """
    bic = np.asarray(bic, dtype=np.float64)
    df = np.asarray(df, dtype=np.float64)
    ok = np.isfinite(bic)
    if not np.any(ok):
        return None
    best = np.min(bic[ok])
    tied = np.flatnonzero(ok & (bic <= best + rtol * max(1.0, abs(best))))
    return int(tied[np.argmin(df[tied])])


def _null_sigma2(data):
    """Noise variance of the empty model; PALM re-estimates to this at B = 0, F = 0."""
    return mle_sigma2(data, data['Y'])


def _init_weights(data, init):
    B, F = _check_model(data, init['B'], init['F'])
    return AdaptiveWeights.from_fit({'B': B, 'F': F})


def _gradients_at_zero(data, sigma2):
    """Smooth-loss gradients at B = 0, F = 0 (masked, diagonal zeroed)."""
    GB, GF = [], []
    for x, y in zip(data['X'], data['Y']):
        gb = -(y.T @ y) / sigma2
        np.fill_diagonal(gb, 0.0)
        gf = -(y.T @ x) / sigma2
        gf[~data['mask']] = 0.0
        GB.append(gb)
        GF.append(gf)
    return GB, GF


def lambda_max(data, init, weights=None):
    """Smallest lam at which B = 0, F = 0 is a stationary point.

    The gradient is taken at the noise variance of the empty model, the
    value PALM settles on once every coefficient is zero.
    """
    data = valid_sem_data(data)
    if weights is None:
        weights = _init_weights(data, init)
    GB, GF = _gradients_at_zero(data, _null_sigma2(data))
    lmax = 0.0
    for gb, gf, wb, wf in zip(GB, GF, weights.B, weights.F):
        lmax = max(lmax, float(np.max(np.abs(gb) / wb)))
        if np.any(data['mask']):
            lmax = max(lmax, float(np.max(np.abs(gf) / wf)))
    return lmax


def rho_max(data, init, weights=None):
    """Fused strength beyond which B_1 and B_2 are fused at B = 0."""
    data = valid_sem_data(data)
    if len(data['Y']) != 2:
        return 0.0
    if weights is None:
        weights = _init_weights(data, init)
    GB, _ = _gradients_at_zero(data, _null_sigma2(data))
    rmax = float(np.max(np.abs(GB[0] - GB[1]) / (2.0 * weights.fused)))
    if rmax <= 0:
        rmax = lambda_max(data, init, weights)
    return rmax


def _grid(vmax, nvals, min_ratio):
    if vmax <= 0:
        return np.zeros(1)
    return np.logspace(np.log10(vmax), np.log10(vmax * min_ratio), int(nvals))


def _fit_point(data, start, lam, rho, weights, palm_options):
    """One PALM run; returns (fit or None, status)."""
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', ConvergenceWarning)
        try:
            fit = sem_palm(data, start, lam, rho, weights=weights, **palm_options)
        except NumericalError as e:
            return None, f"failed: {e}"
    return fit, fit['status']


def _run_chain(args):
    """Fit a list of (lam, rho) points in order, warm-starting along the way."""
    data, init, points, weights, warm_start, palm_options = args
    out = []
    start = init
    for lam, rho in points:
        fit, status = _fit_point(data, start, lam, rho, weights, palm_options)
        if fit is not None and warm_start:
            start = fit
        out.append((lam, rho, fit, status))
    return out


def bic_grid_search(data, init=None, nlambda=10, nrho=5, lambdas=None, rhos=None,
                    lambda_min_ratio=1e-3, rho_min_ratio=1e-3, warm_start=True,
                    n_jobs=1, verbose=False, **palm_options):
    """Select (lam, rho) by BIC over a grid of PALM fits.

    Parameters
    ----------
    data : SEMData
        Output of make_sem_data().
    init : RidgeFit or dict, optional
        Initialization and source of the adaptive weights. When omitted,
        ridge strengths are chosen by cv_ridge_regression() and the ridge
        fit is used.
    nlambda, nrho : int
        Grid sizes. With a single condition the rho grid is [0].
    lambdas, rhos : array-like, optional
        Explicit grids, overriding the data-driven ones.
    lambda_min_ratio, rho_min_ratio : float
        Smallest grid value as a fraction of lambda_max / rho_max.
    warm_start : bool
        Start each fit from the previous lam along its rho chain.
    n_jobs : int
        Worker processes. Chains (warm starts) or single points (no warm
        starts) are distributed across them.
    verbose : bool
        Print one line per grid point.
    **palm_options :
        Passed to sem_palm() (maxit, tol, strict, ...).

    Returns
    -------
    BICPath with 'lam', 'rho', 'fit' (selected SEMFit), 'table'
    (one row per grid point), 'lambdas', 'rhos', 'init'.
    """
    data = valid_sem_data(data)
    if int(nlambda) <= 0 or int(nrho) <= 0:
        raise InvalidInputError("nlambda and nrho must be positive")

    if init is None:
        cv = cv_ridge_regression(data, verbose=verbose)
        init = ridge_regression(data, cv['gamma'])
    weights = _init_weights(data, init)

    if lambdas is None:
        lambdas = _grid(lambda_max(data, init, weights), nlambda, lambda_min_ratio)
    else:
        lambdas = np.sort(np.asarray(lambdas, dtype=np.float64).ravel())[::-1]
    if len(data['Y']) == 1:
        rhos = np.zeros(1)
    elif rhos is None:
        rhos = _grid(rho_max(data, init, weights), nrho, rho_min_ratio)
    else:
        rhos = np.sort(np.asarray(rhos, dtype=np.float64).ravel())[::-1]
    if lambdas.size == 0 or rhos.size == 0:
        raise InvalidInputError("empty hyperparameter grid")
    if np.any(lambdas < 0) or np.any(rhos < 0):
        raise InvalidInputError("grid values must be non-negative")

    if warm_start:
        tasks = [[(lam, rho) for lam in lambdas] for rho in rhos]
    else:
        tasks = [[(lam, rho)] for rho in rhos for lam in lambdas]
    args_list = [(data, init, pts, weights, warm_start, palm_options) for pts in tasks]

    if n_jobs is not None and n_jobs > 1 and len(args_list) > 1:
        with ProcessPoolExecutor(max_workers=min(n_jobs, len(args_list))) as executor:
            chains = list(executor.map(_run_chain, args_list))
    else:
        chains = [_run_chain(args) for args in args_list]

    rows, fits = [], []
    for chain in chains:
        for lam, rho, fit, status in chain:
            if fit is None:
                row = {'lambda': lam, 'rho': rho, 'bic': np.inf, 'loglik': np.nan,
                       'df': np.nan, 'niter': 0, 'status': status}
            else:
                score = bic_score(data, fit['B'], fit['F'], fit['sigma2'])
                fit['bic'] = score['bic']
                fit['df'] = score['df']
                row = {'lambda': lam, 'rho': rho, 'bic': score['bic'],
                       'loglik': score['loglik'], 'df': score['df'],
                       'niter': fit['niter'], 'status': status}
            if verbose:
                print(f"lambda = {lam:.4g}, rho = {rho:.4g}: BIC = {row['bic']:.4f} "
                      f"(df = {row['df']}, {status})")
            rows.append(row)
            fits.append(fit)

    table = pd.DataFrame(rows, columns=['lambda', 'rho', 'bic', 'loglik', 'df',
                                        'niter', 'status'])
    best = select_by_bic(table['bic'].values, table['df'].fillna(np.inf).values)
    if best is None:
        raise NumericalError("every grid point failed; no model to select")

    return BICPath(lam=float(table['lambda'].iloc[best]),
                   rho=float(table['rho'].iloc[best]),
                   fit=fits[best], table=table, lambdas=lambdas, rhos=rhos,
                   init=init)
