"""
Ridge-regression initializer for the SEM.

For each condition and gene i, y_i is regressed on the other genes and on the
gene's candidate markers,

    (Z_iᵀ Z_i + D) theta = Z_iᵀ y_i,    Z_i = [Y_{-i}, X_{Sk(i)}],

with D = diag(gamma_B for the gene columns, gamma_F for the marker columns).
The solution fills row i of B (diagonal left at zero) and the candidate
entries of row i of F. The two ridge strengths are chosen jointly by k-fold
cross-validation.
"""

from concurrent.futures import ProcessPoolExecutor

import numpy as np

from .classes import RidgeCV, RidgeFit
from .data import valid_sem_data, intercepts, residuals, mle_sigma2
from .errors import InvalidInputError
from .linalg import ridge_solve


def _as_gamma(gamma):
    """Coerce a scalar or 2-vector into (gamma_B, gamma_F)."""
    g = np.atleast_1d(np.asarray(gamma, dtype=np.float64)).ravel()
    if g.size == 1:
        g = np.repeat(g, 2)
    if g.size != 2:
        raise InvalidInputError("gamma must be a scalar or a 2-vector (gamma_B, gamma_F)")
    if not np.all(np.isfinite(g)) or np.any(g <= 0):
        raise InvalidInputError("ridge strengths must be positive and finite")
    return g


def _joint_gram(x, y):
    """Cross-product of [Y, X] with itself."""
    Z = np.hstack([y, x])
    return Z.T @ Z


def _gene_columns(i, p, Sk_i):
    """Columns of [Y, X] used as predictors of gene i."""
    others = np.delete(np.arange(p), i)
    return others, np.concatenate([others, p + np.asarray(Sk_i, dtype=np.int64)])


def _ridge_condition(C, p, k, Sk, gamma_b, gamma_f):
    """Genewise ridge solves from a joint Gram matrix; returns (B, F)."""
    B = np.zeros((p, p))
    F = np.zeros((p, k))
    for i in range(p):
        others, cols = _gene_columns(i, p, Sk[i])
        pen = np.concatenate([np.full(p - 1, gamma_b), np.full(len(Sk[i]), gamma_f)])
        theta = ridge_solve(C[np.ix_(cols, cols)], C[cols, i], pen)
        B[i, others] = theta[:p - 1]
        F[i, Sk[i]] = theta[p - 1:]
    return B, F


def ridge_regression(data, gamma):
    """Fit the SEM by genewise ridge regression at fixed strengths.

    Parameters
    ----------
    data : SEMData
        Output of make_sem_data().
    gamma : float or array-like of length 2
        Ridge strength, or (gamma_B, gamma_F) for the gene and marker
        coefficients.

    Returns
    -------
    RidgeFit with 'B', 'F', 'mu' (lists, one per condition), 'sigma2' and
    'gamma'.
    """
    data = valid_sem_data(data)
    g = _as_gamma(gamma)
    p, k = data['p'], data['k']

    B, F = [], []
    for x, y in zip(data['X'], data['Y']):
        Bc, Fc = _ridge_condition(_joint_gram(x, y), p, k, data['Sk'], g[0], g[1])
        B.append(Bc)
        F.append(Fc)

    sigma2 = mle_sigma2(data, residuals(data, B, F))
    return RidgeFit(B=B, F=F, mu=intercepts(data, B, F), sigma2=sigma2,
                    gamma=g, p=p, k=k)


def _cv_fold(args):
    """Held-out squared error over the (gamma_B, gamma_F) grid for one fold."""
    Xs, Ys, Sk, tests, gammas = args
    ng = len(gammas)
    p = Ys[0].shape[1]
    err = np.zeros((ng, ng))

    for x, y, test in zip(Xs, Ys, tests):
        train = np.ones(y.shape[0], dtype=bool)
        train[test] = False
        xm, ym = x[train].mean(axis=0), y[train].mean(axis=0)
        x_tr, y_tr = x[train] - xm, y[train] - ym
        Z_te = np.hstack([y[test] - ym, x[test] - xm])
        C = _joint_gram(x_tr, y_tr)

        for i in range(p):
            _, cols = _gene_columns(i, p, Sk[i])
            G = C[np.ix_(cols, cols)]
            rhs = C[cols, i]
            Zi = Z_te[:, cols]
            yi = Z_te[:, i]
            for a, gb in enumerate(gammas):
                for b, gf in enumerate(gammas):
                    pen = np.concatenate([np.full(p - 1, gb), np.full(len(Sk[i]), gf)])
                    theta = ridge_solve(G, rhs, pen)
                    r = yi - Zi @ theta
                    err[a, b] += r @ r
    return err


def cv_ridge_regression(data, gammas=None, ngamma=10, nfold=5, n_jobs=1,
                        verbose=False):
    """Choose ridge strengths for B and F by k-fold cross-validation.

    Samples are assigned to folds deterministically (sample index modulo
    nfold, separately within each condition). For every pair
    (gamma_B, gamma_F) of the grid the genewise ridge fits are computed on
    the training folds and scored by held-out squared error, summed over
    genes and conditions.

    Parameters
    ----------
    data : SEMData
        Output of make_sem_data().
    gammas : array-like, optional
        Candidate strengths. Defaults to ngamma values log-spaced on
        [1e-4, 1e2].
    ngamma : int
        Grid size when gammas is not given.
    nfold : int
        Number of folds.
    n_jobs : int
        Worker processes; folds are independent.
    verbose : bool
        Print the selected strengths.

    Returns
    -------
    RidgeCV with 'gamma' (2-vector gamma_B, gamma_F), 'gammas', 'cv_error'
    (mean held-out error, gamma_B x gamma_F) and 'cv_se'.
    """
    data = valid_sem_data(data)
    if gammas is None:
        if ngamma < 1:
            raise InvalidInputError("ngamma must be positive")
        gammas = np.logspace(-4, 2, int(ngamma))
    gammas = np.asarray(gammas, dtype=np.float64).ravel()
    if gammas.size == 0 or np.any(gammas <= 0) or not np.all(np.isfinite(gammas)):
        raise InvalidInputError("gammas must be positive and finite")
    nfold = int(nfold)
    if nfold < 2 or nfold > min(data['n']):
        raise InvalidInputError(f"nfold must be between 2 and {min(data['n'])}")

    fold_ids = [np.arange(n) % nfold for n in data['n']]
    args_list = [
        (data['X'], data['Y'], data['Sk'],
         [np.flatnonzero(ids == f) for ids in fold_ids], gammas)
        for f in range(nfold)
    ]

    if n_jobs is not None and n_jobs > 1:
        with ProcessPoolExecutor(max_workers=min(n_jobs, nfold)) as executor:
            fold_err = list(executor.map(_cv_fold, args_list))
    else:
        fold_err = []
        for f, args in enumerate(args_list):
            if verbose:
                print(f"  Fold {f + 1}/{nfold}...")
            fold_err.append(_cv_fold(args))

    fold_err = np.stack(fold_err)
    cv_error = fold_err.mean(axis=0)
    cv_se = fold_err.std(axis=0, ddof=1) / np.sqrt(nfold)
    a, b = np.unravel_index(np.argmin(cv_error), cv_error.shape)
    gamma = np.array([gammas[a], gammas[b]])

    if verbose:
        print(f"gamma_B = {gamma[0]:.4g}, gamma_F = {gamma[1]:.4g}, "
              f"CV error = {cv_error[a, b]:.5g}")

    return RidgeCV(gamma=gamma, gammas=gammas, cv_error=cv_error, cv_se=cv_se)
