"""
SEMData construction and validation.

Expression (Y) and genotype (X) matrices are stored samples x genes and
samples x markers, one pair per condition, centered per condition so the
intercepts drop out of the estimation and are recovered afterwards.
"""

import numpy as np
import pandas as pd

from .candidates import _as_candidates
from .classes import SEMData
from .errors import InvalidInputError

_SIGMA2_FLOOR = 1e-10


def _as_condition_list(x, name):
    """Wrap a single matrix or DataFrame into a one-element list."""
    if isinstance(x, (np.ndarray, pd.DataFrame)) or (
            hasattr(x, 'toarray') and hasattr(x, 'nnz')):
        x = [x]
    out = []
    for c, m in enumerate(x):
        if hasattr(m, 'toarray') and hasattr(m, 'nnz'):
            m = m.toarray()
        m = np.asarray(m, dtype=np.float64)
        if m.ndim != 2:
            raise InvalidInputError(f"{name}[{c}] must be a 2D array (samples x features)")
        if not np.all(np.isfinite(m)):
            raise InvalidInputError(f"NA/non-finite values not allowed in {name}[{c}]")
        out.append(m)
    return out


def _names_from(x, axis):
    if isinstance(x, pd.DataFrame):
        return list(x.index if axis == 0 else x.columns)
    if isinstance(x, (list, tuple)) and len(x) and isinstance(x[0], pd.DataFrame):
        return _names_from(x[0], axis)
    return None


def make_sem_data(X, Y, Sk, genes=None, markers=None, conditions=None):
    """Construct an SEMData object from genotypes, expression and candidates.

    Parameters
    ----------
    X : array-like, DataFrame, or list of them
        Genotypes (samples x markers), one matrix per condition.
    Y : array-like, DataFrame, or list of them
        Expression (samples x genes), one matrix per condition.
    Sk : list of array-like or ndarray of bool
        Candidate marker indices (0-based) for each gene, or a genes x
        markers boolean mask.
    genes, markers : list of str, optional
        Names; taken from DataFrame columns when available.
    conditions : list of str, optional
        Condition labels.

    Returns
    -------
    SEMData
    """
    gene_names = genes if genes is not None else _names_from(Y, 1)
    marker_names = markers if markers is not None else _names_from(X, 1)

    Xs = _as_condition_list(X, 'X')
    Ys = _as_condition_list(Y, 'Y')
    if len(Xs) != len(Ys):
        raise InvalidInputError("X and Y must have the same number of conditions")
    if len(Ys) not in (1, 2):
        raise InvalidInputError("only one or two conditions are supported")

    p = Ys[0].shape[1]
    k = Xs[0].shape[1]
    if p < 2:
        raise InvalidInputError("need at least two genes")
    n = []
    for c, (x, y) in enumerate(zip(Xs, Ys)):
        if x.shape[0] != y.shape[0]:
            raise InvalidInputError(
                f"X[{c}] and Y[{c}] have different numbers of samples "
                f"({x.shape[0]} vs {y.shape[0]})"
            )
        if y.shape[1] != p:
            raise InvalidInputError(f"Y[{c}] has {y.shape[1]} genes, expected {p}")
        if x.shape[1] != k:
            raise InvalidInputError(f"X[{c}] has {x.shape[1]} markers, expected {k}")
        if y.shape[0] < 2:
            raise InvalidInputError(f"condition {c} needs at least two samples")
        n.append(y.shape[0])

    Sk, mask = _as_candidates(Sk, p, k)

    if gene_names is None:
        gene_names = [f"G{i+1}" for i in range(p)]
    if marker_names is None:
        marker_names = [f"M{s+1}" for s in range(k)]
    if len(gene_names) != p:
        raise InvalidInputError("length of 'genes' must equal number of genes")
    if len(marker_names) != k:
        raise InvalidInputError("length of 'markers' must equal number of markers")
    if conditions is None:
        conditions = [f"C{c+1}" for c in range(len(Ys))]
    if len(conditions) != len(Ys):
        raise InvalidInputError("length of 'conditions' must equal number of conditions")

    X_mean = [x.mean(axis=0) for x in Xs]
    Y_mean = [y.mean(axis=0) for y in Ys]

    return SEMData(
        X=[x - m for x, m in zip(Xs, X_mean)],
        Y=[y - m for y, m in zip(Ys, Y_mean)],
        X_mean=X_mean,
        Y_mean=Y_mean,
        Sk=Sk,
        mask=mask,
        n=n,
        p=p,
        k=k,
        genes=list(gene_names),
        markers=list(marker_names),
        conditions=list(conditions),
    )


def valid_sem_data(data):
    """Check that an object is a usable SEMData, raising InvalidInputError if not."""
    required = ('X', 'Y', 'mask', 'Sk', 'n', 'p', 'k')
    if not isinstance(data, dict) or any(key not in data for key in required):
        raise InvalidInputError("data is not a valid SEMData object; use make_sem_data()")
    p, k = data['p'], data['k']
    if data['mask'].shape != (p, k):
        raise InvalidInputError("candidate mask does not match data dimensions")
    for c, (x, y) in enumerate(zip(data['X'], data['Y'])):
        if y.shape != (data['n'][c], p) or x.shape != (data['n'][c], k):
            raise InvalidInputError(f"condition {c} has inconsistent dimensions")
    if not isinstance(data, SEMData):
        data = SEMData(data)
    return data


def intercepts(data, B, F):
    """Per-condition intercepts mu_c = Ybar_c - B_c Ybar_c - F_c Xbar_c."""
    return [ym - B[c] @ ym - F[c] @ xm
            for c, (ym, xm) in enumerate(zip(data['Y_mean'], data['X_mean']))]


def _check_model(data, B, F, what='init'):
    """Coerce (B, F) to per-condition lists of float arrays with the data's shapes."""
    K = len(data['Y'])
    p, k = data['p'], data['k']

    def _listify(m):
        if isinstance(m, np.ndarray) and m.ndim == 2:
            return [m] * K
        return list(m)

    B = [np.array(b, dtype=np.float64) for b in _listify(B)]
    F = [np.array(f, dtype=np.float64) for f in _listify(F)]
    if len(B) != K or len(F) != K:
        raise InvalidInputError(f"{what} must provide B and F for each of {K} conditions")
    for c in range(K):
        if B[c].shape != (p, p):
            raise InvalidInputError(f"{what} B[{c}] must be {p} x {p}, got {B[c].shape}")
        if F[c].shape != (p, k):
            raise InvalidInputError(f"{what} F[{c}] must be {p} x {k}, got {F[c].shape}")
        if not (np.all(np.isfinite(B[c])) and np.all(np.isfinite(F[c]))):
            raise InvalidInputError(f"{what} contains non-finite values")
    return B, F


def residuals(data, B, F):
    """Per-condition residuals R_c = Y_c - Y_c B_c^T - X_c F_c^T."""
    return [y - y @ B[c].T - x @ F[c].T
            for c, (x, y) in enumerate(zip(data['X'], data['Y']))]


def mle_sigma2(data, R):
    """Global noise variance from residuals, floored to stay positive."""
    rss = sum(float(np.sum(r * r)) for r in R)
    return max(rss / (data['p'] * sum(data['n'])), _SIGMA2_FLOOR)
