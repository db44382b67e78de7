"""Shared fixtures for fssemPython tests."""

import numpy as np
import pytest

import fssem as fs


def simulate_sem(n=100, p=20, k=60, n_conditions=1, sigma2=0.01,
                 edge_prob=0.1, seed=42):
    """Random acyclic SEM with one true cis-eQTL per gene.

    Each gene owns k // p consecutive candidate markers; the first one is
    the true eQTL. The second condition (if any) drops one edge of B and
    adds another.
    """
    rng = np.random.RandomState(seed)
    nk = k // p
    Sk = [np.arange(i * nk, (i + 1) * nk) for i in range(p)]

    F = np.zeros((p, k))
    for i in range(p):
        F[i, Sk[i][0]] = rng.uniform(0.5, 1.0) * rng.choice([-1, 1])

    order = rng.permutation(p)
    B = np.zeros((p, p))
    for a in range(1, p):
        for b in range(a):
            if rng.rand() < edge_prob:
                B[order[a], order[b]] = rng.uniform(0.3, 0.8) * rng.choice([-1, 1])

    Bs = [B]
    if n_conditions == 2:
        B2 = B.copy()
        tgt, reg = np.nonzero(B2)
        if len(tgt):
            B2[tgt[0], reg[0]] = 0.0
        for a in range(1, p):
            i, j = order[a], order[0]
            if B2[i, j] == 0 and B[i, j] == 0:
                B2[i, j] = 0.7
                break
        Bs.append(B2)

    Xs, Ys = [], []
    for Bc in Bs:
        X = rng.binomial(2, 0.3, size=(n, k)).astype(np.float64)
        E = rng.normal(0.0, np.sqrt(sigma2), size=(n, p)) if sigma2 > 0 else np.zeros((n, p))
        Y = (X @ F.T + E) @ np.linalg.inv(np.eye(p) - Bc).T
        Xs.append(X)
        Ys.append(Y)

    return {'X': Xs, 'Y': Ys, 'Sk': Sk, 'B': Bs, 'F': [F] * len(Bs)}


def tpr(est, truth):
    """Fraction of true nonzeros recovered as nonzero."""
    est, truth = np.asarray(est), np.asarray(truth)
    pos = truth != 0
    return float(np.sum((est != 0) & pos)) / max(int(np.sum(pos)), 1)


@pytest.fixture
def rng():
    """Seeded random number generator for reproducibility."""
    return np.random.RandomState(42)


@pytest.fixture(scope="module")
def small_sim():
    """One condition, 80 samples x 8 genes x 24 markers."""
    return simulate_sem(n=80, p=8, k=24, sigma2=0.05, edge_prob=0.3, seed=1)


@pytest.fixture(scope="module")
def small_data(small_sim):
    return fs.make_sem_data(small_sim['X'], small_sim['Y'], small_sim['Sk'])


@pytest.fixture(scope="module")
def small_init(small_data):
    return fs.ridge_regression(small_data, 0.1)


@pytest.fixture(scope="module")
def pair_sim():
    """Two conditions sharing most of the network."""
    return simulate_sem(n=80, p=8, k=24, n_conditions=2, sigma2=0.05,
                        edge_prob=0.3, seed=2)


@pytest.fixture(scope="module")
def pair_data(pair_sim):
    return fs.make_sem_data(pair_sim['X'], pair_sim['Y'], pair_sim['Sk'])


@pytest.fixture(scope="module")
def pair_init(pair_data):
    return fs.ridge_regression(pair_data, 0.1)
