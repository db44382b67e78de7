"""End-to-end recovery on simulated data.

These run the full ridge -> PALM pipeline at a realistic size and check
that the planted network and cis effects are found.
"""

import warnings

import numpy as np
import pytest

import fssem as fs
from conftest import simulate_sem, tpr


@pytest.fixture(scope="module")
def sim():
    return simulate_sem(n=100, p=20, k=60, sigma2=0.01, edge_prob=0.1, seed=42)


@pytest.fixture(scope="module")
def data(sim):
    return fs.make_sem_data(sim['X'], sim['Y'], sim['Sk'])


@pytest.fixture(scope="module")
def init(data):
    cv = fs.cv_ridge_regression(data, gammas=np.logspace(-3, 0, 3), nfold=3)
    return fs.ridge_regression(data, cv['gamma'])


class TestRecovery:

    def test_single_condition(self, sim, data, init):
        lam = 0.01 * fs.lambda_max(data, init)
        with warnings.catch_warnings():
            warnings.simplefilter('ignore', fs.ConvergenceWarning)
            fit = fs.sem_palm(data, init, lam, maxit=1000, tol=1e-5)
        assert fit['converged']
        assert tpr(fit['B'][0], sim['B'][0]) > 0.5
        assert tpr(fit['F'][0], sim['F'][0]) > 0.5
        assert fs.spectral_radius(fit['B'][0]) < 1

    def test_grid_search_pipeline(self, sim, data, init):
        path = fs.bic_grid_search(data, init, nlambda=5, maxit=300, tol=1e-5)
        fit = path['fit']
        assert tpr(fit['F'][0], sim['F'][0]) > 0.5
        edges = fs.network_edges(fit, genes=data['genes'])
        assert len(edges) == int(np.sum(fit['B'][0] != 0))
        T = fs.fit_trans_effects(fit)[0]
        assert T.shape == (20, 60)

    def test_two_conditions(self):
        sim = simulate_sem(n=100, p=10, k=30, n_conditions=2, sigma2=0.01,
                           edge_prob=0.2, seed=7)
        d = fs.make_sem_data(sim['X'], sim['Y'], sim['Sk'])
        init = fs.ridge_regression(d, 0.1)
        lam = 0.01 * fs.lambda_max(d, init)
        rho = 0.01 * fs.rho_max(d, init)
        with warnings.catch_warnings():
            warnings.simplefilter('ignore', fs.ConvergenceWarning)
            fit = fs.sem_palm(d, init, lam, rho, maxit=1000, tol=1e-5)
        for c in range(2):
            assert tpr(fit['B'][c], sim['B'][c]) > 0.5
            assert fs.spectral_radius(fit['B'][c]) < 1
        assert len(fs.differential_edges(fit)) > 0
