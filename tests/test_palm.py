"""Tests for the PALM solver and the SEM objective."""

import warnings

import numpy as np
import pytest

import fssem as fs
from fssem.penalties import network_penalty, cis_penalty


def _solver(data, init, lam=0.1, rho=0.0, **kwargs):
    w = fs.AdaptiveWeights.from_fit(init)
    return fs.PALMSolver(data, init,
                         penalty_B=network_penalty(w, lam, rho),
                         penalty_F=cis_penalty(w, lam), **kwargs)


def _quiet_palm(*args, **kwargs):
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', fs.ConvergenceWarning)
        return fs.sem_palm(*args, **kwargs)


# ======================================================================
# State machine
# ======================================================================

class TestStateMachine:

    def test_transitions(self, small_data, small_init):
        s = _solver(small_data, small_init)
        assert s.state is fs.PALMState.INITIALIZED
        expected = [fs.PALMState.BLOCK_UPDATE_B, fs.PALMState.BLOCK_UPDATE_F,
                    fs.PALMState.VARIANCE_UPDATE, fs.PALMState.CONVERGENCE_CHECK]
        assert [s.step() for _ in range(4)] == expected
        nxt = s.step()
        assert nxt in (fs.PALMState.BLOCK_UPDATE_B, fs.PALMState.CONVERGED)
        assert len(s.trace) == 2

    def test_terminal_step_is_noop(self, small_data, small_init):
        s = _solver(small_data, small_init, maxit=1)
        with warnings.catch_warnings():
            warnings.simplefilter('ignore', fs.ConvergenceWarning)
            s.run()
        assert s.state.terminal
        assert s.step() is s.state

    def test_structural_zeros_every_step(self, small_data, small_init):
        s = _solver(small_data, small_init, lam=0.05, maxit=20)
        mask = small_data['mask']
        while not s.state.terminal:
            s.step()
            assert np.all(np.diag(s.B[0]) == 0)
            assert np.all(s.F[0][~mask] == 0)

    def test_step_sizes_recorded(self, small_data, small_init):
        s = _solver(small_data, small_init, maxit=3)
        with warnings.catch_warnings():
            warnings.simplefilter('ignore', fs.ConvergenceWarning)
            s.run()
        assert len(s.step_sizes['B']) > 0
        assert all(t > 0 for t in s.step_sizes['F'])


# ======================================================================
# Fits
# ======================================================================

class TestSemPalm:

    def test_objective_non_increasing(self, small_data, small_init):
        fit = _quiet_palm(small_data, small_init, lam=0.1, maxit=200)
        obj = fit['objective']
        assert np.all(np.diff(obj) <= 1e-9 * np.abs(obj[:-1]).clip(min=1.0))

    def test_objective_non_increasing_fused(self, pair_data, pair_init):
        fit = _quiet_palm(pair_data, pair_init, lam=0.1, rho=0.5, maxit=200)
        obj = fit['objective']
        assert np.all(np.diff(obj) <= 1e-9 * np.abs(obj[:-1]).clip(min=1.0))
        assert fit['rho'] == 0.5
        assert fit.n_conditions == 2

    def test_result_fields(self, small_data, small_init):
        fit = _quiet_palm(small_data, small_init, lam=0.1, maxit=300)
        for key in ('B', 'F', 'mu', 'sigma2', 'status', 'converged', 'niter',
                    'objective', 'loglik'):
            assert key in fit
        assert fit['sigma2'] > 0
        assert fit['status'] in [s.value for s in fs.PALMState if s.terminal]
        assert fit['objective'][-1] == pytest.approx(
            fs.sem_objective(small_data, fit['B'], fit['F'], fit['sigma2'],
                             network_penalty(fs.AdaptiveWeights.from_fit(small_init), 0.1),
                             cis_penalty(fs.AdaptiveWeights.from_fit(small_init), 0.1)))

    def test_stable_network(self, small_data, small_init):
        fit = _quiet_palm(small_data, small_init, lam=0.05, maxit=200)
        assert fs.spectral_radius(fit['B'][0]) < 1

    def test_strict_rescales_unstable_init(self, small_data, small_init):
        p = small_data['p']
        init = {'B': 2.0 * (np.ones((p, p)) - np.eye(p)), 'F': small_init['F'][0]}
        s = _solver(small_data, small_init, maxit=5)
        s2 = fs.PALMSolver(small_data, init, s.penalty_B, s.penalty_F, maxit=5)
        assert fs.spectral_radius(s2.B[0]) == pytest.approx(0.95)
        with warnings.catch_warnings():
            warnings.simplefilter('ignore', fs.ConvergenceWarning)
            fit = s2.run()
        assert fs.spectral_radius(fit['B'][0]) < 1

    def test_fixed_point(self, small_data, small_init):
        tol = 1e-6
        w = fs.AdaptiveWeights.from_fit(small_init)
        fit = _quiet_palm(small_data, small_init, lam=0.2, weights=w,
                          maxit=5000, tol=1e-2 * tol)
        again = _quiet_palm(small_data, fit, lam=0.2, weights=w, maxit=1, tol=tol)
        before, after = fit['objective'][-1], again['objective'][-1]
        assert after <= before + 1e-12 * abs(before)
        assert abs(after - before) <= tol * max(1.0, abs(before))
        assert np.allclose(again['B'][0], fit['B'][0], atol=1e-3)

    def test_zero_is_stationary_above_lambda_max(self, small_data, small_init):
        p, k = small_data['p'], small_data['k']
        w = fs.AdaptiveWeights.from_fit(small_init)
        lmax = fs.lambda_max(small_data, small_init, w)
        zero = {'B': np.zeros((p, p)), 'F': np.zeros((p, k))}
        fit = _quiet_palm(small_data, zero, lam=1.01 * lmax, weights=w, maxit=20)
        assert fs.sem_df(fit['B'], fit['F']) == 0

    def test_nonzero_just_below_lambda_max(self, small_data, small_init):
        p, k = small_data['p'], small_data['k']
        w = fs.AdaptiveWeights.from_fit(small_init)
        lmax = fs.lambda_max(small_data, small_init, w)
        zero = {'B': np.zeros((p, p)), 'F': np.zeros((p, k))}
        fit = _quiet_palm(small_data, zero, lam=0.5 * lmax, weights=w, maxit=50)
        assert fs.sem_df(fit['B'], fit['F']) > 0

    def test_max_iter_warning(self, small_data, small_init):
        with pytest.warns(fs.ConvergenceWarning):
            fit = fs.sem_palm(small_data, small_init, lam=0.01, maxit=2, tol=1e-14)
        assert fit['status'] == 'max_iter_reached'
        assert not fit['converged']
        assert fit['niter'] == 2

    def test_time_limit(self, small_data, small_init):
        fit = _quiet_palm(small_data, small_init, lam=0.01, tol=1e-14,
                          time_limit=1e-9)
        assert fit['status'] == 'timed_out'

    def test_verbose(self, small_data, small_init, capsys):
        _quiet_palm(small_data, small_init, lam=0.1, maxit=2, verbose=True)
        assert "Iteration 1" in capsys.readouterr().out

    def test_rho_ignored_single_condition(self, small_data, small_init):
        with pytest.warns(UserWarning, match="rho is ignored"):
            _quiet_palm(small_data, small_init, lam=0.1, rho=1.0, maxit=2)


# ======================================================================
# Errors
# ======================================================================

class TestPalmErrors:

    def test_degenerate_lipschitz(self, rng):
        X = rng.binomial(2, 0.3, size=(20, 6)).astype(float)
        Y = np.zeros((20, 3))
        d = fs.make_sem_data(X, Y, [[0, 1], [2, 3], [4, 5]])
        init = {'B': np.zeros((3, 3)), 'F': np.zeros((3, 6)), 'sigma2': 1.0}
        with pytest.raises(fs.NumericalError) as exc:
            fs.sem_palm(d, init, lam=0.1, weights=fs.AdaptiveWeights.uniform(3, 6))
        assert exc.value.block == 'B'
        assert "block=B" in str(exc.value)

    def test_singular_init(self, small_data, small_init):
        p = small_data['p']
        B = np.zeros((p, p))
        B[0, 1] = B[1, 0] = 1.0
        init = {'B': B, 'F': small_init['F'][0], 'sigma2': 1.0}
        with pytest.raises(fs.NumericalError):
            fs.sem_palm(small_data, init, lam=0.1, strict=False,
                        weights=fs.AdaptiveWeights.uniform(p, small_data['k']))

    def test_negative_lambda(self, small_data, small_init):
        with pytest.raises(fs.InvalidInputError):
            fs.sem_palm(small_data, small_init, lam=-1.0)

    def test_bad_options(self, small_data, small_init):
        with pytest.raises(fs.InvalidInputError):
            fs.sem_palm(small_data, small_init, lam=0.1, maxit=0)
        with pytest.raises(fs.InvalidInputError):
            fs.sem_palm(small_data, small_init, lam=0.1, tol=0.0)

    def test_init_shape(self, small_data):
        with pytest.raises(fs.InvalidInputError):
            fs.sem_palm(small_data, {'B': np.zeros((3, 3)), 'F': np.zeros((3, 4))}, lam=0.1)
