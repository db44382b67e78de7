"""
Core data classes for fssemPython.

Result containers (SEMData, RidgeFit, RidgeCV, SEMFit, BICPath) are dicts
with attribute access, so components can be read either as ``fit['B']`` or
``fit.B``.
"""

import numpy as np
from copy import deepcopy


class _SEMBase(dict):
    """Base class providing dict-like access and display."""

    def __getattr__(self, name):
        try:
            return self[name]
        except KeyError:
            raise AttributeError(f"'{type(self).__name__}' has no attribute '{name}'")

    def __setattr__(self, name, value):
        self[name] = value

    def __delattr__(self, name):
        try:
            del self[name]
        except KeyError:
            raise AttributeError(f"'{type(self).__name__}' has no attribute '{name}'")

    @property
    def shape(self):
        """(genes, markers) of the model, when known."""
        if 'p' in self and 'k' in self:
            return (self['p'], self['k'])
        if 'F' in self and self['F'] is not None:
            return np.asarray(self['F'][0]).shape
        return None

    def __repr__(self):
        cls = type(self).__name__
        components = list(self.keys())
        s = self.shape
        if s is not None:
            return f"{cls} with {s[0]} genes and {s[1]} markers\nComponents: {', '.join(components)}"
        return f"{cls}\nComponents: {', '.join(components)}"

    def _copy(self):
        """Deep copy of the object."""
        return deepcopy(self)


class SEMData(_SEMBase):
    """Centered expression/genotype data for one or two conditions.

    Components: 'X', 'Y' (lists of centered n_c x k / n_c x p arrays),
    'X_mean', 'Y_mean', 'Sk', 'mask', 'n', 'p', 'k', 'genes', 'markers',
    'conditions'.
    """

    @property
    def n_conditions(self):
        return len(self['Y'])

    @property
    def n_total(self):
        return int(sum(self['n']))


class RidgeFit(_SEMBase):
    """Ridge initializer output: 'B', 'F', 'mu', 'sigma2', 'gamma'."""


class RidgeCV(_SEMBase):
    """Cross-validated ridge strengths: 'gamma', 'gammas', 'cv_error', 'cv_se'."""


class SEMFit(_SEMBase):
    """PALM fit: 'B', 'F', 'mu', 'sigma2', 'lam', 'rho', 'status',
    'converged', 'niter', 'objective', 'loglik'."""

    @property
    def n_conditions(self):
        return len(self['B'])


class BICPath(_SEMBase):
    """BIC grid search: 'lam', 'rho', 'fit', 'table', 'lambdas', 'rhos'."""

    def head(self, n=5):
        """Best grid points by BIC."""
        return self['table'].sort_values('bic').head(n)
