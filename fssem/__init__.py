"""
fssemPython: fused sparse structural equation models for gene regulatory
networks and cis-eQTL effects.

Joint estimation of a sparse directed network B and sparse cis effects F from
expression and genotype data under one or two conditions, by proximal
alternating linearized minimization with BIC-selected penalties.
"""

__version__ = "0.1.0"

# --- Classes and errors ---
from .classes import SEMData, RidgeFit, RidgeCV, SEMFit, BICPath
from .errors import FSSEMError, InvalidInputError, NumericalError, ConvergenceWarning

# --- Data ---
from .data import make_sem_data, valid_sem_data

# --- Candidate pools ---
from .candidates import (
    cis_candidates,
    candidate_mask,
    mask_to_candidates,
    project_candidates,
)

# --- Ridge initializer ---
from .ridge import ridge_regression, cv_ridge_regression

# --- Penalties ---
from .penalties import (
    AdaptiveWeights,
    AdaptiveLasso,
    FusedAdaptiveLasso,
    adaptive_weights,
    soft_threshold,
    fused_prox,
)

# --- PALM ---
from .palm import PALMSolver, PALMState, sem_palm, sem_objective, sem_loglik

# --- BIC grid search ---
from .bic import bic_grid_search, bic_score, select_by_bic, lambda_max, rho_max, sem_df

# --- Trans effects ---
from .effects import trans_effects, neumann_trans_effects, fit_trans_effects

# --- Results ---
from .results import network_edges, eqtl_table, differential_edges

# --- Linear algebra ---
from .linalg import spectral_radius
