"""
Edge tables of fitted models for downstream reporting.
"""

import numpy as np
import pandas as pd

from .errors import InvalidInputError


def _names(fit, key, size, prefix):
    names = fit.get(key)
    if names is None:
        return [f"{prefix}{i+1}" for i in range(size)]
    return list(names)


def _condition(fit, condition):
    K = len(fit['B'])
    if not -K <= condition < K:
        raise InvalidInputError(f"condition must be in [0, {K})")
    return condition


def network_edges(fit, condition=0, genes=None):
    """Nonzero entries of B as a regulator -> target table.

    Parameters
    ----------
    fit : SEMFit
        Fitted model.
    condition : int
        Which condition's network to report.
    genes : list of str, optional
        Gene names; defaults to G1..Gp.

    Returns
    -------
    DataFrame with 'regulator', 'target', 'weight', sorted by |weight|.
    """
    c = _condition(fit, condition)
    B = fit['B'][c]
    genes = list(genes) if genes is not None else _names(fit, 'genes', B.shape[0], 'G')
    target, regulator = np.nonzero(B)
    table = pd.DataFrame({
        'regulator': [genes[j] for j in regulator],
        'target': [genes[i] for i in target],
        'weight': B[target, regulator],
    })
    order = np.argsort(-np.abs(table['weight'].values), kind='stable')
    return table.iloc[order].reset_index(drop=True)


def eqtl_table(fit, condition=0, genes=None, markers=None):
    """Nonzero cis effects as a marker -> gene table, sorted by |effect|."""
    c = _condition(fit, condition)
    F = fit['F'][c]
    genes = list(genes) if genes is not None else _names(fit, 'genes', F.shape[0], 'G')
    markers = (list(markers) if markers is not None
               else _names(fit, 'markers', F.shape[1], 'M'))
    gene, marker = np.nonzero(F)
    table = pd.DataFrame({
        'marker': [markers[s] for s in marker],
        'gene': [genes[i] for i in gene],
        'effect': F[gene, marker],
    })
    order = np.argsort(-np.abs(table['effect'].values), kind='stable')
    return table.iloc[order].reset_index(drop=True)


def differential_edges(fit, genes=None):
    """Network entries that differ between the two conditions.

    Returns
    -------
    DataFrame with 'regulator', 'target', 'weight1', 'weight2', 'diff'
    sorted by |diff|.
    """
    if len(fit['B']) != 2:
        raise InvalidInputError("differential edges need a two-condition fit")
    B1, B2 = fit['B']
    genes = list(genes) if genes is not None else _names(fit, 'genes', B1.shape[0], 'G')
    target, regulator = np.nonzero(B1 != B2)
    table = pd.DataFrame({
        'regulator': [genes[j] for j in regulator],
        'target': [genes[i] for i in target],
        'weight1': B1[target, regulator],
        'weight2': B2[target, regulator],
    })
    table['diff'] = table['weight2'] - table['weight1']
    order = np.argsort(-np.abs(table['diff'].values), kind='stable')
    return table.iloc[order].reset_index(drop=True)
