"""
Candidate cis-eQTL pools.

Each gene i owns a fixed set Sk[i] of marker indices (0-based) that may carry
a nonzero cis effect. Every entry of F outside the pool is held at exactly
zero, so the pool is stored both as index arrays and as a p x k boolean mask.
"""

import numpy as np

from .errors import InvalidInputError


def cis_candidates(gene_pos, marker_pos, window, gene_chrom=None, marker_chrom=None):
    """Markers within a genomic window of each gene.

    Parameters
    ----------
    gene_pos : array-like
        Gene positions (length p), e.g. TSS coordinates.
    marker_pos : array-like
        Marker positions (length k).
    window : float
        Maximum distance between a gene and a candidate marker.
    gene_chrom, marker_chrom : array-like, optional
        Chromosome labels. When given, only markers on the gene's own
        chromosome qualify.

    Returns
    -------
    list of ndarray
        Sorted marker indices for each gene.
    """
    gene_pos = np.asarray(gene_pos, dtype=np.float64).ravel()
    marker_pos = np.asarray(marker_pos, dtype=np.float64).ravel()
    if window < 0:
        raise InvalidInputError("window must be non-negative")
    if (gene_chrom is None) != (marker_chrom is None):
        raise InvalidInputError("gene_chrom and marker_chrom must be given together")

    near = np.abs(gene_pos[:, None] - marker_pos[None, :]) <= window
    if gene_chrom is not None:
        gene_chrom = np.asarray(gene_chrom).ravel()
        marker_chrom = np.asarray(marker_chrom).ravel()
        if len(gene_chrom) != len(gene_pos) or len(marker_chrom) != len(marker_pos):
            raise InvalidInputError("chromosome labels must match positions in length")
        near &= gene_chrom[:, None] == marker_chrom[None, :]
    return mask_to_candidates(near)


def candidate_mask(Sk, k):
    """Convert per-gene index sets into a p x k boolean mask.

    Raises InvalidInputError for negative or out-of-range indices.
    """
    k = int(k)
    mask = np.zeros((len(Sk), k), dtype=bool)
    for i, idx in enumerate(Sk):
        idx = np.asarray(idx).ravel()
        if idx.size == 0:
            continue
        if idx.dtype.kind not in ('i', 'u'):
            if not np.all(np.equal(np.mod(idx, 1), 0)):
                raise InvalidInputError(f"candidate indices of gene {i} must be integers")
            idx = idx.astype(np.int64)
        if idx.min() < 0 or idx.max() >= k:
            raise InvalidInputError(
                f"candidate indices of gene {i} out of range [0, {k})"
            )
        mask[i, idx] = True
    return mask


def mask_to_candidates(mask):
    """Inverse of candidate_mask."""
    mask = np.asarray(mask, dtype=bool)
    return [np.flatnonzero(row) for row in mask]


def project_candidates(F, mask, out=None):
    """Zero every entry of F outside the candidate pool."""
    F = np.asarray(F, dtype=np.float64)
    if F.shape != mask.shape:
        raise InvalidInputError(f"F has shape {F.shape}, candidate mask has {mask.shape}")
    if out is None:
        return np.where(mask, F, 0.0)
    np.copyto(out, F)
    out[~mask] = 0.0
    return out


def _as_candidates(Sk, p, k):
    """Normalize Sk (index lists or boolean mask) to (list, mask)."""
    if isinstance(Sk, np.ndarray) and Sk.ndim == 2 and Sk.dtype == bool:
        if Sk.shape != (p, k):
            raise InvalidInputError(f"candidate mask must be {p} x {k}, got {Sk.shape}")
        return mask_to_candidates(Sk), Sk.copy()
    Sk = list(Sk)
    if len(Sk) != p:
        raise InvalidInputError(f"Sk must have one entry per gene ({p}), got {len(Sk)}")
    mask = candidate_mask(Sk, k)
    return mask_to_candidates(mask), mask
