# taxa_network/dissimilarity.py
"""
Pairwise association statistics between taxon abundance vectors.

Provides the symmetric Kullback-Leibler divergence between two count vectors,
its triangular evaluation over a set of vectors, and a permutation based
(optionally bootstrap assisted) empirical p-value for a single taxon pair
under one of four association methods:

- ``spearman`` and ``pearson``: correlations, larger means more associated.
- ``bray`` and ``kld``: dissimilarities, larger means less associated.

All functions are pure. Randomness is drawn from the generator passed in,
never from the global numpy stream.
"""

import warnings
from contextlib import contextmanager
from enum import Enum
from itertools import combinations
from typing import Callable, Dict, Optional, Sequence, Union

import numpy as np
from scipy import stats
from scipy.spatial.distance import braycurtis

from .exceptions import DimensionMismatch, UnsupportedMethod

DEFAULT_PSEUDOCOUNT = 1e-8
NEUTRAL_PVALUE = 0.5

RandomSource = Optional[Union[int, np.random.Generator]]


class AssociationMethod(str, Enum):
    """Association statistics supported by the pair estimator."""

    SPEARMAN = 'spearman'
    PEARSON = 'pearson'
    BRAY = 'bray'
    KLD = 'kld'

    @property
    def is_dissimilarity(self) -> bool:
        return self in (AssociationMethod.BRAY, AssociationMethod.KLD)

    @classmethod
    def parse(cls, method: Union[str, 'AssociationMethod']) -> 'AssociationMethod':
        """Resolve a method name (case-insensitive) or raise UnsupportedMethod."""
        if isinstance(method, cls):
            return method
        try:
            return cls(str(method).strip().lower())
        except ValueError:
            raise UnsupportedMethod(method, [m.value for m in cls]) from None


@contextmanager
def _quiet_numerics():
    # zero-variance and empty inputs are expected here and resolve to NaN
    with warnings.catch_warnings(), np.errstate(all='ignore'):
        warnings.simplefilter('ignore')
        yield


def _as_vector(values) -> np.ndarray:
    return np.asarray(values, dtype=float).reshape(-1)


def _check_lengths(x: np.ndarray, y: np.ndarray) -> None:
    if x.shape[0] != y.shape[0]:
        raise DimensionMismatch(x.shape[0], y.shape[0])


def _normalize(values: np.ndarray, pseudocount: float) -> np.ndarray:
    filled = np.where(values == 0, pseudocount, values)
    with np.errstate(divide='ignore', invalid='ignore'):
        return filled / filled.sum()


def _divergence(x: np.ndarray, y: np.ndarray, pseudocount: float) -> float:
    p = _normalize(x, pseudocount)
    q = _normalize(y, pseudocount)
    with np.errstate(divide='ignore', invalid='ignore'):
        terms = p * np.log(p / q) + q * np.log(q / p)
    # undefined terms contribute nothing
    return float(np.nansum(terms))


def compute_divergence(x: Sequence[float], y: Sequence[float],
                       pseudocount: float = DEFAULT_PSEUDOCOUNT) -> float:
    """
    Symmetric Kullback-Leibler divergence between two count vectors.

    Zero entries are replaced with ``pseudocount`` and each vector is scaled
    to sum to one before the divergence is taken in both directions and
    summed. Indices whose term is undefined are skipped rather than raised.

    Args:
        x: Non-negative counts of the first taxon, one entry per sample.
        y: Non-negative counts of the second taxon, same sample order.
        pseudocount: Replacement value for zero counts (default: 1e-8).

    Returns:
        Non-negative divergence. Exactly 0.0 for identical vectors and
        exactly symmetric in its arguments.

    Raises:
        DimensionMismatch: If ``x`` and ``y`` differ in length.
    """
    x = _as_vector(x)
    y = _as_vector(y)
    _check_lengths(x, y)
    return _divergence(x, y, pseudocount)


def compute_divergence_matrix(vectors, pseudocount: float = DEFAULT_PSEUDOCOUNT) -> np.ndarray:
    """
    Symmetric divergence matrix over a set of count vectors.

    Each unordered pair is evaluated once and mirrored; the diagonal is fixed
    at zero.

    Args:
        vectors: Sequence of equal-length count vectors, or a 2-D array /
            DataFrame whose rows are the vectors.
        pseudocount: Replacement value for zero counts.

    Returns:
        Read-only ``n x n`` array indexed like ``vectors``.
    """
    if hasattr(vectors, 'to_numpy'):
        vectors = vectors.to_numpy()
    rows = [_as_vector(v) for v in vectors]
    n = len(rows)
    matrix = np.zeros((n, n), dtype=float)
    for i, j in combinations(range(n), 2):
        _check_lengths(rows[i], rows[j])
        matrix[i, j] = matrix[j, i] = _divergence(rows[i], rows[j], pseudocount)
    matrix.setflags(write=False)
    return matrix


def _spearman(x: np.ndarray, y: np.ndarray, pseudocount: float) -> float:
    if x.shape[0] < 2:
        return np.nan
    with _quiet_numerics():
        return float(stats.spearmanr(x, y)[0])


def _pearson(x: np.ndarray, y: np.ndarray, pseudocount: float) -> float:
    if x.shape[0] < 2:
        return np.nan
    with _quiet_numerics():
        return float(stats.pearsonr(x, y)[0])


def _bray(x: np.ndarray, y: np.ndarray, pseudocount: float) -> float:
    if x.shape[0] == 0:
        return np.nan
    with _quiet_numerics():
        return float(braycurtis(x, y))


def _kld(x: np.ndarray, y: np.ndarray, pseudocount: float) -> float:
    return _divergence(x, y, pseudocount)


_STATISTICS: Dict[AssociationMethod, Callable[[np.ndarray, np.ndarray, float], float]] = {
    AssociationMethod.SPEARMAN: _spearman,
    AssociationMethod.PEARSON: _pearson,
    AssociationMethod.BRAY: _bray,
    AssociationMethod.KLD: _kld,
}


def pair_statistic(x: Sequence[float], y: Sequence[float],
                   method: Union[str, AssociationMethod] = AssociationMethod.SPEARMAN,
                   pseudocount: float = DEFAULT_PSEUDOCOUNT) -> float:
    """
    Association statistic between two vectors for one method.

    Returns NaN where the statistic is undefined (e.g. a constant vector
    under a correlation method).

    Raises:
        UnsupportedMethod: If ``method`` is not a known method name.
        DimensionMismatch: If ``x`` and ``y`` differ in length.
    """
    method = AssociationMethod.parse(method)
    x = _as_vector(x)
    y = _as_vector(y)
    _check_lengths(x, y)
    return _STATISTICS[method](x, y, pseudocount)


def _row(matrix, index: int) -> np.ndarray:
    if hasattr(matrix, 'iloc'):
        return _as_vector(matrix.iloc[index])
    return _as_vector(matrix[index])


def _fold(p_value) -> float:
    if p_value is None or not np.isfinite(p_value):
        return NEUTRAL_PVALUE
    p_value = float(p_value)
    if p_value > 0.5:
        p_value = 1.0 - p_value
    return p_value


def estimate_pair_pvalue(matrix, i: int, j: int, permutations: int = 1000,
                         method: Union[str, AssociationMethod] = AssociationMethod.SPEARMAN,
                         bootstrap: bool = False, rng: RandomSource = None,
                         pseudocount: float = DEFAULT_PSEUDOCOUNT) -> float:
    """
    Empirical p-value for the association between rows ``i`` and ``j``.

    A null distribution is built by shuffling row ``i`` ``permutations``
    times and recomputing the statistic against the unmodified row ``j``.
    Correlation methods read the lower tail of the null, dissimilarity
    methods the upper tail. With ``bootstrap``, the same positions are
    resampled with replacement from both rows to build a bootstrap
    distribution, and the p-value is the tail probability of the null mean
    under a normal fitted to the bootstrap distribution.

    Either distribution keeping fewer than a third of its draws finite gives
    the neutral value 0.5, as does any non-finite result. Values above 0.5
    are folded (``1 - p``) so the result measures evidence of association in
    either direction.

    Args:
        matrix: Rows of count vectors (sequence, 2-D array or DataFrame).
        i: Row index of the permuted vector.
        j: Row index of the fixed partner vector.
        permutations: Number of permutation (and bootstrap) draws.
        method: One of 'spearman', 'pearson', 'bray', 'kld'.
        bootstrap: Combine the null with a bootstrap distribution.
        rng: ``numpy.random.Generator`` or seed. Pass the same generator
            across calls for a reproducible run.
        pseudocount: Zero replacement used by the 'kld' statistic.

    Returns:
        p-value in [0, 0.5].

    Raises:
        UnsupportedMethod: If ``method`` is not a known method name.
        DimensionMismatch: If the two rows differ in length.
        ValueError: If ``permutations`` is negative.
    """
    method = AssociationMethod.parse(method)
    if permutations < 0:
        raise ValueError("permutations must be non-negative.")
    x = _row(matrix, i)
    y = _row(matrix, j)
    _check_lengths(x, y)

    rng = np.random.default_rng(rng)
    statistic = _STATISTICS[method]
    min_finite = permutations / 3.0
    lower_tail = not method.is_dissimilarity

    observed = statistic(x, y, pseudocount)

    null = np.array([statistic(rng.permutation(x), y, pseudocount)
                     for _ in range(permutations)], dtype=float)
    null = null[np.isfinite(null)]
    if null.size == 0 or null.size < min_finite:
        return NEUTRAL_PVALUE

    if bootstrap:
        n = x.shape[0]
        boot = []
        for _ in range(permutations):
            idx = rng.integers(0, n, size=n)
            boot.append(statistic(x[idx], y[idx], pseudocount))
        boot = np.asarray(boot, dtype=float)
        boot = boot[np.isfinite(boot)]
        if boot.size == 0 or boot.size < min_finite:
            return NEUTRAL_PVALUE
        with _quiet_numerics():
            loc, scale = boot.mean(), boot.std(ddof=1)
            if lower_tail:
                p_value = stats.norm.cdf(null.mean(), loc=loc, scale=scale)
            else:
                p_value = stats.norm.sf(null.mean(), loc=loc, scale=scale)
    else:
        if not np.isfinite(observed):
            return NEUTRAL_PVALUE
        if lower_tail:
            p_value = np.mean(null <= observed)
        else:
            p_value = np.mean(null >= observed)

    return _fold(p_value)
