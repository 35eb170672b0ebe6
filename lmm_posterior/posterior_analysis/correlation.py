"""
Correlations and covariances implied by Cholesky-factor draws.

A varying intercepts and slopes model samples the correlation structure of
each random-effect group (subjects, items) as a lower-triangular Cholesky
factor L. The correlation between components i and j is read off
Omega = L L^T after normalizing by the diagonal. Pairs are 1-based, like the
sampler labels (L_u[2,1]).
"""
import logging
from typing import Optional, Tuple

import numpy as np

from lmm_posterior.posterior_analysis.draw_store import DrawStore
from lmm_posterior.posterior_analysis.errors import (
    DegenerateVarianceError,
    InsufficientDrawsError,
    InvalidParameterError,
)

logger = logging.getLogger(__name__)


def _as_factors(cholesky) -> np.ndarray:
    factors = np.asarray(cholesky, dtype=float)
    if factors.ndim == 2:
        factors = factors[np.newaxis]

    if factors.ndim != 3 or factors.shape[1] != factors.shape[2]:
        raise InvalidParameterError(f"Expected Cholesky draws of shape (n, d, d), got {factors.shape}")
    if factors.shape[1] < 2:
        raise InvalidParameterError("Correlations need a Cholesky factor of dimension 2 or more")
    if factors.shape[0] == 0:
        raise InsufficientDrawsError("No Cholesky factor draws")
    if np.any(np.triu(factors, k=1) != 0):
        raise InvalidParameterError("Cholesky factor draws must be lower-triangular")
    return factors


def _validate_pair(pair: Tuple[int, int], dim: int) -> Tuple[int, int]:
    if len(pair) != 2:
        raise InvalidParameterError(f"A correlation pair needs two indices, got {pair}")
    i, j = pair
    if not all(isinstance(k, (int, np.integer)) and 1 <= k <= dim for k in (i, j)):
        raise InvalidParameterError(f"Pair {pair} out of range for dimension {dim}")
    return int(i) - 1, int(j) - 1


def implied_covariance(cholesky) -> np.ndarray:
    """Omega = L L^T for every draw"""
    factors = _as_factors(cholesky)
    return factors @ np.swapaxes(factors, -1, -2)


def correlation_draws(cholesky, pair: Tuple[int, int] = (1, 2)) -> np.ndarray:
    """
    Per-draw correlation between components `pair` of the covariance implied
    by Cholesky factor draws of shape (n_draws, d, d).

    Raises DegenerateVarianceError when either component has zero variance
    in any draw.
    """
    omega = implied_covariance(cholesky)
    i, j = _validate_pair(pair, omega.shape[1])

    variance_i = omega[:, i, i]
    variance_j = omega[:, j, j]
    degenerate = (variance_i == 0) | (variance_j == 0)
    if np.any(degenerate):
        raise DegenerateVarianceError(
            f"Zero variance for pair {pair} in {int(degenerate.sum())} of {len(omega)} draws"
        )

    rho = omega[:, i, j] / np.sqrt(variance_i * variance_j)
    return np.clip(rho, -1.0, 1.0)


def correlation_matrix_draws(cholesky) -> np.ndarray:
    """Full per-draw correlation matrices, shape (n_draws, d, d)"""
    omega = implied_covariance(cholesky)
    variances = np.diagonal(omega, axis1=1, axis2=2)
    if np.any(variances == 0):
        raise DegenerateVarianceError("Zero variance component in Cholesky factor draws")

    sd = np.sqrt(variances)
    corr = np.clip(omega / (sd[:, :, np.newaxis] * sd[:, np.newaxis, :]), -1.0, 1.0)
    idx = np.arange(corr.shape[1])
    corr[:, idx, idx] = 1.0
    return corr


def covariance_draws(cholesky, sd) -> np.ndarray:
    """
    Random-effect covariance matrices diag(sd) L L^T diag(sd).

    `sd` holds the per-component standard deviations (e.g. sigma_u), either
    one vector shared by all draws or one vector per draw.
    """
    omega = implied_covariance(cholesky)
    n_draws, dim = omega.shape[:2]

    scale = np.asarray(sd, dtype=float)
    if scale.ndim == 1:
        scale = np.broadcast_to(scale, (n_draws, scale.shape[0]))
    if scale.shape != (n_draws, dim):
        raise InvalidParameterError(f"Expected standard deviations of shape ({n_draws}, {dim}), got {scale.shape}")
    if np.any(scale < 0):
        raise InvalidParameterError("Standard deviations must be non-negative")

    return scale[:, :, np.newaxis] * omega * scale[:, np.newaxis, :]


def correlation_name(factor: str, pair: Tuple[int, int]) -> str:
    return f"rho_{factor}_{pair[0]}{pair[1]}"


def derive_correlation(store: DrawStore, factor: str, pair: Tuple[int, int] = (1, 2),
                       name: Optional[str] = None) -> DrawStore:
    """
    Add the correlation implied by Cholesky factor `factor` to a store as a
    synthetic scalar parameter, so it can be summarized like any other.
    """
    factors = store.get_array(factor)
    if factors.ndim != 3:
        raise InvalidParameterError(f"Parameter '{factor}' is not a matrix parameter")

    rho = correlation_draws(factors, pair)
    name = name or correlation_name(factor, pair)
    logger.debug(f"Derived {name} from {factor} over {len(rho)} draws")
    return store.with_parameter(name, rho)
