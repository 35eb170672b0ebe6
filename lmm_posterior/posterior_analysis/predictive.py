import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional, Union

import numpy as np

from lmm_posterior.config import DEFAULT_STATISTIC
from lmm_posterior.posterior_analysis.errors import (
    EmptyReplicateSetError,
    InsufficientDrawsError,
    InvalidParameterError,
)

logger = logging.getLogger(__name__)

Statistic = Callable[[np.ndarray], float]

STATISTICS = {
    'min': np.min,
    'max': np.max,
    'mean': np.mean,
    'median': np.median,
    'sd': lambda data: np.std(data, ddof=1),
}

# q95 -> 0.95, q2.5 -> 0.025
QUANTILE_PATTERN = re.compile(r'^q(\d{1,2}(?:\.\d+)?|100)$')


def quantile_statistic(q: float) -> Statistic:
    """Test statistic returning the q-th empirical quantile of a data set"""
    if not 0 <= q <= 1:
        raise InvalidParameterError(f"Quantile must lie in [0, 1], got {q}")

    def statistic(data):
        return float(np.quantile(np.asarray(data, dtype=float), q))

    statistic.__name__ = f"q{q * 100:g}"
    return statistic


def get_statistic(name: str) -> Statistic:
    """Resolve a statistic name ('max', 'sd', 'q95', ...) to a callable"""
    key = name.strip().lower()
    if key in STATISTICS:
        return STATISTICS[key]

    match = QUANTILE_PATTERN.match(key)
    if match:
        return quantile_statistic(float(match.group(1)) / 100)

    raise InvalidParameterError(
        f"Unknown test statistic '{name}'. Use one of {sorted(STATISTICS)} or q<percent>, e.g. q95"
    )


def statistic_name(statistic: Union[str, Statistic]) -> str:
    if isinstance(statistic, str):
        return statistic
    return getattr(statistic, '__name__', repr(statistic))


@dataclass
class PredictiveCheckResult:
    statistic: str
    t_obs: float
    t_rep: np.ndarray
    p_value: float

    @property
    def n_replicates(self) -> int:
        return len(self.t_rep)


def _as_replicates(replicates, observed: np.ndarray) -> np.ndarray:
    if replicates is None or len(replicates) == 0:
        raise EmptyReplicateSetError("No posterior predictive replicates supplied")

    rows = [np.asarray(replicate, dtype=float) for replicate in replicates]
    for number, row in enumerate(rows):
        if row.shape != observed.shape:
            raise InvalidParameterError(
                f"Replicate {number} has shape {row.shape}, observed data has shape {observed.shape}"
            )
    return np.stack(rows)


def _evaluate(statistic: Statistic, data: np.ndarray) -> float:
    value = statistic(data)
    if np.ndim(value) != 0:
        raise InvalidParameterError("Test statistic must return a scalar")
    return float(value)


def predictive_check(observed, replicates, statistic: Union[str, Statistic] = DEFAULT_STATISTIC) -> PredictiveCheckResult:
    """
    Posterior predictive check of a scalar test statistic T.

    T_obs = T(observed), T_rep[i] = T(replicates[i]) and the p-value is the
    fraction of replicates with T_rep[i] > T_obs. Ties count as not exceeding.
    """
    func = get_statistic(statistic) if isinstance(statistic, str) else statistic
    observed = np.asarray(observed, dtype=float)
    rows = _as_replicates(replicates, observed)

    t_obs = _evaluate(func, observed)
    t_rep = np.array([_evaluate(func, row) for row in rows])
    p_value = float(np.mean(t_rep > t_obs))

    logger.debug(f"Predictive check over {len(t_rep)} replicates: T_obs={t_obs}, p={p_value}")
    return PredictiveCheckResult(
        statistic=statistic_name(statistic),
        t_obs=t_obs,
        t_rep=t_rep,
        p_value=p_value,
    )


def sample_replicates(replicates, size: int, seed: Optional[int] = None, return_indices: bool = False):
    """
    Draw `size` replicate data sets without replacement, e.g. to plot a few
    of them next to the observed data. The input collection is left as is;
    the same seed always picks the same replicates.
    """
    if replicates is None or len(replicates) == 0:
        raise EmptyReplicateSetError("No posterior predictive replicates supplied")

    rows = np.array([np.asarray(replicate, dtype=float) for replicate in replicates])
    if size < 1:
        raise InvalidParameterError(f"Sample size must be positive, got {size}")
    if size > len(rows):
        raise InsufficientDrawsError(f"Cannot sample {size} of {len(rows)} replicates")

    rng = np.random.default_rng(seed)
    indices = np.sort(rng.choice(len(rows), size=size, replace=False))
    if return_indices:
        return rows[indices], indices
    return rows[indices]
