import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Union

import arviz as az
import numpy as np
import pandas as pd

from lmm_posterior.config import DEFAULT_COVERAGE
from lmm_posterior.posterior_analysis.draw_store import DrawStore, format_label, parse_label
from lmm_posterior.posterior_analysis.errors import InsufficientDrawsError, InvalidParameterError

logger = logging.getLogger(__name__)


class PointEstimate(Enum):
    MEAN = 'mean'
    MEDIAN = 'median'


class IntervalMethod(Enum):
    EQUAL_TAILED = 'quantile'
    HPD = 'hpd'


@dataclass(frozen=True)
class CredibleInterval:
    lower: float
    upper: float
    coverage: float
    method: IntervalMethod

    @property
    def width(self) -> float:
        return self.upper - self.lower

    def contains(self, value: float) -> bool:
        return self.lower <= value <= self.upper


@dataclass
class ParameterSummary:
    parameter: str
    estimate: float
    point: PointEstimate
    sd: float
    n_draws: int
    intervals: List[CredibleInterval] = field(default_factory=list)

    def interval(self, coverage: float, method: IntervalMethod = IntervalMethod.EQUAL_TAILED) -> CredibleInterval:
        for interval in self.intervals:
            if interval.method == method and math.isclose(interval.coverage, coverage):
                return interval
        raise InvalidParameterError(f"No {method.value} interval at coverage {coverage} for {self.parameter}")


def validate_coverage(coverage) -> float:
    """Coverage must be a probability strictly between 0 and 1"""
    try:
        value = float(coverage)
    except (TypeError, ValueError):
        raise InvalidParameterError(f"Coverage must be a number, got {coverage!r}")
    if isinstance(coverage, bool) or not 0 < value < 1:
        raise InvalidParameterError(f"Coverage must lie in (0, 1), got {coverage!r}")
    return value


def _as_draws(draws) -> np.ndarray:
    values = np.asarray(draws, dtype=float).ravel()
    if values.size == 0:
        raise InsufficientDrawsError("No draws to summarize")
    if not np.all(np.isfinite(values)):
        raise InvalidParameterError("Draws contain NaN or infinite values")
    return values


def point_estimate(draws, method: Union[PointEstimate, str] = PointEstimate.MEAN) -> float:
    values = _as_draws(draws)
    method = PointEstimate(method)
    if method == PointEstimate.MEDIAN:
        return float(np.median(values))
    return float(np.mean(values))


def quantile_interval(draws, coverage: float = DEFAULT_COVERAGE) -> CredibleInterval:
    """
    Equal-tailed interval: the (1-p)/2 and 1-(1-p)/2 empirical quantiles.

    Quantiles interpolate linearly between order statistics, i.e. position
    q * (n - 1) in the sorted draws (numpy's default 'linear' method).
    """
    coverage = validate_coverage(coverage)
    values = _as_draws(draws)
    tail = (1 - coverage) / 2
    lower, upper = np.quantile(values, [tail, 1 - tail], method='linear')
    return CredibleInterval(float(lower), float(upper), coverage, IntervalMethod.EQUAL_TAILED)


def hpd_window_size(n_draws: int, coverage: float) -> int:
    # 0.7 * 10 is 7.000000000000001 in floating point; round before the ceiling.
    # A window always holds at least one draw, however small the coverage.
    return max(1, int(math.ceil(round(coverage * n_draws, 9))))


def hpd_interval(draws, coverage: float = DEFAULT_COVERAGE) -> CredibleInterval:
    """
    Highest posterior density interval: the narrowest window of
    ceil(p * n) consecutive sorted draws. The lowest window wins ties.
    """
    coverage = validate_coverage(coverage)
    values = np.sort(_as_draws(draws))
    n_draws = values.size
    window = hpd_window_size(n_draws, coverage)
    if window > n_draws:
        raise InsufficientDrawsError(f"HPD window of {window} draws exceeds the {n_draws} available")

    widths = values[window - 1:] - values[:n_draws - window + 1]
    start = int(np.argmin(widths))
    return CredibleInterval(float(values[start]), float(values[start + window - 1]), coverage, IntervalMethod.HPD)


def credible_interval(draws, coverage: float = DEFAULT_COVERAGE,
                      method: Union[IntervalMethod, str] = IntervalMethod.EQUAL_TAILED) -> CredibleInterval:
    method = IntervalMethod(method)
    if method == IntervalMethod.HPD:
        return hpd_interval(draws, coverage)
    return quantile_interval(draws, coverage)


def posterior_quantiles(draws, probs: Sequence[float] = (0.025, 0.975)) -> np.ndarray:
    """Empirical quantiles at arbitrary probabilities (linear interpolation)"""
    values = _as_draws(draws)
    probs = np.asarray(probs, dtype=float)
    if probs.size == 0 or np.any((probs < 0) | (probs > 1)) or not np.all(np.isfinite(probs)):
        raise InvalidParameterError(f"Quantile probabilities must lie in [0, 1], got {probs.tolist()}")
    return np.quantile(values, probs, method='linear')


def posterior_probability(draws, threshold: float = 0.0, direction: str = 'less') -> float:
    """Posterior mass below (or above) a threshold, e.g. P(beta < 0)"""
    values = _as_draws(draws)
    if direction == 'less':
        return float(np.mean(values < threshold))
    if direction == 'greater':
        return float(np.mean(values > threshold))
    raise InvalidParameterError(f"direction must be 'less' or 'greater', got {direction!r}")


def summarize(store: DrawStore, name: str, index=None,
              coverage: Union[float, Sequence[float]] = DEFAULT_COVERAGE,
              point: Union[PointEstimate, str] = PointEstimate.MEAN,
              methods: Sequence[IntervalMethod] = (IntervalMethod.EQUAL_TAILED, IntervalMethod.HPD)) -> ParameterSummary:
    """
    Point estimate and credible intervals for one scalar element of a store.

    Args:
        store: posterior draws
        name: parameter base name, e.g. 'beta'
        index: 1-based element index, e.g. (2,) for beta[2]; None for scalars
        coverage: one coverage level or several
        point: mean or median
        methods: interval types to compute at every coverage level

    Returns:
        ParameterSummary
    """
    if index is None:
        index = ()
    elif isinstance(index, (int, np.integer)):
        index = (index,)
    index = tuple(index)

    draws = _as_draws(store.get(name, index))
    levels = [coverage] if np.isscalar(coverage) else list(coverage)
    if not levels:
        raise InvalidParameterError("At least one coverage level is required")

    intervals = []
    for level in levels:
        for method in methods:
            intervals.append(credible_interval(draws, level, method))

    return ParameterSummary(
        parameter=format_label(name, index),
        estimate=point_estimate(draws, point),
        point=PointEstimate(point),
        sd=float(np.std(draws, ddof=1)) if draws.size > 1 else 0.0,
        n_draws=int(draws.size),
        intervals=intervals,
    )


def _convergence(store: DrawStore, name: str, index) -> dict:
    chain_draws = store.by_chain(name, index)
    return {
        'r_hat': float(az.rhat(chain_draws)),
        'ess_bulk': float(az.ess(chain_draws, method='bulk')),
    }


def summary_table(store: DrawStore, labels: Optional[Sequence[str]] = None,
                  coverage: float = DEFAULT_COVERAGE,
                  point: Union[PointEstimate, str] = PointEstimate.MEAN) -> pd.DataFrame:
    """
    One row per parameter element: point estimate, sd, equal-tailed and HPD
    bounds and P(< 0). Stores with two or more chains also get r_hat and
    ess_bulk columns.
    """
    coverage = validate_coverage(coverage)
    labels = list(labels) if labels is not None else store.labels()
    tail = (1 - coverage) / 2
    with_diagnostics = store.n_chains >= 2

    rows = {}
    for label in labels:
        name, index = parse_label(label)
        result = summarize(store, name, index, coverage, point)
        equal_tailed = result.interval(coverage, IntervalMethod.EQUAL_TAILED)
        hpd = result.interval(coverage, IntervalMethod.HPD)
        row = {
            result.point.value: result.estimate,
            'sd': result.sd,
            f'{tail * 100:g}%': equal_tailed.lower,
            f'{(1 - tail) * 100:g}%': equal_tailed.upper,
            'hpd_lower': hpd.lower,
            'hpd_upper': hpd.upper,
            'P(<0)': posterior_probability(store.get(name, index)),
            'n_draws': result.n_draws,
        }
        if with_diagnostics:
            row.update(_convergence(store, name, index))
        rows[label] = row

    logger.debug(f"Summarized {len(rows)} parameter elements at coverage {coverage}")
    return pd.DataFrame.from_dict(rows, orient='index')
