import numpy as np
import pytest
from scipy import stats

from lmm_posterior.posterior_analysis.draw_store import DrawStore
from lmm_posterior.posterior_analysis.errors import InsufficientDrawsError, InvalidParameterError
from lmm_posterior.posterior_analysis.summary import (
    IntervalMethod,
    PointEstimate,
    credible_interval,
    hpd_interval,
    hpd_window_size,
    point_estimate,
    posterior_probability,
    posterior_quantiles,
    quantile_interval,
    summarize,
    summary_table,
)

ONE_TO_TEN = np.arange(1, 11, dtype=float)


def test_quantile_interval_one_to_ten():
    interval = quantile_interval(ONE_TO_TEN, 0.8)
    assert interval.lower == pytest.approx(1.9)
    assert interval.upper == pytest.approx(9.1)
    assert interval.coverage == 0.8
    assert interval.method == IntervalMethod.EQUAL_TAILED


def test_hpd_one_to_ten_takes_first_of_equal_windows():
    interval = hpd_interval(ONE_TO_TEN, 0.8)
    assert (interval.lower, interval.upper) == (1.0, 8.0)
    assert interval.width == 7.0
    assert interval.method == IntervalMethod.HPD


def test_hpd_ignores_input_order():
    shuffled = np.random.default_rng(3).permutation(ONE_TO_TEN)
    interval = hpd_interval(shuffled, 0.8)
    assert (interval.lower, interval.upper) == (1.0, 8.0)


def test_hpd_finds_narrowest_window():
    draws = [0.0, 5.0, 5.25, 5.5, 6.0, 9.0]
    interval = hpd_interval(draws, 0.5)
    assert (interval.lower, interval.upper) == (5.0, 5.5)


def test_hpd_window_size_is_robust_to_rounding():
    assert hpd_window_size(10, 0.7) == 7
    assert hpd_window_size(10, 0.75) == 8
    assert hpd_window_size(4000, 0.95) == 3800


def test_hpd_tiny_coverage_keeps_one_draw():
    assert hpd_window_size(10, 1e-11) == 1
    interval = hpd_interval(np.arange(1, 11.0), 1e-11)
    assert interval.lower <= interval.upper
    assert (interval.lower, interval.upper) == (1.0, 1.0)


def test_quantile_interval_matches_numpy(rng):
    draws = rng.normal(size=1000)
    interval = quantile_interval(draws, 0.9)
    assert interval.lower == pytest.approx(np.quantile(draws, 0.05))
    assert interval.upper == pytest.approx(np.quantile(draws, 0.95))


@pytest.mark.parametrize('coverage', [0.5, 0.8, 0.9, 0.95, 0.99])
def test_median_inside_quantile_interval(rng, coverage):
    draws = rng.gamma(2.0, size=501)
    interval = quantile_interval(draws, coverage)
    assert interval.lower <= np.median(draws) <= interval.upper


@pytest.mark.parametrize('coverage', [0.5, 0.8, 0.9, 0.95])
def test_hpd_no_wider_than_quantile_interval_on_even_spacing(coverage):
    draws = np.arange(1, 101, dtype=float)
    assert hpd_interval(draws, coverage).width <= quantile_interval(draws, coverage).width


@pytest.mark.parametrize('coverage', [0.8, 0.9, 0.95])
def test_hpd_narrower_for_skewed_posterior(coverage):
    draws = stats.lognorm.rvs(s=0.5, size=4000, random_state=11)
    hpd = hpd_interval(draws, coverage)
    equal_tailed = quantile_interval(draws, coverage)
    assert hpd.width < equal_tailed.width
    assert hpd.lower < equal_tailed.lower


def test_widths_shrink_with_coverage(rng):
    draws = rng.standard_t(df=5, size=2000)
    levels = [0.99, 0.95, 0.9, 0.8, 0.5, 0.2]
    for method in IntervalMethod:
        widths = [credible_interval(draws, level, method).width for level in levels]
        assert all(later <= earlier for earlier, later in zip(widths, widths[1:]))


@pytest.mark.parametrize('coverage', [0, 1, -0.1, 1.5, float('nan'), 'wide', True])
def test_invalid_coverage(coverage):
    with pytest.raises(InvalidParameterError):
        quantile_interval(ONE_TO_TEN, coverage)
    with pytest.raises(InvalidParameterError):
        hpd_interval(ONE_TO_TEN, coverage)


def test_empty_draws():
    with pytest.raises(InsufficientDrawsError):
        quantile_interval([], 0.95)
    with pytest.raises(InsufficientDrawsError):
        hpd_interval([], 0.95)
    with pytest.raises(InsufficientDrawsError):
        point_estimate([])


def test_non_finite_draws():
    with pytest.raises(InvalidParameterError):
        hpd_interval([1.0, np.nan, 3.0], 0.5)


def test_single_draw():
    assert hpd_interval([4.2], 0.95).width == 0
    assert quantile_interval([4.2], 0.95).lower == 4.2


def test_point_estimate():
    draws = [1.0, 2.0, 9.0]
    assert point_estimate(draws) == pytest.approx(4.0)
    assert point_estimate(draws, PointEstimate.MEDIAN) == 2.0
    assert point_estimate(draws, 'median') == 2.0
    with pytest.raises(ValueError):
        point_estimate(draws, 'mode')


def test_posterior_probability():
    draws = [-2.0, -1.0, 0.0, 1.0]
    assert posterior_probability(draws) == 0.5
    assert posterior_probability(draws, direction='greater') == 0.25
    assert posterior_probability(draws, threshold=-1.5) == 0.25
    with pytest.raises(InvalidParameterError):
        posterior_probability(draws, direction='sideways')


def test_posterior_quantiles():
    np.testing.assert_allclose(posterior_quantiles(ONE_TO_TEN, [0.0, 0.5, 1.0]), [1.0, 5.5, 10.0])
    with pytest.raises(InvalidParameterError):
        posterior_quantiles(ONE_TO_TEN, [0.5, 1.2])


def test_summarize_vector_element(store):
    result = summarize(store, 'beta', (2,), coverage=[0.8, 0.95])
    assert result.parameter == 'beta[2]'
    assert result.n_draws == store.n_draws
    assert result.estimate == pytest.approx(-0.04, abs=0.005)
    assert len(result.intervals) == 4

    narrow = result.interval(0.8, IntervalMethod.HPD)
    wide = result.interval(0.95, IntervalMethod.HPD)
    assert wide.width >= narrow.width
    assert wide.contains(result.estimate)

    with pytest.raises(InvalidParameterError):
        result.interval(0.5)


def test_summarize_accepts_integer_index(store):
    assert summarize(store, 'beta', 1).parameter == 'beta[1]'


def test_summarize_scalar_median():
    store = DrawStore({'sigma_e': ONE_TO_TEN})
    result = summarize(store, 'sigma_e', coverage=0.8, point='median')
    assert result.estimate == 5.5
    assert result.point == PointEstimate.MEDIAN
    assert result.interval(0.8, IntervalMethod.HPD).upper == 8.0


def test_summarize_unknown_parameter(store):
    with pytest.raises(InvalidParameterError):
        summarize(store, 'gamma')
    with pytest.raises(InvalidParameterError):
        summarize(store, 'beta', (3,))


def test_summary_table_with_chains(store):
    table = summary_table(store, ['beta[1]', 'beta[2]', 'sigma_e'], coverage=0.95)
    assert list(table.index) == ['beta[1]', 'beta[2]', 'sigma_e']
    for column in ['mean', 'sd', '2.5%', '97.5%', 'hpd_lower', 'hpd_upper', 'P(<0)', 'r_hat', 'ess_bulk']:
        assert column in table.columns
    assert table.loc['beta[2]', 'P(<0)'] > 0.9
    assert table.loc['beta[1]', 'r_hat'] == pytest.approx(1.0, abs=0.05)


def test_summary_table_single_chain():
    store = DrawStore({'beta': np.random.default_rng(0).normal(size=(200, 2))})
    table = summary_table(store, point='median')
    assert list(table.index) == ['beta[1]', 'beta[2]']
    assert 'median' in table.columns
    assert 'r_hat' not in table.columns
