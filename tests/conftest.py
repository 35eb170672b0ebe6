import numpy as np
import pandas as pd
import pytest

from lmm_posterior.posterior_analysis.draw_store import DrawStore

N_CHAINS = 4
N_ITERATIONS = 500
N_OBS = 20


def cholesky_2x2(rho):
    """Cholesky factors of 2x2 correlation matrices with off-diagonal rho"""
    rho = np.asarray(rho, dtype=float)
    factors = np.zeros(rho.shape + (2, 2))
    factors[..., 0, 0] = 1.0
    factors[..., 1, 0] = rho
    factors[..., 1, 1] = np.sqrt(1 - rho ** 2)
    return factors


@pytest.fixture
def rng():
    return np.random.default_rng(2016)


@pytest.fixture
def posterior_draws(rng):
    """Stan-style draws table of a varying intercepts and slopes fit, with replicate data sets"""
    n = N_CHAINS * N_ITERATIONS
    rho_u = np.clip(rng.normal(-0.4, 0.1, n), -0.95, 0.95)
    L_u = cholesky_2x2(rho_u)

    columns = {
        'chain__': np.repeat(np.arange(1, N_CHAINS + 1), N_ITERATIONS),
        'iter__': np.tile(np.arange(1, N_ITERATIONS + 1), N_CHAINS),
        'lp__': rng.normal(-1200, 5, n),
        'beta[1]': rng.normal(6.06, 0.07, n),
        'beta[2]': rng.normal(-0.04, 0.02, n),
        'sigma_e': np.abs(rng.normal(0.52, 0.01, n)),
        'sigma_u[1]': np.abs(rng.normal(0.25, 0.03, n)),
        'sigma_u[2]': np.abs(rng.normal(0.05, 0.02, n)),
    }
    for i in range(2):
        for j in range(2):
            columns[f'L_u[{i + 1},{j + 1}]'] = L_u[:, i, j]

    y_rep = rng.lognormal(6.0, 0.5, (n, N_OBS))
    for k in range(N_OBS):
        columns[f'y_rep[{k + 1}]'] = y_rep[:, k]

    return pd.DataFrame(columns)


@pytest.fixture
def store(posterior_draws):
    return DrawStore.from_dataframe(posterior_draws)


@pytest.fixture
def draws_file(tmp_path, posterior_draws):
    path = tmp_path / 'ranintslp_draws.csv'
    posterior_draws.to_csv(path, index=False)
    return str(path)


@pytest.fixture
def observed_file(tmp_path, rng):
    path = tmp_path / 'gibsonwu2012data.csv'
    pd.DataFrame({
        'subj': np.repeat(np.arange(1, 5), N_OBS // 4),
        'so': np.tile([-1, 1], N_OBS // 2),
        'rt': rng.lognormal(6.0, 0.5, N_OBS),
    }).to_csv(path, index=False)
    return str(path)
