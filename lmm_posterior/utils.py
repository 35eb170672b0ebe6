import logging
import os

import arviz as az
import numpy as np
import pandas as pd

from lmm_posterior.posterior_analysis.draw_store import DrawStore
from lmm_posterior.posterior_analysis.errors import InvalidParameterError

logger = logging.getLogger(__name__)


def _require_file(path):
    if not os.path.isfile(path):
        logger.error(f"File does not exist: {path}")
        raise FileNotFoundError(f"File not found: {path}")


def is_netcdf(path):
    return str(path).endswith('.nc')


def read_inference_data(path):
    """Load a fitted model saved with InferenceData.to_netcdf"""
    _require_file(path)
    return az.from_netcdf(path)


def read_draws(path, group='posterior'):
    """
    Load posterior draws into a DrawStore.

    CSV files follow the Stan layout (one column per element, 'beta[1]',
    'L_u[2,1]', optional chain__/iter__ columns; '#' comment lines from
    CmdStan are skipped). NetCDF files are read as arviz InferenceData.
    """
    _require_file(path)

    if is_netcdf(path):
        store = DrawStore.from_inference_data(read_inference_data(path), group=group)
    else:
        draws = pd.read_csv(path, comment='#')
        if draws.empty:
            raise InvalidParameterError(f"No draws in {path}")
        store = DrawStore.from_dataframe(draws)

    logger.info(f"Loaded {store.n_draws} draws of {len(store.names)} parameters from {path}")
    return store


def read_observed(path, column='rt'):
    """Observed response column as a float array; rows with missing values are dropped"""
    _require_file(path)
    data = pd.read_csv(path)
    if column not in data.columns:
        raise ValueError(f"Column '{column}' not found in {path}. Columns: {data.columns.tolist()}")

    values = data[column]
    n_missing = int(values.isnull().sum())
    if n_missing:
        logger.info(f"{path} has {n_missing} missing values in '{column}'; dropping them")
    return values.dropna().to_numpy(dtype=float)


def observed_from_inference_data(idata, var_name):
    if 'observed_data' not in idata.groups() or var_name not in idata.observed_data.data_vars:
        raise InvalidParameterError(f"InferenceData has no observed data for '{var_name}'")
    return np.asarray(idata.observed_data[var_name].values, dtype=float).ravel()


def replicates_from_store(store, name):
    """Replicate data sets stored as a vector parameter (e.g. y_rep), shape (n_draws, n_obs)"""
    values = store.get_array(name)
    if values.ndim < 2:
        raise InvalidParameterError(f"Parameter '{name}' is a scalar, not a replicate data set")
    return values.reshape(values.shape[0], -1)


def replicates_from_inference_data(idata, var_name, group='posterior_predictive'):
    """Replicate data sets from the posterior predictive group, chains stacked first"""
    store = DrawStore.from_inference_data(idata, group=group, var_names=[var_name])
    return replicates_from_store(store, var_name)
