from typing import List, Optional, Tuple
import itertools
import logging
import os
from dataclasses import dataclass, field
from enum import Enum, auto

import arviz as az
import numpy as np
import pandas as pd

from lmm_posterior.config import (
    COVERAGE_LEVELS,
    DEFAULT_REPLICATE_SAMPLE,
    DEFAULT_STATISTIC,
    MIN_ESS,
    R_HAT_THRESHOLD,
    coefficient_name,
    get_model_parameters,
)
from lmm_posterior.posterior_analysis.correlation import correlation_name, covariance_draws, derive_correlation
from lmm_posterior.posterior_analysis.draw_store import parse_label
from lmm_posterior.posterior_analysis.errors import InvalidParameterError
from lmm_posterior.posterior_analysis.predictive import get_statistic, predictive_check, sample_replicates
from lmm_posterior.posterior_analysis.summary import (
    posterior_probability,
    summarize,
    summary_table,
)
from lmm_posterior.utils import (
    is_netcdf,
    observed_from_inference_data,
    read_draws,
    read_inference_data,
    read_observed,
    replicates_from_inference_data,
    replicates_from_store,
)


class AnalysisType(Enum):
    SUMMARY = auto()
    CORRELATION = auto()
    PREDICTIVE_CHECK = auto()
    CONVERGENCE = auto()
    RUN_ALL = auto()


@dataclass
class AnalysisConfig:
    output_dir: str
    analysis_types: List[AnalysisType] = None
    draws_file: Optional[str] = None
    # Catalogue model the draws come from (see config.MODEL_CATALOGUE)
    model: Optional[str] = None
    # Labels ('beta[2]') or base names ('sigma_u'); defaults to the model's parameters
    parameters: Optional[List[str]] = None
    coverage: List[float] = field(default_factory=lambda: list(COVERAGE_LEVELS))
    point_estimate: str = 'mean'
    # For correlations
    cholesky_factors: Optional[List[str]] = None
    correlation_pairs: Optional[List[Tuple[int, int]]] = None
    # For posterior predictive checks
    observed_file: Optional[str] = None
    observed_column: str = 'rt'
    replicate_parameter: Optional[str] = None
    statistic: str = DEFAULT_STATISTIC
    n_sample_replicates: int = DEFAULT_REPLICATE_SAMPLE
    seed: Optional[int] = None
    verbosity: str = 'INFO'

    def __post_init__(self):
        """Validate configuration after initialization"""
        if not self.analysis_types:
            raise ValueError("No analysis types specified")

        if AnalysisType.RUN_ALL in self.analysis_types:
            self.analysis_types = [t for t in AnalysisType if t != AnalysisType.RUN_ALL]
        else:
            self.analysis_types = list(dict.fromkeys(self.analysis_types))

        if not self.draws_file:
            raise ValueError("Draws file required for posterior analysis")

        if not self.coverage:
            raise ValueError("At least one coverage level is required")
        for level in self.coverage:
            if not 0 < level < 1:
                raise ValueError(f"Coverage levels must lie in (0, 1), got {level}")

        if self.point_estimate not in ('mean', 'median'):
            raise ValueError(f"Point estimate must be 'mean' or 'median', got {self.point_estimate}")

        if self.model is not None:
            get_model_parameters(self.model)

        if AnalysisType.CORRELATION in self.analysis_types:
            if not self.cholesky_factors and not (self.model and get_model_parameters(self.model)['cholesky_factors']):
                raise ValueError("Cholesky factors (or a model with correlated random effects) required for correlations")

        if AnalysisType.PREDICTIVE_CHECK in self.analysis_types:
            # NetCDF fits carry their own observed_data group
            if not self.observed_file and not is_netcdf(self.draws_file):
                raise ValueError("Observed data file required for posterior predictive checks")
            if not self.replicate_parameter:
                raise ValueError("Replicate parameter required for posterior predictive checks")
            if self.n_sample_replicates < 1:
                raise ValueError(f"Number of sampled replicates must be at least 1, got {self.n_sample_replicates}")
            get_statistic(self.statistic)


class PosteriorAnalyzer:
    def __init__(self, config: AnalysisConfig):
        self.config = config
        self._setup_logging()
        self._setup_directories()
        self.draws = None
        self.results = {}

    def _setup_logging(self):
        """Configure logging based on verbosity level"""
        logging.basicConfig(
            level=getattr(logging, self.config.verbosity),
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        self.logger = logging.getLogger(__name__)

    def _setup_directories(self):
        """Create output directory if it doesn't exist"""
        os.makedirs(self.config.output_dir, exist_ok=True)
        self.logger.info(f"Output directory set to: {self.config.output_dir}")

    def _output_path(self, filename: str) -> str:
        return os.path.join(self.config.output_dir, filename)

    def _get_draws(self):
        """Load the draws on first use"""
        if self.draws is None:
            self.draws = read_draws(self.config.draws_file)
        return self.draws

    def _summary_labels(self) -> List[str]:
        """Element labels to summarize: configured ones, the model's, or everything but sampler bookkeeping"""
        store = self._get_draws()

        if self.config.parameters:
            names = self.config.parameters
        elif self.config.model:
            names = [name for name in get_model_parameters(self.config.model)['parameters'] if name in store]
        else:
            names = [name for name in store.names
                     if not name.endswith('__') and name != self.config.replicate_parameter
                     and len(store.shape(name)) <= 1]

        labels = []
        for name in names:
            base, index = parse_label(name)
            labels.extend([name] if index else store.labels(base))
        return labels

    def _cholesky_factors(self) -> dict:
        """Factor name -> catalogue entry (scale and group), or empty entries for configured factors"""
        catalogue = get_model_parameters(self.config.model)['cholesky_factors'] if self.config.model else {}
        if self.config.cholesky_factors:
            return {factor: catalogue.get(factor, {}) for factor in self.config.cholesky_factors}
        return dict(catalogue)

    def _predictive_data(self):
        """
        Observed data and replicate data sets. NetCDF fits keep replicates in
        the posterior_predictive group and the data in observed_data; an
        observed file, when given, takes precedence over the latter.
        """
        name = self.config.replicate_parameter
        idata = read_inference_data(self.config.draws_file) if is_netcdf(self.config.draws_file) else None

        if (idata is not None and 'posterior_predictive' in idata.groups()
                and name in idata.posterior_predictive.data_vars):
            replicates = replicates_from_inference_data(idata, name)
        else:
            replicates = replicates_from_store(self._get_draws(), name)

        if self.config.observed_file:
            observed = read_observed(self.config.observed_file, self.config.observed_column)
        else:
            # The configured column if the group has it, else the replicate variable's name
            has_column = 'observed_data' in idata.groups() and self.config.observed_column in idata.observed_data.data_vars
            observed = observed_from_inference_data(idata, self.config.observed_column if has_column else name)
            self.logger.info(f"Observed data read from the observed_data group of {self.config.draws_file}")

        return observed, replicates

    def run_summary(self):
        """Point estimates and credible intervals for every configured parameter"""
        self.logger.info("Running posterior summary")

        try:
            labels = self._summary_labels()
            tables = []
            for level in self.config.coverage:
                table = summary_table(self._get_draws(), labels, level, self.config.point_estimate)
                table.insert(0, 'coverage', level)
                if self.config.model:
                    table.insert(0, 'term', [coefficient_name(self.config.model, label) for label in table.index])
                tables.append(table)

            summary = pd.concat(tables)
            summary.index.name = 'parameter'
            output_file = self._output_path('summary.csv')
            summary.to_csv(output_file)
            self.results['summary'] = summary

            self.logger.info(f"Summarized {len(labels)} parameters. Results saved to {output_file}")
        except Exception as e:
            self.logger.error(f"Error in posterior summary: {str(e)}")
            raise

        return self

    def run_correlations(self):
        """Summaries of the correlations implied by each Cholesky factor"""
        self.logger.info("Deriving random-effect correlations")

        try:
            store = self._get_draws()
            rows = []
            for factor, entry in self._cholesky_factors().items():
                if factor not in store:
                    if self.config.cholesky_factors:
                        raise InvalidParameterError(f"Cholesky factor '{factor}' not found in draws")
                    self.logger.warning(f"Cholesky factor '{factor}' not found in draws; skipping")
                    continue

                if len(store.shape(factor)) != 2:
                    raise InvalidParameterError(f"Parameter '{factor}' is not a matrix parameter")
                dim = store.shape(factor)[0]
                pairs = self.config.correlation_pairs or list(itertools.combinations(range(1, dim + 1), 2))
                scale = entry.get('scale')
                covariance = None
                if scale in store:
                    covariance = covariance_draws(store.get_array(factor), store.get_array(scale))

                for pair in pairs:
                    name = correlation_name(factor, pair)
                    store = derive_correlation(store, factor, tuple(pair), name)
                    result = summarize(store, name, coverage=self.config.coverage, point=self.config.point_estimate)
                    row = {
                        'parameter': name,
                        'factor': factor,
                        'group': entry.get('group'),
                        'pair': f"{pair[0]},{pair[1]}",
                        result.point.value: result.estimate,
                        'sd': result.sd,
                        'P(<0)': posterior_probability(store.get(name)),
                    }
                    for interval in result.intervals:
                        prefix = f"{interval.method.value}_{interval.coverage:g}"
                        row[f"{prefix}_lower"] = interval.lower
                        row[f"{prefix}_upper"] = interval.upper
                    if covariance is not None:
                        row['covariance_mean'] = float(np.mean(covariance[:, pair[0] - 1, pair[1] - 1]))
                    rows.append(row)

            self.draws = store
            correlations = pd.DataFrame(rows)
            output_file = self._output_path('correlations.csv')
            correlations.to_csv(output_file, index=False)
            self.results['correlations'] = correlations

            self.logger.info(f"Derived {len(rows)} correlations. Results saved to {output_file}")
        except Exception as e:
            self.logger.error(f"Error deriving correlations: {str(e)}")
            raise

        return self

    def run_predictive_check(self):
        """Posterior predictive check of the configured test statistic"""
        self.logger.info(f"Running posterior predictive check with statistic '{self.config.statistic}'")

        try:
            observed, replicates = self._predictive_data()
            result = predictive_check(observed, replicates, self.config.statistic)

            pd.DataFrame({
                'draw': np.arange(1, result.n_replicates + 1),
                'T_rep': result.t_rep,
                'exceeds_observed': result.t_rep > result.t_obs,
            }).to_csv(self._output_path('predictive_check.csv'), index=False)

            with open(self._output_path('predictive_check.txt'), 'w') as f:
                f.write("*** Posterior Predictive Check ***\n\n")
                f.write(f"Statistic: {result.statistic}\n")
                f.write(f"T(observed): {result.t_obs}\n")
                f.write(f"Replicates: {result.n_replicates}\n")
                f.write(f"p-value P(T_rep > T_obs): {result.p_value}\n")

            size = min(self.config.n_sample_replicates, len(replicates))
            sample, indices = sample_replicates(replicates, size, self.config.seed, return_indices=True)
            sample_df = pd.DataFrame(sample.T, columns=[f"draw_{i + 1}" for i in indices])
            sample_df.insert(0, 'observed', observed)
            sample_df.to_csv(self._output_path('replicate_sample.csv'), index=False)

            self.results['predictive_check'] = result
            self.logger.info(f"Posterior predictive p-value: {result.p_value:.3f}")
        except Exception as e:
            self.logger.error(f"Error in posterior predictive check: {str(e)}")
            raise

        return self

    def check_convergence(self):
        """R-hat and bulk ESS per parameter element; needs draws from two or more chains"""
        self.logger.info("Checking convergence")

        try:
            store = self._get_draws()
            if store.n_chains < 2:
                raise InvalidParameterError("Convergence diagnostics need draws from two or more chains")

            rows = {}
            for label in self._summary_labels():
                chain_draws = store.by_chain(*parse_label(label))
                rows[label] = {
                    'r_hat': float(az.rhat(chain_draws)),
                    'ess_bulk': float(az.ess(chain_draws, method='bulk')),
                    'ess_tail': float(az.ess(chain_draws, method='tail')),
                }

            diagnostics = pd.DataFrame.from_dict(rows, orient='index')
            diagnostics.index.name = 'parameter'
            diagnostics.to_csv(self._output_path('convergence.csv'))
            self.results['convergence'] = diagnostics

            for label, row in diagnostics.iterrows():
                if row['r_hat'] > R_HAT_THRESHOLD:
                    self.logger.warning(f"{label}: r_hat={row['r_hat']:.3f} exceeds {R_HAT_THRESHOLD}")
                if row['ess_bulk'] < MIN_ESS:
                    self.logger.warning(f"{label}: ess_bulk={row['ess_bulk']:.0f} below {MIN_ESS}")
        except Exception as e:
            self.logger.error(f"Error checking convergence: {str(e)}")
            raise

        return self

    def run_all_analyses(self):
        """Run all specified analyses in sequence"""
        analysis_map = {
            AnalysisType.CONVERGENCE: self.check_convergence,
            AnalysisType.SUMMARY: self.run_summary,
            AnalysisType.CORRELATION: self.run_correlations,
            AnalysisType.PREDICTIVE_CHECK: self.run_predictive_check,
        }

        for analysis_type in self.config.analysis_types:
            try:
                self.logger.info(f"Running {analysis_type.name} analysis...")
                analysis_map[analysis_type]()
                self.logger.info(f"Completed {analysis_type.name} analysis")
            except Exception as e:
                self.logger.error(f"Error in {analysis_type.name} analysis: {str(e)}")
                raise

        return self.results


# Example usage
if __name__ == "__main__":
    config = AnalysisConfig(
        draws_file="fits/varying_intercepts_slopes_draws.csv",
        output_dir="results",
        model="varying_intercepts_slopes",
        observed_file="data/gibsonwu2012data.csv",
        replicate_parameter="y_rep",
        analysis_types=[
            AnalysisType.SUMMARY,
            AnalysisType.CORRELATION,
            AnalysisType.PREDICTIVE_CHECK,
        ],
        verbosity="INFO"
    )

    analyzer = PosteriorAnalyzer(config)
    analyzer.run_all_analyses()
