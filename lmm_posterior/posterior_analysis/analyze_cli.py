#!/usr/bin/env python3
import argparse
import os
import sys
from typing import List, Optional, Tuple

from lmm_posterior.config import COVERAGE_LEVELS, DEFAULT_REPLICATE_SAMPLE, DEFAULT_STATISTIC, MODEL_CATALOGUE
from lmm_posterior.posterior_analysis.posterior_analyzer import AnalysisConfig, AnalysisType, PosteriorAnalyzer
from lmm_posterior.posterior_analysis.predictive import get_statistic
from lmm_posterior.utils import is_netcdf


def parse_analysis_types(analysis_types: str) -> List[AnalysisType]:
    """Convert comma-separated string of analysis types to list of AnalysisType enums"""
    if 'run_all' in analysis_types:
        return [type_ for name, type_ in AnalysisType.__members__.items() if type_ != AnalysisType.RUN_ALL]

    valid_types = {name.lower(): type_ for name, type_ in AnalysisType.__members__.items()}
    requested_types = [t.strip().lower() for t in analysis_types.split(',')]

    analysis_list = []
    for type_name in requested_types:
        if type_name not in valid_types:
            print(f"Warning: Invalid analysis type '{type_name}'. Skipping.")
            continue
        if valid_types[type_name] not in analysis_list:
            analysis_list.append(valid_types[type_name])

    return analysis_list


def parse_list(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    return [item.strip() for item in value.split(',') if item.strip()]


def parse_coverage(value: str) -> List[float]:
    return [float(item) for item in parse_list(value) or []]


def parse_pairs(values: Optional[List[str]]) -> Optional[List[Tuple[int, int]]]:
    """['1,2', '1,3'] -> [(1, 2), (1, 3)]"""
    if not values:
        return None
    pairs = []
    for value in values:
        i, j = (int(part) for part in value.split(','))
        pairs.append((i, j))
    return pairs


def validate_args(args: argparse.Namespace) -> bool:
    """Validate command line arguments based on requested analyses"""
    analysis_types = parse_analysis_types(args.analysis_types)
    if not analysis_types:
        print("Error: No valid analysis types specified. Use --analysis-types to specify analyses.")
        return False

    if not args.draws_file:
        print("Error: A draws file is required.")
        return False
    draws_file = os.path.abspath(os.path.expanduser(args.draws_file))
    if not os.path.isfile(draws_file):
        print(f"Error: Draws file not found: {draws_file}")
        return False

    try:
        coverage = parse_coverage(args.coverage)
    except ValueError:
        print(f"Error: Coverage levels must be numbers, got '{args.coverage}'.")
        return False
    if not coverage or not all(0 < level < 1 for level in coverage):
        print(f"Error: Coverage levels must lie between 0 and 1, got '{args.coverage}'.")
        return False

    try:
        parse_pairs(args.pair)
    except ValueError:
        print(f"Error: Correlation pairs must look like '1,2', got {args.pair}.")
        return False

    if AnalysisType.CORRELATION in analysis_types:
        if not args.cholesky_factors and not (args.model and MODEL_CATALOGUE[args.model]['cholesky_factors']):
            print("Error: Correlations need --cholesky-factors or a model with correlated random effects.")
            return False

    if AnalysisType.PREDICTIVE_CHECK in analysis_types:
        if not args.observed_file and not is_netcdf(draws_file):
            print("Error: Observed data file is required for posterior predictive checks on CSV draws.")
            return False
        if args.observed_file and not os.path.isfile(os.path.abspath(os.path.expanduser(args.observed_file))):
            print(f"Error: Observed data file not found: {args.observed_file}")
            return False
        if not args.replicate_parameter:
            print("Error: Replicate parameter is required for posterior predictive checks.")
            return False
        if args.n_sample_replicates < 1:
            print(f"Error: --n-sample-replicates must be at least 1, got {args.n_sample_replicates}.")
            return False
        try:
            get_statistic(args.statistic)
        except ValueError as e:
            print(f"Error: {str(e)}")
            return False

    # Validate output directory
    try:
        output_dir = os.path.abspath(os.path.expanduser(args.output))
        os.makedirs(output_dir, exist_ok=True)
    except Exception as e:
        print(f"Error creating output directory: {str(e)}")
        return False

    return True


def setup_parser() -> argparse.ArgumentParser:
    """Create and configure argument parser"""
    parser = argparse.ArgumentParser(
        description="""
        Posterior Analysis Tool - Summarize posterior draws of Bayesian linear mixed models.

        Example usage:
        # Summaries and credible intervals:
        lmm-analyze --draws-file fits/ranint_draws.csv -o results -a summary -m varying_intercepts

        # Random-effect correlations:
        lmm-analyze --draws-file fits/ranintslp_draws.csv -o results -a correlation -m varying_intercepts_slopes

        # Posterior predictive check of the maximum reading time:
        lmm-analyze --draws-file fits/ranintslp_draws.csv -o results -a predictive_check \\
            --observed-file data/gibsonwu2012data.csv --replicate-parameter y_rep --statistic max
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        '--draws-file',
        help='Posterior draws: Stan-style CSV (beta[1], L_u[2,1], ...) or arviz NetCDF (.nc)'
    )

    # Required arguments
    parser.add_argument(
        '-o', '--output',
        required=True,
        help='Directory for output files'
    )

    parser.add_argument(
        '-a', '--analysis-types',
        required=True,
        help="""
        Comma-separated list of analyses to run. Available types:
        summary: Point estimates and credible intervals
        correlation: Correlations implied by Cholesky factors
        predictive_check: Posterior predictive check of a test statistic
        convergence: R-hat and effective sample size (needs chain__ column or NetCDF)
        run_all: Run all of the above
        """
    )

    # Optional arguments
    parser.add_argument(
        '-m', '--model',
        choices=list(MODEL_CATALOGUE),
        help='Model the draws come from; selects default parameters and Cholesky factors'
    )

    parser.add_argument(
        '-p', '--parameters',
        help='Comma-separated parameters to summarize, e.g. "beta,sigma_u[1]"'
    )

    parser.add_argument(
        '-c', '--coverage',
        default=','.join(str(level) for level in COVERAGE_LEVELS),
        help='Comma-separated coverage levels (default: %(default)s)'
    )

    parser.add_argument(
        '--point-estimate',
        choices=['mean', 'median'],
        default='mean',
        help='Point estimate (default: mean)'
    )

    parser.add_argument(
        '--cholesky-factors',
        help='Comma-separated Cholesky factor parameters, e.g. "L_u,L_w"'
    )

    parser.add_argument(
        '--pair',
        action='append',
        help='1-based component pair to correlate, e.g. "1,2"; repeatable (default: all pairs)'
    )

    parser.add_argument(
        '--observed-file',
        help='CSV file with the observed data (for predictive checks; NetCDF draws default to their observed_data group)'
    )

    parser.add_argument(
        '--observed-column',
        default='rt',
        help='Response column in the observed data (default: rt)'
    )

    parser.add_argument(
        '--replicate-parameter',
        help='Parameter holding the replicate data sets, e.g. y_rep'
    )

    parser.add_argument(
        '-s', '--statistic',
        default=DEFAULT_STATISTIC,
        help='Test statistic: min, max, mean, median, sd or q<percent> such as q95 (default: %(default)s)'
    )

    parser.add_argument(
        '--n-sample-replicates',
        type=int,
        default=DEFAULT_REPLICATE_SAMPLE,
        help='Replicate data sets saved next to the observed data (default: %(default)s)'
    )

    parser.add_argument(
        '--seed',
        type=int,
        help='Seed for sampling replicate data sets'
    )

    parser.add_argument(
        '-v', '--verbosity',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default='INFO',
        help='Logging verbosity level (default: INFO)'
    )

    return parser


def main(argv=None):
    parser = setup_parser()
    args = parser.parse_args(argv)

    # Validate arguments
    if not validate_args(args):
        parser.print_help()
        sys.exit(1)

    try:
        config = AnalysisConfig(
            draws_file=os.path.abspath(os.path.expanduser(args.draws_file)),
            output_dir=os.path.abspath(os.path.expanduser(args.output)),
            analysis_types=parse_analysis_types(args.analysis_types),
            model=args.model,
            parameters=parse_list(args.parameters),
            coverage=parse_coverage(args.coverage),
            point_estimate=args.point_estimate,
            cholesky_factors=parse_list(args.cholesky_factors),
            correlation_pairs=parse_pairs(args.pair),
            observed_file=args.observed_file,
            observed_column=args.observed_column,
            replicate_parameter=args.replicate_parameter,
            statistic=args.statistic,
            n_sample_replicates=args.n_sample_replicates,
            seed=args.seed,
            verbosity=args.verbosity
        )

        analyzer = PosteriorAnalyzer(config)
        analyzer.run_all_analyses()

    except Exception as e:
        print(f"Error: {str(e)}")
        sys.exit(1)

    print("Analysis completed successfully!")
    sys.exit(0)


if __name__ == "__main__":
    main()
