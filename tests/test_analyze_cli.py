import pytest

from lmm_posterior.posterior_analysis.analyze_cli import (
    main,
    parse_analysis_types,
    parse_coverage,
    parse_pairs,
    setup_parser,
    validate_args,
)
from lmm_posterior.posterior_analysis.posterior_analyzer import AnalysisType


def test_parse_analysis_types():
    assert parse_analysis_types('summary, Correlation') == [AnalysisType.SUMMARY, AnalysisType.CORRELATION]
    assert parse_analysis_types('summary,plot') == [AnalysisType.SUMMARY]
    assert parse_analysis_types('correlation,summary,correlation') == [AnalysisType.CORRELATION, AnalysisType.SUMMARY]
    assert AnalysisType.RUN_ALL not in parse_analysis_types('run_all')
    assert len(parse_analysis_types('run_all')) == 4


def test_parse_helpers():
    assert parse_coverage('0.8, 0.95') == [0.8, 0.95]
    assert parse_pairs(['1,2', '2,3']) == [(1, 2), (2, 3)]
    assert parse_pairs(None) is None
    with pytest.raises(ValueError):
        parse_pairs(['1,2,3'])


def args_for(*argv):
    return setup_parser().parse_args(list(argv))


def test_validate_args(tmp_path, draws_file, observed_file):
    output = str(tmp_path / 'out')
    assert validate_args(args_for('--draws-file', draws_file, '-o', output, '-a', 'summary'))
    assert not validate_args(args_for('-o', output, '-a', 'summary'))
    assert not validate_args(args_for('--draws-file', draws_file, '-o', output, '-a', 'plots'))
    assert not validate_args(args_for('--draws-file', str(tmp_path / 'nope.csv'), '-o', output, '-a', 'summary'))
    assert not validate_args(args_for('--draws-file', draws_file, '-o', output, '-a', 'summary', '-c', '0.95,2'))
    assert not validate_args(args_for('--draws-file', draws_file, '-o', output, '-a', 'summary', '-c', 'wide'))
    assert not validate_args(args_for('--draws-file', draws_file, '-o', output, '-a', 'correlation'))
    assert validate_args(args_for('--draws-file', draws_file, '-o', output, '-a', 'correlation',
                                  '-m', 'varying_intercepts_slopes'))
    assert not validate_args(args_for('--draws-file', draws_file, '-o', output, '-a', 'predictive_check',
                                      '--observed-file', observed_file))
    assert not validate_args(args_for('--draws-file', draws_file, '-o', output, '-a', 'predictive_check',
                                      '--observed-file', observed_file, '--replicate-parameter', 'y_rep',
                                      '-s', 'mode'))
    assert not validate_args(args_for('--draws-file', draws_file, '-o', output, '-a', 'predictive_check',
                                      '--observed-file', observed_file, '--replicate-parameter', 'y_rep',
                                      '--n-sample-replicates', '0'))


def test_main_runs_analyses(tmp_path, draws_file, observed_file, capsys):
    output = tmp_path / 'out'
    with pytest.raises(SystemExit) as exit_info:
        main(['--draws-file', draws_file, '-o', str(output), '-a', 'summary,correlation,predictive_check',
              '-m', 'varying_intercepts_slopes', '--observed-file', observed_file,
              '--replicate-parameter', 'y_rep', '--pair', '1,2', '--seed', '3', '-v', 'WARNING'])

    assert exit_info.value.code == 0
    assert 'Analysis completed successfully!' in capsys.readouterr().out
    for filename in ['summary.csv', 'correlations.csv', 'predictive_check.csv', 'replicate_sample.csv']:
        assert (output / filename).is_file()


def test_main_reports_failures(tmp_path, draws_file):
    with pytest.raises(SystemExit) as exit_info:
        main(['--draws-file', draws_file, '-o', str(tmp_path / 'out'), '-a', 'summary', '-p', 'gamma'])
    assert exit_info.value.code == 1

    with pytest.raises(SystemExit) as exit_info:
        main(['-o', str(tmp_path / 'out'), '-a', 'summary'])
    assert exit_info.value.code == 1


def test_netcdf_draws_need_no_observed_file(tmp_path):
    draws_file = tmp_path / 'fit.nc'
    draws_file.write_bytes(b'')
    assert validate_args(args_for('--draws-file', str(draws_file), '-o', str(tmp_path / 'out'),
                                  '-a', 'predictive_check', '--replicate-parameter', 'y_rep'))


def test_csv_draws_need_observed_file(tmp_path, draws_file):
    assert not validate_args(args_for('--draws-file', draws_file, '-o', str(tmp_path / 'out'),
                                      '-a', 'predictive_check', '--replicate-parameter', 'y_rep'))
