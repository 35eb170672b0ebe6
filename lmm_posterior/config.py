# Coverage levels reported by default
DEFAULT_COVERAGE = 0.95
COVERAGE_LEVELS = (0.8, 0.95)

# Test statistic for posterior predictive checks
DEFAULT_STATISTIC = 'max'

# Convergence warnings
R_HAT_THRESHOLD = 1.01
MIN_ESS = 400

# Replicate data sets kept for side-by-side comparison with the observed data
DEFAULT_REPLICATE_SAMPLE = 5

# The linear mixed models fitted to log reading times, from the simplest to the
# 2x2 factorial design. 'parameters' are the base names summarized by default,
# 'coefficients' name the fixed effects beta[1], beta[2], ... and
# 'cholesky_factors' map each correlation factor to the standard deviations
# that scale it and the grouping factor it belongs to.
MODEL_CATALOGUE = {
    'fixed_effects': {
        'parameters': ['beta', 'sigma_e'],
        'coefficients': ['Intercept', 'so'],
        'cholesky_factors': {},
    },
    'varying_intercepts': {
        'parameters': ['beta', 'sigma_e', 'sigma_u', 'sigma_w'],
        'coefficients': ['Intercept', 'so'],
        'cholesky_factors': {},
    },
    'varying_intercepts_slopes_uncorrelated': {
        'parameters': ['beta', 'sigma_e', 'sigma_u', 'sigma_w'],
        'coefficients': ['Intercept', 'so'],
        'cholesky_factors': {},
    },
    'varying_intercepts_slopes': {
        'parameters': ['beta', 'sigma_e', 'sigma_u', 'sigma_w'],
        'coefficients': ['Intercept', 'so'],
        'cholesky_factors': {
            'L_u': {'scale': 'sigma_u', 'group': 'subject'},
            'L_w': {'scale': 'sigma_w', 'group': 'item'},
        },
    },
    'matrix': {
        'parameters': ['beta', 'sigma_e', 'sigma_u', 'sigma_w'],
        'coefficients': ['Intercept', 'so'],
        'cholesky_factors': {
            'L_u': {'scale': 'sigma_u', 'group': 'subject'},
            'L_w': {'scale': 'sigma_w', 'group': 'item'},
        },
    },
    'factorial': {
        'parameters': ['beta', 'sigma_e', 'sigma_u', 'sigma_w'],
        'coefficients': ['Intercept', 'A', 'B', 'A:B'],
        'cholesky_factors': {
            'L_u': {'scale': 'sigma_u', 'group': 'subject'},
            'L_w': {'scale': 'sigma_w', 'group': 'item'},
        },
    },
}


def get_model_parameters(model_name):
    """Catalogue entry for a model, e.g. get_model_parameters('factorial')"""
    try:
        return MODEL_CATALOGUE[model_name]
    except KeyError:
        raise ValueError(f"Unknown model '{model_name}'. Known models: {', '.join(MODEL_CATALOGUE)}")


def coefficient_name(model_name, label):
    """Readable name for a fixed-effect label such as 'beta[2]'; other labels pass through"""
    coefficients = get_model_parameters(model_name)['coefficients']
    if label.startswith('beta[') and label.endswith(']'):
        position = label[len('beta['):-1]
        if position.isdigit() and 1 <= int(position) <= len(coefficients):
            return coefficients[int(position) - 1]
    return label
