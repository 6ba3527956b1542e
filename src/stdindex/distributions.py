"""
Probability distribution fitting for standardized index calculation.

This module provides the six parametric families used to standardize
aggregated series:

1. Gamma ('gamma') - two-parameter, zero-bounded, standard for SPI
2. Three-parameter gamma ('gamma3') - Pearson Type III with threshold
3. Weibull ('weibull') - two-parameter, zero-bounded
4. Three-parameter Weibull ('weibull3')
5. Generalized Extreme Value ('gev')
6. Generalized Logistic ('glogis'), fitted as Hosking's 'glo' under L-moments

Each distribution supports:
- Parameter estimation via Maximum Likelihood (scipy) or L-moments (Hosking)
- Mixed distribution handling for zero-bounded families (probability of zero)
- Goodness-of-fit testing (Kolmogorov-Smirnov and Anderson-Darling)
- CDF, quantile function and random variates

References:
    - Hosking, J.R.M. (1990). L-moments: Analysis and estimation of
      distributions using linear combinations of order statistics.
    - Hosking, J.R.M., Wallis, J.R. (1997). Regional Frequency Analysis:
      An Approach Based on L-Moments.
    - Marsaglia, G., Marsaglia, J. (2004). Evaluating the Anderson-Darling
      Distribution. Journal of Statistical Software 9(2).
    - Stagge, J.H., et al. (2015). Candidate Distributions for SPI and SPEI.

---
Author: Benny Istanto, GOST/DEC Data Group/The World Bank
---
"""

from __future__ import annotations

import math
import warnings
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Optional, Tuple, Union

import numpy as np
from numba import jit
from scipy import stats
from scipy.special import gammaln

from .config import (
    DEFAULT_DISTRIBUTION,
    DEFAULT_NA_THRESHOLD,
    FIT_PROPERTY_NAMES,
    ConfigurationError,
    check_threshold,
    get_logger,
)
from .diagnostics import DiagnosticKind, Diagnostics, ensure_diagnostics

# Module logger
_logger = get_logger(__name__)


# =============================================================================
# CONSTANTS AND CONFIGURATION
# =============================================================================

# Minimum sample size for L-moment estimation (b0..b3 need n >= 4)
MIN_VALUES_FOR_LMOMENTS = 4

# Shape parameter below which the GEV and GLO fits reduce to the
# Gumbel and logistic cases
SMALL_SHAPE = 1e-6
SMALL_GEV_SHAPE = 1e-5

# Euler-Mascheroni constant
EULER = 0.57721566

# Newton iteration control for the GEV shape at strongly negative L-skewness
GEV_MAX_ITERATIONS = 20
GEV_EPS = 1e-6


class DistributionType(Enum):
    """Supported probability distributions."""
    GAMMA = "gamma"
    GAMMA3 = "gamma3"
    WEIBULL = "weibull"
    WEIBULL3 = "weibull3"
    GEV = "gev"
    GLOGIS = "glogis"

    def __str__(self):
        return self.value

    @staticmethod
    def from_string(s: Union[str, 'DistributionType']) -> 'DistributionType':
        """
        Convert string to DistributionType enum.

        :param s: distribution name (e.g. 'gamma', 'gev'); 'glo' is accepted
            for 'glogis'
        :return: DistributionType enum value
        :raises ConfigurationError: if string doesn't match any distribution
        """
        if isinstance(s, DistributionType):
            return s
        name = str(s).lower()
        if name == 'glo':
            name = 'glogis'
        try:
            return DistributionType(name)
        except ValueError:
            raise ConfigurationError(
                f"Unknown distribution: '{s}'. "
                f"Must be one of: {[d.value for d in DistributionType]}."
            )

    @property
    def zero_bounded(self) -> bool:
        """Families defined on positive values, fitted with a probability of zero."""
        return self in (DistributionType.GAMMA, DistributionType.WEIBULL)

    @property
    def supports_mle(self) -> bool:
        return self not in (DistributionType.GAMMA3, DistributionType.WEIBULL3)

    @property
    def default_method(self) -> 'FittingMethod':
        return FittingMethod.MLE if self.supports_mle else FittingMethod.LMOMENTS

    def param_names(self, method: 'FittingMethod') -> Tuple[str, ...]:
        """
        Names of the native parameters for a fitting method, in order.

        :param method: fitting method
        :return: tuple of parameter names
        """
        if self == DistributionType.GAMMA:
            return ('shape', 'rate')
        elif self == DistributionType.GAMMA3:
            return ('shape', 'scale', 'thres')
        elif self == DistributionType.WEIBULL:
            return ('shape', 'scale')
        elif self == DistributionType.WEIBULL3:
            return ('shape', 'scale', 'thres')
        elif self == DistributionType.GEV:
            return ('shape', 'scale', 'location')
        elif self == DistributionType.GLOGIS:
            if method == FittingMethod.LMOMENTS:
                return ('xi', 'alpha', 'kappa')
            return ('shape', 'scale', 'location')
        raise ConfigurationError(f"Unsupported distribution: {self}")

    def label(self, method: 'FittingMethod') -> str:
        """Name reported in result metadata; 'glo' for glogis fitted by L-moments."""
        if self == DistributionType.GLOGIS and method == FittingMethod.LMOMENTS:
            return 'glo'
        return self.value


class FittingMethod(Enum):
    """Parameter estimation methods."""
    MLE = "mle"              # Maximum likelihood
    LMOMENTS = "lmoments"    # L-moments (Hosking)

    def __str__(self):
        return self.value

    @staticmethod
    def from_string(s: Union[str, 'FittingMethod']) -> 'FittingMethod':
        """
        Convert string to FittingMethod enum.

        :param s: 'mle', 'lmom' or 'lmoments'
        :return: FittingMethod enum value
        :raises ConfigurationError: if string doesn't match any method
        """
        if isinstance(s, FittingMethod):
            return s
        name = str(s).lower().replace('-', '')
        if name in ('lmom', 'lmoments'):
            return FittingMethod.LMOMENTS
        if name == 'mle':
            return FittingMethod.MLE
        raise ConfigurationError(
            f"Unknown fitting method: '{s}'. Must be one of: ['mle', 'lmom']."
        )


def resolve_method(
    distribution: DistributionType,
    method: Optional[Union[str, FittingMethod]] = None
) -> FittingMethod:
    """
    Resolve the fitting method for a distribution.

    :param distribution: distribution type
    :param method: requested method, or None for the distribution default
    :return: FittingMethod
    :raises ConfigurationError: if MLE is requested for gamma3 or weibull3
    """
    if method is None:
        return distribution.default_method
    method = FittingMethod.from_string(method)
    if method == FittingMethod.MLE and not distribution.supports_mle:
        raise ConfigurationError(
            f"Method 'mle' is not supported for '{distribution}', use 'lmom'"
        )
    return method


@dataclass
class FittedDistribution:
    """Fitted parameters of one distribution with sample properties and goodness of fit."""
    distribution: DistributionType
    method: FittingMethod
    params: Dict[str, float]
    prob_zero: float = np.nan
    n_obs: int = 0
    n_na: int = 0
    pct_na: float = np.nan
    ks_pval: float = np.nan
    ad_pval: float = np.nan
    sample: np.ndarray = field(default_factory=lambda: np.empty(0), repr=False, compare=False)
    na_threshold: float = DEFAULT_NA_THRESHOLD

    def is_valid(self) -> bool:
        """Check if parameters are defined for computation."""
        return len(self.params) > 0 and all(np.isfinite(v) for v in self.params.values())

    def cdf(self, x) -> np.ndarray:
        """Cumulative probability of the fitted distribution (without zero mass)."""
        return distribution_cdf(x, self.distribution, self.params)

    def ppf(self, q) -> np.ndarray:
        """Quantile function of the fitted distribution."""
        return distribution_ppf(q, self.distribution, self.params)

    def rvs(self, n: int, random_state=None) -> np.ndarray:
        """Random variates from the fitted distribution."""
        return distribution_rvs(n, self.distribution, self.params, random_state=random_state)

    def to_dict(self) -> Dict:
        """Convert to dictionary for serialization."""
        return {
            'distribution': self.distribution.value,
            'method': self.method.value,
            'params': dict(self.params),
            'prob_zero': self.prob_zero,
            'n_obs': self.n_obs,
            'n_na': self.n_na,
            'pct_na': self.pct_na,
            'ks_pval': self.ks_pval,
            'ad_pval': self.ad_pval,
            'na_threshold': self.na_threshold,
        }

    @classmethod
    def from_dict(cls, d: Dict) -> 'FittedDistribution':
        """Create from dictionary."""
        return cls(
            distribution=DistributionType.from_string(d['distribution']),
            method=FittingMethod.from_string(d['method']),
            params={k: float(v) for k, v in d['params'].items()},
            prob_zero=float(d.get('prob_zero', np.nan)),
            n_obs=int(d.get('n_obs', 0)),
            n_na=int(d.get('n_na', 0)),
            pct_na=float(d.get('pct_na', np.nan)),
            ks_pval=float(d.get('ks_pval', np.nan)),
            ad_pval=float(d.get('ad_pval', np.nan)),
            na_threshold=float(d.get('na_threshold', DEFAULT_NA_THRESHOLD)),
        )

    def to_row(self) -> Dict[str, float]:
        """Flat mapping of parameters and fit properties for a parameter table."""
        row = {name: float(value) for name, value in self.params.items()}
        row.update({
            'prob_zero': float(self.prob_zero),
            'n_obs': float(self.n_obs),
            'n_na': float(self.n_na),
            'pct_na': float(self.pct_na),
            'ks_pval': float(self.ks_pval),
            'ad_pval': float(self.ad_pval),
        })
        return row

    @classmethod
    def from_row(
        cls,
        row,
        distribution: Union[str, DistributionType],
        method: Optional[Union[str, FittingMethod]] = None
    ) -> 'FittedDistribution':
        """
        Create from a row of a parameter table.

        Missing columns are read as undefined.

        :param row: mapping (dict or pandas Series) with parameter and
            property columns
        :param distribution: distribution of the table
        :param method: fitting method of the table
        :return: FittedDistribution without a sample
        """
        distribution = DistributionType.from_string(distribution)
        method = resolve_method(distribution, method)

        def _get(name):
            value = row.get(name, np.nan)
            return np.nan if value is None else float(value)

        n_obs = _get('n_obs')
        n_na = _get('n_na')
        return cls(
            distribution=distribution,
            method=method,
            params={name: _get(name) for name in distribution.param_names(method)},
            prob_zero=_get('prob_zero'),
            n_obs=int(n_obs) if np.isfinite(n_obs) else 0,
            n_na=int(n_na) if np.isfinite(n_na) else 0,
            pct_na=_get('pct_na'),
            ks_pval=_get('ks_pval'),
            ad_pval=_get('ad_pval'),
        )


def table_columns(distribution: DistributionType, method: FittingMethod) -> Tuple[str, ...]:
    """Column names of a parameter table for a distribution and method."""
    return distribution.param_names(method) + FIT_PROPERTY_NAMES


def undefined_fit(
    distribution: DistributionType,
    method: FittingMethod,
    na_threshold: float = DEFAULT_NA_THRESHOLD
) -> FittedDistribution:
    """Fit with all parameters and properties undefined."""
    return FittedDistribution(
        distribution=distribution,
        method=method,
        params=dict.fromkeys(distribution.param_names(method), np.nan),
        na_threshold=na_threshold,
    )


# =============================================================================
# L-MOMENTS COMPUTATION
# =============================================================================

@jit(nopython=True, cache=True)
def _unbiased_pwm(x: np.ndarray, nmom: int) -> np.ndarray:
    """
    Numba-optimized unbiased probability weighted moments b_0..b_{nmom-1}.

    :param x: 1-D array of sorted sample values, len(x) >= nmom
    :param nmom: number of moments
    :return: array of PWMs
    """
    n = len(x)
    b = np.zeros(nmom)
    for j in range(n):
        weight = 1.0
        b[0] += x[j]
        for r in range(1, nmom):
            # C(j, r) / C(n - 1, r), built up one factor at a time
            weight *= (j - r + 1) / (n - r)
            b[r] += weight * x[j]
    return b / n


def compute_pwm(data: np.ndarray, nmom: int = 4) -> np.ndarray:
    """
    Compute unbiased probability weighted moments from sample data.

    :param data: 1-D array of sample values (any order, no NaN)
    :param nmom: number of PWMs to compute (default: 4)
    :return: array [b0, b1, ..., b_{nmom-1}], NaN if the sample is too small
    """
    x = np.sort(np.asarray(data, dtype=np.float64))
    if len(x) < nmom:
        return np.full(nmom, np.nan)
    return _unbiased_pwm(x, nmom)


def compute_lmoments(data: np.ndarray, nmom: int = 4) -> np.ndarray:
    """
    Compute L-moments from sample data.

    L-moments are more robust to outliers than conventional moments
    and provide better parameter estimates for small samples.

    :param data: 1-D array of sample values
    :param nmom: number of L-moments to compute (at most 4)
    :return: array of L-moments [l1, l2, l3, l4]

    Reference: Hosking (1990)
    """
    if nmom < 1 or nmom > 4:
        raise ValueError(f"nmom must be between 1 and 4, got: {nmom}")
    b = compute_pwm(data, nmom)

    lmom = np.zeros(nmom)
    lmom[0] = b[0]  # L1 = mean

    if nmom >= 2:
        lmom[1] = 2 * b[1] - b[0]  # L2

    if nmom >= 3:
        lmom[2] = 6 * b[2] - 6 * b[1] + b[0]  # L3

    if nmom >= 4:
        lmom[3] = 20 * b[3] - 30 * b[2] + 12 * b[1] - b[0]  # L4

    return lmom


def compute_lmoment_ratios(lmom: np.ndarray) -> Tuple[float, float, float]:
    """
    Compute L-moment ratios (L-CV, L-skewness, L-kurtosis).

    :param lmom: array of L-moments [l1, l2, l3, l4]
    :return: (t2, t3, t4) = (L-CV, L-skewness, L-kurtosis)
    """
    if len(lmom) < 4 or not lmom[1] > 0:
        return np.nan, np.nan, np.nan

    t2 = lmom[1] / lmom[0] if lmom[0] != 0 else np.nan  # L-CV
    t3 = lmom[2] / lmom[1]  # L-skewness
    t4 = lmom[3] / lmom[1]  # L-kurtosis

    return t2, t3, t4


def are_lmoments_valid(lmom: np.ndarray) -> bool:
    """
    Check theoretical constraints on sample L-moments.

    Requires all values finite, l2 > 0, |t3| < 1, |t4| < 1 and
    t4 >= (5 * t3^2 - 1) / 4.

    :param lmom: array of L-moments [l1, l2, l3, l4]
    :return: True if the L-moments are usable for parameter estimation
    """
    if len(lmom) < 4 or not np.all(np.isfinite(lmom)):
        return False
    if lmom[1] <= 0:
        return False
    _, t3, t4 = compute_lmoment_ratios(lmom)
    if abs(t3) >= 1 or abs(t4) >= 1:
        return False
    return t4 >= (5 * t3 * t3 - 1) / 4


# =============================================================================
# L-MOMENT PARAMETER ESTIMATORS
# =============================================================================

def _pel_gamma(l1: float, l2: float) -> Tuple[float, float]:
    """
    Gamma shape and scale from L-moments.

    Reference: Hosking (1997), routine PELGAM
    """
    if l1 <= l2 or l2 <= 0:
        return np.nan, np.nan

    cv = l2 / l1
    if cv >= 0.5:
        t = 1 - cv
        alpha = t * (0.7213 - 0.5947 * t) / (1 + t * (-2.1817 + 1.2113 * t))
    else:
        t = math.pi * cv * cv
        alpha = (1 - 0.3080 * t) / (t * (1 + t * (-0.05812 + 0.01765 * t)))

    return alpha, l1 / alpha


def _pel_pearson3(l1: float, l2: float, t3: float) -> Tuple[float, float, float]:
    """
    Pearson Type III mean, standard deviation and skewness from L-moments.

    Reference: Hosking (1997), routine PELPE3
    """
    if l2 <= 0 or abs(t3) >= 1:
        return np.nan, np.nan, np.nan

    abs_t3 = abs(t3)
    if abs_t3 <= SMALL_SHAPE:
        return l1, l2 * math.sqrt(math.pi), 0.0

    if abs_t3 >= 1 / 3:
        t = 1 - abs_t3
        alpha = (t * (0.36067 + t * (-0.59567 + t * 0.25361))
                 / (1 + t * (-2.78861 + t * (2.56096 + t * -0.77045))))
    else:
        t = 3 * math.pi * abs_t3 * abs_t3
        alpha = (1 + 0.2906 * t) / (t * (1 + t * (0.1882 + t * 0.0442)))

    root_alpha = math.sqrt(alpha)
    beta = math.sqrt(math.pi) * l2 * math.exp(gammaln(alpha) - gammaln(alpha + 0.5))
    gamma = 2 / root_alpha
    if t3 < 0:
        gamma = -gamma

    return l1, beta * root_alpha, gamma


def _pel_gev(l1: float, l2: float, t3: float) -> Tuple[float, float, float]:
    """
    GEV location, scale and shape (Hosking's k) from L-moments.

    Uses rational approximations for the shape, refined by Newton-Raphson
    iteration for L-skewness below -0.8.

    Reference: Hosking (1997), routine PELGEV
    """
    if l2 <= 0 or abs(t3) >= 1:
        return np.nan, np.nan, np.nan

    if t3 > 0:
        z = 1 - t3
        g = (-1 + z * (1.59921491 + z * (-0.48832213 + z * 0.01573152))) / \
            (1 + z * (-0.64363929 + z * 0.08985247))
    else:
        g = (0.28377530 + t3 * (-1.21096399 + t3 * (-2.50728214
             + t3 * (-1.13455566 + t3 * -0.07138022)))) / \
            (1 + t3 * (2.06189696 + t3 * (1.31912239 + t3 * 0.25077104)))

        if t3 < -0.8:
            if t3 <= -0.97:
                g = 1 - math.log(1 + t3) / math.log(2)
            t0 = (t3 + 3) / 2
            for _ in range(GEV_MAX_ITERATIONS):
                x2 = 2.0 ** -g
                x3 = 3.0 ** -g
                xx2 = 1 - x2
                xx3 = 1 - x3
                t = xx3 / xx2
                deriv = (xx2 * x3 * math.log(3) - xx3 * x2 * math.log(2)) / (xx2 * xx2)
                g_old = g
                g = g - (t - t0) / deriv
                if abs(g - g_old) <= GEV_EPS * g:
                    break
            else:
                _logger.debug("GEV shape iteration did not converge")

    if abs(g) < SMALL_GEV_SHAPE:
        alpha = l2 / math.log(2)
        return l1 - EULER * alpha, alpha, 0.0

    gam = math.exp(gammaln(1 + g))
    alpha = l2 * g / (gam * (1 - 2.0 ** -g))
    xi = l1 - alpha * (1 - gam) / g
    return xi, alpha, g


def _pel_glo(l1: float, l2: float, t3: float) -> Tuple[float, float, float]:
    """
    Generalized logistic location, scale and shape from L-moments.

    Reference: Hosking (1997), routine PELGLO
    """
    if l2 <= 0 or abs(t3) >= 1:
        return np.nan, np.nan, np.nan

    k = -t3
    if abs(k) <= SMALL_SHAPE:
        return l1, l2, 0.0

    kk = k * math.pi / math.sin(k * math.pi)
    alpha = l2 / kk
    return l1 - alpha * (1 - kk) / k, alpha, k


def _pel_weibull(l1: float, l2: float, t3: float) -> Tuple[float, float, float]:
    """
    Weibull shape, scale and threshold from L-moments.

    The Weibull distribution is a reversed GEV: the GEV is fitted to the
    L-moments of the negated sample and requires a positive shape.
    """
    xi, alpha, k = _pel_gev(-l1, l2, -t3)
    if not np.isfinite(k) or k <= 0:
        return np.nan, np.nan, np.nan
    scale = alpha / k
    return 1 / k, scale, -xi - scale


def fit_lmoments(
    values: np.ndarray,
    distribution: DistributionType
) -> Optional[Dict[str, float]]:
    """
    Estimate distribution parameters by the method of L-moments.

    :param values: 1-D array of sample values without NaN
    :param distribution: distribution type
    :return: parameters named as in DistributionType.param_names, or None if
        the sample L-moments are invalid
    """
    if len(values) < MIN_VALUES_FOR_LMOMENTS:
        return None

    lmom = compute_lmoments(values, nmom=4)
    if not are_lmoments_valid(lmom):
        return None
    l1, l2 = lmom[0], lmom[1]
    _, t3, _ = compute_lmoment_ratios(lmom)

    if distribution == DistributionType.GAMMA:
        alpha, beta = _pel_gamma(l1, l2)
        return {'shape': alpha, 'rate': 1 / beta}
    elif distribution == DistributionType.GAMMA3:
        mu, sigma, gamma = _pel_pearson3(l1, l2, t3)
        with np.errstate(divide='ignore', invalid='ignore'):
            shape = (2 / np.float64(gamma)) ** 2
            scale = sigma / np.sqrt(shape)
            thres = mu - shape * scale
        return {'shape': float(shape), 'scale': float(scale), 'thres': float(thres)}
    elif distribution == DistributionType.WEIBULL:
        shape, scale, _ = _pel_weibull(l1, l2, t3)
        return {'shape': shape, 'scale': scale}
    elif distribution == DistributionType.WEIBULL3:
        shape, scale, thres = _pel_weibull(l1, l2, t3)
        return {'shape': shape, 'scale': scale, 'thres': thres}
    elif distribution == DistributionType.GEV:
        xi, alpha, k = _pel_gev(l1, l2, t3)
        return {'shape': -k, 'scale': alpha, 'location': xi}
    elif distribution == DistributionType.GLOGIS:
        xi, alpha, k = _pel_glo(l1, l2, t3)
        return {'xi': xi, 'alpha': alpha, 'kappa': k}
    raise ConfigurationError(f"Unsupported distribution: {distribution}")


# =============================================================================
# MAXIMUM LIKELIHOOD ESTIMATION
# =============================================================================

def fit_mle(
    values: np.ndarray,
    distribution: DistributionType
) -> Dict[str, float]:
    """
    Estimate distribution parameters by maximum likelihood.

    :param values: 1-D array of sample values without NaN (and without
        zeros for zero-bounded families)
    :param distribution: distribution type supporting MLE
    :return: parameters named as in DistributionType.param_names
    :raises scipy.stats.FitError, ValueError, RuntimeError: if the optimizer
        fails
    """
    location_guess = float(np.median(values))
    scale_guess = float(np.std(values)) or 1.0

    with warnings.catch_warnings():
        warnings.simplefilter('ignore')
        with np.errstate(all='ignore'):
            if distribution == DistributionType.GAMMA:
                shape, _, scale = stats.gamma.fit(values, floc=0)
                return {'shape': float(shape), 'rate': 1 / float(scale)}
            elif distribution == DistributionType.WEIBULL:
                shape, _, scale = stats.weibull_min.fit(values, floc=0)
                return {'shape': float(shape), 'scale': float(scale)}
            elif distribution == DistributionType.GEV:
                c, loc, scale = stats.genextreme.fit(
                    values, 0.1, loc=location_guess, scale=scale_guess
                )
                return {'shape': -float(c), 'scale': float(scale), 'location': float(loc)}
            elif distribution == DistributionType.GLOGIS:
                c, loc, scale = stats.genlogistic.fit(
                    values, 1.0, loc=location_guess, scale=scale_guess
                )
                return {'shape': float(c), 'scale': float(scale), 'location': float(loc)}

    raise ConfigurationError(f"Method 'mle' is not supported for '{distribution}'")


# =============================================================================
# DISTRIBUTION FUNCTIONS
# =============================================================================

def glo_cdf(x, xi: float, alpha: float, kappa: float) -> np.ndarray:
    """
    CDF of Hosking's generalized logistic distribution.

    Values beyond the bounded end of the support map to 0 or 1.

    Reference: Hosking (1997), routine CDFGLO
    """
    x = np.asarray(x, dtype=float)
    with np.errstate(all='ignore'):
        y = (x - xi) / alpha
        if kappa != 0:
            arg = 1 - kappa * y
            inside = arg > 1e-15
            bound = np.inf if kappa > 0 else -np.inf
            y = np.where(inside, -np.log(np.where(inside, arg, 1.0)) / kappa, bound)
        result = 1 / (1 + np.exp(-y))
    return np.where(np.isnan(x), np.nan, result)


def glo_ppf(f, xi: float, alpha: float, kappa: float) -> np.ndarray:
    """
    Quantile function of Hosking's generalized logistic distribution.

    Reference: Hosking (1997), routine QUAGLO
    """
    f = np.asarray(f, dtype=float)
    with np.errstate(all='ignore'):
        y = np.log(f / (1 - f))
        if kappa != 0:
            y = (1 - np.exp(-kappa * y)) / kappa
            bound = xi + alpha / kappa
            lower = bound if kappa < 0 else -np.inf
            upper = bound if kappa > 0 else np.inf
        else:
            lower, upper = -np.inf, np.inf
        result = xi + alpha * y
    result = np.where(f == 0, lower, result)
    result = np.where(f == 1, upper, result)
    return np.where((f < 0) | (f > 1) | np.isnan(f), np.nan, result)


def _frozen(distribution: DistributionType, params: Dict[str, float]):
    """Frozen scipy distribution for MLE-style parameters."""
    if distribution == DistributionType.GAMMA:
        return stats.gamma(a=params['shape'], scale=1 / params['rate'])
    elif distribution == DistributionType.GAMMA3:
        return stats.gamma(a=params['shape'], loc=params['thres'], scale=params['scale'])
    elif distribution == DistributionType.WEIBULL:
        return stats.weibull_min(c=params['shape'], scale=params['scale'])
    elif distribution == DistributionType.WEIBULL3:
        return stats.weibull_min(c=params['shape'], loc=params['thres'], scale=params['scale'])
    elif distribution == DistributionType.GEV:
        return stats.genextreme(c=-params['shape'], loc=params['location'], scale=params['scale'])
    elif distribution == DistributionType.GLOGIS:
        return stats.genlogistic(c=params['shape'], loc=params['location'], scale=params['scale'])
    raise ConfigurationError(f"Unsupported distribution: {distribution}")


def _is_glo(distribution: DistributionType, params: Dict[str, float]) -> bool:
    return distribution == DistributionType.GLOGIS and 'kappa' in params


def _check_params(distribution: DistributionType, params: Dict[str, float]) -> bool:
    """True if all parameters are finite; raises for wrong parameter names."""
    if _is_glo(distribution, params):
        expected = set(distribution.param_names(FittingMethod.LMOMENTS))
    else:
        expected = set(distribution.param_names(FittingMethod.MLE))
    missing = expected - set(params)
    if missing:
        raise ValueError(
            f"Missing parameters for '{distribution}': {sorted(missing)}"
        )
    return all(np.isfinite(params[name]) for name in expected)


def distribution_cdf(
    x,
    distribution: Union[str, DistributionType],
    params: Dict[str, float]
) -> np.ndarray:
    """
    Cumulative probability of a distribution with native parameters.

    The generalized logistic distribution is evaluated in Hosking's
    parameterization when the parameters are named xi, alpha and kappa.

    :param x: value or array of values
    :param distribution: distribution type or name
    :param params: native parameters (see DistributionType.param_names)
    :return: array of probabilities, NaN where x is NaN or the parameters
        are undefined
    """
    distribution = DistributionType.from_string(distribution)
    x = np.asarray(x, dtype=float)
    if not _check_params(distribution, params):
        return np.full(x.shape, np.nan)
    if _is_glo(distribution, params):
        return glo_cdf(x, params['xi'], params['alpha'], params['kappa'])
    with np.errstate(all='ignore'):
        return np.asarray(_frozen(distribution, params).cdf(x), dtype=float)


def distribution_ppf(
    q,
    distribution: Union[str, DistributionType],
    params: Dict[str, float]
) -> np.ndarray:
    """
    Quantile function of a distribution with native parameters.

    :param q: probability or array of probabilities
    :param distribution: distribution type or name
    :param params: native parameters
    :return: array of quantiles
    """
    distribution = DistributionType.from_string(distribution)
    q = np.asarray(q, dtype=float)
    if not _check_params(distribution, params):
        return np.full(q.shape, np.nan)
    if _is_glo(distribution, params):
        return glo_ppf(q, params['xi'], params['alpha'], params['kappa'])
    with np.errstate(all='ignore'):
        return np.asarray(_frozen(distribution, params).ppf(q), dtype=float)


def distribution_rvs(
    n: int,
    distribution: Union[str, DistributionType],
    params: Dict[str, float],
    random_state=None
) -> np.ndarray:
    """
    Random variates of a distribution with native parameters.

    :param n: number of variates
    :param distribution: distribution type or name
    :param params: native parameters
    :param random_state: seed or numpy Generator
    :return: array of n variates (NaN if the parameters are undefined)
    """
    distribution = DistributionType.from_string(distribution)
    rng = np.random.default_rng(random_state)
    if not _check_params(distribution, params):
        return np.full(n, np.nan)
    if _is_glo(distribution, params):
        return glo_ppf(rng.uniform(size=n), params['xi'], params['alpha'], params['kappa'])
    return np.asarray(_frozen(distribution, params).rvs(size=n, random_state=rng), dtype=float)


# =============================================================================
# GOODNESS OF FIT TESTING
# =============================================================================

def _adinf(z: float) -> float:
    """Asymptotic distribution of the Anderson-Darling statistic."""
    if z < 2:
        return (math.exp(-1.2337141 / z) / math.sqrt(z)
                * (2.00012 + (0.247105 - (0.0649821 - (0.0347962 - (0.011672
                   - 0.00168691 * z) * z) * z) * z) * z))
    return math.exp(-math.exp(1.0776 - (2.30695 - (0.43424 - (0.082433 - (0.008056
                    - 0.0003146 * z) * z) * z) * z) * z))


def _ad_errfix(n: int, x: float) -> float:
    """Finite sample correction to the asymptotic Anderson-Darling distribution."""
    if x > 0.8:
        return (-130.2137 + (745.2337 - (1705.091 - (1950.646 - (1116.360
                - 255.7844 * x) * x) * x) * x) * x) / n
    c = 0.01265 + 0.1757 / n
    if x < c:
        t = x / c
        t = math.sqrt(t) * (1 - t) * (49 * t - 102)
        return t * (0.0037 / (n * n) + 0.00078 / n + 0.00006) / n
    t = (x - c) / (0.8 - c)
    t = -0.00022633 + (6.54034 - (14.6538 - (14.458 - (8.259 - 1.91864 * t) * t) * t) * t) * t
    return t * (0.04213 + 0.01365 / n) / n


def anderson_darling_pvalue(statistic: float, n: int) -> float:
    """
    Upper tail p-value of the Anderson-Darling statistic for a fully
    specified null distribution.

    Reference: Marsaglia & Marsaglia (2004)

    :param statistic: A^2 statistic
    :param n: sample size
    :return: p-value in [0, 1]
    """
    if np.isnan(statistic) or n < 1:
        return np.nan
    if statistic <= 0:
        return 1.0
    if not np.isfinite(statistic):
        return 0.0
    x = _adinf(statistic)
    p = 1 - (x + _ad_errfix(n, x))
    return float(min(max(p, 0.0), 1.0))


def anderson_darling_test(
    values: np.ndarray,
    cdf: Callable[[np.ndarray], np.ndarray]
) -> Tuple[float, float]:
    """
    Two-sided Anderson-Darling test against a fully specified distribution.

    :param values: 1-D array of sample values
    :param cdf: cumulative distribution function of the null distribution
    :return: tuple of (A^2 statistic, p-value)
    :raises ValueError: for an empty sample or undefined CDF values
    """
    values = np.asarray(values, dtype=float)
    n = len(values)
    if n == 0:
        raise ValueError("Anderson-Darling test requires a non-empty sample")
    u = np.sort(np.asarray(cdf(values), dtype=float))
    if np.any(np.isnan(u)):
        raise ValueError("Undefined CDF values in Anderson-Darling test")

    i = np.arange(1, n + 1)
    with np.errstate(divide='ignore', invalid='ignore'):
        terms = (2 * i - 1) * (np.log(u) + np.log1p(-u[::-1]))
    statistic = -n - float(np.mean(terms))
    if np.isnan(statistic):
        statistic = np.inf
    return statistic, anderson_darling_pvalue(statistic, n)


def goodness_of_fit(
    fitted: FittedDistribution,
    values: np.ndarray,
    diagnostics: Optional[Diagnostics] = None,
    date=None
) -> Tuple[float, float]:
    """
    Kolmogorov-Smirnov and Anderson-Darling p-values of a fitted distribution.

    A failing test leaves its p-value undefined and records a GOF_FAILED
    diagnostic.

    :param fitted: fitted distribution with defined parameters
    :param values: sample the distribution was fitted to
    :param diagnostics: optional collector for non-fatal conditions
    :param date: date the fit belongs to, for diagnostics
    :return: tuple of (ks_pval, ad_pval)
    """
    diagnostics = ensure_diagnostics(diagnostics)
    ks_pval = ad_pval = np.nan

    with warnings.catch_warnings():
        warnings.simplefilter('ignore')
        try:
            ks_pval = float(stats.kstest(values, fitted.cdf).pvalue)
        except Exception as exc:
            diagnostics.add(DiagnosticKind.GOF_FAILED, f"Kolmogorov-Smirnov test failed: {exc}", date)
        try:
            _, ad_pval = anderson_darling_test(values, fitted.cdf)
        except Exception as exc:
            diagnostics.add(DiagnosticKind.GOF_FAILED, f"Anderson-Darling test failed: {exc}", date)

    return ks_pval, ad_pval


# =============================================================================
# DISTRIBUTION FITTING
# =============================================================================

def fit_distribution(
    values,
    distribution: Union[str, DistributionType] = DEFAULT_DISTRIBUTION,
    method: Optional[Union[str, FittingMethod]] = None,
    na_threshold: float = DEFAULT_NA_THRESHOLD,
    diagnostics: Optional[Diagnostics] = None,
    date=None
) -> FittedDistribution:
    """
    Fit a distribution to a reference sample.

    Missing values are counted and removed first. If their percentage
    reaches ``na_threshold`` (or nothing remains) the parameters stay
    undefined. For the zero-bounded families (gamma, weibull) a negative value
    leaves the parameters undefined; zeros are removed before fitting and
    accounted for by ``prob_zero``. A sample of equal values is not fitted by
    MLE. Goodness of fit is tested only when all parameters are defined.

    :param values: 1-D sample, NaN where missing
    :param distribution: 'gamma', 'gamma3', 'weibull', 'weibull3', 'gev' or
        'glogis'
    :param method: 'mle' or 'lmom'; defaults to 'mle' except for gamma3 and
        weibull3
    :param na_threshold: percentage of missing values at which no fit is made
    :param diagnostics: optional collector for non-fatal conditions
    :param date: date the sample belongs to, for diagnostics
    :return: FittedDistribution
    :raises ConfigurationError: for unknown names or MLE with gamma3/weibull3
    """
    distribution = DistributionType.from_string(distribution)
    method = resolve_method(distribution, method)
    na_threshold = check_threshold('na_threshold', na_threshold)
    diagnostics = ensure_diagnostics(diagnostics)

    values = np.asarray(values, dtype=float).ravel()
    fitted = undefined_fit(distribution, method, na_threshold)
    fitted.n_obs = len(values)
    if fitted.n_obs > 0:
        fitted.n_na = int(np.sum(np.isnan(values)))
        fitted.pct_na = fitted.n_na / fitted.n_obs * 100

    sample = values[~np.isnan(values)]
    fitted.prob_zero = float(np.sum(sample == 0)) / len(sample) if len(sample) > 0 else 0.0
    fitted.sample = sample

    if len(sample) == 0 or fitted.pct_na >= na_threshold:
        diagnostics.add(
            DiagnosticKind.INSUFFICIENT_DATA,
            f"{fitted.n_na} of {fitted.n_obs} values missing, {distribution} not fitted",
            date,
        )
        return fitted

    if distribution.zero_bounded:
        if np.any(sample < 0):
            diagnostics.add(
                DiagnosticKind.NEGATIVE_VALUES,
                f"{distribution} distribution: all values must be zero or positive, not fitted",
                date,
            )
            return fitted
        sample = sample[sample != 0]
        fitted.sample = sample
        if len(sample) == 0:
            diagnostics.add(
                DiagnosticKind.FIT_FAILED,
                f"{distribution} distribution: no non-zero values to fit",
                date,
            )
            return fitted

    if method == FittingMethod.MLE:
        if np.ptp(sample) == 0:
            diagnostics.add(
                DiagnosticKind.FIT_FAILED,
                f"{distribution} MLE: all {len(sample)} values are equal",
                date,
            )
            return fitted
        try:
            params = fit_mle(sample, distribution)
        except (stats.FitError, ValueError, RuntimeError, FloatingPointError) as exc:
            diagnostics.add(DiagnosticKind.FIT_FAILED, f"{distribution} MLE failed: {exc}", date)
            return fitted
        if not all(np.isfinite(v) for v in params.values()):
            diagnostics.add(DiagnosticKind.FIT_FAILED, f"{distribution} MLE gave undefined parameters", date)
            return fitted
        with np.errstate(all='ignore'):
            loglik = np.sum(distribution_logpdf(sample, distribution, params))
        if not np.isfinite(loglik):
            diagnostics.add(DiagnosticKind.FIT_FAILED, f"{distribution} MLE gave a non-finite likelihood", date)
            return fitted
    else:
        params = fit_lmoments(sample, distribution)
        if params is None:
            diagnostics.add(
                DiagnosticKind.INVALID_LMOMENTS,
                f"invalid L-moments ({len(sample)} values), {distribution} not fitted",
                date,
            )
            return fitted
        if not all(np.isfinite(v) for v in params.values()):
            diagnostics.add(
                DiagnosticKind.FIT_FAILED,
                f"{distribution} L-moment estimates are undefined",
                date,
            )
            return fitted

    fitted.params = {name: float(params[name]) for name in distribution.param_names(method)}
    fitted.ks_pval, fitted.ad_pval = goodness_of_fit(fitted, sample, diagnostics, date)
    return fitted


def distribution_logpdf(
    x,
    distribution: DistributionType,
    params: Dict[str, float]
) -> np.ndarray:
    """Log density for MLE-style parameters."""
    return np.asarray(_frozen(distribution, params).logpdf(np.asarray(x, dtype=float)), dtype=float)
