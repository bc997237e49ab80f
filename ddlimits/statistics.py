"""
Test statistics for upper limits.

Poisson counting:
    P(k <= n | S + B) = Q(n + 1, S + B), Q the regularized upper incomplete
    gamma function. The largest allowed signal at confidence CL solves
    Q(n + 1, S + B) = 1 - CL; for n = B = 0 this is S = -ln(1 - CL).

Maximum gap (Yellin 2002):
    C0(x, mu) = sum_{k=0}^{floor(mu/x)} (kx - mu)^k e^{-kx} / k! (1 + k/(mu - kx))
    is the probability that the largest gap between events of a Poisson
    process with mean mu is smaller than x. Exclusion at CL means C0 >= CL.
"""
from __future__ import annotations

import math
from typing import Sequence

import numpy as np
from numpy.typing import ArrayLike
from scipy import special

from .detector import BinnedPoissonMode, Detector, MaximumGapMode, PoissonMode
from .integrate import (
    DEFAULT_INTEGRATION,
    IntegrationSettings,
    binned_signals,
    maximum_gap_mapping,
    total_signals,
)
from .model import ParticleModel, VelocityDistribution

# exp() underflows to zero below this
LOG_UNDERFLOW = math.log(np.finfo(float).tiny)


class DegenerateStatisticError(ArithmeticError):
    """The statistic carries no information on the signal strength."""


def check_certainty(certainty: float) -> None:
    if not 0.0 < certainty < 1.0:
        raise ValueError(f"certainty must be in (0, 1), got {certainty}")


# -------------------------------------------------------
# Poisson counting
# -------------------------------------------------------

def poisson_cdf(observed: float, mu: float) -> float:
    """P(k <= observed | mu), continuous in ``observed``."""
    if mu < 0:
        raise ValueError(f"mu must be >= 0, got {mu}")
    if mu == 0:
        return 1.0
    return float(special.gammaincc(observed + 1.0, mu))


def poisson_signal_limit(observed: float, background: float, certainty: float) -> float:
    """Largest expected signal S with P(k <= observed | S + B) >= 1 - CL.

    Args:
        observed: Observed event count n
        background: Expected background count B
        certainty: Confidence level CL

    Returns:
        S_max > 0

    Raises:
        DegenerateStatisticError: If the background alone is already excluded
    """
    check_certainty(certainty)
    mu_up = float(special.gammainccinv(observed + 1.0, 1.0 - certainty))
    s_max = mu_up - background
    if not s_max > 0:
        raise DegenerateStatisticError(
            f"background {background} with {observed} observed events is excluded "
            f"at {certainty} without signal"
        )
    return s_max


def poisson_likelihood(signal: float, mode: PoissonMode) -> float:
    if signal == 0 and mode.background == 0:
        raise DegenerateStatisticError("zero signal and zero background")
    return poisson_cdf(mode.n_observed, signal + mode.background)


def binned_poisson_likelihood(signals: ArrayLike, mode: BinnedPoissonMode) -> float:
    """Per-bin Poisson CDFs combined by the most constraining bin."""
    S = np.asarray(signals, dtype=float)
    B = np.asarray(mode.background, dtype=float)
    if np.all(S == 0) and np.all(B == 0):
        raise DegenerateStatisticError("zero signal and zero background in all bins")
    return min(poisson_cdf(n, s + b) for n, s, b in zip(mode.n_observed, S, B))


def binned_scaling(signals: ArrayLike, mode: BinnedPoissonMode, certainty: float) -> float:
    """Smallest factor by which the signal must grow to be excluded in some bin.

    Bins without signal do not constrain; returns inf if no bin does.
    Bins whose background alone is excluded are skipped.

    Raises:
        DegenerateStatisticError: If every bin with signal is degenerate
    """
    S = np.asarray(signals, dtype=float)
    factors = []
    degenerate = []
    for i, (n, b, s) in enumerate(zip(mode.n_observed, mode.background, S)):
        if not s > 0:
            continue
        try:
            factors.append(poisson_signal_limit(n, b, certainty) / s)
        except DegenerateStatisticError:
            degenerate.append(i)

    if factors:
        return min(factors)
    if degenerate:
        raise DegenerateStatisticError(f"all bins with signal are degenerate: {degenerate}")
    return math.inf


# -------------------------------------------------------
# Maximum gap
# -------------------------------------------------------

def cdf_maximum_gap(x: float, mu: float) -> float:
    """Yellin's C0(x, mu).

    The series is summed in the division-free form
    e^{-kx}/k! [(kx-mu)^k - k (kx-mu)^{k-1}] with log-space magnitudes;
    the sum stops once the terms decrease below the underflow limit.
    """
    if x < 0 or mu < 0:
        raise ValueError(f"x and mu must be >= 0, got x={x}, mu={mu}")
    if mu == 0:
        return 1.0
    if x == 0:
        return 0.0
    if x > mu:
        return 1.0
    if x == mu:
        return 1.0 - math.exp(-mu)

    m = int(math.floor(mu / x))
    total = 1.0
    previous = -math.inf
    for k in range(1, m + 1):
        d = k * x - mu
        if d == 0.0:
            if k == 1:
                total -= math.exp(-x)
            continue
        log_term = -k * x - math.lgamma(k + 1) + (k - 1) * math.log(abs(d)) + math.log(abs(d - k))
        if log_term < LOG_UNDERFLOW and log_term < previous:
            break
        sign = (1.0 if d > 0 else -1.0) ** (k - 1) * (1.0 if d - k > 0 else -1.0)
        total += sign * math.exp(log_term)
        previous = log_term

    return min(max(total, 0.0), 1.0)


def maximum_gap(mapping: Sequence[float]) -> tuple[float, float]:
    """Largest gap and total expected events of a cumulative mapping."""
    mu = np.asarray(mapping, dtype=float)
    if mu.size < 2:
        return 0.0, 0.0
    return float(np.max(np.diff(mu))), float(mu[-1] - mu[0])


def maximum_gap_likelihood(mapping: Sequence[float]) -> float:
    """Probability of a maximum gap at least as large as the observed one.

    Raises:
        DegenerateStatisticError: If no signal is expected in the window
    """
    x, mu = maximum_gap(mapping)
    if mu == 0:
        raise DegenerateStatisticError("no expected signal in the energy window")
    return 1.0 - cdf_maximum_gap(x, mu)


# -------------------------------------------------------
# Dispatch
# -------------------------------------------------------

def likelihood(detector: Detector,
               model: ParticleModel,
               halo: VelocityDistribution,
               settings: IntegrationSettings = DEFAULT_INTEGRATION) -> float:
    """Statistic of the detector's mode at the model's strength.

    A model is excluded at confidence CL when this drops below 1 - CL.
    """
    mode = detector.mode
    if isinstance(mode, PoissonMode):
        return poisson_likelihood(total_signals(detector, model, halo, settings), mode)
    if isinstance(mode, BinnedPoissonMode):
        return binned_poisson_likelihood(binned_signals(detector, model, halo, settings), mode)
    if isinstance(mode, MaximumGapMode):
        return maximum_gap_likelihood(maximum_gap_mapping(detector, model, halo, settings))
    raise TypeError(f"Unsupported statistical mode: {type(mode).__name__}")

