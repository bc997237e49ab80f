"""
Rate Integration

This module turns a differential rate dR/dE into expected signal counts
for a detector:

N = exposure * efficiency * ∫ dR/dE dE

Key features:
- Integration window clipped to the kinematically accessible energies
- Total, per-bin and cumulative (maximum-gap) expected counts
- Adaptive quadrature (scipy.integrate.quad) per sub-interval
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy import integrate

from .detector import BinnedPoissonMode, Detector, MaximumGapMode
from .model import ParticleModel, VelocityDistribution

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IntegrationSettings:
    """Settings passed to scipy.integrate.quad.

    Attributes:
        limit: Maximum number of subintervals
        epsrel: Relative tolerance (absolute tolerance is disabled since
                rates span many orders of magnitude)
    """
    limit: int = 200
    epsrel: float = 1e-8

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ValueError(f"limit must be >= 1, got {self.limit}")
        if self.epsrel <= 0:
            raise ValueError(f"epsrel must be > 0, got {self.epsrel}")


DEFAULT_INTEGRATION = IntegrationSettings()


def energy_range(detector: Detector,
                 model: ParticleModel,
                 halo: VelocityDistribution) -> Optional[tuple[float, float]]:
    """Accessible part of the detector window.

    Returns:
        (E_threshold, min(E_max, E_kin)) or None when the signal is
        kinematically excluded
    """
    e_lo = detector.energy_threshold
    e_hi = min(detector.energy_max, model.maximum_energy(halo.maximum_speed))
    if not e_hi > e_lo:
        return None
    return e_lo, e_hi


def integrate_rate(model: ParticleModel,
                   halo: VelocityDistribution,
                   e_lo: float,
                   e_hi: float,
                   settings: IntegrationSettings = DEFAULT_INTEGRATION) -> float:
    """∫ dR/dE dE over [e_lo, e_hi]; zero for an empty interval."""
    if not e_hi > e_lo:
        return 0.0
    value, error = integrate.quad(
        lambda E: model.differential_rate(E, halo),
        e_lo, e_hi,
        epsabs=0.0, epsrel=settings.epsrel, limit=settings.limit,
    )
    return float(value)


def total_signals(detector: Detector,
                  model: ParticleModel,
                  halo: VelocityDistribution,
                  settings: IntegrationSettings = DEFAULT_INTEGRATION) -> float:
    """Expected number of signal events in the full energy window."""
    window = energy_range(detector, model, halo)
    if window is None:
        return 0.0
    return detector.effective_exposure * integrate_rate(model, halo, *window, settings=settings)


def binned_signals(detector: Detector,
                   model: ParticleModel,
                   halo: VelocityDistribution,
                   settings: IntegrationSettings = DEFAULT_INTEGRATION) -> NDArray[np.float64]:
    """Expected number of signal events per energy bin, in bin order."""
    if not isinstance(detector.mode, BinnedPoissonMode):
        raise ValueError(f"{detector.name} does not use binned Poisson statistics")

    edges = detector.mode.bin_edges
    signals = np.zeros(detector.mode.n_bins)
    window = energy_range(detector, model, halo)
    if window is None:
        return signals

    e_kin = window[1]
    for i in range(detector.mode.n_bins):
        signals[i] = integrate_rate(model, halo, edges[i], min(edges[i + 1], e_kin), settings=settings)
    return detector.effective_exposure * signals


def cumulative_signals(detector: Detector,
                       model: ParticleModel,
                       halo: VelocityDistribution,
                       energies: ArrayLike,
                       settings: IntegrationSettings = DEFAULT_INTEGRATION) -> NDArray[np.float64]:
    """Cumulative expected events mu(E) from E_threshold up to each energy.

    Args:
        energies: Ascending energies inside the detector window

    Returns:
        mu(E) for each energy (non-decreasing)
    """
    E = np.asarray(energies, dtype=float)
    mu = np.zeros_like(E)
    window = energy_range(detector, model, halo)
    if window is None or E.size == 0:
        return mu

    # Integrate piecewise between consecutive points so mu is monotone.
    points = np.clip(E, window[0], window[1])
    lower = np.concatenate(([window[0]], points[:-1]))
    pieces = np.array([
        integrate_rate(model, halo, a, b, settings=settings)
        for a, b in zip(lower, points)
    ])
    mu = detector.effective_exposure * np.cumsum(pieces)
    return mu


def maximum_gap_mapping(detector: Detector,
                        model: ParticleModel,
                        halo: VelocityDistribution,
                        settings: IntegrationSettings = DEFAULT_INTEGRATION) -> NDArray[np.float64]:
    """Events mapped into expected-event space, with the window endpoints.

    Returns:
        mu at [E_threshold, E_1, ..., E_n, E_max]
    """
    if not isinstance(detector.mode, MaximumGapMode):
        raise ValueError(f"{detector.name} does not use the maximum-gap method")

    points = np.concatenate(([detector.energy_threshold],
                             detector.mode.energies,
                             [detector.energy_max]))
    mapping = cumulative_signals(detector, model, halo, points, settings=settings)
    logger.debug("Maximum-gap mapping for %s: mu_total = %.4g", detector.name, mapping[-1])
    return mapping


def signal_spectrum(detector: Detector,
                    model: ParticleModel,
                    halo: VelocityDistribution,
                    energies: ArrayLike) -> NDArray[np.float64]:
    """Expected event density dN/dE on an energy grid (zero outside the window)."""
    E = np.asarray(energies, dtype=float)
    rates = np.asarray(model.differential_rate(E, halo), dtype=float)
    inside = (E >= detector.energy_threshold) & (E <= detector.energy_max)
    return np.where(inside, detector.effective_exposure * rates, 0.0)
