"""
Upper limits and exclusion curves

This module converts the test statistics into upper bounds on the
interaction strength and scans them over a grid of DM masses.

The expected signal is proportional to the interaction strength, so every
bound follows from a single rate evaluation:
- Poisson / binned Poisson: strength * S_required / S_0 (closed form)
- Maximum gap: root search in the scaling factor f of
  1 - C0(f x_0, f mu_0) = 1 - CL (brentq in log10 f)
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from multiprocessing import Pool, cpu_count
from typing import Optional, Sequence

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy import optimize

from .detector import BinnedPoissonMode, Detector, MaximumGapMode, PoissonMode
from .integrate import (
    IntegrationSettings,
    binned_signals,
    energy_range,
    maximum_gap_mapping,
    total_signals,
)
from .model import ParticleModel, VelocityDistribution
from .statistics import (
    DegenerateStatisticError,
    binned_scaling,
    cdf_maximum_gap,
    check_certainty,
    likelihood,
    maximum_gap,
    poisson_signal_limit,
)

logger = logging.getLogger(__name__)

EXCLUDED_STATUS = "excluded"
KINEMATIC_NULL_STATUS = "kinematic_null"
UNCONSTRAINED_STATUS = "unconstrained"
SOLVER_FAILURE_STATUS = "solver_failure"


class SolverError(RuntimeError):
    """The root search failed to bracket or to converge."""


@dataclass(frozen=True)
class SolverSettings:
    """Settings of the upper-bound root search.

    Attributes:
        maxiter: Iteration cap of brentq
        xtol: Absolute tolerance on log10 of the scaling factor
        max_bracket_decades: How far the bracket may grow on each side
        integration: Quadrature settings for the rate integrals
    """
    maxiter: int = 200
    xtol: float = 1e-6
    max_bracket_decades: int = 30
    integration: IntegrationSettings = field(default_factory=IntegrationSettings)

    def __post_init__(self) -> None:
        if self.maxiter < 1:
            raise ValueError(f"maxiter must be >= 1, got {self.maxiter}")
        if self.xtol <= 0:
            raise ValueError(f"xtol must be > 0, got {self.xtol}")
        if self.max_bracket_decades < 1:
            raise ValueError(f"max_bracket_decades must be >= 1, got {self.max_bracket_decades}")


@dataclass(frozen=True)
class ScanSettings:
    """Mass grid and confidence level of a limit scan.

    Attributes:
        mass_min: Lowest DM mass
        mass_max: Highest DM mass
        points: Number of log-spaced masses
        certainty: Confidence level of the bounds
    """
    mass_min: float
    mass_max: float
    points: int = 50
    certainty: float = 0.95

    def __post_init__(self) -> None:
        if self.mass_min <= 0:
            raise ValueError(f"mass_min must be > 0, got {self.mass_min}")
        if self.mass_max < self.mass_min:
            raise ValueError(f"mass_max ({self.mass_max}) must be >= mass_min ({self.mass_min})")
        if self.points < 1:
            raise ValueError(f"points must be >= 1, got {self.points}")
        check_certainty(self.certainty)

    def masses(self) -> NDArray[np.float64]:
        return log_mass_grid(self.mass_min, self.mass_max, self.points)


@dataclass(frozen=True)
class LimitCurve:
    """Exclusion curve: one bound per scanned mass, in ascending mass.

    Attributes:
        masses: DM masses
        bounds: Upper bounds on the strength (inf: no bound, nan: failure)
        status: Per-point status string
        certainty: Confidence level
        detector_name: Name of the detector
        model_name: Class name of the particle model
    """
    masses: NDArray[np.float64]
    bounds: NDArray[np.float64]
    status: tuple[str, ...]
    certainty: float
    detector_name: str = ""
    model_name: str = ""

    def __post_init__(self) -> None:
        for name in ("masses", "bounds"):
            values = np.array(getattr(self, name), dtype=float)
            values.setflags(write=False)
            object.__setattr__(self, name, values)
        object.__setattr__(self, "status", tuple(self.status))
        if not (len(self.masses) == len(self.bounds) == len(self.status)):
            raise ValueError("masses, bounds and status must have equal length")

    def __len__(self) -> int:
        return len(self.masses)

    def excluded(self) -> NDArray[np.bool_]:
        return np.array([s == EXCLUDED_STATUS for s in self.status], dtype=bool)

    def as_array(self) -> NDArray[np.float64]:
        """(n, 2) array of (mass, bound) pairs."""
        return np.column_stack([self.masses, self.bounds])

    def minimum(self) -> tuple[float, float]:
        """Mass and bound of the strongest constraint (nan, nan if none)."""
        mask = self.excluded()
        if not np.any(mask):
            return float("nan"), float("nan")
        idx = int(np.argmin(np.where(mask, self.bounds, np.inf)))
        return float(self.masses[idx]), float(self.bounds[idx])

    def to_dict(self) -> dict:
        return {
            "detector": self.detector_name,
            "model": self.model_name,
            "certainty": self.certainty,
            "masses": self.masses.tolist(),
            "bounds": [b if np.isfinite(b) else None for b in self.bounds.tolist()],
            "status": list(self.status),
        }


def log_mass_grid(mass_min: float, mass_max: float, points: int) -> NDArray[np.float64]:
    """Create a logarithmically-spaced mass grid.

    Args:
        mass_min: Lowest mass (> 0)
        mass_max: Highest mass (>= mass_min)
        points: Number of grid points

    Returns:
        Log-spaced array of masses
    """
    if mass_min <= 0 or mass_max < mass_min:
        raise ValueError(f"invalid mass range [{mass_min}, {mass_max}]")
    if points < 1:
        raise ValueError(f"points must be >= 1, got {points}")
    if points == 1:
        return np.array([mass_min], dtype=float)
    return np.logspace(np.log10(mass_min), np.log10(mass_max), points)


# -------------------------------------------------------
# Upper-Bound Solver
# -------------------------------------------------------

def required_signals(detector: Detector, certainty: float = 0.95) -> float:
    """Largest allowed expected signal of a Poisson-counting detector."""
    if not isinstance(detector.mode, PoissonMode):
        raise ValueError(f"{detector.name} does not use Poisson counting")
    return poisson_signal_limit(detector.mode.n_observed, detector.mode.background, certainty)


def likelihood_at(detector: Detector,
                  model: ParticleModel,
                  halo: VelocityDistribution,
                  strength: float,
                  settings: Optional[SolverSettings] = None) -> float:
    """Test statistic of the detector at a trial interaction strength."""
    settings = settings if settings is not None else SolverSettings()
    return likelihood(detector, model.with_strength(strength), halo, settings.integration)


def _maximum_gap_scaling(x0: float, mu0: float, certainty: float, settings: SolverSettings) -> float:
    """Factor f with 1 - C0(f x0, f mu0) = 1 - CL."""
    target = 1.0 - certainty

    def excess(log10_f: float) -> float:
        f = 10.0**log10_f
        return (1.0 - cdf_maximum_gap(f * x0, f * mu0)) - target

    # Start where the total expected signal is one event.
    start = -math.log10(mu0)
    lo, hi = start, start
    for _ in range(settings.max_bracket_decades):
        if excess(lo) > 0:
            break
        lo -= 1.0
    else:
        raise SolverError(f"no lower bracket within {settings.max_bracket_decades} decades")
    for _ in range(settings.max_bracket_decades):
        if excess(hi) < 0:
            break
        hi += 1.0
    else:
        raise SolverError(f"no upper bracket within {settings.max_bracket_decades} decades")

    root, result = optimize.brentq(
        excess, lo, hi,
        xtol=settings.xtol, maxiter=settings.maxiter,
        full_output=True, disp=False,
    )
    if not result.converged:
        raise SolverError(f"brentq did not converge after {result.iterations} iterations: {result.flag}")
    return 10.0**root


def upper_bound(detector: Detector,
                model: ParticleModel,
                halo: VelocityDistribution,
                certainty: float = 0.95,
                settings: Optional[SolverSettings] = None) -> float:
    """Smallest interaction strength excluded at the given confidence.

    Args:
        detector: Detector configuration
        model: Particle model at the mass of interest
        halo: Velocity distribution
        certainty: Confidence level CL
        settings: Root-search and quadrature settings

    Returns:
        The bound; inf when the detector has no sensitivity

    Raises:
        DegenerateStatisticError: If the data exclude the background alone
        SolverError: If the maximum-gap root search fails
    """
    check_certainty(certainty)
    settings = settings if settings is not None else SolverSettings()

    strength = model.strength if model.strength > 0 else 1.0
    trial = model.with_strength(strength)
    if energy_range(detector, trial, halo) is None:
        logger.debug("m = %.4g: signal kinematically excluded from the window", model.mass)
        return math.inf

    mode = detector.mode
    if isinstance(mode, PoissonMode):
        s0 = total_signals(detector, trial, halo, settings.integration)
        if s0 <= 0:
            return math.inf
        return strength * required_signals(detector, certainty) / s0

    if isinstance(mode, BinnedPoissonMode):
        signals = binned_signals(detector, trial, halo, settings.integration)
        return strength * binned_scaling(signals, mode, certainty)

    if isinstance(mode, MaximumGapMode):
        x0, mu0 = maximum_gap(maximum_gap_mapping(detector, trial, halo, settings.integration))
        if mu0 <= 0:
            return math.inf
        return strength * _maximum_gap_scaling(x0, mu0, certainty, settings)

    raise TypeError(f"Unsupported statistical mode: {type(mode).__name__}")


# -------------------------------------------------------
# Limit-Curve Scanner
# -------------------------------------------------------

def _scan_point(task: tuple) -> tuple[float, str]:
    """Bound and status at one mass; failures are recorded, not raised."""
    detector, model, halo, mass, certainty, settings = task
    trial = model.with_mass(float(mass))
    try:
        bound = upper_bound(detector, trial, halo, certainty, settings)
    except DegenerateStatisticError as exc:
        logger.warning("m = %.4g: no bound, degenerate statistic (%s)", mass, exc)
        return math.inf, UNCONSTRAINED_STATUS
    except (SolverError, ArithmeticError) as exc:
        logger.warning("m = %.4g: no bound, %s: %s", mass, type(exc).__name__, exc)
        return math.nan, SOLVER_FAILURE_STATUS

    if math.isinf(bound):
        if energy_range(detector, trial, halo) is None:
            return bound, KINEMATIC_NULL_STATUS
        return bound, UNCONSTRAINED_STATUS
    logger.debug("m = %.4g: bound %.4g", mass, bound)
    return bound, EXCLUDED_STATUS


def limit_curve(detector: Detector,
                model: ParticleModel,
                halo: VelocityDistribution,
                scan: Optional[ScanSettings] = None,
                *,
                masses: Optional[ArrayLike] = None,
                certainty: Optional[float] = None,
                settings: Optional[SolverSettings] = None,
                workers: int = 1) -> LimitCurve:
    """Scan the upper bound over a mass grid.

    The caller's model is never modified; each mass uses a copy.

    Args:
        detector: Detector configuration
        model: Particle model (its mass is replaced at each grid point)
        halo: Velocity distribution
        scan: Mass grid and confidence level
        masses: Explicit masses, overriding the grid of ``scan``
        certainty: Confidence level, overriding ``scan.certainty``
        settings: Root-search settings
        workers: Number of worker processes (1: sequential)

    Returns:
        LimitCurve in ascending mass order
    """
    if masses is None:
        if scan is None:
            raise ValueError("either scan or masses must be given")
        grid = scan.masses()
    else:
        grid = np.sort(np.asarray(masses, dtype=float).ravel())
        if grid.size == 0 or np.any(grid <= 0):
            raise ValueError("masses must be a non-empty array of positive values")

    if certainty is None:
        certainty = scan.certainty if scan is not None else 0.95
    check_certainty(certainty)
    settings = settings if settings is not None else SolverSettings()

    tasks = [(detector, model, halo, m, certainty, settings) for m in grid]
    if workers > 1 and len(tasks) > 1:
        n_workers = min(len(tasks), workers, max(1, cpu_count() - 1))
        logger.info("Scanning %d masses with %d workers", len(tasks), n_workers)
        with Pool(n_workers) as pool:
            results = pool.map(_scan_point, tasks)
    else:
        results = [_scan_point(task) for task in tasks]

    bounds = [bound for bound, _ in results]
    status = [state for _, state in results]

    n_failed = sum(s == SOLVER_FAILURE_STATUS for s in status)
    if n_failed:
        logger.warning("%d of %d mass points failed", n_failed, len(status))

    return LimitCurve(
        masses=grid,
        bounds=np.array(bounds, dtype=float),
        status=tuple(status),
        certainty=certainty,
        detector_name=detector.name,
        model_name=type(model).__name__,
    )


def minimum_mass(detector: Detector,
                 model: ParticleModel,
                 halo: VelocityDistribution,
                 mass_min: float,
                 mass_max: float,
                 rtol: float = 1e-6) -> float:
    """Lowest mass whose signal reaches the energy threshold.

    Returns:
        mass_min if already accessible, inf if even mass_max is not
    """
    vmax = halo.maximum_speed

    def margin(log10_m: float) -> float:
        return model.with_mass(10.0**log10_m).maximum_energy(vmax) - detector.energy_threshold

    lo, hi = math.log10(mass_min), math.log10(mass_max)
    if margin(lo) > 0:
        return mass_min
    if margin(hi) <= 0:
        return math.inf
    root = optimize.brentq(margin, lo, hi, xtol=rtol / math.log(10.0))
    return 10.0**root
