"""
ddlimits - Exclusion limits for dark matter direct detection

Computes upper bounds on the DM interaction strength from the null result
of a direct-detection experiment, as a function of the DM mass.

Usage:
    python -m ddlimits --help
    python -m ddlimits --detector xenon_counting --model contact
    python -m ddlimits --detector oxygen_maximum_gap --mass-min 0.1 --mass-max 10

Main components:
    - constants: Natural units and physical constants
    - model: Particle models and the galactic halo
    - detector: Detector configuration and statistical modes
    - integrate: Expected signal counts
    - statistics: Poisson, binned Poisson and maximum-gap statistics
    - limits: Upper-bound solver and limit-curve scanner
    - plot: Visualization utilities
    - report: Report generation
"""

__version__ = "0.1.0"

from .detector import (
    ConfigurationError,
    Detector,
    PoissonMode,
    BinnedPoissonMode,
    MaximumGapMode,
    DETECTORS,
    get_detector,
    load_energy_data,
)

from .model import (
    StandardHaloModel,
    Nucleus,
    NUCLEI,
    ContactInteraction,
    LongRangeInteraction,
    FlatSpectrum,
    PARTICLE_MODELS,
    get_particle_model,
)

from .integrate import (
    IntegrationSettings,
    energy_range,
    total_signals,
    binned_signals,
    cumulative_signals,
    maximum_gap_mapping,
    signal_spectrum,
)

from .statistics import (
    DegenerateStatisticError,
    poisson_signal_limit,
    cdf_maximum_gap,
    maximum_gap,
    binned_scaling,
    likelihood,
)

from .limits import (
    SolverError,
    SolverSettings,
    ScanSettings,
    LimitCurve,
    log_mass_grid,
    required_signals,
    likelihood_at,
    upper_bound,
    limit_curve,
    minimum_mass,
)

__all__ = [
    "ConfigurationError",
    "Detector",
    "PoissonMode",
    "BinnedPoissonMode",
    "MaximumGapMode",
    "DETECTORS",
    "get_detector",
    "load_energy_data",
    "StandardHaloModel",
    "Nucleus",
    "NUCLEI",
    "ContactInteraction",
    "LongRangeInteraction",
    "FlatSpectrum",
    "PARTICLE_MODELS",
    "get_particle_model",
    "IntegrationSettings",
    "energy_range",
    "total_signals",
    "binned_signals",
    "cumulative_signals",
    "maximum_gap_mapping",
    "signal_spectrum",
    "DegenerateStatisticError",
    "poisson_signal_limit",
    "cdf_maximum_gap",
    "maximum_gap",
    "binned_scaling",
    "likelihood",
    "SolverError",
    "SolverSettings",
    "ScanSettings",
    "LimitCurve",
    "log_mass_grid",
    "required_signals",
    "likelihood_at",
    "upper_bound",
    "limit_curve",
    "minimum_mass",
]
