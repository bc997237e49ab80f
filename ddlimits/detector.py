"""
Detector Configuration

A detector is described by its exposure, a flat efficiency, the energy
window [E_threshold, E_max] and the statistical mode used to turn the
expected signal into a limit. Each mode carries only the data it needs:

- PoissonMode: one expected background count (unbinned counting)
- BinnedPoissonMode: bin edges and one background count per bin
- MaximumGapMode: sorted observed event energies (Yellin's method)

Detectors are frozen. Setup calls such as ``set_background`` or
``use_maximum_gap`` return a new, validated detector. Invalid
configurations raise ConfigurationError immediately.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional, Sequence, Union

import numpy as np

from .constants import DAY, KEV, KG, TONNE, YEAR

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Raised for detector configurations that violate an invariant."""


# -------------------------------------------------------
# Statistical modes
# -------------------------------------------------------

@dataclass(frozen=True)
class PoissonMode:
    """Poisson counting over the full energy window.

    Attributes:
        background: Expected background count B
        observed: Observed event count; defaults to B (no observed excess)
    """
    background: float = 0.0
    observed: Optional[float] = None

    name = "Poisson"

    def __post_init__(self) -> None:
        if not np.isfinite(self.background) or self.background < 0:
            raise ConfigurationError(f"background must be finite and >= 0, got {self.background}")
        if self.observed is not None and (not np.isfinite(self.observed) or self.observed < 0):
            raise ConfigurationError(f"observed must be finite and >= 0, got {self.observed}")

    @property
    def n_observed(self) -> float:
        return self.background if self.observed is None else self.observed


@dataclass(frozen=True)
class BinnedPoissonMode:
    """Poisson counting in independent energy bins.

    Attributes:
        bin_edges: N+1 strictly increasing bin edges
        background: N expected background counts, one per bin
        observed: Optional observed counts per bin (default: background)
    """
    bin_edges: tuple[float, ...]
    background: tuple[float, ...]
    observed: Optional[tuple[float, ...]] = None

    name = "Binned Poisson"

    def __post_init__(self) -> None:
        edges = tuple(float(e) for e in self.bin_edges)
        background = tuple(float(b) for b in self.background)
        object.__setattr__(self, "bin_edges", edges)
        object.__setattr__(self, "background", background)

        if len(edges) < 2:
            raise ConfigurationError(f"need at least 2 bin edges, got {len(edges)}")
        if np.any(np.diff(edges) <= 0):
            raise ConfigurationError(f"bin edges must be strictly increasing, got {edges}")
        if len(background) != len(edges) - 1:
            raise ConfigurationError(
                f"expected {len(edges) - 1} background counts, got {len(background)}"
            )
        if any(not np.isfinite(b) or b < 0 for b in background):
            raise ConfigurationError(f"background counts must be finite and >= 0, got {background}")

        if self.observed is not None:
            observed = tuple(float(n) for n in self.observed)
            object.__setattr__(self, "observed", observed)
            if len(observed) != len(background):
                raise ConfigurationError(
                    f"expected {len(background)} observed counts, got {len(observed)}"
                )
            if any(not np.isfinite(n) or n < 0 for n in observed):
                raise ConfigurationError(f"observed counts must be finite and >= 0, got {observed}")

    @property
    def n_bins(self) -> int:
        return len(self.background)

    @property
    def n_observed(self) -> tuple[float, ...]:
        return self.background if self.observed is None else self.observed


@dataclass(frozen=True)
class MaximumGapMode:
    """Yellin's maximum-gap method on observed event energies."""
    energies: tuple[float, ...] = ()

    name = "Maximum Gap"

    def __post_init__(self) -> None:
        energies = tuple(float(e) for e in self.energies)
        object.__setattr__(self, "energies", energies)
        if any(not np.isfinite(e) for e in energies):
            raise ConfigurationError("event energies must be finite")
        if np.any(np.diff(energies) < 0):
            raise ConfigurationError("event energies must be sorted in ascending order")


StatisticalMode = Union[PoissonMode, BinnedPoissonMode, MaximumGapMode]


# -------------------------------------------------------
# Detector
# -------------------------------------------------------

@dataclass(frozen=True)
class Detector:
    """Direct-detection experiment.

    Attributes:
        name: Label of the experiment
        target: Free-text description of the target material
        exposure: Detector mass times live time
        energy_threshold: Lower edge of the energy window
        energy_max: Upper edge of the energy window
        flat_efficiency: Energy-independent signal acceptance in [0, 1]
        mode: Statistical mode and its background data
    """
    name: str = "base name"
    target: str = "base targets"
    exposure: float = 0.0
    energy_threshold: float = 0.0
    energy_max: float = 0.0
    flat_efficiency: float = 1.0
    mode: StatisticalMode = field(default_factory=PoissonMode)

    def __post_init__(self) -> None:
        """Validate the configuration after initialization."""
        if not np.isfinite(self.exposure) or self.exposure < 0:
            raise ConfigurationError(f"exposure must be finite and >= 0, got {self.exposure}")
        if not 0.0 <= self.flat_efficiency <= 1.0:
            raise ConfigurationError(f"flat_efficiency must be in [0, 1], got {self.flat_efficiency}")
        if self.energy_threshold < 0:
            raise ConfigurationError(f"energy_threshold must be >= 0, got {self.energy_threshold}")
        if not isinstance(self.mode, (PoissonMode, BinnedPoissonMode, MaximumGapMode)):
            raise ConfigurationError(f"unknown statistical mode {self.mode!r}")

        if isinstance(self.mode, BinnedPoissonMode):
            edges = self.mode.bin_edges
            if not (np.isclose(edges[0], self.energy_threshold, rtol=1e-9, atol=0.0)
                    and np.isclose(edges[-1], self.energy_max, rtol=1e-9, atol=0.0)):
                raise ConfigurationError(
                    f"bin edges [{edges[0]}, {edges[-1]}] must span the energy window "
                    f"[{self.energy_threshold}, {self.energy_max}]"
                )

        if isinstance(self.mode, MaximumGapMode) and self.mode.energies:
            energies = self.mode.energies
            if energies[0] < self.energy_threshold or energies[-1] > self.energy_max:
                raise ConfigurationError(
                    f"event energies [{energies[0]}, {energies[-1]}] lie outside the energy window "
                    f"[{self.energy_threshold}, {self.energy_max}]"
                )

    @property
    def statistical_analysis(self) -> str:
        return self.mode.name

    @property
    def effective_exposure(self) -> float:
        """Exposure times flat efficiency."""
        return self.exposure * self.flat_efficiency

    # ---------- Setup calls ----------
    def set_flat_efficiency(self, efficiency: float) -> "Detector":
        return replace(self, flat_efficiency=efficiency)

    def set_energy_window(self, energy_threshold: float, energy_max: float) -> "Detector":
        return replace(self, energy_threshold=energy_threshold, energy_max=energy_max)

    def set_background(self, background: Union[float, Sequence[float]],
                       observed: Union[float, Sequence[float], None] = None) -> "Detector":
        """Attach background data.

        A scalar selects Poisson counting. A sequence sets the per-bin
        background of a detector whose bins were defined with
        ``define_energy_bins``.
        """
        if np.ndim(background) == 0:
            return replace(self, mode=PoissonMode(float(background), observed))

        if not isinstance(self.mode, BinnedPoissonMode):
            raise ConfigurationError("define_energy_bins must be called before setting binned background")
        return replace(self, mode=BinnedPoissonMode(self.mode.bin_edges, tuple(background),
                                                    None if observed is None else tuple(observed)))

    def define_energy_bins(self, e_min: float, e_max: float, bins: int) -> "Detector":
        """Split [e_min, e_max] into ``bins`` equal bins with zero background."""
        if bins < 1:
            raise ConfigurationError(f"bins must be >= 1, got {bins}")
        edges = tuple(np.linspace(e_min, e_max, bins + 1))
        return replace(self, energy_threshold=e_min, energy_max=e_max,
                       mode=BinnedPoissonMode(edges, (0.0,) * bins))

    def use_maximum_gap(self, energies: Union[Sequence[float], str, Path],
                        unit: float = KEV) -> "Detector":
        """Switch to the maximum-gap method.

        ``energies`` is either a sequence of event energies (natural units)
        or the path of a data file read with ``load_energy_data``.
        """
        if isinstance(energies, (str, Path)):
            data = load_energy_data(energies, unit=unit)
        else:
            data = np.sort(np.asarray(energies, dtype=float))
        return replace(self, mode=MaximumGapMode(tuple(data)))

    def summary(self) -> dict:
        """Configuration summary as a plain dictionary."""
        info = {
            "name": self.name,
            "target": self.target,
            "exposure": self.exposure,
            "flat_efficiency": self.flat_efficiency,
            "energy_threshold": self.energy_threshold,
            "energy_max": self.energy_max,
            "statistical_analysis": self.statistical_analysis,
        }
        if isinstance(self.mode, PoissonMode):
            info["background"] = self.mode.background
            info["observed"] = self.mode.n_observed
        elif isinstance(self.mode, BinnedPoissonMode):
            info["bin_edges"] = list(self.mode.bin_edges)
            info["background"] = list(self.mode.background)
            info["observed"] = list(self.mode.n_observed)
        else:
            info["n_events"] = len(self.mode.energies)
        return info


def load_energy_data(path: Union[str, Path], unit: float = KEV) -> np.ndarray:
    """Read event energies from the first column of a text file.

    Args:
        path: Whitespace-separated data file, '#' comments allowed
        unit: Unit of the values in the file

    Returns:
        Sorted energies in natural units

    Raises:
        ConfigurationError: If the file holds non-finite or negative energies
    """
    path = Path(path)
    data = np.loadtxt(path, ndmin=2, comments="#")
    energies = np.sort(data[:, 0]) * unit if data.size else np.array([], dtype=float)
    if not np.all(np.isfinite(energies)) or np.any(energies < 0):
        raise ConfigurationError(f"invalid event energies in {path}")
    logger.info("Loaded %d events from %s", energies.size, path)
    return energies


# Predefined detectors
DETECTORS: dict[str, dict] = {
    "xenon_counting": {
        "name": "Xenon counting",
        "target": "Xe",
        "exposure": 1.0 * TONNE * YEAR,
        "energy_threshold": 5.0 * KEV,
        "energy_max": 40.0 * KEV,
        "flat_efficiency": 0.8,
        "mode": PoissonMode(background=0.0),
    },
    "germanium_binned": {
        "name": "Germanium binned",
        "target": "Ge",
        "exposure": 100.0 * KG * DAY,
        "energy_threshold": 2.0 * KEV,
        "energy_max": 20.0 * KEV,
        "flat_efficiency": 0.9,
        "mode": BinnedPoissonMode(
            bin_edges=tuple(np.array([2.0, 5.0, 10.0, 20.0]) * KEV),
            background=(4.0, 2.0, 1.0),
        ),
    },
    "oxygen_maximum_gap": {
        "name": "Oxygen maximum gap",
        "target": "O",
        "exposure": 3.6 * KG * DAY,
        "energy_threshold": 0.3 * KEV,
        "energy_max": 5.0 * KEV,
        "flat_efficiency": 0.7,
        "mode": MaximumGapMode(tuple(np.array([0.35, 0.41, 0.52, 0.77, 1.1, 1.6, 2.3, 3.4]) * KEV)),
    },
}


def get_detector(detector_name: str, **overrides) -> Detector:
    """Build a predefined detector, optionally overriding fields.

    Raises:
        ValueError: If detector_name is not recognized
    """
    if detector_name not in DETECTORS:
        valid = ", ".join(DETECTORS.keys())
        raise ValueError(f"Unknown detector '{detector_name}'. Valid: {valid}")

    config = {**DETECTORS[detector_name], **overrides}
    return Detector(**config)
