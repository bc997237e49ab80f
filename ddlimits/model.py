"""
Physics Model Definitions

This module provides the physics collaborators of the limit calculation:
the particle models that supply a differential event rate and the galactic
halo that supplies the velocity integral.

Core definitions:
- eta(v_min): halo integral  ∫_{v > v_min} f(v)/v d^3v
- v_min(E): minimum DM speed that can deposit a recoil energy E
- E_max(v): largest recoil energy a DM particle of speed v can deposit
- dR/dE(E): differential rate per unit exposure and recoil energy

Every model is a frozen dataclass. The limit code never mutates a model;
a trial mass or strength is applied with ``with_mass``/``with_strength``,
which return new instances.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Protocol, Union

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy import special

from .constants import (
    ALPHA,
    ATOMIC_MASS_UNIT,
    CM2,
    FM,
    GEV,
    KM_S,
    M_ELECTRON,
    M_PROTON,
    RHO_DM,
    SQRT_PI,
)

FloatOrArray = Union[float, NDArray[np.float64]]


def _as_output(values: NDArray[np.float64]) -> FloatOrArray:
    """Return a Python float for 0-d results, the array otherwise."""
    return float(values) if values.ndim == 0 else values


def reduced_mass(m1: float, m2: float) -> float:
    """Reduced mass m1 m2 / (m1 + m2)."""
    return m1 * m2 / (m1 + m2)


# -------------------------------------------------------
# Interfaces
# -------------------------------------------------------

class VelocityDistribution(Protocol):
    """Interface for a DM velocity distribution in the detector frame."""

    @property
    def maximum_speed(self) -> float:
        """Largest DM speed in the detector frame."""

    @property
    def rho(self) -> float:
        """Local DM mass density."""

    def eta(self, v_min: ArrayLike) -> FloatOrArray:
        """Halo integral for the given minimum speed(s)."""


class ParticleModel(Protocol):
    """Interface for a DM particle model used by the limit calculator."""

    @property
    def mass(self) -> float:
        """DM mass."""

    @property
    def strength(self) -> float:
        """Interaction strength that scales the event rate."""

    def minimum_speed(self, energy: ArrayLike) -> FloatOrArray:
        """Minimum DM speed needed to deposit ``energy``."""

    def maximum_energy(self, speed: float) -> float:
        """Largest energy deposit by a DM particle of the given speed."""

    def differential_rate(self, energy: ArrayLike, halo: VelocityDistribution) -> FloatOrArray:
        """dR/dE per unit exposure at ``energy``."""

    def with_mass(self, mass: float) -> "ParticleModel":
        """Copy of the model with another mass."""

    def with_strength(self, strength: float) -> "ParticleModel":
        """Copy of the model with another interaction strength."""


# -------------------------------------------------------
# Galactic halo
# -------------------------------------------------------

@dataclass(frozen=True)
class StandardHaloModel:
    """Truncated Maxwell-Boltzmann halo boosted into the Earth frame.

    Attributes:
        v0: Circular speed (most probable galactic speed)
        v_earth: Speed of the Earth relative to the galactic rest frame
        v_esc: Galactic escape speed
        rho: Local DM mass density
    """
    v0: float = 220.0 * KM_S
    v_earth: float = 232.0 * KM_S
    v_esc: float = 544.0 * KM_S
    rho: float = RHO_DM

    def __post_init__(self) -> None:
        if self.v0 <= 0:
            raise ValueError(f"v0 must be > 0, got {self.v0}")
        if self.v_esc <= self.v_earth:
            raise ValueError(f"v_esc ({self.v_esc}) must be > v_earth ({self.v_earth})")
        if self.v_earth <= 0:
            raise ValueError(f"v_earth must be > 0, got {self.v_earth}")
        if self.rho < 0:
            raise ValueError(f"rho must be >= 0, got {self.rho}")

    @property
    def maximum_speed(self) -> float:
        return self.v_esc + self.v_earth

    @property
    def normalization(self) -> float:
        """N_esc, the normalization of the truncated Maxwellian."""
        z = self.v_esc / self.v0
        return float(special.erf(z) - 2.0 * z * np.exp(-z**2) / SQRT_PI)

    def eta(self, v_min: ArrayLike) -> FloatOrArray:
        """Halo integral eta(v_min) in closed form.

        For x = v_min/v0, y = v_earth/v0, z = v_esc/v0:

            x < z - y:          [erf(x+y) - erf(x-y) - 4y e^{-z^2}/sqrt(pi)] / (2 N y v0)
            z - y <= x < z + y: [erf(z) - erf(x-y) - 2(z+y-x) e^{-z^2}/sqrt(pi)] / (2 N y v0)
            x >= z + y:         0
        """
        x = np.asarray(v_min, dtype=float) / self.v0
        y = self.v_earth / self.v0
        z = self.v_esc / self.v0
        exp_z = np.exp(-z**2) / SQRT_PI
        prefactor = 1.0 / (2.0 * self.normalization * y * self.v0)

        low = special.erf(x + y) - special.erf(x - y) - 4.0 * y * exp_z
        high = special.erf(z) - special.erf(x - y) - 2.0 * (z + y - x) * exp_z

        out = np.where(x < z - y, low, np.where(x < z + y, high, 0.0))
        return _as_output(np.maximum(prefactor * out, 0.0))


# -------------------------------------------------------
# Nuclear targets
# -------------------------------------------------------

@dataclass(frozen=True)
class Nucleus:
    """A single target isotope (Z, A) with a Helm form factor."""
    name: str
    Z: int
    A: int

    def __post_init__(self) -> None:
        if self.A < 1 or self.Z < 0 or self.Z > self.A:
            raise ValueError(f"Invalid nucleus {self.name}: Z={self.Z}, A={self.A}")

    @property
    def mass(self) -> float:
        return self.A * ATOMIC_MASS_UNIT

    def helm_form_factor(self, q: ArrayLike) -> FloatOrArray:
        """Helm form factor F(q) with the Lewin-Smith parameters."""
        a = 0.52 * FM
        s = 0.9 * FM
        c = (1.23 * self.A ** (1.0 / 3.0) - 0.6) * FM
        r_n = np.sqrt(c**2 + 7.0 / 3.0 * np.pi**2 * a**2 - 5.0 * s**2)

        qr = np.asarray(q, dtype=float) * r_n
        with np.errstate(divide="ignore", invalid="ignore"):
            j1_term = np.where(qr > 1e-8, 3.0 * special.spherical_jn(1, qr) / qr, 1.0)
        return _as_output(j1_term * np.exp(-0.5 * (np.asarray(q, dtype=float) * s) ** 2))


NUCLEI: dict[str, Nucleus] = {
    "O": Nucleus("O", 8, 16),
    "Si": Nucleus("Si", 14, 28),
    "Ar": Nucleus("Ar", 18, 40),
    "Ca": Nucleus("Ca", 20, 40),
    "Ge": Nucleus("Ge", 32, 73),
    "Xe": Nucleus("Xe", 54, 131),
    "W": Nucleus("W", 74, 184),
}


def get_nucleus(name: str) -> Nucleus:
    if name not in NUCLEI:
        valid = ", ".join(NUCLEI.keys())
        raise ValueError(f"Unknown nucleus '{name}'. Valid: {valid}")
    return NUCLEI[name]


# -------------------------------------------------------
# Particle models
# -------------------------------------------------------

@dataclass(frozen=True)
class DMParticle:
    """Common state of all particle models: mass, spin and strength."""
    mass: float = 10.0 * GEV
    strength: float = 1.0
    spin: float = 0.5

    def __post_init__(self) -> None:
        if self.mass <= 0:
            raise ValueError(f"mass must be > 0, got {self.mass}")
        if self.strength < 0:
            raise ValueError(f"strength must be >= 0, got {self.strength}")

    def with_mass(self, mass: float):
        return replace(self, mass=mass)

    def with_strength(self, strength: float):
        return replace(self, strength=strength)


@dataclass(frozen=True)
class ContactInteraction(DMParticle):
    """Spin-independent, isospin-conserving contact interaction.

    The interaction strength is the DM-proton cross section sigma_p, so that

        dR/dE = rho sigma_p A^2 F^2(q) eta(v_min) / (2 m_DM mu_p^2)

    with q = sqrt(2 m_N E).
    """
    strength: float = 1e-40 * CM2
    target: Nucleus = field(default_factory=lambda: NUCLEI["Xe"])
    fractional_density: float = 1.0

    def _mu_nucleus(self) -> float:
        return reduced_mass(self.mass, self.target.mass)

    def minimum_speed(self, energy: ArrayLike) -> FloatOrArray:
        E = np.asarray(energy, dtype=float)
        return _as_output(np.sqrt(self.target.mass * np.maximum(E, 0.0) / 2.0) / self._mu_nucleus())

    def maximum_energy(self, speed: float) -> float:
        return 2.0 * self._mu_nucleus() ** 2 * speed**2 / self.target.mass

    def mediator_factor(self, q: NDArray[np.float64]) -> NDArray[np.float64]:
        """Momentum dependence of the mediator propagator (1 for contact)."""
        return np.ones_like(q)

    def differential_rate(self, energy: ArrayLike, halo: VelocityDistribution) -> FloatOrArray:
        E = np.asarray(energy, dtype=float)
        q = np.sqrt(2.0 * self.target.mass * np.maximum(E, 0.0))
        mu_p = reduced_mass(self.mass, M_PROTON)

        prefactor = (
            self.fractional_density * halo.rho * self.strength * self.target.A**2
            / (2.0 * self.mass * mu_p**2)
        )
        form = np.asarray(self.target.helm_form_factor(q)) ** 2
        eta = np.asarray(halo.eta(self.minimum_speed(E)))
        with np.errstate(invalid="ignore"):
            rate = prefactor * form * self.mediator_factor(q) * eta
        return _as_output(np.where(E > 0.0, rate, 0.0))


@dataclass(frozen=True)
class LongRangeInteraction(ContactInteraction):
    """Light-mediator interaction, suppressed as (q_ref/q)^4.

    The strength is the reference cross section at q = q_ref.
    """
    q_ref: float = ALPHA * M_ELECTRON

    def mediator_factor(self, q: NDArray[np.float64]) -> NDArray[np.float64]:
        with np.errstate(divide="ignore"):
            return np.where(q > 0.0, (self.q_ref / q) ** 4, np.inf)


@dataclass(frozen=True)
class FlatSpectrum(DMParticle):
    """Toy model with a flat spectrum dR/dE = rate * strength.

    The spectrum ends at E_max = energy_per_mass * mass, independent of the
    halo, which gives a simple kinematic threshold in mass.
    """
    rate: float = 1.0
    energy_per_mass: float = np.inf

    @property
    def endpoint(self) -> float:
        return self.energy_per_mass * self.mass

    def minimum_speed(self, energy: ArrayLike) -> FloatOrArray:
        E = np.asarray(energy, dtype=float)
        return _as_output(np.where(E <= self.endpoint, 0.0, np.inf))

    def maximum_energy(self, speed: float) -> float:
        return self.endpoint

    def differential_rate(self, energy: ArrayLike, halo: VelocityDistribution) -> FloatOrArray:
        E = np.asarray(energy, dtype=float)
        return _as_output(np.where((E >= 0.0) & (E <= self.endpoint), self.rate * self.strength, 0.0))


# Predefined particle models
PARTICLE_MODELS: dict[str, type] = {
    "contact": ContactInteraction,
    "long_range": LongRangeInteraction,
    "flat": FlatSpectrum,
}


def get_particle_model(model_name: str, **overrides) -> DMParticle:
    """Instantiate a named particle model.

    Args:
        model_name: Name of the model (must be in PARTICLE_MODELS)
        **overrides: Field values; ``target`` may be given as a nucleus name

    Returns:
        The particle model

    Raises:
        ValueError: If model_name is not recognized
    """
    if model_name not in PARTICLE_MODELS:
        valid = ", ".join(PARTICLE_MODELS.keys())
        raise ValueError(f"Unknown model '{model_name}'. Valid: {valid}")

    if isinstance(overrides.get("target"), str):
        overrides["target"] = get_nucleus(overrides["target"])

    return PARTICLE_MODELS[model_name](**overrides)
