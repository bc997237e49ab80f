"""Constants and unit conversions.

All internal quantities use natural units with GeV = c = hbar = 1:

- energies and masses: GeV
- speeds: dimensionless (fraction of c)
- lengths and times: GeV^-1
- cross sections: GeV^-2

A physical value enters the code as ``value * UNIT`` and leaves it as
``in_units(value, UNIT)``.
"""

from __future__ import annotations

import numpy as np

# ---- Energy and mass ----
GEV: float = 1.0
MEV: float = 1.0e-3 * GEV
KEV: float = 1.0e-6 * GEV
EV: float = 1.0e-9 * GEV

# ---- Length ----
# hbar * c = 0.1973269804 GeV fm
FM: float = 1.0 / 0.1973269804
CM: float = 1.0e13 * FM
METER: float = 100.0 * CM
KM: float = 1000.0 * METER

# ---- Time ----
# hbar = 6.582119569e-25 GeV s
SEC: float = 1.0 / 6.582119569e-25
DAY: float = 86400.0 * SEC
YEAR: float = 365.25 * DAY

# ---- Derived ----
KM_S: float = KM / SEC
KG: float = 1.0 / 1.78266192e-27
GRAM: float = 1.0e-3 * KG
TONNE: float = 1.0e3 * KG
CM2: float = CM**2
PB: float = 1.0e-36 * CM2

# ---- Particle and nuclear data ----
M_PROTON: float = 0.93827208816 * GEV
M_ELECTRON: float = 0.51099895e-3 * GEV
ATOMIC_MASS_UNIT: float = 0.93149410242 * GEV
ALPHA: float = 1.0 / 137.035999084

# Local dark-matter density default used by the halo model
RHO_DM: float = 0.4 * GEV / CM**3

SQRT_PI: float = float(np.sqrt(np.pi))


def in_units(value, unit: float):
    """Express a natural-unit quantity in ``unit`` (scalar or array)."""

    return np.asarray(value, dtype=float) / unit if np.ndim(value) else float(value) / unit
