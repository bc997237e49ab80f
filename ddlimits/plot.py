"""
Plotting Utilities

This module provides plotting functions for exclusion curves, signal
spectra and the maximum-gap distribution. Uses matplotlib only.
"""

from pathlib import Path
from typing import Optional, Sequence

import numpy as np
import matplotlib.pyplot as plt
from matplotlib.figure import Figure

from .constants import CM2, GEV, KEV, in_units
from .detector import BinnedPoissonMode, Detector, MaximumGapMode
from .integrate import signal_spectrum
from .limits import KINEMATIC_NULL_STATUS, LimitCurve
from .model import ParticleModel, VelocityDistribution
from .statistics import cdf_maximum_gap


def setup_style() -> None:
    """Set up matplotlib style for publication-quality plots."""
    plt.rcParams.update({
        'font.size': 10,
        'axes.labelsize': 11,
        'axes.titlesize': 12,
        'xtick.labelsize': 9,
        'ytick.labelsize': 9,
        'legend.fontsize': 9,
        'figure.figsize': (8, 6),
        'figure.dpi': 150,
        'savefig.dpi': 150,
        'axes.grid': True,
        'grid.alpha': 0.3,
    })


def plot_limit_curve(curves: Sequence[LimitCurve],
                     outdir: Optional[Path] = None,
                     show: bool = False,
                     mass_unit: float = GEV,
                     strength_unit: float = CM2,
                     strength_label: str = r'$\sigma_p$ [cm$^2$]') -> Figure:
    """Plot one or more exclusion curves on log-log axes.

    Args:
        curves: LimitCurve objects to overlay
        outdir: Directory to save plot (if provided)
        show: Whether to display the plot
        mass_unit: Unit of the mass axis
        strength_unit: Unit of the strength axis
        strength_label: Label of the strength axis

    Returns:
        matplotlib Figure object
    """
    setup_style()

    fig, ax = plt.subplots(figsize=(8, 6))

    colors = ['#2E86AB', '#A23B72', '#F18F01', '#C73E1D']

    for i, curve in enumerate(curves):
        mask = curve.excluded()
        masses = in_units(curve.masses, mass_unit)
        bounds = in_units(curve.bounds, strength_unit)
        color = colors[i % len(colors)]
        ax.loglog(masses[mask], bounds[mask], '-', linewidth=2, color=color,
                  label=f'{curve.detector_name} ({100 * curve.certainty:.0f}% CL)')
        ax.fill_between(masses[mask], bounds[mask], bounds[mask].max() * 1e3 if mask.any() else 1.0,
                        color=color, alpha=0.15)

        null = np.array([s == KINEMATIC_NULL_STATUS for s in curve.status])
        if null.any():
            ax.axvspan(masses[null].min(), masses[null].max(), color='grey', alpha=0.1)

    ax.set_xlabel(r'$m_{\mathrm{DM}}$ [GeV]')
    ax.set_ylabel(strength_label)
    ax.set_title('Exclusion Limits')
    ax.legend(loc='best')
    ax.grid(True, which='both', alpha=0.3)

    plt.tight_layout()

    if outdir is not None:
        fig.savefig(outdir / "limit_curve.png", bbox_inches='tight')

    if show:
        plt.show()

    return fig


def plot_signal_spectrum(detector: Detector,
                         model: ParticleModel,
                         halo: VelocityDistribution,
                         outdir: Optional[Path] = None,
                         show: bool = False,
                         n_points: int = 400,
                         energy_unit: float = KEV) -> Figure:
    """Plot the expected event density dN/dE over the detector window.

    Observed events (maximum gap) and bin edges (binned Poisson) are
    marked on the energy axis.
    """
    setup_style()

    fig, ax = plt.subplots(figsize=(8, 6))

    E = np.linspace(detector.energy_threshold, detector.energy_max, n_points)
    dNdE = signal_spectrum(detector, model, halo, E)
    ax.plot(in_units(E, energy_unit), dNdE * energy_unit, '-', linewidth=2, color='#2E86AB')

    if isinstance(detector.mode, MaximumGapMode):
        for e in detector.mode.energies:
            ax.axvline(in_units(e, energy_unit), color='#C73E1D', alpha=0.6, linewidth=1)
    elif isinstance(detector.mode, BinnedPoissonMode):
        for e in detector.mode.bin_edges:
            ax.axvline(in_units(e, energy_unit), color='grey', linestyle='--', linewidth=1)

    ax.set_xlabel(r'$E$ [keV]')
    ax.set_ylabel(r'$dN/dE$ [keV$^{-1}$]')
    ax.set_title(f'Signal Spectrum: {detector.name} (m = {in_units(model.mass, GEV):.3g} GeV)')

    plt.tight_layout()

    if outdir is not None:
        fig.savefig(outdir / "signal_spectrum.png", bbox_inches='tight')

    if show:
        plt.show()

    return fig


def plot_maximum_gap_cdf(mu_values: Sequence[float] = (1.0, 3.0, 10.0, 30.0),
                         outdir: Optional[Path] = None,
                         show: bool = False,
                         n_points: int = 300) -> Figure:
    """Plot C0(x, mu) against x/mu for several total signals mu."""
    setup_style()

    fig, ax = plt.subplots(figsize=(8, 6))

    colors = ['#2E86AB', '#A23B72', '#F18F01', '#C73E1D']
    fractions = np.linspace(0.0, 1.0, n_points)

    for i, mu in enumerate(mu_values):
        values = [cdf_maximum_gap(f * mu, mu) for f in fractions]
        ax.plot(fractions, values, '-', linewidth=2, color=colors[i % len(colors)],
                label=rf'$\mu = {mu:g}$')

    ax.set_xlabel(r'$x / \mu$')
    ax.set_ylabel(r'$C_0(x, \mu)$')
    ax.set_title('Maximum Gap Distribution')
    ax.legend(loc='best')

    plt.tight_layout()

    if outdir is not None:
        fig.savefig(outdir / "maximum_gap_cdf.png", bbox_inches='tight')

    if show:
        plt.show()

    return fig
