"""
Limit Report Generation

This module writes the results of a limit scan: a markdown summary, a
JSON dump of all numbers and a plain two-column text table.
"""

from datetime import datetime
from pathlib import Path
from typing import Optional, Union
import json
import math

import numpy as np

from .constants import CM2, GEV, KEV, YEAR, KG, in_units
from .detector import BinnedPoissonMode, Detector, MaximumGapMode, PoissonMode
from .limits import (
    EXCLUDED_STATUS,
    KINEMATIC_NULL_STATUS,
    SOLVER_FAILURE_STATUS,
    UNCONSTRAINED_STATUS,
    LimitCurve,
)


def _finite_or_none(value: float) -> Optional[float]:
    return float(value) if math.isfinite(value) else None


def generate_report(curve: LimitCurve,
                    detector: Detector,
                    outdir: Path,
                    mass_unit: float = GEV,
                    strength_unit: float = CM2) -> str:
    """Generate the markdown report of a limit scan.

    Args:
        curve: Result of the scan
        detector: Detector the curve was computed for
        outdir: Output directory for report
        mass_unit: Unit of the tabulated masses
        strength_unit: Unit of the tabulated bounds

    Returns:
        Report content as string
    """
    report = []

    # Header
    report.append(f"# Exclusion Limit Report: {detector.name}")
    report.append("")
    report.append(f"*Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}*")
    report.append("")

    # Method
    report.append("## Method")
    report.append("")
    report.append(f"Statistical analysis: **{detector.statistical_analysis}** at "
                  f"{100 * curve.certainty:.1f}% confidence level.")
    report.append("")
    mode = detector.mode
    if isinstance(mode, PoissonMode):
        report.append("The bound is the strength at which the expected signal reaches")
        report.append("$S_{max}$ with $P(k \\le n \\mid S_{max} + B) = 1 - CL$.")
    elif isinstance(mode, BinnedPoissonMode):
        report.append("Each bin gives a Poisson bound; the most constraining bin sets the limit.")
    elif isinstance(mode, MaximumGapMode):
        report.append("The bound solves $1 - C_0(x, \\mu) = 1 - CL$ for the largest gap $x$")
        report.append("between observed events in expected-event space (Yellin 2002).")
    report.append("")

    # Detector
    report.append("## Detector")
    report.append("")
    report.append("| Parameter | Value |")
    report.append("|-----------|-------|")
    report.append(f"| Target | {detector.target} |")
    report.append(f"| Exposure | {in_units(detector.exposure, KG * YEAR):.4g} kg yr |")
    report.append(f"| Flat efficiency | {detector.flat_efficiency} |")
    report.append(f"| Energy window | [{in_units(detector.energy_threshold, KEV):.4g}, "
                  f"{in_units(detector.energy_max, KEV):.4g}] keV |")
    if isinstance(mode, PoissonMode):
        report.append(f"| Background | {mode.background} |")
        report.append(f"| Observed | {mode.n_observed} |")
    elif isinstance(mode, BinnedPoissonMode):
        report.append(f"| Bins | {mode.n_bins} |")
        report.append(f"| Background per bin | {', '.join(f'{b:g}' for b in mode.background)} |")
    elif isinstance(mode, MaximumGapMode):
        report.append(f"| Observed events | {len(mode.energies)} |")
    report.append("")

    # Summary
    report.append("## Results Summary")
    report.append("")
    counts = {state: sum(s == state for s in curve.status)
              for state in (EXCLUDED_STATUS, KINEMATIC_NULL_STATUS,
                            UNCONSTRAINED_STATUS, SOLVER_FAILURE_STATUS)}
    report.append(f"Scanned {len(curve)} masses with model `{curve.model_name}`:")
    report.append("")
    for state, count in counts.items():
        report.append(f"- {state}: {count}")
    report.append("")

    m_best, s_best = curve.minimum()
    if np.isfinite(m_best):
        report.append(f"Strongest bound: {in_units(s_best, strength_unit):.3e} "
                      f"at m = {in_units(m_best, mass_unit):.4g} GeV.")
    else:
        report.append("No mass in the scan is excluded.")
    report.append("")

    # Table
    report.append("## Limit Curve")
    report.append("")
    report.append("| Mass | Bound | Status |")
    report.append("|------|-------|--------|")
    for mass, bound, state in zip(curve.masses, curve.bounds, curve.status):
        value = f"{in_units(bound, strength_unit):.3e}" if np.isfinite(bound) else "-"
        report.append(f"| {in_units(mass, mass_unit):.4g} | {value} | {state} |")
    report.append("")

    # Write to file
    report_content = "\n".join(report)
    report_path = outdir / "report.md"
    report_path.write_text(report_content)

    return report_content


def save_results_json(curve: LimitCurve,
                      detector: Detector,
                      outdir: Path,
                      mass_unit: float = GEV,
                      strength_unit: float = CM2) -> dict:
    """Save the curve and detector configuration to JSON.

    Masses and bounds are written in mass_unit and strength_unit (GeV and
    cm^2 by default). Missing bounds (inf or nan) are written as null.

    Returns:
        Results dictionary
    """
    config = detector.summary()
    config["exposure_kg_yr"] = in_units(detector.exposure, KG * YEAR)
    config["energy_threshold_keV"] = in_units(detector.energy_threshold, KEV)
    config["energy_max_keV"] = in_units(detector.energy_max, KEV)
    for key in ("exposure", "energy_threshold", "energy_max"):
        config.pop(key)
    if "bin_edges" in config:
        config["bin_edges_keV"] = [in_units(e, KEV) for e in config.pop("bin_edges")]

    masses = in_units(curve.masses, mass_unit)
    bounds = in_units(curve.bounds, strength_unit)
    m_best, s_best = curve.minimum()

    results = {
        "detector": config,
        "model": curve.model_name,
        "certainty": curve.certainty,
        "masses": [float(m) for m in masses],
        "bounds": [_finite_or_none(b) for b in bounds],
        "status": list(curve.status),
        "minimum": {
            "mass": _finite_or_none(in_units(m_best, mass_unit)),
            "bound": _finite_or_none(in_units(s_best, strength_unit)),
        },
        "timestamp": datetime.now().isoformat(),
    }

    # Write to file
    json_path = outdir / "results.json"
    with open(json_path, 'w') as f:
        json.dump(results, f, indent=2)

    return results


def export_table(curve: LimitCurve,
                 path: Union[str, Path],
                 mass_unit: float = GEV,
                 strength_unit: float = CM2) -> Path:
    """Write (mass, bound) rows of the excluded points as a text table."""
    path = Path(path)
    mask = curve.excluded()
    data = np.column_stack([in_units(curve.masses[mask], mass_unit),
                            in_units(curve.bounds[mask], strength_unit)])
    header = (f"{curve.detector_name} ({curve.model_name}), "
              f"{100 * curve.certainty:.1f}% CL\nmass bound")
    np.savetxt(path, data, fmt="%.6e", header=header)
    return path
