"""
ddlimits CLI Entry Point

Run with: python -m ddlimits [options]
"""

import argparse
import logging
import sys
import time
from dataclasses import replace
from pathlib import Path

import numpy as np

from .constants import CM2, GEV, KEV, KG, YEAR, in_units
from .detector import DETECTORS, BinnedPoissonMode, Detector, MaximumGapMode, get_detector
from .limits import (
    EXCLUDED_STATUS,
    LimitCurve,
    ScanSettings,
    limit_curve,
    minimum_mass,
)
from .model import NUCLEI, PARTICLE_MODELS, ContactInteraction, StandardHaloModel, get_particle_model
from .plot import plot_limit_curve, plot_maximum_gap_cdf, plot_signal_spectrum
from .report import export_table, generate_report, save_results_json


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="ddlimits",
        description="Exclusion limits for dark matter direct detection",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    # Detector
    parser.add_argument("--detector", type=str, default="xenon_counting",
                        choices=list(DETECTORS.keys()),
                        help="Predefined detector configuration")
    parser.add_argument("--exposure", type=float, default=None,
                        help="Override exposure [kg yr]")
    parser.add_argument("--threshold", type=float, default=None,
                        help="Override energy threshold [keV]")
    parser.add_argument("--emax", type=float, default=None,
                        help="Override upper edge of the energy window [keV]")
    parser.add_argument("--background", type=float, default=None,
                        help="Expected background events (split evenly with --bins)")
    parser.add_argument("--bins", type=int, default=None,
                        help="Use binned Poisson statistics with this many equal bins")
    parser.add_argument("--events", type=str, default=None,
                        help="File of observed event energies [keV] for the maximum-gap method")

    # Model
    parser.add_argument("--model", type=str, default="contact",
                        choices=list(PARTICLE_MODELS.keys()),
                        help="DM particle model")
    parser.add_argument("--cross-section", type=float, default=None,
                        help="Reference interaction strength [cm^2] (bounds do not depend on it)")

    # Scan
    parser.add_argument("--mass-min", type=float, default=1.0,
                        help="Lowest DM mass [GeV]")
    parser.add_argument("--mass-max", type=float, default=1000.0,
                        help="Highest DM mass [GeV]")
    parser.add_argument("--points", type=int, default=50,
                        help="Number of log-spaced masses")
    parser.add_argument("--certainty", type=float, default=0.95,
                        help="Confidence level")
    parser.add_argument("--workers", type=int, default=1,
                        help="Number of worker processes for the scan")

    # Output
    parser.add_argument("--outdir", type=str, default="outputs",
                        help="Output directory for plots and results")
    parser.add_argument("--show", action="store_true",
                        help="Display plots interactively")
    parser.add_argument("--quiet", action="store_true",
                        help="Suppress progress output")
    parser.add_argument("--verbose", action="store_true",
                        help="Enable debug logging")

    return parser.parse_args()


def setup_logging(args: argparse.Namespace) -> None:
    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.WARNING
    else:
        level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def build_detector(args: argparse.Namespace) -> Detector:
    """Predefined detector with the command-line overrides applied."""
    detector = get_detector(args.detector)

    if args.exposure is not None:
        detector = replace(detector, exposure=args.exposure * KG * YEAR)

    if args.threshold is not None or args.emax is not None:
        e_lo = args.threshold * KEV if args.threshold is not None else detector.energy_threshold
        e_hi = args.emax * KEV if args.emax is not None else detector.energy_max
        if isinstance(detector.mode, BinnedPoissonMode):
            background = detector.mode.background
            detector = detector.define_energy_bins(e_lo, e_hi, detector.mode.n_bins)
            detector = detector.set_background(background)
        else:
            detector = detector.set_energy_window(e_lo, e_hi)

    if args.bins is not None:
        detector = detector.define_energy_bins(detector.energy_threshold, detector.energy_max, args.bins)
        if args.background is not None:
            detector = detector.set_background([args.background / args.bins] * args.bins)
    elif args.background is not None:
        if isinstance(detector.mode, BinnedPoissonMode):
            n_bins = detector.mode.n_bins
            detector = detector.set_background([args.background / n_bins] * n_bins)
        else:
            detector = detector.set_background(args.background)

    if args.events is not None:
        detector = detector.use_maximum_gap(args.events, unit=KEV)

    return detector


def build_model(args: argparse.Namespace, detector: Detector):
    """Particle model for the detector's target."""
    overrides = {"mass": args.mass_min * GEV}
    if args.cross_section is not None:
        overrides["strength"] = args.cross_section * CM2
    if issubclass(PARTICLE_MODELS[args.model], ContactInteraction) and detector.target in NUCLEI:
        overrides["target"] = detector.target
    return get_particle_model(args.model, **overrides)


def print_curve(curve: LimitCurve) -> None:
    print(f"\n{'m [GeV]':>12s}  {'bound':>12s}  status")
    print("-" * 44)
    for mass, bound, state in zip(curve.masses, curve.bounds, curve.status):
        value = f"{in_units(bound, CM2):12.4e}" if state == EXCLUDED_STATUS else f"{'-':>12s}"
        print(f"{in_units(mass, GEV):12.4g}  {value}  {state}")


def run(args: argparse.Namespace) -> None:
    """Compute, report and plot one exclusion curve."""
    detector = build_detector(args)
    model = build_model(args, detector)
    halo = StandardHaloModel()
    scan = ScanSettings(
        mass_min=args.mass_min * GEV,
        mass_max=args.mass_max * GEV,
        points=args.points,
        certainty=args.certainty,
    )

    outdir = Path(args.outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    if not args.quiet:
        print(f"Detector: {detector.name} ({detector.statistical_analysis})")
        print(f"  target={detector.target}, exposure={in_units(detector.exposure, KG * YEAR):.4g} kg yr, "
              f"window=[{in_units(detector.energy_threshold, KEV):.3g}, "
              f"{in_units(detector.energy_max, KEV):.3g}] keV")
        print(f"Model: {type(model).__name__}")
        print(f"Scanning {args.points} masses in [{args.mass_min:g}, {args.mass_max:g}] GeV "
              f"at {100 * args.certainty:.0f}% CL")

    start_time = time.time()
    curve = limit_curve(detector, model, halo, scan, workers=args.workers)
    elapsed = time.time() - start_time

    if not args.quiet:
        print_curve(curve)

    m_min = minimum_mass(detector, model, halo, scan.mass_min, scan.mass_max)
    m_best, s_best = curve.minimum()
    print("\nResult:")
    if np.isfinite(m_min):
        print(f"  Lowest accessible mass = {in_units(m_min, GEV):.4g} GeV")
    else:
        print("  No mass in the scan range reaches the threshold")
    if np.isfinite(m_best):
        print(f"  Strongest bound = {in_units(s_best, CM2):.4e} cm^2 at m = {in_units(m_best, GEV):.4g} GeV")

    generate_report(curve, detector, outdir)
    save_results_json(curve, detector, outdir)
    export_table(curve, outdir / "limits.txt")

    plot_limit_curve([curve], outdir=outdir, show=args.show)
    spectrum_mass = m_best if np.isfinite(m_best) else scan.mass_max
    plot_signal_spectrum(detector, model.with_mass(spectrum_mass), halo, outdir=outdir, show=args.show)
    if isinstance(detector.mode, MaximumGapMode):
        plot_maximum_gap_cdf(outdir=outdir, show=args.show)

    if not args.quiet:
        print(f"\nCompleted in {elapsed:.1f} seconds")
        print(f"Results saved to: {outdir.absolute()}")
        print(f"  - report.md")
        print(f"  - results.json")
        print(f"  - limits.txt")
        print(f"  - *.png plots")


def main() -> None:
    """Main entry point."""
    args = parse_args()
    setup_logging(args)

    try:
        run(args)
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        sys.exit(1)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        raise


if __name__ == "__main__":
    main()
