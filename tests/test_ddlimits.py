"""
Unit tests for the ddlimits package.

Tests cover:
- Detector configuration and validation
- Halo integral and particle model rates
- Rate integration against analytic results
- Upper bounds for all three statistical modes
- Limit-curve scans, reports and plots
"""

import argparse
import json
import math

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

import pytest
import numpy as np
from scipy import integrate, special, stats

from ddlimits.constants import CM2, GEV, KEV, TONNE, YEAR, in_units
from ddlimits.detector import (
    DETECTORS,
    BinnedPoissonMode,
    ConfigurationError,
    Detector,
    MaximumGapMode,
    PoissonMode,
    get_detector,
    load_energy_data,
)
from ddlimits.model import (
    NUCLEI,
    ContactInteraction,
    FlatSpectrum,
    LongRangeInteraction,
    StandardHaloModel,
    get_particle_model,
)
from ddlimits.integrate import (
    binned_signals,
    cumulative_signals,
    energy_range,
    maximum_gap_mapping,
    signal_spectrum,
    total_signals,
)
from ddlimits.statistics import DegenerateStatisticError, cdf_maximum_gap
from ddlimits.limits import (
    EXCLUDED_STATUS,
    KINEMATIC_NULL_STATUS,
    SOLVER_FAILURE_STATUS,
    UNCONSTRAINED_STATUS,
    ScanSettings,
    SolverError,
    SolverSettings,
    likelihood_at,
    limit_curve,
    log_mass_grid,
    minimum_mass,
    required_signals,
    upper_bound,
)
from ddlimits.plot import plot_limit_curve, plot_maximum_gap_cdf, plot_signal_spectrum
from ddlimits.report import export_table, generate_report, save_results_json
from ddlimits.__main__ import build_detector

# -ln(0.05): background-free 95% Poisson limit
S95 = -math.log(0.05)

HALO = StandardHaloModel()


def flat_detector(mode=None, energy_threshold=0.0, energy_max=10.0, exposure=1.0):
    """Toy detector in which a flat unit spectrum gives N = exposure * width."""
    return Detector(
        name="toy",
        target="toy",
        exposure=exposure,
        energy_threshold=energy_threshold,
        energy_max=energy_max,
        flat_efficiency=1.0,
        mode=mode if mode is not None else PoissonMode(),
    )


class TestDetector:
    """Tests for detector configuration and validation."""

    def test_defaults(self):
        """Test the default detector."""
        detector = Detector()
        assert detector.name == "base name"
        assert detector.target == "base targets"
        assert detector.exposure == 0.0
        assert detector.statistical_analysis == "Poisson"

    def test_negative_exposure(self):
        with pytest.raises(ConfigurationError, match="exposure must be finite and >= 0"):
            Detector(exposure=-1.0)

    def test_efficiency_range(self):
        with pytest.raises(ConfigurationError, match="flat_efficiency"):
            Detector(flat_efficiency=1.5)

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            Detector(energy_threshold=-1.0)

    def test_bins_must_span_window(self):
        """Test that bin edges must coincide with the energy window."""
        mode = BinnedPoissonMode((0.0, 5.0, 8.0), (0.0, 0.0))
        with pytest.raises(ConfigurationError, match="must span the energy window"):
            flat_detector(mode=mode)

    def test_bin_edges_increasing(self):
        with pytest.raises(ConfigurationError, match="strictly increasing"):
            BinnedPoissonMode((0.0, 5.0, 5.0), (0.0, 0.0))

    def test_background_length(self):
        with pytest.raises(ConfigurationError, match="expected 2 background counts"):
            BinnedPoissonMode((0.0, 5.0, 10.0), (1.0,))

    def test_unsorted_events(self):
        with pytest.raises(ConfigurationError, match="ascending"):
            MaximumGapMode((3.0, 1.0))

    def test_events_outside_window(self):
        with pytest.raises(ConfigurationError, match="outside the energy window"):
            flat_detector(mode=MaximumGapMode((1.0, 12.0)))

    def test_binned_background_needs_bins(self):
        with pytest.raises(ConfigurationError, match="define_energy_bins"):
            flat_detector().set_background([1.0, 2.0])

    def test_define_energy_bins(self):
        """Test equal-width binning and per-bin background."""
        detector = flat_detector().define_energy_bins(0.0, 10.0, 4).set_background([1.0, 2.0, 3.0, 4.0])
        assert detector.statistical_analysis == "Binned Poisson"
        np.testing.assert_allclose(detector.mode.bin_edges, [0.0, 2.5, 5.0, 7.5, 10.0])
        assert detector.mode.background == (1.0, 2.0, 3.0, 4.0)

    def test_setup_calls_return_new_detector(self):
        """Test that setup calls do not modify the detector they are called on."""
        detector = flat_detector()
        updated = detector.set_background(3.0).set_flat_efficiency(0.5)
        assert detector.mode.background == 0.0
        assert detector.flat_efficiency == 1.0
        assert updated.mode.background == 3.0
        assert updated.effective_exposure == 0.5

    def test_use_maximum_gap_sorts(self):
        detector = flat_detector().use_maximum_gap([6.0, 2.0, 5.0])
        assert detector.statistical_analysis == "Maximum Gap"
        assert detector.mode.energies == (2.0, 5.0, 6.0)

    def test_load_energy_data(self, tmp_path):
        """Test reading event energies from a text file."""
        path = tmp_path / "events.txt"
        path.write_text("# energies in keV\n3.0\n1.0\n2.0\n")
        energies = load_energy_data(path)
        np.testing.assert_allclose(energies, np.array([1.0, 2.0, 3.0]) * KEV)

        detector = flat_detector(energy_max=10.0 * KEV).use_maximum_gap(path)
        assert len(detector.mode.energies) == 3

    def test_load_negative_energy(self, tmp_path):
        path = tmp_path / "events.txt"
        path.write_text("1.0\n-2.0\n")
        with pytest.raises(ConfigurationError, match="invalid event energies"):
            load_energy_data(path)

    @pytest.mark.parametrize("name", list(DETECTORS.keys()))
    def test_predefined_detectors(self, name):
        """Test that all predefined detectors are valid."""
        detector = get_detector(name)
        assert detector.exposure > 0
        assert detector.energy_max > detector.energy_threshold

    def test_unknown_detector(self):
        with pytest.raises(ValueError, match="Unknown detector 'nope'"):
            get_detector("nope")

    def test_detector_overrides(self):
        detector = get_detector("xenon_counting", exposure=2.0 * TONNE * YEAR)
        np.testing.assert_allclose(in_units(detector.exposure, TONNE * YEAR), 2.0)


class TestHalo:
    """Tests for the Standard Halo Model."""

    def test_eta_vanishes_above_maximum_speed(self):
        assert HALO.eta(HALO.maximum_speed) <= 1e-12 * HALO.eta(0.0)
        assert HALO.eta(1.1 * HALO.maximum_speed) == 0.0

    def test_eta_decreasing(self):
        v = np.linspace(0.0, HALO.maximum_speed, 200)
        eta = HALO.eta(v)
        assert eta.shape == v.shape
        assert np.all(np.diff(eta) <= 0)
        assert eta[0] > 0

    def test_eta_continuous(self):
        """Test continuity where the closed form changes branch."""
        v = HALO.v_esc - HALO.v_earth
        np.testing.assert_allclose(HALO.eta(v * (1 - 1e-10)), HALO.eta(v * (1 + 1e-10)), rtol=1e-6)

    def test_eta_normalization(self):
        """The integral of eta over v_min equals the normalization of f(v)."""
        value, _ = integrate.quad(HALO.eta, 0.0, HALO.maximum_speed,
                                  points=[HALO.v_esc - HALO.v_earth], epsabs=0.0, epsrel=1e-10)
        np.testing.assert_allclose(value, 1.0, rtol=1e-6)

    def test_invalid_halo(self):
        with pytest.raises(ValueError, match="v_esc"):
            StandardHaloModel(v_esc=100.0, v_earth=200.0)


class TestParticleModels:
    """Tests for particle models and nuclear targets."""

    def test_helm_form_factor_at_zero(self):
        for nucleus in NUCLEI.values():
            np.testing.assert_allclose(nucleus.helm_form_factor(0.0), 1.0)

    def test_helm_form_factor_suppression(self):
        q = np.array([0.0, 0.01, 0.05]) * GEV
        F = NUCLEI["Xe"].helm_form_factor(q)
        assert F[0] > F[1] > F[2] > 0

    def test_with_mass_returns_copy(self):
        model = ContactInteraction(mass=10.0 * GEV)
        heavier = model.with_mass(100.0 * GEV)
        assert model.mass == 10.0 * GEV
        assert heavier.mass == 100.0 * GEV
        assert heavier.target is model.target

    def test_invalid_mass(self):
        with pytest.raises(ValueError, match="mass must be > 0"):
            FlatSpectrum(mass=0.0)

    def test_rate_vanishes_beyond_endpoint(self):
        """Test that no recoils occur above the kinematic endpoint."""
        model = ContactInteraction(mass=10.0 * GEV)
        e_kin = model.maximum_energy(HALO.maximum_speed)
        assert model.differential_rate(0.5 * e_kin, HALO) > 0
        assert model.differential_rate(1.01 * e_kin, HALO) == 0.0

    def test_minimum_speed_inverts_maximum_energy(self):
        model = ContactInteraction(mass=50.0 * GEV)
        v = 300.0 * HALO.v0 / 220.0
        np.testing.assert_allclose(model.minimum_speed(model.maximum_energy(v)), v, rtol=1e-12)

    def test_rate_linear_in_strength(self):
        model = ContactInteraction(mass=50.0 * GEV)
        E = np.array([5.0, 10.0, 20.0]) * KEV
        np.testing.assert_allclose(
            model.with_strength(3.0 * model.strength).differential_rate(E, HALO),
            3.0 * model.differential_rate(E, HALO),
            rtol=1e-12,
        )

    def test_long_range_suppression(self):
        """Test the (q_ref/q)^4 ratio between long-range and contact rates."""
        contact = ContactInteraction(mass=50.0 * GEV)
        long_range = LongRangeInteraction(mass=50.0 * GEV)
        E = 10.0 * KEV
        q = math.sqrt(2.0 * contact.target.mass * E)
        np.testing.assert_allclose(
            long_range.differential_rate(E, HALO) / contact.differential_rate(E, HALO),
            (long_range.q_ref / q) ** 4,
            rtol=1e-10,
        )

    def test_get_particle_model_target_by_name(self):
        model = get_particle_model("contact", target="Ge", mass=20.0 * GEV)
        assert model.target == NUCLEI["Ge"]
        assert model.mass == 20.0 * GEV

    def test_unknown_model(self):
        with pytest.raises(ValueError, match="Unknown model 'axion'"):
            get_particle_model("axion")


class TestIntegration:
    """Tests for expected signal counts."""

    def test_flat_total_signals(self):
        model = FlatSpectrum(mass=1.0, strength=2.0)
        np.testing.assert_allclose(total_signals(flat_detector(exposure=3.0), model, HALO), 60.0, rtol=1e-10)

    def test_efficiency_scales_signal(self):
        model = FlatSpectrum(mass=1.0)
        detector = flat_detector().set_flat_efficiency(0.25)
        np.testing.assert_allclose(total_signals(detector, model, HALO), 2.5, rtol=1e-10)

    def test_kinematic_window(self):
        """Test clipping of the window to the kinematic endpoint."""
        detector = flat_detector(energy_threshold=2.0)
        assert energy_range(detector, FlatSpectrum(mass=1.0, energy_per_mass=1.0), HALO) is None
        assert energy_range(detector, FlatSpectrum(mass=5.0, energy_per_mass=1.0), HALO) == (2.0, 5.0)
        assert total_signals(detector, FlatSpectrum(mass=1.0, energy_per_mass=1.0), HALO) == 0.0

    def test_empty_window(self):
        detector = flat_detector(energy_threshold=10.0, energy_max=10.0)
        assert total_signals(detector, FlatSpectrum(mass=1.0), HALO) == 0.0

    def test_binned_signals(self):
        detector = flat_detector(mode=BinnedPoissonMode((0.0, 2.0, 5.0, 10.0), (0.0, 0.0, 0.0)))
        np.testing.assert_allclose(binned_signals(detector, FlatSpectrum(mass=1.0), HALO), [2.0, 3.0, 5.0])

    def test_binned_signals_requires_binned_mode(self):
        with pytest.raises(ValueError, match="binned"):
            binned_signals(flat_detector(), FlatSpectrum(mass=1.0), HALO)

    def test_maximum_gap_mapping(self):
        detector = flat_detector(mode=MaximumGapMode((2.0, 5.0, 6.0)))
        mapping = maximum_gap_mapping(detector, FlatSpectrum(mass=1.0, strength=0.5), HALO)
        np.testing.assert_allclose(mapping, [0.0, 1.0, 2.5, 3.0, 5.0], atol=1e-12)

    def test_cumulative_matches_total(self):
        """Test that the cumulative mapping ends at the total signal."""
        detector = get_detector("xenon_counting")
        model = ContactInteraction(mass=50.0 * GEV, strength=1e-45 * CM2)
        energies = np.linspace(detector.energy_threshold, detector.energy_max, 8)
        mu = cumulative_signals(detector, model, HALO, energies)
        assert np.all(np.diff(mu) >= 0)
        np.testing.assert_allclose(mu[-1], total_signals(detector, model, HALO), rtol=1e-6)

    def test_contact_total_against_quad(self):
        detector = get_detector("xenon_counting")
        model = ContactInteraction(mass=100.0 * GEV, strength=1e-46 * CM2)
        expected, _ = integrate.quad(lambda E: model.differential_rate(E, HALO),
                                     detector.energy_threshold, detector.energy_max, epsabs=0.0)
        np.testing.assert_allclose(total_signals(detector, model, HALO),
                                   detector.effective_exposure * expected, rtol=1e-6)

    def test_signal_spectrum_outside_window(self):
        detector = flat_detector(energy_threshold=2.0, energy_max=8.0)
        spectrum = signal_spectrum(detector, FlatSpectrum(mass=1.0), HALO, [1.0, 5.0, 9.0])
        np.testing.assert_allclose(spectrum, [0.0, 1.0, 0.0])


class TestUpperBound:
    """Tests for the upper-bound solver."""

    def test_background_free_poisson(self):
        """Flat spectrum, 10 expected events per unit strength, no events."""
        bound = upper_bound(flat_detector(), FlatSpectrum(mass=1.0), HALO, certainty=0.95)
        np.testing.assert_allclose(bound, S95 / 10.0, rtol=1e-8)
        np.testing.assert_allclose(bound, 0.29957, rtol=1e-4)

    def test_maximum_gap_without_events(self):
        """Without events the maximum gap reduces to the Poisson bound."""
        detector = flat_detector(mode=MaximumGapMode(()))
        bound = upper_bound(detector, FlatSpectrum(mass=1.0), HALO, certainty=0.95)
        np.testing.assert_allclose(bound, S95 / 10.0, rtol=1e-4)

    def test_maximum_gap_with_events(self):
        """Test the maximum-gap bound for events at 2, 5 and 6."""
        detector = flat_detector(mode=MaximumGapMode((2.0, 5.0, 6.0)))
        bound = upper_bound(detector, FlatSpectrum(mass=1.0), HALO, certainty=0.95)
        # Largest gap [6, 10] holds 4 of the 10 expected events per unit strength
        np.testing.assert_allclose(cdf_maximum_gap(4.0 * bound, 10.0 * bound), 0.95, atol=1e-4)
        assert bound > S95 / 10.0

    def test_binned_takes_most_constraining_bin(self):
        mode = BinnedPoissonMode((0.0, 5.0, 10.0), (0.0, 50.0))
        bound = upper_bound(flat_detector(mode=mode), FlatSpectrum(mass=1.0), HALO)
        np.testing.assert_allclose(bound, S95 / 5.0, rtol=1e-8)

    def test_poisson_with_background(self):
        """With observed = B = 2 the bound satisfies P(k <= 2 | S + 2) = 0.05."""
        detector = flat_detector(mode=PoissonMode(background=2.0))
        s_max = required_signals(detector, 0.95)
        np.testing.assert_allclose(s_max, special.gammainccinv(3.0, 0.05) - 2.0)
        np.testing.assert_allclose(stats.poisson.cdf(2, s_max + 2.0), 0.05, rtol=1e-8)
        bound = upper_bound(detector, FlatSpectrum(mass=1.0), HALO)
        np.testing.assert_allclose(bound, s_max / 10.0, rtol=1e-8)

    def test_poisson_with_observed_events(self):
        detector = flat_detector(mode=PoissonMode(background=0.0, observed=3.0))
        np.testing.assert_allclose(required_signals(detector, 0.95), 7.7537, rtol=1e-4)

    def test_background_already_excluded(self):
        detector = flat_detector(mode=PoissonMode(background=5.0, observed=0.0))
        with pytest.raises(DegenerateStatisticError):
            upper_bound(detector, FlatSpectrum(mass=1.0), HALO)

    def test_binned_skips_excluded_background_bin(self):
        """A bin whose background alone is excluded does not void the other bins."""
        mode = BinnedPoissonMode((0.0, 5.0, 10.0), (0.0, 5.0), observed=(0.0, 0.0))
        curve = limit_curve(flat_detector(mode=mode), FlatSpectrum(mass=1.0), HALO, masses=[1.0])
        assert curve.status == (EXCLUDED_STATUS,)
        np.testing.assert_allclose(curve.bounds, [S95 / 5.0], rtol=1e-8)

    @pytest.mark.parametrize("mode", [
        PoissonMode(background=1.0),
        BinnedPoissonMode((0.0, 5.0, 10.0), (1.0, 2.0)),
        MaximumGapMode((2.0, 5.0, 6.0)),
    ])
    def test_bound_increases_with_certainty(self, mode):
        """Test that a higher confidence level gives a weaker bound."""
        detector = flat_detector(mode=mode)
        model = FlatSpectrum(mass=1.0)
        bounds = [upper_bound(detector, model, HALO, certainty=cl) for cl in (0.8, 0.9, 0.95, 0.99)]
        assert np.all(np.diff(bounds) > 0)

    @pytest.mark.parametrize("mode", [
        PoissonMode(),
        BinnedPoissonMode((0.0, 5.0, 10.0), (0.0, 3.0)),
        MaximumGapMode((2.0, 5.0, 6.0)),
    ])
    def test_likelihood_at_bound(self, mode):
        """Test that the statistic equals 1 - CL at the bound."""
        detector = flat_detector(mode=mode)
        model = FlatSpectrum(mass=1.0)
        bound = upper_bound(detector, model, HALO, certainty=0.9)
        np.testing.assert_allclose(likelihood_at(detector, model, HALO, bound), 0.1, atol=1e-5)

    def test_bound_independent_of_reference_strength(self):
        detector = flat_detector(mode=MaximumGapMode((2.0, 5.0, 6.0)))
        b1 = upper_bound(detector, FlatSpectrum(mass=1.0, strength=1.0), HALO)
        b2 = upper_bound(detector, FlatSpectrum(mass=1.0, strength=1e-6), HALO)
        b3 = upper_bound(detector, FlatSpectrum(mass=1.0, strength=0.0), HALO)
        np.testing.assert_allclose(b2, b1, rtol=1e-4)
        np.testing.assert_allclose(b3, b1, rtol=1e-4)

    def test_bound_inverse_in_exposure(self):
        model = FlatSpectrum(mass=1.0)
        b1 = upper_bound(flat_detector(exposure=1.0), model, HALO)
        b2 = upper_bound(flat_detector(exposure=4.0), model, HALO)
        np.testing.assert_allclose(b2, b1 / 4.0, rtol=1e-10)

    def test_kinematic_null_is_infinite(self):
        detector = flat_detector(energy_threshold=2.0)
        assert upper_bound(detector, FlatSpectrum(mass=1.0, energy_per_mass=1.0), HALO) == math.inf

    def test_solver_failure(self):
        """Test that a too narrow bracket search raises SolverError."""
        detector = flat_detector(mode=MaximumGapMode((2.0, 5.0, 6.0)))
        with pytest.raises(SolverError):
            upper_bound(detector, FlatSpectrum(mass=1.0), HALO,
                        settings=SolverSettings(max_bracket_decades=1))

    def test_invalid_certainty(self):
        with pytest.raises(ValueError, match="certainty must be in"):
            upper_bound(flat_detector(), FlatSpectrum(mass=1.0), HALO, certainty=1.0)

    def test_xenon_contact_bound(self):
        """Test the order of magnitude of a tonne-year xenon bound at 100 GeV."""
        detector = get_detector("xenon_counting")
        bound = upper_bound(detector, ContactInteraction(mass=100.0 * GEV), HALO)
        assert 1e-48 < in_units(bound, CM2) < 1e-45


class TestLimitCurve:
    """Tests for the limit-curve scanner."""

    def test_scan_with_forbidden_mass(self):
        """Test that a kinematically forbidden mass does not interrupt the scan."""
        detector = flat_detector(energy_threshold=2.0)
        model = FlatSpectrum(mass=1.0, energy_per_mass=1.0)
        curve = limit_curve(detector, model, HALO, masses=[10.0, 1.0, 5.0])

        np.testing.assert_allclose(curve.masses, [1.0, 5.0, 10.0])
        assert curve.status == (KINEMATIC_NULL_STATUS, EXCLUDED_STATUS, EXCLUDED_STATUS)
        assert curve.bounds[0] == math.inf
        np.testing.assert_allclose(curve.bounds[1:], [S95 / 3.0, S95 / 8.0], rtol=1e-8)
        assert model.mass == 1.0

    def test_scan_records_failures(self):
        detector = flat_detector(mode=PoissonMode(background=5.0, observed=0.0))
        curve = limit_curve(detector, FlatSpectrum(mass=1.0), HALO, masses=[1.0, 2.0])
        assert curve.status == (UNCONSTRAINED_STATUS, UNCONSTRAINED_STATUS)
        assert np.all(np.isinf(curve.bounds))

        detector = flat_detector(mode=MaximumGapMode((2.0, 5.0, 6.0)))
        curve = limit_curve(detector, FlatSpectrum(mass=1.0), HALO, masses=[1.0],
                            settings=SolverSettings(max_bracket_decades=1))
        assert curve.status == (SOLVER_FAILURE_STATUS,)
        assert np.isnan(curve.bounds[0])

    def test_scan_settings_grid(self):
        scan = ScanSettings(mass_min=1.0, mass_max=100.0, points=3, certainty=0.9)
        curve = limit_curve(flat_detector(), FlatSpectrum(mass=1.0), HALO, scan)
        np.testing.assert_allclose(curve.masses, [1.0, 10.0, 100.0])
        np.testing.assert_allclose(curve.bounds, -math.log(0.1) / 10.0, rtol=1e-8)
        assert curve.certainty == 0.9

    def test_parallel_matches_sequential(self):
        detector = flat_detector(energy_threshold=2.0, mode=MaximumGapMode((3.0, 7.0)))
        model = FlatSpectrum(mass=1.0, energy_per_mass=1.0)
        masses = [1.0, 4.0, 8.0, 12.0]
        serial = limit_curve(detector, model, HALO, masses=masses)
        parallel = limit_curve(detector, model, HALO, masses=masses, workers=2)
        np.testing.assert_allclose(parallel.bounds, serial.bounds)
        assert parallel.status == serial.status

    def test_curve_is_read_only(self):
        curve = limit_curve(flat_detector(), FlatSpectrum(mass=1.0), HALO, masses=[1.0, 2.0])
        with pytest.raises(ValueError):
            curve.bounds[0] = 0.0

    def test_minimum_and_dict(self):
        detector = flat_detector(energy_threshold=2.0)
        curve = limit_curve(detector, FlatSpectrum(mass=1.0, energy_per_mass=1.0), HALO,
                            masses=[1.0, 5.0, 10.0])
        mass, bound = curve.minimum()
        assert mass == 10.0
        np.testing.assert_allclose(bound, S95 / 8.0, rtol=1e-8)
        data = curve.to_dict()
        assert data["bounds"][0] is None
        assert data["status"][0] == KINEMATIC_NULL_STATUS
        assert curve.as_array().shape == (3, 2)

    def test_requires_grid(self):
        with pytest.raises(ValueError, match="either scan or masses"):
            limit_curve(flat_detector(), FlatSpectrum(mass=1.0), HALO)

    def test_invalid_scan_settings(self):
        with pytest.raises(ValueError, match="mass_max"):
            ScanSettings(mass_min=10.0, mass_max=1.0)

    def test_log_mass_grid(self):
        grid = log_mass_grid(0.1, 1000.0, 5)
        np.testing.assert_allclose(grid, [0.1, 1.0, 10.0, 100.0, 1000.0])
        np.testing.assert_allclose(log_mass_grid(3.0, 30.0, 1), [3.0])

    def test_minimum_mass(self):
        detector = flat_detector(energy_threshold=2.0)
        model = FlatSpectrum(mass=1.0, energy_per_mass=1.0)
        np.testing.assert_allclose(minimum_mass(detector, model, HALO, 1.0, 10.0), 2.0, rtol=1e-4)
        assert minimum_mass(detector, model, HALO, 3.0, 10.0) == 3.0
        assert minimum_mass(detector, model, HALO, 0.1, 1.0) == math.inf

    def test_contact_curve_light_masses_null(self):
        """Test that very light DM cannot reach a 5 keV xenon threshold."""
        detector = get_detector("xenon_counting")
        curve = limit_curve(detector, ContactInteraction(), HALO,
                            masses=np.array([1.0, 50.0]) * GEV)
        assert curve.status == (KINEMATIC_NULL_STATUS, EXCLUDED_STATUS)


class TestOutputs:
    """Tests for report, JSON, table and plot output."""

    @pytest.fixture
    def curve(self):
        detector = flat_detector(energy_threshold=2.0)
        return limit_curve(detector, FlatSpectrum(mass=1.0, energy_per_mass=1.0), HALO,
                           masses=[1.0, 5.0, 10.0])

    def test_generate_report(self, curve, tmp_path):
        content = generate_report(curve, flat_detector(energy_threshold=2.0), tmp_path)
        assert (tmp_path / "report.md").exists()
        assert "Exclusion Limit Report: toy" in content
        assert KINEMATIC_NULL_STATUS in content

    def test_save_results_json(self, curve, tmp_path):
        save_results_json(curve, flat_detector(energy_threshold=2.0), tmp_path,
                          mass_unit=1.0, strength_unit=1.0)
        data = json.loads((tmp_path / "results.json").read_text())
        assert data["bounds"][0] is None
        np.testing.assert_allclose(data["bounds"][1], S95 / 3.0, rtol=1e-8)
        assert data["status"] == list(curve.status)
        assert data["detector"]["statistical_analysis"] == "Poisson"

    def test_export_table(self, curve, tmp_path):
        path = export_table(curve, tmp_path / "limits.txt", mass_unit=1.0, strength_unit=1.0)
        table = np.loadtxt(path, ndmin=2)
        assert table.shape == (2, 2)
        np.testing.assert_allclose(table[:, 0], [5.0, 10.0], rtol=1e-6)

    def test_plots(self, curve, tmp_path):
        fig = plot_limit_curve([curve], outdir=tmp_path, mass_unit=1.0, strength_unit=1.0)
        plt.close(fig)
        detector = flat_detector(mode=MaximumGapMode((2.0, 5.0)))
        fig = plot_signal_spectrum(detector, FlatSpectrum(mass=1.0), HALO, outdir=tmp_path,
                                   energy_unit=1.0)
        plt.close(fig)
        fig = plot_maximum_gap_cdf(outdir=tmp_path, n_points=20)
        plt.close(fig)
        for name in ("limit_curve.png", "signal_spectrum.png", "maximum_gap_cdf.png"):
            assert (tmp_path / name).exists()


class TestCommandLine:
    """Tests for building the detector from command-line options."""

    @staticmethod
    def options(**overrides):
        values = {"detector": "germanium_binned", "exposure": None, "threshold": None,
                  "emax": None, "background": None, "bins": None, "events": None}
        values.update(overrides)
        return argparse.Namespace(**values)

    def test_background_spread_over_preset_bins(self):
        """Test that a scalar background keeps the binned mode of a binned preset."""
        detector = build_detector(self.options(background=6.0))
        assert isinstance(detector.mode, BinnedPoissonMode)
        assert detector.mode.n_bins == 3
        np.testing.assert_allclose(detector.mode.background, [2.0, 2.0, 2.0])

    def test_background_with_bins(self):
        detector = build_detector(self.options(detector="xenon_counting", background=4.0, bins=2))
        np.testing.assert_allclose(detector.mode.background, [2.0, 2.0])

    def test_background_for_counting_preset(self):
        detector = build_detector(self.options(detector="xenon_counting", background=1.5))
        assert isinstance(detector.mode, PoissonMode)
        assert detector.mode.background == 1.5
