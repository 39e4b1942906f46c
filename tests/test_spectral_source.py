import unittest
from unittest import mock

import numpy as np

from config import Config
from spectral_source import (
    BandEnergySnapshot,
    CaptureSpectralSource,
    SimulatedSpectralSource,
    SpectrumAnalyzer,
)


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class TestBandEnergySnapshot(unittest.TestCase):
    def test_from_mapping(self):
        snap = BandEnergySnapshot.from_mapping({
            "energy_by_band": {"bass": 1, "high": 0.25},
            "average_power": None,
            "beat_detected": 1,
        })
        self.assertEqual(snap.energy_by_band, {"bass": 1.0, "high": 0.25})
        self.assertEqual(snap.average_power, 0.0)
        self.assertTrue(snap.beat_detected)

    def test_from_mapping_accepts_camel_case(self):
        snap = BandEnergySnapshot.from_mapping({
            "energyByBand": {"bass": 0.7, "midLow": 0.4, "highMid": 0.2},
            "averagePower": 0.3,
            "beatDetected": True,
        })
        self.assertEqual(snap.energy_by_band, {"bass": 0.7, "mid_low": 0.4, "high_mid": 0.2})
        self.assertEqual(snap.average_power, 0.3)
        self.assertTrue(snap.beat_detected)

    def test_from_mapping_without_bands_warns(self):
        with mock.patch("spectral_source.log_event") as log_event_mock:
            snap = BandEnergySnapshot.from_mapping({"power": 0.5})
        self.assertEqual(snap.energy_by_band, {})
        self.assertFalse(snap.beat_detected)
        self.assertEqual(log_event_mock.call_args[0][0], "WARN")


class TestSpectrumAnalyzer(unittest.TestCase):
    def setUp(self):
        self.analyzer = SpectrumAnalyzer(Config())

    def test_snapshot_bands_and_power(self):
        snap = self.analyzer.analyze(np.full(1024, 0.4), 44100, now=0.0)
        self.assertEqual(set(snap.energy_by_band), {"bass", "mid_low", "mid", "high_mid", "high"})
        self.assertAlmostEqual(snap.average_power, 0.4)
        self.assertFalse(snap.beat_detected)

    def test_values_are_clamped(self):
        snap = self.analyzer.analyze(np.full(64, 3.0), 44100, now=0.0)
        self.assertEqual(snap.average_power, 1.0)

    def test_candidate_gap_and_hold(self):
        loud = np.zeros(1024)
        loud[:10] = 0.9
        quiet = np.zeros(1024)

        self.assertTrue(self.analyzer.analyze(loud, 44100, now=0.0).beat_detected)
        # Held for 100ms even once the signal drops
        self.assertTrue(self.analyzer.analyze(quiet, 44100, now=0.05).beat_detected)
        self.assertFalse(self.analyzer.analyze(quiet, 44100, now=0.15).beat_detected)
        # Loud again but inside the 250ms gap: no new candidate
        self.assertFalse(self.analyzer.analyze(loud, 44100, now=0.2).beat_detected)
        self.assertTrue(self.analyzer.analyze(loud, 44100, now=0.3).beat_detected)

    def test_track_energy_raises_candidate_threshold(self):
        spectrum = np.zeros(1024)
        spectrum[:10] = 0.72
        self.analyzer.set_track_energy(0.0)
        self.assertTrue(self.analyzer.analyze(spectrum, 44100, now=0.0).beat_detected)

        other = SpectrumAnalyzer(Config())
        other.set_track_energy(1.0)
        self.assertFalse(other.analyze(spectrum, 44100, now=0.0).beat_detected)


class TestSimulatedSpectralSource(unittest.TestCase):
    def test_requires_initialize(self):
        source = SimulatedSpectralSource(Config(), clock=FakeClock())
        self.assertFalse(source.initialized)
        self.assertIsNone(source.update())
        self.assertTrue(source.initialize())
        self.assertIsNotNone(source.update())

    def test_deterministic_for_a_given_time(self):
        clock = FakeClock(1.25)
        a = SimulatedSpectralSource(Config(), clock=clock)
        b = SimulatedSpectralSource(Config(), clock=clock)
        np.testing.assert_allclose(a.generate_spectrum(1.25), b.generate_spectrum(1.25))

    def test_spectrum_range(self):
        source = SimulatedSpectralSource(Config())
        for t in (0.0, 0.25, 0.7, 3.3):
            spectrum = source.generate_spectrum(t)
            self.assertEqual(len(spectrum), Config().audio.simulated_bins)
            self.assertGreaterEqual(spectrum.min(), 0.0)
            self.assertLessEqual(spectrum.max(), 1.0)

    def test_produces_candidates_over_time(self):
        clock = FakeClock()
        source = SimulatedSpectralSource(Config(), clock=clock)
        source.initialize()
        candidates = 0
        for step in range(300):
            clock.now = step * 0.016
            snap = source.update()
            candidates += int(snap.beat_detected)
        self.assertGreater(candidates, 0)


class TestCaptureSpectralSource(unittest.TestCase):
    def test_update_without_audio_returns_none(self):
        source = CaptureSpectralSource(Config())
        self.assertIsNone(source.update())

    def test_fed_bass_tone_lands_in_bass_band(self):
        cfg = Config()
        cfg.audio.sample_rate = 44100
        source = CaptureSpectralSource(cfg, clock=FakeClock())
        source._init_highpass_filter()

        t = np.arange(2048) / 44100.0
        tone = (0.8 * np.sin(2 * np.pi * 100.0 * t)).astype(np.float32)
        source.feed(np.column_stack([tone, tone]))
        snap = source.update()

        self.assertIsNotNone(snap)
        bands = snap.energy_by_band
        self.assertGreater(bands["bass"], bands["high"])
        self.assertGreater(bands["bass"], bands["mid"])
        # Block is consumed
        self.assertIsNone(source.update())


if __name__ == "__main__":
    unittest.main()
