"""Tests for adaptive peak detection and RR interval tracking."""

import numpy as np
import pytest

from ppgvitals.signal.peaks import AdaptivePeakDetector, DetectorConfig
from ppgvitals.signal.rr import RRConfig, RRIntervalTracker


def _feed(detector, samples):
	return [detector.update(v, ts) for ts, v in samples]


class TestAdaptivePeakDetector:
	def test_detects_sine_peaks(self, sine_wave):
		det = AdaptivePeakDetector()
		events = [det.update(v, int(round(i * 1000 / 30))) for i, v in enumerate(np.tile(sine_wave, 2))]
		peaks = [e.timestamp for e in events if e.is_peak]
		# 72 BPM over 10 s
		assert 10 <= len(peaks) <= 13
		intervals = np.diff(peaks)[1:]
		assert np.all(np.abs(intervals - 833) <= 34)

	def test_locates_peak_in_history(self):
		det = AdaptivePeakDetector()
		events = _feed(det, [(0, 0.0), (33, 1.0), (66, 0.0)])
		assert events[-1].is_peak
		assert events[-1].timestamp == 33
		assert events[-1].value == 1.0
		assert det.peak_count == 1

	def test_refractory_drops_double_detection(self):
		det = AdaptivePeakDetector()
		events = _feed(det, [
			(0, 0.0), (33, 1.0), (66, 0.0),
			(100, 1.0), (133, 0.0),            # 100 ms after the first peak
			(366, 0.0), (400, 1.0), (433, 0.0),
		])
		peaks = [e.timestamp for e in events if e.is_peak]
		assert peaks == [33, 400]

	def test_signal_never_below_noise(self):
		rng = np.random.default_rng(3)
		det = AdaptivePeakDetector()
		for i in range(600):
			value = float(rng.normal(0, 1)) - 2.0
			det.update(value, i * 33)
			assert det.signal_level >= det.noise_level
			assert det.threshold >= det.config.min_absolute_threshold

	def test_peaks_respect_refractory_under_noise(self):
		rng = np.random.default_rng(11)
		det = AdaptivePeakDetector()
		peaks = []
		for i in range(900):
			event = det.update(float(rng.normal(0, 1)), int(round(i * 1000 / 30)))
			if event.is_peak:
				peaks.append(event.timestamp)
		assert len(peaks) > 10
		assert np.all(np.diff(peaks) > 250)

	def test_snr_positive_after_peaks(self, sine_wave):
		det = AdaptivePeakDetector()
		for i, v in enumerate(sine_wave):
			event = det.update(v, i * 33)
		assert event.snr > 0
		assert det.snr == event.snr

	def test_reset(self, sine_wave):
		det = AdaptivePeakDetector()
		for i, v in enumerate(sine_wave):
			det.update(v, i * 33)
		det.reset()
		assert det.peak_count == 0
		assert det.last_peak_timestamp is None
		assert det.signal_level == 0.5
		assert det.noise_level == 0.1

	def test_config_validate(self):
		assert DetectorConfig().validate() == []
		errors = DetectorConfig(search_back_ms=500, history_ms=300).validate()
		assert any("search_back_ms" in e for e in errors)


class TestRRIntervalTracker:
	def test_first_peak_anchors(self):
		rr = RRIntervalTracker()
		assert rr.add_peak(1000) is None
		assert rr.last_peak_timestamp == 1000
		assert len(rr) == 0

	def test_accepts_within_bounds(self):
		rr = RRIntervalTracker()
		rr.add_peak(0)
		assert rr.add_peak(800) == 800
		assert rr.intervals == (800,)
		assert rr.accepted == 1

	def test_short_interval_keeps_anchor(self):
		rr = RRIntervalTracker()
		rr.add_peak(0)
		rr.add_peak(800)
		assert rr.add_peak(1000) is None
		assert rr.last_peak_timestamp == 800
		assert rr.add_peak(1600) == 800
		assert rr.rejected == 1

	def test_long_gap_reanchors(self):
		rr = RRIntervalTracker()
		rr.add_peak(0)
		assert rr.add_peak(2000) is None
		assert rr.last_peak_timestamp == 2000
		assert rr.add_peak(2800) == 800

	def test_long_gap_without_reanchor(self):
		rr = RRIntervalTracker(RRConfig(reanchor_on_long_gap=False))
		rr.add_peak(0)
		rr.add_peak(2000)
		assert rr.last_peak_timestamp == 0

	@pytest.mark.parametrize("interval", [300, 1500])
	def test_bounds_inclusive(self, interval):
		rr = RRIntervalTracker()
		rr.add_peak(0)
		assert rr.add_peak(interval) == interval

	def test_bounded_history(self):
		rr = RRIntervalTracker(RRConfig(max_intervals=3))
		for i in range(6):
			rr.add_peak(i * 800)
		assert len(rr) == 3
		assert rr.accepted == 5

	def test_reset(self):
		rr = RRIntervalTracker()
		rr.add_peak(0)
		rr.add_peak(800)
		rr.reset()
		assert rr.intervals == ()
		assert rr.last_peak_timestamp is None
		assert rr.accepted == 0
