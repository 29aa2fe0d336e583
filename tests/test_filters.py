"""Tests for streaming filters."""

import numpy as np
import pytest

from ppgvitals.errors import ConfigurationError
from ppgvitals.signal.filters import (
	BandpassFilter,
	ExponentialSmoother,
	KalmanFilter,
	MovingAverageFilter,
	PassthroughFilter,
)


class TestMovingAverageFilter:
	def test_running_mean(self):
		f = MovingAverageFilter(window=3)
		assert f.update(3.0) == 3.0
		assert f.update(6.0) == 4.5
		assert f.update(9.0) == 6.0
		assert f.update(12.0) == 9.0

	def test_invalid_window(self):
		with pytest.raises(ConfigurationError):
			MovingAverageFilter(window=0)

	def test_reset(self):
		f = MovingAverageFilter(window=2)
		f.update(10.0)
		f.reset()
		assert f.update(2.0) == 2.0


class TestExponentialSmoother:
	def test_first_value(self):
		s = ExponentialSmoother(alpha=0.5)
		assert s.update(100.0) == 100.0

	def test_converges(self):
		s = ExponentialSmoother(alpha=0.3)
		for _ in range(30):
			v = s.update(60.0)
		assert abs(v - 60.0) < 1e-6

	def test_value_and_reset(self):
		s = ExponentialSmoother(alpha=0.4)
		assert s.value is None
		s.update(1.0)
		assert s.update(6.0) == pytest.approx(3.0)
		s.reset()
		assert s.value is None


class TestKalmanFilter:
	def test_first_update(self):
		f = KalmanFilter(q=0.3, r=0.05)
		out = f.update(10.0)
		# P = 1.3, K = 1.3 / 1.35
		assert out == pytest.approx(10.0 * 1.3 / 1.35)
		assert f.k == pytest.approx(1.3 / 1.35)

	def test_tracks_constant(self):
		f = KalmanFilter()
		for _ in range(20):
			out = f.update(5.0)
		assert out == pytest.approx(5.0, abs=0.01)

	def test_reset_restores_initial_state(self):
		f = KalmanFilter()
		f.update(3.0)
		f.reset()
		assert f.p == 1.0
		assert f.x == 0.0


class TestBandpassFilter:
	def test_invalid_freq_range(self):
		with pytest.raises(ConfigurationError):
			BandpassFilter(sample_rate_hz=30.0, low_freq_hz=4.0, high_freq_hz=0.5)

	def test_removes_dc_keeps_cardiac_band(self, sine_wave):
		f = BandpassFilter(sample_rate_hz=30.0, low_freq_hz=0.5, high_freq_hz=4.0)
		out = np.array([f.update(v) for v in np.tile(sine_wave, 2) + 100.0])
		settled = out[60:]
		assert abs(np.mean(settled)) < 0.2
		assert np.ptp(settled) > 1.0

	def test_reset_clears_state(self):
		f = BandpassFilter(sample_rate_hz=30.0, low_freq_hz=0.5, high_freq_hz=4.0)
		first = f.update(50.0)
		f.update(80.0)
		f.reset()
		assert f.update(50.0) == pytest.approx(first)

	def test_update_is_finite(self, sine_wave):
		f = BandpassFilter(sample_rate_hz=30.0, low_freq_hz=0.5, high_freq_hz=4.0)
		out = [f.update(v) for v in sine_wave]
		assert np.all(np.isfinite(out))


def test_passthrough():
	assert PassthroughFilter().update(4.2) == 4.2
