"""Tests for cross-channel validation and trend smoothing."""

import pytest

from ppgvitals.errors import QualityIssue
from ppgvitals.models import Channel, VitalSignCalculation
from ppgvitals.processing.smoothing import HoltSmoother, MedianEMA, TrendSmoother
from ppgvitals.processing.validation import CrossChannelValidator


def _calc(channel, value, confidence=0.8, **metadata):
	return VitalSignCalculation(channel=channel, value=value, confidence=confidence, timestamp=0, metadata=metadata)


def _bp(systolic, diastolic, confidence=0.8):
	return _calc(Channel.BLOOD_PRESSURE, f"{systolic}/{diastolic}", confidence, systolic=systolic, diastolic=diastolic)


class TestCrossChannelValidator:
	def test_consistent(self):
		report = CrossChannelValidator().validate({
			Channel.HEART_RATE: _calc(Channel.HEART_RATE, 72),
			Channel.BLOOD_PRESSURE: _bp(120, 80),
		})
		assert report.consistent
		assert report.calculations[Channel.HEART_RATE].confidence == 0.8

	def test_tachycardia_with_low_systolic(self):
		report = CrossChannelValidator().validate({
			Channel.HEART_RATE: _calc(Channel.HEART_RATE, 120),
			Channel.BLOOD_PRESSURE: _bp(95, 70),
		})
		assert [i.rule for i in report.inconsistencies] == ["tachycardia_low_systolic"]
		assert report.calculations[Channel.HEART_RATE].confidence == pytest.approx(0.56)
		assert report.calculations[Channel.BLOOD_PRESSURE].confidence == pytest.approx(0.56)
		# values are never corrected
		assert report.calculations[Channel.HEART_RATE].value == 120

	def test_out_of_range(self):
		report = CrossChannelValidator().validate({Channel.SPO2: _calc(Channel.SPO2, 65)})
		result = report.calculations[Channel.SPO2]
		assert result.confidence == pytest.approx(0.4)
		assert result.metadata["inconsistent"] is True

	def test_pulse_pressure(self):
		report = CrossChannelValidator().validate({Channel.BLOOD_PRESSURE: _bp(150, 80)})
		assert report.inconsistencies[0].rule == "pulse_pressure"
		assert report.calculations[Channel.BLOOD_PRESSURE].confidence == pytest.approx(0.56)

	def test_baseline_results_skipped(self):
		baseline = VitalSignCalculation(
			Channel.HEART_RATE, 0, 0.0, 0, metadata={"baseline": True}, issue=QualityIssue.INSUFFICIENT_DATA
		)
		report = CrossChannelValidator().validate({Channel.HEART_RATE: baseline})
		assert report.consistent

	def test_confidence_never_raised(self):
		calcs = {
			Channel.HEART_RATE: _calc(Channel.HEART_RATE, 250, 0.9),
			Channel.SPO2: _calc(Channel.SPO2, 98, 0.7),
			Channel.BLOOD_PRESSURE: _bp(92, 85, 0.6),
			Channel.GLUCOSE: _calc(Channel.GLUCOSE, 300, 0.5),
		}
		report = CrossChannelValidator().validate(calcs)
		for channel, original in calcs.items():
			assert report.calculations[channel].confidence <= original.confidence


class TestSmoothers:
	def test_median_ema(self):
		s = MedianEMA(window=5, alpha=0.5)
		assert s.update(72) == 72
		# median(72, 100) = 86, blended with 72
		assert s.update(100) == pytest.approx(79.0)

	def test_holt_step_bounded(self):
		s = HoltSmoother(alpha=0.3, beta=0.1, max_step=5.0)
		s.update(100.0)
		assert s.update(150.0) == pytest.approx(105.0)


class TestTrendSmoother:
	def test_heart_rate_spike_damped(self):
		ts = TrendSmoother()
		ts.smooth(_calc(Channel.HEART_RATE, 72))
		result = ts.smooth(_calc(Channel.HEART_RATE, 100))
		assert result.value == 79
		assert result.metadata["unsmoothed"] == 100
		assert result.confidence == 0.8

	def test_invalid_passthrough(self):
		ts = TrendSmoother()
		calc = _calc(Channel.HEART_RATE, 72, confidence=0.0)
		assert ts.smooth(calc) is calc

	def test_retained_passthrough(self):
		ts = TrendSmoother()
		calc = _calc(Channel.GLUCOSE, 120, retained=True)
		assert ts.smooth(calc) is calc

	def test_glucose_bounded_change(self):
		ts = TrendSmoother()
		ts.smooth(_calc(Channel.GLUCOSE, 100))
		result = ts.smooth(_calc(Channel.GLUCOSE, 180))
		assert result.value == 105

	def test_lipids_smooth_triglycerides(self):
		ts = TrendSmoother()
		ts.smooth(_calc(Channel.LIPIDS, 180, triglycerides=130))
		result = ts.smooth(_calc(Channel.LIPIDS, 250, triglycerides=300))
		assert result.value == 185
		assert result.metadata["triglycerides"] == 135

	def test_blood_pressure_keeps_separation(self):
		ts = TrendSmoother()
		ts.smooth(_bp(120, 80))
		result = ts.smooth(_bp(100, 95))
		assert result.metadata["systolic"] - result.metadata["diastolic"] >= 20
		assert result.value == f"{result.metadata['systolic']}/{result.metadata['diastolic']}"

	def test_reset(self):
		ts = TrendSmoother()
		ts.smooth(_calc(Channel.HEART_RATE, 72))
		ts.reset()
		assert ts.smooth(_calc(Channel.HEART_RATE, 100)).value == 100
