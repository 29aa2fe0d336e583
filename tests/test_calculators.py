"""Tests for the vital sign calculators."""

import numpy as np
import pytest
from conftest import make_signals

from ppgvitals.errors import QualityIssue
from ppgvitals.models import Channel
from ppgvitals.vitals import (
	BloodPressureCalculator,
	GlucoseCalculator,
	HeartRateCalculator,
	LipidsCalculator,
	SpO2Calculator,
	available_channels,
	create_calculator,
)
from ppgvitals.vitals.base import EvaluationContext, clamp_value
from ppgvitals.vitals.blood_pressure import local_extrema, separate_pressures
from ppgvitals.vitals.metabolic import waveform_features
from ppgvitals.vitals.spo2 import SpO2Config


class FaultyHeartRate(HeartRateCalculator):
	"""Succeeds until ``fail`` is set."""

	fail = False

	def _calculate(self, context):
		if self.fail:
			raise RuntimeError("boom")
		return super()._calculate(context)


class NonFiniteHeartRate(HeartRateCalculator):
	def _calculate(self, context):
		return super()._calculate(context).with_value(float("nan"))


def _ctx(timestamp=1000, intervals=(), finger=True):
	return EvaluationContext(timestamp=timestamp, rr_intervals=tuple(intervals), finger_present=finger)


class TestRegistry:
	def test_every_channel_registered(self):
		assert set(available_channels()) == set(Channel)

	def test_create_by_name(self):
		assert isinstance(create_calculator("heart_rate"), HeartRateCalculator)
		assert isinstance(create_calculator(Channel.LIPIDS), LipidsCalculator)


class TestDegradation:
	@pytest.mark.parametrize("channel", list(Channel))
	def test_empty_buffer_low_confidence(self, channel):
		calc = create_calculator(channel)
		result = calc.evaluate(_ctx())
		assert result.confidence <= 0.3
		assert result.issue == QualityIssue.INSUFFICIENT_DATA
		assert result.metadata["baseline"] is True
		assert not result.is_valid

	@pytest.mark.parametrize("channel", list(Channel))
	def test_no_finger_without_history(self, channel):
		calc = create_calculator(channel)
		result = calc.evaluate(_ctx(intervals=[833] * 10, finger=False))
		assert result.confidence == 0.0
		assert result.issue == QualityIssue.SIGNAL_TOO_WEAK

	def test_weak_signal_decays_last_valid(self):
		calc = HeartRateCalculator()
		good = calc.evaluate(_ctx(intervals=[833] * 5))
		first = calc.evaluate(_ctx(2000, finger=False))
		second = calc.evaluate(_ctx(3000, finger=False))
		assert first.value == good.value == 72
		assert first.confidence == pytest.approx(good.confidence * 0.8)
		assert second.confidence == pytest.approx(good.confidence * 0.64)
		assert second.metadata["retained"] is True

	def test_fault_returns_last_valid(self):
		calc = FaultyHeartRate()
		good = calc.evaluate(_ctx(intervals=[833] * 5))
		calc.fail = True
		result = calc.evaluate(_ctx(2000, intervals=[833] * 5))
		assert result.value == good.value
		assert result.confidence < good.confidence
		assert result.issue == QualityIssue.CALCULATION_FAULT
		assert calc.fault_count == 1

	def test_non_finite_estimate_is_fault(self):
		calc = NonFiniteHeartRate()
		result = calc.evaluate(_ctx(intervals=[833] * 5))
		assert result.issue == QualityIssue.CALCULATION_FAULT
		assert result.value == 0
		assert calc.fault_count == 1
		assert calc.last_valid is None

	def test_fault_without_history_is_baseline(self):
		calc = FaultyHeartRate()
		calc.fail = True
		result = calc.evaluate(_ctx(intervals=[833] * 5))
		assert result.value == 0
		assert result.confidence == 0.0

	def test_reset_keeps_last_valid(self):
		calc = HeartRateCalculator()
		calc.evaluate(_ctx(intervals=[833] * 5))
		calc.reset()
		assert calc.last_valid is not None
		calc.clear_last_valid()
		assert calc.last_valid is None


class TestHeartRate:
	def test_regular_intervals(self):
		calc = HeartRateCalculator()
		bpm, confidence, clamped = calc.calculate([833] * 5)
		assert bpm == 72
		assert confidence == pytest.approx(0.7 + 0.3 * 0.5)
		assert not clamped

	def test_irregular_lowers_confidence(self):
		regular = HeartRateCalculator().calculate([833] * 10)[1]
		irregular = HeartRateCalculator().calculate([600, 1000, 700, 1100, 650, 950, 800, 1050, 620, 900])[1]
		assert irregular < regular

	def test_out_of_range_clamped(self):
		calc = HeartRateCalculator()
		result = calc.evaluate(_ctx(intervals=[250] * 5))
		assert result.value == 200
		assert result.issue == QualityIssue.OUT_OF_RANGE

	def test_hysteresis_blends_jump(self):
		calc = HeartRateCalculator()
		calc.calculate([833] * 10)
		bpm, confidence, _ = calc.calculate([500] * 10)
		# 0.7 * 72 + 0.3 * 120
		assert bpm == 86
		assert confidence == pytest.approx(0.8)

	def test_metadata(self):
		result = HeartRateCalculator().evaluate(_ctx(intervals=[800, 850, 850]))
		assert result.metadata["interval_count"] == 3
		assert result.metadata["mean_interval_ms"] == pytest.approx(833.3)


class TestSpO2:
	def test_normal_perfusion(self, sine_wave):
		calc = SpO2Calculator()
		calc.extend(make_signals(Channel.SPO2, sine_wave[:60]))
		result = calc.evaluate(_ctx())
		assert 95 <= result.value <= 100
		assert 0.0 < result.confidence <= 1.0
		assert result.metadata["perfusion_index"] == pytest.approx(2.0, abs=0.1)

	def test_low_perfusion_is_weak(self, sine_wave):
		calc = SpO2Calculator()
		calc.extend(make_signals(Channel.SPO2, sine_wave[:60] * 0.01))
		result = calc.evaluate(_ctx())
		assert result.issue == QualityIssue.SIGNAL_TOO_WEAK
		assert result.confidence == 0.0

	def test_higher_ac_dc_ratio_lowers_spo2(self, sine_wave):
		low = SpO2Calculator()
		low.extend(make_signals(Channel.SPO2, sine_wave[:60]))
		high = SpO2Calculator()
		high.extend(make_signals(Channel.SPO2, sine_wave[:60] * 1.6))
		a = low.evaluate(_ctx())
		b = high.evaluate(_ctx())
		assert b.metadata["ratio"] > a.metadata["ratio"]
		assert b.value < a.value

	def test_ratio_scale_must_be_positive(self):
		assert SpO2Config().validate() == []
		assert any("ratio_scale" in e for e in SpO2Config(ratio_scale=0).validate())

	def test_perfusion_index(self, sine_wave):
		calc = SpO2Calculator()
		calc.extend(make_signals(Channel.SPO2, sine_wave[:60]))
		pi, ac, dc = calc.perfusion_index()
		assert dc == pytest.approx(100.0, abs=0.5)
		assert pi == pytest.approx(ac / dc * 100.0)


class TestBloodPressure:
	def test_estimate_format_and_separation(self, pulse_wave):
		calc = BloodPressureCalculator()
		calc.extend(make_signals(Channel.BLOOD_PRESSURE, pulse_wave))
		result = calc.evaluate(_ctx())
		systolic = result.metadata["systolic"]
		diastolic = result.metadata["diastolic"]
		assert result.value == f"{systolic}/{diastolic}"
		assert systolic - diastolic >= 20
		assert 90 <= systolic <= 180
		assert 60 <= diastolic <= 110
		assert result.metadata["cycles"] >= 4

	def test_insufficient_returns_reference(self):
		result = BloodPressureCalculator().evaluate(_ctx())
		assert result.value == "120/80"
		assert result.metadata["systolic"] == 120

	def test_calibrate_before_estimate_sets_reference(self):
		calc = BloodPressureCalculator()
		assert calc.calibrate({"systolic": 130, "diastolic": 85})
		assert calc.baseline_value() == "130/85"
		assert calc.config.reference_systolic == 120.0

	def test_calibrate_after_estimate_sets_offset(self, pulse_wave):
		calc = BloodPressureCalculator()
		calc.extend(make_signals(Channel.BLOOD_PRESSURE, pulse_wave))
		calc.evaluate(_ctx())
		raw_systolic, raw_diastolic = calc._last_estimate
		calc.calibrate({"systolic": raw_systolic + 10, "diastolic": raw_diastolic})
		assert calc.systolic_offset == pytest.approx(7.0)
		assert calc.diastolic_offset == pytest.approx(0.0)

	def test_calibrate_ignores_other_keys(self):
		assert not BloodPressureCalculator().calibrate({"glucose": 100})

	def test_clear_restores_reference(self):
		calc = BloodPressureCalculator()
		calc.calibrate({"systolic": 140, "diastolic": 90})
		calc.clear_last_valid()
		assert calc.baseline_value() == "120/80"

	def test_separate_pressures(self):
		assert separate_pressures(100, 90, 20) == (105, 85)
		assert separate_pressures(120, 80, 20) == (120, 80)

	def test_local_extrema(self):
		values = np.array([0, 1, 2, 3, 2, 1, 0, 1, 2, 3, 2, 1, 0], dtype=float)
		peaks, valleys = local_extrema(values, half_width=2)
		assert peaks == [3, 9]
		assert valleys == [6]


class TestMetabolic:
	def test_glucose_in_range(self, pulse_wave):
		calc = GlucoseCalculator()
		calc.extend(make_signals(Channel.GLUCOSE, pulse_wave))
		result = calc.evaluate(_ctx())
		assert 70 <= result.value <= 200
		assert 0.0 <= result.confidence <= 1.0
		assert "stability" in result.metadata

	def test_insufficient_scales_with_fill(self, pulse_wave):
		calc = GlucoseCalculator()
		calc.extend(make_signals(Channel.GLUCOSE, pulse_wave[:45]))
		result = calc.evaluate(_ctx())
		assert result.value == 100
		assert result.confidence == pytest.approx(0.05)

	def test_lipids_report_triglycerides(self, pulse_wave):
		calc = LipidsCalculator()
		calc.extend(make_signals(Channel.LIPIDS, pulse_wave))
		result = calc.evaluate(_ctx())
		assert 120 <= result.value <= 300
		assert 50 <= result.metadata["triglycerides"] <= 400

	def test_calibration_keys(self):
		glucose = GlucoseCalculator()
		lipids = LipidsCalculator()
		reference = {"glucose": 110, "triglycerides": 150}
		assert glucose.calibrate(reference)
		assert lipids.calibrate(reference)
		assert glucose.baseline_value() == 110
		assert lipids.triglycerides_baseline == 150
		assert not glucose.calibrate({"cholesterol": 200})

	def test_waveform_features(self, sine_wave):
		features = waveform_features(sine_wave, 30.0)
		assert features.amplitude == pytest.approx(2.0, abs=0.05)
		assert 0.0 < features.auc_ratio < 1.0
		assert features.symmetry == pytest.approx(1.0, abs=0.2)


def test_clamp_value():
	assert clamp_value(250, 40, 200) == (200, True)
	assert clamp_value(72, 40, 200) == (72, False)
