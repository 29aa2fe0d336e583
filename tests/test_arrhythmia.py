"""Tests for arrhythmia screening."""

import numpy as np
import pytest

from ppgvitals.errors import QualityIssue
from ppgvitals.vitals.arrhythmia import ArrhythmiaCalculator, RhythmState, Severity, hrv_metrics
from ppgvitals.vitals.base import EvaluationContext


def _ctx(timestamp, intervals):
	intervals = tuple(intervals)
	return EvaluationContext(timestamp=timestamp, rr_intervals=intervals[-20:], beat_count=len(intervals))


class Broken(ArrhythmiaCalculator):
	def _calculate(self, context):
		raise RuntimeError("boom")


class TestHRVMetrics:
	def test_metrics(self):
		m = hrv_metrics(np.array([800.0, 900.0, 800.0]))
		assert m.rmssd == pytest.approx(100.0)
		assert m.pnn50 == 1.0
		assert m.mean_rr == pytest.approx(833.33, abs=0.01)
		assert m.cv == pytest.approx(m.sdnn / m.mean_rr)

	def test_constant_intervals(self):
		m = hrv_metrics(np.full(10, 833.0))
		assert m.rmssd == 0.0
		assert m.sdnn == 0.0


class TestArrhythmiaCalculator:
	def test_insufficient_intervals(self):
		result = ArrhythmiaCalculator().evaluate(_ctx(1000, [833] * 3))
		assert result.value == "--"
		assert result.issue == QualityIssue.INSUFFICIENT_DATA

	def test_normal_rhythm(self):
		calc = ArrhythmiaCalculator()
		result = calc.evaluate(_ctx(10000, [833] * 10))
		assert result.value == "NORMAL|0"
		assert result.confidence == 1.0
		assert calc.state == RhythmState.NORMAL

	def test_confidence_scales_with_intervals(self):
		result = ArrhythmiaCalculator().evaluate(_ctx(5000, [833] * 5))
		assert result.confidence == pytest.approx(0.5)

	def test_single_ectopic_counted_once(self):
		calc = ArrhythmiaCalculator()
		history = [833] * 10 + [500]
		first = calc.evaluate(_ctx(10000, history))
		assert first.value == "ARRHYTHMIA|1"
		assert first.metadata["windows"][0]["start"] == 7500
		assert first.metadata["windows"][0]["end"] == 12500

		# compensatory pause after the same premature beat
		history += [1166, 833, 833, 833]
		for now in range(10500, 20000, 500):
			result = calc.evaluate(_ctx(now, history))
		assert calc.count == 1
		assert result.value == "IRREGULAR|1"

	def test_new_ectopic_detected_after_guard(self):
		calc = ArrhythmiaCalculator()
		history = [833] * 9 + [500]
		calc.evaluate(_ctx(10000, history))
		history += [1166] + [833] * 8 + [500]
		result = calc.evaluate(_ctx(23000, history))
		assert calc.count == 2
		assert result.value == "ARRHYTHMIA|2"
		assert len(result.metadata["windows"]) == 2

	def test_guard_blocks_rapid_detection(self):
		calc = ArrhythmiaCalculator()
		history = [833] * 9 + [500]
		calc.evaluate(_ctx(10000, history))
		history += [1166, 833, 500]
		result = calc.evaluate(_ctx(12000, history))
		assert calc.count == 1
		# still inside the first detection window
		assert result.value == "ARRHYTHMIA|1"

	def test_severity(self):
		calc = ArrhythmiaCalculator()
		calc.evaluate(_ctx(10000, [833, 400] * 5))
		assert calc.windows[-1].severity == Severity.HIGH

	def test_fault_reports_unknown(self):
		result = Broken().evaluate(_ctx(1000, [833] * 10))
		assert result.value == "UNKNOWN|0"
		assert result.issue == QualityIssue.CALCULATION_FAULT

	def test_clear_resets_count(self):
		calc = ArrhythmiaCalculator()
		calc.evaluate(_ctx(10000, [833] * 9 + [500]))
		calc.reset()
		assert calc.count == 1
		calc.clear_last_valid()
		assert calc.count == 0
		assert not calc.windows

	def test_detection_after_reset(self):
		calc = ArrhythmiaCalculator()
		calc.evaluate(_ctx(10000, [833] * 10 + [500]))
		assert calc.count == 1
		calc.reset()

		# beat numbering restarts with the new RR history
		result = calc.evaluate(_ctx(80000, [833] * 10 + [500]))
		assert calc.count == 2
		assert result.value == "ARRHYTHMIA|2"
