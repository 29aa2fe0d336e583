"""Arrhythmia screening from RR interval variability."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from enum import Enum

import numpy as np
import structlog
from numpy.typing import NDArray

from ppgvitals.errors import InsufficientDataError, QualityIssue
from ppgvitals.models import Channel, VitalSignCalculation
from ppgvitals.vitals.base import (
	CalculatorConfig,
	EvaluationContext,
	VitalSignCalculator,
	register_calculator,
)

logger = structlog.get_logger(__name__)


class RhythmState(str, Enum):
	"""Rhythm state machine states."""
	NORMAL = "normal"
	IRREGULAR = "irregular"     # elevated variability, not counted
	DETECTED = "detected"       # counted arrhythmia event


class Severity(str, Enum):
	MODERATE = "moderate"
	HIGH = "high"


@dataclass(frozen=True)
class ArrhythmiaWindow:
	start: int
	end: int
	severity: Severity

	def to_dict(self) -> dict:
		return {"start": self.start, "end": self.end, "severity": self.severity.value}


@dataclass
class ArrhythmiaConfig(CalculatorConfig):
	buffer_size: int = 30
	min_samples: int = 0
	min_intervals: int = 5
	analysis_window: int = 10            # most recent intervals analysed
	rmssd_threshold_ms: float = 70.0     # detection
	irregular_rmssd_ms: float = 50.0     # secondary, reported only
	irregular_cv: float = 0.10
	min_detection_interval_ms: int = 5000
	window_half_width_ms: int = 2500
	max_windows: int = 5
	ectopic_deviation: float = 0.2       # fraction of the window median marking an abnormal beat
	high_severity_factor: float = 2.0


@dataclass
class HRVMetrics:
	mean_rr: float
	sdnn: float
	rmssd: float
	pnn50: float
	cv: float

	def to_dict(self) -> dict:
		return {
			"mean_rr_ms": round(self.mean_rr, 1),
			"sdnn_ms": round(self.sdnn, 1),
			"rmssd_ms": round(self.rmssd, 1),
			"pnn50": round(self.pnn50, 3),
			"cv": round(self.cv, 4),
		}


def hrv_metrics(intervals: NDArray) -> HRVMetrics:
	diffs = np.diff(intervals)
	mean_rr = float(np.mean(intervals))
	sdnn = float(np.std(intervals))
	rmssd = float(np.sqrt(np.mean(diffs ** 2))) if len(diffs) else 0.0
	pnn50 = float(np.mean(np.abs(diffs) > 50)) if len(diffs) else 0.0
	cv = sdnn / mean_rr if mean_rr > 0 else 0.0
	return HRVMetrics(mean_rr=mean_rr, sdnn=sdnn, rmssd=rmssd, pnn50=pnn50, cv=cv)


@register_calculator(Channel.ARRHYTHMIA)
class ArrhythmiaCalculator(VitalSignCalculator):
	"""Normal / Irregular / Detected state machine over RR intervals.

	A detection needs RMSSD above ``rmssd_threshold_ms``, the minimum
	interval since the previous detection to have elapsed, and an abnormal
	beat newer than the one that triggered the previous detection, so a
	single ectopic beat is counted once while it remains in the window.

	The value is a status string ``"<STATE>|<count>"``. A fault reports
	``UNKNOWN`` rather than a clean ``NORMAL``.
	"""

	config_class = ArrhythmiaConfig
	config: ArrhythmiaConfig

	def __init__(self, config: ArrhythmiaConfig | None = None) -> None:
		super().__init__(config)
		self.state = RhythmState.NORMAL
		self.count = 0
		self.windows: deque[ArrhythmiaWindow] = deque(maxlen=self.config.max_windows)
		self._last_detection: int | None = None
		self._last_detected_beat = -1

	def baseline_value(self) -> str:
		return "--"

	def status(self, state: RhythmState | None = None) -> str:
		state = state or self.state
		label = "ARRHYTHMIA" if state == RhythmState.DETECTED else state.name
		return f"{label}|{self.count}"

	def _newest_abnormal_run(self, window: NDArray, beat_count: int) -> tuple[int, int]:
		"""Global (first, last) beat indices of the newest run of abnormal intervals."""
		if beat_count <= 0:
			return -1, -1
		offset = beat_count - len(window)
		median = float(np.median(window))
		abnormal = np.nonzero(np.abs(window - median) > self.config.ectopic_deviation * median)[0]
		if not len(abnormal):
			return -1, -1
		indices = set(abnormal.tolist())
		last = int(abnormal[-1])
		first = last
		while first - 1 in indices:
			first -= 1
		return offset + first, offset + last

	def _calculate(self, context: EvaluationContext) -> VitalSignCalculation:
		cfg = self.config
		if len(context.rr_intervals) < cfg.min_intervals:
			raise InsufficientDataError(
				f"{len(context.rr_intervals)} of {cfg.min_intervals} RR intervals",
				channel=self.channel.value,
			)

		window = np.asarray(context.rr_intervals[-cfg.analysis_window:], dtype=np.float64)
		metrics = hrv_metrics(window)
		now = context.timestamp

		guard_elapsed = (
			self._last_detection is None
			or now - self._last_detection >= cfg.min_detection_interval_ms
		)
		run_start, run_end = self._newest_abnormal_run(window, context.beat_count)
		# a premature beat and its compensatory pause form one event
		novel = context.beat_count <= 0 or run_start > self._last_detected_beat

		if metrics.rmssd > cfg.rmssd_threshold_ms and guard_elapsed and novel:
			self.count += 1
			self._last_detection = now
			self._last_detected_beat = run_end
			severity = (
				Severity.HIGH
				if metrics.rmssd > cfg.high_severity_factor * cfg.rmssd_threshold_ms
				else Severity.MODERATE
			)
			self.windows.append(ArrhythmiaWindow(
				start=now - cfg.window_half_width_ms,
				end=now + cfg.window_half_width_ms,
				severity=severity,
			))
			self.state = RhythmState.DETECTED
			logger.info(
				"arrhythmia_detected",
				count=self.count,
				rmssd=round(metrics.rmssd, 1),
				severity=severity.value,
			)
		elif self.windows and now <= self.windows[-1].end:
			self.state = RhythmState.DETECTED
		elif metrics.rmssd > cfg.irregular_rmssd_ms or metrics.cv > cfg.irregular_cv:
			self.state = RhythmState.IRREGULAR
		else:
			self.state = RhythmState.NORMAL

		confidence = min(1.0, len(context.rr_intervals) / cfg.analysis_window)
		return VitalSignCalculation(
			channel=self.channel,
			value=self.status(),
			confidence=confidence,
			timestamp=now,
			metadata={
				"state": self.state.value,
				"count": self.count,
				"windows": [w.to_dict() for w in self.windows],
				**metrics.to_dict(),
			},
		)

	def _fault_result(self, context: EvaluationContext) -> VitalSignCalculation:
		return VitalSignCalculation(
			channel=self.channel,
			value=f"UNKNOWN|{self.count}",
			confidence=0.0,
			timestamp=context.timestamp,
			metadata={"count": self.count, "windows": [w.to_dict() for w in self.windows]},
			issue=QualityIssue.CALCULATION_FAULT,
		)

	def _reset_state(self) -> None:
		# beat indices restart with the RR history
		self.state = RhythmState.NORMAL
		self._last_detection = None
		self._last_detected_beat = -1

	def clear_last_valid(self) -> None:
		super().clear_last_valid()
		self.count = 0
		self.windows.clear()
		self._last_detection = None
		self._last_detected_beat = -1
