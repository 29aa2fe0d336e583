"""Cuffless blood pressure estimate from pulse waveform morphology."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

import numpy as np
import structlog
from numpy.typing import NDArray

from ppgvitals.errors import QualityIssue, SignalTooWeakError
from ppgvitals.models import Channel, VitalSignCalculation
from ppgvitals.vitals.base import (
	CalculatorConfig,
	EvaluationContext,
	VitalSignCalculator,
	blend_offset,
	register_calculator,
)

logger = structlog.get_logger(__name__)


@dataclass
class BloodPressureConfig(CalculatorConfig):
	buffer_size: int = 150
	min_samples: int = 30
	extrema_half_width: int = 2          # 5-point local extrema
	systolic_min: int = 90
	systolic_max: int = 180
	diastolic_min: int = 60
	diastolic_max: int = 110
	min_separation: int = 20
	reference_systolic: float = 120.0
	reference_diastolic: float = 80.0
	# Feature references at which the model returns the reference pressures
	reference_perfusion: float = 2.0     # percent
	reference_ptt_ms: float = 833.0
	reference_rise_ms: float = 150.0
	reference_notch_depth: float = 0.2
	# Linear model coefficients (mmHg per unit feature deviation)
	systolic_amplitude_coeff: float = 8.0
	systolic_ptt_coeff: float = 6.0      # per 100 ms
	systolic_rise_coeff: float = 4.0     # per 100 ms
	systolic_notch_coeff: float = -10.0
	diastolic_amplitude_coeff: float = 4.0
	diastolic_ptt_coeff: float = 4.0
	diastolic_rise_coeff: float = 2.0
	diastolic_notch_coeff: float = -6.0
	# Feature validity ranges
	notch_position_range: tuple[float, float] = (0.15, 0.65)
	rise_time_range_ms: tuple[float, float] = (50.0, 400.0)
	ptt_range_ms: tuple[float, float] = (300.0, 1500.0)


@dataclass
class PulseFeatures:
	amplitude: float
	perfusion: float
	rise_time_ms: float
	notch_position: float
	notch_depth: float
	width_ms: float
	ptt_ms: float
	cycles: int


def local_extrema(values: NDArray, half_width: int = 2) -> tuple[list[int], list[int]]:
	"""Indices of local maxima and minima over a (2*half_width+1)-point window."""
	peaks: list[int] = []
	valleys: list[int] = []
	for i in range(half_width, len(values) - half_width):
		window = values[i - half_width:i + half_width + 1]
		center = values[i]
		# ties resolve to the earliest sample of a plateau
		if center == window.max() and center > values[i - 1] and center >= values[i + 1]:
			peaks.append(i)
		elif center == window.min() and center < values[i - 1] and center <= values[i + 1]:
			valleys.append(i)
	return peaks, valleys


def separate_pressures(systolic: int, diastolic: int, min_separation: int) -> tuple[int, int]:
	"""Widen systolic/diastolic symmetrically around their midpoint."""
	deficit = min_separation - (systolic - diastolic)
	if deficit > 0:
		systolic += (deficit + 1) // 2
		diastolic -= deficit // 2
	return systolic, diastolic


@register_calculator(Channel.BLOOD_PRESSURE)
class BloodPressureCalculator(VitalSignCalculator):
	"""Feature-weighted linear blood pressure model.

	The reported value is the display string ``"systolic/diastolic"``;
	the numeric pressures are in metadata.
	"""

	config_class = BloodPressureConfig
	config: BloodPressureConfig

	def __init__(self, config: BloodPressureConfig | None = None) -> None:
		super().__init__(config)
		self.reference_systolic = self.config.reference_systolic
		self.reference_diastolic = self.config.reference_diastolic
		self.systolic_offset = 0.0
		self.diastolic_offset = 0.0
		self._last_estimate: tuple[float, float] | None = None

	def baseline_value(self) -> str:
		return f"{int(round(self.reference_systolic))}/{int(round(self.reference_diastolic))}"

	def _baseline_metadata(self) -> dict:
		return {
			"systolic": int(round(self.reference_systolic)),
			"diastolic": int(round(self.reference_diastolic)),
		}

	def extract_features(self) -> PulseFeatures:
		cfg = self.config
		values = self._series("optimized_value")
		timestamps = self._series("timestamp")
		raw_dc = float(np.mean(self._series("raw_value")))

		peaks, valleys = local_extrema(values, cfg.extrema_half_width)
		if len(peaks) < 2 or not valleys:
			raise SignalTooWeakError(
				f"{len(peaks)} peaks, {len(valleys)} valleys in window",
				channel=self.channel.value,
			)

		amplitude = float(np.mean(values[peaks]) - np.mean(values[valleys]))
		if amplitude <= 0:
			raise SignalTooWeakError("non-positive pulse amplitude", channel=self.channel.value)
		perfusion = amplitude / abs(raw_dc) * 100.0 if raw_dc else 0.0

		rise_times = []
		notch_positions = []
		notch_depths = []
		widths = []
		for idx, peak in enumerate(peaks):
			before = [v for v in valleys if v < peak]
			if before:
				rise_times.append(timestamps[peak] - timestamps[before[-1]])

			half = values[peak] - amplitude / 2
			left = peak
			while left > 0 and values[left - 1] > half:
				left -= 1
			right = peak
			while right < len(values) - 1 and values[right + 1] > half:
				right += 1
			widths.append(timestamps[right] - timestamps[left])

			if idx + 1 < len(peaks):
				nxt = peaks[idx + 1]
				trough = next((v for v in valleys if peak < v < nxt), None)
				limb = np.diff(values[peak:trough + 1]) if trough is not None else np.empty(0)
				if len(limb) >= 3:
					# flattest point of the descent marks the notch
					notch = peak + 1 + int(np.argmax(limb[1:-1]))
					notch_positions.append((notch - peak) / (nxt - peak))
					notch_depths.append((values[peak] - values[notch]) / amplitude)

		peak_times = timestamps[peaks]
		ptt = float(np.mean(np.diff(peak_times)))

		return PulseFeatures(
			amplitude=amplitude,
			perfusion=perfusion,
			rise_time_ms=float(np.mean(rise_times)) if rise_times else cfg.reference_rise_ms,
			notch_position=float(np.mean(notch_positions)) if notch_positions else 0.0,
			notch_depth=float(np.mean(notch_depths)) if notch_depths else cfg.reference_notch_depth,
			width_ms=float(np.mean(widths)),
			ptt_ms=ptt,
			cycles=len(peaks),
		)

	def estimate(self, features: PulseFeatures) -> tuple[float, float]:
		"""Uncalibrated (systolic, diastolic) from the linear model."""
		cfg = self.config
		amplitude_dev = features.perfusion / cfg.reference_perfusion - 1.0
		ptt_dev = (cfg.reference_ptt_ms - features.ptt_ms) / 100.0
		rise_dev = (cfg.reference_rise_ms - features.rise_time_ms) / 100.0
		notch_dev = features.notch_depth - cfg.reference_notch_depth

		systolic = (
			self.reference_systolic
			+ cfg.systolic_amplitude_coeff * amplitude_dev
			+ cfg.systolic_ptt_coeff * ptt_dev
			+ cfg.systolic_rise_coeff * rise_dev
			+ cfg.systolic_notch_coeff * notch_dev
		)
		diastolic = (
			self.reference_diastolic
			+ cfg.diastolic_amplitude_coeff * amplitude_dev
			+ cfg.diastolic_ptt_coeff * ptt_dev
			+ cfg.diastolic_rise_coeff * rise_dev
			+ cfg.diastolic_notch_coeff * notch_dev
		)
		return systolic, diastolic

	def _feature_validity(self, features: PulseFeatures) -> float:
		cfg = self.config
		checks = [
			cfg.notch_position_range[0] <= features.notch_position <= cfg.notch_position_range[1],
			cfg.rise_time_range_ms[0] <= features.rise_time_ms <= cfg.rise_time_range_ms[1],
			cfg.ptt_range_ms[0] <= features.ptt_ms <= cfg.ptt_range_ms[1],
		]
		return sum(checks) / len(checks)

	def _calculate(self, context: EvaluationContext) -> VitalSignCalculation:
		cfg = self.config
		self._require_samples()
		quality = self._require_quality()

		features = self.extract_features()
		raw_systolic, raw_diastolic = self.estimate(features)
		self._last_estimate = (raw_systolic, raw_diastolic)

		systolic_f = raw_systolic + self.systolic_offset
		diastolic_f = raw_diastolic + self.diastolic_offset
		systolic = int(round(min(cfg.systolic_max, max(cfg.systolic_min, systolic_f))))
		diastolic = int(round(min(cfg.diastolic_max, max(cfg.diastolic_min, diastolic_f))))
		clamped = systolic != int(round(systolic_f)) or diastolic != int(round(diastolic_f))
		systolic, diastolic = separate_pressures(systolic, diastolic, cfg.min_separation)

		confidence = 0.4 * quality + 0.3 * self.adequacy + 0.3 * self._feature_validity(features)

		return VitalSignCalculation(
			channel=self.channel,
			value=f"{systolic}/{diastolic}",
			confidence=confidence,
			timestamp=context.timestamp,
			metadata={
				"systolic": systolic,
				"diastolic": diastolic,
				"ptt_ms": round(features.ptt_ms, 1),
				"rise_time_ms": round(features.rise_time_ms, 1),
				"notch_position": round(features.notch_position, 3),
				"notch_depth": round(features.notch_depth, 3),
				"pulse_width_ms": round(features.width_ms, 1),
				"cycles": features.cycles,
			},
			issue=QualityIssue.OUT_OF_RANGE if clamped else None,
		)

	def calibrate(self, reference: Mapping[str, float]) -> bool:
		systolic = reference.get("systolic")
		diastolic = reference.get("diastolic")
		if systolic is None or diastolic is None:
			return False

		blend = self.config.calibration_blend
		if self._last_estimate is None:
			self.reference_systolic = float(systolic)
			self.reference_diastolic = float(diastolic)
		else:
			est_systolic, est_diastolic = self._last_estimate
			self.systolic_offset = blend_offset(blend, systolic, est_systolic)
			self.diastolic_offset = blend_offset(blend, diastolic, est_diastolic)
		logger.info(
			"blood_pressure_calibrated",
			systolic=systolic,
			diastolic=diastolic,
			systolic_offset=round(self.systolic_offset, 2),
			diastolic_offset=round(self.diastolic_offset, 2),
		)
		return True

	def clear_last_valid(self) -> None:
		super().clear_last_valid()
		self.reference_systolic = self.config.reference_systolic
		self.reference_diastolic = self.config.reference_diastolic
		self.systolic_offset = 0.0
		self.diastolic_offset = 0.0
		self._last_estimate = None
