"""Slow-varying metabolic estimates (glucose, lipids) from waveform shape.

Both calculators share one feature extractor over a long buffer and
score confidence by how stable the features are across segments of it.
The models are linear and heuristic; calibration shifts them toward a
user-supplied reference.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

import numpy as np
import structlog
from numpy.typing import NDArray
from scipy.integrate import trapezoid

from ppgvitals.errors import QualityIssue, SignalTooWeakError
from ppgvitals.models import Channel, VitalSignCalculation
from ppgvitals.vitals.base import (
	CalculatorConfig,
	EvaluationContext,
	VitalSignCalculator,
	blend_offset,
	clamp_value,
	register_calculator,
)

logger = structlog.get_logger(__name__)

FEATURE_NAMES = ("auc_ratio", "amplitude", "decay_ms", "symmetry", "distortion")


@dataclass
class WaveformFeatures:
	auc_ratio: float      # area under curve over window length, relative to amplitude
	amplitude: float
	decay_ms: float       # peak to half amplitude
	symmetry: float       # mean rise slope over mean fall slope
	distortion: float     # variance of first differences over amplitude squared

	def as_array(self) -> NDArray:
		return np.array([getattr(self, name) for name in FEATURE_NAMES], dtype=np.float64)


def waveform_features(values: NDArray, sample_rate_hz: float) -> WaveformFeatures:
	amplitude = float(np.ptp(values))
	if amplitude <= 1e-9:
		raise SignalTooWeakError("flat waveform")

	shifted = values - values.min()
	auc_ratio = float(trapezoid(shifted) / (len(values) - 1) / amplitude) if len(values) > 1 else 0.0

	peak = int(np.argmax(values))
	half = values.min() + amplitude / 2
	after = np.nonzero(values[peak:] <= half)[0]
	decay_samples = int(after[0]) if len(after) else len(values) - peak
	decay_ms = decay_samples * 1000.0 / sample_rate_hz

	diffs = np.diff(values)
	rising = diffs[diffs > 0]
	falling = diffs[diffs < 0]
	if len(rising) and len(falling):
		symmetry = float(np.clip(np.mean(rising) / abs(np.mean(falling)), 0.0, 3.0))
	else:
		symmetry = 1.0
	distortion = float(np.var(diffs) / amplitude ** 2)

	return WaveformFeatures(
		auc_ratio=auc_ratio,
		amplitude=amplitude,
		decay_ms=decay_ms,
		symmetry=symmetry,
		distortion=distortion,
	)


def segment_stability(values: NDArray, segments: int, sample_rate_hz: float) -> float:
	"""1 minus the mean coefficient of variation of features across segments."""
	parts = np.array_split(values, segments)
	try:
		rows = np.vstack([waveform_features(p, sample_rate_hz).as_array() for p in parts])
	except SignalTooWeakError:
		return 0.0
	means = np.abs(rows.mean(axis=0))
	spread = rows.std(axis=0)
	cv = np.where(means > 1e-9, spread / np.maximum(means, 1e-9), 0.0)
	return float(1.0 - min(1.0, float(np.mean(cv))))


@dataclass
class MetabolicConfig(CalculatorConfig):
	segments: int = 3
	baseline: float = 100.0
	min_value: float = 70.0
	max_value: float = 200.0
	# Features at which the model returns the baseline
	reference_features: dict[str, float] = field(default_factory=lambda: {
		"auc_ratio": 0.5,
		"amplitude": 2.0,
		"decay_ms": 250.0,
		"symmetry": 1.5,
		"distortion": 0.05,
	})
	coefficients: dict[str, float] = field(default_factory=dict)


class MetabolicCalculator(VitalSignCalculator):
	"""Shared feature pipeline for glucose and lipid channels."""

	config: MetabolicConfig
	calibration_key = "value"

	def __init__(self, config: MetabolicConfig | None = None) -> None:
		super().__init__(config)
		self.baseline = self.config.baseline
		self.offset = 0.0
		self._last_estimate: float | None = None
		self._last_features: WaveformFeatures | None = None

	def baseline_value(self) -> float:
		return round(self.baseline)

	def _insufficient_confidence(self) -> float:
		return 0.1 * self.fill_ratio

	def _model(self, features: WaveformFeatures, baseline: float, coefficients: Mapping[str, float]) -> float:
		refs = self.config.reference_features
		value = baseline
		for name, coeff in coefficients.items():
			ref = refs.get(name, 0.0)
			dev = (getattr(features, name) - ref) / ref if ref else getattr(features, name)
			value += coeff * dev
		return value

	def _features(self) -> tuple[WaveformFeatures, float]:
		self._require_samples()
		quality = self._require_quality()
		values = self._series("optimized_value")
		try:
			features = waveform_features(values, self.config.sample_rate_hz)
		except SignalTooWeakError as e:
			e.channel = self.channel.value
			raise
		stability = segment_stability(values, self.config.segments, self.config.sample_rate_hz)
		return features, stability * quality

	def _feature_metadata(self, features: WaveformFeatures, stability: float) -> dict:
		return {
			"stability": round(stability, 3),
			**{name: round(getattr(features, name), 4) for name in FEATURE_NAMES},
		}

	def _calculate(self, context: EvaluationContext) -> VitalSignCalculation:
		cfg = self.config
		features, stability = self._features()
		estimate = self._model(features, self.baseline, cfg.coefficients)
		self._last_estimate = estimate
		self._last_features = features
		value, clamped = clamp_value(estimate + self.offset, cfg.min_value, cfg.max_value)
		return VitalSignCalculation(
			channel=self.channel,
			value=round(value),
			confidence=stability * self.adequacy,
			timestamp=context.timestamp,
			metadata=self._feature_metadata(features, stability),
			issue=QualityIssue.OUT_OF_RANGE if clamped else None,
		)

	def calibrate(self, reference: Mapping[str, float]) -> bool:
		target = reference.get(self.calibration_key)
		if target is None:
			return False
		if self._last_estimate is None:
			self.baseline = float(target)
		else:
			self.offset = blend_offset(self.config.calibration_blend, target, self._last_estimate)
		logger.info("metabolic_calibrated", channel=self.channel.value, reference=target, offset=round(self.offset, 2))
		return True

	def clear_last_valid(self) -> None:
		super().clear_last_valid()
		self.baseline = self.config.baseline
		self.offset = 0.0
		self._last_estimate = None


@dataclass
class GlucoseConfig(MetabolicConfig):
	buffer_size: int = 150
	min_samples: int = 90
	baseline: float = 100.0
	min_value: float = 70.0
	max_value: float = 200.0
	coefficients: dict[str, float] = field(default_factory=lambda: {
		"auc_ratio": 12.0,
		"decay_ms": 8.0,
		"symmetry": -6.0,
		"distortion": 4.0,
	})


@register_calculator(Channel.GLUCOSE)
class GlucoseCalculator(MetabolicCalculator):
	config_class = GlucoseConfig
	calibration_key = "glucose"


@dataclass
class LipidsConfig(MetabolicConfig):
	buffer_size: int = 120
	min_samples: int = 60
	baseline: float = 180.0               # total cholesterol, mg/dL
	min_value: float = 120.0
	max_value: float = 300.0
	triglycerides_baseline: float = 130.0
	triglycerides_min: float = 50.0
	triglycerides_max: float = 400.0
	coefficients: dict[str, float] = field(default_factory=lambda: {
		"auc_ratio": 20.0,
		"amplitude": -10.0,
		"decay_ms": 15.0,
		"distortion": 6.0,
	})
	triglycerides_coefficients: dict[str, float] = field(default_factory=lambda: {
		"auc_ratio": 25.0,
		"decay_ms": 20.0,
		"symmetry": -10.0,
	})


@register_calculator(Channel.LIPIDS)
class LipidsCalculator(MetabolicCalculator):
	"""Total cholesterol as the channel value, triglycerides in metadata."""

	config_class = LipidsConfig
	config: LipidsConfig
	calibration_key = "cholesterol"

	def __init__(self, config: LipidsConfig | None = None) -> None:
		super().__init__(config)
		self.triglycerides_baseline = self.config.triglycerides_baseline
		self.triglycerides_offset = 0.0
		self._last_triglycerides: float | None = None

	def _baseline_metadata(self) -> dict:
		return {
			"cholesterol": round(self.baseline),
			"triglycerides": round(self.triglycerides_baseline),
		}

	def _calculate(self, context: EvaluationContext) -> VitalSignCalculation:
		cfg = self.config
		result = super()._calculate(context)
		features = self._last_features

		estimate = self._model(features, self.triglycerides_baseline, cfg.triglycerides_coefficients)
		self._last_triglycerides = estimate
		triglycerides, clamped = clamp_value(
			estimate + self.triglycerides_offset, cfg.triglycerides_min, cfg.triglycerides_max
		)
		issue = result.issue or (QualityIssue.OUT_OF_RANGE if clamped else None)
		return VitalSignCalculation(
			channel=result.channel,
			value=result.value,
			confidence=result.confidence,
			timestamp=result.timestamp,
			metadata={**result.metadata, "cholesterol": result.value, "triglycerides": round(triglycerides)},
			issue=issue,
		)

	def calibrate(self, reference: Mapping[str, float]) -> bool:
		used = super().calibrate(reference)
		target = reference.get("triglycerides")
		if target is None:
			return used
		if self._last_triglycerides is None:
			self.triglycerides_baseline = float(target)
		else:
			self.triglycerides_offset = blend_offset(
				self.config.calibration_blend, target, self._last_triglycerides
			)
		return True

	def clear_last_valid(self) -> None:
		super().clear_last_valid()
		self.triglycerides_baseline = self.config.triglycerides_baseline
		self.triglycerides_offset = 0.0
		self._last_triglycerides = None
