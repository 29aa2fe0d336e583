"""Blood oxygen saturation from the AC/DC ratio of the pulse waveform."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass

import numpy as np
import structlog
from scipy import stats

from ppgvitals.errors import QualityIssue, SignalTooWeakError
from ppgvitals.models import Channel, VitalSignCalculation
from ppgvitals.vitals.base import (
	CalculatorConfig,
	EvaluationContext,
	VitalSignCalculator,
	clamp_value,
	register_calculator,
)

logger = structlog.get_logger(__name__)


@dataclass
class SpO2Config(CalculatorConfig):
	buffer_size: int = 90
	min_samples: int = 30
	ac_window: int = 30
	min_perfusion_index: float = 0.15   # percent
	# Empirical calibration SpO2 = a - b*R
	calibration_a: float = 110.0
	calibration_b: float = 25.0
	# R = (AC/DC) / ratio_scale, with a small waveform-skewness correction
	ratio_scale: float = 0.04
	ratio_skew_coeff: float = 0.05
	ratio_min: float = 0.4
	ratio_max: float = 1.6
	min_spo2: float = 70.0
	max_spo2: float = 100.0
	full_perfusion_index: float = 5.0
	stability_window: int = 5
	stability_spread: float = 2.0       # std (percent) giving zero stability

	def validate(self) -> list[str]:
		errors = super().validate()
		if self.ratio_scale <= 0:
			errors.append(f"ratio_scale ({self.ratio_scale}) must be positive")
		if self.ratio_min >= self.ratio_max:
			errors.append(f"ratio_min ({self.ratio_min}) must be below ratio_max ({self.ratio_max})")
		return errors


@register_calculator(Channel.SPO2)
class SpO2Calculator(VitalSignCalculator):
	"""Ratio-of-ratios style SpO2 estimate from a single optical channel.

	DC is the mean raw level, AC the peak-to-peak of the filtered signal
	over the last ``ac_window`` samples. Below ``min_perfusion_index`` the
	channel keeps its last valid value with decaying confidence.
	"""

	config_class = SpO2Config
	config: SpO2Config

	def __init__(self, config: SpO2Config | None = None) -> None:
		super().__init__(config)
		self._history: deque[float] = deque(maxlen=self.config.stability_window)

	def baseline_value(self) -> float:
		return 0

	def perfusion_index(self) -> tuple[float, float, float]:
		"""Returns (perfusion_index_percent, ac, dc)."""
		raw = self._series("raw_value")
		filtered = self._series("filtered_value")[-self.config.ac_window:]
		dc = float(np.mean(raw))
		ac = float(np.ptp(filtered)) if len(filtered) else 0.0
		if dc <= 0:
			return 0.0, ac, dc
		return ac / dc * 100.0, ac, dc

	def _calculate(self, context: EvaluationContext) -> VitalSignCalculation:
		cfg = self.config
		self._require_samples()

		pi, ac, dc = self.perfusion_index()
		if pi < cfg.min_perfusion_index:
			raise SignalTooWeakError(
				f"perfusion index {pi:.3f}% below {cfg.min_perfusion_index}%",
				channel=self.channel.value,
			)

		window = self._series("filtered_value")[-cfg.ac_window:]
		skew = float(stats.skew(window)) if np.std(window) > 0 else 0.0
		ratio = (ac / dc) / cfg.ratio_scale + cfg.ratio_skew_coeff * skew
		ratio = float(np.clip(ratio, cfg.ratio_min, cfg.ratio_max))

		spo2, clamped = clamp_value(cfg.calibration_a - cfg.calibration_b * ratio, cfg.min_spo2, cfg.max_spo2)
		spo2 = int(round(spo2))
		self._history.append(spo2)

		stability = 1.0
		if len(self._history) > 1:
			stability = 1.0 - min(1.0, float(np.std(self._history)) / cfg.stability_spread)
		perfusion_score = min(1.0, pi / cfg.full_perfusion_index)
		confidence = 0.5 * perfusion_score + 0.3 * stability + 0.2 * self.adequacy

		return VitalSignCalculation(
			channel=self.channel,
			value=spo2,
			confidence=confidence,
			timestamp=context.timestamp,
			metadata={
				"perfusion_index": round(pi, 3),
				"ratio": round(ratio, 4),
				"ac": round(ac, 4),
				"dc": round(dc, 4),
			},
			issue=QualityIssue.OUT_OF_RANGE if clamped else None,
		)

	def _reset_state(self) -> None:
		self._history.clear()
