"""Heart rate from RR intervals."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import structlog

from ppgvitals.errors import InsufficientDataError, QualityIssue
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
class HeartRateConfig(CalculatorConfig):
	buffer_size: int = 30
	min_samples: int = 0
	min_intervals: int = 3
	min_bpm: float = 40.0
	max_bpm: float = 200.0
	variability_weight: float = 0.7
	count_weight: float = 0.3
	full_count: int = 10                # intervals for full count adequacy
	hysteresis_bpm: float = 15.0
	hysteresis_previous_weight: float = 0.7
	transition_penalty: float = 0.8


@register_calculator(Channel.HEART_RATE)
class HeartRateCalculator(VitalSignCalculator):
	"""Mean-interval heart rate with jump hysteresis.

	Confidence mixes interval regularity (``1 - std/mean``) with interval
	count adequacy. A jump of more than ``hysteresis_bpm`` from the
	previous output is blended toward the previous value.
	"""

	config_class = HeartRateConfig
	config: HeartRateConfig

	def __init__(self, config: HeartRateConfig | None = None) -> None:
		super().__init__(config)
		self._previous_bpm: int | None = None

	def baseline_value(self) -> float:
		return 0

	def calculate(self, intervals: tuple[int, ...] | list[int]) -> tuple[int, float, bool]:
		"""Returns (bpm, confidence, clamped) for a sequence of RR intervals."""
		cfg = self.config
		if len(intervals) < cfg.min_intervals:
			raise InsufficientDataError(
				f"{len(intervals)} of {cfg.min_intervals} RR intervals",
				channel=self.channel.value,
			)

		values = np.asarray(intervals, dtype=np.float64)
		mean = float(np.mean(values))
		std = float(np.std(values))

		bpm_raw, clamped = clamp_value(round(60000.0 / mean), cfg.min_bpm, cfg.max_bpm)
		bpm = int(bpm_raw)

		regularity = 1.0 - min(1.0, std / mean)
		count_score = min(1.0, len(values) / cfg.full_count)
		confidence = cfg.variability_weight * regularity + cfg.count_weight * count_score

		if self._previous_bpm is not None and abs(bpm - self._previous_bpm) > cfg.hysteresis_bpm:
			blended = cfg.hysteresis_previous_weight * self._previous_bpm + (1 - cfg.hysteresis_previous_weight) * bpm
			logger.debug("heart_rate_transition", previous=self._previous_bpm, candidate=bpm, blended=round(blended))
			bpm = int(round(blended))
			confidence *= cfg.transition_penalty

		self._previous_bpm = bpm
		return bpm, confidence, clamped

	def _calculate(self, context: EvaluationContext) -> VitalSignCalculation:
		bpm, confidence, clamped = self.calculate(context.rr_intervals)
		intervals = context.rr_intervals
		return VitalSignCalculation(
			channel=self.channel,
			value=bpm,
			confidence=confidence,
			timestamp=context.timestamp,
			metadata={
				"interval_count": len(intervals),
				"mean_interval_ms": round(float(np.mean(intervals)), 1),
			},
			issue=QualityIssue.OUT_OF_RANGE if clamped else None,
		)

	def _reset_state(self) -> None:
		self._previous_bpm = None
