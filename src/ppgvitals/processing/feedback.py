"""Confidence-driven feedback from calculators back to channel optimizers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog

from ppgvitals.errors import QualityIssue
from ppgvitals.models import (
	OPTIMIZED_CHANNELS,
	Adjustment,
	Channel,
	FeedbackMessage,
	Parameter,
	VitalSignCalculation,
)

logger = structlog.get_logger(__name__)


@dataclass
class FeedbackConfig:
	throttle_ms: int = 1000
	high_confidence: float = 0.8
	# Per-channel confidence below which stronger conditioning is requested
	low_confidence: dict[str, float] = field(default_factory=lambda: {
		Channel.HEART_RATE.value: 0.5,
		Channel.SPO2.value: 0.4,
		Channel.BLOOD_PRESSURE.value: 0.4,
		Channel.GLUCOSE.value: 0.3,
		Channel.LIPIDS.value: 0.3,
	})
	# Parameter adjusted when a channel's confidence is low
	preferred_parameter: dict[str, str] = field(default_factory=lambda: {
		Channel.HEART_RATE.value: Parameter.GAIN.value,
		Channel.SPO2.value: Parameter.GAIN.value,
		Channel.BLOOD_PRESSURE.value: Parameter.FILTER_STRENGTH.value,
		Channel.GLUCOSE.value: Parameter.FILTER_STRENGTH.value,
		Channel.LIPIDS.value: Parameter.FILTER_STRENGTH.value,
	})
	# Buffer fill shortfalls are not fixable upstream
	ignore_insufficient_data: bool = True
	fine_tune_enabled: bool = True

	def threshold(self, channel: Channel) -> float:
		return self.low_confidence.get(channel.value, 0.3)

	def validate(self) -> list[str]:
		errors = []
		if self.throttle_ms < 0:
			errors.append(f"throttle_ms ({self.throttle_ms}) must be >= 0")
		for name, value in self.low_confidence.items():
			if not 0 <= value <= self.high_confidence:
				errors.append(f"low_confidence[{name}] ({value}) must be in [0, high_confidence]")
		for name, value in self.preferred_parameter.items():
			try:
				Parameter(value)
			except ValueError:
				errors.append(f"preferred_parameter[{name}] ({value}) is not a known parameter")
		return errors


class FeedbackManager:
	"""Turn the latest per-channel confidences into throttled retuning requests.

	``register`` records a channel's newest calculation; ``generate``
	emits at most one message per channel per throttle window. Messages
	are applied by the caller on its next cycle, never synchronously.
	"""

	def __init__(self, config: FeedbackConfig | None = None) -> None:
		self.config = config or FeedbackConfig()
		self._latest: dict[Channel, VitalSignCalculation] = {}
		self._last_emitted: dict[Channel, int] = {}
		self.emitted = 0
		self.throttled = 0

	def register(self, calculation: VitalSignCalculation) -> None:
		if calculation.channel in OPTIMIZED_CHANNELS:
			self._latest[calculation.channel] = calculation

	def latest(self, channel: Channel) -> VitalSignCalculation | None:
		return self._latest.get(channel)

	def _message_for(self, calculation: VitalSignCalculation, now: int) -> FeedbackMessage | None:
		cfg = self.config
		channel = calculation.channel
		if cfg.ignore_insufficient_data and calculation.issue == QualityIssue.INSUFFICIENT_DATA:
			return None

		threshold = cfg.threshold(channel)
		confidence = calculation.confidence
		if confidence < threshold:
			parameter = Parameter(cfg.preferred_parameter.get(channel.value, Parameter.GAIN.value))
			magnitude = (threshold - confidence) / threshold if threshold > 0 else 1.0
			return FeedbackMessage(
				channel=channel,
				adjustment=Adjustment.INCREASE,
				parameter=parameter,
				magnitude=round(magnitude, 3),
				confidence=confidence,
				timestamp=now,
			)
		if cfg.fine_tune_enabled and confidence >= cfg.high_confidence:
			return FeedbackMessage(
				channel=channel,
				adjustment=Adjustment.FINE_TUNE,
				parameter=Parameter.FILTER_STRENGTH,
				magnitude=round(confidence - cfg.high_confidence, 3),
				confidence=confidence,
				timestamp=now,
			)
		return None

	def generate(self, now: int) -> list[FeedbackMessage]:
		messages = []
		for channel, calculation in self._latest.items():
			message = self._message_for(calculation, now)
			if message is None:
				continue
			last = self._last_emitted.get(channel)
			if last is not None and now - last <= self.config.throttle_ms:
				self.throttled += 1
				continue
			self._last_emitted[channel] = now
			self.emitted += 1
			messages.append(message)
			log = logger.info if message.adjustment == Adjustment.INCREASE else logger.debug
			log(
				"feedback_emitted",
				channel=channel.value,
				adjustment=message.adjustment.value,
				parameter=message.parameter.value,
				confidence=round(message.confidence, 3),
			)
		return messages

	def manual(self, channel: Channel, params: dict[str, Any], now: int) -> FeedbackMessage:
		"""Operator override; not throttled, applied without bounds checks."""
		logger.info("feedback_manual_override", channel=channel.value, **params)
		return FeedbackMessage(
			channel=channel,
			adjustment=Adjustment.FINE_TUNE,
			parameter=Parameter.GAIN,
			timestamp=now,
			manual_override=True,
			manual_params=dict(params),
		)

	def reset(self) -> None:
		self._latest.clear()
		self._last_emitted.clear()
		self.emitted = 0
		self.throttled = 0
