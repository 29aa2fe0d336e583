"""Value objects passed between pipeline stages.

Stages exchange copies of these immutable records rather than shared
mutable state, so each channel's state stays owned by exactly one
optimizer/calculator instance.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from ppgvitals.errors import QualityIssue


class Channel(str, Enum):
	"""Physiological channels estimated from the PPG stream."""
	HEART_RATE = "heart_rate"
	SPO2 = "spo2"
	BLOOD_PRESSURE = "blood_pressure"
	GLUCOSE = "glucose"
	LIPIDS = "lipids"
	ARRHYTHMIA = "arrhythmia"


# Channels with their own ChannelOptimizer (arrhythmia reuses heart-rate peaks)
OPTIMIZED_CHANNELS: tuple[Channel, ...] = (
	Channel.HEART_RATE,
	Channel.SPO2,
	Channel.BLOOD_PRESSURE,
	Channel.GLUCOSE,
	Channel.LIPIDS,
)

# Channels whose optimized waveform feeds the peak detector
PULSATILE_CHANNELS: tuple[Channel, ...] = (Channel.HEART_RATE,)


@dataclass(frozen=True)
class RawSample:
	"""One optical amplitude sample from the acquisition collaborator."""
	timestamp: int  # ms
	channel: Channel
	value: float
	finger_present: bool = True


@dataclass(frozen=True)
class OptimizedSignal:
	"""Conditioned sample produced by a ChannelOptimizer."""
	channel: Channel
	timestamp: int
	raw_value: float
	filtered_value: float
	optimized_value: float
	confidence: float
	metadata: dict[str, Any] = field(default_factory=dict)

	@property
	def is_peak(self) -> bool:
		return bool(self.metadata.get("is_peak", False))


class Adjustment(str, Enum):
	INCREASE = "increase"
	DECREASE = "decrease"
	FINE_TUNE = "fine-tune"
	RESET = "reset"


class Parameter(str, Enum):
	GAIN = "gain"
	FILTER_STRENGTH = "filterStrength"
	SENSITIVITY = "sensitivity"


@dataclass(frozen=True)
class FeedbackMessage:
	"""Request from the calculator side to retune a channel's optimizer.

	With ``manual_override`` set, ``manual_params`` are written to the
	optimizer as-is (operator authority, no bounds checks).
	"""
	channel: Channel
	adjustment: Adjustment
	parameter: Parameter
	magnitude: float = 1.0
	confidence: float = 0.0
	timestamp: int = 0
	manual_override: bool = False
	manual_params: dict[str, Any] = field(default_factory=dict)

	def to_dict(self) -> dict[str, Any]:
		return {
			"channel": self.channel.value,
			"adjustment": self.adjustment.value,
			"parameter": self.parameter.value,
			"magnitude": self.magnitude,
			"confidence": self.confidence,
			"timestamp": self.timestamp,
			"manual_override": self.manual_override,
		}


def clamp_confidence(value: float) -> float:
	if value is None or math.isnan(value):
		return 0.0
	return max(0.0, min(1.0, float(value)))


@dataclass(frozen=True)
class VitalSignCalculation:
	"""One channel's estimate for one evaluation cycle.

	Superseded by the next cycle's result, never mutated; use
	``with_confidence`` to derive a penalized copy.
	"""
	channel: Channel
	value: float | str
	confidence: float
	timestamp: int
	metadata: dict[str, Any] = field(default_factory=dict)
	issue: QualityIssue | None = None

	def __post_init__(self) -> None:
		object.__setattr__(self, "confidence", clamp_confidence(self.confidence))

	@property
	def is_valid(self) -> bool:
		return self.confidence > 0.0 and self.issue not in (
			QualityIssue.INSUFFICIENT_DATA,
			QualityIssue.CALCULATION_FAULT,
		)

	def with_confidence(self, confidence: float, **metadata: Any) -> VitalSignCalculation:
		return replace(self, confidence=confidence, metadata={**self.metadata, **metadata})

	def with_value(self, value: float | str, **metadata: Any) -> VitalSignCalculation:
		return replace(self, value=value, metadata={**self.metadata, **metadata})

	def to_dict(self) -> dict[str, Any]:
		return {
			"channel": self.channel.value,
			"value": self.value,
			"confidence": round(self.confidence, 3),
			"timestamp": self.timestamp,
			"issue": self.issue.value if self.issue else None,
			"metadata": {k: v for k, v in self.metadata.items() if _is_plain(v)},
		}


def _is_plain(value: Any) -> bool:
	return isinstance(value, (int, float, str, bool, type(None), list, tuple, dict))
