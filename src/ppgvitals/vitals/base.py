"""Common calculator interface, channel registry and degradation policy."""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, ClassVar, TypeVar

import numpy as np
import structlog

from ppgvitals.errors import (
	CalculationFaultError,
	ConfigurationError,
	InsufficientDataError,
	QualityIssue,
	SignalTooWeakError,
)
from ppgvitals.models import Channel, OptimizedSignal, VitalSignCalculation

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class EvaluationContext:
	"""Inputs shared by every calculator for one evaluation cycle."""
	timestamp: int
	rr_intervals: tuple[int, ...] = ()
	beat_count: int = 0          # cumulative accepted intervals, 0 if unknown
	finger_present: bool = True


@dataclass
class CalculatorConfig:
	"""Settings common to every calculator."""
	buffer_size: int = 90
	min_samples: int = 30
	min_signal_quality: float = 0.2
	weak_signal_decay: float = 0.8    # confidence factor per weak cycle
	calibration_blend: float = 0.7    # share of (reference - estimate) kept as offset
	sample_rate_hz: float = 30.0

	def validate(self) -> list[str]:
		errors = []
		if self.buffer_size < 1:
			errors.append(f"buffer_size ({self.buffer_size}) must be >= 1")
		if not 0 <= self.min_samples <= self.buffer_size:
			errors.append(f"min_samples ({self.min_samples}) must be in [0, buffer_size]")
		if not 0 < self.weak_signal_decay <= 1:
			errors.append(f"weak_signal_decay ({self.weak_signal_decay}) must be in (0, 1]")
		if not 0 <= self.calibration_blend <= 1:
			errors.append(f"calibration_blend ({self.calibration_blend}) must be in [0, 1]")
		return errors


CalculatorT = TypeVar("CalculatorT", bound="type[VitalSignCalculator]")

_REGISTRY: dict[Channel, type[VitalSignCalculator]] = {}


def register_calculator(channel: Channel) -> Callable[[CalculatorT], CalculatorT]:
	"""Class decorator binding a calculator implementation to a channel."""
	def decorator(cls: CalculatorT) -> CalculatorT:
		if channel in _REGISTRY and _REGISTRY[channel] is not cls:
			raise ConfigurationError(f"Calculator already registered for {channel.value}")
		cls.channel = channel
		_REGISTRY[channel] = cls
		return cls
	return decorator


def create_calculator(channel: Channel | str, config: CalculatorConfig | None = None) -> VitalSignCalculator:
	channel = Channel(channel)
	try:
		cls = _REGISTRY[channel]
	except KeyError:
		raise ConfigurationError(f"No calculator registered for {channel.value}") from None
	return cls(config)


def available_channels() -> list[Channel]:
	return list(_REGISTRY)


def calculator_class(channel: Channel | str) -> type[VitalSignCalculator]:
	return _REGISTRY[Channel(channel)]


class VitalSignCalculator(ABC):
	"""Stateful per-channel estimator.

	Subclasses implement ``_calculate`` and may raise
	``InsufficientDataError`` or ``SignalTooWeakError``. ``evaluate`` is
	the calculator boundary: it never raises, and maps every failure to a
	degraded result.

	- insufficient data: channel baseline at low confidence
	- weak signal: last valid value with confidence decaying each cycle
	- any other exception: logged fault, last valid value (or baseline)
	"""

	channel: ClassVar[Channel]
	config_class: ClassVar[type[CalculatorConfig]] = CalculatorConfig

	def __init__(self, config: CalculatorConfig | None = None) -> None:
		self.config = config or self.config_class()
		self._buffer: deque[OptimizedSignal] = deque(maxlen=self.config.buffer_size)
		self._last_valid: VitalSignCalculation | None = None
		self._weak_cycles = 0
		self.fault_count = 0
		self.evaluations = 0

	# -- input ------------------------------------------------------------

	def push(self, signal: OptimizedSignal) -> None:
		self._buffer.append(signal)

	def extend(self, signals: list[OptimizedSignal]) -> None:
		self._buffer.extend(signals)

	@property
	def sample_count(self) -> int:
		return len(self._buffer)

	@property
	def fill_ratio(self) -> float:
		return min(1.0, len(self._buffer) / max(1, self.config.min_samples))

	@property
	def adequacy(self) -> float:
		return min(1.0, len(self._buffer) / max(1, self.config.buffer_size))

	@property
	def signal_quality(self) -> float:
		"""Mean per-sample confidence attached by the optimizer."""
		if not self._buffer:
			return 0.0
		return float(np.mean([s.confidence for s in self._buffer]))

	def _series(self, attr: str = "optimized_value") -> np.ndarray:
		return np.fromiter((getattr(s, attr) for s in self._buffer), dtype=np.float64, count=len(self._buffer))

	def _require_samples(self) -> None:
		if len(self._buffer) < self.config.min_samples:
			raise InsufficientDataError(
				f"{len(self._buffer)} of {self.config.min_samples} samples buffered",
				channel=self.channel.value,
			)

	def _require_quality(self) -> float:
		quality = self.signal_quality
		if quality < self.config.min_signal_quality:
			raise SignalTooWeakError(
				f"signal quality {quality:.2f} below {self.config.min_signal_quality}",
				channel=self.channel.value,
			)
		return quality

	# -- evaluation boundary ----------------------------------------------

	def evaluate(self, context: EvaluationContext) -> VitalSignCalculation:
		self.evaluations += 1
		try:
			if not context.finger_present:
				raise SignalTooWeakError("no finger on sensor", channel=self.channel.value)
			result = self._calculate(context)
			if isinstance(result.value, float) and not math.isfinite(result.value):
				raise CalculationFaultError(f"non-finite estimate {result.value}", channel=self.channel.value)
		except InsufficientDataError as e:
			logger.debug("calculation_insufficient_data", channel=self.channel.value, reason=e.message)
			return self._baseline_result(context, self._insufficient_confidence(), QualityIssue.INSUFFICIENT_DATA)
		except SignalTooWeakError as e:
			logger.debug("calculation_signal_weak", channel=self.channel.value, reason=e.message)
			return self._weak_result(context)
		except Exception as e:
			fault = e if isinstance(e, CalculationFaultError) else CalculationFaultError(
				str(e) or type(e).__name__,
				channel=self.channel.value,
				details={"exception": type(e).__name__},
			)
			self.fault_count += 1
			logger.exception(
				"calculation_fault",
				channel=self.channel.value,
				reason=fault.message,
				faults=self.fault_count,
				**fault.details,
			)
			return self._fault_result(context)

		self._weak_cycles = 0
		if result.confidence > 0:
			self._last_valid = result
		return result

	@abstractmethod
	def _calculate(self, context: EvaluationContext) -> VitalSignCalculation:
		pass

	@abstractmethod
	def baseline_value(self) -> float | str:
		pass

	def _baseline_metadata(self) -> dict[str, Any]:
		return {}

	def _insufficient_confidence(self) -> float:
		return 0.0

	def _baseline_result(
		self,
		context: EvaluationContext,
		confidence: float,
		issue: QualityIssue,
	) -> VitalSignCalculation:
		return VitalSignCalculation(
			channel=self.channel,
			value=self.baseline_value(),
			confidence=min(confidence, 0.3),
			timestamp=context.timestamp,
			metadata={"baseline": True, **self._baseline_metadata()},
			issue=issue,
		)

	def _weak_result(self, context: EvaluationContext) -> VitalSignCalculation:
		self._weak_cycles += 1
		if self._last_valid is None:
			return self._baseline_result(context, 0.0, QualityIssue.SIGNAL_TOO_WEAK)
		decay = self.config.weak_signal_decay ** self._weak_cycles
		last = self._last_valid
		return VitalSignCalculation(
			channel=self.channel,
			value=last.value,
			confidence=last.confidence * decay,
			timestamp=context.timestamp,
			metadata={**last.metadata, "retained": True, "weak_cycles": self._weak_cycles},
			issue=QualityIssue.SIGNAL_TOO_WEAK,
		)

	def _fault_result(self, context: EvaluationContext) -> VitalSignCalculation:
		if self._last_valid is None:
			return self._baseline_result(context, 0.0, QualityIssue.CALCULATION_FAULT)
		last = self._last_valid
		return VitalSignCalculation(
			channel=self.channel,
			value=last.value,
			confidence=last.confidence * self.config.weak_signal_decay,
			timestamp=context.timestamp,
			metadata={**last.metadata, "retained": True},
			issue=QualityIssue.CALCULATION_FAULT,
		)

	# -- lifecycle ----------------------------------------------------------

	def calibrate(self, reference: Mapping[str, float]) -> bool:
		"""Apply user-supplied reference values. Returns True if any were used."""
		return False

	@property
	def last_valid(self) -> VitalSignCalculation | None:
		return self._last_valid

	def _reset_state(self) -> None:
		pass

	def reset(self) -> None:
		"""Clear rolling state; the last valid result survives."""
		self._buffer.clear()
		self._weak_cycles = 0
		self._reset_state()

	def clear_last_valid(self) -> None:
		self._last_valid = None
		self.fault_count = 0
		self.evaluations = 0

	def __repr__(self) -> str:
		return f"{type(self).__name__}(samples={len(self._buffer)}, faults={self.fault_count})"


def blend_offset(blend: float, reference: float, estimate: float) -> float:
	return blend * (reference - estimate)


def clamp_value(value: float, low: float, high: float) -> tuple[float, bool]:
	"""Clamp to [low, high]; the flag is True when clamping occurred."""
	if value < low:
		return low, True
	if value > high:
		return high, True
	return value, False

