"""Session pipeline: sample fan-out, scheduled evaluation and feedback loop."""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

import structlog

from ppgvitals.config import AppConfig
from ppgvitals.models import (
	OPTIMIZED_CHANNELS,
	PULSATILE_CHANNELS,
	Channel,
	FeedbackMessage,
	OptimizedSignal,
	RawSample,
	VitalSignCalculation,
)
from ppgvitals.processing.feedback import FeedbackManager
from ppgvitals.processing.smoothing import TrendSmoother
from ppgvitals.processing.validation import CrossChannelValidator, Inconsistency
from ppgvitals.signal.optimizer import ChannelOptimizer
from ppgvitals.signal.peaks import AdaptivePeakDetector
from ppgvitals.signal.rr import RRIntervalTracker
from ppgvitals.vitals.base import EvaluationContext, VitalSignCalculator, create_calculator

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class VitalSignsResult:
	"""Aggregated output of one evaluation cycle."""
	timestamp: int
	heart_rate: float
	spo2: float
	blood_pressure: str
	systolic: int
	diastolic: int
	glucose: float
	cholesterol: float
	triglycerides: float
	arrhythmia_status: str
	arrhythmia_count: int
	arrhythmia_windows: tuple[dict, ...] = ()
	calculations: dict[Channel, VitalSignCalculation] = field(default_factory=dict)
	inconsistencies: tuple[Inconsistency, ...] = ()
	feedback_pending: int = 0

	@classmethod
	def from_calculations(
		cls,
		timestamp: int,
		calculations: dict[Channel, VitalSignCalculation],
		inconsistencies: Iterable[Inconsistency] = (),
		feedback_pending: int = 0,
	) -> VitalSignsResult:
		def value(channel: Channel, default: Any) -> Any:
			calc = calculations.get(channel)
			return calc.value if calc is not None else default

		bp = calculations.get(Channel.BLOOD_PRESSURE)
		lipids = calculations.get(Channel.LIPIDS)
		arrhythmia = calculations.get(Channel.ARRHYTHMIA)
		return cls(
			timestamp=timestamp,
			heart_rate=value(Channel.HEART_RATE, 0),
			spo2=value(Channel.SPO2, 0),
			blood_pressure=value(Channel.BLOOD_PRESSURE, "--/--"),
			systolic=bp.metadata.get("systolic", 0) if bp else 0,
			diastolic=bp.metadata.get("diastolic", 0) if bp else 0,
			glucose=value(Channel.GLUCOSE, 0),
			cholesterol=value(Channel.LIPIDS, 0),
			triglycerides=lipids.metadata.get("triglycerides", 0) if lipids else 0,
			arrhythmia_status=value(Channel.ARRHYTHMIA, "--"),
			arrhythmia_count=arrhythmia.metadata.get("count", 0) if arrhythmia else 0,
			arrhythmia_windows=tuple(arrhythmia.metadata.get("windows", ())) if arrhythmia else (),
			calculations=dict(calculations),
			inconsistencies=tuple(inconsistencies),
			feedback_pending=feedback_pending,
		)

	def confidence(self, channel: Channel) -> float:
		calc = self.calculations.get(channel)
		return calc.confidence if calc else 0.0

	def to_dict(self) -> dict[str, Any]:
		return {
			"timestamp": self.timestamp,
			"heart_rate": self.heart_rate,
			"spo2": self.spo2,
			"blood_pressure": self.blood_pressure,
			"systolic": self.systolic,
			"diastolic": self.diastolic,
			"glucose": self.glucose,
			"cholesterol": self.cholesterol,
			"triglycerides": self.triglycerides,
			"arrhythmia_status": self.arrhythmia_status,
			"arrhythmia_count": self.arrhythmia_count,
			"arrhythmia_windows": list(self.arrhythmia_windows),
			"confidence": {c.value: round(calc.confidence, 3) for c, calc in self.calculations.items()},
			"inconsistencies": [i.to_dict() for i in self.inconsistencies],
			"feedback_pending": self.feedback_pending,
		}


class Subscription:
	"""Registration handle; ``cancel()`` stops further deliveries."""

	def __init__(self, registry: list, callback: Callable) -> None:
		self._registry = registry
		self.callback = callback
		registry.append(callback)

	@property
	def active(self) -> bool:
		return self.callback in self._registry

	def cancel(self) -> None:
		if self.callback in self._registry:
			self._registry.remove(self.callback)


def _notify(subscribers: list[Callable], payload: Any, kind: str) -> None:
	for callback in list(subscribers):
		try:
			callback(payload)
		except Exception:
			logger.exception("subscriber_error", kind=kind, callback=getattr(callback, "__name__", repr(callback)))


class VitalSignsPipeline:
	"""Owns every per-channel component of one monitoring session.

	Samples are queued per channel on arrival (bounded, drop-oldest) and
	processed on ``tick``. Evaluation runs every
	``session.evaluation_interval_ms``; feedback generated in one cycle is
	applied to the optimizers at the start of the next tick.

	Usage:
		pipeline = VitalSignsPipeline(AppConfig())
		pipeline.start()
		for sample in samples:
			pipeline.ingest(sample)
			result = pipeline.tick(sample.timestamp)
	"""

	def __init__(self, config: AppConfig | None = None) -> None:
		self.config = config or AppConfig()
		cfg = self.config

		self.optimizers: dict[Channel, ChannelOptimizer] = {
			channel: ChannelOptimizer(channel, replace(cfg.optimizer, params=replace(cfg.optimizer.params)))
			for channel in OPTIMIZED_CHANNELS
		}
		self.detector = AdaptivePeakDetector(cfg.detector)
		self.rr_tracker = RRIntervalTracker(cfg.rr)
		self.calculators: dict[Channel, VitalSignCalculator] = {
			channel: create_calculator(channel, replace(cfg.calculators.for_channel(channel)))
			for channel in Channel
		}
		self.feedback = FeedbackManager(cfg.feedback)
		self.validator = CrossChannelValidator(cfg.validation)
		self.smoother = TrendSmoother(cfg.smoothing)

		self._inboxes: dict[Channel, deque[RawSample]] = {
			channel: deque(maxlen=cfg.session.inbox_capacity) for channel in OPTIMIZED_CHANNELS
		}
		self._pending_feedback: deque[FeedbackMessage] = deque()
		self._subscribers: list[Callable[[VitalSignsResult], None]] = []
		self._feedback_subscribers: list[Callable[[FeedbackMessage], None]] = []

		self.running = False
		self.finger_present = False
		self.dropped_samples = 0
		self.cycles = 0
		self._last_evaluation: int | None = None
		self.last_result: VitalSignsResult | None = None

		logger.info("pipeline_init", channels=len(self.calculators), sample_rate_hz=cfg.session.sample_rate_hz)

	# -- control surface ----------------------------------------------------

	def start(self) -> None:
		if self.running:
			logger.warning("pipeline_already_running")
			return
		self.running = True
		self._last_evaluation = None
		logger.info("pipeline_started", interval_ms=self.config.session.evaluation_interval_ms)

	def stop(self) -> None:
		if not self.running:
			return
		self.running = False
		logger.info("pipeline_stopped", cycles=self.cycles, dropped=self.dropped_samples)
		# only last valid results outlive the session
		self.reset()

	def reset(self) -> None:
		"""Clear rolling state; last valid results and tuned parameters survive."""
		self._clear_queues()
		for optimizer in self.optimizers.values():
			optimizer.reset()
		self.detector.reset()
		self.rr_tracker.reset()
		for calculator in self.calculators.values():
			calculator.reset()
		self.feedback.reset()
		self.smoother.reset()
		self._last_evaluation = None
		logger.info("pipeline_reset")

	def full_reset(self) -> None:
		"""Reset, then also drop last valid results, counters and calibration."""
		self.reset()
		for optimizer in self.optimizers.values():
			optimizer.reset(restore_params=True)
		for calculator in self.calculators.values():
			calculator.clear_last_valid()
		self.last_result = None
		self.cycles = 0
		self.dropped_samples = 0
		logger.info("pipeline_full_reset")

	def calibrate(self, reference: Mapping[str, float]) -> list[Channel]:
		"""Forward reference values to every calculator that accepts them."""
		used = [channel for channel, calc in self.calculators.items() if calc.calibrate(reference)]
		logger.info("pipeline_calibrated", channels=[c.value for c in used], keys=sorted(reference))
		return used

	def override(self, channel: Channel, now: int, **params: Any) -> FeedbackMessage:
		"""Queue a manual optimizer override for the next tick."""
		message = self.feedback.manual(channel, params, now)
		self._pending_feedback.append(message)
		return message

	def _clear_queues(self) -> None:
		for inbox in self._inboxes.values():
			inbox.clear()
		self._pending_feedback.clear()

	# -- subscriptions --------------------------------------------------------

	def subscribe(self, callback: Callable[[VitalSignsResult], None]) -> Subscription:
		return Subscription(self._subscribers, callback)

	def subscribe_feedback(self, callback: Callable[[FeedbackMessage], None]) -> Subscription:
		return Subscription(self._feedback_subscribers, callback)

	# -- input ----------------------------------------------------------------

	def ingest(self, sample: RawSample) -> bool:
		"""Queue one raw sample. Returns False if the session is not running."""
		if not self.running:
			return False
		inbox = self._inboxes.get(sample.channel)
		if inbox is None:
			logger.warning("ingest_unknown_channel", channel=sample.channel.value)
			return False
		if len(inbox) == inbox.maxlen:
			self.dropped_samples += 1
		inbox.append(sample)
		self.finger_present = sample.finger_present
		return True

	def ingest_value(self, timestamp: int, value: float, finger_present: bool = True) -> bool:
		"""Fan a single PPG amplitude out to every optimized channel."""
		accepted = True
		for channel in OPTIMIZED_CHANNELS:
			accepted = self.ingest(RawSample(timestamp, channel, value, finger_present)) and accepted
		return accepted

	# -- scheduler --------------------------------------------------------------

	def _apply_feedback(self) -> None:
		while self._pending_feedback:
			message = self._pending_feedback.popleft()
			optimizer = self.optimizers.get(message.channel)
			if optimizer is not None:
				optimizer.apply_feedback(message)

	def _condition(self, sample: RawSample) -> OptimizedSignal:
		signal = self.optimizers[sample.channel].optimize(sample)
		if sample.channel in PULSATILE_CHANNELS and sample.finger_present:
			event = self.detector.update(signal.metadata["ac_value"], sample.timestamp)
			interval = self.rr_tracker.add_peak(event.timestamp) if event.is_peak else None
			signal = replace(signal, metadata={
				**signal.metadata,
				"is_peak": event.is_peak,
				"snr": event.snr,
				"interval": interval,
			})
		return signal

	def _drain(self) -> int:
		processed = 0
		for channel, inbox in self._inboxes.items():
			calculator = self.calculators[channel]
			while inbox:
				calculator.push(self._condition(inbox.popleft()))
				processed += 1
		return processed

	def evaluate(self, now: int) -> VitalSignsResult:
		"""Run one evaluation cycle over everything buffered so far."""
		context = EvaluationContext(
			timestamp=now,
			rr_intervals=self.rr_tracker.intervals,
			beat_count=self.rr_tracker.accepted,
			finger_present=self.finger_present,
		)
		raw = {channel: calc.evaluate(context) for channel, calc in self.calculators.items()}
		report = self.validator.validate(raw)

		for calculation in report.calculations.values():
			self.feedback.register(calculation)
		messages = self.feedback.generate(now)
		self._pending_feedback.extend(messages)

		smoothed = {channel: self.smoother.smooth(calc) for channel, calc in report.calculations.items()}
		result = VitalSignsResult.from_calculations(
			now,
			smoothed,
			inconsistencies=report.inconsistencies,
			feedback_pending=len(self._pending_feedback),
		)

		self.cycles += 1
		self._last_evaluation = now
		self.last_result = result

		for message in messages:
			_notify(self._feedback_subscribers, message, "feedback")
		_notify(self._subscribers, result, "result")

		logger.debug(
			"evaluation_cycle",
			cycle=self.cycles,
			heart_rate=result.heart_rate,
			spo2=result.spo2,
			blood_pressure=result.blood_pressure,
			feedback=len(messages),
		)
		return result

	def tick(self, now: int) -> VitalSignsResult | None:
		"""Advance the session clock; returns a result when a cycle ran."""
		if not self.running:
			return None
		self._apply_feedback()
		self._drain()
		interval = self.config.session.evaluation_interval_ms
		if self._last_evaluation is not None and now - self._last_evaluation < interval:
			return None
		return self.evaluate(now)

	def run(self, samples: Iterable[RawSample | tuple[int, float, bool]]) -> Iterator[VitalSignsResult]:
		"""Feed a sample stream through the session, yielding each published result.

		Tuples are ``(timestamp_ms, value, finger_present)`` fanned out to
		all channels.
		"""
		if not self.running:
			self.start()
		for item in samples:
			if isinstance(item, RawSample):
				self.ingest(item)
				timestamp = item.timestamp
			else:
				timestamp, value, finger = item
				self.ingest_value(timestamp, value, finger)
			result = self.tick(timestamp)
			if result is not None:
				yield result
