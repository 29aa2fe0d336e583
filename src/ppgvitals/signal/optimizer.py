"""Per-channel signal conditioning with feedback-driven retuning."""

from __future__ import annotations

from collections import deque
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any

import numpy as np
import structlog

from ppgvitals.errors import ConfigurationError
from ppgvitals.models import (
	Adjustment,
	Channel,
	FeedbackMessage,
	OptimizedSignal,
	Parameter,
	RawSample,
)
from ppgvitals.signal.filters import (
	BandpassFilter,
	ExponentialSmoother,
	KalmanFilter,
	MovingAverageFilter,
	PassthroughFilter,
	StreamFilter,
)

logger = structlog.get_logger(__name__)


class FilterType(str, Enum):
	NONE = "none"
	SMA = "sma"
	EMA = "ema"
	KALMAN = "kalman"
	BANDPASS = "bandpass"


# Bounds applied by set_params(); manual overrides skip them
PARAM_LIMITS: dict[str, tuple[float, float]] = {
	"filter_window": (1, 50),
	"ema_alpha": (0.01, 0.99),
	"kalman_q": (0.0001, 10.0),
	"kalman_r": (0.0001, 10.0),
	"bandpass_low_hz": (0.1, 2.0),
	"bandpass_high_hz": (2.0, 10.0),
}


@dataclass
class OptimizerParams:
	"""Tunable filter and gain parameters of one channel."""
	gain: float = 1.8
	filter_type: FilterType = FilterType.SMA
	filter_window: int = 3
	ema_alpha: float = 0.7
	kalman_q: float = 0.3
	kalman_r: float = 0.05
	bandpass_low_hz: float = 0.5
	bandpass_high_hz: float = 4.0

	def to_dict(self) -> dict[str, Any]:
		data = asdict(self)
		data["filter_type"] = FilterType(self.filter_type).value
		return data


@dataclass
class OptimizerConfig:
	params: OptimizerParams = field(default_factory=OptimizerParams)
	sample_rate_hz: float = 30.0
	bandpass_order: int = 2
	gain_min: float = 1.0
	gain_max: float = 4.0
	# Feedback step sizes (heuristic, tunable)
	gain_step_up: float = 0.1
	gain_step_down: float = 0.05
	sensitivity_step: float = 0.05
	fine_tune_step: float = 0.02
	window_step: int = 1
	alpha_step: float = 0.05
	kalman_r_factor: float = 1.25
	baseline_window: int = 60   # samples averaged for the gain pivot
	warmup_samples: int = 3     # passthrough until filter state is primed
	quality_window: int = 30
	adaptive_mode: bool = True

	def validate(self) -> list[str]:
		errors = []
		if self.sample_rate_hz <= 0:
			errors.append(f"sample_rate_hz ({self.sample_rate_hz}) must be positive")
		if not 0 < self.gain_min <= self.gain_max:
			errors.append(f"gain bounds ({self.gain_min}, {self.gain_max}) must satisfy 0 < min <= max")
		if self.baseline_window < 1:
			errors.append(f"baseline_window ({self.baseline_window}) must be >= 1")
		if self.quality_window < 10:
			errors.append(f"quality_window ({self.quality_window}) must be >= 10")
		try:
			FilterType(self.params.filter_type)
		except ValueError:
			errors.append(f"params.filter_type ({self.params.filter_type}) is not a known filter")
		return errors


@dataclass
class FilterQuality:
	quality: float
	suggested_filter: FilterType | None = None
	message: str = "filtering optimal"


def _clamp(value: float, low: float, high: float) -> float:
	return max(low, min(high, value))


class ChannelOptimizer:
	"""Filter, amplify and self-tune one channel's raw values.

	``process`` applies the configured filter and then a mean-preserving
	gain ``(filtered - mean) * gain + mean``, where ``mean`` tracks the
	recent filtered baseline. Feedback messages adjust the parameters
	between evaluation cycles.
	"""

	def __init__(self, channel: Channel, config: OptimizerConfig | None = None) -> None:
		self.channel = channel
		self.config = config or OptimizerConfig()
		self._initial_params = replace(self.config.params)
		self.params = replace(self.config.params)
		self.params.filter_type = FilterType(self.params.filter_type)

		self._filter: StreamFilter = self._build_filter()
		self._warmup_remaining = self.config.warmup_samples
		self._baseline: deque[float] = deque(maxlen=self.config.baseline_window)
		self._baseline_sum = 0.0
		self._raw_history: deque[float] = deque(maxlen=self.config.quality_window)
		self._filtered_history: deque[float] = deque(maxlen=self.config.quality_window)
		self._last_raw = 0.0
		self._last_filtered = 0.0
		self._last_optimized = 0.0
		self._feedback_applied = 0

		logger.debug("channel_optimizer_init", channel=channel.value, **self.params.to_dict())

	def _build_filter(self) -> StreamFilter:
		p = self.params
		filter_type = FilterType(p.filter_type)
		if filter_type == FilterType.SMA:
			return MovingAverageFilter(window=int(max(1, p.filter_window)))
		if filter_type == FilterType.EMA:
			return ExponentialSmoother(alpha=p.ema_alpha)
		if filter_type == FilterType.KALMAN:
			return KalmanFilter(q=p.kalman_q, r=p.kalman_r)
		if filter_type == FilterType.BANDPASS:
			return BandpassFilter(
				sample_rate_hz=self.config.sample_rate_hz,
				low_freq_hz=p.bandpass_low_hz,
				high_freq_hz=p.bandpass_high_hz,
				order=self.config.bandpass_order,
			)
		if filter_type == FilterType.NONE:
			return PassthroughFilter()
		raise ConfigurationError(f"Unknown filter type: {p.filter_type}", channel=self.channel.value)

	def _rebuild_filter(self) -> None:
		self._filter = self._build_filter()
		self._warmup_remaining = self.config.warmup_samples

	def process(self, value: float) -> float:
		"""Filter one raw value and return the gain-adjusted result."""
		self._last_raw = value
		filtered = self._filter.update(value)
		if self._warmup_remaining > 0:
			# filter state is primed above but not trusted yet
			self._warmup_remaining -= 1
			filtered = value

		if len(self._baseline) == self._baseline.maxlen:
			self._baseline_sum -= self._baseline[0]
		self._baseline.append(filtered)
		self._baseline_sum += filtered
		mean = self._baseline_sum / len(self._baseline)

		optimized = (filtered - mean) * self.params.gain + mean

		self._raw_history.append(value)
		self._filtered_history.append(filtered)
		self._last_filtered = filtered
		self._last_optimized = optimized
		return optimized

	def optimize(self, sample: RawSample) -> OptimizedSignal:
		"""Produce the OptimizedSignal for one raw sample."""
		optimized = self.process(sample.value)
		confidence = self.evaluate_filter_quality().quality if sample.finger_present else 0.0
		return OptimizedSignal(
			channel=self.channel,
			timestamp=sample.timestamp,
			raw_value=sample.value,
			filtered_value=self._last_filtered,
			optimized_value=optimized,
			confidence=confidence,
			metadata={
				"ac_value": optimized - self.baseline,
				"finger_present": sample.finger_present,
			},
		)

	@property
	def baseline(self) -> float:
		if not self._baseline:
			return 0.0
		return self._baseline_sum / len(self._baseline)

	def evaluate_filter_quality(self) -> FilterQuality:
		"""Score how well the current filter conditions the signal.

		Roughness compares second- to first-difference energy of the
		filtered history (white noise ~1.7, a clean pulse well below 1).
		Retention compares filtered to raw variance to catch over-smoothing.
		"""
		if len(self._filtered_history) < 10:
			return FilterQuality(quality=0.5, message="insufficient data for evaluation")

		filtered = np.asarray(self._filtered_history, dtype=np.float64)
		raw = np.asarray(self._raw_history, dtype=np.float64)

		d1 = np.diff(filtered)
		d2 = np.diff(d1)
		d1_energy = float(np.mean(d1 ** 2))
		if d1_energy <= 1e-12:
			return FilterQuality(quality=0.0, suggested_filter=FilterType.EMA, message="flat signal")
		roughness = float(np.mean(d2 ** 2)) / d1_energy
		noise_score = 1.0 - min(1.0, roughness / 2.0)

		raw_var = float(np.var(raw))
		retained = float(np.var(filtered)) / raw_var if raw_var > 1e-12 else 0.0
		retention_score = min(1.0, retained / 0.5)

		quality = _clamp(0.6 * noise_score + 0.4 * retention_score, 0.0, 1.0)

		suggested: FilterType | None = None
		message = "filtering optimal"
		if quality < 0.5:
			if noise_score < 0.5:
				suggested = FilterType.KALMAN
				message = "noisy signal, switching to kalman"
			elif retention_score < 0.5:
				suggested = FilterType.EMA
				message = "over-smoothed signal, switching to ema"
			else:
				suggested = FilterType.BANDPASS
				message = "frequency content issue, switching to bandpass"

		return FilterQuality(quality=quality, suggested_filter=suggested, message=message)

	def apply_feedback(self, message: FeedbackMessage) -> None:
		"""Retune parameters from a feedback message.

		Confidence-driven adjustments stay within the configured bounds;
		a manual override writes parameters directly.
		"""
		self._feedback_applied += 1

		if message.manual_override:
			rebuild = False
			for key, value in message.manual_params.items():
				if not hasattr(self.params, key):
					logger.warning("unknown_optimizer_param", channel=self.channel.value, param=key)
					continue
				if key == "filter_type":
					value = FilterType(value)
				setattr(self.params, key, value)
				rebuild = rebuild or key != "gain"
			if rebuild:
				self._rebuild_filter()
			logger.info("optimizer_manual_override", channel=self.channel.value, **message.manual_params)
			return

		if message.adjustment == Adjustment.RESET:
			self.params = replace(self._initial_params)
			self._rebuild_filter()
			logger.info("optimizer_params_reset", channel=self.channel.value)
			return

		cfg = self.config
		if message.parameter == Parameter.GAIN:
			if message.adjustment == Adjustment.INCREASE:
				self.params.gain += cfg.gain_step_up
			elif message.adjustment == Adjustment.DECREASE:
				self.params.gain -= cfg.gain_step_down
			elif message.adjustment == Adjustment.FINE_TUNE:
				self.params.gain -= cfg.fine_tune_step * message.magnitude
			self.params.gain = _clamp(self.params.gain, cfg.gain_min, cfg.gain_max)
		elif message.parameter == Parameter.SENSITIVITY:
			if message.adjustment == Adjustment.INCREASE:
				self.params.gain += cfg.sensitivity_step
			elif message.adjustment == Adjustment.DECREASE:
				self.params.gain -= cfg.sensitivity_step
			self.params.gain = _clamp(self.params.gain, cfg.gain_min, cfg.gain_max)
		elif message.parameter == Parameter.FILTER_STRENGTH:
			if message.adjustment == Adjustment.INCREASE:
				self._adjust_filter_strength(stronger=True)
			elif message.adjustment == Adjustment.DECREASE:
				self._adjust_filter_strength(stronger=False)
			elif message.adjustment == Adjustment.FINE_TUNE and cfg.adaptive_mode:
				evaluation = self.evaluate_filter_quality()
				if evaluation.suggested_filter and evaluation.suggested_filter != self.params.filter_type:
					logger.info(
						"optimizer_filter_switch",
						channel=self.channel.value,
						reason=evaluation.message,
						quality=round(evaluation.quality, 2),
					)
					self.params.filter_type = evaluation.suggested_filter
					self._rebuild_filter()

		logger.debug(
			"optimizer_feedback_applied",
			channel=self.channel.value,
			adjustment=message.adjustment.value,
			parameter=message.parameter.value,
			gain=round(self.params.gain, 3),
		)

	def _adjust_filter_strength(self, stronger: bool) -> None:
		cfg = self.config
		p = self.params
		sign = 1 if stronger else -1
		filter_type = FilterType(p.filter_type)
		if filter_type == FilterType.SMA:
			self.set_params(filter_window=p.filter_window + sign * cfg.window_step)
		elif filter_type == FilterType.EMA:
			self.set_params(ema_alpha=p.ema_alpha - sign * cfg.alpha_step)
		elif filter_type == FilterType.KALMAN:
			factor = cfg.kalman_r_factor if stronger else 1 / cfg.kalman_r_factor
			self.set_params(kalman_r=p.kalman_r * factor)
		elif filter_type == FilterType.BANDPASS:
			# narrow or widen the passband around the cardiac band
			step = 0.1 * sign
			self.set_params(
				bandpass_low_hz=p.bandpass_low_hz + step,
				bandpass_high_hz=p.bandpass_high_hz - 5 * step,
			)
		else:
			self.set_params(filter_type=FilterType.SMA)

	def set_params(self, **params: Any) -> None:
		"""Update parameters within their validated bounds."""
		rebuild = False
		for key, value in params.items():
			if not hasattr(self.params, key):
				raise ConfigurationError(f"Unknown optimizer parameter: {key}", channel=self.channel.value)
			if key == "gain":
				value = _clamp(float(value), self.config.gain_min, self.config.gain_max)
			elif key == "filter_type":
				value = FilterType(value)
			elif key in PARAM_LIMITS:
				low, high = PARAM_LIMITS[key]
				value = _clamp(value, low, high)
				if key == "filter_window":
					value = int(round(value))
			if getattr(self.params, key) != value:
				setattr(self.params, key, value)
				rebuild = rebuild or key != "gain"
		if rebuild:
			self._rebuild_filter()

	def get_params(self) -> OptimizerParams:
		return replace(self.params)

	@property
	def last_filtered(self) -> float:
		return self._last_filtered

	@property
	def last_raw(self) -> float:
		return self._last_raw

	@property
	def feedback_applied(self) -> int:
		return self._feedback_applied

	def reset(self, restore_params: bool = False) -> None:
		"""Clear buffers and filter state (Kalman back to P=1, X=0)."""
		if restore_params:
			self.params = replace(self._initial_params)
			self._feedback_applied = 0
		self._filter = self._build_filter()
		self._filter.reset()
		self._warmup_remaining = self.config.warmup_samples
		self._baseline.clear()
		self._baseline_sum = 0.0
		self._raw_history.clear()
		self._filtered_history.clear()
		self._last_raw = 0.0
		self._last_filtered = 0.0
		self._last_optimized = 0.0
		logger.debug("channel_optimizer_reset", channel=self.channel.value)
