"""Adaptive-threshold peak detection on a conditioned pulse waveform."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass

import numpy as np
import structlog

logger = structlog.get_logger(__name__)


@dataclass
class DetectorConfig:
	"""Configuration for the adaptive peak detector."""
	signal_alpha: float = 0.1            # EMA weight for peak amplitudes
	noise_alpha: float = 0.05            # EMA weight for the noise floor
	threshold_factor: float = 0.35       # fraction of signal-noise span above noise
	min_absolute_threshold: float = 0.05
	refractory_ms: int = 250
	search_back_ms: int = 120
	history_ms: int = 300                # ring buffer span
	initial_signal_level: float = 0.5
	initial_noise_level: float = 0.1
	snr_window: int = 5

	def validate(self) -> list[str]:
		errors = []
		for name in ("signal_alpha", "noise_alpha"):
			value = getattr(self, name)
			if not 0 < value <= 1:
				errors.append(f"{name} ({value}) must be in (0, 1]")
		if not 0 < self.threshold_factor < 1:
			errors.append(f"threshold_factor ({self.threshold_factor}) must be in (0, 1)")
		if self.search_back_ms > self.history_ms:
			errors.append(
				f"search_back_ms ({self.search_back_ms}) exceeds history_ms ({self.history_ms})"
			)
		if self.refractory_ms <= 0:
			errors.append(f"refractory_ms ({self.refractory_ms}) must be positive")
		return errors


@dataclass(frozen=True)
class PeakEvent:
	"""Per-sample detector output."""
	is_peak: bool
	timestamp: int      # peak timestamp when is_peak, else the sample's
	snr: float
	threshold: float
	value: float = 0.0


class AdaptivePeakDetector:
	"""Detect pulse peaks without a fixed amplitude threshold.

	Peaks are recognised on the falling crossing of a dynamic threshold
	placed between EMA-tracked signal and noise levels. The true maximum
	is then located by searching back through a short history buffer,
	which undoes the lag introduced by upstream filtering.
	"""

	EPSILON = 1e-6

	def __init__(self, config: DetectorConfig | None = None) -> None:
		self.config = config or DetectorConfig()
		self._history: deque[tuple[int, float]] = deque()
		self._snr_history: deque[float] = deque(maxlen=self.config.snr_window)
		self.reset()

	def reset(self) -> None:
		cfg = self.config
		self._history.clear()
		self._snr_history.clear()
		self.signal_level = cfg.initial_signal_level
		self.noise_level = cfg.initial_noise_level
		self.threshold = self._compute_threshold()
		self.last_peak_timestamp: int | None = None
		self._previous: float | None = None
		self._snr = 0.0
		self.peak_count = 0

	def _compute_threshold(self) -> float:
		cfg = self.config
		threshold = self.noise_level + cfg.threshold_factor * (self.signal_level - self.noise_level)
		return max(cfg.min_absolute_threshold, threshold)

	def _update_noise(self, value: float) -> None:
		alpha = self.config.noise_alpha
		self.noise_level = alpha * value + (1 - alpha) * self.noise_level

	def _update_signal(self, value: float) -> None:
		alpha = self.config.signal_alpha
		self.signal_level = alpha * value + (1 - alpha) * self.signal_level

	def _find_peak(self, timestamp: int) -> tuple[int, float] | None:
		earliest = timestamp - self.config.search_back_ms
		if self.last_peak_timestamp is not None:
			earliest = max(earliest, self.last_peak_timestamp + self.config.refractory_ms + 1)
		candidates = [(ts, v) for ts, v in self._history if ts >= earliest]
		if not candidates:
			return None
		return max(candidates, key=lambda item: item[1])

	def update(self, value: float, timestamp: int) -> PeakEvent:
		"""Feed one conditioned sample and report whether a peak completed."""
		cfg = self.config
		self._history.append((timestamp, value))
		while self._history and self._history[0][0] < timestamp - cfg.history_ms:
			self._history.popleft()

		previous = self._previous
		self._previous = value
		if previous is None or len(self._history) < 2:
			return PeakEvent(False, timestamp, self._snr, self.threshold, value)

		is_peak = False
		peak_timestamp = timestamp
		peak_value = value

		if previous >= self.threshold > value:
			refractory_over = (
				self.last_peak_timestamp is None
				or timestamp - self.last_peak_timestamp > cfg.refractory_ms
			)
			# inside the refractory period the crossing is a double detection, drop it
			if refractory_over:
				found = self._find_peak(timestamp)
				if found is not None and found[1] > cfg.min_absolute_threshold:
					peak_timestamp, peak_value = found
					is_peak = True
					self._update_signal(peak_value)
					self.last_peak_timestamp = peak_timestamp
					self.peak_count += 1
				else:
					self._update_noise(value)
		elif value < self.threshold:
			self._update_noise(value)

		if self.signal_level < self.noise_level:
			self.signal_level = self.noise_level
		self.threshold = self._compute_threshold()

		instantaneous = self.signal_level / max(abs(self.noise_level), self.EPSILON)
		self._snr_history.append(max(0.0, instantaneous))
		self._snr = float(np.mean(self._snr_history))

		if is_peak:
			logger.debug(
				"peak_detected",
				timestamp=peak_timestamp,
				value=round(peak_value, 4),
				threshold=round(self.threshold, 4),
				snr=round(self._snr, 2),
			)

		return PeakEvent(
			is_peak=is_peak,
			timestamp=peak_timestamp,
			snr=self._snr,
			threshold=self.threshold,
			value=peak_value,
		)

	@property
	def snr(self) -> float:
		return self._snr
