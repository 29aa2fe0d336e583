"""Beat-to-beat (RR) interval history."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class RRConfig:
	min_interval_ms: int = 300    # 200 bpm
	max_interval_ms: int = 1500   # 40 bpm
	max_intervals: int = 20
	# Re-anchor on gaps longer than max_interval_ms (missed beats, finger off)
	reanchor_on_long_gap: bool = True

	def validate(self) -> list[str]:
		errors = []
		if not 0 < self.min_interval_ms < self.max_interval_ms:
			errors.append(
				f"RR bounds ({self.min_interval_ms}, {self.max_interval_ms}) must satisfy 0 < min < max"
			)
		if self.max_intervals < 1:
			errors.append(f"max_intervals ({self.max_intervals}) must be >= 1")
		return errors


class RRIntervalTracker:
	"""Bounded history of accepted peak-to-peak intervals in milliseconds."""

	def __init__(self, config: RRConfig | None = None) -> None:
		self.config = config or RRConfig()
		self._intervals: deque[int] = deque(maxlen=self.config.max_intervals)
		self._last_peak: int | None = None
		self.rejected = 0
		self.accepted = 0  # cumulative, survives eviction from the bounded history

	def add_peak(self, timestamp: int) -> int | None:
		"""Register a confirmed peak; return the accepted interval, if any."""
		if self._last_peak is None:
			self._last_peak = timestamp
			return None

		interval = timestamp - self._last_peak
		if interval < self.config.min_interval_ms:
			self.rejected += 1
			logger.debug("rr_interval_rejected", interval=interval, reason="too_short")
			return None
		if interval > self.config.max_interval_ms:
			self.rejected += 1
			logger.debug("rr_interval_rejected", interval=interval, reason="too_long")
			if self.config.reanchor_on_long_gap:
				self._last_peak = timestamp
			return None

		self._intervals.append(interval)
		self.accepted += 1
		self._last_peak = timestamp
		return interval

	@property
	def intervals(self) -> tuple[int, ...]:
		return tuple(self._intervals)

	@property
	def last_peak_timestamp(self) -> int | None:
		return self._last_peak

	def __len__(self) -> int:
		return len(self._intervals)

	def reset(self) -> None:
		self._intervals.clear()
		self._last_peak = None
		self.rejected = 0
		self.accepted = 0
