"""Synthetic PPG source for testing without a camera.

Generates a pulse waveform with:
- systolic upstroke and dicrotic notch per beat
- beat-to-beat timing jitter and additive sensor noise
- optional premature (ectopic) beats
- optional finger-off intervals
"""
from __future__ import annotations

import math
from collections.abc import Iterator
from dataclasses import dataclass, field

import numpy as np
import structlog

from ppgvitals.models import OPTIMIZED_CHANNELS, Channel, RawSample

logger = structlog.get_logger(__name__)


@dataclass
class SyntheticConfig:
	"""Configuration for synthetic PPG generation."""
	sample_rate_hz: float = 30.0
	heart_rate_bpm: float = 72.0
	heart_rate_jitter_ms: float = 0.0   # std of beat-to-beat timing jitter
	amplitude: float = 1.0
	noise: float = 0.05                 # std of additive noise
	dc_level: float = 100.0
	dicrotic_notch: bool = True
	dicrotic_amplitude: float = 0.2     # diastolic wave relative to systolic
	pure_sine: bool = False
	# Premature beats: beat indices whose interval is shortened
	ectopic_beats: tuple[int, ...] = ()
	ectopic_prematurity: float = 0.4    # fraction of the interval removed
	# Finger-off intervals as (start_ms, end_ms)
	finger_off: tuple[tuple[int, int], ...] = ()
	seed: int | None = None
	start_ms: int = 0
	channels: tuple[Channel, ...] = field(default_factory=lambda: OPTIMIZED_CHANNELS)


class SyntheticPPG:
	"""Deterministic (given a seed) stream of PPG samples.

	Usage:
		source = SyntheticPPG(SyntheticConfig(heart_rate_bpm=72, seed=1))
		for timestamp, value, finger in source.stream(duration_s=10):
			pipeline.ingest_value(timestamp, value, finger)
	"""

	def __init__(self, config: SyntheticConfig | None = None) -> None:
		self.config = config or SyntheticConfig()
		self._rng = np.random.default_rng(self.config.seed)
		self._period_ms = 60000.0 / self.config.heart_rate_bpm
		self._beat_index = 0
		self._beat_start = float(self.config.start_ms)
		self._beat_length = self._next_beat_length()
		self.beat_times: list[float] = [self._beat_start]

		logger.debug(
			"synthetic_ppg_init",
			heart_rate_bpm=self.config.heart_rate_bpm,
			sample_rate_hz=self.config.sample_rate_hz,
			seed=self.config.seed,
		)

	def _next_beat_length(self) -> float:
		cfg = self.config
		length = self._period_ms
		if cfg.heart_rate_jitter_ms > 0:
			length += float(self._rng.normal(0, cfg.heart_rate_jitter_ms))
		if self._beat_index in cfg.ectopic_beats:
			length *= 1.0 - cfg.ectopic_prematurity
		return max(200.0, length)

	def _pulse_shape(self, phase: float) -> float:
		"""Single beat waveform for phase in [0, 1), peak value ~1."""
		if self.config.pure_sine:
			return math.sin(2 * math.pi * phase)
		# systolic wave plus a diastolic shoulder; the notch sits between them
		systolic = math.exp(-((phase - 0.2) ** 2) / (2 * 0.1 ** 2))
		diastolic = 0.0
		if self.config.dicrotic_notch:
			diastolic = self.config.dicrotic_amplitude * math.exp(-((phase - 0.45) ** 2) / (2 * 0.12 ** 2))
		return 2.0 * (systolic + diastolic) - 1.0

	def finger_present(self, timestamp: int) -> bool:
		return not any(start <= timestamp < end for start, end in self.config.finger_off)

	def sample_at(self, timestamp: int) -> float:
		"""Waveform value at ``timestamp``; timestamps must be non-decreasing."""
		cfg = self.config
		while timestamp >= self._beat_start + self._beat_length:
			self._beat_start += self._beat_length
			self._beat_index += 1
			self._beat_length = self._next_beat_length()
			self.beat_times.append(self._beat_start)

		phase = (timestamp - self._beat_start) / self._beat_length
		value = cfg.dc_level + cfg.amplitude * self._pulse_shape(phase)
		if cfg.noise > 0:
			value += float(self._rng.normal(0, cfg.noise))
		if not self.finger_present(timestamp):
			value = cfg.dc_level * 0.02 + float(self._rng.normal(0, cfg.noise))
		return value

	def stream(self, duration_s: float) -> Iterator[tuple[int, float, bool]]:
		"""Yield ``(timestamp_ms, value, finger_present)`` tuples."""
		cfg = self.config
		n = int(duration_s * cfg.sample_rate_hz)
		for i in range(n):
			timestamp = cfg.start_ms + int(round(i * 1000.0 / cfg.sample_rate_hz))
			yield timestamp, self.sample_at(timestamp), self.finger_present(timestamp)

	def samples(self, duration_s: float) -> Iterator[RawSample]:
		"""Yield per-channel RawSamples, one per configured channel per tick."""
		for timestamp, value, finger in self.stream(duration_s):
			for channel in self.config.channels:
				yield RawSample(timestamp=timestamp, channel=channel, value=value, finger_present=finger)

	def waveform(self, duration_s: float) -> np.ndarray:
		return np.array([value for _, value, _ in self.stream(duration_s)], dtype=np.float64)
