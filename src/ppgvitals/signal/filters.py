"""Streaming single-sample filters for channel conditioning."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import deque

from numpy.typing import NDArray
from scipy import signal as sp_signal

from ppgvitals.errors import ConfigurationError


class StreamFilter(ABC):
	@abstractmethod
	def update(self, sample: float) -> float:
		pass

	@abstractmethod
	def reset(self) -> None:
		pass


class PassthroughFilter(StreamFilter):
	def update(self, sample: float) -> float:
		return sample

	def reset(self) -> None:
		pass


class MovingAverageFilter(StreamFilter):
	"""Simple moving average over a fixed window, kept as a running sum."""

	def __init__(self, window: int = 3) -> None:
		if window < 1:
			raise ConfigurationError(f"Moving average window must be >= 1, got {window}")
		self.window = window
		self._buffer: deque[float] = deque(maxlen=window)
		self._sum = 0.0

	def update(self, sample: float) -> float:
		if len(self._buffer) == self.window:
			self._sum -= self._buffer[0]
		self._buffer.append(sample)
		self._sum += sample
		return self._sum / len(self._buffer)

	def reset(self) -> None:
		self._buffer.clear()
		self._sum = 0.0


class ExponentialSmoother(StreamFilter):
	"""Exponential moving average."""

	def __init__(self, alpha: float = 0.1) -> None:
		self.alpha = alpha
		self._value: float | None = None

	def update(self, sample: float) -> float:
		if self._value is None:
			self._value = sample
		else:
			self._value = self.alpha * sample + (1 - self.alpha) * self._value
		return self._value

	@property
	def value(self) -> float | None:
		return self._value

	def reset(self) -> None:
		self._value = None


class KalmanFilter(StreamFilter):
	"""Scalar Kalman filter with a constant-value process model.

	Each update runs predict (``P += Q``) then correct
	(``K = P/(P+R)``, ``X += K*(z-X)``, ``P = (1-K)*P``).
	"""

	def __init__(self, q: float = 0.3, r: float = 0.05) -> None:
		self.q = q
		self.r = r
		self.p = 1.0
		self.x = 0.0
		self.k = 0.0

	def update(self, sample: float) -> float:
		self.p += self.q
		self.k = self.p / (self.p + self.r)
		self.x += self.k * (sample - self.x)
		self.p = (1 - self.k) * self.p
		return self.x

	def reset(self) -> None:
		self.p = 1.0
		self.x = 0.0
		self.k = 0.0


class BandpassFilter(StreamFilter):
	"""Butterworth bandpass for isolating the cardiac band."""

	def __init__(
		self,
		sample_rate_hz: float,
		low_freq_hz: float,
		high_freq_hz: float,
		order: int = 2,
	) -> None:
		self.sample_rate_hz = sample_rate_hz
		self.low_freq_hz = low_freq_hz
		self.high_freq_hz = high_freq_hz
		self.order = order

		nyquist = sample_rate_hz / 2
		low = max(0.001, min(0.999, low_freq_hz / nyquist))
		high = max(0.001, min(0.999, high_freq_hz / nyquist))

		if low >= high:
			raise ConfigurationError(f"Invalid frequency range: {low_freq_hz}-{high_freq_hz} Hz")

		self._sos = sp_signal.butter(order, [low, high], btype="band", output="sos")
		self._zi: NDArray | None = None

	def update(self, sample: float) -> float:
		"""Real-time single-sample filtering."""
		if self._zi is None:
			self._zi = sp_signal.sosfilt_zi(self._sos) * sample

		filtered, self._zi = sp_signal.sosfilt(self._sos, [sample], zi=self._zi)
		return float(filtered[0])

	def reset(self) -> None:
		self._zi = None
