"""Temporal smoothing of published values."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass

import numpy as np

from ppgvitals.models import Channel, VitalSignCalculation
from ppgvitals.vitals.blood_pressure import separate_pressures


@dataclass
class SmoothingConfig:
	median_window: int = 5
	ema_alpha: float = 0.5
	holt_alpha: float = 0.3
	holt_beta: float = 0.1
	max_step: float = 5.0            # slow channels, per cycle
	min_bp_separation: int = 20

	def validate(self) -> list[str]:
		errors = []
		if self.median_window < 1:
			errors.append(f"median_window ({self.median_window}) must be >= 1")
		for name in ("ema_alpha", "holt_alpha", "holt_beta"):
			value = getattr(self, name)
			if not 0 < value <= 1:
				errors.append(f"{name} ({value}) must be in (0, 1]")
		if self.max_step <= 0:
			errors.append(f"max_step ({self.max_step}) must be positive")
		return errors


class MedianEMA:
	"""Median of recent values blended into an exponential average."""

	def __init__(self, window: int, alpha: float) -> None:
		self.alpha = alpha
		self._recent: deque[float] = deque(maxlen=window)
		self.value: float | None = None

	def update(self, x: float) -> float:
		self._recent.append(x)
		median = float(np.median(self._recent))
		if self.value is None:
			self.value = median
		else:
			self.value = self.alpha * median + (1 - self.alpha) * self.value
		return self.value


class HoltSmoother:
	"""Double exponential smoothing with a bounded per-update step."""

	def __init__(self, alpha: float, beta: float, max_step: float) -> None:
		self.alpha = alpha
		self.beta = beta
		self.max_step = max_step
		self.level: float | None = None
		self.trend = 0.0

	def update(self, x: float) -> float:
		if self.level is None:
			self.level = x
			self.trend = 0.0
			return x
		previous = self.level
		level = self.alpha * x + (1 - self.alpha) * (previous + self.trend)
		step = max(-self.max_step, min(self.max_step, level - previous))
		self.level = previous + step
		self.trend = self.beta * step + (1 - self.beta) * self.trend
		return self.level


class TrendSmoother:
	"""Per-channel smoothing matched to the channel's expected rate of change.

	Heart rate, SpO2 and blood pressure use median-of-recent plus EMA;
	glucose and lipids use bounded Holt smoothing. Confidence passes
	through unchanged and degraded results are not fed to the state.
	"""

	def __init__(self, config: SmoothingConfig | None = None) -> None:
		self.config = config or SmoothingConfig()
		self._fast: dict[str, MedianEMA] = {}
		self._slow: dict[str, HoltSmoother] = {}

	def _fast_update(self, key: str, x: float) -> float:
		if key not in self._fast:
			self._fast[key] = MedianEMA(self.config.median_window, self.config.ema_alpha)
		return self._fast[key].update(x)

	def _slow_update(self, key: str, x: float) -> float:
		if key not in self._slow:
			cfg = self.config
			self._slow[key] = HoltSmoother(cfg.holt_alpha, cfg.holt_beta, cfg.max_step)
		return self._slow[key].update(x)

	def smooth(self, calculation: VitalSignCalculation) -> VitalSignCalculation:
		if not calculation.is_valid or calculation.metadata.get("baseline") or calculation.metadata.get("retained"):
			return calculation

		channel = calculation.channel
		if channel in (Channel.HEART_RATE, Channel.SPO2):
			smoothed = int(round(self._fast_update(channel.value, float(calculation.value))))
			return calculation.with_value(smoothed, unsmoothed=calculation.value)

		if channel == Channel.BLOOD_PRESSURE:
			systolic = calculation.metadata.get("systolic")
			diastolic = calculation.metadata.get("diastolic")
			if systolic is None or diastolic is None:
				return calculation
			s = int(round(self._fast_update("systolic", float(systolic))))
			d = int(round(self._fast_update("diastolic", float(diastolic))))
			s, d = separate_pressures(s, d, self.config.min_bp_separation)
			return calculation.with_value(f"{s}/{d}", systolic=s, diastolic=d, unsmoothed=calculation.value)

		if channel == Channel.GLUCOSE:
			smoothed = round(self._slow_update(channel.value, float(calculation.value)))
			return calculation.with_value(smoothed, unsmoothed=calculation.value)

		if channel == Channel.LIPIDS:
			cholesterol = round(self._slow_update("cholesterol", float(calculation.value)))
			extra = {}
			triglycerides = calculation.metadata.get("triglycerides")
			if triglycerides is not None:
				extra["triglycerides"] = round(self._slow_update("triglycerides", float(triglycerides)))
			return calculation.with_value(cholesterol, cholesterol=cholesterol, unsmoothed=calculation.value, **extra)

		return calculation

	def reset(self) -> None:
		self._fast.clear()
		self._slow.clear()
