"""Centralized configuration for the vital-signs pipeline.

Configuration can be built from defaults, environment variables or a JSON
file. There is no global instance: callers construct an ``AppConfig`` and
hand its sections to the components they create.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any

import structlog

from ppgvitals.models import Channel
from ppgvitals.processing.feedback import FeedbackConfig
from ppgvitals.processing.smoothing import SmoothingConfig
from ppgvitals.processing.validation import ValidationConfig
from ppgvitals.signal.optimizer import FilterType, OptimizerConfig, OptimizerParams
from ppgvitals.signal.peaks import DetectorConfig
from ppgvitals.signal.rr import RRConfig
from ppgvitals.vitals.arrhythmia import ArrhythmiaConfig
from ppgvitals.vitals.blood_pressure import BloodPressureConfig
from ppgvitals.vitals.heart_rate import HeartRateConfig
from ppgvitals.vitals.metabolic import GlucoseConfig, LipidsConfig
from ppgvitals.vitals.spo2 import SpO2Config


@dataclass
class SessionConfig:
	"""Scheduler and buffering for one monitoring session."""

	sample_rate_hz: float = 30.0
	evaluation_interval_ms: int = 500
	inbox_capacity: int = 300  # per channel, oldest dropped when full

	def validate(self) -> list[str]:
		errors = []
		if self.sample_rate_hz <= 0:
			errors.append(f"session.sample_rate_hz ({self.sample_rate_hz}) must be positive")
		if not 100 <= self.evaluation_interval_ms <= 5000:
			errors.append(
				f"session.evaluation_interval_ms ({self.evaluation_interval_ms}) must be between 100 and 5000"
			)
		if not 60 <= self.inbox_capacity <= 10000:
			errors.append(f"session.inbox_capacity ({self.inbox_capacity}) must be between 60 and 10000")
		return errors


@dataclass
class LoggingConfig:
	level: str = "INFO"
	json: bool = False


@dataclass
class CalculatorsConfig:
	"""One section per calculator channel."""

	heart_rate: HeartRateConfig = field(default_factory=HeartRateConfig)
	spo2: SpO2Config = field(default_factory=SpO2Config)
	blood_pressure: BloodPressureConfig = field(default_factory=BloodPressureConfig)
	glucose: GlucoseConfig = field(default_factory=GlucoseConfig)
	lipids: LipidsConfig = field(default_factory=LipidsConfig)
	arrhythmia: ArrhythmiaConfig = field(default_factory=ArrhythmiaConfig)

	def for_channel(self, channel: Channel):
		return getattr(self, Channel(channel).value)

	def validate(self) -> list[str]:
		errors = []
		for f in fields(self):
			errors.extend(f"calculators.{f.name}: {e}" for e in getattr(self, f.name).validate())
		return errors


@dataclass
class AppConfig:
	"""Complete application configuration."""

	session: SessionConfig = field(default_factory=SessionConfig)
	optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)
	detector: DetectorConfig = field(default_factory=DetectorConfig)
	rr: RRConfig = field(default_factory=RRConfig)
	calculators: CalculatorsConfig = field(default_factory=CalculatorsConfig)
	feedback: FeedbackConfig = field(default_factory=FeedbackConfig)
	validation: ValidationConfig = field(default_factory=ValidationConfig)
	smoothing: SmoothingConfig = field(default_factory=SmoothingConfig)
	logging: LoggingConfig = field(default_factory=LoggingConfig)

	@classmethod
	def from_env(cls) -> AppConfig:
		"""Load configuration from environment variables."""
		config = cls()

		# Session config
		if sample_rate := os.environ.get("PPGVITALS_SAMPLE_RATE_HZ"):
			config.session.sample_rate_hz = float(sample_rate)
			config.optimizer.sample_rate_hz = float(sample_rate)
			for f in fields(config.calculators):
				getattr(config.calculators, f.name).sample_rate_hz = float(sample_rate)
		if interval := os.environ.get("PPGVITALS_EVAL_INTERVAL_MS"):
			config.session.evaluation_interval_ms = int(interval)
		if capacity := os.environ.get("PPGVITALS_INBOX_CAPACITY"):
			config.session.inbox_capacity = int(capacity)

		# Feedback config
		if throttle := os.environ.get("PPGVITALS_FEEDBACK_THROTTLE_MS"):
			config.feedback.throttle_ms = int(throttle)

		# Optimizer config
		if filter_type := os.environ.get("PPGVITALS_FILTER_TYPE"):
			config.optimizer.params.filter_type = FilterType(filter_type.lower())
		if gain := os.environ.get("PPGVITALS_GAIN"):
			config.optimizer.params.gain = float(gain)
		adaptive = os.environ.get("PPGVITALS_ADAPTIVE", "").lower()
		if adaptive:
			config.optimizer.adaptive_mode = adaptive == "true"

		# Logging config
		config.logging.level = os.environ.get("PPGVITALS_LOG_LEVEL", config.logging.level)
		config.logging.json = os.environ.get("PPGVITALS_LOG_JSON", "").lower() == "true"

		return config

	@classmethod
	def from_file(cls, path: str | Path) -> AppConfig:
		"""Load configuration from JSON file."""
		with open(path) as f:
			data = json.load(f)
		return cls._from_dict(data)

	@classmethod
	def _from_dict(cls, data: dict[str, Any]) -> AppConfig:
		"""Create config from dictionary. Unknown keys are ignored."""
		config = cls()
		for f in fields(config):
			if f.name in data:
				_apply(getattr(config, f.name), data[f.name])
		config.optimizer.params.filter_type = FilterType(config.optimizer.params.filter_type)
		return config

	def to_dict(self) -> dict[str, Any]:
		data = asdict(self)
		data["optimizer"]["params"] = self.optimizer.params.to_dict()
		return data

	def validate(self) -> list[str]:
		"""Validate all configuration values. Returns list of error messages."""
		errors = []

		errors.extend(self.session.validate())
		errors.extend(f"optimizer: {e}" for e in self.optimizer.validate())
		errors.extend(f"detector: {e}" for e in self.detector.validate())
		errors.extend(f"rr: {e}" for e in self.rr.validate())
		errors.extend(self.calculators.validate())
		errors.extend(f"feedback: {e}" for e in self.feedback.validate())
		errors.extend(f"smoothing: {e}" for e in self.smoothing.validate())

		if self.optimizer.sample_rate_hz != self.session.sample_rate_hz:
			errors.append(
				f"optimizer.sample_rate_hz ({self.optimizer.sample_rate_hz}) must match "
				f"session.sample_rate_hz ({self.session.sample_rate_hz})"
			)
		if getattr(logging, self.logging.level.upper(), None) is None:
			errors.append(f"logging.level ({self.logging.level}) is not a known level")

		return errors


def _apply(section: Any, values: dict[str, Any]) -> None:
	if not isinstance(values, dict):
		return
	for key, value in values.items():
		if not hasattr(section, key):
			continue
		current = getattr(section, key)
		if is_dataclass(current) and isinstance(value, dict):
			_apply(current, value)
		elif isinstance(current, tuple) and isinstance(value, list):
			setattr(section, key, tuple(value))
		else:
			setattr(section, key, value)


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
	"""Configure structured logging for the application."""
	log_level = getattr(logging, level.upper(), logging.INFO)

	renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()

	structlog.configure(
		processors=[
			structlog.stdlib.filter_by_level,
			structlog.stdlib.add_logger_name,
			structlog.stdlib.add_log_level,
			structlog.stdlib.PositionalArgumentsFormatter(),
			structlog.processors.TimeStamper(fmt="iso"),
			structlog.processors.StackInfoRenderer(),
			structlog.processors.format_exc_info,
			structlog.processors.UnicodeDecoder(),
			renderer,
		],
		wrapper_class=structlog.stdlib.BoundLogger,
		context_class=dict,
		logger_factory=structlog.stdlib.LoggerFactory(),
		cache_logger_on_first_use=True,
	)

	logging.basicConfig(
		format="%(message)s",
		level=log_level,
	)
	logging.getLogger("ppgvitals").setLevel(log_level)
