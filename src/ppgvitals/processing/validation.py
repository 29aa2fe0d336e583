"""Physiological plausibility checks across channels."""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from ppgvitals.models import Channel, VitalSignCalculation

logger = structlog.get_logger(__name__)


@dataclass
class ValidationConfig:
	heart_rate_range: tuple[float, float] = (40.0, 200.0)
	spo2_range: tuple[float, float] = (70.0, 100.0)
	systolic_range: tuple[float, float] = (90.0, 180.0)
	diastolic_range: tuple[float, float] = (60.0, 110.0)
	glucose_range: tuple[float, float] = (70.0, 200.0)
	cholesterol_range: tuple[float, float] = (120.0, 300.0)
	pulse_pressure_range: tuple[float, float] = (20.0, 60.0)
	tachycardia_bpm: float = 100.0
	low_systolic: float = 100.0
	range_penalty: float = 0.5
	correlation_penalty: float = 0.7


@dataclass(frozen=True)
class Inconsistency:
	rule: str
	channels: tuple[Channel, ...]
	message: str

	def to_dict(self) -> dict:
		return {
			"rule": self.rule,
			"channels": [c.value for c in self.channels],
			"message": self.message,
		}


@dataclass
class ValidationReport:
	calculations: dict[Channel, VitalSignCalculation]
	inconsistencies: list[Inconsistency] = field(default_factory=list)

	@property
	def consistent(self) -> bool:
		return not self.inconsistencies


def _numeric(calculation: VitalSignCalculation | None) -> float | None:
	if calculation is None or not calculation.is_valid or calculation.metadata.get("baseline"):
		return None
	if isinstance(calculation.value, (int, float)):
		return float(calculation.value)
	return None


class CrossChannelValidator:
	"""Flag implausible values and penalize their confidence.

	Values are never corrected here and confidence is only ever lowered.
	"""

	def __init__(self, config: ValidationConfig | None = None) -> None:
		self.config = config or ValidationConfig()

	def validate(self, calculations: dict[Channel, VitalSignCalculation]) -> ValidationReport:
		cfg = self.config
		penalties: dict[Channel, float] = {}
		issues: list[Inconsistency] = []

		def penalize(rule: str, channels: tuple[Channel, ...], factor: float, message: str) -> None:
			issues.append(Inconsistency(rule, channels, message))
			for channel in channels:
				penalties[channel] = penalties.get(channel, 1.0) * factor

		ranges = {
			Channel.HEART_RATE: cfg.heart_rate_range,
			Channel.SPO2: cfg.spo2_range,
			Channel.GLUCOSE: cfg.glucose_range,
			Channel.LIPIDS: cfg.cholesterol_range,
		}
		for channel, (low, high) in ranges.items():
			value = _numeric(calculations.get(channel))
			if value is not None and not low <= value <= high:
				penalize("out_of_range", (channel,), cfg.range_penalty, f"{channel.value}={value} outside [{low}, {high}]")

		systolic = diastolic = None
		bp = calculations.get(Channel.BLOOD_PRESSURE)
		if bp is not None and bp.is_valid and not bp.metadata.get("baseline"):
			systolic = bp.metadata.get("systolic")
			diastolic = bp.metadata.get("diastolic")
		if systolic is not None and diastolic is not None:
			for name, value, (low, high) in (
				("systolic", systolic, cfg.systolic_range),
				("diastolic", diastolic, cfg.diastolic_range),
			):
				if not low <= value <= high:
					penalize("out_of_range", (Channel.BLOOD_PRESSURE,), cfg.range_penalty, f"{name}={value} outside [{low}, {high}]")

			pulse_pressure = systolic - diastolic
			low, high = cfg.pulse_pressure_range
			if not low <= pulse_pressure <= high:
				penalize(
					"pulse_pressure",
					(Channel.BLOOD_PRESSURE,),
					cfg.correlation_penalty,
					f"pulse pressure {pulse_pressure} outside [{low}, {high}]",
				)

			heart_rate = _numeric(calculations.get(Channel.HEART_RATE))
			if heart_rate is not None and heart_rate > cfg.tachycardia_bpm and systolic < cfg.low_systolic:
				penalize(
					"tachycardia_low_systolic",
					(Channel.HEART_RATE, Channel.BLOOD_PRESSURE),
					cfg.correlation_penalty,
					f"heart rate {heart_rate:.0f} with systolic {systolic}",
				)

		validated = dict(calculations)
		for channel, factor in penalties.items():
			original = calculations[channel]
			validated[channel] = original.with_confidence(
				min(original.confidence, original.confidence * factor),
				inconsistent=True,
			)

		if issues:
			logger.debug("cross_channel_inconsistency", rules=[i.rule for i in issues])
		return ValidationReport(calculations=validated, inconsistencies=issues)
