"""Vital sign calculators, one per channel, selected through a registry."""

from ppgvitals.vitals.arrhythmia import ArrhythmiaCalculator, ArrhythmiaConfig, ArrhythmiaWindow, RhythmState
from ppgvitals.vitals.base import (
	CalculatorConfig,
	EvaluationContext,
	VitalSignCalculator,
	available_channels,
	create_calculator,
	register_calculator,
)
from ppgvitals.vitals.blood_pressure import BloodPressureCalculator, BloodPressureConfig
from ppgvitals.vitals.heart_rate import HeartRateCalculator, HeartRateConfig
from ppgvitals.vitals.metabolic import GlucoseCalculator, GlucoseConfig, LipidsCalculator, LipidsConfig
from ppgvitals.vitals.spo2 import SpO2Calculator, SpO2Config

__all__ = [
	"VitalSignCalculator",
	"CalculatorConfig",
	"EvaluationContext",
	"register_calculator",
	"create_calculator",
	"available_channels",
	"HeartRateCalculator",
	"HeartRateConfig",
	"SpO2Calculator",
	"SpO2Config",
	"BloodPressureCalculator",
	"BloodPressureConfig",
	"GlucoseCalculator",
	"GlucoseConfig",
	"LipidsCalculator",
	"LipidsConfig",
	"ArrhythmiaCalculator",
	"ArrhythmiaConfig",
	"ArrhythmiaWindow",
	"RhythmState",
]
