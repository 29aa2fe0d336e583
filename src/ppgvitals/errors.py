"""Error taxonomy for the vital-sign pipeline.

Calculators raise ``InsufficientDataError`` and ``SignalTooWeakError``
internally; the calculator boundary turns them into degraded results.
Non-finite estimates raise ``CalculationFaultError``, and any other exception
escaping a calculator is wrapped in one.
"""
from __future__ import annotations

from enum import Enum
from typing import Any


class QualityIssue(str, Enum):
	"""Reason a published calculation is degraded."""
	INSUFFICIENT_DATA = "insufficient_data"
	OUT_OF_RANGE = "out_of_range"
	SIGNAL_TOO_WEAK = "signal_too_weak"
	CALCULATION_FAULT = "calculation_fault"


class VitalSignsError(Exception):
	"""Base exception for all pipeline errors."""

	def __init__(self, message: str, channel: str | None = None, details: dict[str, Any] | None = None) -> None:
		super().__init__(message)
		self.message = message
		self.channel = channel
		self.details = details or {}

	def to_dict(self) -> dict[str, Any]:
		return {
			"error": type(self).__name__,
			"message": self.message,
			"channel": self.channel,
			"details": self.details,
		}


class ConfigurationError(VitalSignsError, ValueError):
	"""Invalid construction-time parameters."""


class InsufficientDataError(VitalSignsError):
	"""Buffer below the minimum needed for an estimate."""

	issue = QualityIssue.INSUFFICIENT_DATA


class SignalTooWeakError(VitalSignsError):
	"""Signal quality or perfusion below the channel threshold."""

	issue = QualityIssue.SIGNAL_TOO_WEAK


class CalculationFaultError(VitalSignsError):
	"""Unexpected internal failure inside a calculator."""

	issue = QualityIssue.CALCULATION_FAULT
