"""PPG vital-sign estimation with an adaptive signal-conditioning feedback loop."""
__version__ = "0.1.0"

from ppgvitals.config import AppConfig, configure_logging
from ppgvitals.errors import (
	ConfigurationError,
	InsufficientDataError,
	QualityIssue,
	SignalTooWeakError,
	VitalSignsError,
)
from ppgvitals.models import Channel, FeedbackMessage, OptimizedSignal, RawSample, VitalSignCalculation
from ppgvitals.processing.pipeline import Subscription, VitalSignsPipeline, VitalSignsResult
from ppgvitals.signal import AdaptivePeakDetector, ChannelOptimizer, RRIntervalTracker
from ppgvitals.simulate import SyntheticConfig, SyntheticPPG
from ppgvitals.vitals import create_calculator

__all__ = [
	"AppConfig",
	"configure_logging",
	"Channel",
	"RawSample",
	"OptimizedSignal",
	"FeedbackMessage",
	"VitalSignCalculation",
	"VitalSignsPipeline",
	"VitalSignsResult",
	"Subscription",
	"ChannelOptimizer",
	"AdaptivePeakDetector",
	"RRIntervalTracker",
	"create_calculator",
	"SyntheticPPG",
	"SyntheticConfig",
	"VitalSignsError",
	"ConfigurationError",
	"InsufficientDataError",
	"SignalTooWeakError",
	"QualityIssue",
]
