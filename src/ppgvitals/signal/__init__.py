"""Signal conditioning, peak detection and RR interval tracking."""

from ppgvitals.signal.filters import (
	BandpassFilter,
	ExponentialSmoother,
	KalmanFilter,
	MovingAverageFilter,
	PassthroughFilter,
	StreamFilter,
)
from ppgvitals.signal.optimizer import (
	ChannelOptimizer,
	FilterQuality,
	FilterType,
	OptimizerConfig,
	OptimizerParams,
)
from ppgvitals.signal.peaks import AdaptivePeakDetector, DetectorConfig, PeakEvent
from ppgvitals.signal.rr import RRConfig, RRIntervalTracker

__all__ = [
	"AdaptivePeakDetector",
	"BandpassFilter",
	"ChannelOptimizer",
	"DetectorConfig",
	"ExponentialSmoother",
	"FilterQuality",
	"FilterType",
	"KalmanFilter",
	"MovingAverageFilter",
	"OptimizerConfig",
	"OptimizerParams",
	"PassthroughFilter",
	"PeakEvent",
	"RRConfig",
	"RRIntervalTracker",
	"StreamFilter",
]
