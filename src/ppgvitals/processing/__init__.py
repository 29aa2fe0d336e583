"""Feedback, cross-channel validation and smoothing.

``VitalSignsPipeline`` lives in ``ppgvitals.processing.pipeline`` and is
re-exported from the top-level package.
"""

from ppgvitals.processing.feedback import FeedbackConfig, FeedbackManager
from ppgvitals.processing.smoothing import HoltSmoother, MedianEMA, SmoothingConfig, TrendSmoother
from ppgvitals.processing.validation import (
	CrossChannelValidator,
	Inconsistency,
	ValidationConfig,
	ValidationReport,
)

__all__ = [
	"FeedbackManager",
	"FeedbackConfig",
	"CrossChannelValidator",
	"ValidationConfig",
	"ValidationReport",
	"Inconsistency",
	"TrendSmoother",
	"SmoothingConfig",
	"MedianEMA",
	"HoltSmoother",
]
