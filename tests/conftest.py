"""Pytest fixtures."""

import numpy as np
import pytest

from ppgvitals.config import AppConfig
from ppgvitals.models import Channel, OptimizedSignal
from ppgvitals.processing.pipeline import VitalSignsPipeline
from ppgvitals.simulate import SyntheticConfig, SyntheticPPG


def make_signals(
	channel: Channel,
	values,
	start_ms: int = 0,
	sample_rate_hz: float = 30.0,
	confidence: float = 0.8,
	dc: float = 100.0,
) -> list[OptimizedSignal]:
	"""Wrap an AC waveform as OptimizedSignals riding on a DC level."""
	step = 1000.0 / sample_rate_hz
	return [
		OptimizedSignal(
			channel=channel,
			timestamp=start_ms + int(round(i * step)),
			raw_value=dc + float(v),
			filtered_value=dc + float(v),
			optimized_value=float(v),
			confidence=confidence,
		)
		for i, v in enumerate(values)
	]


@pytest.fixture
def sine_wave() -> np.ndarray:
	"""72 BPM sine sampled at 30 Hz for 5 s."""
	t = np.arange(150) / 30.0
	return np.sin(2 * np.pi * 1.2 * t)


@pytest.fixture
def pulse_wave() -> np.ndarray:
	"""Noise-free pulse waveform with a dicrotic shoulder, 5 s at 30 Hz."""
	source = SyntheticPPG(SyntheticConfig(noise=0.0, dc_level=0.0, seed=1))
	return source.waveform(5.0)


@pytest.fixture
def sine_source() -> SyntheticPPG:
	return SyntheticPPG(SyntheticConfig(pure_sine=True, noise=0.05, seed=7))


@pytest.fixture
def pipeline() -> VitalSignsPipeline:
	p = VitalSignsPipeline(AppConfig())
	p.start()
	yield p
	p.stop()
