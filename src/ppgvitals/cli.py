"""Command-line interface."""

from __future__ import annotations

import json
import sys
import time

import click
import structlog
from rich.console import Console
from rich.live import Live
from rich.table import Table

from ppgvitals.config import AppConfig, configure_logging
from ppgvitals.models import Channel

logger = structlog.get_logger(__name__)
console = Console()


def _load_config(path: str | None) -> AppConfig:
	return AppConfig.from_file(path) if path else AppConfig.from_env()


def _parse_reference(values: tuple[str, ...]) -> dict[str, float]:
	reference = {}
	for item in values:
		key, sep, value = item.partition("=")
		if not sep:
			raise click.BadParameter(f"expected KEY=VALUE, got {item!r}", param_hint="--reference")
		try:
			reference[key.strip()] = float(value)
		except ValueError:
			raise click.BadParameter(f"{key} must be numeric", param_hint="--reference") from None
	return reference


def _parse_window(values: tuple[str, ...]) -> tuple[tuple[int, int], ...]:
	windows = []
	for item in values:
		start, sep, end = item.partition(":")
		if not sep:
			raise click.BadParameter(f"expected START:END in ms, got {item!r}", param_hint="--finger-off")
		windows.append((int(start), int(end)))
	return tuple(windows)


def _fmt(value, confidence: float, unit: str = "") -> str:
	if confidence <= 0:
		return "---"
	return f"{value}{unit}"


def make_table(result=None) -> Table:
	t = Table(title="Vital Signs Monitor")
	t.add_column("Metric", style="cyan")
	t.add_column("Value", style="green")
	t.add_column("Confidence", style="yellow")
	if result is None:
		return t

	rows = [
		("Heart Rate", Channel.HEART_RATE, result.heart_rate, " BPM"),
		("SpO2", Channel.SPO2, result.spo2, " %"),
		("Blood Pressure", Channel.BLOOD_PRESSURE, result.blood_pressure, " mmHg"),
		("Glucose", Channel.GLUCOSE, result.glucose, " mg/dL"),
		("Cholesterol", Channel.LIPIDS, result.cholesterol, " mg/dL"),
		("Triglycerides", Channel.LIPIDS, result.triglycerides, " mg/dL"),
		("Rhythm", Channel.ARRHYTHMIA, result.arrhythmia_status, ""),
	]
	for label, channel, value, unit in rows:
		confidence = result.confidence(channel)
		t.add_row(label, _fmt(value, confidence, unit), f"{confidence:.1%}")
	t.add_row("Time", f"{result.timestamp / 1000:.1f} s", "---")
	return t


@click.group()
@click.version_option(package_name="ppgvitals")
@click.option("--log-level", default=None, help="Log level (overrides PPGVITALS_LOG_LEVEL)")
@click.pass_context
def main(ctx: click.Context, log_level: str | None) -> None:
	"""PPG vitals - signal conditioning and vital-sign estimation."""
	ctx.ensure_object(dict)
	ctx.obj["log_level"] = log_level


@main.command()
@click.option("--config", "config_path", type=click.Path(exists=True), help="JSON config file")
@click.option("-d", "--duration", type=float, default=30.0, help="Simulated seconds")
@click.option("--heart-rate", type=float, default=72.0, help="Synthetic heart rate (BPM)")
@click.option("--noise", type=float, default=0.05, help="Additive noise std")
@click.option("--jitter", type=float, default=10.0, help="Beat-to-beat jitter std (ms)")
@click.option("--seed", type=int, default=None, help="Random seed")
@click.option("--ectopic", type=int, multiple=True, help="Beat index to make premature (repeatable)")
@click.option("--finger-off", multiple=True, help="Finger-off window START:END in ms (repeatable)")
@click.option("--reference", multiple=True, help="Calibration reference KEY=VALUE (repeatable)")
@click.option("--realtime", is_flag=True, help="Pace samples at the sensor rate")
@click.option("--json", "as_json", is_flag=True, help="Emit JSON lines instead of a live table")
@click.pass_context
def simulate(
	ctx: click.Context,
	config_path: str | None,
	duration: float,
	heart_rate: float,
	noise: float,
	jitter: float,
	seed: int | None,
	ectopic: tuple[int, ...],
	finger_off: tuple[str, ...],
	reference: tuple[str, ...],
	realtime: bool,
	as_json: bool,
) -> None:
	"""Run synthetic PPG through the full pipeline."""
	from ppgvitals.processing.pipeline import VitalSignsPipeline
	from ppgvitals.simulate import SyntheticConfig, SyntheticPPG

	calibration = _parse_reference(reference)
	off_windows = _parse_window(finger_off)
	config = _load_config(config_path)
	level = ctx.obj.get("log_level") or config.logging.level
	configure_logging("WARNING" if not as_json and level.upper() == "INFO" else level, config.logging.json)

	errors = config.validate()
	if errors:
		for error in errors:
			console.print(f"[red]{error}[/]")
		sys.exit(1)

	source = SyntheticPPG(SyntheticConfig(
		sample_rate_hz=config.session.sample_rate_hz,
		heart_rate_bpm=heart_rate,
		heart_rate_jitter_ms=jitter,
		noise=noise,
		ectopic_beats=ectopic,
		finger_off=off_windows,
		seed=seed,
	))
	pipeline = VitalSignsPipeline(config)
	pipeline.start()

	period = 1.0 / config.session.sample_rate_hz
	count = 0

	try:
		if as_json:
			for result in pipeline.run(source.stream(duration)):
				if calibration and result.timestamp >= 10000:
					pipeline.calibrate(calibration)
					calibration = {}
				click.echo(json.dumps(result.to_dict()))
				count += 1
		else:
			console.print("[bold green]PPG vitals[/] - simulating...")
			with Live(make_table(), refresh_per_second=4, console=console) as live:
				for timestamp, value, finger in source.stream(duration):
					pipeline.ingest_value(timestamp, value, finger)
					result = pipeline.tick(timestamp)
					if realtime:
						time.sleep(period)
					if result is None:
						continue
					if calibration and result.timestamp >= 10000:
						pipeline.calibrate(calibration)
						calibration = {}
					count += 1
					live.update(make_table(result))
	except KeyboardInterrupt:
		console.print("\n[yellow]Stopped[/]")
	finally:
		emitted = pipeline.feedback.emitted
		pipeline.stop()
		logger.info("simulation_finished", cycles=count, feedback=emitted)

	if not as_json:
		console.print(
			f"\n[green]Done![/] {count} cycles, "
			f"{emitted} feedback messages, "
			f"{pipeline.dropped_samples} dropped samples"
		)


@main.group()
def config() -> None:
	"""Configuration management."""
	pass


@config.command("show")
@click.option("--config", "config_path", type=click.Path(exists=True), help="JSON config file")
@click.option("--section", default=None, help="Only show one section")
def config_show(config_path: str | None, section: str | None) -> None:
	"""Print the effective configuration as JSON."""
	data = _load_config(config_path).to_dict()
	if section:
		if section not in data:
			console.print(f"[red]Unknown section: {section}[/]")
			console.print(f"Available: {', '.join(data)}")
			sys.exit(1)
		data = data[section]
	click.echo(json.dumps(data, indent=2, default=str))


@config.command("validate")
@click.argument("path", type=click.Path(exists=True), required=False)
def config_validate(path: str | None) -> None:
	"""Validate a JSON config file (or the environment)."""
	try:
		cfg = _load_config(path)
	except (ValueError, TypeError) as e:
		console.print(f"[red]Invalid config: {e}[/]")
		sys.exit(1)

	errors = cfg.validate()
	if errors:
		t = Table(title="Configuration Errors")
		t.add_column("#", style="dim")
		t.add_column("Error", style="red")
		for i, error in enumerate(errors, 1):
			t.add_row(str(i), error)
		console.print(t)
		sys.exit(1)
	console.print("[green]Valid configuration[/]")


if __name__ == "__main__":
	main()
