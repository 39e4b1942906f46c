#!/usr/bin/env python3
"""
bandpulse - audio features to visualization parameters

Runs the feature pipeline against the simulated or live spectral source and
logs what a visualization consumer would receive.
"""

import argparse
import cProfile
import sys
import time

from config import Config, SourceType
from config_persistence import load_config, save_config
from logging_utils import log_event, set_log_level
from pipeline import FeatureRecord, FeaturePipeline
from scheduler import ThreadedTickScheduler
from spectral_source import CaptureSpectralSource, SimulatedSpectralSource


class LoggingConsumer:
    """Stand-in visualization consumer: logs beats and a periodic level line."""

    def __init__(self, report_every: int = 60):
        self.initialized = True
        self.report_every = max(1, report_every)
        self.records = 0

    def update_audio_data(self, record: FeatureRecord) -> None:
        self.records += 1
        if record.beat_detected:
            log_event("INFO", "BEAT", "Beat",
                      intensity=f"{record.beat_intensity:.2f}",
                      stability=f"{record.rhythm_stability:.2f}",
                      energy=f"{record.total_energy:.3f}")
        elif self.records % self.report_every == 0:
            top = sorted(record.visual_params.items(), key=lambda kv: kv[1], reverse=True)[:3]
            log_event("INFO", "Visual", "Levels",
                      intensity=f"{record.beat_intensity:.2f}",
                      top=", ".join(f"{k}={v:.2f}" for k, v in top))


def build_source(config: Config):
    if config.audio.source == SourceType.CAPTURE:
        return CaptureSpectralSource(config)
    return SimulatedSpectralSource(config)


def run_pipeline(config: Config, seconds: float, use_qt: bool = False) -> int:
    source = build_source(config)
    if not source.initialize():
        log_event("ERROR", "App", "Spectral source failed to initialize")
        return 1

    interval_ms = config.pipeline.analysis_interval_ms
    if use_qt:
        from PyQt6.QtCore import QCoreApplication, QTimer
        from qt_scheduler import QtTickScheduler

        app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])
        scheduler = QtTickScheduler(interval_ms)
    else:
        scheduler = ThreadedTickScheduler(interval_ms)

    pipeline = FeaturePipeline(source, LoggingConsumer(), config, scheduler=scheduler)
    if not pipeline.initialize():
        return 1

    try:
        if use_qt:
            QTimer.singleShot(int(seconds * 1000), app.quit)
            app.exec()
        else:
            deadline = time.monotonic() + seconds
            while time.monotonic() < deadline:
                time.sleep(0.1)
    except KeyboardInterrupt:
        log_event("INFO", "App", "Interrupted")
    finally:
        pipeline.dispose()
        if isinstance(source, CaptureSpectralSource):
            source.stop()
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the bandpulse feature pipeline")
    parser.add_argument("--source", choices=[s.value for s in SourceType],
                        help="Spectral source (default: from config)")
    parser.add_argument("--seconds", type=float, default=10.0,
                        help="How long to run (default: 10)")
    parser.add_argument("--interval-ms", type=float,
                        help="Minimum milliseconds between analyses")
    parser.add_argument("--log-level", help="DEBUG/INFO/WARNING/ERROR")
    parser.add_argument("--qt", action="store_true",
                        help="Drive ticks from a Qt event loop timer")
    parser.add_argument("--save-config", action="store_true",
                        help="Persist the effective configuration")
    parser.add_argument(
        "--profile",
        action="store_true",
        help="Enable cProfile and save stats to --profile-out",
    )
    parser.add_argument(
        "--profile-out",
        default="profile.prof",
        help="Path to save cProfile stats (default: profile.prof)",
    )
    args = parser.parse_args()

    config = load_config()
    if args.source:
        config.audio.source = SourceType(args.source)
    if args.interval_ms is not None:
        config.pipeline.analysis_interval_ms = max(0.0, args.interval_ms)
    if args.log_level:
        config.log_level = args.log_level.upper()
    set_log_level(config.log_level)

    if args.save_config:
        save_config(config)

    if args.profile:
        profiler = cProfile.Profile()
        profiler.enable()
        exit_code = run_pipeline(config, args.seconds, use_qt=args.qt)
        profiler.disable()
        profiler.dump_stats(args.profile_out)
    else:
        exit_code = run_pipeline(config, args.seconds, use_qt=args.qt)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
