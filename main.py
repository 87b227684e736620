#!/usr/bin/env python3
"""
Sanctuary Meter - Einstiegspunkt

Raumakustik-Messungen für Ton-Ehrenamtliche: RT60 aus einem Klatschen,
Terzband-Spektrum und SPL-Überwachung mit Session-Bericht.

Verwendung:
    python main.py rt60 clap.wav
    python main.py spectrum service.wav
    python main.py clap
    python main.py monitor --minutes 90
"""

import argparse
import json
import logging
import sys
import time


logger = logging.getLogger("sanctuary_meter")


def _print_measurement(measurement) -> None:
    from sanctuary_meter.utils import format_db, format_rt60

    print(f"RT60:         {format_rt60(measurement.rt60_seconds)}")
    print(f"Room:         {measurement.classification.value}")
    print(f"Noise floor:  {format_db(measurement.noise_floor_db)}FS")
    print(f"SNR:          {format_db(measurement.snr_db)}")
    if not measurement.is_reliable:
        print("Warning: SNR below 30 dB, treat this value as an estimate only.")
    print()
    print(measurement.advice)


def cmd_rt60(args, settings) -> int:
    """RT60 from a recorded clap (ambient pre-roll, clap, decay)."""
    from sanctuary_meter.core import load_capture, measure_rt60
    from sanctuary_meter.core.signal_processing import remove_dc_offset

    samples, sample_rate = load_capture(args.file)
    samples = remove_dc_offset(samples)
    pre_noise = int(args.pre_roll * sample_rate)
    measurement = measure_rt60(samples, pre_noise, sample_rate)
    if measurement is None:
        print("Could not calculate RT60. The decay may have been too short or the room too noisy.")
        return 1

    if args.json:
        print(json.dumps(measurement.to_dict(), indent=2))
    else:
        _print_measurement(measurement)
    return 0


def cmd_spectrum(args, settings) -> int:
    """Average third-octave spectrum and peak hold of a file."""
    from sanctuary_meter.core import (
        AudioBlock, MeteringPipeline, SpectrumConfig, load_capture,
    )
    from sanctuary_meter.core.third_octave import BAND_LABELS
    from sanctuary_meter.utils import format_db

    samples, sample_rate = load_capture(args.file)
    config = SpectrumConfig(
        block_size=settings.block_size,
        smoothing_factor=settings.smoothing_factor,
    )
    pipeline = MeteringPipeline(sample_rate, config, peak_decay_db=settings.peak_decay_db)

    snapshot = None
    for start in range(0, len(samples) - config.block_size + 1, config.block_size):
        block = AudioBlock(samples[start:start + config.block_size], sample_rate)
        snapshot = pipeline.process_block(block) or snapshot

    if snapshot is None:
        print(f"File is shorter than one analysis block ({config.block_size} samples).")
        return 1

    if args.json:
        print(json.dumps(snapshot.to_dict(), indent=2))
        return 0

    for label, level, peak in zip(BAND_LABELS, snapshot.band_levels_db, snapshot.peak_levels_db):
        print(f"{label:>6} Hz  {format_db(level):>10}  peak {format_db(peak):>10}")
    return 0


def cmd_clap(args, settings) -> int:
    """Live clap measurement via the RT60 capture workflow."""
    from sanctuary_meter.core import CapturePhase, RT60CaptureSession, iter_input_chunks

    session = RT60CaptureSession(settings.sample_rate)
    session.start()
    print("Stay quiet for a moment, then clap once loudly.")

    chunks = iter_input_chunks(settings.spl_block_size, settings.sample_rate, settings.input_device)
    try:
        for chunk in chunks:
            if not session.feed(chunk).is_active:
                break
    finally:
        chunks.close()

    if session.phase is CapturePhase.FAILED:
        print(session.failure_reason)
        return 1

    _print_measurement(session.result)
    return 0


def cmd_monitor(args, settings) -> int:
    """SPL monitoring with alerts and a session report at the end."""
    from sanctuary_meter.core import (
        FlaggingMode, LiveCapture, MeteringPipeline, SPLAlertMeter,
        SPLPreference, SpectrumConfig,
    )
    from sanctuary_meter.utils import (
        format_clock_time, format_duration, format_session_date,
    )

    mode = FlaggingMode(settings.flagging_mode)
    preference = SPLPreference(
        target_db=args.target or settings.target_db,
        flagging_mode=mode,
        calibration_offset_db=settings.calibration_offset_db,
    )
    meter = SPLAlertMeter(preference)
    pipeline = MeteringPipeline(
        settings.sample_rate,
        SpectrumConfig(block_size=settings.block_size, smoothing_factor=settings.smoothing_factor),
        meter=meter,
        peak_decay_db=settings.peak_decay_db,
    )
    capture = LiveCapture(
        pipeline,
        block_size=settings.spl_block_size,
        device=settings.input_device,
        queue_depth=settings.queue_depth,
    )

    capture.start()
    deadline = time.monotonic() + args.minutes * 60
    try:
        while time.monotonic() < deadline:
            time.sleep(1.0)
            reading = meter.reading()
            state = reading.alert_state
            marker = {"safe": "  ", "warning": "! ", "alert": "!!"}[state.level.value]
            print(
                f"{marker} {reading.current_db:5.1f} dB  "
                f"avg {reading.average_db:5.1f}  peak {reading.peak_db:5.1f}",
                flush=True,
            )
    except KeyboardInterrupt:
        pass
    finally:
        capture.stop()

    report = meter.generate_session_report(mode)
    if report is None:
        print("No readings were recorded.")
        return 1

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
        return 0

    print()
    print(format_session_date(report.session_start))
    print(f"{report.grade.value}: {report.grade_summary}")
    print(f"Monitored {format_duration(report.total_monitoring_seconds)}, "
          f"average {report.overall_average_db:.1f} dB, peak {report.overall_peak_db:.1f} dB")
    for event in report.breach_events:
        print(f"  {format_clock_time(event.start_time)}  {format_duration(event.duration_seconds):>7}"
              f"  peak {event.peak_db:.1f} dB{'  (danger)' if event.was_danger else ''}")
    return 0


def cmd_calibrate(args, settings) -> int:
    """Offset that matches a reference SPL meter."""
    from sanctuary_meter.core import SPLAlertMeter, SPLPreference, record_capture

    meter = SPLAlertMeter(SPLPreference(calibration_offset_db=settings.calibration_offset_db))
    samples = record_capture(args.seconds, settings.sample_rate, settings.input_device)
    block = settings.spl_block_size
    for start in range(0, len(samples) - block + 1, block):
        meter.process_block(samples[start:start + block])

    offset = meter.calibration_offset(args.known_spl)
    print(f"Measured {meter.current_db:.1f} dB, reference {args.known_spl:.1f} dB")
    print(f"SANCTUARY_METER_CALIBRATION_OFFSET_DB={offset:.1f}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sanctuary-meter", description=__doc__.splitlines()[1])
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("rt60", help="RT60 from a WAV clap recording")
    p.add_argument("file")
    p.add_argument("--pre-roll", type=float, default=1.5, help="ambient seconds before the clap")
    p.add_argument("--json", action="store_true")
    p.set_defaults(func=cmd_rt60)

    p = sub.add_parser("spectrum", help="third-octave spectrum of a WAV file")
    p.add_argument("file")
    p.add_argument("--json", action="store_true")
    p.set_defaults(func=cmd_spectrum)

    p = sub.add_parser("clap", help="live RT60 measurement")
    p.set_defaults(func=cmd_clap)

    p = sub.add_parser("monitor", help="live SPL monitoring with session report")
    p.add_argument("--minutes", type=float, default=90.0)
    p.add_argument("--target", type=float, default=None, help="target dB SPL")
    p.add_argument("--json", action="store_true")
    p.set_defaults(func=cmd_monitor)

    p = sub.add_parser("calibrate", help="offset against a reference SPL meter")
    p.add_argument("known_spl", type=float)
    p.add_argument("--seconds", type=float, default=3.0)
    p.set_defaults(func=cmd_calibrate)

    return parser


def main(argv=None) -> int:
    """Start the Sanctuary Meter command line."""
    from sanctuary_meter.config import Settings
    from sanctuary_meter.utils import setup_logging

    args = build_parser().parse_args(argv)
    settings = Settings()
    setup_logging("DEBUG" if args.verbose else settings.log_level)

    try:
        return args.func(args, settings)
    except (FileNotFoundError, ValueError) as e:
        logger.error("%s", e)
        return 2


if __name__ == "__main__":
    sys.exit(main())
