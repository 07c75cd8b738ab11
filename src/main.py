"""
Main Entry Point for LIDAR Capture Replay
Command line front end over SdkSession and CaptureReplay
"""

import argparse
import logging
import sys
import time
from collections import Counter

from config import ConfigError, config
from core import SdkSession, SensorError, SensorErrorWrapper, __version__, list_captures
from models import strip_handle_flags
from services.event_bus import event_bus
from services.logger import PerformanceLogger, setup_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFIG = 2


def _fail(error: SensorError) -> int:
    print(f"error: {error}", file=sys.stderr)
    return EXIT_ERROR


def _format_time(timestamp_us: int) -> str:
    return time.strftime("%Y-%m-%d %H:%M:%S", time.gmtime(timestamp_us / 1e6)) + f".{timestamp_us % 1_000_000:06d}Z"


# ============================================================================
# COMMANDS
# ============================================================================


def cmd_info(args) -> int:
    """Print capture summary: filename, start time, length, sensors"""
    with SdkSession() as session:
        wrapper = SensorErrorWrapper("initializing SDK")
        if wrapper.assign(session.initialize()):
            return _fail(wrapper.error)

        replay = session.capture_replay
        wrapper = SensorErrorWrapper(f"opening {args.capture}")
        if wrapper.assign(replay.open(args.capture)):
            return _fail(wrapper.error)

        # Scan the whole capture once to discover sensors
        replay.set_enable_loop(False).ignore()
        replay.resume_blocking(replay.get_length()).raise_for_error()

        info = replay.get_info()
        print(f"File:      {info['filename']}")
        print(f"Start:     {_format_time(info['start_time'])} ({info['start_time']} us)")
        print(f"Length:    {info['length']:.6f} s")
        print(f"Packets:   {info['packet_count']}")
        print(f"Sensors:   {session.get_n_sensors()}")
        for index in range(session.get_n_sensors()):
            error, sensor = session.get_sensor_information_by_index(index)
            if error:
                continue
            print(f"  [{index}] serial={sensor.serial_number} packets={sensor.packet_count}")
    return EXIT_OK


def cmd_play(args) -> int:
    """Replay a capture and print per-sensor packet counts"""
    packets: Counter = Counter()
    errors: list[str] = []

    def on_packet(handle, timestamp, buffer, user_data):
        user_data[strip_handle_flags(handle)] += 1

    def on_error(handle, code, msg, data, user_data):
        user_data.append(msg)
        logger.warning(f"Sensor error (handle={handle:#x}): {msg}")

    with SdkSession() as session:
        wrapper = SensorErrorWrapper("initializing SDK")
        if wrapper.assign(session.initialize(error_callback=on_error, user_data=errors)):
            return _fail(wrapper.error)

        wrapper = SensorErrorWrapper("listening for network packets")
        if wrapper.assign(session.listen_network_packets(on_packet, packets)):
            return _fail(wrapper.error)

        replay = session.capture_replay
        wrapper = SensorErrorWrapper(f"opening {args.capture}")
        if wrapper.assign(replay.open(args.capture)):
            return _fail(wrapper.error)

        if args.seek is not None:
            wrapper = SensorErrorWrapper("seeking")
            if wrapper.assign(replay.seek(args.seek)):
                return _fail(wrapper.error)

        replay.set_enable_loop(args.loop).raise_for_error()
        if args.speed is not None:
            error = replay.set_speed(args.speed)
            if error:
                return _fail(error)

        duration = args.duration
        if duration is None:
            if args.loop:
                print("error: --loop requires --duration", file=sys.stderr)
                return EXIT_ERROR
            duration = replay.get_length() - replay.get_position()

        with PerformanceLogger(logger, f"replay {replay.get_filename()}"):
            if args.realtime:
                _play_realtime(replay, duration)
            else:
                error = replay.resume_blocking(duration)
                if error:
                    return _fail(error)

        print(f"Position:  {replay.get_position():.6f} / {replay.get_length():.6f} s")
        for serial, count in sorted(packets.items()):
            print(f"  sensor {serial}: {count} packets")
        if errors:
            print(f"Errors:    {len(errors)}")
    return EXIT_OK


def _play_realtime(replay, duration: float) -> None:
    """Run the background replay thread for `duration` seconds of capture time"""
    replay.resume().raise_for_error()
    deadline = time.monotonic() + duration / replay.get_speed()
    try:
        while replay.is_running() and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        replay.pause().ignore()


def cmd_list(args) -> int:
    """List capture files in a directory"""
    directory = args.directory or config.FILES["captures_dir"]
    for name in list_captures(directory):
        print(name)
    return EXIT_OK


# ============================================================================
# ENTRY POINT
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lidar-replay",
        description="LIDAR capture replay",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s info drive.pcap
  %(prog)s play drive.pcap --seek 2.5 --duration 1.0
  %(prog)s play drive.jsonl --loop --duration 30 --realtime --speed 2
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", help="JSON configuration file")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    parser.add_argument("--log-dir", help="Directory for sdk.log and errors.log")

    subparsers = parser.add_subparsers(dest="command", required=True)

    info = subparsers.add_parser("info", help="Show capture summary")
    info.add_argument("capture")
    info.set_defaults(func=cmd_info)

    play = subparsers.add_parser("play", help="Replay a capture")
    play.add_argument("capture")
    play.add_argument("--seek", type=float, help="Start position [seconds]")
    play.add_argument("--duration", type=float, help="Capture time to replay [seconds]")
    play.add_argument("--loop", action="store_true", help="Rewind at end of capture")
    play.add_argument("--speed", type=float, help="Speed multiplier for --realtime")
    play.add_argument("--realtime", action="store_true", help="Replay on the background thread")
    play.set_defaults(func=cmd_play)

    listing = subparsers.add_parser("list", help="List capture files")
    listing.add_argument("directory", nargs="?")
    listing.set_defaults(func=cmd_list)

    return parser


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point

    Returns:
        Process exit status
    """
    args = build_parser().parse_args(argv)

    try:
        if args.config:
            config.load_from_file(args.config)
        config.validate()
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    log_overrides = {}
    if args.log_level:
        log_overrides["console_level"] = args.log_level.upper()
    if args.log_dir:
        log_overrides["log_dir"] = args.log_dir
    setup_logging(log_overrides or None)
    config.set_logger(logger)

    event_bus.start()
    try:
        return args.func(args)
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 130
    except Exception as e:
        logging.critical(f"Unhandled exception: {e}", exc_info=True)
        return EXIT_ERROR
    finally:
        event_bus.stop()


if __name__ == "__main__":
    sys.exit(main())
