"""
stackvm — assemble and run a stack VM program

Usage:
    stackvm <program.svm> [--profile default|strict|sandbox] [--max-steps N]
                          [--trace] [--listing] [--serial URL] [--baud N]
                          [--strict] [-v] [--log-file PATH]

OUT messages go to stdout as ``[port N] text`` lines unless --serial
names a pyserial URL. The final stack is printed when the program stops.

Exit status:
    0  program halted
    1  program faulted, hit the step ceiling, or had unresolved labels (--strict)
    2  bad arguments, source could not be read or assembled,
       or the serial port failed to open

Examples:
    stackvm countdown.svm
    stackvm countdown.svm --profile sandbox --listing
    stackvm echo.svm --serial /dev/ttyUSB0 --baud 115200
"""

from __future__ import annotations
import argparse
import logging
import sys
from typing import List, Optional

from . import __version__
from .assembler import assemble_file
from .channel import MessageChannel, StreamChannel
from .config import PROFILES, get_profile
from .errors import AssemblySyntaxError, ChannelError, LabelResolutionError
from .log_setup import setup_logging
from .serial_channel import SerialChannel, DEFAULT_BAUD

log = logging.getLogger('stackvm.cli')


def positive_int(value: str) -> int:
    """argparse type: an integer >= 1."""
    try:
        n = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: '{value}'") from None
    if n < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {n}")
    return n


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stackvm",
        description="Assemble and run a stack VM program",
        epilog="Profiles: " + ", ".join(
            f"{name} ({p['description']})" for name, p in PROFILES.items()),
    )
    parser.add_argument("source", help="Assembly source file")
    parser.add_argument("--profile", default="default", choices=list(PROFILES.keys()),
                        help="Engine profile (default: default)")
    parser.add_argument("--max-steps", type=positive_int, default=None,
                        help="Step ceiling, overrides the profile")
    parser.add_argument("--trace", action="store_true",
                        help="Print one line per executed instruction")
    parser.add_argument("--listing", action="store_true",
                        help="Print the resolved program before running")
    parser.add_argument("--serial", metavar="URL", default=None,
                        help="Send OUT messages to a serial port (pyserial URL)")
    parser.add_argument("--baud", type=positive_int, default=DEFAULT_BAUD,
                        help=f"Serial baud rate (default: {DEFAULT_BAUD})")
    parser.add_argument("--strict", action="store_true",
                        help="Fail before running if any label is unresolved")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Log engine activity to the console")
    parser.add_argument("--log-file", default=None,
                        help="Write a full debug log to this file")
    parser.add_argument("--version", action="version",
                        version=f"stackvm {__version__}")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    setup_logging(
        console_level=logging.INFO if args.verbose else logging.WARNING,
        log_file=args.log_file,
    )

    config = get_profile(args.profile,
                         max_steps=args.max_steps,
                         trace=True if args.trace else None)

    if args.verbose:
        print(f"[stackvm] Source:  {args.source}", file=sys.stderr)
        print(f"[stackvm] Profile: {args.profile} — {PROFILES[args.profile]['description']}",
              file=sys.stderr)

    channel: MessageChannel
    if args.serial:
        channel = SerialChannel(args.serial, baud=args.baud)
    else:
        channel = StreamChannel()

    try:
        builder = assemble_file(args.source, channel=channel, config=config)
    except OSError as e:
        print(f"Error reading {args.source}: {e}", file=sys.stderr)
        return 2
    except AssemblySyntaxError as e:
        print(f"Assembly error: {e}", file=sys.stderr)
        return 2

    try:
        builder.build(strict=args.strict)
    except LabelResolutionError as e:
        print(f"Build error: {e}", file=sys.stderr)
        return 1
    for failure in builder.errors:
        print(f"Warning: {failure}", file=sys.stderr)

    if args.listing:
        print(builder.listing())

    try:
        with channel:
            result = builder.run()
    except ChannelError as e:
        print(f"Channel error: {e}", file=sys.stderr)
        return 2

    if config.trace:
        for line in builder.engine.trace_output:
            print(line)

    print("Stack: [" + ", ".join(str(v) for v in result.stack) + "]")
    if result.ok:
        if args.verbose:
            print(f"[stackvm] Halted at pc={result.pc} after {result.steps} steps",
                  file=sys.stderr)
        return 0

    print(f"Fault: {result.fault}", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
