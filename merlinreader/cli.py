"""
Command-line interface for merlinreader.

Provides utilities to inspect Merlin acquisitions and run the processing
operations on them.
"""

import argparse
import sys
from typing import List, Optional

from .config import (
    RunConfig, load_config, parse_annular_range, parse_origin, parse_pixel,
    parse_sampling, parse_scan_roi, parse_scan_shape
)
from .errors import MerlinError
from .processing import run_config
from .reader import MerlinReader

COMMAND_OPERATIONS = {
    'extract': 'extract_frames',
    'average': 'average_frames',
    'integrate': 'integrate_annular_range',
    'com': 'center_of_mass',
}


def _report(operation: str, error: Exception) -> int:
    print(f"Error in {operation}: {type(error).__name__}: {error}")
    return 1


def info_command(base: str, scan_frame_headers: bool = False, swap_bytes: Optional[bool] = None):
    """Print summary information about an acquisition"""
    print(f"Analyzing Merlin acquisition: {base}")
    print("=" * 50)

    try:
        with MerlinReader(base, scan_frame_headers=scan_frame_headers,
                          swap_bytes=swap_bytes) as reader:
            info = reader.summary()
    except (MerlinError, OSError) as e:
        return _report("info", e)

    print(f"Time stamp: {info['timestamp']}")
    print(f"Data files: {info['n_files']}")
    print(f"Frames: {info['n_frames']} (header declares {info['n_frames_declared']})")
    columns, rows = info['scan_shape']
    print(f"Scan grid: {columns} x {rows} scan points")
    columns, rows = info['frame_shape']
    print(f"Frame size: {columns} x {rows} pixels, {info['bits_per_pixel']} bits")
    print(f"Chips: {info['n_chips']} (select 0x{info['chip_select']:x}), layout '{info['sensor_layout']}'")
    print(f"Dwell time: {info['dwell']:g} s")
    print(f"Frame header: {info['frame_header_bytes']} bytes, data: {info['frame_data_bytes']} bytes")
    print(f"Byte swap: {'on' if info['swap_bytes'] else 'off'}")
    return 0


def config_from_args(args: argparse.Namespace, operation: str) -> RunConfig:
    """Build a single-operation RunConfig from command-line options"""
    config = RunConfig(
        input=args.input,
        output=args.output,
        scan_frame_headers=args.scan_frame_headers,
        swap_bytes=args.swap,
        operations=[operation],
        n_workers=args.workers,
        verbose=not args.quiet,
    )
    if args.scan_shape:
        config.scan_shape = parse_scan_shape(args.scan_shape)
    if args.roi:
        config.roi = parse_scan_roi(args.roi)
    if args.origin:
        config.origin = parse_origin(args.origin)
    if args.sampling:
        config.sampling = parse_sampling(args.sampling)
    if args.annular_range:
        config.annular_range = parse_annular_range(args.annular_range)
    config.defect_mask = args.defect_mask
    config.defect_list = args.defect_list
    config.defect_pixels = [parse_pixel(p) for p in args.defect_pixel]
    config.gain = args.gain
    return config


def process_command(args: argparse.Namespace) -> int:
    """Run one processing operation"""
    operation = COMMAND_OPERATIONS[args.command]
    try:
        config = config_from_args(args, operation)
        done = run_config(config)
    except (MerlinError, OSError) as e:
        return _report(operation, e)

    if not args.quiet:
        print(f"{operation} finished: {done[operation]}")
    return 0


def run_command(config_file: str, quiet: bool = False) -> int:
    """Run the operations of a TOML configuration file"""
    try:
        config = load_config(config_file)
        if quiet:
            config.verbose = False
        done = run_config(config)
    except (MerlinError, OSError) as e:
        return _report(f"run {config_file}", e)

    if not quiet:
        for op, output in done.items():
            print(f"{op}: {output}")
    return 0


def _add_reader_options(parser: argparse.ArgumentParser):
    parser.add_argument('--scan-frame-headers', action='store_true',
                        help='Decode and verify every frame header while indexing')
    parser.add_argument('--swap', dest='swap', action='store_true', default=None,
                        help='Byte-swap pixel data (default: swap on little-endian hosts)')
    parser.add_argument('--no-swap', dest='swap', action='store_false',
                        help='Do not byte-swap pixel data')


def main(argv: Optional[List[str]] = None):
    """Main command-line interface"""
    parser = argparse.ArgumentParser(
        description="Merlin Reader - decoder for Merlin pixel detector acquisitions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  merlinreader info data/scan01                         # Show acquisition summary
  merlinreader average data/scan01 -o out/scan01        # Average and sdev frames
  merlinreader com data/scan01 -o out/com --origin 128,128 --annular-range 10,40
  merlinreader extract data/scan01 -o out/roi.bin --roi 0,0,31,31
  merlinreader run batch.toml                           # Run a TOML batch
        """
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Info command
    info_parser = subparsers.add_parser('info', help='Show acquisition information')
    info_parser.add_argument('input', help='Acquisition base name or header file')
    _add_reader_options(info_parser)

    # Processing commands share their options
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('input', help='Acquisition base name or header file')
    common.add_argument('--output', '-o', required=True, help='Output file name (prefix)')
    _add_reader_options(common)
    common.add_argument('--scan-shape', help='Scan grid "columns,rows"')
    common.add_argument('--roi', help='Scan ROI "x0,y0,x1,y1" (inclusive)')
    common.add_argument('--origin', help='Frame calibration origin "x,y" in pixels')
    common.add_argument('--sampling', help='Frame sampling "a0x,a1x,a0y,a1y"')
    common.add_argument('--annular-range', help='Annular detector range "min,max"')
    common.add_argument('--defect-mask', help='Defect mask file (int32)')
    common.add_argument('--defect-list', help='Defect list file ("x,y" per line)')
    common.add_argument('--defect-pixel', action='append', default=[],
                        help='Defect pixel "x,y" (repeatable)')
    common.add_argument('--gain', help='Gain correction file (float32)')
    common.add_argument('--workers', type=int, default=1,
                        help='Worker threads for integrate/com (default: 1)')
    common.add_argument('--quiet', '-q', action='store_true', help='No progress output')

    subparsers.add_parser('extract', parents=[common], help='Extract raw frames in the scan ROI')
    subparsers.add_parser('average', parents=[common], help='Average frames in the scan ROI')
    subparsers.add_parser('integrate', parents=[common], help='Integrate the annular detector')
    subparsers.add_parser('com', parents=[common], help='Annular centre of mass')

    # Run command
    run_parser = subparsers.add_parser('run', help='Run a TOML batch configuration')
    run_parser.add_argument('config', help='TOML configuration file')
    run_parser.add_argument('--quiet', '-q', action='store_true', help='No progress output')

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    # Dispatch to command functions
    if args.command == 'info':
        return info_command(args.input, args.scan_frame_headers, args.swap)

    elif args.command in COMMAND_OPERATIONS:
        return process_command(args)

    elif args.command == 'run':
        return run_command(args.config, args.quiet)

    else:
        print(f"Unknown command: {args.command}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
