#!/usr/bin/env python3
"""
Example usage of the Merlin Reader package.

Usage:
    python example_usage.py data/scan01 [output_prefix]
"""

import sys

import numpy as np

from merlinreader import MerlinReader, average_frames, center_of_mass


def example_inspect(base: str):
    """Example: Inspect an acquisition and decode one frame"""
    print("=== Example: Inspecting an acquisition ===")

    with MerlinReader(base) as reader:
        columns, rows = reader.scan_shape
        print(f"Frames: {reader.n_frames} on a {columns} x {rows} scan grid")
        print(f"Frame shape: {reader.frame_shape}")

        frame = reader.decode_frame(0).reshape(reader.frame_shape)
        print(f"Frame 0: min={frame.min():.0f} max={frame.max():.0f} sum={frame.sum():.0f}")


def example_center_of_mass(base: str, output: str):
    """Example: Average frame and annular centre of mass"""
    print("=== Example: Average frame and centre of mass ===")

    with MerlinReader(base) as reader:
        mean, _ = average_frames(reader, output)
        rows, columns = reader.frame_shape
        # centre the detector on the brightest pixel of the average frame
        peak = int(np.argmax(mean))
        reader.set_origin(peak % columns, peak // columns)
        reader.set_annular_range(0.0, min(rows, columns) / 4)
        sums, com_x, com_y = center_of_mass(reader, output, n_workers=4)
        print(f"Mean signal: {sums.mean():.1f}")
        print(f"Centre of mass spread: x={com_x.std():.3f} y={com_y.std():.3f}")


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)
    base = sys.argv[1]
    output = sys.argv[2] if len(sys.argv) > 2 else "merlin_example"
    example_inspect(base)
    example_center_of_mass(base, output)
