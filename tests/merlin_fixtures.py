"""
Synthetic Merlin acquisitions for the test suite.

Writes a global header file and numbered data files with real
comma-separated frame headers and big-endian pixel data.
"""

import os
from typing import Dict, List, Optional

import numpy as np

FRAME_HEADER_SIZE = 384
BIG_ENDIAN_DTYPES = {"U08": ">u1", "U16": ">u2", "U32": ">u4"}


def make_frame_header(seq: int, columns: int = 8, rows: int = 6, depth: str = "U16",
                      size: int = FRAME_HEADER_SIZE, header_id: str = "MQ1") -> bytes:
    """Frame header bytes for 1-based sequence number seq, NUL padded to size"""
    fields = [
        header_id, f"{seq:06d}", f"{size:05d}", "01",
        f"{columns:04d}", f"{rows:04d}", depth, "   1x1", "FF",
        "2024-01-01 12:00:00.000000", "0.001000",
        "00000001", "00", "00", "1.000000E+1", "5.110000E+2",
    ]
    text = ",".join(fields).encode("ascii")
    return text + b"\x00" * max(max(size, 128) - len(text), 0)


def frame_pixels(seq: int, columns: int = 8, rows: int = 6) -> np.ndarray:
    """Deterministic pixel values of the frame with 1-based sequence number seq"""
    return (seq * 7 + np.arange(columns * rows)) % 251


def write_data_file(path: str, seqs: List[int], columns: int = 8, rows: int = 6,
                    depth: str = "U16", size: int = FRAME_HEADER_SIZE,
                    header_columns: Optional[Dict[int, int]] = None) -> None:
    """
    Write frames with the given 1-based sequence numbers.

    header_columns maps a sequence number to a column count written into
    its header only, leaving the pixel data size unchanged.
    """
    header_columns = header_columns or {}
    with open(path, "wb") as f:
        for seq in seqs:
            f.write(make_frame_header(seq, header_columns.get(seq, columns), rows, depth, size))
            f.write(frame_pixels(seq, columns, rows).astype(BIG_ENDIAN_DTYPES[depth]).tobytes())


def write_header_file(path: str, n_frames: int, frames_per_trigger: int,
                      extra_lines: Optional[List[str]] = None) -> None:
    lines = [
        "HDR,\t",
        "Time and Date Stamp (yr, mnth, day, hr, min, s):\t01/01/2024 12:00:00",
        "Chip ID:\tW530_L8,-,-,-",
        f"Frames in Acquisition (Number):\t{n_frames}",
        f"Frames per Trigger (Number):\t{frames_per_trigger}",
        "Counter Depth (number):\t12",
    ]
    lines += extra_lines or []
    lines.append("End\t")
    with open(path, "w") as f:
        f.write("\n".join(lines) + "\n")


def make_acquisition(directory: str, files: List[List[int]], n_frames: int,
                     frames_per_trigger: int, columns: int = 8, rows: int = 6,
                     depth: str = "U16", name: str = "scan",
                     header_columns: Optional[Dict[int, int]] = None) -> str:
    """
    Write <name>.hdr and <name>1.mib, <name>2.mib, ... into directory.

    Args:
        files: 1-based sequence numbers of the frames in each data file

    Returns:
        Acquisition base name
    """
    base = os.path.join(directory, name)
    write_header_file(base + ".hdr", n_frames, frames_per_trigger)
    for i, seqs in enumerate(files):
        write_data_file(f"{base}{i + 1}.mib", seqs, columns, rows, depth,
                        header_columns=header_columns)
    return base


def frame_stride(columns: int = 8, rows: int = 6, bits: int = 16,
                 size: int = FRAME_HEADER_SIZE) -> int:
    return size + columns * rows * bits // 8
