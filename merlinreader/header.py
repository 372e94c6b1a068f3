"""
Parser for the global Merlin acquisition header (``<base>.hdr``).

The header is a line-oriented ASCII file terminated by a line starting with
"End". Only three fields are used here; all other lines are ignored so that
newer header revisions still parse.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, TextIO, Union

from .binary_format import parse_int
from .errors import MissingStream, StreamNotReadable

# Recognised prefixes and the fixed column where their value starts
TIMESTAMP_PREFIX = "Time and Date Stamp (yr, mnth, day, hr, min, s):"
TIMESTAMP_COLUMN = 49
FRAMES_PREFIX = "Frames in Acquisition (Number):"
FRAMES_COLUMN = 32
FRAMES_PER_TRIGGER_PREFIX = "Frames per Trigger (Number):"
FRAMES_PER_TRIGGER_COLUMN = 29
END_PREFIX = "End"


@dataclass
class AcquisitionHeader:
    """
    Global acquisition parameters.

    The scan grid (columns x rows) is derived from the header file. It may be
    overridden with set_scan_shape() once the real geometry is known. The
    frame header/data byte lengths and the file count are filled in by the
    frame index builder.
    """
    n_frames: int = 0          # frames in acquisition (= columns * rows)
    n_columns: int = 0         # scan columns (frames per trigger)
    n_rows: int = 0            # scan rows, derived
    n_files: int = 0           # number of data files found
    n_fhdr_bytes: int = 0      # frame header length in bytes
    n_data_bytes: int = 0      # frame data length in bytes
    timestamp: str = ""

    @property
    def frame_stride(self) -> int:
        """Bytes from one frame payload to the next within a data file"""
        return self.n_fhdr_bytes + self.n_data_bytes

    @property
    def n_scan_pixels(self) -> int:
        return max(self.n_columns, 0) * max(self.n_rows, 0)

    def set_scan_shape(self, columns: int, rows: int) -> None:
        """Override the derived scan grid."""
        self.n_columns = int(columns)
        self.n_rows = int(rows)


def derive_scan_rows(n_frames: int, n_columns: int, n_rows: int = 0) -> int:
    """
    Derive the number of scan rows from frame count and frames per trigger.

    Returns n_rows unchanged unless frames > 0, frames > columns and
    columns > 0. An incomplete last row counts as a row.
    """
    if n_frames > 0 and n_frames > n_columns and n_columns > 0:
        rows = n_frames // n_columns
        if n_frames % n_columns != 0:
            rows += 1
        return rows
    return n_rows


def parse_header_lines(lines: Iterable[str],
                       header: Optional[AcquisitionHeader] = None) -> AcquisitionHeader:
    """
    Parse header lines up to the terminating "End" line.

    Args:
        lines: Iterable of text lines (line terminators are ignored)
        header: Existing header to update; a new one is created if None

    Returns:
        The updated AcquisitionHeader
    """
    if header is None:
        header = AcquisitionHeader()

    for line in lines:
        line = line.rstrip("\r\n")
        if line.startswith(END_PREFIX):
            break
        if line.startswith(TIMESTAMP_PREFIX):
            header.timestamp = line[TIMESTAMP_COLUMN:].strip()
        elif line.startswith(FRAMES_PREFIX):
            header.n_frames = parse_int(line[FRAMES_COLUMN:])
        elif line.startswith(FRAMES_PER_TRIGGER_PREFIX):
            header.n_columns = parse_int(line[FRAMES_PER_TRIGGER_COLUMN:])

    header.n_rows = derive_scan_rows(header.n_frames, header.n_columns, header.n_rows)
    return header


def load_header(source: Union[str, Path, TextIO, None],
                header: Optional[AcquisitionHeader] = None) -> AcquisitionHeader:
    """
    Load the global acquisition header.

    Args:
        source: Path to the ``.hdr`` file or an open text stream
        header: Existing header to update

    Returns:
        AcquisitionHeader

    Raises:
        MissingStream: source is None or the file does not exist
        StreamNotReadable: the stream cannot be read
    """
    if source is None:
        raise MissingStream("No header stream given")

    if isinstance(source, (str, Path)):
        if not os.path.exists(source):
            raise MissingStream(f"Header file not found: {source}")
        try:
            with open(source, "r", encoding="ascii", errors="replace") as f:
                lines = f.readlines()
        except OSError as e:
            raise StreamNotReadable(f"Cannot read header file {source}: {e}") from e
        return parse_header_lines(lines, header)

    try:
        lines = source.readlines()
    except (OSError, ValueError, UnicodeDecodeError) as e:
        raise StreamNotReadable(f"Cannot read header stream: {e}") from e
    return parse_header_lines(lines, header)
