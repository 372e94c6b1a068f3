"""
Frame header format definitions and parsing for Merlin ``.mib`` files.

Each frame in a data file is a block of (header bytes, pixel data bytes).
The header is a comma-separated ASCII parameter list:

    MQ1,000001,00384,01,0256,0256,U16,   1x1,01,2019-05-01 12:00:00.000000,0.001000,...

- 1: header id (string)
- 2: acquisition sequence number, 1-based
- 3: header length in bytes
- 4: number of chips
- 5, 6: pixel columns, pixel rows
- 7: pixel depth (e.g. "U08", "U16", "U32")
- 8: sensor layout
- 9: chip select bit mask (hex)
- 10: frame time stamp
- 11: shutter open (dwell) time in seconds
- 12+: counter, colour mode, gain mode, thresholds, DAC block, extensions,
  padding. These are not parsed.

Because the true header length is itself a field, headers are read in two
phases: a fixed-size prefix gives id, sequence number and length, then the
full header is re-read from the same start position.
"""

import re
from enum import IntEnum
from typing import BinaryIO, NamedTuple, Tuple

import numpy as np

from .errors import (
    EndOfStream, RepositionFailed, StreamFailure, TruncatedHeader,
    UnsupportedHeaderSize, UnsupportedPixelDepth
)

FRAME_HEADER_PREFIX_SIZE = 128   # always contains fields 1-3
FRAME_HEADER_SIZE_MAX = 2048
FIELD_SEPARATOR = ","

_INT_RE = re.compile(r"\s*([+-]?\d+)")
_FLOAT_RE = re.compile(r"\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")
_HEX_RE = re.compile(r"\s*(?:0[xX])?([0-9a-fA-F]+)")


class PixelDepth(IntEnum):
    """Supported integer widths of pixel data"""
    U8 = 8
    U16 = 16
    U32 = 32

    @property
    def dtype(self) -> np.dtype:
        """Native-order unsigned numpy dtype for this width"""
        return np.dtype({8: np.uint8, 16: np.uint16, 32: np.uint32}[self.value])

    @classmethod
    def from_bits(cls, bits: int) -> "PixelDepth":
        try:
            return cls(bits)
        except ValueError:
            raise UnsupportedPixelDepth(f"Unsupported pixel depth: {bits} bits") from None


class FrameHeaderTemplate(NamedTuple):
    """
    Decoded frame header.

    The first header of an acquisition serves as the template for the
    geometry of every other frame.
    """
    n_size: int = 0            # header size in bytes
    n_columns: int = 0         # pixel columns
    n_rows: int = 0            # pixel rows
    i_seq: int = 0             # zero-based acquisition sequence index
    n_chips: int = 0
    n_bpi: int = 16            # bits per pixel
    n_chip_select: int = 0     # chip select bits, LSB is first chip
    dwell: float = 0.0         # dwell time in seconds
    sensor_layout: str = ""
    header_id: str = ""
    timestamp: str = ""

    @property
    def n_pixels(self) -> int:
        return self.n_columns * self.n_rows

    @property
    def n_data_bytes(self) -> int:
        """Pixel payload size in bytes"""
        return (self.n_columns * self.n_rows * self.n_bpi) >> 3

    @property
    def shape(self) -> Tuple[int, int]:
        """(rows, columns)"""
        return (self.n_rows, self.n_columns)

    def is_consistent_with(self, other: "FrameHeaderTemplate") -> bool:
        """Check the fields that determine header and data size"""
        return (self.n_size == other.n_size and
                self.n_bpi == other.n_bpi and
                self.n_columns == other.n_columns and
                self.n_rows == other.n_rows)


# Number parsing with C-library semantics: leading whitespace is skipped,
# trailing garbage is ignored and unparsable input yields zero.

def parse_int(text: str) -> int:
    match = _INT_RE.match(text)
    return int(match.group(1)) if match else 0


def parse_float(text: str) -> float:
    match = _FLOAT_RE.match(text)
    return float(match.group(1)) if match else 0.0


def parse_hex(text: str) -> int:
    match = _HEX_RE.match(text)
    return int(match.group(1), 16) if match else 0


def read_frame_header_param(text: str, pos: int = 0) -> Tuple[int, str]:
    """
    Get the next comma-delimited parameter of a frame header string.

    Args:
        text: Header string
        pos: Position of the first character of the parameter

    Returns:
        (next_pos, value): position of the next parameter (or len(text) at
        the end of the string) and the parameter text. Parameters of one
        character or less give an empty value but are still skipped.
    """
    start = max(pos, 0)
    end = len(text)
    cur = start
    while cur < end and text[cur] != FIELD_SEPARATOR:
        cur += 1
    value = text[start:cur] if cur - start > 1 else ""
    while cur < end and text[cur] == FIELD_SEPARATOR:
        cur += 1
    return cur, value


def header_text(buf: bytes) -> str:
    """Header bytes as a string, cut at the first NUL byte"""
    return buf.split(b"\x00", 1)[0].decode("ascii", errors="replace")


def _next_field(text: str, pos: int, limit: int, name: str) -> Tuple[int, str]:
    pos, value = read_frame_header_param(text, pos)
    if pos >= limit:
        raise TruncatedHeader(f"Frame header field '{name}' at or beyond header end ({limit})")
    return pos, value


def _seek(stream: BinaryIO, pos: int) -> None:
    try:
        stream.seek(pos)
    except (OSError, ValueError) as e:
        raise RepositionFailed(f"Failed to seek to byte {pos}: {e}") from e


def parse_frame_header_prefix(buf: bytes) -> Tuple[str, int, int, int]:
    """
    Parse the fixed-size header prefix.

    Returns:
        (header_id, zero-based sequence index, declared header size, next_pos)
    """
    text = header_text(buf)
    limit = min(len(buf), len(text))
    pos, header_id = _next_field(text, 0, limit, "header id")
    pos, seq = _next_field(text, pos, limit, "sequence number")
    pos, size = _next_field(text, pos, limit, "header size")
    return header_id, parse_int(seq) - 1, parse_int(size), pos


def parse_frame_header_fields(buf: bytes, pos: int, header_id: str,
                              i_seq: int, n_size: int) -> FrameHeaderTemplate:
    """
    Parse fields 4-11 from the full header buffer, continuing at pos.
    """
    text = header_text(buf)
    limit = min(n_size, len(text))
    pos, chips = _next_field(text, pos, limit, "chip count")
    pos, columns = _next_field(text, pos, limit, "pixel columns")
    pos, rows = _next_field(text, pos, limit, "pixel rows")
    pos, depth = _next_field(text, pos, limit, "pixel depth")
    pos, layout = _next_field(text, pos, limit, "sensor layout")
    pos, chip_select = _next_field(text, pos, limit, "chip select")
    pos, timestamp = _next_field(text, pos, limit, "timestamp")
    pos, dwell = _next_field(text, pos, limit, "dwell time")
    return FrameHeaderTemplate(
        n_size=n_size,
        n_columns=parse_int(columns),
        n_rows=parse_int(rows),
        i_seq=i_seq,
        n_chips=parse_int(chips),
        n_bpi=parse_int(depth[1:]),
        n_chip_select=parse_hex(chip_select),
        dwell=parse_float(dwell),
        sensor_layout=layout,
        header_id=header_id,
        timestamp=timestamp,
    )


def read_frame_header(stream: BinaryIO) -> FrameHeaderTemplate:
    """
    Read one frame header from the current stream position.

    The stream is left positioned directly after the header, at
    start + declared header length, also when field parsing fails.

    Raises:
        EndOfStream: the stream ends before the header is complete
        TruncatedHeader: a field lies beyond the header
        UnsupportedHeaderSize: declared length <= 0 or > FRAME_HEADER_SIZE_MAX
        RepositionFailed: seeking back or past the header failed
    """
    try:
        start = stream.tell()
    except (OSError, ValueError) as e:
        raise StreamFailure(f"Cannot get stream position: {e}") from e

    prefix = stream.read(FRAME_HEADER_PREFIX_SIZE)
    if len(prefix) < FRAME_HEADER_PREFIX_SIZE:
        raise EndOfStream(f"End of stream at byte {start} while reading frame header")

    header_id, i_seq, n_size, pos = parse_frame_header_prefix(prefix)
    if n_size <= 0 or n_size > FRAME_HEADER_SIZE_MAX:
        raise UnsupportedHeaderSize(f"Unsupported frame header size {n_size} at byte {start}")

    _seek(stream, start)
    buf = stream.read(n_size)
    if len(buf) < n_size:
        raise EndOfStream(f"End of stream at byte {start} within a {n_size} byte frame header")

    try:
        return parse_frame_header_fields(buf, pos, header_id, i_seq, n_size)
    finally:
        _seek(stream, start + n_size)
