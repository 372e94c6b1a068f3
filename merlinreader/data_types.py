"""
Pixel data decoding for Merlin frames.

Converts the raw pixel payload of one frame into a flat float64 buffer of
columns * rows values (row-major). Merlin writes big-endian integers, so on
little-endian hosts the bytes of 16 and 32 bit pixels have to be swapped.
"""

import sys
from typing import BinaryIO, Optional, TYPE_CHECKING

import numpy as np

from .binary_format import FrameHeaderTemplate, PixelDepth
from .errors import GeometryError, ReadFailed, RepositionFailed

if TYPE_CHECKING:
    from numpy.typing import NDArray


def host_needs_swap() -> bool:
    """True if big-endian detector data must be byte-swapped on this host"""
    return sys.byteorder == "little"


def pixel_dtype(bits: int, swap_bytes: bool = False) -> np.dtype:
    """
    Numpy dtype for raw pixel integers.

    Args:
        bits: Bits per pixel (8, 16 or 32)
        swap_bytes: Reverse the byte order relative to the host

    Raises:
        UnsupportedPixelDepth: for other widths
    """
    dtype = PixelDepth.from_bits(bits).dtype
    if swap_bytes and dtype.itemsize > 1:
        dtype = dtype.newbyteorder()
    return dtype


def decode_pixel_data(raw: bytes, template: FrameHeaderTemplate,
                      swap_bytes: bool = False,
                      out: Optional['NDArray'] = None) -> 'NDArray':
    """
    Decode raw pixel bytes to float64.

    Args:
        raw: Pixel payload, at least columns * rows * bits / 8 bytes
        template: Frame header giving geometry and bits per pixel
        swap_bytes: Reverse the byte order of every multi-byte pixel
        out: Optional float64 buffer of columns * rows items to fill

    Returns:
        1D float64 array of columns * rows values

    Raises:
        GeometryError: frame has no pixels
        UnsupportedPixelDepth: bits per pixel not 8, 16 or 32
        ReadFailed: raw holds fewer bytes than needed
    """
    n_pixels = template.n_pixels
    if n_pixels <= 0:
        raise GeometryError(f"Invalid frame size {template.n_columns}x{template.n_rows}")
    dtype = pixel_dtype(template.n_bpi, swap_bytes)
    n_bytes = n_pixels * dtype.itemsize
    if len(raw) < n_bytes:
        raise ReadFailed(f"Pixel data too short: {len(raw)} < {n_bytes} bytes")

    pixels = np.frombuffer(raw, dtype=dtype, count=n_pixels)
    if out is None:
        return pixels.astype(np.float64)
    if out.shape != (n_pixels,):
        raise GeometryError(f"Output buffer shape {out.shape} != ({n_pixels},)")
    out[:] = pixels
    return out


def read_frame_data(stream: BinaryIO, offset: int, n_data_bytes: int,
                    template: FrameHeaderTemplate, swap_bytes: bool = False,
                    out: Optional['NDArray'] = None) -> 'NDArray':
    """
    Read and decode one frame's pixel payload.

    Args:
        stream: Data file opened in binary mode
        offset: Byte offset of the pixel payload
        n_data_bytes: Payload size in bytes
        template: Frame header template
        swap_bytes: Byte-swap multi-byte pixels

    Returns:
        1D float64 array of columns * rows values
    """
    raw = read_frame_bytes(stream, offset, n_data_bytes)
    return decode_pixel_data(raw, template, swap_bytes, out)


def read_frame_bytes(stream: BinaryIO, offset: int, n_data_bytes: int) -> bytes:
    """Read exactly n_data_bytes raw bytes from offset"""
    try:
        stream.seek(offset)
    except (OSError, ValueError) as e:
        raise RepositionFailed(f"Failed to seek to byte {offset}: {e}") from e
    raw = stream.read(n_data_bytes)
    if len(raw) < n_data_bytes:
        raise ReadFailed(f"Read {len(raw)} of {n_data_bytes} bytes at offset {offset}")
    return raw
