"""
Test suite for pixel data decoding.
"""

import io
import sys

import numpy as np

from merlinreader.binary_format import FrameHeaderTemplate
from merlinreader.data_types import (
    decode_pixel_data, host_needs_swap, pixel_dtype, read_frame_data
)
from merlinreader.errors import GeometryError, ReadFailed, UnsupportedPixelDepth


def _template(bits, columns=3, rows=2):
    return FrameHeaderTemplate(n_size=384, n_columns=columns, n_rows=rows, n_bpi=bits)


def test_decode_widths():
    """Test decoding of 8, 16 and 32 bit pixels"""
    print("Testing pixel widths...")

    values = np.array([0, 1, 2, 127, 200, 255])
    result = decode_pixel_data(values.astype(np.uint8).tobytes(), _template(8))
    assert result.dtype == np.float64
    assert np.array_equal(result, values)

    values = np.array([0, 1, 258, 4096, 40000, 65535])
    raw = values.astype("=u2").tobytes()
    assert np.array_equal(decode_pixel_data(raw, _template(16)), values)

    values = np.array([0, 1, 65536, 70000, 2 ** 31, 2 ** 32 - 1])
    raw = values.astype("=u4").tobytes()
    assert np.array_equal(decode_pixel_data(raw, _template(32)), values)

    print("✓ Pixel widths")


def test_byte_swap():
    """Test decoding of big-endian detector data"""
    print("Testing byte swap...")

    values = np.array([1, 2, 258, 513, 4660, 65535])
    raw = values.astype(">u2").tobytes()
    swap = host_needs_swap()
    assert np.array_equal(decode_pixel_data(raw, _template(16), swap_bytes=swap), values)

    # swapping reverses the byte order of every pixel
    swapped = decode_pixel_data(raw, _template(16), swap_bytes=not swap)
    assert swapped[0] == 256
    assert swapped[2] == 513

    values = np.array([1, 256, 65536, 16777216, 305419896, 7])
    raw = values.astype(">u4").tobytes()
    assert np.array_equal(decode_pixel_data(raw, _template(32), swap_bytes=swap), values)

    # single bytes are never swapped
    assert pixel_dtype(8, True) == np.dtype(np.uint8)
    assert pixel_dtype(16, True) != pixel_dtype(16, False)

    print("✓ Byte swap")


def test_output_buffer():
    """Test decoding into a caller-owned buffer"""
    print("Testing output buffer...")

    out = np.full(6, -1.0)
    raw = np.arange(6, dtype=np.uint8).tobytes()
    result = decode_pixel_data(raw, _template(8), out=out)
    assert result is out
    assert np.array_equal(out, np.arange(6))

    try:
        decode_pixel_data(raw, _template(8), out=np.zeros(5))
        assert False, "Should have raised GeometryError"
    except GeometryError:
        pass

    print("✓ Output buffer")


def test_decode_errors():
    """Test rejection of unsupported or short data"""
    print("Testing decode errors...")

    try:
        decode_pixel_data(bytes(12), _template(12))
        assert False, "Should have raised UnsupportedPixelDepth"
    except UnsupportedPixelDepth:
        pass

    try:
        decode_pixel_data(bytes(11), _template(16))
        assert False, "Should have raised ReadFailed"
    except ReadFailed:
        pass

    try:
        decode_pixel_data(b"", _template(16, columns=0))
        assert False, "Should have raised GeometryError"
    except GeometryError:
        pass

    print("✓ Decode errors")


def test_read_frame_data():
    """Test reading a payload at a byte offset"""
    print("Testing frame data reading...")

    values = np.array([10, 20, 30, 40, 50, 60])
    stream = io.BytesIO(b"header--" + values.astype(">u2").tobytes())
    result = read_frame_data(stream, 8, 12, _template(16), host_needs_swap())
    assert np.array_equal(result, values)

    try:
        read_frame_data(stream, 10, 12, _template(16))
        assert False, "Should have raised ReadFailed"
    except ReadFailed:
        pass

    print("✓ Frame data reading")


def run_all_data_types_tests():
    """Run all pixel decoding tests"""
    print("Running Pixel Decoding Tests...")
    print()

    try:
        test_decode_widths()
        test_byte_swap()
        test_output_buffer()
        test_decode_errors()
        test_read_frame_data()

        print()
        print("✅ All pixel decoding tests passed!")
        return True

    except Exception as e:
        print(f"\n❌ Pixel decoding test failed: {e}")
        import traceback
        traceback.print_exc()
        return False


if __name__ == "__main__":
    success = run_all_data_types_tests()
    sys.exit(0 if success else 1)
