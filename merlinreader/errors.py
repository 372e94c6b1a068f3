"""
Exception hierarchy for Merlin acquisition decoding.

Every core operation either returns its result or raises exactly one of the
specific exception classes below. Callers that only care about "did it work"
can catch MerlinError.
"""


class MerlinError(Exception):
    """Base class for all merlinreader errors."""
    pass


# Invalid input ---------------------------------------------------------------

class InvalidArgument(MerlinError, ValueError):
    """Null/unreadable handles, bad sizes or out-of-range indices."""
    pass


# Stream failures -------------------------------------------------------------

class StreamFailure(MerlinError, OSError):
    """Open, seek, read or write failure on a file or stream."""
    pass


class MissingStream(StreamFailure):
    """No input stream or file is available."""
    pass


class StreamNotReadable(StreamFailure):
    """The stream exists but cannot be read."""
    pass


class RepositionFailed(StreamFailure):
    """Seeking to a required stream position failed."""
    pass


class ReadFailed(StreamFailure):
    """Fewer bytes than required could be read."""
    pass


class WriteFailed(StreamFailure):
    """Writing result data failed."""
    pass


class EndOfStream(StreamFailure):
    """The stream ended before a frame header prefix could be read."""
    pass


# Format errors ---------------------------------------------------------------

class FormatError(MerlinError):
    """Content of a header or data file violates the expected format."""
    pass


class UnsupportedHeaderSize(FormatError):
    """Declared frame header length is not positive or exceeds the maximum."""
    pass


class TruncatedHeader(FormatError):
    """A frame header field lies at or beyond the end of the header buffer."""
    pass


class InconsistentFrameHeader(FormatError):
    """A frame header does not match the template or the running sequence."""
    pass


class UnsupportedPixelDepth(FormatError):
    """Bits per pixel other than 8, 16 or 32."""
    pass


class MissingFrames(FormatError):
    """Fewer frames were found than the acquisition header declares."""
    pass


class NoFramesFound(FormatError):
    """No data files or no frames could be indexed."""
    pass


# Geometry / state ------------------------------------------------------------

class GeometryError(MerlinError, ValueError):
    """Zero pixel or frame counts, malformed ROI, positions outside a grid."""
    pass


class StateError(MerlinError):
    """Correction buffers are absent or inconsistent when required."""
    pass


class ShapeMismatch(StateError):
    """A pixel buffer and a correction array differ in size."""
    pass


class StaleDefectCache(StateError):
    """The defect set changed but the neighbour cache was not refreshed."""
    pass
