"""
Merlin Reader Package

A Python library for decoding Merlin pixel detector acquisitions
(a global ``.hdr`` text header plus numbered ``.mib`` data files).
Provides essential functionality for:
- Frame header decoding and multi-file frame indexing
- Pixel data decoding (8/16/32 bit, optional byte swap)
- Gain and defect pixel correction
- Annular virtual detector signal and centre of mass
"""

__version__ = "0.1.0"

from .errors import (
    MerlinError, InvalidArgument, StreamFailure, MissingStream, StreamNotReadable,
    RepositionFailed, ReadFailed, WriteFailed, EndOfStream, FormatError,
    UnsupportedHeaderSize, TruncatedHeader, InconsistentFrameHeader,
    UnsupportedPixelDepth, MissingFrames, NoFramesFound, GeometryError,
    StateError, ShapeMismatch, StaleDefectCache
)
from .header import AcquisitionHeader, load_header, parse_header_lines
from .binary_format import (
    FrameHeaderTemplate, PixelDepth, read_frame_header, read_frame_header_param
)
from .frame_index import FrameIndex, build_frame_index
from .data_types import decode_pixel_data, read_frame_data
from .geometry import (
    Position, FramePixel, FrameCalibration, AnnularRange, ScanROI,
    scan_pixel, frame_index_at, frame_pixel, frame_pixel_index, frame_coordinates
)
from .calibration import (
    GainCorrectionMap, DefectCorrectionEntry, DefectCorrectionList, DetectorCalibrator
)
from .virtual_detector import (
    AnnularDetector, build_annular_mask, sum_masked, center_of_mass_masked
)
from .reader import MerlinReader
from .config import RunConfig, load_config, read_param
from .processing import (
    extract_frames, average_frames, integrate_annular_range, center_of_mass, run_config
)

__all__ = [
    'MerlinError',
    'InvalidArgument',
    'StreamFailure',
    'MissingStream',
    'StreamNotReadable',
    'RepositionFailed',
    'ReadFailed',
    'WriteFailed',
    'EndOfStream',
    'FormatError',
    'UnsupportedHeaderSize',
    'TruncatedHeader',
    'InconsistentFrameHeader',
    'UnsupportedPixelDepth',
    'MissingFrames',
    'NoFramesFound',
    'GeometryError',
    'StateError',
    'ShapeMismatch',
    'StaleDefectCache',
    'AcquisitionHeader',
    'load_header',
    'parse_header_lines',
    'FrameHeaderTemplate',
    'PixelDepth',
    'read_frame_header',
    'read_frame_header_param',
    'FrameIndex',
    'build_frame_index',
    'decode_pixel_data',
    'read_frame_data',
    'Position',
    'FramePixel',
    'FrameCalibration',
    'AnnularRange',
    'ScanROI',
    'scan_pixel',
    'frame_index_at',
    'frame_pixel',
    'frame_pixel_index',
    'frame_coordinates',
    'GainCorrectionMap',
    'DefectCorrectionEntry',
    'DefectCorrectionList',
    'DetectorCalibrator',
    'AnnularDetector',
    'build_annular_mask',
    'sum_masked',
    'center_of_mass_masked',
    'MerlinReader',
    'RunConfig',
    'load_config',
    'read_param',
    'extract_frames',
    'average_frames',
    'integrate_annular_range',
    'center_of_mass',
    'run_config',
]
