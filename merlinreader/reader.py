"""
Merlin acquisition reader.

Provides the MerlinReader session object, which owns everything needed to
decode and correct frames of one acquisition: global header, frame index,
frame header template, calibration, scan ROI and corrections.
"""

import warnings
from typing import BinaryIO, Dict, Iterable, Iterator, Optional, Tuple, TYPE_CHECKING

from .binary_format import FrameHeaderTemplate
from .calibration import DefectCorrectionList, DetectorCalibrator, GainCorrectionMap
from .data_types import decode_pixel_data, host_needs_swap, read_frame_bytes
from .errors import GeometryError, StateError
from .frame_index import (
    DATA_EXTENSION, HEADER_EXTENSION, FrameIndex, open_data_file,
    build_frame_index, data_file_path, header_file_path
)
from .geometry import (
    AnnularRange, FrameCalibration, FramePixel, Position, ScanROI,
    frame_index_at, roi_frames, scan_pixel
)
from .header import AcquisitionHeader, load_header
from .virtual_detector import AnnularDetector, build_annular_mask

if TYPE_CHECKING:
    from numpy.typing import NDArray


def acquisition_base(path: str, header_extension: str = HEADER_EXTENSION) -> str:
    """Strip a trailing header extension, so "scan.hdr" and "scan" both work"""
    suffix = "." + header_extension
    if path.endswith(suffix):
        return path[:-len(suffix)]
    return path


class FrameFiles:
    """
    Lazily opened data file handles of one acquisition.

    Handles keep a seek position, so each thread needs its own FrameFiles.
    """

    def __init__(self, base: str, extension: str = DATA_EXTENSION):
        self.base = base
        self.extension = extension
        self._handles: Dict[int, BinaryIO] = {}

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def get(self, file_index: int) -> BinaryIO:
        fin = self._handles.get(file_index)
        if fin is None:
            fin = open_data_file(data_file_path(self.base, file_index, self.extension))
            self._handles[file_index] = fin
        return fin

    def close(self):
        for fin in self._handles.values():
            fin.close()
        self._handles.clear()


class MerlinReader:
    """
    Session for one Merlin acquisition.

    Usage:
        with MerlinReader('data/scan01') as reader:
            reader.set_annular_range(2.0, 8.0)
            reader.prepare_corrections()
            for frame, buf in reader.iter_roi_frames():
                ...
    """

    def __init__(self, base: str, extension: str = DATA_EXTENSION,
                 header_extension: str = HEADER_EXTENSION,
                 scan_frame_headers: bool = False,
                 swap_bytes: Optional[bool] = None):
        """
        Initialize the session. Nothing is read until open().

        Args:
            base: Acquisition base name, data files are <base>1.mib, ...
            extension: Data file extension
            header_extension: Global header file extension
            scan_frame_headers: Verify every frame header while indexing
            swap_bytes: Byte-swap pixel data; None swaps on little-endian hosts
        """
        self.base = acquisition_base(base, header_extension)
        self.extension = extension
        self.header_extension = header_extension
        self.scan_frame_headers = scan_frame_headers
        self.swap_bytes = host_needs_swap() if swap_bytes is None else bool(swap_bytes)

        self.header: Optional[AcquisitionHeader] = None
        self.template: Optional[FrameHeaderTemplate] = None
        self.index: Optional[FrameIndex] = None

        self.calibration = FrameCalibration()
        self.annular_range = AnnularRange()
        self.roi: Optional[ScanROI] = None
        self.defects: Optional[DefectCorrectionList] = None
        self.gain: Optional[GainCorrectionMap] = None

        self._files = FrameFiles(self.base, extension)

    def __enter__(self):
        """Context manager entry"""
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit"""
        self.close()

    def open(self) -> "MerlinReader":
        """
        Load the global header and build the frame index.

        Raises:
            MissingStream: header file not found
            NoFramesFound, MissingFrames, InconsistentFrameHeader: see build_frame_index()
        """
        if self.is_open:
            return self
        header = load_header(header_file_path(self.base, self.header_extension))
        index, template = build_frame_index(self.base, header, self.scan_frame_headers,
                                            self.extension)
        self.header = header
        self.index = index
        self.template = template

        if header.n_columns > 0 and header.n_rows <= 0 and len(index) > 0:
            warnings.warn(f"Scan rows could not be derived from {header.n_frames} frames "
                          f"and {header.n_columns} frames per trigger; use set_scan_shape()")
        self._reset_roi()
        if template.n_pixels > 0:
            self.defects = DefectCorrectionList(template.n_columns, template.n_rows)
        return self

    def close(self):
        """Close all data file handles"""
        self._files.close()

    @property
    def is_open(self) -> bool:
        return self.index is not None

    def _require_open(self):
        if not self.is_open:
            raise StateError(f"Acquisition {self.base} is not open; call open() first")

    def _reset_roi(self):
        if self.header.n_columns > 0 and self.header.n_rows > 0:
            self.roi = ScanROI.full(self.header.n_columns, self.header.n_rows)
        else:
            self.roi = None

    # Geometry ------------------------------------------------------------

    @property
    def n_frames(self) -> int:
        self._require_open()
        return len(self.index)

    @property
    def frame_shape(self) -> Tuple[int, int]:
        """(rows, columns) of one frame"""
        self._require_open()
        return self.template.shape

    @property
    def n_frame_pixels(self) -> int:
        self._require_open()
        return self.template.n_pixels

    @property
    def scan_shape(self) -> Tuple[int, int]:
        """(columns, rows) of the scan grid"""
        self._require_open()
        return self.header.n_columns, self.header.n_rows

    def set_scan_shape(self, columns: int, rows: int):
        """Override the scan grid; the ROI is reset to the full grid"""
        self._require_open()
        if columns <= 0 or rows <= 0:
            raise GeometryError(f"Invalid scan grid {columns}x{rows}")
        self.header.set_scan_shape(columns, rows)
        self._reset_roi()

    def scan_pixel(self, frame: int) -> FramePixel:
        self._require_open()
        return scan_pixel(frame, self.header.n_columns, self.header.n_rows)

    def frame_index_at(self, x: int, y: int) -> int:
        self._require_open()
        return frame_index_at(x, y, self.header.n_columns, self.header.n_rows)

    def set_scan_roi(self, x0: int, y0: int, x1: int, y1: int):
        """
        Restrict processing to a rectangle of the scan grid (bounds inclusive).

        Raises:
            GeometryError: negative origin or inverted bounds
        """
        self._require_open()
        roi = ScanROI(x0, y0, x1, y1)
        roi.validate(self.header.n_columns, self.header.n_rows)
        self.roi = roi

    def roi_frames(self) -> 'NDArray':
        """Global frame numbers inside the scan ROI"""
        self._require_open()
        if self.roi is None:
            raise GeometryError(f"Scan grid {self.header.n_columns}x{self.header.n_rows} "
                                "is undefined; use set_scan_shape()")
        return roi_frames(self.roi, self.n_frames, self.header.n_columns, self.header.n_rows)

    def set_origin(self, x: float, y: float):
        self.calibration.offset = Position(float(x), float(y))

    def set_sampling(self, a0: Position, a1: Position):
        self.calibration.a0 = Position(*a0)
        self.calibration.a1 = Position(*a1)

    def set_annular_range(self, rmin: float, rmax: float):
        self.annular_range = AnnularRange(float(rmin), float(rmax))

    def annular_detector(self) -> AnnularDetector:
        """Annular detector for the current calibration and range"""
        rows, columns = self.frame_shape
        return build_annular_mask(self.calibration, self.annular_range, columns, rows)

    # Frame access --------------------------------------------------------

    def frame_filepos(self, frame: int) -> Tuple[int, int]:
        """(file index, payload byte offset) of a global frame"""
        self._require_open()
        return self.index.locate(frame)

    def read_frame_raw(self, frame: int, files: Optional[FrameFiles] = None) -> bytes:
        """Undecoded pixel payload of a global frame"""
        file_index, offset = self.frame_filepos(frame)
        fin = (files or self._files).get(file_index)
        return read_frame_bytes(fin, offset, self.header.n_data_bytes)

    def decode_frame(self, frame: int, out: Optional['NDArray'] = None,
                     files: Optional[FrameFiles] = None) -> 'NDArray':
        """
        Decode a global frame to a flat float64 buffer.

        Args:
            frame: Global frame number
            out: Optional buffer of n_frame_pixels float64 values to fill
            files: File handles to read with; the session's own if None

        Returns:
            1D float64 array, row-major frame pixels
        """
        raw = self.read_frame_raw(frame, files)
        return decode_pixel_data(raw, self.template, self.swap_bytes, out)

    def iter_frames(self, frames: Iterable[int], correct: bool = True,
                    files: Optional[FrameFiles] = None) -> Iterator[Tuple[int, 'NDArray']]:
        """Yield (frame, buffer) for the given global frames, optionally corrected"""
        if correct:
            self.prepare_corrections()
        for frame in frames:
            buf = self.decode_frame(int(frame), files=files)
            if correct:
                self.correct(buf)
            yield int(frame), buf

    def iter_roi_frames(self, correct: bool = True) -> Iterator[Tuple[int, 'NDArray']]:
        """Yield (frame, buffer) for every frame in the scan ROI"""
        return self.iter_frames(self.roi_frames(), correct)

    # Corrections ---------------------------------------------------------

    def _require_defects(self) -> DefectCorrectionList:
        self._require_open()
        if self.defects is None:
            raise GeometryError("Frame has no pixels; defects cannot be registered")
        return self.defects

    def set_defect_pixel(self, x: int, y: int) -> bool:
        return self._require_defects().set_defect_pixel(x, y)

    def unset_defect_pixel(self, x: int, y: int) -> bool:
        return self._require_defects().unset_defect_pixel(x, y)

    def unset_defect_list(self):
        """Remove all defect pixels"""
        if self.defects is not None:
            self.defects.clear()

    def set_defect_mask(self, path: str) -> int:
        return self._require_defects().load_mask(path)

    def set_defect_list(self, path: str) -> int:
        return self._require_defects().load_list(path)

    def set_gain_correction(self, path: str):
        """Load a gain map, replacing any previous one"""
        self._require_open()
        self.gain = GainCorrectionMap.from_file(path, self.template.n_pixels)

    def unset_gain_correction(self):
        self.gain = None

    @property
    def calibrator(self) -> DetectorCalibrator:
        return DetectorCalibrator(self.gain, self.defects)

    def prepare_corrections(self):
        """Refresh the defect neighbour cache if the defect set changed"""
        if self.defects is not None and self.defects.is_modified:
            self.defects.update_defect_correction_list()

    def correct(self, buf: 'NDArray') -> 'NDArray':
        """Apply gain and defect correction to a frame buffer in place"""
        return self.calibrator.calibrate(buf)

    # Info ----------------------------------------------------------------

    def summary(self) -> Dict[str, object]:
        """Acquisition summary for display"""
        self._require_open()
        t = self.template
        return {
            "base": self.base,
            "timestamp": self.header.timestamp,
            "n_frames_declared": self.header.n_frames,
            "n_frames": len(self.index),
            "n_files": self.header.n_files,
            "scan_shape": self.scan_shape,
            "frame_shape": (t.n_columns, t.n_rows),
            "bits_per_pixel": t.n_bpi,
            "n_chips": t.n_chips,
            "chip_select": t.n_chip_select,
            "sensor_layout": t.sensor_layout,
            "dwell": t.dwell,
            "frame_header_bytes": self.header.n_fhdr_bytes,
            "frame_data_bytes": self.header.n_data_bytes,
            "swap_bytes": self.swap_bytes,
        }
