"""
Scan and frame geometry for Merlin acquisitions.

Two pixel grids are involved:

- the scan grid (columns x rows): one frame per scan position, frames are
  numbered in raster order;
- the frame grid: the detector pixels of a single frame.

Frame pixel positions are mapped to physical (calibrated) coordinates by an
affine frame calibration.
"""

import warnings
from dataclasses import dataclass
from typing import NamedTuple, Optional, Tuple, TYPE_CHECKING

import numpy as np

from .errors import GeometryError

if TYPE_CHECKING:
    from numpy.typing import NDArray


class Position(NamedTuple):
    """2D position in physical units"""
    x: float = 0.0
    y: float = 0.0


class FramePixel(NamedTuple):
    """Integer pixel position within a frame or the scan grid"""
    x: int
    y: int


@dataclass
class FrameCalibration:
    """
    Affine map from frame pixel (x, y) to physical coordinates.

        dx, dy = x - offset.x, y - offset.y
        qx = dx * a0.x + dy * a1.x
        qy = dx * a0.y + dy * a1.y

    a0 and a1 need not be orthogonal.
    """
    offset: Position = Position(0.0, 0.0)   # origin in pixel coordinates
    a0: Position = Position(1.0, 0.0)       # first basis vector
    a1: Position = Position(0.0, 1.0)       # second basis vector

    def position(self, x: float, y: float) -> Position:
        """Calibrated position of frame pixel (x, y)"""
        dx = x - self.offset.x
        dy = y - self.offset.y
        return Position(dx * self.a0.x + dy * self.a1.x,
                        dx * self.a0.y + dy * self.a1.y)

    def transform(self, x: 'NDArray', y: 'NDArray') -> Tuple['NDArray', 'NDArray']:
        """Vectorised position() for coordinate arrays"""
        dx = np.asarray(x, dtype=np.float64) - self.offset.x
        dy = np.asarray(y, dtype=np.float64) - self.offset.y
        return (dx * self.a0.x + dy * self.a1.x,
                dx * self.a0.y + dy * self.a1.y)


@dataclass
class AnnularRange:
    """Radial range [min, max) in physical units; max <= min disables it"""
    min: float = 0.0
    max: float = 0.0

    @property
    def enabled(self) -> bool:
        return self.max > self.min

    def contains(self, radius: float) -> bool:
        return self.min <= radius < self.max


@dataclass
class ScanROI:
    """Rectangular region of the scan grid, bounds inclusive"""
    x0: int = 0
    y0: int = 0
    x1: int = 0
    y1: int = 0

    @classmethod
    def full(cls, columns: int, rows: int) -> "ScanROI":
        """ROI covering the whole scan grid"""
        return cls(0, 0, columns - 1, rows - 1)

    def contains(self, x: int, y: int) -> bool:
        return self.x0 <= x <= self.x1 and self.y0 <= y <= self.y1

    @property
    def shape(self) -> Tuple[int, int]:
        """(columns, rows) of the ROI"""
        return (self.x1 - self.x0 + 1, self.y1 - self.y0 + 1)

    @property
    def size(self) -> int:
        columns, rows = self.shape
        return max(columns, 0) * max(rows, 0)

    def validate(self, columns: int, rows: int) -> None:
        """
        Check the ROI against a scan grid.

        Raises:
            GeometryError: negative origin or inverted bounds
        """
        if self.x0 < 0 or self.y0 < 0:
            raise GeometryError(f"Scan ROI origin ({self.x0},{self.y0}) is negative")
        if self.x1 < self.x0 or self.y1 < self.y0:
            raise GeometryError(f"Scan ROI (({self.x0},{self.y0}),({self.x1},{self.y1})) is inverted")
        if self.x1 >= columns or self.y1 >= rows:
            warnings.warn(f"Scan ROI (({self.x0},{self.y0}),({self.x1},{self.y1})) exceeds "
                          f"the {columns}x{rows} scan grid")


# Scan grid -------------------------------------------------------------------

def scan_pixel(frame: int, columns: int, rows: int) -> FramePixel:
    """
    Scan position (x, y) of a global frame number.

    Raises:
        GeometryError: columns or rows not positive
    """
    if columns <= 0 or rows <= 0:
        raise GeometryError(f"Invalid scan grid {columns}x{rows}")
    x = frame % columns
    y = ((frame - x) // columns) % rows
    return FramePixel(x, y)


def frame_index_at(x: int, y: int, columns: int, rows: int) -> int:
    """
    Global frame number of scan position (x, y).

    Raises:
        GeometryError: invalid grid or position outside it
    """
    if columns <= 0 or rows <= 0:
        raise GeometryError(f"Invalid scan grid {columns}x{rows}")
    if not (0 <= x < columns and 0 <= y < rows):
        raise GeometryError(f"Scan position ({x},{y}) outside {columns}x{rows} grid")
    return x + y * columns


def roi_frames(roi: ScanROI, n_frames: int, columns: int, rows: int) -> 'NDArray':
    """
    Global frame numbers inside a scan ROI, in ascending order.
    """
    if columns <= 0 or rows <= 0:
        raise GeometryError(f"Invalid scan grid {columns}x{rows}")
    frames = np.arange(n_frames, dtype=np.int64)
    x = frames % columns
    y = (frames // columns) % rows
    inside = (x >= roi.x0) & (x <= roi.x1) & (y >= roi.y0) & (y <= roi.y1)
    return frames[inside]


# Frame grid ------------------------------------------------------------------

def frame_pixel(index: int, columns: int) -> FramePixel:
    """Frame pixel (x, y) of a row-major pixel index"""
    if columns <= 0:
        raise GeometryError(f"Invalid frame width {columns}")
    return FramePixel(index % columns, index // columns)


def frame_pixel_index(x: int, y: int, columns: int, rows: int) -> Optional[int]:
    """Row-major index of frame pixel (x, y), None if outside the frame"""
    if 0 <= x < columns and 0 <= y < rows:
        return x + y * columns
    return None


def frame_coordinates(calibration: FrameCalibration, columns: int,
                      rows: int) -> Tuple['NDArray', 'NDArray']:
    """
    Calibrated coordinates of every frame pixel.

    Returns:
        (x, y): flat float64 arrays of columns * rows values, row-major
    """
    if columns <= 0 or rows <= 0:
        raise GeometryError(f"Invalid frame size {columns}x{rows}")
    index = np.arange(columns * rows, dtype=np.int64)
    return calibration.transform(index % columns, index // columns)
