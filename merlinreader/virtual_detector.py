"""
Annular virtual detector.

A frame pixel belongs to the detector when its calibrated radius r satisfies
min <= r < max. For sparse detectors the inside pixel indices are kept as a
compact list so that reductions only touch k inside pixels instead of all N.
"""

from dataclasses import dataclass
from typing import Optional, TYPE_CHECKING

import numpy as np

from .errors import GeometryError, ShapeMismatch
from .geometry import AnnularRange, FrameCalibration, Position, frame_coordinates

if TYPE_CHECKING:
    from numpy.typing import NDArray

# use the index list when fewer than this fraction of pixels is inside
SPARSE_FRACTION = 0.5


@dataclass
class AnnularDetector:
    """
    Detector mask with the calibrated coordinates it was built from.
    """
    columns: int
    rows: int
    annular_range: AnnularRange
    mask: 'NDArray'                  # bool, columns * rows
    x: 'NDArray'                     # calibrated x of every frame pixel
    y: 'NDArray'                     # calibrated y of every frame pixel
    hash: Optional['NDArray'] = None  # inside pixel indices, sparse masks only

    @property
    def n_pixels(self) -> int:
        return self.columns * self.rows

    @property
    def n_inside(self) -> int:
        if self.hash is not None:
            return int(self.hash.size)
        return int(np.count_nonzero(self.mask))

    @property
    def is_sparse(self) -> bool:
        return self.hash is not None

    def _check(self, buf: 'NDArray') -> 'NDArray':
        if buf.size != self.n_pixels:
            raise ShapeMismatch(f"Buffer of {buf.size} pixels vs {self.columns}x{self.rows} detector")
        return buf.reshape(-1)


def build_annular_mask(calibration: FrameCalibration, annular_range: AnnularRange,
                       columns: int, rows: int) -> AnnularDetector:
    """
    Build the annular detector for a frame geometry.

    A disabled range (max <= min) gives a detector without inside pixels.

    Args:
        calibration: Frame pixel to physical coordinate map
        annular_range: Radial range in physical units
        columns: Frame pixel columns
        rows: Frame pixel rows

    Returns:
        AnnularDetector

    Raises:
        GeometryError: columns or rows not positive
    """
    if columns <= 0 or rows <= 0:
        raise GeometryError(f"Invalid frame size {columns}x{rows}")
    x, y = frame_coordinates(calibration, columns, rows)
    radius = np.hypot(x, y)
    mask = (radius >= annular_range.min) & (radius < annular_range.max)

    inside = np.flatnonzero(mask)
    hash_ = inside if inside.size < SPARSE_FRACTION * mask.size else None
    return AnnularDetector(columns, rows, annular_range, mask, x, y, hash_)


def sum_masked(buf: 'NDArray', detector: AnnularDetector) -> float:
    """Sum of buf over the detector pixels"""
    flat = detector._check(buf)
    if detector.hash is not None:
        return float(flat[detector.hash].sum())
    return float(flat[detector.mask].sum())


def center_of_mass_masked(buf: 'NDArray', detector: AnnularDetector,
                          reference: Optional[float] = None) -> Position:
    """
    Intensity-weighted centre of mass over the detector pixels.

    Args:
        buf: Frame buffer
        detector: Annular detector with calibrated coordinates
        reference: Normalisation sum; the masked sum of buf if None

    Returns:
        Position of the centre of mass in physical units, (0, 0) when the
        reference sum is not positive
    """
    flat = detector._check(buf)
    if reference is None:
        reference = sum_masked(flat, detector)
    if reference <= 0:
        return Position(0.0, 0.0)

    index = detector.hash if detector.hash is not None else detector.mask
    values = flat[index]
    cx = float(np.dot(values, detector.x[index]))
    cy = float(np.dot(values, detector.y[index]))
    return Position(cx / reference, cy / reference)
