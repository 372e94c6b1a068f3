"""
Pixel corrections for Merlin frames.

Two corrections are applied to decoded frame buffers:

- gain correction: per-pixel multiplicative factors (a raw float32 map)
- defect correction: registered defect pixels are replaced by the mean of
  their valid neighbours in the 3x3 neighbourhood

The defect neighbour lists are a derived cache. Any change to the defect set
marks the cache as modified; update_defect_correction_list() must be called
before the next correction pass.
"""

import os
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, TYPE_CHECKING, Union

import numpy as np

from .config import read_param
from .errors import GeometryError, MissingStream, ShapeMismatch, StaleDefectCache, StreamNotReadable
from .geometry import frame_pixel, frame_pixel_index

if TYPE_CHECKING:
    from numpy.typing import NDArray


def _check_file(path: Union[str, Path]) -> None:
    if path is None or not os.path.isfile(path):
        raise MissingStream(f"File not found: {path}")


def _read_raw(path: Union[str, Path], dtype, n_items: int) -> 'NDArray':
    """Read the first n_items values of a raw binary array file"""
    _check_file(path)
    try:
        data = np.fromfile(path, dtype=dtype)
    except (OSError, ValueError) as e:
        raise StreamNotReadable(f"Cannot read {path}: {e}") from e
    if data.size < n_items:
        raise ShapeMismatch(f"{path} holds {data.size} values, expected {n_items}")
    return data[:n_items]


class GainCorrectionMap:
    """
    Per-pixel gain factors, one per frame pixel in row-major order.
    """

    def __init__(self, factors: 'NDArray'):
        self.factors = np.ascontiguousarray(factors, dtype=np.float64).ravel()

    @classmethod
    def from_file(cls, path: Union[str, Path], n_pixels: int) -> "GainCorrectionMap":
        """
        Load a gain map from a raw array of 32-bit floats.

        Args:
            path: Gain correction file
            n_pixels: Frame pixel count

        Raises:
            MissingStream: file does not exist
            ShapeMismatch: file holds fewer than n_pixels values
        """
        return cls(_read_raw(path, np.float32, n_pixels))

    def __len__(self) -> int:
        return self.factors.size

    def apply(self, buf: 'NDArray') -> 'NDArray':
        """Multiply buf by the gain factors in place"""
        if buf.size != self.factors.size:
            raise ShapeMismatch(f"Buffer of {buf.size} pixels vs gain map of {self.factors.size}")
        buf *= self.factors.reshape(buf.shape)
        return buf


@dataclass
class DefectCorrectionEntry:
    """A defect pixel and the valid neighbours used to replace it"""
    idx: int
    x: int
    y: int
    neighbors: List[int] = field(default_factory=list)


class DefectCorrectionList:
    """
    Registered defect pixels of a frame with cached neighbour lists.
    """

    def __init__(self, columns: int, rows: int):
        if columns <= 0 or rows <= 0:
            raise GeometryError(f"Invalid frame size {columns}x{rows}")
        self.columns = columns
        self.rows = rows
        self._entries: Dict[int, DefectCorrectionEntry] = {}
        self._modified = False

    @property
    def n_pixels(self) -> int:
        return self.columns * self.rows

    @property
    def is_modified(self) -> bool:
        """True if the neighbour cache is stale"""
        return self._modified

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[DefectCorrectionEntry]:
        return iter(self._entries.values())

    def _index(self, x: int, y: int) -> int:
        idx = frame_pixel_index(x, y, self.columns, self.rows)
        if idx is None:
            raise GeometryError(f"Pixel ({x},{y}) outside {self.columns}x{self.rows} frame")
        return idx

    def is_defect_pixel(self, x: int, y: int) -> bool:
        idx = frame_pixel_index(x, y, self.columns, self.rows)
        return idx is not None and idx in self._entries

    def set_defect_pixel(self, x: int, y: int) -> bool:
        """
        Register a defect pixel.

        Returns:
            True if the pixel was not registered before

        Raises:
            GeometryError: (x, y) outside the frame
        """
        idx = self._index(x, y)
        if idx in self._entries:
            return False
        self._entries[idx] = DefectCorrectionEntry(idx, x, y)
        self._modified = True
        return True

    def unset_defect_pixel(self, x: int, y: int) -> bool:
        """
        Remove a defect pixel.

        Returns:
            True if the pixel was registered
        """
        idx = self._index(x, y)
        if self._entries.pop(idx, None) is None:
            return False
        self._modified = len(self._entries) > 0
        return True

    def clear(self) -> None:
        self._entries.clear()
        self._modified = False

    def update_defect_correction_list(self) -> None:
        """Recompute the neighbour list of every defect pixel"""
        for entry in self._entries.values():
            neighbors = []
            for dy in (-1, 0, 1):
                for dx in (-1, 0, 1):
                    if dx == 0 and dy == 0:
                        continue
                    j = frame_pixel_index(entry.x + dx, entry.y + dy, self.columns, self.rows)
                    if j is None or j in self._entries:
                        continue
                    neighbors.append(j)
            entry.neighbors = neighbors
        self._modified = False

    def correct(self, buf: 'NDArray') -> 'NDArray':
        """
        Replace defect pixels by the mean of their neighbours, in place.

        Defects without valid neighbours keep their value.

        Raises:
            StaleDefectCache: defect set changed since the last update
            ShapeMismatch: buf is not one frame
        """
        if not self._entries:
            return buf
        if self._modified:
            raise StaleDefectCache("Defect set changed; call update_defect_correction_list() first")
        if buf.size != self.n_pixels:
            raise ShapeMismatch(f"Buffer of {buf.size} pixels vs {self.columns}x{self.rows} frame")
        flat = buf.reshape(-1)
        for entry in self._entries.values():
            if entry.neighbors:
                flat[entry.idx] = flat[entry.neighbors].mean()
        return buf

    def load_mask(self, path: Union[str, Path]) -> int:
        """
        Register all non-zero pixels of a raw int32 defect mask.

        Returns:
            Number of newly registered defects
        """
        mask = _read_raw(path, np.int32, self.n_pixels)
        added = 0
        for idx in np.flatnonzero(mask):
            x, y = frame_pixel(int(idx), self.columns)
            added += self.set_defect_pixel(x, y)
        return added

    def load_list(self, path: Union[str, Path]) -> int:
        """
        Register defects from a text file of "x,y" lines.

        Blank lines are ignored. Lines that fail to parse or name a pixel
        outside the frame are reported with warnings.warn and skipped.

        Returns:
            Number of newly registered defects
        """
        _check_file(path)
        try:
            with open(path, "r", encoding="ascii", errors="replace") as f:
                lines = f.readlines()
        except OSError as e:
            raise StreamNotReadable(f"Cannot read defect list {path}: {e}") from e

        added = 0
        for line_no, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            params = read_param(line.strip())
            try:
                x, y = int(params[0]), int(params[1])
                added += self.set_defect_pixel(x, y)
            except (IndexError, ValueError) as e:
                warnings.warn(f"{path}:{line_no}: skipping defect entry '{line.strip()}': {e}")
        return added

    def mask(self) -> 'NDArray':
        """Boolean frame mask of registered defects"""
        result = np.zeros(self.n_pixels, dtype=bool)
        if self._entries:
            result[list(self._entries)] = True
        return result


class DetectorCalibrator:
    """
    Applies gain and defect corrections to decoded frame buffers.

    Either correction may be absent, in which case it is a no-op.
    """

    def __init__(self, gain: Optional[GainCorrectionMap] = None,
                 defects: Optional[DefectCorrectionList] = None):
        self.gain = gain
        self.defects = defects

    def apply_gain(self, buf: 'NDArray') -> 'NDArray':
        if self.gain is None:
            return buf
        return self.gain.apply(buf)

    def apply_defect_correction(self, buf: 'NDArray') -> 'NDArray':
        if self.defects is None:
            return buf
        return self.defects.correct(buf)

    def calibrate(self, buf: 'NDArray', apply_gain: bool = True,
                  apply_defects: bool = True) -> 'NDArray':
        """
        Apply all corrections in place, in the proper order.

        Standard order:
        1. Gain correction
        2. Defect correction

        Args:
            buf: Decoded frame buffer
            apply_gain: Apply gain correction
            apply_defects: Apply defect correction

        Returns:
            The corrected buffer
        """
        if apply_gain:
            self.apply_gain(buf)
        if apply_defects:
            self.apply_defect_correction(buf)
        return buf
