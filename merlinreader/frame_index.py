"""
Global frame index over a multi-file Merlin acquisition.

An acquisition ``<base>`` consists of ``<base>.hdr`` and the data files
``<base>1.mib``, ``<base>2.mib``, ... Each data file holds consecutive
frames. The index maps every global frame number to the data file and the
byte offset of the frame's pixel payload.

Two strategies are provided:

- fast (default): only the first frame header of every file is decoded and
  frames in between are extrapolated assuming a regular frame layout.
- scan: every frame header is decoded and verified against the template;
  any deviation is an error.
"""

import os
import warnings
from dataclasses import dataclass, field
from typing import BinaryIO, Iterator, List, Optional, Tuple

from .binary_format import FrameHeaderTemplate, read_frame_header
from .errors import (
    EndOfStream, InconsistentFrameHeader, InvalidArgument, MissingFrames,
    NoFramesFound, RepositionFailed, StreamNotReadable
)
from .header import AcquisitionHeader

DATA_EXTENSION = "mib"
HEADER_EXTENSION = "hdr"


def header_file_path(base: str, extension: str = HEADER_EXTENSION) -> str:
    """Path of the global header file for an acquisition base name"""
    return f"{base}.{extension}"


def data_file_path(base: str, file_index: int, extension: str = DATA_EXTENSION) -> str:
    """
    Path of a data file.

    Args:
        base: Acquisition base name (path prefix)
        file_index: Zero-based file index
        extension: Data file extension
    """
    return f"{base}{file_index + 1}.{extension}"


def iter_data_files(base: str, extension: str = DATA_EXTENSION) -> Iterator[str]:
    """Yield data file paths with increasing suffix until one is missing"""
    file_index = 0
    while True:
        path = data_file_path(base, file_index, extension)
        if not os.path.isfile(path):
            return
        yield path
        file_index += 1


@dataclass
class FrameIndex:
    """
    Global frame number -> (file index, payload byte offset).

    Offsets grow with frame number within a file and file indices never
    decrease with frame number.
    """
    files: List[int] = field(default_factory=list)
    offsets: List[int] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.files)

    def append(self, file_index: int, offset: int) -> None:
        self.files.append(file_index)
        self.offsets.append(offset)

    def locate(self, frame: int) -> Tuple[int, int]:
        """
        Get (file index, byte offset) of a global frame.

        Raises:
            InvalidArgument: frame outside the index
        """
        if frame < 0 or frame >= len(self.files):
            raise InvalidArgument(f"Frame {frame} outside index of {len(self.files)} frames")
        return self.files[frame], self.offsets[frame]

    def extrapolate(self, n_frames: int, stride: int) -> int:
        """
        Extend the index to n_frames entries.

        New entries stay in the file of the last entry and are spaced by
        stride bytes from its offset.

        Returns:
            Number of entries added
        """
        if not self.files:
            return 0
        file_index = self.files[-1]
        offset = self.offsets[-1]
        added = 0
        while len(self.files) < n_frames:
            offset += stride
            self.append(file_index, offset)
            added += 1
        return added

    def truncate(self, n_frames: int) -> None:
        del self.files[n_frames:]
        del self.offsets[n_frames:]


class _IndexState:
    """Running state while scanning data files"""

    def __init__(self, header: AcquisitionHeader):
        self.header = header
        self.index = FrameIndex()
        self.template: Optional[FrameHeaderTemplate] = None

    def seed(self, fhdr: FrameHeaderTemplate) -> None:
        """Take the first decoded header as template for all frames"""
        self.template = fhdr
        self.header.n_fhdr_bytes = fhdr.n_size
        self.header.n_data_bytes = fhdr.n_data_bytes

    @property
    def stride(self) -> int:
        return self.header.frame_stride


def open_data_file(path: str) -> BinaryIO:
    try:
        return open(path, "rb")
    except OSError as e:
        raise StreamNotReadable(f"Failed to open data file {path}: {e}") from e


def _index_file_fast(state: _IndexState, fin: BinaryIO, file_index: int) -> None:
    try:
        fhdr = read_frame_header(fin)
    except EndOfStream:
        return
    if state.template is None:
        state.seed(fhdr)
    data_pos = fin.tell()
    index = state.index
    if len(index) > 0 and fhdr.i_seq > len(index):
        # frames missing between the last entry and this file's first frame
        index.extrapolate(fhdr.i_seq, state.stride)
    index.append(file_index, data_pos)


def _index_file_scan(state: _IndexState, fin: BinaryIO, file_index: int, path: str) -> None:
    index = state.index
    while True:
        try:
            fhdr = read_frame_header(fin)
        except EndOfStream:
            return
        if state.template is None:
            state.seed(fhdr)
        if not state.template.is_consistent_with(fhdr):
            raise InconsistentFrameHeader(
                f"Frame header {len(index)} in {path} does not match the template "
                f"(size {fhdr.n_size}, {fhdr.n_bpi} bits, {fhdr.n_columns}x{fhdr.n_rows} "
                f"vs size {state.template.n_size}, {state.template.n_bpi} bits, "
                f"{state.template.n_columns}x{state.template.n_rows})")
        if fhdr.i_seq != len(index):
            raise InconsistentFrameHeader(
                f"Frame header in {path} has sequence index {fhdr.i_seq}, expected {len(index)}")
        data_pos = fin.tell()
        index.append(file_index, data_pos)
        next_pos = data_pos + state.header.n_data_bytes
        try:
            fin.seek(next_pos)
        except (OSError, ValueError) as e:
            raise RepositionFailed(f"Failed to seek to byte {next_pos} in {path}: {e}") from e


def build_frame_index(base: str, header: AcquisitionHeader,
                      scan_frame_headers: bool = False,
                      extension: str = DATA_EXTENSION) -> Tuple[FrameIndex, FrameHeaderTemplate]:
    """
    Build the global frame index of an acquisition.

    Also sets header.n_files, header.n_fhdr_bytes and header.n_data_bytes.

    Args:
        base: Acquisition base name
        header: Global acquisition header (n_frames is used for padding)
        scan_frame_headers: Decode and verify every frame header
        extension: Data file extension

    Returns:
        (FrameIndex, FrameHeaderTemplate)

    Raises:
        NoFramesFound: no data file or no frame header found
        MissingFrames: scan mode found fewer frames than declared
        InconsistentFrameHeader: scan mode found a deviating header
    """
    state = _IndexState(header)
    header.n_files = 0
    header.n_fhdr_bytes = 0
    header.n_data_bytes = 0

    for file_index, path in enumerate(iter_data_files(base, extension)):
        with open_data_file(path) as fin:
            if scan_frame_headers:
                _index_file_scan(state, fin, file_index, path)
            else:
                _index_file_fast(state, fin, file_index)
        header.n_files = file_index + 1

    index = state.index
    if header.n_files == 0 or len(index) == 0 or state.template is None:
        raise NoFramesFound(f"Found no frame headers for acquisition {base}")

    if len(index) < header.n_frames:
        if scan_frame_headers:
            raise MissingFrames(
                f"Frame header scan found {len(index)} of {header.n_frames} frames")
        index.extrapolate(header.n_frames, state.stride)
    elif 0 < header.n_frames < len(index):
        warnings.warn(f"Indexed {len(index)} frames but the header declares "
                      f"{header.n_frames}; ignoring the surplus")
        index.truncate(header.n_frames)

    return index, state.template
