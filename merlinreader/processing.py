"""
Frame processing runs over the scan ROI of a Merlin acquisition.

- extract_frames: copy raw pixel payloads to one binary file
- average_frames: mean and standard deviation frames
- integrate_annular_range: annular detector signal per scan position
- center_of_mass: annular signal and its centre of mass per scan position

Results are raw float64 arrays, each with a small text sidecar "<file>.hdr"
describing its dimensions. A run that fails part way leaves whatever was
already written in place; such output must be treated as incomplete.
"""

import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, List, Optional, Tuple, TYPE_CHECKING

import numpy as np
from tqdm import tqdm

from .config import RunConfig, configure_reader
from .errors import GeometryError, WriteFailed
from .reader import FrameFiles, MerlinReader
from .virtual_detector import AnnularDetector, center_of_mass_masked, sum_masked

if TYPE_CHECKING:
    from numpy.typing import NDArray


def write_sidecar(path: str, lines: List[Tuple[str, object]]) -> str:
    """
    Write a "<path>.hdr" text file of "Key: value" lines.

    Returns:
        Sidecar file name
    """
    sidecar = path + ".hdr"
    try:
        with open(sidecar, "w") as f:
            for key, value in lines:
                f.write(f"{key}: {value}\n")
    except OSError as e:
        raise WriteFailed(f"Failed to write {sidecar}: {e}") from e
    return sidecar


def write_result(path: str, data: 'NDArray', columns: int, rows: int) -> str:
    """
    Write a float64 result array and its sidecar.

    Args:
        path: Output file
        data: Result values, written in native byte order
        columns: Result columns for the sidecar
        rows: Result rows for the sidecar
    """
    values = np.ascontiguousarray(data, dtype=np.float64)
    try:
        values.tofile(path)
    except OSError as e:
        raise WriteFailed(f"Failed to write {path}: {e}") from e
    write_sidecar(path, [
        ("File name", os.path.basename(path)),
        ("Data type", "float64"),
        ("Columns", columns),
        ("Rows", rows),
        ("Number of items", values.size),
    ])
    return path


def _roi_frames(reader: MerlinReader) -> 'NDArray':
    if reader.n_frame_pixels <= 0:
        raise GeometryError(f"Frame has no pixels ({reader.frame_shape})")
    frames = reader.roi_frames()
    if frames.size == 0:
        raise GeometryError(f"No frames in scan ROI {reader.roi}")
    return frames


def extract_frames(reader: MerlinReader, output: str, verbose: bool = True) -> int:
    """
    Copy the raw pixel payload of every frame in the scan ROI to one file.

    Frames are written in global frame order without headers, followed by
    a sidecar "<output>.hdr" with the frame geometry.

    Returns:
        Number of frames written

    Raises:
        GeometryError: no frames in the ROI
        WriteFailed: output cannot be written
    """
    frames = _roi_frames(reader)
    if verbose:
        print(f"[INFO] Extracting {frames.size} frames to {output}")
    try:
        fout = open(output, "wb")
    except OSError as e:
        raise WriteFailed(f"Failed to open {output}: {e}") from e
    with fout:
        for frame in tqdm(frames, desc="Extracting frames", unit="frame", disable=not verbose):
            raw = reader.read_frame_raw(int(frame))
            try:
                fout.write(raw)
            except OSError as e:
                raise WriteFailed(f"Failed to write frame {frame} to {output}: {e}") from e

    rows, columns = reader.frame_shape
    write_sidecar(output, [
        ("File name", os.path.basename(output)),
        ("Number of frames", frames.size),
        ("Frame columns", columns),
        ("Frame rows", rows),
        ("Data integer bits", reader.template.n_bpi),
    ])
    return int(frames.size)


def average_frames(reader: MerlinReader, output: str,
                   verbose: bool = True) -> Tuple['NDArray', 'NDArray']:
    """
    Average frame and standard deviation over the scan ROI.

    Raw frames are accumulated first and the corrections are applied to the
    accumulated sums: gain once to the sum, twice to the sum of squares,
    defect correction to the mean and to the standard deviation.

    Writes "<output>_avg.dat" and "<output>_sdev.dat".

    Returns:
        (mean, sdev) flat float64 frames
    """
    frames = _roi_frames(reader)
    n_pixels = reader.n_frame_pixels
    if verbose:
        print(f"[INFO] Averaging {frames.size} frames")

    acc = np.zeros(n_pixels, dtype=np.float64)
    acc_sq = np.zeros(n_pixels, dtype=np.float64)
    buf = np.empty(n_pixels, dtype=np.float64)
    for frame in tqdm(frames, desc="Averaging frames", unit="frame", disable=not verbose):
        reader.decode_frame(int(frame), out=buf)
        acc += buf
        acc_sq += buf * buf

    reader.prepare_corrections()
    calibrator = reader.calibrator
    calibrator.apply_gain(acc)
    calibrator.apply_defect_correction(acc)
    calibrator.apply_gain(acc_sq)
    calibrator.apply_gain(acc_sq)

    scale = 1.0 / frames.size
    mean = acc * scale
    mean_sq = acc_sq * scale
    sdev = np.sqrt(np.maximum(mean_sq - mean * mean, 0.0))
    calibrator.apply_defect_correction(sdev)

    rows, columns = reader.frame_shape
    write_result(f"{output}_avg.dat", mean, columns, rows)
    write_result(f"{output}_sdev.dat", sdev, columns, rows)
    return mean, sdev


def _chunks(n_items: int, n_workers: int) -> List[Tuple[int, int]]:
    n_chunks = max(1, min(n_workers, n_items))
    bounds = np.linspace(0, n_items, n_chunks + 1).astype(int)
    return [(int(s), int(e)) for s, e in zip(bounds[:-1], bounds[1:]) if e > s]


def _reduce_annular(reader: MerlinReader, detector: AnnularDetector, frames: 'NDArray',
                    with_com: bool, n_workers: int, verbose: bool,
                    desc: str) -> Tuple['NDArray', 'NDArray', 'NDArray']:
    n = frames.size
    sums = np.zeros(n, dtype=np.float64)
    com_x = np.zeros(n, dtype=np.float64)
    com_y = np.zeros(n, dtype=np.float64)

    reader.prepare_corrections()
    calibrator = reader.calibrator
    n_pixels = reader.n_frame_pixels

    # each worker owns its file handles and writes a disjoint slice
    def _worker(start, end, pbar):
        buf = np.empty(n_pixels, dtype=np.float64)
        with FrameFiles(reader.base, reader.extension) as files:
            for j in range(start, end):
                reader.decode_frame(int(frames[j]), out=buf, files=files)
                calibrator.calibrate(buf)
                s = sum_masked(buf, detector)
                sums[j] = s
                if with_com:
                    com = center_of_mass_masked(buf, detector, s)
                    com_x[j] = com.x
                    com_y[j] = com.y
                pbar.update(1)
        return end - start

    with tqdm(total=n, desc=desc, unit="frame", dynamic_ncols=True, disable=not verbose) as pbar:
        ranges = _chunks(n, n_workers)
        if len(ranges) == 1:
            _worker(0, n, pbar)
        else:
            with ThreadPoolExecutor(max_workers=len(ranges)) as ex:
                futures = [ex.submit(_worker, s, e, pbar) for (s, e) in ranges]
                try:
                    for fut in as_completed(futures):
                        fut.result()
                except BaseException:
                    for fut in futures:
                        fut.cancel()
                    raise
    return sums, com_x, com_y


def _annular_setup(reader: MerlinReader, output: str,
                   dump_detector: bool) -> Tuple['NDArray', AnnularDetector]:
    frames = _roi_frames(reader)
    if not reader.annular_range.enabled:
        raise GeometryError(f"Annular range ({reader.annular_range.min}, "
                            f"{reader.annular_range.max}) is empty")
    detector = reader.annular_detector()
    if dump_detector:
        write_result(f"{output}.det", detector.mask, detector.columns, detector.rows)
    return frames, detector


def integrate_annular_range(reader: MerlinReader, output: str, n_workers: int = 1,
                            verbose: bool = True, dump_detector: bool = False) -> 'NDArray':
    """
    Annular detector signal for every frame in the scan ROI.

    Args:
        reader: Opened session with annular range and corrections set
        output: Result file, float64 in ROI raster order
        n_workers: Number of worker threads
        verbose: Show progress
        dump_detector: Also write the detector mask to "<output>.det"

    Returns:
        Integrated signal per ROI frame

    Raises:
        GeometryError: empty frame, empty ROI or disabled annular range
    """
    frames, detector = _annular_setup(reader, output, dump_detector)
    if verbose:
        print(f"[INFO] Integrating {frames.size} frames over {detector.n_inside} detector pixels")
    sums, _, _ = _reduce_annular(reader, detector, frames, False, n_workers, verbose,
                                 "Integrating frames")
    columns, rows = reader.roi.shape
    write_result(output, sums, columns, rows)
    return sums


def center_of_mass(reader: MerlinReader, output: str, n_workers: int = 1,
                   verbose: bool = True,
                   dump_detector: bool = False) -> Tuple['NDArray', 'NDArray', 'NDArray']:
    """
    Annular signal and centre of mass for every frame in the scan ROI.

    Writes "<output>_0-0.dat" (signal), "<output>_1-0.dat" (x) and
    "<output>_1-1.dat" (y).

    Returns:
        (signal, com_x, com_y)
    """
    frames, detector = _annular_setup(reader, output, dump_detector)
    if verbose:
        print(f"[INFO] Centre of mass of {frames.size} frames over {detector.n_inside} detector pixels")
    sums, com_x, com_y = _reduce_annular(reader, detector, frames, True, n_workers, verbose,
                                         "Centre of mass")
    columns, rows = reader.roi.shape
    write_result(f"{output}_0-0.dat", sums, columns, rows)
    write_result(f"{output}_1-0.dat", com_x, columns, rows)
    write_result(f"{output}_1-1.dat", com_y, columns, rows)
    return sums, com_x, com_y


def run_config(config: RunConfig, reader: Optional[MerlinReader] = None) -> Dict[str, str]:
    """
    Run the operations of a RunConfig in order.

    Args:
        config: Run configuration
        reader: Opened session to use instead of config.input

    Returns:
        Operation name -> output name
    """
    if reader is None:
        with MerlinReader(config.input, scan_frame_headers=config.scan_frame_headers,
                          swap_bytes=config.swap_bytes) as own_reader:
            return run_config(config, own_reader)

    configure_reader(reader, config)
    done = {}
    for op in config.operations:
        output = config.output_for(op)
        if config.verbose:
            print(f"[INFO] Running {op}")
        if op == "extract_frames":
            extract_frames(reader, output, config.verbose)
        elif op == "average_frames":
            average_frames(reader, output, config.verbose)
        elif op == "integrate_annular_range":
            integrate_annular_range(reader, output, config.n_workers, config.verbose)
        elif op == "center_of_mass":
            center_of_mass(reader, output, config.n_workers, config.verbose)
        done[op] = output
    return done
