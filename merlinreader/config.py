"""
Run configuration for merlinreader.

Two input forms are supported:

- parameter strings such as "x0,y0,x1,y1" or "min max", as given on the
  command line (comma and space both separate values)
- TOML batch files describing one acquisition and a list of operations

Example batch file::

    input = "data/scan01"
    output = "results/scan01"
    scan_frame_headers = false
    operations = ["average_frames", "center_of_mass"]

    [calibration]
    origin = [128.0, 128.0]
    sampling = [0.1, 0.0, 0.0, 0.1]   # a0.x, a1.x, a0.y, a1.y

    [detector]
    annular_range = [2.0, 8.0]

    [scan]
    roi = [0, 0, 63, 63]

    [corrections]
    defect_list = "defects.txt"
    gain = "gain.f32"

    [outputs]
    center_of_mass = "results/com"
"""

import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .errors import InvalidArgument, MissingStream, StreamNotReadable
from .geometry import AnnularRange, Position, ScanROI

try:
    import tomllib

    def _read_toml(path):
        with open(path, "rb") as f:
            return tomllib.load(f)
except ImportError:
    import toml

    def _read_toml(path):
        return toml.load(path)


PARAM_SEPARATORS = ", "
OPERATIONS = ("extract_frames", "average_frames", "integrate_annular_range", "center_of_mass")

_SPLIT_RE = re.compile(f"[{re.escape(PARAM_SEPARATORS)}]+")


def read_param(text: str) -> List[str]:
    """
    Split a parameter string at commas and spaces.

    Runs of separators count as one, leading and trailing separators are
    ignored.
    """
    return [token for token in _SPLIT_RE.split(text.strip()) if token]


def _as_params(value: Union[str, Sequence[Any]]) -> List[str]:
    if isinstance(value, str):
        return read_param(value)
    return [str(v) for v in value]


def parse_float_list(value: Union[str, Sequence[Any]], count: int, name: str = "parameter") -> List[float]:
    """
    Parse the first count floats from a parameter string or sequence.

    Raises:
        InvalidArgument: fewer than count values or a value is not a number
    """
    params = _as_params(value)
    if len(params) < count:
        raise InvalidArgument(f"{name} needs {count} values, got {len(params)}: {value!r}")
    try:
        return [float(p) for p in params[:count]]
    except ValueError as e:
        raise InvalidArgument(f"Invalid {name} {value!r}: {e}") from e


def parse_int_list(value: Union[str, Sequence[Any]], count: int, name: str = "parameter") -> List[int]:
    """Integer counterpart of parse_float_list()"""
    params = _as_params(value)
    if len(params) < count:
        raise InvalidArgument(f"{name} needs {count} values, got {len(params)}: {value!r}")
    try:
        return [int(p) for p in params[:count]]
    except ValueError as e:
        raise InvalidArgument(f"Invalid {name} {value!r}: {e}") from e


def parse_origin(value) -> Position:
    x, y = parse_float_list(value, 2, "origin")
    return Position(x, y)


def parse_sampling(value) -> Tuple[Position, Position]:
    """
    Parse frame sampling "a0.x, a1.x, a0.y, a1.y" into the basis vectors.

    The values are the calibration matrix in row order.
    """
    a0x, a1x, a0y, a1y = parse_float_list(value, 4, "sampling")
    return Position(a0x, a0y), Position(a1x, a1y)


def parse_annular_range(value) -> AnnularRange:
    rmin, rmax = parse_float_list(value, 2, "annular range")
    return AnnularRange(rmin, rmax)


def parse_scan_roi(value) -> ScanROI:
    return ScanROI(*parse_int_list(value, 4, "scan ROI"))


def parse_pixel(value) -> Tuple[int, int]:
    x, y = parse_int_list(value, 2, "pixel")
    return x, y


def parse_scan_shape(value) -> Tuple[int, int]:
    columns, rows = parse_int_list(value, 2, "scan shape")
    return columns, rows


@dataclass
class RunConfig:
    """
    One acquisition and the operations to run on it.
    """
    input: str
    output: str = ""
    scan_frame_headers: bool = False
    swap_bytes: Optional[bool] = None
    scan_shape: Optional[Tuple[int, int]] = None
    origin: Optional[Position] = None
    sampling: Optional[Tuple[Position, Position]] = None
    annular_range: Optional[AnnularRange] = None
    roi: Optional[ScanROI] = None
    defect_mask: Optional[str] = None
    defect_list: Optional[str] = None
    defect_pixels: List[Tuple[int, int]] = field(default_factory=list)
    gain: Optional[str] = None
    operations: List[str] = field(default_factory=list)
    outputs: Dict[str, str] = field(default_factory=dict)
    n_workers: int = 1
    verbose: bool = True

    def output_for(self, operation: str) -> str:
        """Output file name of an operation"""
        output = self.outputs.get(operation) or self.output
        if not output:
            raise InvalidArgument(f"No output file given for {operation}")
        return output


def _resolve(path: Optional[str], base_dir: Optional[str]) -> Optional[str]:
    if not path or base_dir is None or os.path.isabs(path):
        return path
    return os.path.join(base_dir, path)


def config_from_dict(raw: Dict[str, Any], base_dir: Optional[str] = None) -> RunConfig:
    """
    Build a RunConfig from parsed TOML.

    Relative paths are taken relative to base_dir when given.

    Raises:
        InvalidArgument: missing input, unknown operation or malformed value
    """
    if not raw.get("input"):
        raise InvalidArgument("Run configuration has no 'input'")

    calib = dict(raw.get("calibration", {}))
    detector = dict(raw.get("detector", {}))
    scan = dict(raw.get("scan", {}))
    corr = dict(raw.get("corrections", {}))

    operations = [str(op) for op in raw.get("operations", [])]
    for op in operations:
        if op not in OPERATIONS:
            raise InvalidArgument(f"Unknown operation '{op}', expected one of {', '.join(OPERATIONS)}")

    config = RunConfig(
        input=_resolve(str(raw["input"]), base_dir),
        output=_resolve(str(raw.get("output", "")), base_dir),
        scan_frame_headers=bool(raw.get("scan_frame_headers", False)),
        swap_bytes=raw.get("swap_bytes"),
        n_workers=int(raw.get("workers", 1)),
        verbose=bool(raw.get("verbose", True)),
        operations=operations,
    )
    if "scan_shape" in raw:
        config.scan_shape = parse_scan_shape(raw["scan_shape"])
    if "origin" in calib:
        config.origin = parse_origin(calib["origin"])
    if "sampling" in calib:
        config.sampling = parse_sampling(calib["sampling"])
    if "annular_range" in detector:
        config.annular_range = parse_annular_range(detector["annular_range"])
    if "roi" in scan:
        config.roi = parse_scan_roi(scan["roi"])

    config.defect_mask = _resolve(corr.get("defect_mask"), base_dir)
    config.defect_list = _resolve(corr.get("defect_list"), base_dir)
    config.gain = _resolve(corr.get("gain"), base_dir)
    config.defect_pixels = [parse_pixel(p) for p in corr.get("defect_pixels", [])]

    for op, path in dict(raw.get("outputs", {})).items():
        if op not in OPERATIONS:
            raise InvalidArgument(f"Output given for unknown operation '{op}'")
        config.outputs[op] = _resolve(str(path), base_dir)
    return config


def load_config(path: str) -> RunConfig:
    """
    Load a TOML run configuration.

    Raises:
        MissingStream: file not found
        StreamNotReadable: file cannot be read or is not valid TOML
        InvalidArgument: invalid content
    """
    if not os.path.isfile(path):
        raise MissingStream(f"Configuration file not found: {path}")
    try:
        raw = _read_toml(path)
    except (OSError, ValueError) as e:
        raise StreamNotReadable(f"Cannot read configuration {path}: {e}") from e
    return config_from_dict(raw, os.path.dirname(os.path.abspath(path)))


def configure_reader(reader, config: RunConfig) -> None:
    """
    Apply geometry and correction settings of a RunConfig to an opened
    MerlinReader.
    """
    if config.scan_shape is not None:
        reader.set_scan_shape(*config.scan_shape)
    if config.origin is not None:
        reader.set_origin(config.origin.x, config.origin.y)
    if config.sampling is not None:
        reader.set_sampling(*config.sampling)
    if config.annular_range is not None:
        reader.set_annular_range(config.annular_range.min, config.annular_range.max)
    if config.roi is not None:
        reader.set_scan_roi(config.roi.x0, config.roi.y0, config.roi.x1, config.roi.y1)
    if config.defect_mask:
        reader.set_defect_mask(config.defect_mask)
    if config.defect_list:
        reader.set_defect_list(config.defect_list)
    for x, y in config.defect_pixels:
        reader.set_defect_pixel(x, y)
    if config.gain:
        reader.set_gain_correction(config.gain)
