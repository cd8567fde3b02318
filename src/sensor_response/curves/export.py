"""
1D LUT export to file formats.

Supports Sony Pictures Imageworks .spi1d and Adobe/Resolve .cube 1D LUTs.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Optional

import numpy as np

from sensor_response.config import get_settings
from sensor_response.core.exceptions import LutExportError
from sensor_response.core.logging import get_logger
from sensor_response.core.types import LutFormat
from sensor_response.curves.lut import Lut1D

logger = get_logger(__name__)


def _uniform_length(lut: Lut1D) -> int:
    lengths = {len(t) for t in lut.tables}
    if len(lengths) != 1:
        raise LutExportError(
            "All channel tables must have the same length", details={"lengths": sorted(lengths)}
        )
    return lengths.pop()


def _write_lines(path: Path, lines: list[str]) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            f.write("\n".join(lines) + "\n")
    except OSError as e:
        raise LutExportError(
            f"Couldn't write LUT, make sure the path is writable: {e}", path=str(path)
        ) from e


class LutExporter(ABC):
    """Abstract base class for LUT exporters."""

    def __init__(self, precision: Optional[int] = None):
        """
        Args:
            precision: Significant digits written per value.
        """
        self.precision = precision if precision is not None else get_settings().lut.float_precision

    def _fmt(self, value: float) -> str:
        return f"{value:.{self.precision}g}"

    @abstractmethod
    def export(self, lut: Lut1D, path: Path) -> None:
        """Export LUT to file."""
        pass

    @abstractmethod
    def get_format_name(self) -> str:
        """Get format name."""
        pass


class Spi1DExporter(LutExporter):
    """Export LUTs as .spi1d.

    The format has a single input range, so per-channel ranges must agree.
    """

    def export(self, lut: Lut1D, path: Path) -> None:
        length = _uniform_length(lut)
        ranges = {lut.range_for(c) for c in range(lut.channel_count)}
        if len(ranges) != 1:
            raise LutExportError("spi1d needs one input range for all channels", path=str(path))
        lo, hi = ranges.pop()

        lines = [
            "Version 1",
            f"From {self._fmt(lo)} {self._fmt(hi)}",
            f"Length {length}",
            f"Components {lut.channel_count}",
            "{",
        ]
        for row in zip(*lut.tables):
            lines.append("    " + " ".join(self._fmt(v) for v in row))
        lines.append("}")
        _write_lines(path, lines)

    def get_format_name(self) -> str:
        return "spi1d"


class CubeExporter(LutExporter):
    """Export LUTs as 1D .cube files with per-channel domains."""

    def __init__(self, title: Optional[str] = None, precision: Optional[int] = None):
        super().__init__(precision)
        self.title = title

    def export(self, lut: Lut1D, path: Path) -> None:
        length = _uniform_length(lut)
        tables = lut.tables
        channels = list(range(lut.channel_count))
        if lut.channel_count == 1:
            tables = tables * 3
            channels = [0, 0, 0]
        elif lut.channel_count != 3:
            raise LutExportError("cube LUTs need 1 or 3 channels", path=str(path))

        mins = [lut.range_for(c)[0] for c in channels]
        maxs = [lut.range_for(c)[1] for c in channels]
        lines = [
            f'TITLE "{self.title or path.stem}"',
            f"# Generated: {datetime.now().isoformat()}",
            f"LUT_1D_SIZE {length}",
            "DOMAIN_MIN " + " ".join(self._fmt(v) for v in mins),
            "DOMAIN_MAX " + " ".join(self._fmt(v) for v in maxs),
        ]
        for row in zip(*tables):
            lines.append(" ".join(self._fmt(v) for v in row))
        _write_lines(path, lines)

    def get_format_name(self) -> str:
        return "cube"


def _format_for(path: Path, format: Optional[LutFormat | str]) -> LutFormat:
    if format is not None:
        return LutFormat(str(format.value if isinstance(format, LutFormat) else format).lower())
    if path.suffix.lower() == ".cube":
        return LutFormat.CUBE
    # spi1d in absence of a known extension
    return LutFormat.SPI1D


def save_lut(lut: Lut1D, path: Path, format: Optional[LutFormat | str] = None) -> None:
    """
    Save a LUT in the given format, or infer it from the extension.

    Args:
        lut: LUT to save.
        path: Output file path.
        format: Format or None to infer (``.cube``, otherwise spi1d).
    """
    path = Path(path)
    fmt = _format_for(path, format)
    exporter: LutExporter = CubeExporter() if fmt == LutFormat.CUBE else Spi1DExporter()
    exporter.export(lut, path)
    logger.info(f"Saved {exporter.get_format_name()} LUT to {path}")


def load_lut(path: Path) -> Lut1D:
    """
    Load a .spi1d or 1D .cube LUT.

    Args:
        path: Path to LUT file.

    Returns:
        The loaded LUT.
    """
    path = Path(path)
    try:
        text = path.read_text()
    except OSError as e:
        raise LutExportError(f"Couldn't read LUT: {e}", path=str(path)) from e

    try:
        if path.suffix.lower() == ".cube":
            return _parse_cube(text)
        return _parse_spi1d(text)
    except (ValueError, IndexError) as e:
        raise LutExportError(f"Malformed LUT file: {e}", path=str(path)) from e


def _parse_spi1d(text: str) -> Lut1D:
    lo, hi = 0.0, 1.0
    components = 1
    rows: list[list[float]] = []
    in_body = False

    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        if in_body:
            if line.startswith("}"):
                break
            rows.append([float(v) for v in line.split()])
            continue

        key, _, rest = line.partition(" ")
        if key == "From":
            lo, hi = (float(v) for v in rest.split()[:2])
        elif key == "Components":
            components = int(rest)
        elif key == "{":
            in_body = True

    if not rows:
        raise ValueError("no LUT data found")
    data = np.asarray(rows, dtype=np.float64)
    if data.shape[1] != components:
        raise ValueError(f"expected {components} components, found {data.shape[1]}")
    return Lut1D(ranges=[(lo, hi)], tables=[data[:, c] for c in range(components)])


def _parse_cube(text: str) -> Lut1D:
    mins = [0.0, 0.0, 0.0]
    maxs = [1.0, 1.0, 1.0]
    size = None
    rows: list[list[float]] = []

    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        key, _, rest = line.partition(" ")
        if key == "TITLE":
            continue
        if key == "LUT_1D_SIZE":
            size = int(rest)
        elif key == "LUT_3D_SIZE":
            raise ValueError("3D cube LUTs are not supported")
        elif key == "DOMAIN_MIN":
            mins = [float(v) for v in rest.split()]
        elif key == "DOMAIN_MAX":
            maxs = [float(v) for v in rest.split()]
        elif key == "LUT_1D_INPUT_RANGE":
            lo, hi = (float(v) for v in rest.split()[:2])
            mins, maxs = [lo] * 3, [hi] * 3
        else:
            rows.append([float(v) for v in line.split()])

    if not rows:
        raise ValueError("no LUT data found")
    if size is not None and len(rows) != size:
        raise ValueError(f"LUT_1D_SIZE is {size} but {len(rows)} rows found")
    data = np.asarray(rows, dtype=np.float64)
    return Lut1D(
        ranges=list(zip(mins, maxs)),
        tables=[data[:, c] for c in range(data.shape[1])],
    )
