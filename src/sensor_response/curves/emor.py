"""
EMOR (Empirical Model of Response) basis curves.

A response curve is modelled as a baseline plus a linear correction term
plus a weighted sum of a few fixed basis curves:

    f(x) = base(x) + linear(x) + sum_j factors[j] * h_j(x)

As fitted here, f maps linear light to the encoded value. The to-linear
curve that LUTs and diagnostics consume is its inverse.

The tables are constant data produced offline. They are loaded once per
process and shared read-only.
"""

import threading
from pathlib import Path
from typing import Optional, Sequence

import numpy as np
from numpy.typing import ArrayLike, NDArray

from sensor_response.config import EmorSettings, get_settings
from sensor_response.core.exceptions import EmorBasisError
from sensor_response.core.logging import get_logger
from sensor_response.curves.algebra import invert_monotonic, sample_uniform, walk_min_slope

logger = get_logger(__name__)

FACTOR_COUNT = 6
DEFAULT_SAMPLES = 1024
EXPORT_MIN_SLOPE = 0.005


class EmorBasis:
    """Read-only EMOR tables of shape ``[factor_count + 2, samples]``.

    Row 0 is the baseline curve, row 1 a linear correction term and rows
    2.. the basis curves, all sampled uniformly over [0, 1].
    """

    def __init__(self, tables: ArrayLike, name: str = "custom"):
        """
        Args:
            tables: 2D array-like of basis rows.
            name: Label used in logs.
        """
        arr = np.array(tables, dtype=np.float32)
        if arr.ndim != 2 or arr.shape[0] < 3 or arr.shape[1] < 2:
            raise EmorBasisError(
                "EMOR tables need a baseline, a linear row and at least one basis row "
                "of 2 or more samples",
                details={"shape": arr.shape},
            )
        if not np.all(np.isfinite(arr)):
            raise EmorBasisError("EMOR tables contain non-finite values")

        arr.setflags(write=False)
        self._tables = arr
        self._tables64 = arr.astype(np.float64)
        self._tables64.setflags(write=False)
        self.name = name

    def __repr__(self) -> str:
        return f"EmorBasis(name={self.name!r}, factors={self.factor_count}, samples={self.samples})"

    @property
    def tables(self) -> NDArray[np.float32]:
        return self._tables

    @property
    def samples(self) -> int:
        return self._tables.shape[1]

    @property
    def factor_count(self) -> int:
        return self._tables.shape[0] - 2

    @property
    def baseline(self) -> NDArray[np.float32]:
        return self._tables[0]

    @property
    def linear(self) -> NDArray[np.float32]:
        return self._tables[1]

    @property
    def basis(self) -> NDArray[np.float32]:
        return self._tables[2:]

    def _factors(self, factors: ArrayLike) -> NDArray[np.float64]:
        f = np.asarray(factors, dtype=np.float64).ravel()
        if len(f) > self.factor_count:
            raise ValueError(
                f"Got {len(f)} factors for a basis with {self.factor_count} curves"
            )
        return f

    def evaluate_at_index(self, factors: ArrayLike, i: int) -> float:
        """Combined curve value at table index ``i``."""
        f = self._factors(factors)
        t = self._tables64
        return float(t[0, i] + t[1, i] + f @ t[2 : 2 + len(f), i])

    def evaluate_at(self, factors: ArrayLike, x: ArrayLike):
        """Combined curve value at arbitrary position(s) ``x`` in [0, 1]."""
        f = self._factors(factors)
        rows = self.sample_rows(x, rows=2 + len(f))
        result = rows[0] + rows[1] + f @ rows[2:]
        if np.ndim(x) == 0:
            return float(result[0])
        return result

    def sample_rows(self, x: ArrayLike, rows: Optional[int] = None) -> NDArray[np.float64]:
        """Every table row interpolated at positions ``x``.

        Returns an array of shape ``[rows, len(x)]``.
        """
        count = self._tables64.shape[0] if rows is None else rows
        positions = np.atleast_1d(np.asarray(x, dtype=np.float64))
        return np.vstack([sample_uniform(row, positions) for row in self._tables64[:count]])

    def combined_curve(self, factors: ArrayLike) -> NDArray[np.float64]:
        """Combined curve at every table index."""
        f = self._factors(factors)
        t = self._tables64
        return t[0] + t[1] + f @ t[2 : 2 + len(f)]

    def factors_to_curve(
        self,
        factors: ArrayLike,
        min_slope: float = EXPORT_MIN_SLOPE,
    ) -> NDArray[np.float32]:
        """Turn a factor vector into a LUT-ready from-linear curve.

        Every sample is lifted to rise at least ``min_slope / samples`` above
        its predecessor and the result is clamped to [0, 1]. Unlike the soft
        penalty used while fitting, this is unconditional.
        """
        curve = self.combined_curve(factors)
        lifted, _ = walk_min_slope(curve, min_slope / len(curve), lift=True)
        return np.clip(lifted, 0.0, 1.0).astype(np.float32)

    def to_linear_curve(
        self,
        factors: ArrayLike,
        min_slope: float = EXPORT_MIN_SLOPE,
    ) -> NDArray[np.float64]:
        """Inverse of :meth:`factors_to_curve`, sampled at the basis resolution.

        Maps normalized encoded values to linear light.
        """
        return invert_monotonic(self.factors_to_curve(factors, min_slope), self.samples)

    def save_npy(self, path: Path) -> None:
        """Save the tables for fast loading with :meth:`from_npy`."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        np.save(path, self._tables)

    @classmethod
    def synthetic(
        cls,
        samples: int = DEFAULT_SAMPLES,
        factor_count: int = FACTOR_COUNT,
    ) -> "EmorBasis":
        """Deterministic stand-in basis for installs without the EMOR data.

        Identity baseline, zero linear term and orthonormal sine harmonics
        that vanish at both ends, so any factor vector keeps f(0)=0, f(1)=1.
        """
        if samples < 3 or factor_count < 1:
            raise EmorBasisError("Synthetic basis needs samples >= 3 and factor_count >= 1")

        x = np.linspace(0.0, 1.0, samples)
        rows = [x, np.zeros(samples)]
        for k in range(1, factor_count + 1):
            h = np.sin(k * np.pi * x)
            rows.append(h / np.linalg.norm(h))
        return cls(np.vstack(rows), name="synthetic")

    @classmethod
    def from_npy(cls, path: Path) -> "EmorBasis":
        """Load tables saved with :meth:`save_npy`."""
        path = Path(path)
        try:
            arr = np.load(path, allow_pickle=False)
        except (OSError, ValueError) as e:
            raise EmorBasisError(f"Cannot read EMOR table: {e}", path=str(path)) from e
        return cls(arr, name=path.stem)

    @classmethod
    def from_emor_file(cls, path: Path, factor_count: int = FACTOR_COUNT) -> "EmorBasis":
        """Parse the published EMOR text file.

        The file holds labelled sections (``E =``, ``f0 =``, ``h(1)=`` ...)
        each followed by whitespace separated samples. Rows are arranged as
        ``[E, f0 - E, h(1) .. h(factor_count)]`` so the combined curve equals
        ``f0 + sum(c_n * h(n))``.
        """
        path = Path(path)
        try:
            text = path.read_text()
        except OSError as e:
            raise EmorBasisError(f"Cannot read EMOR file: {e}", path=str(path)) from e

        sections = _parse_sections(text, path)
        required = ["E", "f0"] + [f"h({n})" for n in range(1, factor_count + 1)]
        missing = [name for name in required if name not in sections]
        if missing:
            raise EmorBasisError(
                f"EMOR file is missing sections: {', '.join(missing)}", path=str(path)
            )

        lengths = {len(sections[name]) for name in required}
        if len(lengths) != 1:
            raise EmorBasisError("EMOR sections have differing lengths", path=str(path))

        e = np.asarray(sections["E"])
        f0 = np.asarray(sections["f0"])
        rows = [e, f0 - e] + [np.asarray(sections[name]) for name in required[2:]]
        return cls(np.vstack(rows), name=path.stem)


def _parse_sections(text: str, path: Path) -> dict[str, list[float]]:
    sections: dict[str, list[float]] = {}
    current: Optional[list[float]] = None
    for line_no, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        if "=" in line:
            label, _, rest = line.partition("=")
            current = sections.setdefault(label.strip(), [])
            line = rest
        if current is None:
            raise EmorBasisError(
                "EMOR data before the first section label", path=str(path),
                details={"line": line_no},
            )
        for token in line.split():
            try:
                current.append(float(token))
            except ValueError as e:
                raise EmorBasisError(
                    f"Bad number {token!r}", path=str(path), details={"line": line_no}
                ) from e
    return sections


def load_basis(path: Path, factor_count: int = FACTOR_COUNT) -> EmorBasis:
    """Load a basis from an ``.npy`` table or an EMOR text file."""
    path = Path(path)
    if path.suffix.lower() == ".npy":
        basis = EmorBasis.from_npy(path)
        if basis.factor_count < factor_count:
            raise EmorBasisError(
                f"Table has {basis.factor_count} basis curves, {factor_count} required",
                path=str(path),
            )
        return EmorBasis(basis.tables[: factor_count + 2], name=basis.name)
    return EmorBasis.from_emor_file(path, factor_count)


_basis_cache: dict[tuple, EmorBasis] = {}
_basis_lock = threading.Lock()


def get_default_basis(settings: EmorSettings | None = None) -> EmorBasis:
    """Shared basis for this process, loaded on first use.

    Uses the configured table file when one is set, otherwise a synthetic
    basis of the configured size.
    """
    settings = settings or get_settings().emor
    key = (settings.table_path, settings.factor_count, settings.samples)
    with _basis_lock:
        basis = _basis_cache.get(key)
        if basis is None:
            if settings.table_path is not None:
                basis = load_basis(settings.table_path, settings.factor_count)
            else:
                basis = EmorBasis.synthetic(settings.samples, settings.factor_count)
            logger.info(f"Loaded EMOR basis: {basis!r}")
            _basis_cache[key] = basis
    return basis


def factors_to_curve(
    factors: Sequence[float],
    basis: EmorBasis | None = None,
    min_slope: float = EXPORT_MIN_SLOPE,
) -> NDArray[np.float32]:
    """Response curve for ``factors`` on ``basis`` (default: shared basis)."""
    basis = basis or get_default_basis()
    return basis.factors_to_curve(factors, min_slope=min_slope)
