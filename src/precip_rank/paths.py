"""Utilities for resolving repository-relative paths.

Source grids, coastline layers and rendered outputs live beside the package
rather than inside it. The helpers below anchor those locations on the
repository root so callers get the same paths regardless of the current
working directory. All helpers return :class:`pathlib.Path` objects.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Union, overload

PathLike = Union[str, Path]


def _resolve_root() -> Path:
    """Return the repository root directory.

    Package sources sit under ``src/``, so the root is three parents up from
    this file (``.../src/precip_rank/paths.py``).
    """

    return Path(__file__).resolve().parent.parent.parent


_PROJECT_ROOT = _resolve_root()
_DATA_DIR = _PROJECT_ROOT / "data"
_OUTPUTS_DIR = _PROJECT_ROOT / "outputs"


def project_root() -> Path:
    """Return the absolute path to the repository root."""

    return _PROJECT_ROOT


def data_dir() -> Path:
    """Return the absolute path to the repository ``data`` directory."""

    return _DATA_DIR


def outputs_dir() -> Path:
    """Return the absolute path to the ``outputs`` directory."""

    return _OUTPUTS_DIR


def _coerce_parts(parts: tuple[PathLike | Iterable[PathLike], ...]) -> Iterable[PathLike]:
    """Normalise variadic path components into a single iterable."""

    if len(parts) == 1 and isinstance(parts[0], Iterable) and not isinstance(parts[0], (str, bytes, Path)):
        return parts[0]

    return parts


@overload
def data_path(*parts: PathLike) -> Path:
    ...


@overload
def data_path(parts: Iterable[PathLike]) -> Path:
    ...


def data_path(*parts: PathLike | Iterable[PathLike]) -> Path:
    """Return a path inside the repository ``data`` directory.

    Parameters
    ----------
    parts:
        Path segments joined beneath ``data``. Either variadic positional
        arguments or a single iterable.

    Examples
    --------
    >>> data_path("worldclim", "wc2.1_10m_bio_12.tif")
    PosixPath('/.../data/worldclim/wc2.1_10m_bio_12.tif')
    """

    return _DATA_DIR.joinpath(*map(Path, _coerce_parts(parts)))


def outputs_path(*parts: PathLike | Iterable[PathLike]) -> Path:
    """Return a path inside the repository ``outputs`` directory."""

    return _OUTPUTS_DIR.joinpath(*map(Path, _coerce_parts(parts)))
