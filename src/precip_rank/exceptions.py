"""Exception types raised by the alignment and statistics stages."""

from __future__ import annotations

from typing import Optional, Tuple


class GeometryError(ValueError):
    """Grids that should share a geometry do not.

    Raised when, after cropping, a grid's row/column counts, cell size,
    extent or CRS differ from the reference grid.
    """


class RowShapeError(ValueError):
    """A cell row does not carry the expected number of ensemble members."""

    def __init__(self, message: str, coordinate: Optional[Tuple[float, float]] = None):
        super().__init__(message)
        self.coordinate = coordinate
