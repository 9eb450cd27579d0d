"""
Polygon geometry for region annotations.

This module provides validation of polygon input, exact boolean combination,
free-hand stroke to polygon conversion and pixel queries.

Every geometry is snapped to a fixed precision grid and every overlay runs
through GEOS OverlayNG with the same ``grid_size``. Snap-rounded overlay is
robust: it always returns valid geometry, with no slivers from floating point
noise on near-degenerate input. Results are normalised, so equal shapes
compare equal whatever their ring start point.
"""

from enum import Enum, auto
from typing import Any, List, Sequence, Tuple

import numpy as np
import shapely
from shapely.geometry import LineString, MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry

from .config import GEOMETRY_GRID_SIZE
from .errors import DegenerateStrokeError, InvalidGeometryError

EMPTY_POLYGON = Polygon()

Point = Tuple[float, float]
Rings = List[Tuple[np.ndarray, List[np.ndarray]]]


class BooleanOp(Enum):
    """
    Enum of the planar set operations between two annotation geometries.
    """

    UNION = auto()
    INTERSECTION = auto()
    DIFFERENCE = auto()


_OVERLAYS = {
    BooleanOp.UNION: shapely.union,
    BooleanOp.INTERSECTION: shapely.intersection,
    BooleanOp.DIFFERENCE: shapely.difference,
}


def _polygon_parts(geom: BaseGeometry) -> List[Polygon]:
    if geom.is_empty:
        return []
    if isinstance(geom, Polygon):
        return [geom]
    if hasattr(geom, "geoms"):
        parts: List[Polygon] = []
        for part in geom.geoms:
            parts.extend(_polygon_parts(part))
        return parts
    return []


def polygonal(geom: BaseGeometry) -> BaseGeometry:
    """
    Keep only the areal part of a geometry, normalised.

    Points and lines produced by an overlay are dropped. Zero area gives
    ``EMPTY_POLYGON``.
    """
    parts = [p for p in _polygon_parts(geom) if p.area > 0]
    if not parts:
        return EMPTY_POLYGON
    result = parts[0] if len(parts) == 1 else MultiPolygon(parts)
    return shapely.normalize(result)


def _ring_array(ring: Any) -> np.ndarray:
    try:
        arr = np.asarray(ring, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise InvalidGeometryError(f"Ring is not a sequence of (x, y) points: {e}") from e
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise InvalidGeometryError(f"Ring must have shape (n, 2), got {arr.shape}")
    if not np.all(np.isfinite(arr)):
        raise InvalidGeometryError("Ring contains non-finite coordinates")
    if len(arr) < 4 or not np.array_equal(arr[0], arr[-1]):
        raise InvalidGeometryError("Ring is not closed (first point must equal last point)")
    if len(np.unique(arr[:-1], axis=0)) < 3:
        raise InvalidGeometryError("Ring needs at least 3 distinct points")
    return arr


def _from_rings(rings: Sequence[Any]) -> Polygon:
    rings = list(rings)
    if not rings:
        raise InvalidGeometryError("No rings given")
    if np.ndim(rings[0]) == 1:
        # A single ring given as a flat list of points
        rings = [rings]
    arrays = [_ring_array(ring) for ring in rings]
    return Polygon(arrays[0], arrays[1:])


def _coerce(obj: Any, grid_size: float, allow_empty: bool) -> BaseGeometry:
    geom = obj if isinstance(obj, BaseGeometry) else _from_rings(obj)
    if geom.is_empty:
        if allow_empty:
            return EMPTY_POLYGON
        raise InvalidGeometryError("Polygon is empty")
    if geom.geom_type not in ("Polygon", "MultiPolygon"):
        raise InvalidGeometryError(f"Expected a polygon, got {geom.geom_type}")
    if not shapely.is_valid(geom):
        raise InvalidGeometryError(f"Invalid polygon: {shapely.is_valid_reason(geom)}")
    snapped = polygonal(shapely.set_precision(geom, grid_size))
    if snapped.is_empty and not allow_empty:
        raise InvalidGeometryError("Polygon collapses to nothing on the precision grid")
    return snapped


def as_polygon(obj: Any, grid_size: float = GEOMETRY_GRID_SIZE) -> BaseGeometry:
    """
    Validate polygon input and snap it to the precision grid.

    Parameters
    ----------
    obj : Any
        A shapely Polygon/MultiPolygon, or a list of closed rings (first is
        the outer ring, the rest are holes), or a single closed ring.
    grid_size : float, optional
        Precision grid in acquisition pixels.

    Returns
    -------
    BaseGeometry
        A valid, normalised Polygon or MultiPolygon.

    Raises
    ------
    InvalidGeometryError
        For unclosed rings, self-intersections, holes outside the shell,
        non-polygonal or empty geometry.
    """
    return _coerce(obj, grid_size, allow_empty=False)


def combine(
    op: BooleanOp, a: Any, b: Any, grid_size: float = GEOMETRY_GRID_SIZE
) -> BaseGeometry:
    """
    Union, intersection or difference of two polygons.

    Parameters
    ----------
    op : BooleanOp
        The set operation.
    a, b : Any
        Polygon input accepted by :func:`as_polygon`; empty polygons are allowed.
    grid_size : float, optional
        Precision grid of the overlay.

    Returns
    -------
    BaseGeometry
        The valid, normalised result. A zero-area result is
        ``EMPTY_POLYGON``, which is a successful outcome.
    """
    a = _coerce(a, grid_size, allow_empty=True)
    b = _coerce(b, grid_size, allow_empty=True)
    result = polygonal(_OVERLAYS[op](a, b, grid_size=grid_size))
    if not result.is_empty and not shapely.is_valid(result):
        raise InvalidGeometryError(
            f"{op.name.lower()} produced invalid geometry: {shapely.is_valid_reason(result)}"
        )
    return result


def collapse_duplicates(points: Sequence[Point]) -> List[Point]:
    """Drop consecutive repeated points."""
    collapsed: List[Point] = []
    for x, y in points:
        p = (float(x), float(y))
        if not collapsed or collapsed[-1] != p:
            collapsed.append(p)
    return collapsed


def stroke_to_polygon(
    points: Sequence[Point], radius: float, grid_size: float = GEOMETRY_GRID_SIZE
) -> BaseGeometry:
    """
    Convert a free-hand stroke into a closed region.

    A stroke that ends within ``radius`` of its start is a lasso: the region
    is the area enclosed by the stroke (repaired if the stroke crosses
    itself), provided it is at least ``radius`` wide somewhere. Any other
    stroke is buffered by ``radius`` along its path.

    Parameters
    ----------
    points : Sequence[Point]
        The stroke points in drawing order.
    radius : float
        Brush radius in acquisition pixels.
    grid_size : float, optional
        Precision grid of the result.

    Returns
    -------
    BaseGeometry
        A valid, non-empty Polygon or MultiPolygon.

    Raises
    ------
    DegenerateStrokeError
        If fewer than 2 distinct points were recorded.
    """
    pts = collapse_duplicates(points)
    if len(set(pts)) < 2:
        raise DegenerateStrokeError(
            f"Stroke needs at least 2 distinct points, got {len(set(pts))}"
        )
    if radius <= 0:
        raise ValueError(f"Brush radius must be positive, got {radius}")

    start, end = np.asarray(pts[0]), np.asarray(pts[-1])
    if len(pts) >= 3 and np.hypot(*(end - start)) <= radius:
        ring = pts if pts[0] == pts[-1] else pts + [pts[0]]
        if len(set(ring)) >= 3:
            lasso = polygonal(shapely.make_valid(Polygon(ring)))
            if not lasso.is_empty and not lasso.buffer(-radius / 2.0).is_empty:
                return polygonal(shapely.set_precision(lasso, grid_size))

    region = LineString(pts).buffer(radius)
    return polygonal(shapely.set_precision(region, grid_size))


def polygon_rings(geom: BaseGeometry) -> Rings:
    """
    Coordinates of every part of a geometry, for overlay drawing.

    Returns
    -------
    Rings
        One ``(exterior, [holes...])`` entry per polygon part, each ring an
        (n, 2) array of x, y coordinates.
    """
    return [
        (
            np.asarray(part.exterior.coords),
            [np.asarray(hole.coords) for hole in part.interiors],
        )
        for part in _polygon_parts(geom)
    ]


def contains_point(geom: BaseGeometry, x: float, y: float) -> bool:
    """True if (x, y) is inside the outer ring and outside all holes (boundary counts)."""
    if geom.is_empty:
        return False
    return bool(shapely.intersects_xy(geom, x, y))


def pixels_in(
    geom: BaseGeometry, width: int, height: int
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Pixels of a width x height raster whose centres lie inside a geometry.

    Pixel (x, y) covers [x, x+1) x [y, y+1); only pixels in the geometry's
    bounding box are tested.

    Returns
    -------
    Tuple[np.ndarray, np.ndarray]
        Column and row indices (xs, ys) in row-major order.
    """
    empty = (np.empty(0, dtype=np.intp), np.empty(0, dtype=np.intp))
    if geom.is_empty:
        return empty
    minx, miny, maxx, maxy = geom.bounds
    x0, x1 = max(int(np.floor(minx)), 0), min(int(np.ceil(maxx)), width)
    y0, y1 = max(int(np.floor(miny)), 0), min(int(np.ceil(maxy)), height)
    if x0 >= x1 or y0 >= y1:
        return empty
    xs, ys = np.meshgrid(np.arange(x0, x1), np.arange(y0, y1))
    inside = shapely.contains_xy(geom, xs + 0.5, ys + 0.5)
    return xs[inside], ys[inside]
