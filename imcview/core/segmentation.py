"""
Cell boundaries used as the aggregation unit of cell-level classification.

Cell polygons come either from an integer label mask (0 is background) or
ready-made from an external segmentation.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, List, Mapping, Tuple

import numpy as np
import shapely
from scipy.ndimage import find_objects
from shapely.geometry import Polygon
from shapely.geometry.base import BaseGeometry
from skimage import measure

from .polygon import as_polygon, pixels_in, polygonal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CellBoundary:
    """
    One segmented cell.

    Attributes
    ----------
    cell_id : int
        Id of the cell in the segmentation (the mask value).
    geometry : BaseGeometry
        Valid cell polygon in acquisition pixel coordinates.
    """

    cell_id: int
    geometry: BaseGeometry

    @property
    def area(self) -> float:
        return float(self.geometry.area)

    def representative_point(self) -> Tuple[float, float]:
        """A point guaranteed to lie inside the cell."""
        p = self.geometry.representative_point()
        return float(p.x), float(p.y)

    def pixels(self, width: int, height: int) -> Tuple[np.ndarray, np.ndarray]:
        """Pixels whose centres lie inside the cell."""
        return pixels_in(self.geometry, width, height)


def cells_from_label_mask(
    label_mask: np.ndarray, min_area: int = 1, tolerance: float = 0.0
) -> List[CellBoundary]:
    """
    Extract cell polygons from a segmentation mask.

    Parameters
    ----------
    label_mask : np.ndarray
        2-D integer array, one positive id per cell and 0 for background.
    min_area : int, optional
        Cells with fewer pixels are skipped (default is 1).
    tolerance : float, optional
        Douglas-Peucker tolerance for contour simplification, in pixels
        (default 0.0 keeps every contour vertex).

    Returns
    -------
    List[CellBoundary]
        One boundary per cell, ordered by cell id.
    """
    start = time.perf_counter()
    label_array = np.squeeze(np.asarray(label_mask))
    if label_array.ndim != 2:
        raise ValueError(f"Label mask must be 2-D, got shape {label_array.shape}")
    label_array_int = label_array.astype(np.int64)
    if np.any(label_array_int < 0):
        raise ValueError("Label mask must not contain negative ids")

    # slices[i] is the bounding box of label i + 1, None when absent
    slices = find_objects(label_array_int)
    cells = []
    for idx, bbox in enumerate(slices):
        if bbox is None:
            continue
        label_id = idx + 1
        row_min, col_min = bbox[0].start, bbox[1].start
        mask_bbox = (label_array_int[bbox] == label_id).astype(np.uint8)
        if int(mask_bbox.sum()) < min_area:
            continue

        # Pad by one pixel so contours touching the raster edge close
        contours = measure.find_contours(np.pad(mask_bbox, 1), 0.5)
        if not contours:
            continue
        contour = max(contours, key=len)
        if tolerance > 0:
            contour = measure.approximate_polygon(contour, tolerance=tolerance)
        if len(contour) < 4:
            continue

        # (row, col) in padded bbox space -> (x, y) with pixel centres at +0.5
        xy = np.column_stack(
            [contour[:, 1] + col_min - 1 + 0.5, contour[:, 0] + row_min - 1 + 0.5]
        )
        geometry = _largest_part(shapely.make_valid(Polygon(xy)))
        if geometry.is_empty:
            continue
        cells.append(CellBoundary(label_id, geometry))

    logger.debug(
        "[Segmentation] Time to extract %d cell polygons: %.3fs",
        len(cells),
        time.perf_counter() - start,
    )
    return cells


def _largest_part(geom: BaseGeometry) -> BaseGeometry:
    geom = polygonal(geom)
    if geom.geom_type == "MultiPolygon":
        return max(geom.geoms, key=lambda part: part.area)
    return geom


def cell_boundaries(polygons: Mapping[int, Any]) -> List[CellBoundary]:
    """
    Wrap externally supplied cell polygons after validation.

    Parameters
    ----------
    polygons : Mapping[int, Any]
        Cell id to anything :func:`~imcview.core.polygon.as_polygon` accepts.

    Raises
    ------
    InvalidGeometryError
        If any cell polygon is malformed.
    """
    return [
        CellBoundary(int(cell_id), as_polygon(geometry))
        for cell_id, geometry in sorted(polygons.items())
    ]
