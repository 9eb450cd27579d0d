"""
Labelled polygon annotations over one acquisition.

This module provides the immutable Annotation record and the AnnotationSet
holding every annotation of an acquisition together with the pencil stroke
state machine, boolean combination and picking.
"""

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from shapely.geometry.base import BaseGeometry

from .colour import palette_color, to_rgb255
from .config import DEFAULT_BRUSH_RADIUS, GEOMETRY_GRID_SIZE, INDEX_CELL_SIZE
from .errors import InvalidStateError, NotFoundError
from .polygon import (
    BooleanOp,
    Point,
    Rings,
    as_polygon,
    combine,
    contains_point,
    polygon_rings,
    stroke_to_polygon,
)
from .spatial_index import GridIndex
from .state import Stroke, StrokeState

logger = logging.getLogger(__name__)

Color = Tuple[int, int, int]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Annotation:
    """
    A labelled region drawn over an acquisition.

    Annotations are immutable; every edit stores a new instance under the
    same id.

    Attributes
    ----------
    annotation_id : int
        Unique id, increasing in creation order.
    label : str
        Class tag used for training (e.g. "tumor").
    geometry : BaseGeometry
        Valid Polygon or MultiPolygon in acquisition pixel coordinates.
    created_at : datetime
        Creation time (UTC).
    colour : Color
        RGB display colour (0-255).
    description : str
        Free text.
    """

    annotation_id: int
    label: str
    geometry: BaseGeometry
    created_at: datetime = field(default_factory=_utcnow)
    colour: Color = (255, 255, 255)
    description: str = ""

    @property
    def area(self) -> float:
        return float(self.geometry.area)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        return tuple(self.geometry.bounds)

    def rings(self) -> Rings:
        return polygon_rings(self.geometry)

    def contains(self, x: float, y: float) -> bool:
        return contains_point(self.geometry, x, y)


class AnnotationSet:
    """
    Every annotation of one acquisition plus the pencil interaction state.

    All operations hold one re-entrant lock. Mutations validate their input
    and compute the new geometry before touching stored state, so a failing
    call changes nothing and concurrent readers only ever see whole states.

    Attributes
    ----------
    brush_radius : float
        Pencil radius in acquisition pixels.
    grid_size : float
        Precision grid of every stored geometry.
    """

    brush_radius: float
    grid_size: float

    def __init__(
        self,
        brush_radius: float = DEFAULT_BRUSH_RADIUS,
        grid_size: float = GEOMETRY_GRID_SIZE,
        index_cell_size: float = INDEX_CELL_SIZE,
    ) -> None:
        if brush_radius <= 0:
            raise ValueError(f"Brush radius must be positive, got {brush_radius}")
        self.brush_radius = float(brush_radius)
        self.grid_size = grid_size
        self._annotations: Dict[int, Annotation] = {}
        self._index = GridIndex(index_cell_size)
        self._label_colours: Dict[str, Color] = {}
        self._next_id = 1
        self._stroke: Optional[Stroke] = None
        self._lock = threading.RLock()

    # Stroke state machine

    @property
    def state(self) -> StrokeState:
        with self._lock:
            return StrokeState.IDLE if self._stroke is None else StrokeState.DRAWING

    @property
    def stroke_points(self) -> List[Point]:
        """Points of the pending stroke (empty when idle)."""
        with self._lock:
            return [] if self._stroke is None else list(self._stroke.points)

    def begin_stroke(self, point: Point) -> None:
        """
        Open a new stroke at ``point`` (IDLE -> DRAWING).

        Raises
        ------
        InvalidStateError
            If a stroke is already open.
        """
        with self._lock:
            if self._stroke is not None:
                raise InvalidStateError("A stroke is already in progress")
            self._stroke = Stroke(point)

    def extend_stroke(self, point: Point) -> None:
        """Append a point to the open stroke (DRAWING -> DRAWING)."""
        with self._lock:
            self._require_stroke().append(point)

    def cancel_stroke(self) -> None:
        """Discard the open stroke (DRAWING -> IDLE)."""
        with self._lock:
            self._require_stroke()
            self._stroke = None

    def commit_stroke(self, label: str, colour: Optional[Any] = None) -> Annotation:
        """
        Close the open stroke into a region and store it as a new annotation.

        Parameters
        ----------
        label : str
            Class tag of the new annotation.
        colour : Optional[Any]
            Display colour; defaults to the colour of ``label``.

        Returns
        -------
        Annotation
            The stored annotation.

        Raises
        ------
        InvalidStateError
            If no stroke is open.
        DegenerateStrokeError
            If fewer than 2 distinct points were recorded. The stroke stays
            open so it can be extended or cancelled.
        """
        with self._lock:
            geometry = self._stroke_geometry()
            self._stroke = None
            annotation = self._insert(label, geometry, colour)
            logger.debug(
                "[Annotate] Committed stroke as #%d %r (area %.2f)",
                annotation.annotation_id,
                label,
                annotation.area,
            )
            return annotation

    def paint_stroke(self, annotation_id: int) -> Annotation:
        """
        Close the open stroke and union it into an existing annotation.

        Raises
        ------
        NotFoundError
            If the annotation does not exist; the stroke stays open.
        """
        with self._lock:
            target = self.get(annotation_id)
            geometry = self._stroke_geometry()
            merged = combine(BooleanOp.UNION, target.geometry, geometry, self.grid_size)
            self._stroke = None
            return self._replace(replace(target, geometry=merged))

    def erase_stroke(self, annotation_id: int) -> Optional[Annotation]:
        """
        Close the open stroke and subtract it from an existing annotation.

        Returns
        -------
        Optional[Annotation]
            The updated annotation, or None if nothing was left and the
            annotation was deleted.
        """
        with self._lock:
            target = self.get(annotation_id)
            geometry = self._stroke_geometry()
            rest = combine(BooleanOp.DIFFERENCE, target.geometry, geometry, self.grid_size)
            self._stroke = None
            return self._store_or_delete(target, rest)

    def _require_stroke(self) -> Stroke:
        if self._stroke is None:
            raise InvalidStateError("No stroke in progress")
        return self._stroke

    def _stroke_geometry(self) -> BaseGeometry:
        stroke = self._require_stroke()
        return stroke_to_polygon(stroke.points, self.brush_radius, self.grid_size)

    # Editing

    def add(
        self,
        label: str,
        geometry: Any,
        colour: Optional[Any] = None,
        description: str = "",
    ) -> Annotation:
        """
        Validate a polygon and store it as a new annotation.

        Parameters
        ----------
        label : str
            Class tag.
        geometry : Any
            Anything :func:`~imcview.core.polygon.as_polygon` accepts.
        colour : Optional[Any]
            Display colour; defaults to the colour of ``label``.
        description : str, optional
            Free text.

        Raises
        ------
        InvalidGeometryError
            If the polygon is malformed; nothing is stored.
        """
        geometry = as_polygon(geometry, self.grid_size)
        with self._lock:
            return self._insert(label, geometry, colour, description)

    def add_many(self, items: Iterable[Mapping[str, Any]]) -> List[Annotation]:
        """
        Store several annotations at once, all or nothing.

        Parameters
        ----------
        items : Iterable[Mapping[str, Any]]
            Mappings with keys ``label`` and ``geometry`` and optionally
            ``colour``, ``description`` and ``created_at``.

        Returns
        -------
        List[Annotation]
            The stored annotations, in input order.

        Raises
        ------
        InvalidGeometryError
            If any geometry is malformed; nothing is stored.
        """
        prepared = []
        for item in items:
            try:
                label = str(item["label"])
                geometry = item["geometry"]
            except KeyError as e:
                raise ValueError(f"Annotation item is missing {e}") from None
            colour = item.get("colour")
            prepared.append(
                (
                    label,
                    as_polygon(geometry, self.grid_size),
                    None if colour is None else _as_colour(colour),
                    str(item.get("description", "")),
                    item.get("created_at"),
                )
            )
        with self._lock:
            added = [
                self._insert(label, geometry, colour, description, created_at)
                for label, geometry, colour, description, created_at in prepared
            ]
        logger.debug("[Annotate] Added %d annotations", len(added))
        return added

    def get(self, annotation_id: int) -> Annotation:
        """
        Look up an annotation.

        Raises
        ------
        NotFoundError
            If there is no annotation with this id.
        """
        with self._lock:
            try:
                return self._annotations[annotation_id]
            except KeyError:
                raise NotFoundError(f"Annotation {annotation_id} not found") from None

    def delete(self, annotation_id: int) -> Annotation:
        """Remove an annotation and return it."""
        with self._lock:
            annotation = self.get(annotation_id)
            del self._annotations[annotation_id]
            self._index.remove(annotation_id)
            return annotation

    def set_label(self, annotation_id: int, label: str) -> Annotation:
        with self._lock:
            return self._replace(replace(self.get(annotation_id), label=label))

    def set_colour(self, annotation_id: int, colour: Any) -> Annotation:
        colour = _as_colour(colour)
        with self._lock:
            return self._replace(replace(self.get(annotation_id), colour=colour))

    def clear(self) -> None:
        """Remove every annotation and drop any open stroke."""
        with self._lock:
            self._annotations = {}
            self._index.clear()
            self._stroke = None

    def combine(
        self,
        op: BooleanOp,
        target_id: int,
        other_id: int,
        delete_other: bool = False,
    ) -> Optional[Annotation]:
        """
        Combine two annotations and write the result into the target.

        Parameters
        ----------
        op : BooleanOp
            Union, intersection or difference (target minus other).
        target_id : int
            Annotation receiving the result; keeps its id, label and colour.
        other_id : int
            The second operand.
        delete_other : bool, optional
            Also delete the second operand (default is False).

        Returns
        -------
        Optional[Annotation]
            The updated target, or None if the result was empty and the
            target was deleted.

        Raises
        ------
        NotFoundError
            If either id is unknown; nothing changes.
        """
        with self._lock:
            target = self.get(target_id)
            other = self.get(other_id)
            result = combine(op, target.geometry, other.geometry, self.grid_size)
            if delete_other and other_id != target_id:
                self.delete(other_id)
            updated = self._store_or_delete(target, result)
            logger.debug(
                "[Annotate] %s of #%d and #%d -> %s",
                op.name.lower(),
                target_id,
                other_id,
                "empty" if updated is None else f"area {updated.area:.2f}",
            )
            return updated

    def _colour_for(self, label: str) -> Color:
        if label not in self._label_colours:
            self._label_colours[label] = palette_color(len(self._label_colours))
        return self._label_colours[label]

    def _insert(
        self,
        label: str,
        geometry: BaseGeometry,
        colour: Optional[Any],
        description: str = "",
        created_at: Optional[datetime] = None,
    ) -> Annotation:
        annotation = Annotation(
            annotation_id=self._next_id,
            label=label,
            geometry=geometry,
            created_at=created_at or _utcnow(),
            colour=self._colour_for(label) if colour is None else _as_colour(colour),
            description=description,
        )
        self._next_id += 1
        self._annotations[annotation.annotation_id] = annotation
        self._index.insert(annotation.annotation_id, annotation.bounds)
        return annotation

    def _replace(self, annotation: Annotation) -> Annotation:
        self._annotations[annotation.annotation_id] = annotation
        self._index.insert(annotation.annotation_id, annotation.bounds)
        return annotation

    def _store_or_delete(
        self, target: Annotation, geometry: BaseGeometry
    ) -> Optional[Annotation]:
        if geometry.is_empty:
            self.delete(target.annotation_id)
            return None
        return self._replace(replace(target, geometry=geometry))

    # Queries

    def point_in_annotation(self, x: float, y: float) -> Optional[Annotation]:
        """
        The topmost (most recently created) annotation containing (x, y).

        Points on a boundary count as inside.
        """
        hits = self.annotations_at(x, y)
        return hits[0] if hits else None

    def annotations_at(self, x: float, y: float) -> List[Annotation]:
        """Every annotation containing (x, y), topmost first."""
        with self._lock:
            return [
                self._annotations[annotation_id]
                for annotation_id in self._index.candidates(x, y)
                if self._annotations[annotation_id].contains(x, y)
            ]

    def snapshot(self) -> Tuple[Annotation, ...]:
        """Immutable view of every annotation in creation order."""
        with self._lock:
            return tuple(self._annotations.values())

    def labels(self) -> List[str]:
        """Sorted unique labels."""
        return sorted({a.label for a in self.snapshot()})

    def __len__(self) -> int:
        with self._lock:
            return len(self._annotations)

    def __iter__(self) -> Iterator[Annotation]:
        return iter(self.snapshot())

    def __contains__(self, annotation_id: object) -> bool:
        with self._lock:
            return annotation_id in self._annotations


def _as_colour(colour: Any) -> Color:
    return tuple(int(round(v)) for v in to_rgb255(colour))
