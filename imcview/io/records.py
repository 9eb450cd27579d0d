"""
Plain-dict records for persisting annotations, display settings and
classification results.

Records only contain JSON-compatible values (geometry as a GeoJSON-like
mapping, timestamps as ISO 8601 strings); writing them to a project file
is left to the caller.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping

import pandas as pd
from shapely.geometry import mapping, shape
from shapely.errors import GeometryTypeError

from ..core.annotation import Annotation, AnnotationSet
from ..core.channel import ChannelDisplaySettings
from ..core.classifier import LabelRaster
from ..core.errors import InvalidGeometryError

Record = Dict[str, Any]


def annotation_to_record(annotation: Annotation) -> Record:
    """
    Record of one annotation.

    Returns
    -------
    Record
        Keys ``id``, ``label``, ``colour``, ``description``, ``created_at``
        and ``geometry``.
    """
    return {
        "id": annotation.annotation_id,
        "label": annotation.label,
        "colour": [int(v) for v in annotation.colour],
        "description": annotation.description,
        "created_at": annotation.created_at.isoformat(),
        "geometry": mapping(annotation.geometry),
    }


def annotations_to_records(annotations: Iterable[Annotation]) -> List[Record]:
    """Records of several annotations (an AnnotationSet works too), in creation order."""
    return [
        annotation_to_record(a)
        for a in sorted(annotations, key=lambda a: a.annotation_id)
    ]


def annotation_from_record(record: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Decode a record into an item for :meth:`AnnotationSet.add_many`.

    The stored id is not reused; ids are assigned by the receiving set.

    Raises
    ------
    ValueError
        If a required key is missing or the timestamp is malformed.
    InvalidGeometryError
        If the geometry mapping cannot be decoded.
    """
    try:
        label = record["label"]
        geometry_record = record["geometry"]
    except KeyError as e:
        raise ValueError(f"Annotation record is missing {e}") from None
    try:
        geometry = shape(geometry_record)
    except (GeometryTypeError, ValueError, TypeError, KeyError, AttributeError) as e:
        raise InvalidGeometryError(f"Cannot decode geometry of {label!r}: {e}") from e

    item: Dict[str, Any] = {
        "label": str(label),
        "geometry": geometry,
        "description": str(record.get("description", "")),
    }
    if record.get("colour") is not None:
        item["colour"] = tuple(record["colour"])
    if record.get("created_at"):
        item["created_at"] = datetime.fromisoformat(record["created_at"])
    return item


def load_annotation_records(
    annotation_set: AnnotationSet, records: Iterable[Mapping[str, Any]]
) -> List[Annotation]:
    """
    Add the annotations of ``records`` to a set, all or nothing.

    Returns
    -------
    List[Annotation]
        The added annotations in record order.
    """
    return annotation_set.add_many([annotation_from_record(r) for r in records])


def settings_to_record(settings: ChannelDisplaySettings) -> Record:
    return {
        "channel_id": settings.channel_id,
        "lower": float(settings.lower),
        "upper": float(settings.upper),
        "color": [int(v) for v in settings.color],
        "enabled": bool(settings.enabled),
    }


def settings_from_record(record: Mapping[str, Any]) -> ChannelDisplaySettings:
    try:
        return ChannelDisplaySettings(
            channel_id=str(record["channel_id"]),
            lower=float(record["lower"]),
            upper=float(record["upper"]),
            color=tuple(int(v) for v in record["color"]),
            enabled=bool(record.get("enabled", True)),
        )
    except KeyError as e:
        raise ValueError(f"Display settings record is missing {e}") from None


def cell_labels_to_frame(raster: LabelRaster) -> pd.DataFrame:
    """
    Table of cell classification results, one row per cell.

    Returns
    -------
    pd.DataFrame
        Columns ``cell_id`` and ``label``, sorted by cell id.

    Raises
    ------
    ValueError
        If the raster comes from a pixel model.
    """
    if raster.cell_labels is None:
        raise ValueError("Raster has no cell labels (pixel model)")
    frame = pd.DataFrame(
        sorted(raster.cell_labels.items()), columns=["cell_id", "label"]
    )
    return frame
