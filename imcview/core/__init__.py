"""
Core module containing the viewer's data structures and algorithms.

This module provides:
- Channel, ChannelStore, ChannelDisplaySettings, Region: Channel raster store
- MixingMode, channel_contribution, ColourAccumulator: Threshold and colour model
- CompositeImage, CompositeRenderer, render: Composite rendering
- BooleanOp, as_polygon, combine, stroke_to_polygon: Polygon geometry
- Annotation, AnnotationSet, StrokeState: Annotation engine
- CellBoundary, cells_from_label_mask: Cell segmentation input
- ClassifierModel, LabelRaster, train, classify: Classifier pipeline
- TaskRunner, TaskHandle: Background tasks
- ImcViewError and subclasses: Errors
"""

from .errors import (
    ImcViewError,
    NotFoundError,
    OutOfBoundsError,
    InvalidGeometryError,
    DegenerateStrokeError,
    InsufficientTrainingDataError,
    ModelChannelMismatchError,
    InvalidStateError,
)
from .config import CHANNEL_COLORS
from .channel import (
    Channel,
    ChannelStore,
    ChannelDisplaySettings,
    Region,
    default_display_settings,
)
from .colour import (
    MixingMode,
    ColourAccumulator,
    channel_contribution,
    generate_label_colors,
)
from .composite import CompositeImage, CompositeRenderer, render
from .polygon import (
    BooleanOp,
    EMPTY_POLYGON,
    as_polygon,
    combine,
    stroke_to_polygon,
    polygon_rings,
    contains_point,
    pixels_in,
)
from .state import StrokeState, Stroke
from .spatial_index import GridIndex
from .annotation import Annotation, AnnotationSet
from .segmentation import CellBoundary, cells_from_label_mask, cell_boundaries
from .classifier import (
    ClassifierModel,
    LabelRaster,
    extract_pixel_features,
    extract_cell_features,
    train,
    classify,
    predict_features,
)
from .tasks import TaskRunner, TaskHandle

# Set canonical module paths to avoid Sphinx cross-reference ambiguity
Channel.__module__ = "imcview.core.channel"
ChannelStore.__module__ = "imcview.core.channel"
ChannelDisplaySettings.__module__ = "imcview.core.channel"
Region.__module__ = "imcview.core.channel"
MixingMode.__module__ = "imcview.core.colour"
ColourAccumulator.__module__ = "imcview.core.colour"
CompositeImage.__module__ = "imcview.core.composite"
CompositeRenderer.__module__ = "imcview.core.composite"
BooleanOp.__module__ = "imcview.core.polygon"
StrokeState.__module__ = "imcview.core.state"
Annotation.__module__ = "imcview.core.annotation"
AnnotationSet.__module__ = "imcview.core.annotation"
CellBoundary.__module__ = "imcview.core.segmentation"
ClassifierModel.__module__ = "imcview.core.classifier"
LabelRaster.__module__ = "imcview.core.classifier"
TaskRunner.__module__ = "imcview.core.tasks"

__all__ = [
    "ImcViewError",
    "NotFoundError",
    "OutOfBoundsError",
    "InvalidGeometryError",
    "DegenerateStrokeError",
    "InsufficientTrainingDataError",
    "ModelChannelMismatchError",
    "InvalidStateError",
    "CHANNEL_COLORS",
    "Channel",
    "ChannelStore",
    "ChannelDisplaySettings",
    "Region",
    "default_display_settings",
    "MixingMode",
    "ColourAccumulator",
    "channel_contribution",
    "generate_label_colors",
    "CompositeImage",
    "CompositeRenderer",
    "render",
    "BooleanOp",
    "EMPTY_POLYGON",
    "as_polygon",
    "combine",
    "stroke_to_polygon",
    "polygon_rings",
    "contains_point",
    "pixels_in",
    "StrokeState",
    "Stroke",
    "GridIndex",
    "Annotation",
    "AnnotationSet",
    "CellBoundary",
    "cells_from_label_mask",
    "cell_boundaries",
    "ClassifierModel",
    "LabelRaster",
    "extract_pixel_features",
    "extract_cell_features",
    "train",
    "classify",
    "predict_features",
    "TaskRunner",
    "TaskHandle",
]
