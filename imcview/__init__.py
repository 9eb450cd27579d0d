"""
imcview package.

This package provides the core of an imaging mass cytometry viewer:
channel compositing, polygon annotation and pixel/cell classification.

Modules
-------
core : Core data structures and algorithms
    - Channel, ChannelStore, ChannelDisplaySettings, Region
    - MixingMode, CompositeImage, CompositeRenderer, render
    - BooleanOp, Annotation, AnnotationSet
    - CellBoundary, cells_from_label_mask
    - ClassifierModel, LabelRaster, train, classify
    - TaskRunner

io : Persistence records
    - annotation_to_record, load_annotation_records
    - settings_to_record, settings_from_record
"""

# Re-export core components for convenient access
from .core import (
    ImcViewError,
    NotFoundError,
    OutOfBoundsError,
    InvalidGeometryError,
    DegenerateStrokeError,
    InsufficientTrainingDataError,
    ModelChannelMismatchError,
    InvalidStateError,
    Channel,
    ChannelStore,
    ChannelDisplaySettings,
    Region,
    default_display_settings,
    MixingMode,
    CompositeImage,
    CompositeRenderer,
    render,
    BooleanOp,
    Annotation,
    AnnotationSet,
    StrokeState,
    CellBoundary,
    cells_from_label_mask,
    ClassifierModel,
    LabelRaster,
    train,
    classify,
    TaskRunner,
)

# Re-export I/O components
from .io import (
    annotation_to_record,
    annotations_to_records,
    load_annotation_records,
    settings_to_record,
    settings_from_record,
)

__version__ = "0.1.0"

__all__ = [
    # Errors
    "ImcViewError",
    "NotFoundError",
    "OutOfBoundsError",
    "InvalidGeometryError",
    "DegenerateStrokeError",
    "InsufficientTrainingDataError",
    "ModelChannelMismatchError",
    "InvalidStateError",
    # Core
    "Channel",
    "ChannelStore",
    "ChannelDisplaySettings",
    "Region",
    "default_display_settings",
    "MixingMode",
    "CompositeImage",
    "CompositeRenderer",
    "render",
    "BooleanOp",
    "Annotation",
    "AnnotationSet",
    "StrokeState",
    "CellBoundary",
    "cells_from_label_mask",
    "ClassifierModel",
    "LabelRaster",
    "train",
    "classify",
    "TaskRunner",
    # I/O
    "annotation_to_record",
    "annotations_to_records",
    "load_annotation_records",
    "settings_to_record",
    "settings_from_record",
]
