"""
I/O module for imcview persistence records.

This module provides:
- annotation_to_record, annotations_to_records, annotation_from_record,
  load_annotation_records: Annotation records
- settings_to_record, settings_from_record: Display settings records
- cell_labels_to_frame: Cell classification table
"""

from .records import (
    annotation_to_record,
    annotations_to_records,
    annotation_from_record,
    load_annotation_records,
    settings_to_record,
    settings_from_record,
    cell_labels_to_frame,
)

__all__ = [
    "annotation_to_record",
    "annotations_to_records",
    "annotation_from_record",
    "load_annotation_records",
    "settings_to_record",
    "settings_from_record",
    "cell_labels_to_frame",
]
