import json

import numpy as np
import pytest

from imcview.core import (
    AnnotationSet,
    ChannelDisplaySettings,
    InvalidGeometryError,
    cells_from_label_mask,
    classify,
    train,
)
from imcview.io import (
    annotation_from_record,
    annotations_to_records,
    cell_labels_to_frame,
    load_annotation_records,
    settings_from_record,
    settings_to_record,
)


def square(x0, y0, x1, y1):
    return [(x0, y0), (x1, y0), (x1, y1), (x0, y1), (x0, y0)]


def test_annotation_records_round_trip():
    source = AnnotationSet()
    source.add("tumor", [square(0, 0, 10, 10), square(3, 3, 7, 7)], description="core")
    source.add("stroma", square(20, 20, 25, 25), colour=(10, 20, 30))
    records = annotations_to_records(source)
    # records survive JSON
    records = json.loads(json.dumps(records))
    assert [r["label"] for r in records] == ["tumor", "stroma"]

    target = AnnotationSet()
    loaded = load_annotation_records(target, records)
    for original, copy in zip(source.snapshot(), loaded):
        assert copy.label == original.label
        assert copy.geometry.equals(original.geometry)
        assert copy.colour == original.colour
        assert copy.created_at == original.created_at
        assert copy.description == original.description


def test_loading_is_all_or_nothing():
    records = [
        {"label": "ok", "geometry": {"type": "Polygon", "coordinates": [square(0, 0, 1, 1)]}},
        {
            "label": "bow tie",
            "geometry": {
                "type": "Polygon",
                "coordinates": [[(0, 0), (2, 2), (2, 0), (0, 2), (0, 0)]],
            },
        },
    ]
    target = AnnotationSet()
    with pytest.raises(InvalidGeometryError):
        load_annotation_records(target, records)
    assert len(target) == 0


def test_malformed_records():
    with pytest.raises(ValueError):
        annotation_from_record({"label": "x"})
    with pytest.raises(InvalidGeometryError):
        annotation_from_record({"label": "x", "geometry": {"type": "Blob"}})


def test_settings_record_round_trip():
    settings = ChannelDisplaySettings("CD45", 1.5, 30.0, (255, 0, 255), enabled=False)
    record = settings_to_record(settings)
    assert json.loads(json.dumps(record)) == record
    assert settings_from_record(record) == settings
    with pytest.raises(ValueError):
        settings_from_record({"channel_id": "CD45"})


def test_cell_labels_frame_needs_cell_model(two_tissue_store, tissue_annotations):
    raster = classify(train(tissue_annotations, two_tissue_store), two_tissue_store)
    with pytest.raises(ValueError):
        cell_labels_to_frame(raster)


def test_cell_labels_frame(two_tissue_store, tissue_annotations):
    mask = np.zeros((20, 20), dtype=np.int32)
    mask[2:5, 2:5] = 7
    mask[2:5, 14:17] = 3
    cells = cells_from_label_mask(mask)
    model = train(tissue_annotations, two_tissue_store, cells=cells)
    frame = cell_labels_to_frame(classify(model, two_tissue_store, cells=cells))
    assert list(frame.columns) == ["cell_id", "label"]
    assert frame.to_dict("records") == [
        {"cell_id": 3, "label": "B"},
        {"cell_id": 7, "label": "T"},
    ]
