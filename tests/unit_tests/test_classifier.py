import numpy as np
import pandas as pd
import pytest

from imcview.core import (
    AnnotationSet,
    ChannelStore,
    InsufficientTrainingDataError,
    ModelChannelMismatchError,
    OutOfBoundsError,
    Region,
    cells_from_label_mask,
    classify,
    extract_cell_features,
    extract_pixel_features,
    predict_features,
    train,
)


def square(x0, y0, x1, y1):
    return [(x0, y0), (x1, y0), (x1, y1), (x0, y1), (x0, y0)]


def test_single_label_is_insufficient(two_tissue_store):
    annotations = AnnotationSet()
    annotations.add("T", square(1, 1, 8, 8))
    annotations.add("T", square(1, 10, 8, 18))
    with pytest.raises(InsufficientTrainingDataError):
        train(annotations, two_tissue_store)
    with pytest.raises(InsufficientTrainingDataError):
        train([], two_tissue_store)


def test_label_without_pixels_is_insufficient(two_tissue_store):
    annotations = AnnotationSet()
    annotations.add("T", square(1, 1, 8, 8))
    # contains no pixel centre
    annotations.add("B", square(12.6, 1.6, 12.9, 1.9))
    with pytest.raises(InsufficientTrainingDataError, match="B"):
        train(annotations, two_tissue_store)


def test_train_records_channel_order(two_tissue_store, tissue_annotations):
    model = train(tissue_annotations, two_tissue_store)
    assert model.channel_ids == ("CD3", "CD20", "DNA")
    assert model.labels == ("B", "T")
    assert model.unit == "pixel"
    assert set(model.label_colours) == {"B", "T"}

    reordered = train(tissue_annotations, two_tissue_store, channel_ids=["CD20", "CD3"])
    assert reordered.channel_ids == ("CD20", "CD3")
    importances = reordered.feature_importances()
    assert list(importances.index) == ["CD20", "CD3"]
    assert importances.sum() == pytest.approx(1.0)


def test_classify_whole_acquisition(two_tissue_store, tissue_annotations):
    model = train(tissue_annotations, two_tissue_store, max_depth=3)
    raster = classify(model, two_tissue_store)
    assert raster.indices.shape == (20, 20)
    assert raster.label_at(2, 15) == "T"
    assert raster.label_at(15, 15) == "B"
    counts = raster.counts()
    assert counts["T"] == 200 and counts["B"] == 200
    masks = raster.masks()
    assert masks["T"][:, :10].all() and not masks["T"][:, 10:].any()
    with pytest.raises(OutOfBoundsError):
        raster.label_at(20, 0)


def test_classify_region(two_tissue_store, tissue_annotations):
    model = train(tissue_annotations, two_tissue_store)
    raster = classify(model, two_tissue_store, Region(10, 0, 10, 20))
    assert raster.indices.shape == (20, 10)
    assert raster.label_at(10, 0) == "B"
    assert (raster.indices == model.label_index("B")).all()
    with pytest.raises(OutOfBoundsError):
        raster.label_at(5, 5)
    with pytest.raises(OutOfBoundsError):
        classify(model, two_tissue_store, Region(15, 0, 10, 20))


def test_classification_is_deterministic(two_tissue_store, tissue_annotations):
    first = classify(train(tissue_annotations, two_tissue_store), two_tissue_store)
    second = classify(train(tissue_annotations, two_tissue_store), two_tissue_store)
    np.testing.assert_array_equal(first.indices, second.indices)


def test_missing_model_channel(two_tissue_store, tissue_annotations):
    planes = {cid: two_tissue_store.get(cid).image_data for cid in two_tissue_store.channel_ids}
    planes["CD45"] = np.zeros((20, 20))
    with_cd45 = ChannelStore.from_planes(planes)
    model = train(tissue_annotations, with_cd45)
    assert "CD45" in model.channel_ids
    with pytest.raises(ModelChannelMismatchError):
        classify(model, two_tissue_store)
    # a channel superset is fine
    subset_model = train(tissue_annotations, two_tissue_store, channel_ids=["CD3"])
    assert classify(subset_model, with_cd45).label_at(0, 0) == "T"


def test_pixel_features(two_tissue_store):
    annotations = AnnotationSet()
    annotations.add("T", square(1, 1, 8, 8))
    annotations.add("B", square(6, 6, 10, 10))
    features = extract_pixel_features(annotations, two_tissue_store)
    assert list(features.columns) == ["CD3", "CD20", "DNA"]
    assert list(features.index.names) == ["x", "y", "label", "annotation_id"]
    # overlapping pixels belong to the topmost annotation only
    positions = features.index.droplevel(["label", "annotation_id"])
    assert not positions.duplicated().any()
    labels = features.index.get_level_values("label")
    assert (labels == "B").sum() == 16
    assert (labels == "T").sum() == 49 - 4
    row = features.xs((2, 3), level=["x", "y"]).iloc[0]
    assert row["CD3"] == 10.0
    assert row["DNA"] == pytest.approx(float(two_tissue_store.sample("DNA", 2, 3)))


def _renamed_store(two_tissue_store):
    return ChannelStore.from_planes(
        {
            "x": two_tissue_store.get("CD3").image_data,
            "label": two_tissue_store.get("CD20").image_data,
            "annotation_id": two_tissue_store.get("DNA").image_data,
        }
    )


def test_channel_named_like_row_metadata(two_tissue_store, tissue_annotations):
    store = _renamed_store(two_tissue_store)
    features = extract_pixel_features(tissue_annotations, store)
    assert list(features.columns) == ["x", "label", "annotation_id"]
    assert set(features.index.get_level_values("label")) == {"T", "B"}
    assert set(features["label"]) == {0.0, 10.0}

    model = train(tissue_annotations, store)
    assert model.channel_ids == ("x", "label", "annotation_id")
    raster = classify(model, store)
    assert raster.label_at(2, 15) == "T"
    assert raster.label_at(15, 15) == "B"


def test_training_needs_a_channel(two_tissue_store, tissue_annotations):
    with pytest.raises(InsufficientTrainingDataError, match="channel"):
        train(tissue_annotations, two_tissue_store, channel_ids=[])
    with pytest.raises(InsufficientTrainingDataError, match="channel"):
        train(tissue_annotations, ChannelStore.from_planes({}))


def test_predict_features_aligns_columns(two_tissue_store, tissue_annotations):
    model = train(tissue_annotations, two_tissue_store)
    frame = pd.DataFrame({"DNA": [1.0, 1.0], "CD20": [0.0, 10.0], "CD3": [10.0, 0.0]})
    assert list(predict_features(model, frame)) == ["T", "B"]
    with pytest.raises(ModelChannelMismatchError):
        predict_features(model, frame.drop(columns=["CD3"]))


def test_overlay(two_tissue_store, tissue_annotations):
    raster = classify(train(tissue_annotations, two_tissue_store), two_tissue_store)
    rgba = raster.to_rgba()
    assert rgba.shape == (20, 20, 4)
    assert (rgba[..., 3] == 200).all()
    t_colour = tissue_annotations.snapshot()[0].colour
    assert tuple(rgba[0, 0, :3]) == t_colour
    custom = raster.to_rgba(alpha=90, colours={"B": (1, 2, 3)})
    assert tuple(custom[0, 19]) == (1, 2, 3, 90)


def _cells():
    mask = np.zeros((20, 20), dtype=np.int32)
    mask[1:4, 1:4] = 1  # left, inside the T annotation
    mask[1:4, 13:16] = 2  # right, inside the B annotation
    mask[12:15, 2:5] = 3  # left, unannotated
    mask[12:15, 14:17] = 4  # right, unannotated
    return cells_from_label_mask(mask)


def test_cell_features(two_tissue_store, tissue_annotations):
    cells = _cells()
    features = extract_cell_features(tissue_annotations, two_tissue_store, cells)
    assert list(features.columns) == ["CD3", "CD20", "DNA"]
    assert list(features.index.get_level_values("cell_id")) == [1, 2, 3, 4]
    by_cell = features.droplevel(["label", "annotation_id"])
    assert by_cell.loc[1, "CD3"] == 10.0
    assert by_cell.loc[2, "CD20"] == 10.0
    labels = features.index.get_level_values("label")
    assert list(labels[:2]) == ["T", "B"]
    assert labels[2:].isna().all()
    medians = extract_cell_features(None, two_tissue_store, cells, ["CD3"], "median")
    assert list(medians.columns) == ["CD3"]
    assert medians.index.name == "cell_id"
    with pytest.raises(ValueError):
        extract_cell_features(None, two_tissue_store, cells, statistic="max")


def test_cell_classification(two_tissue_store, tissue_annotations):
    cells = _cells()
    model = train(tissue_annotations, two_tissue_store, cells=cells)
    assert model.unit == "cell"
    raster = classify(model, two_tissue_store, cells=cells)
    assert raster.cell_labels == {1: "T", 2: "B", 3: "T", 4: "B"}
    assert raster.label_at(3, 13) == "T"
    assert raster.label_at(15, 13) == "B"
    assert raster.label_at(10, 10) is None
    assert raster.counts().sum() == 4 * 9
    with pytest.raises(ValueError):
        classify(model, two_tissue_store)


def test_cell_model_with_channel_named_label(two_tissue_store, tissue_annotations):
    store = _renamed_store(two_tissue_store)
    cells = _cells()
    model = train(tissue_annotations, store, cells=cells)
    raster = classify(model, store, cells=cells)
    assert raster.cell_labels == {1: "T", 2: "B", 3: "T", 4: "B"}
