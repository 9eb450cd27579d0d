"""
Pixel and cell classification trained from labelled annotations.

Training pixels are the pixels whose centres lie strictly inside an
annotation; a pixel covered by several annotations belongs to the topmost
one. With cell boundaries supplied, the unit of classification is the cell
instead: a cell takes the label of the topmost annotation containing its
representative point and its features are per-channel statistics over its
pixels.

The model is a scikit-learn decision tree. It records the channel id order
of its features, so it can never be applied to a differently ordered
feature vector.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.tree import DecisionTreeClassifier

from .annotation import Annotation
from .channel import ChannelStore, Region
from .colour import generate_label_colors
from .config import CLASSIFIER_RANDOM_STATE, MODEL_FORMAT_VERSION, OVERLAY_ALPHA
from .errors import (
    InsufficientTrainingDataError,
    ModelChannelMismatchError,
    OutOfBoundsError,
)
from .polygon import pixels_in
from .segmentation import CellBoundary
from .spatial_index import GridIndex

logger = logging.getLogger(__name__)

PIXEL = "pixel"
CELL = "cell"
STATISTICS = ("mean", "median")
PIXEL_INDEX = ("x", "y", "label", "annotation_id")
CELL_INDEX = ("cell_id", "label", "annotation_id")

Color = Tuple[int, int, int]


@dataclass(frozen=True)
class ClassifierModel:
    """
    A trained classifier.

    Attributes
    ----------
    channel_ids : Tuple[str, ...]
        Feature order; column i of every feature matrix is this channel.
    labels : Tuple[str, ...]
        Class index to label.
    estimator : DecisionTreeClassifier
        The fitted tree, predicting class indices.
    unit : str
        "pixel" or "cell".
    statistic : str
        Per-cell aggregate of cell models ("mean" or "median").
    format_version : int
        Version of the feature layout.
    label_colours : Dict[str, Color]
        Display colour per label.
    """

    channel_ids: Tuple[str, ...]
    labels: Tuple[str, ...]
    estimator: DecisionTreeClassifier
    unit: str = PIXEL
    statistic: str = "mean"
    format_version: int = MODEL_FORMAT_VERSION
    label_colours: Dict[str, Color] = field(default_factory=dict)

    def label_index(self, label: str) -> int:
        return self.labels.index(label)

    def feature_importances(self) -> pd.Series:
        """Impurity-based importance of each channel."""
        return pd.Series(
            self.estimator.feature_importances_, index=list(self.channel_ids)
        )


@dataclass(frozen=True)
class LabelRaster:
    """
    Classification result over a region of an acquisition.

    Attributes
    ----------
    indices : np.ndarray
        int array of shape (region.height, region.width); the class index of
        each pixel, -1 where unclassified.
    labels : Tuple[str, ...]
        Class index to label.
    region : Region
        The classified region.
    cell_labels : Optional[Dict[int, str]]
        Label of each classified cell (cell models only).
    label_colours : Dict[str, Color]
        Display colour per label.
    """

    indices: np.ndarray
    labels: Tuple[str, ...]
    region: Region
    cell_labels: Optional[Dict[int, str]] = None
    label_colours: Dict[str, Color] = field(default_factory=dict)

    def label_at(self, x: int, y: int) -> Optional[str]:
        """
        Label of the pixel at acquisition coordinates (x, y).

        Raises
        ------
        OutOfBoundsError
            If (x, y) is outside the classified region.
        """
        col, row = int(x) - self.region.x, int(y) - self.region.y
        if not (0 <= col < self.region.width and 0 <= row < self.region.height):
            raise OutOfBoundsError(f"Pixel ({x}, {y}) outside {self.region}")
        idx = int(self.indices[row, col])
        return None if idx < 0 else self.labels[idx]

    def masks(self) -> Dict[str, np.ndarray]:
        """One boolean mask per label."""
        return {label: self.indices == idx for idx, label in enumerate(self.labels)}

    def to_rgba(
        self, alpha: int = OVERLAY_ALPHA, colours: Optional[Dict[str, Any]] = None
    ) -> np.ndarray:
        """
        Coloured overlay of the classification.

        Parameters
        ----------
        alpha : int, optional
            Alpha of classified pixels (default is 200); unclassified pixels
            are fully transparent.
        colours : Optional[Dict[str, Any]]
            Colour per label; defaults to the model's label colours, then
            to the Tab10/Tab20 palette.

        Returns
        -------
        np.ndarray
            uint8 array of shape (height, width, 4).
        """
        palette = generate_label_colors(self.labels)
        palette.update(self.label_colours)
        palette.update(colours or {})
        lut = np.zeros((len(self.labels) + 1, 4), dtype=np.uint8)
        for idx, label in enumerate(self.labels):
            lut[idx, :3] = np.clip(np.asarray(palette[label][:3]), 0, 255)
            lut[idx, 3] = int(np.clip(alpha, 0, 255))
        # -1 selects the transparent last row
        return lut[self.indices]

    def counts(self) -> pd.Series:
        """Number of pixels per label, zeros included."""
        valid = self.indices[self.indices >= 0]
        counts = np.bincount(valid.ravel(), minlength=len(self.labels))
        return pd.Series(counts, index=list(self.labels), dtype=np.int64)


def _channel_values(
    store: ChannelStore, channel_ids: Sequence[str], xs: np.ndarray, ys: np.ndarray
) -> np.ndarray:
    if len(channel_ids) == 0:
        return np.zeros((len(xs), 0), dtype=np.float64)
    return np.column_stack(
        [store.get(cid).image_data[ys, xs] for cid in channel_ids]
    ).astype(np.float64)


def extract_pixel_features(
    annotations: Iterable[Annotation],
    store: ChannelStore,
    channel_ids: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """
    One row per annotated pixel.

    Parameters
    ----------
    annotations : Iterable[Annotation]
        Labelled annotations (an AnnotationSet works too).
    store : ChannelStore
        The acquisition's channels.
    channel_ids : Optional[Sequence[str]]
        Feature channels in order (default is every channel of the store).

    Returns
    -------
    pd.DataFrame
        One column per channel id, in order, and nothing else. Rows are
        indexed by ``(x, y, label, annotation_id)``, so a channel may carry
        any name. A pixel inside several annotations appears once, for the
        topmost one.
    """
    channel_ids = list(store.channel_ids if channel_ids is None else channel_ids)
    for cid in channel_ids:
        store.get(cid)
    frames = []
    for annotation in sorted(annotations, key=lambda a: a.annotation_id):
        xs, ys = pixels_in(annotation.geometry, store.width, store.height)
        if len(xs) == 0:
            continue
        index = pd.MultiIndex.from_arrays(
            [
                xs,
                ys,
                np.full(len(xs), annotation.label, dtype=object),
                np.full(len(xs), annotation.annotation_id, dtype=np.int64),
            ],
            names=list(PIXEL_INDEX),
        )
        frames.append(
            pd.DataFrame(
                _channel_values(store, channel_ids, xs, ys),
                index=index,
                columns=channel_ids,
            )
        )
    if not frames:
        index = pd.MultiIndex.from_arrays([[], [], [], []], names=list(PIXEL_INDEX))
        return pd.DataFrame(
            np.zeros((0, len(channel_ids))), index=index, columns=channel_ids
        )
    features = pd.concat(frames)
    positions = features.index.droplevel(["label", "annotation_id"])
    return features[~positions.duplicated(keep="last")]


def _topmost_containing(
    annotations: Sequence[Annotation], points: Dict[int, Tuple[float, float]]
) -> Dict[int, Annotation]:
    index = GridIndex()
    by_id = {}
    for annotation in annotations:
        index.insert(annotation.annotation_id, annotation.bounds)
        by_id[annotation.annotation_id] = annotation
    hits = {}
    for key, (x, y) in points.items():
        for annotation_id in index.candidates(x, y):
            if by_id[annotation_id].contains(x, y):
                hits[key] = by_id[annotation_id]
                break
    return hits


def extract_cell_features(
    annotations: Optional[Iterable[Annotation]],
    store: ChannelStore,
    cells: Sequence[CellBoundary],
    channel_ids: Optional[Sequence[str]] = None,
    statistic: str = "mean",
) -> pd.DataFrame:
    """
    One row per cell with per-channel statistics over the cell's pixels.

    Parameters
    ----------
    annotations : Optional[Iterable[Annotation]]
        Labelled annotations; None for inference.
    store : ChannelStore
        The acquisition's channels.
    cells : Sequence[CellBoundary]
        Segmented cells.
    channel_ids : Optional[Sequence[str]]
        Feature channels in order (default is every channel of the store).
    statistic : str, optional
        "mean" (default) or "median".

    Returns
    -------
    pd.DataFrame
        One column per channel id, in order, and nothing else. Indexed by
        ``cell_id``, or by ``(cell_id, label, annotation_id)`` when
        annotations are given (missing for cells outside every annotation).
        Cells without any pixel centre are left out.
    """
    if statistic not in STATISTICS:
        raise ValueError(f"Unknown statistic {statistic!r}, expected one of {STATISTICS}")
    channel_ids = list(store.channel_ids if channel_ids is None else channel_ids)
    for cid in channel_ids:
        store.get(cid)
    reduce = np.mean if statistic == "mean" else np.median

    rows, cell_ids = [], []
    for cell in cells:
        xs, ys = cell.pixels(store.width, store.height)
        if len(xs) == 0:
            continue
        rows.append(reduce(_channel_values(store, channel_ids, xs, ys), axis=0))
        cell_ids.append(cell.cell_id)
    features = pd.DataFrame(
        np.asarray(rows, dtype=np.float64).reshape(len(rows), len(channel_ids)),
        columns=channel_ids,
        index=pd.Index(cell_ids, name="cell_id"),
    )
    if annotations is None:
        return features

    points = {
        cell.cell_id: cell.representative_point()
        for cell in cells
        if cell.cell_id in features.index
    }
    owners = _topmost_containing(list(annotations), points)
    features.index = pd.MultiIndex.from_arrays(
        [
            cell_ids,
            [owners[cid].label if cid in owners else None for cid in cell_ids],
            pd.array(
                [owners[cid].annotation_id if cid in owners else None for cid in cell_ids],
                dtype="Int64",
            ),
        ],
        names=list(CELL_INDEX),
    )
    return features


def train(
    annotations: Iterable[Annotation],
    store: ChannelStore,
    channel_ids: Optional[Sequence[str]] = None,
    cells: Optional[Sequence[CellBoundary]] = None,
    max_depth: Optional[int] = None,
    random_state: int = CLASSIFIER_RANDOM_STATE,
    statistic: str = "mean",
) -> ClassifierModel:
    """
    Train a decision tree on the annotated pixels or cells.

    Parameters
    ----------
    annotations : Iterable[Annotation]
        Labelled annotations (an AnnotationSet works too).
    store : ChannelStore
        The acquisition's channels.
    channel_ids : Optional[Sequence[str]]
        Feature channels in order (default is every channel of the store).
    cells : Optional[Sequence[CellBoundary]]
        Cell boundaries; when given the model classifies cells.
    max_depth : Optional[int]
        Maximum tree depth (default is unlimited).
    random_state : int, optional
        Seed of the tree, for reproducible models.
    statistic : str, optional
        Per-cell aggregate for cell models.

    Returns
    -------
    ClassifierModel
        The trained model.

    Raises
    ------
    InsufficientTrainingDataError
        If no channel is selected, fewer than 2 labels are annotated or a
        label has no sample.
    NotFoundError
        If a requested channel is not in the store.
    """
    start = time.perf_counter()
    annotations = sorted(annotations, key=lambda a: a.annotation_id)
    channel_ids = tuple(store.channel_ids if channel_ids is None else channel_ids)
    if not channel_ids:
        raise InsufficientTrainingDataError("Training needs at least 1 channel")
    labels = tuple(sorted({a.label for a in annotations}))
    if len(labels) < 2:
        raise InsufficientTrainingDataError(
            f"Training needs at least 2 distinct labels, got {list(labels)}"
        )

    if cells is None:
        unit = PIXEL
        features = extract_pixel_features(annotations, store, channel_ids)
    else:
        unit = CELL
        features = extract_cell_features(
            annotations, store, cells, channel_ids, statistic
        )
        features = features[features.index.get_level_values("label").notna()]

    sample_labels = features.index.get_level_values("label")
    samples = pd.Series(sample_labels).value_counts()
    empty = [label for label in labels if samples.get(label, 0) == 0]
    if empty:
        raise InsufficientTrainingDataError(
            f"No training {unit}s for label(s) {empty}"
        )

    label_to_idx = {label: idx for idx, label in enumerate(labels)}
    # columns are exactly channel_ids, in order
    X = features.to_numpy(dtype=np.float64)
    y = np.asarray([label_to_idx[label] for label in sample_labels], dtype=np.int64)
    logger.info(
        "[Train] Training decision tree on %d %ss, %d labels, %d channels",
        len(y),
        unit,
        len(labels),
        len(channel_ids),
    )
    estimator = DecisionTreeClassifier(max_depth=max_depth, random_state=random_state)
    estimator.fit(X, y)

    label_colours = {}
    for annotation in annotations:
        label_colours.setdefault(annotation.label, tuple(annotation.colour))
    logger.debug("[Train] Time to train: %.3fs", time.perf_counter() - start)
    return ClassifierModel(
        channel_ids=channel_ids,
        labels=labels,
        estimator=estimator,
        unit=unit,
        statistic=statistic,
        label_colours=label_colours,
    )


def _check_channels(model: ClassifierModel, available: Iterable[str]) -> None:
    available = set(available)
    missing = [cid for cid in model.channel_ids if cid not in available]
    if missing:
        raise ModelChannelMismatchError(
            f"Model requires channel(s) {missing} missing from the acquisition"
        )


def predict_features(model: ClassifierModel, frame: pd.DataFrame) -> pd.Series:
    """
    Predict labels for a feature table.

    Columns are selected by channel id, so their order in ``frame`` does not
    matter.

    Raises
    ------
    ModelChannelMismatchError
        If a model channel is missing from the columns.
    """
    _check_channels(model, frame.columns)
    if len(frame) == 0:
        return pd.Series([], index=frame.index, dtype=object)
    X = frame[list(model.channel_ids)].to_numpy(dtype=np.float64)
    indices = model.estimator.predict(X)
    return pd.Series(np.asarray(model.labels, dtype=object)[indices], index=frame.index)


def classify(
    model: ClassifierModel,
    store: ChannelStore,
    region: Optional[Region] = None,
    cells: Optional[Sequence[CellBoundary]] = None,
) -> LabelRaster:
    """
    Classify every pixel (or cell) of an acquisition or of a region of it.

    Parameters
    ----------
    model : ClassifierModel
        A trained model.
    store : ChannelStore
        The acquisition's channels; must contain every model channel.
    region : Optional[Region]
        Restrict to this region (default is the whole acquisition).
    cells : Optional[Sequence[CellBoundary]]
        Cell boundaries; required by cell models.

    Returns
    -------
    LabelRaster
        One class index per pixel of the region.

    Raises
    ------
    ModelChannelMismatchError
        If the acquisition lacks a model channel; checked before any work.
    OutOfBoundsError
        If the region is not inside the acquisition.
    """
    _check_channels(model, store.channel_ids)
    if region is None:
        region = Region.full(store)
    region.check_inside(store.width, store.height)
    start = time.perf_counter()

    if model.unit == PIXEL:
        stacked = store.stack(model.channel_ids, region)
        X = stacked.reshape(-1, len(model.channel_ids))
        indices = model.estimator.predict(X).astype(np.int64)
        indices = indices.reshape(region.height, region.width)
        cell_labels = None
    else:
        if cells is None:
            raise ValueError("A cell model needs cell boundaries to classify")
        indices, cell_labels = _classify_cells(model, store, region, cells)

    indices.setflags(write=False)
    logger.debug(
        "[Classify] Time to classify %dx%d %s raster: %.3fs",
        region.width,
        region.height,
        model.unit,
        time.perf_counter() - start,
    )
    return LabelRaster(
        indices=indices,
        labels=model.labels,
        region=region,
        cell_labels=cell_labels,
        label_colours=dict(model.label_colours),
    )


def _classify_cells(
    model: ClassifierModel,
    store: ChannelStore,
    region: Region,
    cells: Sequence[CellBoundary],
) -> Tuple[np.ndarray, Dict[int, str]]:
    indices = np.full((region.height, region.width), -1, dtype=np.int64)
    rx0, ry0, rx1, ry1 = region.x, region.y, region.x + region.width, region.y + region.height
    in_region: List[CellBoundary] = []
    for cell in cells:
        minx, miny, maxx, maxy = cell.geometry.bounds
        if maxx > rx0 and minx < rx1 and maxy > ry0 and miny < ry1:
            in_region.append(cell)

    features = extract_cell_features(
        None, store, in_region, model.channel_ids, model.statistic
    )
    predicted = predict_features(model, features)
    cell_labels = {int(cid): label for cid, label in predicted.items()}
    for cell in in_region:
        if cell.cell_id not in cell_labels:
            continue
        xs, ys = cell.pixels(store.width, store.height)
        keep = (xs >= rx0) & (xs < rx1) & (ys >= ry0) & (ys < ry1)
        indices[ys[keep] - ry0, xs[keep] - rx0] = model.label_index(
            cell_labels[cell.cell_id]
        )
    return indices, cell_labels
