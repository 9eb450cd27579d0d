import numpy as np
import pytest

from imcview.core import AnnotationSet, ChannelDisplaySettings, ChannelStore


@pytest.fixture
def small_store():
    """3-channel 4x4 acquisition."""
    rng = np.random.default_rng(0)
    return ChannelStore.from_planes(
        {
            "A": np.arange(16, dtype=np.float32).reshape(4, 4),
            "B": rng.uniform(0, 50, size=(4, 4)).astype(np.float32),
            "C": rng.uniform(0, 50, size=(4, 4)).astype(np.float32),
        },
        acquisition_id="ROI_001",
    )


@pytest.fixture
def red_settings():
    return [
        ChannelDisplaySettings("A", 0.0, 10.0, (255, 0, 0), enabled=True),
        ChannelDisplaySettings("B", 0.0, 50.0, (0, 255, 0), enabled=False),
        ChannelDisplaySettings("C", 0.0, 50.0, (0, 0, 255), enabled=False),
    ]


@pytest.fixture
def two_tissue_store():
    """
    20x20 acquisition: CD3 high on the left half, CD20 high on the right
    half, DNA noise everywhere.
    """
    rng = np.random.default_rng(42)
    cd3 = np.zeros((20, 20), dtype=np.float32)
    cd20 = np.zeros((20, 20), dtype=np.float32)
    cd3[:, :10] = 10.0
    cd20[:, 10:] = 10.0
    dna = rng.uniform(0, 5, size=(20, 20)).astype(np.float32)
    return ChannelStore.from_planes({"CD3": cd3, "CD20": cd20, "DNA": dna})


def square(x0, y0, x1, y1):
    return [(x0, y0), (x1, y0), (x1, y1), (x0, y1), (x0, y0)]


@pytest.fixture
def tissue_annotations():
    annotations = AnnotationSet()
    annotations.add("T", square(1, 1, 8, 8))
    annotations.add("B", square(12, 1, 19, 8))
    return annotations
