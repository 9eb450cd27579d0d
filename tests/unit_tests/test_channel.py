import numpy as np
import pytest

from imcview.core import (
    Channel,
    ChannelDisplaySettings,
    ChannelStore,
    NotFoundError,
    OutOfBoundsError,
    Region,
    default_display_settings,
)
from imcview.core.config import CHANNEL_COLORS


def test_channel_copies_and_freezes_plane():
    data = np.ones((3, 5), dtype=np.uint16)
    channel = Channel("CD45", data)
    data[0, 0] = 100
    assert channel.image_data[0, 0] == 1
    assert not channel.image_data.flags.writeable
    assert (channel.width, channel.height) == (5, 3)
    assert channel.label == "CD45"


def test_channel_squeezes_leading_axis():
    channel = Channel("DNA", np.zeros((1, 4, 6)))
    assert channel.image_data.shape == (4, 6)


def test_channel_rejects_non_2d():
    with pytest.raises(ValueError):
        Channel("bad", np.zeros((2, 3, 4)))


def test_raw_range_is_cached():
    channel = Channel("A", np.array([[1.0, 7.0], [-2.0, 3.0]]))
    assert channel.get_raw_range() == (-2.0, 7.0)


def test_auto_threshold_ignores_bright_outliers():
    data = np.zeros(1000)
    data[:2] = 1000.0
    channel = Channel("A", data.reshape(10, 100))
    lower, upper = channel.compute_auto_threshold()
    assert lower == 0.0
    assert upper == pytest.approx(10.0)


def test_store_get_and_not_found(small_store):
    assert small_store.get("A").channel_id == "A"
    assert "B" in small_store
    assert len(small_store) == 3
    assert small_store.channel_ids == ["A", "B", "C"]
    with pytest.raises(NotFoundError):
        small_store.get("CD45")
    # also a LookupError for generic handlers
    with pytest.raises(LookupError):
        small_store.get("CD45")


def test_store_sample(small_store):
    assert small_store.sample("A", 1, 2) == 9.0
    with pytest.raises(OutOfBoundsError):
        small_store.sample("A", 4, 0)
    with pytest.raises(OutOfBoundsError):
        small_store.sample("A", 0, -1)
    with pytest.raises(NotFoundError):
        small_store.sample("X", 0, 0)


def test_store_rejects_duplicates_and_shape_mismatch():
    with pytest.raises(ValueError):
        ChannelStore([Channel("A", np.zeros((2, 2))), Channel("A", np.zeros((2, 2)))])
    with pytest.raises(ValueError):
        ChannelStore([Channel("A", np.zeros((2, 2))), Channel("B", np.zeros((3, 2)))])


def test_stack_follows_requested_order(small_store):
    stacked = small_store.stack(["B", "A"])
    assert stacked.shape == (4, 4, 2)
    assert stacked.dtype == np.float64
    np.testing.assert_array_equal(stacked[..., 1], small_store.get("A").image_data)


def test_stack_region(small_store):
    stacked = small_store.stack(["A"], Region(1, 2, 3, 2))
    np.testing.assert_array_equal(stacked[..., 0], [[9, 10, 11], [13, 14, 15]])
    with pytest.raises(OutOfBoundsError):
        small_store.stack(["A"], Region(2, 2, 3, 2))


def test_settings_are_clamped_not_rejected(small_store):
    channel = small_store.get("A")
    wide = ChannelDisplaySettings("A", -5.0, 1e6, (255, 0, 0))
    clamped = wide.clamped(channel)
    assert (clamped.lower, clamped.upper) == (0.0, 15.0)

    inverted = ChannelDisplaySettings("A", 8.0, 3.0, (255, 0, 0)).clamped(channel)
    assert (inverted.lower, inverted.upper) == (3.0, 3.0)

    valid = ChannelDisplaySettings("A", 1.0, 10.0, (255, 0, 0))
    assert valid.clamped(channel) is valid


def test_default_display_settings(small_store):
    settings = default_display_settings(small_store)
    assert [s.channel_id for s in settings] == ["A", "B", "C"]
    assert all(s.enabled for s in settings)
    assert settings[0].color == tuple(int(v) for v in CHANNEL_COLORS[0])
    assert all(0.0 == s.lower <= s.upper for s in settings)


def test_window_above_data_is_detected(small_store):
    channel = small_store.get("A")
    assert ChannelDisplaySettings("A", 15.0, 20.0, (255, 0, 0)).lies_above(channel)
    assert not ChannelDisplaySettings("A", 14.0, 20.0, (255, 0, 0)).lies_above(channel)
    # a degenerate window is a deliberate step, never "above"
    assert not ChannelDisplaySettings("A", 20.0, 20.0, (255, 0, 0)).lies_above(channel)

    blank = Channel("empty", np.zeros((2, 2)))
    assert ChannelDisplaySettings("empty", 0.0, 10.0, (255, 0, 0)).lies_above(blank)
