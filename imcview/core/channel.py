"""
Channel raster store for multi-channel imaging mass cytometry acquisitions.

This module provides the Channel dataclass holding one decoded intensity
plane, the ChannelStore indexing every channel of an acquisition by its
identifier, and the ChannelDisplaySettings used by the composite renderer.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .config import AUTO_THRESHOLD_FRACTION, CHANNEL_COLORS, HISTOGRAM_BINS
from .errors import NotFoundError, OutOfBoundsError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Region:
    """
    Axis-aligned pixel rectangle inside an acquisition.

    Attributes
    ----------
    x : int
        Left column.
    y : int
        Top row.
    width : int
        Number of columns.
    height : int
        Number of rows.
    """

    x: int
    y: int
    width: int
    height: int

    @classmethod
    def full(cls, store: "ChannelStore") -> "Region":
        return cls(0, 0, store.width, store.height)

    def check_inside(self, width: int, height: int) -> None:
        """Raise OutOfBoundsError unless the region lies within a width x height raster."""
        if (
            self.width <= 0
            or self.height <= 0
            or self.x < 0
            or self.y < 0
            or self.x + self.width > width
            or self.y + self.height > height
        ):
            raise OutOfBoundsError(
                f"Region {self} is outside the {width}x{height} raster"
            )

    def slices(self) -> Tuple[slice, slice]:
        """Row and column slices selecting the region from a (height, width) array."""
        return (
            slice(self.y, self.y + self.height),
            slice(self.x, self.x + self.width),
        )


@dataclass
class Channel:
    """
    Data class representing one intensity plane of an acquisition.

    The plane is copied on construction and made read-only, so a Channel can
    be shared between the renderer and the classifier on different threads.

    Attributes
    ----------
    channel_id : str
        Stable identifier of the channel (e.g. the marker name "CD45").
    image_data : np.ndarray
        The 2-D intensity data, indexed [y, x].
    label : str
        Human readable label of the channel.
    _raw_min : float
        Cached minimum value of raw image data.
    _raw_max : float
        Cached maximum value of raw image data.
    """

    channel_id: str
    image_data: np.ndarray
    label: str = ""
    _raw_min: float = field(default=0.0, init=False, repr=False)
    _raw_max: float = field(default=0.0, init=False, repr=False)

    def __post_init__(self) -> None:
        data = np.array(self.image_data, copy=True)
        if data.ndim == 3 and data.shape[0] == 1:
            data = data[0]
        if data.ndim != 2:
            raise ValueError(
                f"Channel {self.channel_id!r} must be a 2-D plane, got shape {data.shape}"
            )
        data.setflags(write=False)
        self.image_data = data
        if not self.label:
            self.label = self.channel_id
        if data.size:
            self._raw_min = float(np.min(data))
            self._raw_max = float(np.max(data))

    @property
    def width(self) -> int:
        return int(self.image_data.shape[1])

    @property
    def height(self) -> int:
        return int(self.image_data.shape[0])

    def get_raw_range(self) -> Tuple[float, float]:
        """
        Get the minimum and maximum values of raw image data.

        Returns
        -------
        Tuple[float, float]
            The (min, max) values of the raw image data.
        """
        return self._raw_min, self._raw_max

    def histogram(self, bins: int = HISTOGRAM_BINS) -> Tuple[np.ndarray, np.ndarray]:
        """
        Histogram of the intensities over the raw range.

        Parameters
        ----------
        bins : int, optional
            Number of bins (default is 100).

        Returns
        -------
        Tuple[np.ndarray, np.ndarray]
            Counts and bin edges, as returned by ``np.histogram``.
        """
        raw_min, raw_max = self.get_raw_range()
        if raw_max <= raw_min:
            raw_max = raw_min + 1.0
        return np.histogram(self.image_data, bins=bins, range=(raw_min, raw_max))

    def compute_auto_threshold(
        self, fraction: float = AUTO_THRESHOLD_FRACTION, bins: int = HISTOGRAM_BINS
    ) -> Tuple[float, float]:
        """
        Compute an automatic display window for this channel.

        The upper bound is the upper edge of the first histogram bin at which
        the cumulative count reaches ``fraction`` of all pixels, so a few
        very bright pixels do not wash out the rest of the channel.

        Parameters
        ----------
        fraction : float, optional
            Cumulative fraction of pixels below the upper bound (default 0.995).
        bins : int, optional
            Number of histogram bins (default 100).

        Returns
        -------
        Tuple[float, float]
            The (lower, upper) thresholds in raw intensity units.
        """
        counts, edges = self.histogram(bins)
        total = counts.sum()
        if total == 0:
            return 0.0, max(self._raw_max, 0.0)
        cumulative = np.cumsum(counts) / total
        bin_idx = int(np.searchsorted(cumulative, fraction, side="left"))
        bin_idx = min(bin_idx, len(counts) - 1)
        upper = float(edges[bin_idx + 1])
        return 0.0, max(upper, 0.0)


class ChannelStore:
    """
    Channels of one acquisition, indexed by stable channel identifier.

    The store never mutates after construction; planes are handed over by the
    acquisition loader and only indexed here.

    Attributes
    ----------
    acquisition_id : str
        Identifier of the acquisition the channels belong to.
    width : int
        Raster width shared by every channel.
    height : int
        Raster height shared by every channel.
    """

    acquisition_id: str
    width: int
    height: int

    def __init__(
        self, channels: Sequence[Channel], acquisition_id: str = ""
    ) -> None:
        self.acquisition_id = acquisition_id
        self._channels: Dict[str, Channel] = {}
        self.width = 0
        self.height = 0
        for channel in channels:
            if channel.channel_id in self._channels:
                raise ValueError(f"Duplicate channel id {channel.channel_id!r}")
            if not self._channels:
                self.height, self.width = channel.height, channel.width
            elif (channel.height, channel.width) != (self.height, self.width):
                raise ValueError(
                    f"Channel {channel.channel_id!r} has shape "
                    f"{(channel.height, channel.width)}, expected {(self.height, self.width)}"
                )
            self._channels[channel.channel_id] = channel
        logger.debug(
            "[Load] Indexed %d channels (%dx%d) for acquisition %r",
            len(self._channels),
            self.width,
            self.height,
            acquisition_id,
        )

    @classmethod
    def from_planes(
        cls, planes: Mapping[str, np.ndarray], acquisition_id: str = ""
    ) -> "ChannelStore":
        """
        Build a store from a mapping of channel id to decoded 2-D plane.

        Parameters
        ----------
        planes : Mapping[str, np.ndarray]
            Channel planes in display order.
        acquisition_id : str, optional
            Identifier of the acquisition.

        Returns
        -------
        ChannelStore
            The indexed channels.
        """
        return cls(
            [Channel(channel_id, plane) for channel_id, plane in planes.items()],
            acquisition_id=acquisition_id,
        )

    @property
    def channel_ids(self) -> List[str]:
        return list(self._channels)

    def __contains__(self, channel_id: object) -> bool:
        return channel_id in self._channels

    def __iter__(self) -> Iterator[Channel]:
        return iter(self._channels.values())

    def __len__(self) -> int:
        return len(self._channels)

    def get(self, channel_id: str) -> Channel:
        """
        Look up a channel by identifier.

        Raises
        ------
        NotFoundError
            If the acquisition has no channel with this id.
        """
        try:
            return self._channels[channel_id]
        except KeyError:
            raise NotFoundError(
                f"Channel {channel_id!r} not found in acquisition {self.acquisition_id!r}"
            ) from None

    def sample(self, channel_id: str, x: int, y: int) -> float:
        """
        Intensity of one pixel.

        Raises
        ------
        NotFoundError
            If the channel id is unknown.
        OutOfBoundsError
            If (x, y) lies outside [0, width) x [0, height).
        """
        channel = self.get(channel_id)
        if not (0 <= x < self.width and 0 <= y < self.height):
            raise OutOfBoundsError(
                f"Pixel ({x}, {y}) outside the {self.width}x{self.height} raster"
            )
        return float(channel.image_data[int(y), int(x)])

    def stack(
        self, channel_ids: Sequence[str], region: Optional[Region] = None
    ) -> np.ndarray:
        """
        Stack channel planes into a (height, width, n_channels) float array.

        Parameters
        ----------
        channel_ids : Sequence[str]
            Channels in the order of the last axis.
        region : Optional[Region]
            Restrict to this region (default is the whole raster).

        Returns
        -------
        np.ndarray
            The stacked intensities.
        """
        if region is None:
            region = Region.full(self)
        region.check_inside(self.width, self.height)
        rows, cols = region.slices()
        planes = [self.get(cid).image_data[rows, cols] for cid in channel_ids]
        if not planes:
            return np.zeros((region.height, region.width, 0), dtype=np.float64)
        return np.stack(planes, axis=-1).astype(np.float64)


@dataclass(frozen=True)
class ChannelDisplaySettings:
    """
    Display configuration of one channel in one view.

    Attributes
    ----------
    channel_id : str
        The channel to display.
    lower : float
        Intensity mapped to zero contribution.
    upper : float
        Intensity mapped to full contribution.
    color : Tuple[int, int, int]
        Assigned RGB color (0-255).
    enabled : bool
        Disabled channels are skipped by the renderer.
    """

    channel_id: str
    lower: float
    upper: float
    color: Tuple[int, int, int]
    enabled: bool = True

    def clamped(self, channel: Channel) -> "ChannelDisplaySettings":
        """
        Clamp the window into ``0 <= lower <= upper <= max(raw_max, 0)``.

        Out of range values are clamped, never rejected.
        """
        _, raw_max = channel.get_raw_range()
        ceiling = max(raw_max, 0.0)
        upper = min(max(float(self.upper), 0.0), ceiling)
        lower = min(max(float(self.lower), 0.0), upper)
        if (lower, upper) == (self.lower, self.upper):
            return self
        logger.debug(
            "[Render] Clamped window of %r from (%s, %s) to (%s, %s)",
            self.channel_id,
            self.lower,
            self.upper,
            lower,
            upper,
        )
        return replace(self, lower=lower, upper=upper)

    def lies_above(self, channel: Channel) -> bool:
        """
        True when a non-degenerate window starts at or above every intensity.

        Clamping collapses such a window onto ``max(raw_max, 0)``, but every
        pixel sits at or below its ``lower`` bound, so the channel contributes
        nothing rather than following the step rule of a degenerate window.
        """
        _, raw_max = channel.get_raw_range()
        return self.lower < self.upper and self.lower >= max(raw_max, 0.0)


def default_display_settings(store: ChannelStore) -> List[ChannelDisplaySettings]:
    """
    One enabled settings object per channel with an automatic window.

    Colors cycle through ``CHANNEL_COLORS`` in store order.
    """
    settings = []
    for idx, channel in enumerate(store):
        lower, upper = channel.compute_auto_threshold()
        color = CHANNEL_COLORS[idx % len(CHANNEL_COLORS)]
        settings.append(
            ChannelDisplaySettings(
                channel.channel_id,
                lower,
                upper,
                tuple(int(v) for v in color),
            )
        )
    return settings
