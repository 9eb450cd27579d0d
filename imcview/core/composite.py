"""
Composite renderer: folds thresholded, coloured channels into one RGB image.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from .channel import ChannelDisplaySettings, ChannelStore
from .colour import ColourAccumulator, MixingMode, channel_contribution

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompositeImage:
    """
    Dense RGB image with the size of the source acquisition.

    Attributes
    ----------
    rgb : np.ndarray
        Read-only uint8 array of shape (height, width, 3).
    """

    rgb: np.ndarray

    @property
    def width(self) -> int:
        return int(self.rgb.shape[1])

    @property
    def height(self) -> int:
        return int(self.rgb.shape[0])

    def to_rgba(self, background_alpha: float = 1.0) -> np.ndarray:
        """
        RGBA copy of the composite.

        Pixels carrying colour are opaque; black pixels get
        ``background_alpha`` so the composite can be laid over other data.

        Parameters
        ----------
        background_alpha : float, optional
            Opacity of black pixels in [0, 1] (default is 1.0).

        Returns
        -------
        np.ndarray
            uint8 array of shape (height, width, 4).
        """
        alpha = np.where(
            self.rgb.any(axis=-1),
            255,
            int(round(np.clip(background_alpha, 0.0, 1.0) * 255)),
        ).astype(np.uint8)
        return np.concatenate([self.rgb, alpha[..., None]], axis=-1)

    def tobytes(self) -> bytes:
        """Row-major RGB888 bytes (3 * width bytes per line)."""
        return self.rgb.tobytes()


class CompositeRenderer:
    """
    Renders composites of the channels of one acquisition.

    Per-channel contribution planes are cached by (channel id, lower, upper),
    so dragging the window of one channel only recomputes that channel. The
    output buffer is always freshly allocated.

    Attributes
    ----------
    store : ChannelStore
        The channels to render.
    mixing : MixingMode
        The colour mixing law.
    """

    store: ChannelStore
    mixing: MixingMode

    def __init__(
        self, store: ChannelStore, mixing: MixingMode = MixingMode.PIGMENT
    ) -> None:
        self.store = store
        self.mixing = mixing
        self._cache: Dict[str, Tuple[Tuple[float, float], np.ndarray]] = {}
        self._cache_lock = threading.Lock()

    def _contribution(self, settings: ChannelDisplaySettings) -> np.ndarray:
        window = (settings.lower, settings.upper)
        with self._cache_lock:
            cached = self._cache.get(settings.channel_id)
        if cached is not None and cached[0] == window:
            return cached[1]
        channel = self.store.get(settings.channel_id)
        contribution = channel_contribution(
            channel.image_data, settings.lower, settings.upper
        )
        contribution.setflags(write=False)
        with self._cache_lock:
            self._cache[settings.channel_id] = (window, contribution)
        return contribution

    def invalidate_cache(self) -> None:
        """Drop all cached contribution planes."""
        with self._cache_lock:
            self._cache.clear()

    def render(self, settings: Sequence[ChannelDisplaySettings]) -> CompositeImage:
        """
        Fold every enabled channel, in the given order, into one RGB image.

        Parameters
        ----------
        settings : Sequence[ChannelDisplaySettings]
            Display settings in folding order.

        Returns
        -------
        CompositeImage
            A new image; all black when no channel is enabled.

        Raises
        ------
        NotFoundError
            If any settings entry names an unknown channel.
        """
        start = time.perf_counter()
        # Resolve every id first so an unknown channel fails before pixel work
        resolved = [(s, self.store.get(s.channel_id)) for s in settings]
        acc = ColourAccumulator((self.store.height, self.store.width), self.mixing)
        n_enabled = 0
        for item, channel in resolved:
            if not item.enabled:
                continue
            if item.lies_above(channel):
                # zero contribution leaves the fold unchanged
                logger.debug("[Render] Window of %r lies above its data", item.channel_id)
                continue
            clamped = item.clamped(channel)
            acc.add(self._contribution(clamped), clamped.color)
            n_enabled += 1
        rgb = np.rint(acc.result()).astype(np.uint8)
        rgb.setflags(write=False)
        logger.debug(
            "[Render] Time to composite %d of %d channels (%s): %.3fs",
            n_enabled,
            len(resolved),
            self.mixing.name,
            time.perf_counter() - start,
        )
        return CompositeImage(rgb)


def render(
    store: ChannelStore,
    settings: Sequence[ChannelDisplaySettings],
    mixing: MixingMode = MixingMode.PIGMENT,
    renderer: Optional[CompositeRenderer] = None,
) -> CompositeImage:
    """
    Render a composite of ``store`` with ``settings``.

    Pass a long-lived ``renderer`` to reuse its contribution cache.
    """
    if renderer is None:
        renderer = CompositeRenderer(store, mixing)
    return renderer.render(settings)
