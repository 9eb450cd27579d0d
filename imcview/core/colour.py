"""
Threshold and colour model.

Maps raw intensities to normalised contributions and folds coloured
contributions of several channels into one RGB value per pixel.

Two mixing laws are provided:

- ``MixingMode.PIGMENT`` (default): single-constant Kubelka-Munk mixing in
  linear light. Overlapping stains mix like paint, so two channels covering
  the same pixel darken towards their pigment mixture instead of adding up
  to white. Hue is the contribution-weighted mean of the K/S absorption
  ratios; strength is the coverage ``1 - prod(1 - c)``.
- ``MixingMode.ADDITIVE``: the classic fluorescence overlay, the sum of
  ``c * color`` clipped to 0-255 once every channel has been folded.

Both laws are commutative and associative (up to floating point rounding).
"""

from enum import Enum, auto
from typing import Any, Dict, Iterable, Tuple, Union

import numpy as np
from matplotlib import colormaps
from matplotlib import colors as mcolors

from .config import REFLECTANCE_FLOOR

ArrayLike = Union[float, np.ndarray]


class MixingMode(Enum):
    """
    Enum of the colour mixing laws used to fold channels.
    """

    PIGMENT = auto()
    ADDITIVE = auto()


def channel_contribution(values: ArrayLike, lower: float, upper: float) -> ArrayLike:
    """
    Map raw intensities to a normalised contribution in [0, 1].

    ``c = clamp((v - lower) / (upper - lower), 0, 1)``. A degenerate window
    (``upper == lower``) is a step function: 1 where ``v >= lower``, else 0.

    Parameters
    ----------
    values : float or np.ndarray
        Raw intensities.
    lower : float
        Intensity mapped to 0.
    upper : float
        Intensity mapped to 1.

    Returns
    -------
    float or np.ndarray
        The contribution, float64.
    """
    v = np.asarray(values, dtype=np.float64)
    if upper == lower:
        c = (v >= lower).astype(np.float64)
    else:
        c = np.clip((v - lower) / (upper - lower), 0.0, 1.0)
    if np.ndim(values) == 0:
        return float(c)
    return c


def to_rgb255(color: Any) -> np.ndarray:
    """
    Normalise a colour to a float64 RGB array in 0-255.

    Accepts an RGB triple in 0-255 or anything matplotlib understands as a
    colour (name, hex string).
    """
    if isinstance(color, str):
        return np.asarray(mcolors.to_rgb(color), dtype=np.float64) * 255.0
    rgb = np.asarray(color, dtype=np.float64).reshape(-1)[:3]
    if rgb.shape != (3,):
        raise ValueError(f"Expected an RGB colour, got {color!r}")
    return np.clip(rgb, 0.0, 255.0)


def srgb_to_linear(rgb: np.ndarray) -> np.ndarray:
    """sRGB in [0, 1] to linear light."""
    rgb = np.asarray(rgb, dtype=np.float64)
    return np.where(rgb <= 0.04045, rgb / 12.92, ((rgb + 0.055) / 1.055) ** 2.4)


def linear_to_srgb(rgb: np.ndarray) -> np.ndarray:
    """Linear light in [0, 1] to sRGB."""
    rgb = np.clip(np.asarray(rgb, dtype=np.float64), 0.0, 1.0)
    return np.where(
        rgb <= 0.0031308, rgb * 12.92, 1.055 * np.power(rgb, 1.0 / 2.4) - 0.055
    )


def reflectance_to_ks(reflectance: np.ndarray) -> np.ndarray:
    """Kubelka-Munk absorption/scattering ratio of a reflectance."""
    r = np.clip(np.asarray(reflectance, dtype=np.float64), REFLECTANCE_FLOOR, 1.0)
    return (1.0 - r) ** 2 / (2.0 * r)


def ks_to_reflectance(ks: np.ndarray) -> np.ndarray:
    """Inverse of :func:`reflectance_to_ks`."""
    ks = np.maximum(np.asarray(ks, dtype=np.float64), 0.0)
    # 1 + k - sqrt(k^2 + 2k), rearranged to avoid cancellation for large k
    return 1.0 / (1.0 + ks + np.sqrt(ks * ks + 2.0 * ks))


class ColourAccumulator:
    """
    Left fold of coloured channel contributions over a pixel grid.

    Attributes
    ----------
    shape : Tuple[int, ...]
        Pixel grid shape, e.g. (height, width).
    mode : MixingMode
        The mixing law.
    """

    shape: Tuple[int, ...]
    mode: MixingMode

    def __init__(self, shape: Tuple[int, ...], mode: MixingMode = MixingMode.PIGMENT) -> None:
        self.shape = tuple(shape)
        self.mode = mode
        if mode is MixingMode.ADDITIVE:
            self._sum = np.zeros(self.shape + (3,), dtype=np.float64)
        else:
            self._weight = np.zeros(self.shape, dtype=np.float64)
            self._ks = np.zeros(self.shape + (3,), dtype=np.float64)
            self._transmit = np.ones(self.shape, dtype=np.float64)

    def add(self, contribution: np.ndarray, color: Any) -> None:
        """
        Fold one channel into the accumulator.

        Parameters
        ----------
        contribution : np.ndarray
            Normalised contribution in [0, 1], same shape as the grid.
        color : Any
            The channel colour (see :func:`to_rgb255`).
        """
        c = np.asarray(contribution, dtype=np.float64)
        rgb = to_rgb255(color)
        if self.mode is MixingMode.ADDITIVE:
            self._sum += c[..., None] * rgb
            return
        ks = reflectance_to_ks(srgb_to_linear(rgb / 255.0))
        self._weight += c
        self._ks += c[..., None] * ks
        self._transmit *= 1.0 - c

    def merge(self, other: "ColourAccumulator") -> None:
        """Fold another partial accumulation (same grid and mode) into this one."""
        if other.mode is not self.mode or other.shape != self.shape:
            raise ValueError("Cannot merge accumulators of different mode or shape")
        if self.mode is MixingMode.ADDITIVE:
            self._sum += other._sum
            return
        self._weight += other._weight
        self._ks += other._ks
        self._transmit *= other._transmit

    def result(self) -> np.ndarray:
        """
        The folded colour as float64 RGB in 0-255, shape ``grid + (3,)``.

        Pixels without any contribution are black.
        """
        if self.mode is MixingMode.ADDITIVE:
            return np.clip(self._sum, 0.0, 255.0)
        weight = self._weight[..., None]
        mean_ks = np.divide(
            self._ks, weight, out=np.zeros_like(self._ks), where=weight > 0
        )
        hue = linear_to_srgb(ks_to_reflectance(mean_ks))
        coverage = 1.0 - self._transmit
        return np.clip(coverage[..., None] * hue * 255.0, 0.0, 255.0)


def generate_label_colors(labels: Iterable[Any]) -> Dict[Any, Tuple[int, int, int]]:
    """
    Distinct colors for each unique label using matplotlib Tab10 or Tab20 palette.
    Uses Tab10 for up to 10 labels, otherwise Tab20.

    Parameters
    ----------
    labels : Iterable[Any]
        Labels, possibly repeated.

    Returns
    -------
    Dict[Any, Tuple[int, int, int]]
        Mapping from each unique label (sorted) to an RGB color (0-255).
    """
    unique_labels = sorted(set(labels))
    n_labels = len(unique_labels)
    n_colors = 10 if n_labels <= 10 else 20
    cmap = colormaps["tab10" if n_labels <= 10 else "tab20"]
    label_colors = {}
    for idx, label in enumerate(unique_labels):
        rgba = cmap(idx % n_colors)
        label_colors[label] = (int(rgba[0] * 255), int(rgba[1] * 255), int(rgba[2] * 255))
    return label_colors


def palette_color(idx: int) -> Tuple[int, int, int]:
    """The ``idx``-th Tab10 color, cycling."""
    rgba = colormaps["tab10"](idx % 10)
    return (int(rgba[0] * 255), int(rgba[1] * 255), int(rgba[2] * 255))
