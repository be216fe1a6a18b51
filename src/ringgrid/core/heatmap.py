"""
Heat maps of per-ring metrics laid out on the ideal lattice.
"""

import logging
from dataclasses import dataclass

import cv2
import matplotlib
from matplotlib import colors as mcolors
import numpy as np

from .models import METRIC_NAMES, ChannelResult

logger = logging.getLogger(__name__)

HEAT_MAP_SIZE = 256
DEFAULT_CMAP = "afmhot"


def rasterize_heat_map(
    values: np.ndarray, side: int, indices: np.ndarray | None = None, size: int = HEAT_MAP_SIZE
) -> np.ndarray:
    """Lay a per-ring metric out on a ``side`` x ``side`` raster and upscale it.

    Parameters
    ----------
    values : np.ndarray
        Metric values in ideal-grid row-major order, without the centre
    side : int
        Side of the ideal lattice
    indices : np.ndarray | None
        Flat lattice index of every value. Without indices, ``values`` must
        cover the whole lattice but the centre, and NaN is inserted at the
        middle position
    size : int
        Output side in pixels

    Returns
    -------
    np.ndarray
        (size, size) float32 raster, NaN where no ring was measured
    """
    values = np.asarray(values, dtype=float).ravel()
    if side < 1:
        raise ValueError(f"Lattice side must be positive, got {side}")

    if indices is None:
        if len(values) != side * side - 1:
            raise ValueError(f"Expected {side * side - 1} values for a {side}x{side} lattice, got {len(values)}")
        grid = np.insert(values, len(values) // 2, np.nan)
    else:
        indices = np.asarray(indices, dtype=int).ravel()
        if len(indices) != len(values):
            raise ValueError(f"Got {len(values)} values for {len(indices)} indices")
        if len(indices) and (indices.min() < 0 or indices.max() >= side * side):
            raise ValueError(f"Lattice index out of range for a {side}x{side} lattice")
        grid = np.full(side * side, np.nan)
        grid[indices] = values

    raster = grid.reshape(side, side).astype(np.float32)
    return cv2.resize(raster, (size, size), interpolation=cv2.INTER_NEAREST)


@dataclass
class HeatMap:
    """A rasterized metric ready to be saved or displayed."""

    title: str
    feature: str
    channel: int
    data: np.ndarray
    cmap: str = DEFAULT_CMAP

    def to_rgb(self, vmin: float | None = None, vmax: float | None = None) -> np.ndarray:
        """Render with the colour map; unmeasured cells are black."""
        finite = self.data[np.isfinite(self.data)]
        if vmin is None:
            vmin = float(finite.min()) if finite.size else 0.0
        if vmax is None:
            vmax = float(finite.max()) if finite.size else 1.0
        if vmax <= vmin:
            vmax = vmin + 1.0

        cmap = matplotlib.colormaps[self.cmap].with_extremes(bad="black")
        norm = mcolors.Normalize(vmin=vmin, vmax=vmax)
        rgba = cmap(norm(np.ma.masked_invalid(self.data)))
        return (rgba[..., :3] * 255).astype(np.uint8)


def channel_heat_maps(result: ChannelResult, image_name: str = "", size: int = HEAT_MAP_SIZE) -> list[HeatMap]:
    """Heat maps of every metric computed for a channel."""
    heat_maps = []
    if result.failed or result.grid_size < 1:
        return heat_maps

    for feature in METRIC_NAMES:
        values = getattr(result, feature)
        if len(values) == 0 or not np.any(np.isfinite(values)):
            continue
        data = rasterize_heat_map(values, result.grid_size, indices=result.ring_indices, size=size)
        title = f"{image_name}_ch{result.channel}_{feature}" if image_name else f"ch{result.channel}_{feature}"
        heat_maps.append(HeatMap(title=title, feature=feature, channel=result.channel, data=data))

    logger.debug(f"Built {len(heat_maps)} heat maps for channel {result.channel}")
    return heat_maps
