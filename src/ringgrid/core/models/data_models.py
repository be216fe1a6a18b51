"""
Data models for calibration images and their per-channel results.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import numpy as np

logger = logging.getLogger(__name__)


class FieldOfView(str, Enum):
    """How much of the slide pattern the acquisition covers."""

    FULL = "fullFoV"
    PARTIAL = "partialFoV"


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned bounding box in integer pixels."""

    x: int
    y: int
    width: int
    height: int

    @property
    def area(self) -> int:
        """Calculate bounding box area."""
        return self.width * self.height

    @property
    def center(self) -> tuple[float, float]:
        """Centre in pixel-centre coordinates (x, y)."""
        return (self.x + (self.width - 1) / 2.0, self.y + (self.height - 1) / 2.0)

    def contains(self, px: float, py: float) -> bool:
        """Whether a point lies inside the box (edges included)."""
        return self.x <= px <= self.x + self.width - 1 and self.y <= py <= self.y + self.height - 1

    def grow(self, margin: int) -> "BoundingBox":
        """Return a copy enlarged by ``margin`` pixels on every side."""
        return BoundingBox(self.x - margin, self.y - margin, self.width + 2 * margin, self.height + 2 * margin)


@dataclass(frozen=True)
class Region:
    """One connected component or local maximum."""

    label: int
    area: int
    centroid: tuple[float, float]  # (x, y)
    bbox: BoundingBox


@dataclass
class GridCalibration:
    """Step and rotation of the ring lattice for one channel."""

    step_x: float
    step_y: float
    rotation_angle: float
    max_points_per_line: int


@dataclass
class MetricStatistics:
    """Aggregate statistics of one metric array, NaN ignored."""

    mean: float
    std: float
    min: float
    max: float
    count: int = 0

    @classmethod
    def from_values(cls, values: np.ndarray) -> "MetricStatistics":
        values = np.asarray(values, dtype=float).ravel()
        values = values[np.isfinite(values)]
        if values.size == 0:
            return cls(np.nan, np.nan, np.nan, np.nan, 0)
        return cls(
            mean=float(values.mean()),
            std=float(values.std()),
            min=float(values.min()),
            max=float(values.max()),
            count=int(values.size),
        )


def _empty_points() -> np.ndarray:
    return np.empty((0, 2), dtype=float)


@dataclass
class ChannelResult:
    """Outcome of processing one channel.

    ``rings`` and ``ideal_rings`` always have the same length and share
    index-for-index correspondence; ``ring_indices`` gives the flat
    row-major position of every matched ring in the ``grid_size`` x
    ``grid_size`` ideal lattice.
    """

    channel: int
    width: int
    height: int
    cross: BoundingBox | None = None
    rings: np.ndarray = field(default_factory=_empty_points)
    ideal_rings: np.ndarray = field(default_factory=_empty_points)
    ring_indices: np.ndarray = field(default_factory=lambda: np.empty(0, dtype=int))
    grid_size: int = 0
    rotation_angle: float = 0.0
    calibration: GridCalibration | None = None
    field_distortion: np.ndarray = field(default_factory=lambda: np.empty(0))
    field_uniformity: np.ndarray = field(default_factory=lambda: np.empty(0))
    fwhm: np.ndarray = field(default_factory=lambda: np.empty(0))
    key_values: dict[str, Any] = field(default_factory=dict)
    failed: bool = False
    error: str | None = None

    def set_correspondence(self, rings: np.ndarray, ideal_rings: np.ndarray, ring_indices: np.ndarray) -> None:
        """Store sorted detected/ideal rings, checking they stay paired."""
        rings = np.asarray(rings, dtype=float).reshape(-1, 2)
        ideal_rings = np.asarray(ideal_rings, dtype=float).reshape(-1, 2)
        ring_indices = np.asarray(ring_indices, dtype=int).ravel()
        if not (len(rings) == len(ideal_rings) == len(ring_indices)):
            raise ValueError(
                f"Detected ({len(rings)}), ideal ({len(ideal_rings)}) and index ({len(ring_indices)}) "
                "arrays must have the same length"
            )
        self.rings = rings
        self.ideal_rings = ideal_rings
        self.ring_indices = ring_indices

    def add_metric(self, name: str, values: np.ndarray) -> None:
        """Attach a per-ring metric array (one value per sorted ring)."""
        if name not in METRIC_NAMES:
            raise ValueError(f"Unknown metric '{name}', expected one of {METRIC_NAMES}")
        values = np.asarray(values, dtype=float).ravel()
        if len(values) != len(self.rings):
            raise ValueError(f"Metric '{name}' has {len(values)} values for {len(self.rings)} rings")
        setattr(self, name, values)

    def add_key_value(self, key: str, value: Any) -> None:
        self.key_values[key] = value

    def mark_failed(self, error: Exception | str) -> None:
        self.failed = True
        self.error = str(error)

    @property
    def n_rings(self) -> int:
        return len(self.rings)

    def statistics(self, name: str) -> MetricStatistics:
        return MetricStatistics.from_values(getattr(self, name))


METRIC_NAMES = ("field_distortion", "field_uniformity", "fwhm")


@dataclass
class PCCResult:
    """Per-ring Pearson coefficients for every channel pair (i < j)."""

    pairs: list[tuple[int, int, np.ndarray]] = field(default_factory=list)

    def add(self, channel_i: int, channel_j: int, values: np.ndarray) -> None:
        self.pairs.append((channel_i, channel_j, np.asarray(values, dtype=float)))

    def get(self, channel_i: int, channel_j: int) -> np.ndarray | None:
        for ci, cj, values in self.pairs:
            if (ci, cj) == (channel_i, channel_j):
                return values
        return None

    def __len__(self) -> int:
        return len(self.pairs)


@dataclass
class CalibrationImage:
    """One decoded acquisition of a calibration slide.

    Parameters
    ----------
    identifier : str
        Unique identifier of the acquisition (file path, database id...)
    pixel_size : float
        Physical pixel size in micrometres per pixel
    channels : np.ndarray
        Intensity buffers, shape (C, H, W); a 2D array is treated as one channel
    pattern : str
        Slide pattern identifier, selects the pattern preset
    imaged_fov : FieldOfView
        Whether the acquisition covers the full pattern or a zoomed area
    """

    identifier: str
    pixel_size: float
    channels: np.ndarray
    pattern: str = ""
    name: str = ""
    imaged_fov: FieldOfView = FieldOfView.FULL
    metadata: dict[str, str] = field(default_factory=dict)
    tags: list[str] = field(default_factory=list)
    key_values: dict[str, Any] = field(default_factory=dict)
    results: list[ChannelResult] = field(default_factory=list)
    pcc: PCCResult | None = None

    def __post_init__(self) -> None:
        channels = np.asarray(self.channels)
        if channels.ndim == 2:
            channels = channels[np.newaxis]
        if channels.ndim != 3:
            raise ValueError(f"Expected a (C, H, W) or (H, W) buffer, got shape {channels.shape}")
        if self.pixel_size <= 0:
            raise ValueError(f"Pixel size must be positive, got {self.pixel_size}")
        self.channels = channels
        self.imaged_fov = FieldOfView(self.imaged_fov)
        if not self.name:
            self.name = str(self.identifier)

    @property
    def n_channels(self) -> int:
        return self.channels.shape[0]

    @property
    def height(self) -> int:
        return self.channels.shape[1]

    @property
    def width(self) -> int:
        return self.channels.shape[2]

    def channel(self, index: int) -> np.ndarray:
        if index < 0 or index >= self.n_channels:
            raise ValueError(f"Channel {index} out of range (0-{self.n_channels - 1})")
        return self.channels[index]

    def add_result(self, result: ChannelResult) -> None:
        self.results.append(result)

    def add_key_value(self, key: str, value: Any) -> None:
        self.key_values[key] = value

    def add_tag(self, tag: str) -> None:
        if tag and tag not in self.tags:
            self.tags.append(tag)

    @property
    def failed_channels(self) -> list[int]:
        return [r.channel for r in self.results if r.failed]

    def summary_rows(self) -> list[dict[str, Any]]:
        """One summary row per processed channel.

        Each row holds the rotation in degrees, the cross shift to the image
        centre in micrometres and the mean/std/min/max of every metric
        (``-1`` when the metric was not computed).
        """
        rows = []
        acquisition_date = self.metadata.get("acquisition_date", "unknown")
        image_cx = (self.width - 1) / 2.0
        image_cy = (self.height - 1) / 2.0
        for result in self.results:
            row: dict[str, Any] = {
                "image": self.name,
                "microscope": self.metadata.get("microscope", ""),
                "objective": self.metadata.get("objective", ""),
                "channel": result.channel,
                "imaged_fov": self.imaged_fov.value,
                "status": "failed" if result.failed else "ok",
                "acquisition_date": acquisition_date,
                "rotation_deg": float(np.degrees(result.rotation_angle)),
            }
            if result.cross is not None:
                cx, cy = result.cross.center
                row["x_shift_um"] = (cx - image_cx) * self.pixel_size
                row["y_shift_um"] = (cy - image_cy) * self.pixel_size
            else:
                row["x_shift_um"] = -1
                row["y_shift_um"] = -1
            row["n_rings"] = result.n_rings
            for name in METRIC_NAMES:
                stats = result.statistics(name)
                for stat in ("mean", "std", "min", "max"):
                    value = getattr(stats, stat)
                    row[f"{name}_{stat}"] = -1 if np.isnan(value) else value
            rows.append(row)
        return rows

    def stamp(self) -> None:
        """Record the processing timestamp as a key-value."""
        self.key_values["processing_date"] = datetime.now().isoformat(timespec="seconds")
