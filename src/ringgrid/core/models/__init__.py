"""Data models shared by the pipeline, the sources and the senders."""

from .data_models import (
    METRIC_NAMES,
    BoundingBox,
    CalibrationImage,
    ChannelResult,
    FieldOfView,
    GridCalibration,
    MetricStatistics,
    PCCResult,
    Region,
)

__all__ = [
    "METRIC_NAMES",
    "BoundingBox",
    "CalibrationImage",
    "ChannelResult",
    "FieldOfView",
    "GridCalibration",
    "MetricStatistics",
    "PCCResult",
    "Region",
]
