"""ringgrid core: detection and metric pipeline for ring-grid calibration slides."""

from .errors import (
    CalibrationError,
    ChannelCountMismatchError,
    CrossNotFoundError,
    CurveFitFailureError,
    DegenerateCornersError,
    EmptyGridDetectionError,
    UnknownPatternError,
)
from .heatmap import HeatMap, channel_heat_maps, rasterize_heat_map
from .metrics import (
    channel_correlation,
    compute_statistics,
    field_distortion,
    field_uniformity,
    fwhm,
    pearson_correlation,
)
from .models import (
    BoundingBox,
    CalibrationImage,
    ChannelResult,
    FieldOfView,
    GridCalibration,
    MetricStatistics,
    PCCResult,
)
from .pattern import PATTERNS, PatternConfig, ProcessingOverrides, get_pattern, load_patterns_yaml
from .pipeline import CalibrationPipeline, run
from .progress import ProgressEmitter, ProgressEvent

__all__ = [
    # Pipeline
    "CalibrationPipeline",
    "run",
    "ProgressEmitter",
    "ProgressEvent",
    # Patterns
    "PATTERNS",
    "PatternConfig",
    "ProcessingOverrides",
    "get_pattern",
    "load_patterns_yaml",
    # Models
    "BoundingBox",
    "CalibrationImage",
    "ChannelResult",
    "FieldOfView",
    "GridCalibration",
    "MetricStatistics",
    "PCCResult",
    # Metrics
    "channel_correlation",
    "compute_statistics",
    "field_distortion",
    "field_uniformity",
    "fwhm",
    "pearson_correlation",
    # Heat maps
    "HeatMap",
    "channel_heat_maps",
    "rasterize_heat_map",
    # Errors
    "CalibrationError",
    "ChannelCountMismatchError",
    "CrossNotFoundError",
    "CurveFitFailureError",
    "DegenerateCornersError",
    "EmptyGridDetectionError",
    "UnknownPatternError",
]
