"""Slide pattern presets, cross and ring detection, grid calibration."""

from .calibrator import (
    calibrate_grid,
    estimate_axis_step,
    estimate_rotation,
    ideal_grid,
    lattice_assignment,
    lattice_coordinates,
    reduced_grid,
    sort_from_reference,
)
from .config import PATTERNS, PatternConfig, ProcessingOverrides, get_pattern, load_patterns_yaml
from .cross import cross_candidates, find_central_cross
from .grid import find_grid_points, rings_per_side, search_box

__all__ = [
    # Presets
    "PATTERNS",
    "PatternConfig",
    "ProcessingOverrides",
    "get_pattern",
    "load_patterns_yaml",
    # Detection
    "cross_candidates",
    "find_central_cross",
    "find_grid_points",
    "rings_per_side",
    "search_box",
    # Calibration
    "calibrate_grid",
    "estimate_axis_step",
    "estimate_rotation",
    "ideal_grid",
    "lattice_assignment",
    "lattice_coordinates",
    "reduced_grid",
    "sort_from_reference",
]
