"""
Ring detection around the central cross.
"""

import logging

import numpy as np

from ..errors import EmptyGridDetectionError
from ..models import BoundingBox, Region
from ..primitives import DetectionScratch, components, local_maxima, preprocess, threshold
from .config import PatternConfig

logger = logging.getLogger(__name__)


def rings_per_side(width: int, height: int, pixel_size: float, pattern: PatternConfig) -> tuple[int, float]:
    """Number of rings that fit on each side of the cross.

    When the image is smaller than the nominal pattern field, the count is
    derived from the available field; otherwise the full pattern is used.

    Returns
    -------
    tuple[int, float]
        Rings per side and the search window padding in micrometres
    """
    width_um = width * pixel_size
    height_um = height * pixel_size
    limit = pattern.fov + pattern.fov_margin

    if width_um < limit and height_um < limit:
        n_x = int(np.floor((width_um / 2.0 - pattern.edge_margin) / pattern.spacing))
        n_y = int(np.floor((height_um / 2.0 - pattern.edge_margin) / pattern.spacing))
        return min(n_x, n_y), pattern.partial_padding

    return (pattern.points_per_line - 1) // 2, pattern.full_padding


def search_box(cross: BoundingBox, n_rings: int, padding: float, pixel_size: float, spacing: float) -> BoundingBox:
    """Cross bounding box grown to cover ``n_rings`` spacings on each side."""
    margin = int(round((n_rings * spacing + padding) / pixel_size))
    return cross.grow(margin)


def _detect_candidates(image: np.ndarray, pixel_size: float, pattern: PatternConfig, scratch: DetectionScratch) -> list[Region]:
    filtered = preprocess(
        image,
        pattern.preprocessing,
        sigma_px=pattern.sigma / pixel_size,
        median_radius_px=pattern.median_radius / pixel_size,
        dog_high_sigma_px=pattern.dog_high_sigma / pixel_size,
    )
    scratch.preprocessed = filtered
    mask = threshold(filtered, pattern.ring_threshold_method)

    if pattern.detection == "components":
        return components(mask, min_area=pattern.particle_threshold / pixel_size, intensity_image=image)

    min_distance = max(int(0.25 * pattern.spacing / pixel_size), 1)
    return [r for r in local_maxima(filtered, min_distance=min_distance) if mask[r.bbox.y, r.bbox.x]]


def find_grid_points(
    image: np.ndarray,
    cross: BoundingBox,
    pixel_size: float,
    pattern: PatternConfig,
    scratch: DetectionScratch | None = None,
) -> np.ndarray:
    """Detect ring centres around the cross.

    Parameters
    ----------
    image : np.ndarray
        Single channel intensity image
    cross : BoundingBox
        Central cross found by :func:`find_central_cross`
    pixel_size : float
        Micrometres per pixel
    pattern : PatternConfig
        Pattern preset
    scratch : DetectionScratch | None
        Receives the search window, the rings per side and the raw candidates

    Returns
    -------
    np.ndarray
        (n, 2) array of (x, y) ring centres in pixels, unordered

    Raises
    ------
    EmptyGridDetectionError
        If no ring survives detection and filtering
    """
    scratch = scratch if scratch is not None else DetectionScratch()
    height, width = image.shape

    n_rings, padding = rings_per_side(width, height, pixel_size, pattern)
    if n_rings < 1:
        raise EmptyGridDetectionError(
            f"Image of {width * pixel_size:.1f} x {height * pixel_size:.1f} um cannot hold a ring "
            f"spaced by {pattern.spacing} um"
        )
    box = search_box(cross, n_rings, padding, pixel_size, pattern.spacing)
    scratch.rings_per_side = n_rings
    scratch.search_box = box

    candidates = _detect_candidates(image, pixel_size, pattern, scratch)
    scratch.ring_candidates = candidates

    cx, cy = cross.center
    kept = []
    for region in candidates:
        x, y = region.centroid
        if not box.contains(x, y) or cross.contains(x, y):
            continue
        if pattern.max_radius is not None and np.hypot(x - cx, y - cy) * pixel_size > pattern.max_radius:
            continue
        kept.append((x, y))

    if not kept:
        raise EmptyGridDetectionError(
            f"No ring found in {box} ({len(candidates)} raw candidates, "
            f"threshold '{pattern.ring_threshold_method}')"
        )

    logger.debug(f"Kept {len(kept)} of {len(candidates)} ring candidates, {n_rings} rings per side")
    return np.asarray(kept, dtype=float)
