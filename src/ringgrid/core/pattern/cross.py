"""
Central cross detection.

The cross marks the centre of the ring lattice. It is the widest connected
component near the image centre; components further out are partial arms or
rings of the surrounding pattern.
"""

import logging

import numpy as np

from ..errors import CrossNotFoundError
from ..models import BoundingBox, Region
from ..primitives import DetectionScratch, components, threshold
from .config import PatternConfig

logger = logging.getLogger(__name__)


def cross_candidates(
    image: np.ndarray, pixel_size: float, fov: float, method: str, min_size: float = 2.5
) -> list[Region]:
    """Components whose centroid lies within the central window.

    The window is centred on the image and has a half width of
    ``fov / 4`` converted to pixels.
    """
    height, width = image.shape
    mask = threshold(image, method)
    regions = components(mask, min_area=min_size / pixel_size)

    half_window = fov / (4.0 * pixel_size)
    center_x = (width - 1) / 2.0
    center_y = (height - 1) / 2.0
    return [
        r
        for r in regions
        if abs(r.centroid[0] - center_x) < half_window and abs(r.centroid[1] - center_y) < half_window
    ]


def find_central_cross(
    image: np.ndarray,
    pixel_size: float,
    pattern: PatternConfig,
    scratch: DetectionScratch | None = None,
) -> BoundingBox:
    """Locate the central cross of the slide pattern.

    Parameters
    ----------
    image : np.ndarray
        Single channel intensity image
    pixel_size : float
        Micrometres per pixel
    pattern : PatternConfig
        Pattern preset, provides the nominal field and threshold method
    scratch : DetectionScratch | None
        Receives the candidate list when given

    Returns
    -------
    BoundingBox
        Bounding box of the widest candidate, the first one on ties

    Raises
    ------
    CrossNotFoundError
        If no component lies within the central window
    """
    candidates = cross_candidates(
        image, pixel_size, pattern.fov, pattern.cross_threshold_method, pattern.cross_min_size
    )
    if scratch is not None:
        scratch.cross_candidates = candidates

    if not candidates:
        raise CrossNotFoundError(
            f"No cross candidate within {pattern.fov / 4.0:.1f} um of the image centre "
            f"(threshold '{pattern.cross_threshold_method}')"
        )

    cross = max(candidates, key=lambda r: r.bbox.width)
    logger.debug(f"Cross found at {cross.bbox} among {len(candidates)} candidates")
    return cross.bbox
