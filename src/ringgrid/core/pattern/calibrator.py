"""
Grid calibration: step, rotation, ideal lattice and ring correspondence.
"""

import logging

import numpy as np

from ..errors import DegenerateCornersError, EmptyGridDetectionError
from ..models import GridCalibration
from .config import PatternConfig

logger = logging.getLogger(__name__)

# Below this horizontal corner distance (px) the rotation is reported as 0
CORNER_DX_GUARD = 0.01


def reduced_grid(points: np.ndarray, center: tuple[float, float], half_window_px: float) -> np.ndarray:
    """Points within a square window of half width ``half_window_px`` around ``center``."""
    points = np.asarray(points, dtype=float).reshape(-1, 2)
    dx = np.abs(points[:, 0] - center[0])
    dy = np.abs(points[:, 1] - center[1])
    return points[(dx < half_window_px) & (dy < half_window_px)]


def estimate_axis_step(values: np.ndarray, spacing_px: float, tolerance_factor: float = 0.6) -> float:
    """Average distance between consecutive grid lines along one axis.

    Values are binned into ``floor(sqrt(n + 1))`` lines around
    ``min + i * rawStep`` with ``rawStep = (max - min) / floor(sqrt(n))``,
    each line is averaged and the consecutive differences are averaged.

    Parameters
    ----------
    values : np.ndarray
        One coordinate (x or y) of the points of a reduced grid
    spacing_px : float
        Nominal ring spacing in pixels
    tolerance_factor : float
        Binning tolerance as a fraction of the spacing

    Returns
    -------
    float
        Step in pixels

    Raises
    ------
    EmptyGridDetectionError
        If fewer than two lines are populated
    """
    values = np.asarray(values, dtype=float).ravel()
    n = len(values)
    if n < 2:
        raise EmptyGridDetectionError(f"Need at least 2 points to estimate a step, got {n}")

    low = values.min()
    raw_step = (values.max() - low) / np.floor(np.sqrt(n))
    n_lines = int(np.floor(np.sqrt(n + 1)))
    tolerance = int(tolerance_factor * spacing_px)

    line_means = []
    for i in range(n_lines):
        expected = low + i * raw_step
        line = values[np.abs(values - expected) <= tolerance]
        if len(line):
            line_means.append(line.mean())

    if len(line_means) < 2:
        raise EmptyGridDetectionError(f"Only {len(line_means)} grid line(s) populated out of {n_lines}")

    return float(np.mean(np.diff(line_means)))


def estimate_rotation(points: np.ndarray, center: tuple[float, float]) -> float:
    """Grid rotation from the top-left and top-right corners.

    The corners are taken among the four points farthest from ``center``.

    Raises
    ------
    DegenerateCornersError
        With fewer than four points or when no top-left/top-right corner exists
    """
    points = np.asarray(points, dtype=float).reshape(-1, 2)
    if len(points) < 4:
        raise DegenerateCornersError(f"Need at least 4 points to estimate rotation, got {len(points)}")

    cx, cy = center
    distances = np.hypot(points[:, 0] - cx, points[:, 1] - cy)
    corners = points[np.argsort(-distances, kind="stable")[:4]]

    top_left = next((p for p in corners if p[0] < cx and p[1] < cy), None)
    top_right = next((p for p in corners if p[0] > cx and p[1] < cy), None)
    if top_left is None or top_right is None:
        raise DegenerateCornersError(f"No top-left/top-right corner among {corners.tolist()}")

    dx = top_right[0] - top_left[0]
    dy = top_right[1] - top_left[1]
    if abs(dx) <= CORNER_DX_GUARD:
        return 0.0
    return float(np.arctan2(dy, dx))


def calibrate_grid(
    points: np.ndarray,
    cross_center: tuple[float, float],
    image_center: tuple[float, float],
    pixel_size: float,
    pattern: PatternConfig,
    max_points_per_line: int,
) -> GridCalibration:
    """Estimate steps on the reduced grid and rotation on all points.

    The rotation is first estimated around the cross, then around the image
    centre, and defaults to 0 when both fail.
    """
    spacing_px = pattern.spacing / pixel_size
    reduced = reduced_grid(points, cross_center, pattern.reduced_grid_factor * spacing_px)
    if len(reduced) < 2:
        raise EmptyGridDetectionError(f"Reduced grid holds {len(reduced)} ring(s)")

    step_x = estimate_axis_step(reduced[:, 0], spacing_px, pattern.step_tolerance_factor)
    step_y = estimate_axis_step(reduced[:, 1], spacing_px, pattern.step_tolerance_factor)

    try:
        angle = estimate_rotation(points, cross_center)
    except DegenerateCornersError as e:
        logger.warning(f"Rotation around the cross failed ({e}), retrying around the image centre")
        try:
            angle = estimate_rotation(points, image_center)
        except DegenerateCornersError as e2:
            logger.warning(f"Rotation estimation failed ({e2}), using 0")
            angle = 0.0

    logger.debug(f"Calibrated step ({step_x:.3f}, {step_y:.3f}) px, rotation {angle:.5f} rad")
    return GridCalibration(step_x=step_x, step_y=step_y, rotation_angle=angle, max_points_per_line=max_points_per_line)


def ideal_grid(
    center: tuple[float, float], step_x: float, step_y: float, angle: float, count: int
) -> tuple[np.ndarray, np.ndarray, int]:
    """Synthesize the rotated ideal lattice for ``count`` detected rings.

    The side is ``floor(sqrt(count + 1))`` rounded down to an odd number so
    that the lattice is centred on the cross. Points are generated row by row
    (y outer, x inner), the centre is skipped and every point is rotated
    about ``center`` by ``angle``.

    Returns
    -------
    tuple[np.ndarray, np.ndarray, int]
        (side*side - 1, 2) ideal points, their flat row-major indices in the
        side x side lattice, and the side
    """
    n = int(np.floor(np.sqrt(count + 1)))
    half = (n - 1) // 2
    side = 2 * half + 1

    offsets = np.arange(-half, half + 1)
    gy, gx = np.meshgrid(offsets, offsets, indexing="ij")
    gx = gx.ravel()
    gy = gy.ravel()
    indices = np.arange(side * side)
    keep = ~((gx == 0) & (gy == 0))
    gx, gy, indices = gx[keep], gy[keep], indices[keep]
    return _lattice_to_pixels(gx, gy, center, step_x, step_y, angle), indices, side


def _lattice_to_pixels(
    gx: np.ndarray, gy: np.ndarray, center: tuple[float, float], step_x: float, step_y: float, angle: float
) -> np.ndarray:
    dx = gx * step_x
    dy = gy * step_y
    cos_a, sin_a = np.cos(angle), np.sin(angle)
    xs = center[0] + dx * cos_a - dy * sin_a
    ys = center[1] + dx * sin_a + dy * cos_a
    return np.column_stack([xs, ys]).astype(float)


def lattice_coordinates(
    points: np.ndarray, center: tuple[float, float], step_x: float, step_y: float, angle: float
) -> np.ndarray:
    """Map pixel positions back onto the unrotated, unit spaced lattice."""
    points = np.asarray(points, dtype=float).reshape(-1, 2)
    dx = points[:, 0] - center[0]
    dy = points[:, 1] - center[1]
    cos_a, sin_a = np.cos(angle), np.sin(angle)
    ux = dx * cos_a + dy * sin_a
    uy = -dx * sin_a + dy * cos_a
    return np.column_stack([ux / step_x, uy / step_y])


def lattice_assignment(
    points: np.ndarray, center: tuple[float, float], step_x: float, step_y: float, angle: float
) -> tuple[np.ndarray, np.ndarray, np.ndarray, int]:
    """Place every ring on its nearest lattice cell, keeping all of them.

    The lattice is the smallest odd square centred on ``center`` that holds
    every ring, so a missing ring leaves an empty cell instead of shrinking
    the lattice.

    Returns
    -------
    tuple[np.ndarray, np.ndarray, np.ndarray, int]
        Rings in row-major cell order, the ideal position of their cells, the
        flat cell indices and the lattice side
    """
    points = np.asarray(points, dtype=float).reshape(-1, 2)
    if not len(points):
        return np.empty((0, 2)), np.empty((0, 2)), np.empty(0, dtype=int), 0

    cells = np.rint(lattice_coordinates(points, center, step_x, step_y, angle)).astype(int)
    half = int(np.abs(cells).max())
    side = 2 * half + 1
    indices = (cells[:, 1] + half) * side + cells[:, 0] + half

    order = np.argsort(indices, kind="stable")
    points, cells, indices = points[order], cells[order], indices[order]
    if len(np.unique(indices)) < len(indices):
        logger.warning(f"{len(indices) - len(np.unique(indices))} ring(s) share a lattice cell with another ring")

    ideal = _lattice_to_pixels(cells[:, 0], cells[:, 1], center, step_x, step_y, angle)
    return points, ideal, indices, side


def sort_from_reference(
    detected: np.ndarray, ideal: np.ndarray, ideal_indices: np.ndarray, radius_px: float
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Pair ideal points with the detected rings whose disk contains them.

    The disk of a detected ring has radius ``radius_px``; it contains an ideal
    point when it contains that point's integer pixel. The closest pairs are
    taken first and every detected ring is used at most once. Ideal points
    left without a ring are dropped.

    Returns
    -------
    tuple[np.ndarray, np.ndarray, np.ndarray]
        Sorted detected points, matched ideal points and their lattice indices,
        all in ideal-grid order
    """
    detected = np.asarray(detected, dtype=float).reshape(-1, 2)
    ideal = np.asarray(ideal, dtype=float).reshape(-1, 2)
    ideal_indices = np.asarray(ideal_indices, dtype=int).ravel()
    if len(ideal) != len(ideal_indices):
        raise ValueError(f"Got {len(ideal)} ideal points for {len(ideal_indices)} indices")

    pairs: dict[int, int] = {}
    if len(detected) and len(ideal):
        pixels = np.floor(ideal)
        distances = np.hypot(
            pixels[:, 0, None] - detected[None, :, 0],
            pixels[:, 1, None] - detected[None, :, 1],
        )
        rows, cols = np.nonzero(distances <= radius_px)
        used = set()
        for k in np.argsort(distances[rows, cols], kind="stable"):
            i, j = int(rows[k]), int(cols[k])
            if i in pairs or j in used:
                continue
            pairs[i] = j
            used.add(j)

    matched = sorted(pairs)
    unmatched = len(ideal) - len(matched)
    if unmatched:
        logger.debug(f"{unmatched} of {len(ideal)} ideal points had no matching ring")

    return (
        detected[[pairs[i] for i in matched]].reshape(-1, 2),
        ideal[matched].reshape(-1, 2),
        ideal_indices[matched].astype(int),
    )
