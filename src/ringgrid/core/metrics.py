"""
Per-ring quality metrics.

All functions work on sorted ring coordinates (see
:func:`~ringgrid.core.pattern.calibrator.sort_from_reference`) and plain
arrays; none of them depends on the detectors.
"""

import logging

import numpy as np

from .errors import ChannelCountMismatchError, CurveFitFailureError
from .models import MetricStatistics
from .primitives import FWHM_FACTOR, crop_box, disk_mean, fit_gaussian, sample_profile

logger = logging.getLogger(__name__)


def field_distortion(detected: np.ndarray, ideal: np.ndarray, pixel_size: float) -> np.ndarray:
    """Distance between each detected ring and its ideal position, in micrometres."""
    detected = np.asarray(detected, dtype=float).reshape(-1, 2)
    ideal = np.asarray(ideal, dtype=float).reshape(-1, 2)
    if detected.shape != ideal.shape:
        raise ValueError(f"Detected {detected.shape} and ideal {ideal.shape} rings do not pair up")
    return np.hypot(detected[:, 0] - ideal[:, 0], detected[:, 1] - ideal[:, 1]) * pixel_size


def field_uniformity(image: np.ndarray, rings: np.ndarray, radius_px: float) -> np.ndarray:
    """Mean intensity in a disk of ``radius_px`` around each ring."""
    image = np.asarray(image, dtype=float)
    rings = np.asarray(rings, dtype=float).reshape(-1, 2)
    return np.array([disk_mean(image, (x, y), radius_px) for x, y in rings], dtype=float)


def profile_angles(n_angles: int) -> np.ndarray:
    """Profile directions: vertical for a single line, else evenly spread over [0, pi)."""
    if n_angles <= 1:
        return np.array([np.pi / 2.0])
    return np.linspace(0.0, np.pi, n_angles, endpoint=False)


def interquartile_mean(values: np.ndarray) -> float:
    """Mean of the values between the 25th and 75th percentiles."""
    values = np.sort(np.asarray(values, dtype=float))
    if len(values) < 3:
        return float(values.mean())
    q1, q3 = np.percentile(values, [25, 75])
    return float(values[(values >= q1) & (values <= q3)].mean())


def ring_fwhm(
    image: np.ndarray,
    center: tuple[float, float],
    half_length_px: float,
    pixel_size: float,
    n_angles: int = 1,
) -> float:
    """FWHM of one ring in micrometres.

    A profile of length ``2 * half_length_px`` centred on the ring is fitted
    with an offset Gaussian for each direction. With several directions, the
    interquartile mean of the per-direction widths is returned.

    Raises
    ------
    CurveFitFailureError
        If the fit fails in every direction
    """
    cx, cy = center
    widths = []
    for angle in profile_angles(n_angles):
        ux, uy = np.cos(angle) * half_length_px, np.sin(angle) * half_length_px
        x, y = sample_profile(image, (cx - ux, cy - uy), (cx + ux, cy + uy))
        try:
            _, _, _, d = fit_gaussian(x, y)
        except CurveFitFailureError as e:
            logger.debug(f"FWHM fit at ({cx:.1f}, {cy:.1f}) angle {angle:.2f} failed: {e}")
            continue
        widths.append(FWHM_FACTOR * d * pixel_size)

    if not widths:
        raise CurveFitFailureError(f"No profile around ({cx:.1f}, {cy:.1f}) could be fitted")
    return interquartile_mean(np.array(widths))


def fwhm(
    image: np.ndarray, rings: np.ndarray, half_length_px: float, pixel_size: float, n_angles: int = 1
) -> np.ndarray:
    """FWHM of every ring; rings whose fit fails get NaN."""
    image = np.asarray(image, dtype=float)
    rings = np.asarray(rings, dtype=float).reshape(-1, 2)
    values = np.full(len(rings), np.nan)
    for i, (x, y) in enumerate(rings):
        try:
            values[i] = ring_fwhm(image, (x, y), half_length_px, pixel_size, n_angles)
        except CurveFitFailureError as e:
            logger.warning(f"Ring {i}: {e}")
    return values


def pearson_correlation(a: np.ndarray, b: np.ndarray) -> float:
    """Pearson correlation coefficient of two equally shaped samples.

    Returns NaN when either sample is constant.
    """
    a = np.asarray(a, dtype=float).ravel()
    b = np.asarray(b, dtype=float).ravel()
    if a.shape != b.shape:
        raise ValueError(f"Samples must have the same size, got {a.size} and {b.size}")
    if a.size < 2:
        return float("nan")

    da = a - a.mean()
    db = b - b.mean()
    denominator = np.sqrt(np.sum(da * da) * np.sum(db * db))
    if denominator == 0:
        return float("nan")
    return float(np.sum(da * db) / denominator)


def channel_correlation(
    image_a: np.ndarray,
    image_b: np.ndarray,
    rings_a: np.ndarray,
    rings_b: np.ndarray,
    radius_px: float,
) -> np.ndarray:
    """Per-ring Pearson correlation between two channels.

    Both channels are cropped to the square around each ring of the first
    channel.

    Raises
    ------
    ChannelCountMismatchError
        If the channels matched a different number of rings
    """
    rings_a = np.asarray(rings_a, dtype=float).reshape(-1, 2)
    rings_b = np.asarray(rings_b, dtype=float).reshape(-1, 2)
    if len(rings_a) != len(rings_b):
        raise ChannelCountMismatchError(f"Channels matched {len(rings_a)} and {len(rings_b)} rings")

    image_a = np.asarray(image_a, dtype=float)
    image_b = np.asarray(image_b, dtype=float)
    values = np.empty(len(rings_a))
    for i, (x, y) in enumerate(rings_a):
        rows, cols = crop_box((x, y), radius_px, image_a.shape)
        values[i] = pearson_correlation(image_a[rows, cols], image_b[rows, cols])
    return values


def compute_statistics(values: np.ndarray) -> MetricStatistics:
    """Mean, population std, min and max, NaN ignored."""
    return MetricStatistics.from_values(values)
