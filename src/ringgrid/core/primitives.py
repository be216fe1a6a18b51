"""
Primitive image operations used by the detectors and the metric engine.

Everything here is a pure function of its inputs. Intermediate state that the
detectors want to keep for inspection (search windows, raw candidates) goes
into a DetectionScratch created by the caller for a single channel.
"""

import logging
import warnings
from dataclasses import dataclass, field

import numpy as np
from scipy import ndimage
from scipy.optimize import OptimizeWarning, curve_fit
from skimage import draw, filters, measure, morphology
from skimage.feature import peak_local_max

from .errors import CalibrationError, CurveFitFailureError
from .models import BoundingBox, Region

logger = logging.getLogger(__name__)

THRESHOLD_METHODS = {
    "otsu": filters.threshold_otsu,
    "li": filters.threshold_li,
    "yen": filters.threshold_yen,
    "isodata": filters.threshold_isodata,
    "mean": filters.threshold_mean,
    "minimum": filters.threshold_minimum,
    "triangle": filters.threshold_triangle,
}

FWHM_FACTOR = 2.0 * np.sqrt(2.0 * np.log(2.0))


@dataclass
class DetectionScratch:
    """Working state of one channel's detection pass.

    A fresh instance is created for every channel and is never shared between
    pipeline invocations.
    """

    channel: int = 0
    cross_candidates: list[Region] = field(default_factory=list)
    search_box: BoundingBox | None = None
    ring_candidates: list[Region] = field(default_factory=list)
    preprocessed: np.ndarray | None = None
    rings_per_side: int = 0

    def reset(self) -> None:
        self.cross_candidates = []
        self.search_box = None
        self.ring_candidates = []
        self.preprocessed = None
        self.rings_per_side = 0


def threshold(image: np.ndarray, method: str) -> np.ndarray:
    """Global threshold, foreground is brighter than the threshold.

    Parameters
    ----------
    image : np.ndarray
        2D intensity image
    method : str
        One of THRESHOLD_METHODS

    Returns
    -------
    np.ndarray
        Boolean foreground mask
    """
    if method not in THRESHOLD_METHODS:
        raise ValueError(f"Unknown threshold method '{method}', expected one of {sorted(THRESHOLD_METHODS)}")

    image = np.asarray(image, dtype=float)
    if image.size == 0 or np.ptp(image) == 0:
        return np.zeros(image.shape, dtype=bool)

    try:
        value = THRESHOLD_METHODS[method](image)
    except RuntimeError as e:
        raise CalibrationError(f"Threshold '{method}' failed: {e}") from e

    return image > value


def _bbox_from_slice(bbox: tuple[int, int, int, int]) -> BoundingBox:
    min_row, min_col, max_row, max_col = bbox
    return BoundingBox(int(min_col), int(min_row), int(max_col - min_col), int(max_row - min_row))


def components(mask: np.ndarray, min_area: float = 0, intensity_image: np.ndarray | None = None) -> list[Region]:
    """Connected components of a mask with an area cutoff.

    Centroids are intensity weighted when ``intensity_image`` is given.
    Regions are returned in label order (raster order of their first pixel).
    """
    labels = measure.label(np.asarray(mask, dtype=bool), connectivity=2)
    if intensity_image is not None:
        intensity_image = np.asarray(intensity_image, dtype=float)

    regions = []
    for props in measure.regionprops(labels, intensity_image=intensity_image):
        area = int(props.area)
        if area < min_area:
            continue
        row, col = props.centroid_weighted if intensity_image is not None else props.centroid
        regions.append(
            Region(
                label=int(props.label),
                area=area,
                centroid=(float(col), float(row)),
                bbox=_bbox_from_slice(props.bbox),
            )
        )
    return regions


def local_maxima(image: np.ndarray, min_distance: int = 1, threshold_abs: float | None = None) -> list[Region]:
    """Local intensity maxima as single pixel regions."""
    coords = peak_local_max(
        np.asarray(image, dtype=float),
        min_distance=max(1, int(min_distance)),
        threshold_abs=threshold_abs,
        exclude_border=False,
    )
    # peak_local_max sorts by intensity, keep raster order like components()
    coords = sorted((int(r), int(c)) for r, c in coords)
    return [
        Region(label=i + 1, area=1, centroid=(float(c), float(r)), bbox=BoundingBox(c, r, 1, 1))
        for i, (r, c) in enumerate(coords)
    ]


def median_filter(image: np.ndarray, radius_px: float) -> np.ndarray:
    """Median filter over a disk footprint, identity below one pixel."""
    radius = int(round(radius_px))
    if radius < 1:
        return np.asarray(image, dtype=float)
    return ndimage.median_filter(np.asarray(image, dtype=float), footprint=morphology.disk(radius))


def gaussian_blur(image: np.ndarray, sigma_px: float) -> np.ndarray:
    if sigma_px <= 0:
        return np.asarray(image, dtype=float)
    return ndimage.gaussian_filter(np.asarray(image, dtype=float), sigma_px)


def preprocess(
    image: np.ndarray,
    recipe: str,
    sigma_px: float = 0.0,
    median_radius_px: float = 0.0,
    dog_high_sigma_px: float = 0.0,
) -> np.ndarray:
    """Apply a named background suppression recipe.

    Parameters
    ----------
    image : np.ndarray
        Raw 2D intensity image
    recipe : str
        ``median``, ``median_gaussian`` or ``dog`` (difference of Gaussians)
    sigma_px, median_radius_px, dog_high_sigma_px : float
        Filter sizes in pixels

    Returns
    -------
    np.ndarray
        Float image of the same shape
    """
    if recipe == "median":
        return median_filter(image, median_radius_px)
    if recipe == "median_gaussian":
        return gaussian_blur(median_filter(image, median_radius_px), sigma_px)
    if recipe == "dog":
        low = max(sigma_px, 0.5)
        high = max(dog_high_sigma_px, low * 1.6)
        return filters.difference_of_gaussians(np.asarray(image, dtype=float), low, high)
    raise ValueError(f"Unknown preprocessing recipe '{recipe}'")


def sample_profile(
    image: np.ndarray, start: tuple[float, float], end: tuple[float, float]
) -> tuple[np.ndarray, np.ndarray]:
    """Bilinear intensity profile between two (x, y) points.

    Returns
    -------
    tuple[np.ndarray, np.ndarray]
        Distance along the line in pixels, and the sampled intensities
    """
    src = (start[1], start[0])
    dst = (end[1], end[0])
    values = measure.profile_line(np.asarray(image, dtype=float), src, dst, order=1, mode="reflect")
    length = float(np.hypot(end[0] - start[0], end[1] - start[1]))
    positions = np.linspace(0.0, length, len(values))
    return positions, np.asarray(values, dtype=float)


def gaussian(x: np.ndarray, a: float, b: float, c: float, d: float) -> np.ndarray:
    """Offset Gaussian: ``a + (b - a) * exp(-(x - c)^2 / (2 d^2))``."""
    return a + (b - a) * np.exp(-((x - c) ** 2) / (2.0 * d**2))


def fit_gaussian(x: np.ndarray, y: np.ndarray) -> tuple[float, float, float, float]:
    """Least squares fit of :func:`gaussian`.

    Returns
    -------
    tuple[float, float, float, float]
        (a, b, c, d) with ``d`` non-negative

    Raises
    ------
    CurveFitFailureError
        If the optimiser does not converge or returns non-finite values
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    if len(x) < 4 or len(x) != len(y):
        raise CurveFitFailureError(f"Need at least 4 paired samples, got {len(x)} and {len(y)}")
    if np.ptp(y) == 0:
        raise CurveFitFailureError("Flat profile")

    p0 = [float(y.min()), float(y.max()), float(x[np.argmax(y)]), float(x[-1] - x[0]) / 4.0]
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", OptimizeWarning)
            params, _ = curve_fit(gaussian, x, y, p0=p0, maxfev=5000)
    except (RuntimeError, ValueError) as e:
        raise CurveFitFailureError(f"Gaussian fit did not converge: {e}") from e

    if not np.all(np.isfinite(params)) or params[3] == 0:
        raise CurveFitFailureError(f"Gaussian fit returned invalid parameters {params}")
    # a peak below the offset or outside the profile is not a ring
    if params[1] <= params[0] or not x[0] <= params[2] <= x[-1]:
        raise CurveFitFailureError(f"Gaussian fit did not find a peak inside the profile: {params}")

    a, b, c, d = (float(p) for p in params)
    return a, b, c, abs(d)


def disk_mean(image: np.ndarray, center: tuple[float, float], radius_px: float) -> float:
    """Mean intensity inside a disk centred on an (x, y) point."""
    rr, cc = draw.disk((center[1], center[0]), max(radius_px, 0.5), shape=image.shape)
    if len(rr) == 0:
        return float("nan")
    return float(np.mean(image[rr, cc]))


def crop_box(center: tuple[float, float], radius_px: float, shape: tuple[int, int]) -> tuple[slice, slice]:
    """Row/column slices of the square enclosing a disk, clipped to the image."""
    cx, cy = center
    r = int(np.ceil(radius_px))
    x0 = max(int(np.floor(cx)) - r, 0)
    y0 = max(int(np.floor(cy)) - r, 0)
    x1 = min(int(np.floor(cx)) + r + 1, shape[1])
    y1 = min(int(np.floor(cy)) + r + 1, shape[0])
    return slice(y0, y1), slice(x0, x1)
