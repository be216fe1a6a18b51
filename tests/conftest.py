import numpy as np
import pytest

from ringgrid.core import CalibrationImage, FieldOfView, get_pattern

PIXEL_SIZE = 0.5
SPACING_PX = 30
SIZE = 300
CENTER = 150


def lattice_points(
    center: tuple[float, float], spacing_x: float, spacing_y: float, n_side: int, angle: float = 0.0
) -> np.ndarray:
    """Row-major lattice of (2 n_side + 1)^2 - 1 points, centre excluded."""
    points = []
    for j in range(-n_side, n_side + 1):
        for i in range(-n_side, n_side + 1):
            if i == 0 and j == 0:
                continue
            dx, dy = i * spacing_x, j * spacing_y
            points.append(
                (
                    center[0] + dx * np.cos(angle) - dy * np.sin(angle),
                    center[1] + dx * np.sin(angle) + dy * np.cos(angle),
                )
            )
    return np.array(points)


def add_spots(image: np.ndarray, points: np.ndarray, sigma: float, amplitude: float) -> None:
    yy, xx = np.mgrid[0 : image.shape[0], 0 : image.shape[1]]
    for x, y in points:
        image += amplitude * np.exp(-((xx - x) ** 2 + (yy - y) ** 2) / (2 * sigma**2))


def add_cross(image: np.ndarray, center: int, half_length: int, thickness: int, value: float) -> None:
    half_t = thickness // 2
    image[center - half_length : center + half_length + 1, center - half_t : center + half_t + 1] = value
    image[center - half_t : center + half_t + 1, center - half_length : center + half_length + 1] = value


def make_slide_image(
    n_side: int = 4,
    sigma: float = 2.0,
    background: float = 100.0,
    amplitude: float = 1000.0,
    with_cross: bool = True,
    with_rings: bool = True,
) -> np.ndarray:
    """300 x 300 synthetic slide: rings every 30 px around a cross at (150, 150)."""
    image = np.full((SIZE, SIZE), background, dtype=float)
    if with_rings:
        add_spots(image, lattice_points((CENTER, CENTER), SPACING_PX, SPACING_PX, n_side), sigma, amplitude)
    if with_cross:
        add_cross(image, CENTER, half_length=18, thickness=5, value=background + amplitude)
    return image


@pytest.fixture
def pattern():
    return get_pattern("SGL482")


@pytest.fixture
def slide_image() -> np.ndarray:
    return make_slide_image()


@pytest.fixture
def expected_rings() -> np.ndarray:
    return lattice_points((CENTER, CENTER), SPACING_PX, SPACING_PX, 4)


@pytest.fixture
def two_channel_image(slide_image) -> CalibrationImage:
    return CalibrationImage(
        identifier="synthetic",
        name="lsm980_ArgoSLG482_b_d20230405_o63x_oil_fullFoV_1",
        pixel_size=PIXEL_SIZE,
        channels=np.stack([slide_image, slide_image.copy()]),
        pattern="SGL482",
        imaged_fov=FieldOfView.FULL,
        metadata={"acquisition_date": "20230405"},
    )


def sort_points(points: np.ndarray) -> np.ndarray:
    points = np.asarray(points)
    return points[np.lexsort((points[:, 0], np.round(points[:, 1], 3)))]
