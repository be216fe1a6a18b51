import numpy as np
import pytest

from conftest import CENTER, PIXEL_SIZE, SIZE, SPACING_PX, add_cross, lattice_points, make_slide_image
from ringgrid.core import CalibrationImage, CalibrationPipeline, FieldOfView, ProcessingOverrides, get_pattern, run
from ringgrid.core.primitives import FWHM_FACTOR
from ringgrid.io import ArrayCalibrationSource


class CollectingSender:
    def __init__(self) -> None:
        self.images = []

    def send(self, image: CalibrationImage) -> None:
        self.images.append(image)


def test_regular_grid_scenario(two_channel_image) -> None:
    image = CalibrationPipeline().process(two_channel_image)

    assert len(image.results) == 2
    for result in image.results:
        assert not result.failed
        assert result.n_rings == 80
        assert result.grid_size == 9
        assert result.calibration.step_x == pytest.approx(30.0, abs=0.5)
        assert result.calibration.step_y == pytest.approx(30.0, abs=0.5)
        assert result.rotation_angle == pytest.approx(0.0, abs=0.01)
        np.testing.assert_allclose(result.field_distortion, 0.0, atol=1e-6)
        assert len(result.field_uniformity) == 80
        assert np.all(result.field_uniformity > 100)
        assert len(result.fwhm) == 0
        assert result.rings.shape == result.ideal_rings.shape


def test_identical_channels_correlate(two_channel_image) -> None:
    image = CalibrationPipeline().process(two_channel_image)

    values = image.pcc.get(0, 1)
    assert len(values) == 80
    np.testing.assert_allclose(values, 1.0)
    assert image.key_values["ch0_ch1_pcc_mean"] == pytest.approx(1.0)


def test_key_values_recorded(two_channel_image) -> None:
    image = CalibrationPipeline().process(two_channel_image)

    assert image.key_values["pattern"] == "SGL482"
    assert image.key_values["ch0_xStepAvg_(pix)"] == pytest.approx(30.0, abs=0.5)
    assert image.key_values["ch1_nRings"] == 80
    assert image.results[0].key_values["ch0_status"] == "ok"
    assert "processing_date" in image.key_values


def test_missing_cross_fails_only_that_channel() -> None:
    good = make_slide_image()
    flat = np.full_like(good, 100.0)
    image = CalibrationImage(
        identifier="two", pixel_size=PIXEL_SIZE, channels=np.stack([good, flat]), pattern="SGL482"
    )

    CalibrationPipeline().process(image)

    assert not image.results[0].failed
    assert image.results[0].n_rings == 80
    assert image.results[1].failed
    assert "cross" in image.results[1].error
    assert image.failed_channels == [1]
    assert len(image.pcc.get(0, 1)) == 0
    assert image.key_values["ch1_status"] == "failed"


def test_partial_field_measures_fwhm() -> None:
    image = CalibrationImage(
        identifier="zoom",
        pixel_size=PIXEL_SIZE,
        channels=make_slide_image(),
        pattern="SGL482",
        imaged_fov=FieldOfView.PARTIAL,
    )

    CalibrationPipeline().process(image)
    result = image.results[0]

    assert not result.failed
    assert result.n_rings == 24
    assert result.grid_size == 5
    assert len(result.field_distortion) == 0
    assert np.nanmedian(result.fwhm) == pytest.approx(FWHM_FACTOR * 2.0 * PIXEL_SIZE, rel=3e-2)
    assert image.pcc is None


def test_overrides_are_applied(two_channel_image) -> None:
    pipeline = CalibrationPipeline(overrides=ProcessingOverrides(ring_threshold_method="otsu", ring_radius=1.0))
    pattern = pipeline.resolve_pattern(two_channel_image)

    assert pattern.name == "SGL482"
    assert pattern.ring_threshold_method == "otsu"
    assert pattern.ring_radius == 1.0


def test_progress_events(two_channel_image) -> None:
    pipeline = CalibrationPipeline()
    events = []
    pipeline.progress.connect(events.append)

    pipeline.process(two_channel_image)

    assert [(e.stage, e.current, e.total) for e in events] == [("channel", 1, 2), ("channel", 2, 2)]


def test_run_sends_images_and_skips_unknown_patterns(two_channel_image) -> None:
    unknown = CalibrationImage(identifier="x", name="mystery", pixel_size=0.5, channels=np.zeros((10, 10)))
    sender = CollectingSender()
    pipeline = CalibrationPipeline()
    events = []
    pipeline.progress.connect(events.append)

    processed = list(run(ArrayCalibrationSource([unknown, two_channel_image]), pipeline, [sender]))

    assert len(processed) == 1 and processed[0] is two_channel_image
    assert len(sender.images) == 1 and sender.images[0] is two_channel_image
    image_events = [e for e in events if e.stage == "image"]
    assert [(e.current, e.total, e.failed) for e in image_events] == [(1, 2, True), (2, 2, False)]


def test_summary_rows(two_channel_image) -> None:
    image = CalibrationPipeline().process(two_channel_image)
    rows = image.summary_rows()

    assert len(rows) == 2
    assert rows[0]["acquisition_date"] == "20230405"
    assert rows[0]["rotation_deg"] == pytest.approx(0.0, abs=0.5)
    assert rows[0]["x_shift_um"] == pytest.approx(0.25)
    assert rows[0]["fwhm_mean"] == -1
    assert rows[0]["field_distortion_max"] == pytest.approx(0.0, abs=1e-6)


def slide_with_rings(points: np.ndarray, sigma_x: float = 2.0, sigma_y: float = 2.0) -> np.ndarray:
    image = np.full((SIZE, SIZE), 100.0)
    yy, xx = np.mgrid[0:SIZE, 0:SIZE]
    for x, y in points:
        image += 1000.0 * np.exp(-((xx - x) ** 2) / (2 * sigma_x**2) - (yy - y) ** 2 / (2 * sigma_y**2))
    add_cross(image, CENTER, half_length=18, thickness=5, value=1100.0)
    return image


def test_partial_field_keeps_rings_around_a_gap() -> None:
    points = lattice_points((CENTER, CENTER), SPACING_PX, SPACING_PX, 4)
    points = points[~np.all(points == (180.0, 150.0), axis=1)]
    image = CalibrationImage(
        identifier="gap",
        pixel_size=PIXEL_SIZE,
        channels=slide_with_rings(points),
        pattern="SGL482",
        imaged_fov=FieldOfView.PARTIAL,
    )

    CalibrationPipeline().process(image)
    result = image.results[0]

    assert not result.failed
    assert result.n_rings == 23
    assert result.grid_size == 5
    assert len(result.fwhm) == 23
    assert 13 not in result.ring_indices
    assert len(np.unique(result.ring_indices)) == 23
    np.testing.assert_allclose(result.ideal_rings, result.rings, atol=0.5)
    assert np.nanmedian(result.fwhm) == pytest.approx(FWHM_FACTOR * 2.0 * PIXEL_SIZE, rel=3e-2)


def test_preset_fwhm_averages_directions_of_elongated_rings() -> None:
    pattern = get_pattern("SGL482")
    points = lattice_points((CENTER, CENTER), SPACING_PX, SPACING_PX, 4)
    image = CalibrationImage(
        identifier="astigmatic",
        pixel_size=PIXEL_SIZE,
        channels=slide_with_rings(points, sigma_x=3.0, sigma_y=1.5),
        pattern="SGL482",
        imaged_fov=FieldOfView.PARTIAL,
    )

    CalibrationPipeline().process(image)
    value = np.nanmedian(image.results[0].fwhm)

    assert pattern.fwhm_angles == 30
    # a single vertical profile would report sigma_y only
    assert FWHM_FACTOR * 1.7 * PIXEL_SIZE < value < FWHM_FACTOR * 2.3 * PIXEL_SIZE


def test_registration_shift_lowers_correlation() -> None:
    slide = make_slide_image()
    shifted = np.roll(slide, 2, axis=1)
    image = CalibrationImage(
        identifier="shifted", pixel_size=PIXEL_SIZE, channels=np.stack([slide, shifted]), pattern="SGL482"
    )

    CalibrationPipeline().process(image)
    values = image.pcc.get(0, 1)

    assert len(values) == 80
    assert np.nanmean(values) < 0.6
    assert image.key_values["ch0_ch1_pcc_mean"] < 0.6
