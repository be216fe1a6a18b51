import csv

import numpy as np
import pytest
import tifffile

from conftest import make_slide_image
from ringgrid.core import CalibrationImage, CalibrationPipeline, FieldOfView, run
from ringgrid.io import LocalSender, TiffCalibrationSource, load_results_h5, save_results_h5
from ringgrid.io.source import read_pixel_size, to_channels_first

FILE_NAME = "lsm980_ArgoSLG482_b_d20230405_o63x_oil_fullFoV_1.tif"


@pytest.fixture
def tiff_path(tmp_path):
    image = make_slide_image().astype(np.uint16)
    path = tmp_path / FILE_NAME
    tifffile.imwrite(
        path,
        np.stack([image, image]),
        photometric="minisblack",
        metadata={"axes": "CYX"},
        resolution=(20000, 20000),
        resolutionunit="CENTIMETER",
    )
    return path


def read_csv(path):
    with open(path, newline="") as f:
        return list(csv.DictReader(f))


def test_read_pixel_size_from_resolution(tiff_path) -> None:
    with tifffile.TiffFile(tiff_path) as tif:
        assert read_pixel_size(tif) == pytest.approx(0.5)


def test_to_channels_first() -> None:
    data = np.zeros((3, 2, 10, 12))

    assert to_channels_first(data, "TCYX").shape == (2, 10, 12)
    assert to_channels_first(np.zeros((10, 12, 3)), "YXS").shape == (3, 10, 12)
    assert to_channels_first(np.zeros((10, 12)), "YX").shape == (1, 10, 12)
    assert to_channels_first(np.zeros((4, 10, 12)), "QYX").shape == (4, 10, 12)


def test_tiff_source_reads_metadata(tiff_path) -> None:
    source = TiffCalibrationSource(tiff_path.parent)
    images = list(source)

    assert len(source) == 1
    image = images[0]
    assert image.name == FILE_NAME[:-4]
    assert image.pixel_size == pytest.approx(0.5)
    assert image.channels.shape == (2, 300, 300)
    assert image.pattern == "ArgoSLG482"
    assert image.imaged_fov is FieldOfView.FULL
    assert image.metadata["microscope"] == "lsm980"
    assert "63x" in image.tags


def test_tiff_source_overrides(tiff_path) -> None:
    image = next(iter(TiffCalibrationSource(tiff_path, pixel_size=0.25, pattern="SLG511", imaged_fov="partialFoV")))

    assert image.pixel_size == 0.25
    assert image.pattern == "SLG511"
    assert image.imaged_fov is FieldOfView.PARTIAL


def test_tiff_source_missing_path(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        TiffCalibrationSource(tmp_path / "nothing.tif")
    with pytest.raises(ValueError):
        TiffCalibrationSource(tmp_path)


def test_unreadable_files_do_not_stop_the_batch(tmp_path) -> None:
    image = make_slide_image().astype(np.uint16)
    tifffile.imwrite(tmp_path / "a_no_resolution.tif", image, photometric="minisblack")
    tifffile.imwrite(
        tmp_path / "b_good.tif", image, photometric="minisblack", resolution=(20000, 20000), resolutionunit="CENTIMETER"
    )
    (tmp_path / "c_corrupt.tif").write_bytes(b"not a tiff file")

    source = TiffCalibrationSource(tmp_path, pattern="SGL482")
    processed = list(run(source, CalibrationPipeline()))

    assert len(source) == 3
    assert [image.name for image in processed] == ["b_good"]
    assert processed[0].results[0].n_rings == 80


def test_local_sender_writes_results(tmp_path, two_channel_image) -> None:
    image = CalibrationPipeline().process(two_channel_image)
    sender = LocalSender(tmp_path / "out")

    sender.send(image)

    folder = tmp_path / "out" / image.name
    key_values = {row["key"]: row["value"] for row in read_csv(folder / "key_values.csv")}
    assert key_values["pattern"] == "SGL482"
    assert key_values["ch0_status"] == "ok"

    rings = read_csv(folder / "rings.csv")
    assert len(rings) == 160
    assert rings[0]["fwhm"] == ""

    pcc = read_csv(folder / "pcc.csv")
    assert len(pcc) == 80
    assert float(pcc[0]["pcc"]) == pytest.approx(1.0)

    assert (folder / "heat_maps" / f"{image.name}_ch0_field_distortion.tif").exists()
    assert (folder / "heat_maps" / f"{image.name}_ch1_field_uniformity.png").exists()
    assert tifffile.imread(folder / "heat_maps" / f"{image.name}_ch0_field_uniformity.tif").shape == (256, 256)
    assert (folder / "ch1_overlay.png").exists()

    summary = read_csv(tmp_path / "out" / "summary.csv")
    assert [row["channel"] for row in summary] == ["0", "1"]
    assert summary[0]["acquisition_date"] == "20230405"


def test_summary_appends_rows(tmp_path, two_channel_image) -> None:
    image = CalibrationPipeline().process(two_channel_image)
    sender = LocalSender(tmp_path, save_heat_maps=False, save_overlays=False)

    sender.send(image)
    sender.send(image)

    assert len(read_csv(tmp_path / "summary.csv")) == 4
    assert not (tmp_path / image.name / "heat_maps").exists()


def test_h5_round_trip(tmp_path, two_channel_image) -> None:
    image = CalibrationPipeline().process(two_channel_image)
    path = tmp_path / "results.h5"

    save_results_h5([image], path)
    loaded = load_results_h5(path)[0]

    assert loaded.name == image.name
    assert loaded.imaged_fov is FieldOfView.FULL
    assert loaded.metadata == image.metadata
    assert loaded.key_values["ch0_nRings"] == 80
    np.testing.assert_array_equal(loaded.channels, image.channels)
    for original, restored in zip(image.results, loaded.results):
        assert restored.cross == original.cross
        assert restored.calibration == original.calibration
        np.testing.assert_allclose(restored.rings, original.rings)
        np.testing.assert_array_equal(restored.ring_indices, original.ring_indices)
        np.testing.assert_allclose(restored.field_uniformity, original.field_uniformity)
        assert len(restored.fwhm) == 0
    np.testing.assert_allclose(loaded.pcc.get(0, 1), image.pcc.get(0, 1))


def test_h5_keeps_failed_channels(tmp_path) -> None:
    image = CalibrationImage(identifier="flat", pixel_size=0.5, channels=np.full((100, 100), 5.0), pattern="SGL482")
    CalibrationPipeline().process(image)
    save_results_h5([image], tmp_path / "failed.h5")

    restored = load_results_h5(tmp_path / "failed.h5")[0].results[0]
    assert restored.failed
    assert restored.cross is None
    assert "cross" in restored.error
    assert restored.n_rings == 0


def test_load_missing_h5(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_results_h5(tmp_path / "missing.h5")
