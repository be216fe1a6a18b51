import numpy as np
import tifffile
from typer.testing import CliRunner

from conftest import make_slide_image
from ringgrid.cli.main import app

runner = CliRunner()


def write_slide(folder, name="lsm980_ArgoSLG482_b_d20230405_o63x_oil_fullFoV_1.tif"):
    image = make_slide_image().astype(np.uint16)
    path = folder / name
    tifffile.imwrite(path, np.stack([image, image]), photometric="minisblack", metadata={"axes": "CYX"})
    return path


def test_patterns_lists_presets() -> None:
    result = runner.invoke(app, ["patterns"])

    assert result.exit_code == 0
    assert "SGL482" in result.output
    assert "SLG511" in result.output


def test_process_writes_results(tmp_path) -> None:
    path = write_slide(tmp_path)
    output = tmp_path / "out"

    result = runner.invoke(
        app,
        ["process", "-i", str(path), "-o", str(output), "--pixel-size", "0.5", "--h5", str(tmp_path / "r.h5")],
    )

    assert result.exit_code == 0, result.output
    assert "Processed 1/1 image(s), 0 failed channel(s)" in result.output
    assert (output / "summary.csv").exists()
    assert (output / path.stem / "rings.csv").exists()
    assert (tmp_path / "r.h5").exists()

    shown = runner.invoke(app, ["show", "-i", str(tmp_path / "r.h5")])
    assert shown.exit_code == 0
    assert "rings=80" in shown.output


def test_process_rejects_unknown_pattern(tmp_path) -> None:
    path = write_slide(tmp_path)

    result = runner.invoke(app, ["process", "-i", str(path), "-o", str(tmp_path / "out"), "-p", "NOPE"])

    assert result.exit_code == 1


def test_process_missing_input(tmp_path) -> None:
    result = runner.invoke(app, ["process", "-i", str(tmp_path / "missing.tif")])
    assert result.exit_code == 1


def test_process_without_pixel_size_fails(tmp_path) -> None:
    path = write_slide(tmp_path)

    result = runner.invoke(app, ["process", "-i", str(path), "-o", str(tmp_path / "out")])

    assert result.exit_code == 1
    assert "Processed 0/1 image(s)" in result.output
