"""Command line interface for ringgrid."""

import logging
from pathlib import Path

import typer

app = typer.Typer(help="ringgrid: objective quality control from ring-grid calibration slides")


@app.command()
def process(
    input: str = typer.Option(..., "--input", "-i", help="TIFF file or folder of TIFF files"),
    output: str = typer.Option("./ringgrid_results", "--output", "-o", help="Output folder"),
    pattern: str | None = typer.Option(None, "--pattern", "-p", help="Slide pattern (default: from file names)"),
    pixel_size: float | None = typer.Option(None, "--pixel-size", help="Pixel size in um (default: from TIFF tags)"),
    imaged_fov: str | None = typer.Option(None, "--fov", help="fullFoV or partialFoV (default: from file names)"),
    config: str | None = typer.Option(None, "--config", "-c", help="YAML file with pattern presets"),
    sigma: float | None = typer.Option(None, "--sigma", help="Gaussian blur sigma in um"),
    median_radius: float | None = typer.Option(None, "--median-radius", help="Median filter radius in um"),
    threshold: str | None = typer.Option(None, "--threshold", help="Ring threshold method"),
    particle_threshold: float | None = typer.Option(None, "--particle-threshold", help="Minimum ring size"),
    ring_radius: float | None = typer.Option(None, "--ring-radius", help="Ring radius in um"),
    fwhm_angles: int | None = typer.Option(None, "--fwhm-angles", help="Number of FWHM profile directions"),
    heat_maps: bool = typer.Option(True, "--heat-maps/--no-heat-maps", help="Save heat maps"),
    overlays: bool = typer.Option(True, "--overlays/--no-overlays", help="Save ring overlays"),
    h5: str | None = typer.Option(None, "--h5", help="Also save all results to this HDF5 file"),
    debug: bool = typer.Option(False, "--debug"),
):
    """Process calibration slide images and save metrics, tables and heat maps."""
    log_level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(level=log_level, format="%(levelname)s - %(name)s - %(message)s")

    from pydantic import ValidationError

    from ..core import CalibrationPipeline, ProcessingOverrides, get_pattern, load_patterns_yaml, run
    from ..core.errors import UnknownPatternError
    from ..io import LocalSender, TiffCalibrationSource, save_results_h5

    if not Path(input).exists():
        typer.echo(f"Error: Input does not exist: {input}", err=True)
        raise typer.Exit(1)

    try:
        presets = load_patterns_yaml(config) if config else None
        overrides = ProcessingOverrides(
            sigma=sigma,
            median_radius=median_radius,
            ring_threshold_method=threshold,
            particle_threshold=particle_threshold,
            ring_radius=ring_radius,
            fwhm_angles=fwhm_angles,
        )
        preset = get_pattern(pattern, presets) if pattern else None
        source = TiffCalibrationSource(input, pixel_size=pixel_size, imaged_fov=imaged_fov)
    except (UnknownPatternError, ValidationError, ValueError, FileNotFoundError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e

    pipeline = CalibrationPipeline(pattern=preset, presets=presets, overrides=overrides)
    pipeline.progress.connect(
        lambda event: logging.getLogger(__name__).debug(
            f"{event.stage} {event.current}/{event.total} ({event.name}){' failed' if event.failed else ''}"
        )
    )
    sender = LocalSender(output, save_heat_maps=heat_maps, save_overlays=overlays)

    processed = list(run(source, pipeline, [sender]))
    n_failed = sum(1 for image in processed for r in image.results if r.failed)
    typer.echo(f"Processed {len(processed)}/{source.n_images} image(s), {n_failed} failed channel(s)")
    if not processed:
        typer.echo("Error: No image could be processed", err=True)
        raise typer.Exit(1)
    typer.echo(f"Results saved to: {output}")

    if h5:
        save_results_h5(processed, h5)
        typer.echo(f"HDF5 saved to: {h5}")


@app.command()
def patterns(
    config: str | None = typer.Option(None, "--config", "-c", help="YAML file with pattern presets"),
):
    """List the available slide pattern presets."""
    from ..core import PATTERNS, load_patterns_yaml

    presets = load_patterns_yaml(config) if config else PATTERNS
    for name, preset in presets.items():
        aliases = f" (aka {', '.join(preset.aliases)})" if preset.aliases else ""
        typer.echo(
            f"{name}{aliases}: spacing {preset.spacing} um, field {preset.fov} um, "
            f"{preset.points_per_line} rings per line, {preset.preprocessing} + {preset.ring_threshold_method}"
        )


@app.command()
def show(
    input: str = typer.Option(..., "--input", "-i", help="HDF5 file written by 'process --h5'"),
):
    """Print the per-channel summary stored in an HDF5 results file."""
    from ..io import load_results_h5

    if not Path(input).exists():
        typer.echo(f"Error: Input file does not exist: {input}", err=True)
        raise typer.Exit(1)

    for image in load_results_h5(input):
        for row in image.summary_rows():
            typer.echo(
                f"{row['image']} ch{row['channel']} [{row['status']}] rings={row['n_rings']} "
                f"rotation={row['rotation_deg']:.3f} deg "
                f"distortion={row['field_distortion_mean']:.4g} fwhm={row['fwhm_mean']:.4g}"
            )


def main():
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
