"""
Calibration pipeline driver.

Processes every channel of a CalibrationImage in sequence:
cross -> rings -> step/rotation -> ideal grid -> correspondence -> metrics,
then correlates the channels with each other.
"""

import logging
from collections.abc import Iterable, Iterator
from itertools import combinations
from typing import Protocol

import numpy as np

from .errors import CalibrationError, ChannelCountMismatchError, EmptyGridDetectionError
from .metrics import channel_correlation, compute_statistics, field_distortion, field_uniformity, fwhm
from .models import METRIC_NAMES, CalibrationImage, ChannelResult, FieldOfView, PCCResult
from .pattern.calibrator import calibrate_grid, ideal_grid, lattice_assignment, reduced_grid, sort_from_reference
from .pattern.config import PatternConfig, ProcessingOverrides, get_pattern
from .pattern.cross import find_central_cross
from .pattern.grid import find_grid_points
from .primitives import DetectionScratch
from .progress import ProgressEmitter

logger = logging.getLogger(__name__)


class ResultSink(Protocol):
    def send(self, image: CalibrationImage) -> None: ...


class CalibrationPipeline:
    """Run the calibration on images of one or several slide patterns.

    Parameters
    ----------
    pattern : PatternConfig | None
        Pattern used for every image. When None, the pattern is looked up
        from each image's pattern identifier (or name) in ``presets``
    presets : dict[str, PatternConfig] | None
        Presets for the lookup, defaults to the built-in ones
    overrides : ProcessingOverrides | None
        Settings applied on top of the pattern
    """

    def __init__(
        self,
        pattern: PatternConfig | None = None,
        presets: dict[str, PatternConfig] | None = None,
        overrides: ProcessingOverrides | None = None,
    ) -> None:
        self.pattern = pattern
        self.presets = presets
        self.overrides = overrides
        self.emitter = ProgressEmitter()

    @property
    def progress(self):
        """Signal emitting a ProgressEvent after every channel and image."""
        return self.emitter.progress

    def resolve_pattern(self, image: CalibrationImage) -> PatternConfig:
        """Pattern preset used for ``image``, overrides applied."""
        if self.pattern is not None:
            pattern = self.pattern
        else:
            pattern = get_pattern(image.pattern or image.name, self.presets)
        if self.overrides is not None:
            pattern = self.overrides.apply(pattern)
        return pattern

    def process(self, image: CalibrationImage) -> CalibrationImage:
        """Compute all channel results of ``image`` in place and return it."""
        pattern = self.resolve_pattern(image)
        logger.info(
            f"Processing {image.name}: {image.n_channels} channel(s), pattern {pattern.name}, "
            f"{image.imaged_fov.value}, pixel size {image.pixel_size} um"
        )
        self._add_image_key_values(image, pattern)

        for c in range(image.n_channels):
            result = self.process_channel(image, c, pattern)
            image.add_result(result)
            self._add_channel_key_values(image, result)
            self.emitter.emit("channel", image.name, c + 1, image.n_channels, failed=result.failed)

        if image.n_channels > 1 and image.imaged_fov is FieldOfView.FULL:
            image.pcc = self.correlate_channels(image, pattern)

        image.stamp()
        failed = image.failed_channels
        if failed:
            logger.warning(f"{image.name}: channel(s) {failed} failed")
        else:
            logger.info(f"{image.name}: all channels processed")
        return image

    def process_channel(self, image: CalibrationImage, channel: int, pattern: PatternConfig) -> ChannelResult:
        """Process a single channel; calibration failures mark the result failed."""
        buffer = np.asarray(image.channel(channel), dtype=float)
        pixel_size = image.pixel_size
        result = ChannelResult(channel=channel, width=image.width, height=image.height)
        scratch = DetectionScratch(channel=channel)

        try:
            cross = find_central_cross(buffer, pixel_size, pattern, scratch)
            result.cross = cross
            points = find_grid_points(buffer, cross, pixel_size, pattern, scratch)

            image_center = ((image.width - 1) / 2.0, (image.height - 1) / 2.0)
            calibration = calibrate_grid(
                points, cross.center, image_center, pixel_size, pattern, 2 * scratch.rings_per_side + 1
            )
            result.calibration = calibration
            result.rotation_angle = calibration.rotation_angle

            steps = (calibration.step_x, calibration.step_y, calibration.rotation_angle)
            if image.imaged_fov is FieldOfView.PARTIAL:
                # every ring of the reduced grid is measured, missing rings only leave empty cells
                half_window = pattern.reduced_grid_factor * pattern.spacing / pixel_size
                reference = reduced_grid(points, cross.center, half_window)
                rings, matched_ideal, matched_indices, side = lattice_assignment(reference, cross.center, *steps)
            else:
                reference = points
                ideal, indices, side = ideal_grid(cross.center, *steps, len(reference))
                rings, matched_ideal, matched_indices = sort_from_reference(
                    reference, ideal, indices, pattern.match_radius / pixel_size
                )
            if len(rings) == 0:
                raise EmptyGridDetectionError(f"None of the {len(reference)} rings matches the ideal grid")
            result.set_correspondence(rings, matched_ideal, matched_indices)
            result.grid_size = side

            if image.imaged_fov is FieldOfView.PARTIAL:
                result.add_metric(
                    "fwhm",
                    fwhm(buffer, rings, pattern.fwhm_half_length / pixel_size, pixel_size, pattern.fwhm_angles),
                )
            else:
                result.add_metric("field_distortion", field_distortion(rings, matched_ideal, pixel_size))
                result.add_metric(
                    "field_uniformity", field_uniformity(buffer, rings, int(pattern.ring_radius / pixel_size))
                )
        except CalibrationError as e:
            logger.error(f"{image.name} channel {channel}: {type(e).__name__}: {e}")
            result.mark_failed(e)
            return result

        logger.info(
            f"{image.name} channel {channel}: {result.n_rings} rings, step "
            f"({calibration.step_x:.2f}, {calibration.step_y:.2f}) px, "
            f"rotation {np.degrees(calibration.rotation_angle):.3f} deg"
        )
        return result

    def correlate_channels(self, image: CalibrationImage, pattern: PatternConfig) -> PCCResult:
        """Per-ring Pearson correlation for every channel pair."""
        pcc = PCCResult()
        results = {r.channel: r for r in image.results}
        radius_px = pattern.ring_radius / image.pixel_size

        for i, j in combinations(range(image.n_channels), 2):
            first, second = results.get(i), results.get(j)
            if first is None or second is None or first.failed or second.failed:
                logger.warning(f"{image.name}: skipping correlation of channels {i} and {j}, a channel failed")
                pcc.add(i, j, np.empty(0))
                continue
            try:
                values = channel_correlation(
                    image.channel(i), image.channel(j), first.rings, second.rings, radius_px
                )
            except ChannelCountMismatchError as e:
                logger.warning(f"{image.name}: skipping correlation of channels {i} and {j}: {e}")
                values = np.empty(0)
            pcc.add(i, j, values)

            stats = compute_statistics(values)
            image.add_key_value(f"ch{i}_ch{j}_pcc_mean", stats.mean)
            image.add_key_value(f"ch{i}_ch{j}_pcc_std", stats.std)

        return pcc

    def _add_image_key_values(self, image: CalibrationImage, pattern: PatternConfig) -> None:
        image.add_key_value("pattern", pattern.name)
        image.add_key_value("pixel_size_(um)", image.pixel_size)
        image.add_key_value("spacing_(um)", pattern.spacing)
        image.add_key_value("fov_(um)", pattern.fov)
        image.add_key_value("ring_radius_(um)", pattern.ring_radius)
        image.add_key_value("sigma_(um)", pattern.sigma)
        image.add_key_value("median_radius_(um)", pattern.median_radius)
        image.add_key_value("cross_threshold_method", pattern.cross_threshold_method)
        image.add_key_value("ring_threshold_method", pattern.ring_threshold_method)
        image.add_key_value("particle_threshold", pattern.particle_threshold)
        image.add_key_value("imaged_fov", image.imaged_fov.value)
        image.add_key_value("n_channels", image.n_channels)

    def _add_channel_key_values(self, image: CalibrationImage, result: ChannelResult) -> None:
        prefix = f"ch{result.channel}"
        values = {f"{prefix}_status": "failed" if result.failed else "ok"}
        if result.calibration is not None:
            values[f"{prefix}_xStepAvg_(pix)"] = result.calibration.step_x
            values[f"{prefix}_yStepAvg_(pix)"] = result.calibration.step_y
            values[f"{prefix}_rotationAngle_(deg)"] = float(np.degrees(result.calibration.rotation_angle))
            values[f"{prefix}_maxPointsPerLine"] = result.calibration.max_points_per_line
        if result.cross is not None:
            cx, cy = result.cross.center
            values[f"{prefix}_crossX_(pix)"] = cx
            values[f"{prefix}_crossY_(pix)"] = cy
        values[f"{prefix}_nRings"] = result.n_rings
        for name in METRIC_NAMES:
            stats = result.statistics(name)
            if stats.count:
                values[f"{prefix}_{name}_mean"] = stats.mean
                values[f"{prefix}_{name}_std"] = stats.std
        if result.error:
            values[f"{prefix}_error"] = result.error

        for key, value in values.items():
            result.add_key_value(key, value)
            image.add_key_value(key, value)


def run(
    images: Iterable[CalibrationImage],
    pipeline: CalibrationPipeline,
    senders: Iterable[ResultSink] = (),
) -> Iterator[CalibrationImage]:
    """Process images one after the other and hand each one to the senders.

    Images whose pattern cannot be resolved are logged and skipped.
    """
    senders = list(senders)
    total = len(images) if hasattr(images, "__len__") else 0
    for n, image in enumerate(images, start=1):
        try:
            pipeline.process(image)
        except CalibrationError as e:
            logger.error(f"Skipping {image.name}: {e}")
            pipeline.emitter.emit("image", image.name, n, total, failed=True)
            continue
        for sender in senders:
            sender.send(image)
        pipeline.emitter.emit("image", image.name, n, total, failed=bool(image.failed_channels))
        yield image
