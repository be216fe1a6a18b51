"""
HDF5 export and import of processed calibration images.

Layout::

    /images/<index>           attrs: identifier, name, pixel_size, pattern, imaged_fov, tags
        channels              (C, H, W) buffers
        metadata, key_values  attrs only
        results/ch<c>         attrs: channel, width, height, grid_size, rotation_angle, failed, error
            cross             attrs: x, y, width, height
            calibration       attrs: step_x, step_y, rotation_angle, max_points_per_line
            rings, ideal_rings, ring_indices, field_distortion, field_uniformity, fwhm
        pcc/<i>_<j>           per-ring coefficients
"""

import json
import logging
from pathlib import Path
from typing import Any

import h5py
import numpy as np

from ..core.models import (
    METRIC_NAMES,
    BoundingBox,
    CalibrationImage,
    ChannelResult,
    GridCalibration,
    PCCResult,
)

logger = logging.getLogger(__name__)


def _attr_value(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (str, int, float, bool, np.integer, np.floating, np.bool_)):
        return value
    return json.dumps(value)


def _read_attr(value: Any) -> Any:
    if isinstance(value, bytes):
        return value.decode()
    if isinstance(value, np.generic):
        return value.item()
    return value


def _create_dataset(group: h5py.Group, name: str, data: np.ndarray, compression: str | None) -> None:
    data = np.asarray(data)
    # empty datasets cannot be chunked, so they are stored uncompressed
    group.create_dataset(name, data=data, compression=compression if data.size else None)


class ResultSerializer:
    """Serialization of calibration models to and from HDF5 groups."""

    @staticmethod
    def save_bounding_box(bbox: BoundingBox, group: h5py.Group) -> None:
        for key in ("x", "y", "width", "height"):
            group.attrs[key] = getattr(bbox, key)

    @staticmethod
    def load_bounding_box(group: h5py.Group) -> BoundingBox:
        return BoundingBox(*(int(group.attrs[key]) for key in ("x", "y", "width", "height")))

    @staticmethod
    def save_channel_result(result: ChannelResult, group: h5py.Group, compression: str | None = "gzip") -> None:
        group.attrs["channel"] = result.channel
        group.attrs["width"] = result.width
        group.attrs["height"] = result.height
        group.attrs["grid_size"] = result.grid_size
        group.attrs["rotation_angle"] = result.rotation_angle
        group.attrs["failed"] = result.failed
        group.attrs["error"] = result.error or ""

        if result.cross is not None:
            ResultSerializer.save_bounding_box(result.cross, group.create_group("cross"))
        if result.calibration is not None:
            calibration = group.create_group("calibration")
            calibration.attrs["step_x"] = result.calibration.step_x
            calibration.attrs["step_y"] = result.calibration.step_y
            calibration.attrs["rotation_angle"] = result.calibration.rotation_angle
            calibration.attrs["max_points_per_line"] = result.calibration.max_points_per_line

        _create_dataset(group, "rings", result.rings, compression)
        _create_dataset(group, "ideal_rings", result.ideal_rings, compression)
        _create_dataset(group, "ring_indices", result.ring_indices.astype(np.int32), compression)
        for name in METRIC_NAMES:
            _create_dataset(group, name, getattr(result, name), compression)

        key_values = group.create_group("key_values")
        for key, value in result.key_values.items():
            key_values.attrs[key] = _attr_value(value)

    @staticmethod
    def load_channel_result(group: h5py.Group) -> ChannelResult:
        result = ChannelResult(
            channel=int(group.attrs["channel"]),
            width=int(group.attrs["width"]),
            height=int(group.attrs["height"]),
            grid_size=int(group.attrs["grid_size"]),
            rotation_angle=float(group.attrs["rotation_angle"]),
            failed=bool(group.attrs["failed"]),
            error=_read_attr(group.attrs["error"]) or None,
        )
        if "cross" in group:
            result.cross = ResultSerializer.load_bounding_box(group["cross"])
        if "calibration" in group:
            attrs = group["calibration"].attrs
            result.calibration = GridCalibration(
                step_x=float(attrs["step_x"]),
                step_y=float(attrs["step_y"]),
                rotation_angle=float(attrs["rotation_angle"]),
                max_points_per_line=int(attrs["max_points_per_line"]),
            )
        result.set_correspondence(group["rings"][()], group["ideal_rings"][()], group["ring_indices"][()])
        for name in METRIC_NAMES:
            values = group[name][()]
            if len(values):
                result.add_metric(name, values)
        result.key_values = {k: _read_attr(v) for k, v in group["key_values"].attrs.items()}
        return result

    @staticmethod
    def save_image(image: CalibrationImage, group: h5py.Group, compression: str | None = "gzip") -> None:
        group.attrs["identifier"] = image.identifier
        group.attrs["name"] = image.name
        group.attrs["pixel_size"] = image.pixel_size
        group.attrs["pattern"] = image.pattern
        group.attrs["imaged_fov"] = image.imaged_fov.value
        group.attrs["tags"] = json.dumps(image.tags)

        _create_dataset(group, "channels", image.channels, compression)

        metadata = group.create_group("metadata")
        for key, value in image.metadata.items():
            metadata.attrs[key] = _attr_value(value)
        key_values = group.create_group("key_values")
        for key, value in image.key_values.items():
            key_values.attrs[key] = _attr_value(value)

        results = group.create_group("results")
        for result in image.results:
            ResultSerializer.save_channel_result(result, results.create_group(f"ch{result.channel}"), compression)

        if image.pcc is not None:
            pcc = group.create_group("pcc")
            for channel_i, channel_j, values in image.pcc.pairs:
                pcc.create_dataset(f"{channel_i}_{channel_j}", data=values)

    @staticmethod
    def load_image(group: h5py.Group) -> CalibrationImage:
        image = CalibrationImage(
            identifier=_read_attr(group.attrs["identifier"]),
            name=_read_attr(group.attrs["name"]),
            pixel_size=float(group.attrs["pixel_size"]),
            channels=group["channels"][()],
            pattern=_read_attr(group.attrs["pattern"]),
            imaged_fov=_read_attr(group.attrs["imaged_fov"]),
            tags=json.loads(_read_attr(group.attrs["tags"])),
        )
        image.metadata = {k: _read_attr(v) for k, v in group["metadata"].attrs.items()}
        image.key_values = {k: _read_attr(v) for k, v in group["key_values"].attrs.items()}

        results = group["results"]
        for key in sorted(results, key=lambda k: int(k[2:])):
            image.add_result(ResultSerializer.load_channel_result(results[key]))

        if "pcc" in group:
            image.pcc = PCCResult()
            pairs = sorted(tuple(int(c) for c in key.split("_")) for key in group["pcc"])
            for channel_i, channel_j in pairs:
                image.pcc.add(channel_i, channel_j, group["pcc"][f"{channel_i}_{channel_j}"][()])
        return image


def save_results_h5(images: list[CalibrationImage], output_path: str | Path, compression: str | None = "gzip") -> None:
    """Save processed calibration images to one HDF5 file.

    Parameters
    ----------
    images : list[CalibrationImage]
        Processed images
    output_path : str | Path
        Output HDF5 file path
    compression : str | None
        Dataset compression: 'gzip', 'lzf' or None
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with h5py.File(output_path, "w") as h5f:
        h5f.attrs["n_images"] = len(images)
        root = h5f.create_group("images")
        for index, image in enumerate(images):
            ResultSerializer.save_image(image, root.create_group(str(index)), compression)

    logger.info(f"Saved {len(images)} image result(s) to {output_path}")


def load_results_h5(input_path: str | Path) -> list[CalibrationImage]:
    """Load calibration images saved by :func:`save_results_h5`."""
    input_path = Path(input_path)
    if not input_path.exists():
        raise FileNotFoundError(f"HDF5 file not found: {input_path}")

    with h5py.File(input_path, "r") as h5f:
        root = h5f["images"]
        images = [ResultSerializer.load_image(root[key]) for key in sorted(root, key=int)]

    logger.info(f"Loaded {len(images)} image result(s) from {input_path}")
    return images
