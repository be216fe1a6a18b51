"""
Calibration image sources.

Provides a uniform interface for feeding CalibrationImage objects to the
pipeline, whether they are already in memory or stored as TIFF files.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from pathlib import Path

import numpy as np
import tifffile

from ..core.models import CalibrationImage, FieldOfView
from .naming import name_without_extension, parse_image_name

logger = logging.getLogger(__name__)

TIFF_SUFFIXES = (".tif", ".tiff")

# Micrometres per TIFF ResolutionUnit (2: inch, 3: centimetre)
_RESOLUTION_UNITS = {2: 25400.0, 3: 10000.0}
_MICRON_NAMES = {"micron", "microns", "um", "\u00b5m", "\u03bcm", "\\u00b5m", "micrometer", "micrometre"}


class CalibrationSource(ABC):
    """Abstract base class for calibration image sources."""

    @property
    @abstractmethod
    def n_images(self) -> int:
        """Return the number of images in this source."""
        ...

    @abstractmethod
    def iter_images(self) -> Iterator[CalibrationImage]:
        """Iterate over the images, loading each one on demand."""
        ...

    def __iter__(self) -> Iterator[CalibrationImage]:
        return self.iter_images()

    def __len__(self) -> int:
        return self.n_images


class ArrayCalibrationSource(CalibrationSource):
    """Source over images that are already in memory."""

    def __init__(self, images: Sequence[CalibrationImage]) -> None:
        self._images = list(images)

    @property
    def n_images(self) -> int:
        return len(self._images)

    def iter_images(self) -> Iterator[CalibrationImage]:
        yield from self._images


def read_pixel_size(tif: tifffile.TiffFile) -> float | None:
    """Pixel size in micrometres from the TIFF resolution tags, if any."""
    page = tif.pages[0]
    tag = page.tags.get("XResolution")
    if tag is None:
        return None
    numerator, denominator = tag.value
    if numerator == 0:
        return None
    size = denominator / numerator

    unit_tag = page.tags.get("ResolutionUnit")
    unit = int(unit_tag.value) if unit_tag is not None else 1
    if unit in _RESOLUTION_UNITS:
        return size * _RESOLUTION_UNITS[unit]

    imagej = tif.imagej_metadata or {}
    if str(imagej.get("unit", "")).lower() in _MICRON_NAMES:
        return size
    return None


def to_channels_first(data: np.ndarray, axes: str) -> np.ndarray:
    """Reorder a TIFF series to (C, Y, X), keeping the first plane of other axes.

    Without a channel axis, samples (S) or else the first non-spatial axis are
    taken as channels.
    """
    axes = axes.upper()
    if "C" not in axes:
        extra = [a for a in axes if a not in "YX"]
        if "S" in extra:
            axes = axes.replace("S", "C")
        elif extra:
            axes = axes.replace(extra[0], "C", 1)

    for axis in reversed(range(len(axes))):
        if axes[axis] not in "CYX":
            logger.debug(f"Keeping first plane of axis {axes[axis]}")
            data = np.take(data, 0, axis=axis)
            axes = axes[:axis] + axes[axis + 1 :]
    if "Y" not in axes or "X" not in axes:
        raise ValueError(f"TIFF series with axes '{axes}' has no YX plane")
    if "C" not in axes:
        return data[np.newaxis]
    return np.transpose(data, (axes.index("C"), axes.index("Y"), axes.index("X")))


class TiffCalibrationSource(CalibrationSource):
    """Calibration images stored as TIFF files.

    Parameters
    ----------
    path : str | Path
        A TIFF file, or a folder whose TIFF files are read in name order
    pixel_size : float | None
        Pixel size in micrometres; read from the file resolution when None
    pattern : str | None
        Slide pattern identifier; parsed from the file name when None
    imaged_fov : FieldOfView | None
        Field of view mode; parsed from the file name when None
    """

    def __init__(
        self,
        path: str | Path,
        pixel_size: float | None = None,
        pattern: str | None = None,
        imaged_fov: FieldOfView | str | None = None,
    ) -> None:
        self.path = Path(path).resolve()
        if not self.path.exists():
            raise FileNotFoundError(f"TIFF path not found: {self.path}")

        self.pixel_size = pixel_size
        self.pattern = pattern
        self.imaged_fov = FieldOfView(imaged_fov) if imaged_fov is not None else None

        if self.path.is_dir():
            self._files = sorted(p for p in self.path.iterdir() if p.suffix.lower() in TIFF_SUFFIXES)
        else:
            self._files = [self.path]

        if not self._files:
            raise ValueError(f"No TIFF files found in {self.path}")

        logger.info(f"TiffCalibrationSource: {self.path}, {len(self._files)} image(s)")

    @property
    def n_images(self) -> int:
        return len(self._files)

    def load(self, file_path: Path) -> CalibrationImage:
        """Read one TIFF file into a CalibrationImage."""
        with tifffile.TiffFile(file_path) as tif:
            series = tif.series[0]
            channels = to_channels_first(series.asarray(), series.axes)
            pixel_size = self.pixel_size if self.pixel_size is not None else read_pixel_size(tif)

        if pixel_size is None:
            raise ValueError(f"No pixel size in {file_path.name}, pass it explicitly")

        info = parse_image_name(file_path.name)
        image = CalibrationImage(
            identifier=str(file_path),
            name=name_without_extension(file_path.name),
            pixel_size=float(pixel_size),
            channels=channels,
            pattern=self.pattern or ((info.slide or info.pattern) if info else file_path.stem),
            imaged_fov=self.imaged_fov or (info.imaged_fov if info else FieldOfView.FULL),
        )
        if info is not None:
            image.metadata.update(info.metadata())
            for tag in info.tags():
                image.add_tag(tag)

        logger.debug(f"Loaded {file_path.name}: {image.n_channels} channel(s), {image.width}x{image.height}")
        return image

    def iter_images(self) -> Iterator[CalibrationImage]:
        """Yield the images in name order, skipping files that cannot be read."""
        for file_path in self._files:
            try:
                image = self.load(file_path)
            except (ValueError, OSError) as e:
                logger.error(f"Skipping {file_path.name}: {e}")
                continue
            yield image
