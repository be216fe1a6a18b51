"""
Result senders: write processed calibration images somewhere.
"""

import csv
import logging
from abc import ABC, abstractmethod
from pathlib import Path

import cv2
import numpy as np
import tifffile

from ..core.heatmap import HeatMap, channel_heat_maps
from ..core.models import METRIC_NAMES, CalibrationImage, ChannelResult

logger = logging.getLogger(__name__)

RING_COLUMNS = ["channel", "ring", "lattice_index", "x", "y", "ideal_x", "ideal_y", *METRIC_NAMES]


class Sender(ABC):
    """Abstract result sink.

    ``send`` writes everything produced for one image; subclasses implement
    one method per kind of result.
    """

    def send(self, image: CalibrationImage) -> None:
        self.send_key_values(image)
        self.send_rings(image)
        if image.pcc is not None:
            self.send_pcc(image)
        self.send_heat_maps(image, [hm for r in image.results for hm in channel_heat_maps(r, image.name)])
        self.send_summary(image)

    @abstractmethod
    def send_key_values(self, image: CalibrationImage) -> None: ...

    @abstractmethod
    def send_rings(self, image: CalibrationImage) -> None: ...

    @abstractmethod
    def send_pcc(self, image: CalibrationImage) -> None: ...

    @abstractmethod
    def send_heat_maps(self, image: CalibrationImage, heat_maps: list[HeatMap]) -> None: ...

    @abstractmethod
    def send_summary(self, image: CalibrationImage) -> None: ...


def normalize_pct(image: np.ndarray, low: float = 1, high: float = 99.5) -> np.ndarray:
    """Percentile stretch to uint8 for display."""
    if image.size == 0:
        raise ValueError("Image must not be empty")
    pct_low, pct_high = np.percentile(image, [low, high])
    if pct_high <= pct_low:
        return np.zeros(image.shape, dtype=np.uint8)
    clipped = np.clip(image.astype(np.float32), pct_low, pct_high)
    normalized = cv2.normalize(clipped, None, 0, 255, cv2.NORM_MINMAX)
    return normalized.astype(np.uint8)


def draw_overlay(image: np.ndarray, result: ChannelResult, radius_px: float) -> np.ndarray:
    """BGR overlay of the cross box, detected rings (green) and ideal rings (red)."""
    overlay = cv2.cvtColor(normalize_pct(image), cv2.COLOR_GRAY2BGR)
    if result.cross is not None:
        box = result.cross
        cv2.rectangle(overlay, (box.x, box.y), (box.x + box.width - 1, box.y + box.height - 1), (255, 255, 0), 1)
    radius = max(int(round(radius_px)), 2)
    for x, y in result.rings:
        cv2.circle(overlay, (int(round(x)), int(round(y))), radius, (0, 255, 0), 1)
    for x, y in result.ideal_rings:
        cv2.drawMarker(overlay, (int(round(x)), int(round(y))), (0, 0, 255), cv2.MARKER_CROSS, radius, 1)
    return overlay


class LocalSender(Sender):
    """Write results as CSV, TIFF and PNG files under a local folder.

    Each image gets its own sub-folder; ``summary.csv`` at the top level gets
    one row per channel of every image sent.

    Parameters
    ----------
    output_dir : str | Path
        Root folder for the results
    save_heat_maps : bool
        Write heat maps as float TIFF and coloured PNG
    save_overlays : bool
        Write a PNG per channel with the detected and ideal rings
    overlay_radius_px : float
        Circle radius of the overlays
    """

    def __init__(
        self,
        output_dir: str | Path,
        save_heat_maps: bool = True,
        save_overlays: bool = True,
        overlay_radius_px: float = 5.0,
    ) -> None:
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.save_heat_maps = save_heat_maps
        self.save_overlays = save_overlays
        self.overlay_radius_px = overlay_radius_px
        self.summary_path = self.output_dir / "summary.csv"

    def image_dir(self, image: CalibrationImage) -> Path:
        path = self.output_dir / image.name
        path.mkdir(parents=True, exist_ok=True)
        return path

    def send(self, image: CalibrationImage) -> None:
        super().send(image)
        if self.save_overlays:
            self.send_overlays(image)
        logger.info(f"Saved results of {image.name} to {self.image_dir(image)}")

    def send_key_values(self, image: CalibrationImage) -> None:
        output_path = self.image_dir(image) / "key_values.csv"
        rows = [("image", image.name), ("identifier", image.identifier)]
        rows += [(k, v) for k, v in image.metadata.items()]
        rows += [(k, v) for k, v in image.key_values.items()]
        if image.tags:
            rows.append(("tags", ";".join(image.tags)))

        with open(output_path, "w", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(["key", "value"])
            writer.writerows(rows)

    def send_rings(self, image: CalibrationImage) -> None:
        output_path = self.image_dir(image) / "rings.csv"
        with open(output_path, "w", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(RING_COLUMNS)
            for result in image.results:
                metrics = [getattr(result, name) for name in METRIC_NAMES]
                for i in range(result.n_rings):
                    x, y = result.rings[i]
                    ideal_x, ideal_y = result.ideal_rings[i]
                    values = [m[i] if len(m) else "" for m in metrics]
                    writer.writerow([result.channel, i, int(result.ring_indices[i]), x, y, ideal_x, ideal_y, *values])

        logger.debug(f"Saved ring table to {output_path}")

    def send_pcc(self, image: CalibrationImage) -> None:
        output_path = self.image_dir(image) / "pcc.csv"
        with open(output_path, "w", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(["channel_i", "channel_j", "ring", "pcc"])
            for channel_i, channel_j, values in image.pcc.pairs:
                for ring, value in enumerate(values):
                    writer.writerow([channel_i, channel_j, ring, value])

    def send_heat_maps(self, image: CalibrationImage, heat_maps: list[HeatMap]) -> None:
        if not self.save_heat_maps:
            return
        folder = self.image_dir(image) / "heat_maps"
        folder.mkdir(parents=True, exist_ok=True)
        for heat_map in heat_maps:
            tifffile.imwrite(folder / f"{heat_map.title}.tif", heat_map.data.astype(np.float32))
            cv2.imwrite(str(folder / f"{heat_map.title}.png"), cv2.cvtColor(heat_map.to_rgb(), cv2.COLOR_RGB2BGR))
        logger.debug(f"Saved {len(heat_maps)} heat maps to {folder}")

    def send_overlays(self, image: CalibrationImage) -> None:
        folder = self.image_dir(image)
        for result in image.results:
            overlay = draw_overlay(image.channel(result.channel), result, self.overlay_radius_px)
            cv2.imwrite(str(folder / f"ch{result.channel}_overlay.png"), overlay)

    def send_summary(self, image: CalibrationImage) -> None:
        rows = image.summary_rows()
        if not rows:
            return
        write_header = not self.summary_path.exists()
        with open(self.summary_path, "a", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=list(rows[0]), extrasaction="ignore")
            if write_header:
                writer.writeheader()
            writer.writerows(rows)
