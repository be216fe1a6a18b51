"""Image sources, result senders and file formats around the calibration core."""

from .h5_io import load_results_h5, save_results_h5
from .naming import ImageNameInfo, parse_image_name
from .sender import LocalSender, Sender
from .source import ArrayCalibrationSource, CalibrationSource, TiffCalibrationSource

__all__ = [
    # Sources
    "CalibrationSource",
    "ArrayCalibrationSource",
    "TiffCalibrationSource",
    # Name parsing
    "ImageNameInfo",
    "parse_image_name",
    # Senders
    "Sender",
    "LocalSender",
    # HDF5
    "save_results_h5",
    "load_results_h5",
]
