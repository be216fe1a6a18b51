"""ringgrid - Objective and camera quality control from ring-grid calibration slides."""

__version__ = "0.1.0"

from . import core
from . import io

__all__ = [
    "core",
    "io",
]
