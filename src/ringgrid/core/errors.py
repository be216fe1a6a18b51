"""
Exceptions raised by the calibration pipeline.

Every channel-level failure derives from CalibrationError so the pipeline
driver can mark the channel as failed and move on to the next one.
"""


class CalibrationError(Exception):
    """Base class for all calibration failures."""


class CrossNotFoundError(CalibrationError):
    """No cross candidate was found inside the central window."""


class EmptyGridDetectionError(CalibrationError):
    """Ring detection or line binning produced no usable points."""


class DegenerateCornersError(CalibrationError):
    """Fewer than four points, or no top-left/top-right corner available."""


class CurveFitFailureError(CalibrationError):
    """Gaussian fit of an intensity profile did not converge."""


class ChannelCountMismatchError(CalibrationError):
    """Two channels matched a different number of rings."""


class UnknownPatternError(CalibrationError, KeyError):
    """No pattern preset matches the given identifier."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""
