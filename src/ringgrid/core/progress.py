"""Progress signalling for calibration runs."""

from dataclasses import dataclass

from psygnal import Signal


@dataclass
class ProgressEvent:
    """One step of a calibration run.

    Attributes
    ----------
    stage : str
        What is being processed ("image" or "channel").
    name : str
        Image name the event refers to.
    current : int
        1-indexed position within the stage.
    total : int
        Number of items in the stage.
    failed : bool
        Whether the item just processed failed.
    """

    stage: str
    name: str
    current: int
    total: int
    failed: bool = False


class ProgressEmitter:
    """Emits ProgressEvent through a psygnal signal."""

    progress = Signal(ProgressEvent)

    def emit(self, stage: str, name: str, current: int, total: int, failed: bool = False) -> None:
        self.progress.emit(ProgressEvent(stage=stage, name=name, current=current, total=total, failed=failed))
