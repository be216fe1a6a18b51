"""
Acquisition metadata encoded in image names.

Supported conventions, tried in order:

- single file: ``Microscope_Slide_pattern_dDate_oObjective_immersion_FoV_serie.ext``
  (e.g. ``lsm980_ArgoSLG482_b_d20230405_o63x_oil_fullFoV_1.czi``)
- fileset series: ``Microscope_Slide_pattern_dDate_oObjective_immersion.ext [FoV_serie]``
  or ``... .ext - FoV_serie``
- legacy: ``Microscope_oObjective_immersion_pattern_dDate[_serie].ext``
"""

import logging
import re
from dataclasses import dataclass

from ..core.models import FieldOfView

logger = logging.getLogger(__name__)

_HEAD = (
    r"(?P<microscope>.*)_(?P<slide>.*)_(?P<pattern>.*)_d(?P<date>\d*)"
    r"_o(?P<objective>.*?)_(?P<immersion>.*?)"
)

NAME_CONVENTIONS: list[tuple[str, re.Pattern, re.Pattern]] = [
    (
        "single",
        re.compile(r".*\.[a-zA-Z]*"),
        re.compile(_HEAD + r"_(?P<fov>.*)_(?P<serie>.*)\.(?P<extension>.*)"),
    ),
    (
        "fileset",
        re.compile(r".*\..*\[.*\]"),
        re.compile(_HEAD + r"\.(?P<extension>\w*).*\[(?P<fov>.*)_(?P<serie>.*)\]"),
    ),
    (
        "fileset",
        re.compile(r".*\..*-.*"),
        re.compile(_HEAD + r"\.(?P<extension>\w*).*- (?P<fov>.*)_(?P<serie>.*)"),
    ),
    (
        "legacy",
        re.compile(r".*"),
        re.compile(
            r"(?P<microscope>.*)_o(?P<objective>.*)_(?P<immersion>.*)_(?P<pattern>.*)"
            r"_d(?P<date>\d*)_?(?P<serie>.*)?\.(?P<extension>.*)"
        ),
    ),
]


@dataclass
class ImageNameInfo:
    """Fields parsed from an acquisition name."""

    microscope: str
    objective: str
    immersion: str
    pattern: str
    date: str
    slide: str = ""
    fov: str = ""
    serie: str = ""
    extension: str = ""
    convention: str = ""

    @property
    def imaged_fov(self) -> FieldOfView:
        """``fullFoV`` selects the full field branch, any other FoV token the partial one."""
        if not self.fov or self.fov == FieldOfView.FULL.value:
            return FieldOfView.FULL
        return FieldOfView.PARTIAL

    def metadata(self) -> dict[str, str]:
        return {
            "microscope": self.microscope,
            "slide": self.slide,
            "slide_pattern": self.pattern,
            "acquisition_date": self.date,
            "objective": self.objective,
            "immersion": self.immersion,
            "imaged_fov": self.fov,
            "serie": self.serie,
        }

    def tags(self) -> list[str]:
        candidates = [self.fov, self.objective, self.slide, self.microscope.lower(), self.immersion, self.pattern]
        tags = []
        for tag in candidates:
            if tag and tag not in tags:
                tags.append(tag)
        return tags


def name_without_extension(name: str) -> str:
    """Strip the extension, including ``.lif``/``.vsi`` container suffixes inside fileset names."""
    for container in (".lif", ".vsi"):
        if container in name:
            return name.replace(container, "")
    stem, dot, _ = name.rpartition(".")
    return stem if dot and stem else name


def parse_image_name(name: str) -> ImageNameInfo | None:
    """Parse acquisition metadata from an image name.

    Parameters
    ----------
    name : str
        Image name with its extension (and series suffix for filesets)

    Returns
    -------
    ImageNameInfo | None
        Parsed fields, or None when the name follows no known convention
    """
    for convention, selector, pattern in NAME_CONVENTIONS:
        if not selector.fullmatch(name):
            continue
        match = pattern.match(name)
        if match is None:
            continue
        fields = {k: v or "" for k, v in match.groupdict().items()}
        return ImageNameInfo(convention=convention, **fields)

    logger.error(
        f"Image name '{name}' is not formatted as "
        "Microscope_Slide_pattern_dDate_oObjective_immersion_FoV_serie.ext "
        "(e.g. lsm980_ArgoSLG482_b_d20230405_o63x_oil_fullFoV_1.czi)"
    )
    return None
