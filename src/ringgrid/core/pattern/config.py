"""
Calibration slide presets.

A slide pattern is fully described by a PatternConfig value; the pipeline is
parameterized by it instead of specialised per slide. Presets are looked up by
identifier (the slide name usually appears in the acquisition file name) and
can be extended or overridden from a YAML file.
"""

import logging
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field

from ..errors import UnknownPatternError

logger = logging.getLogger(__name__)

ThresholdMethod = Literal["otsu", "li", "yen", "isodata", "mean", "minimum", "triangle"]


class PatternConfig(BaseModel):
    """Geometry and detection constants of one calibration slide pattern.

    Lengths are in micrometres unless stated otherwise.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Pattern identifier, e.g. SGL482")
    aliases: tuple[str, ...] = Field((), description="Other names the slide is known by")
    spacing: float = Field(..., gt=0, description="Distance between two rings")
    fov: float = Field(..., gt=0, description="Nominal side length of the ring field")
    points_per_line: int = Field(..., gt=0, description="Number of rings per line on the full pattern")
    cross_threshold_method: ThresholdMethod = Field("otsu", description="Threshold used to segment the cross")
    ring_threshold_method: ThresholdMethod = Field("li", description="Threshold used to segment the rings")
    sigma: float = Field(0.2, ge=0, description="Gaussian blur sigma applied before ring detection")
    median_radius: float = Field(0.2, ge=0, description="Median filter radius applied before ring detection")
    dog_high_sigma: float = Field(2.0, gt=0, description="Upper sigma of the difference-of-Gaussians band")
    particle_threshold: float = Field(5.0, ge=0, description="Minimum ring size, divided by the pixel size")
    ring_radius: float = Field(1.25, gt=0, description="Radius of the disk used for ring intensity")
    preprocessing: Literal["median_gaussian", "median", "dog"] = Field("median_gaussian")
    detection: Literal["components", "maxima"] = Field("components")
    match_radius_factor: float = Field(4.0, gt=0, description="Matching disk radius, in ring radii")
    max_radius: float | None = Field(None, description="Keep rings within this distance of the cross")
    reduced_grid_factor: float = Field(2.5, gt=0, description="Reduced grid half window, in spacings")
    step_tolerance_factor: float = Field(0.6, gt=0, description="Line binning tolerance, in spacings")
    cross_min_size: float = Field(2.5, ge=0, description="Minimum cross size, divided by the pixel size")
    fov_margin: float = Field(4.0, ge=0, description="Margin added to the nominal field before switching to partial sizing")
    edge_margin: float = Field(2.0, ge=0, description="Distance kept from the image border in partial sizing")
    full_padding: float = Field(1.5, ge=0, description="Search window padding for the full pattern")
    partial_padding: float = Field(2.5, ge=0, description="Search window padding for a partial field")
    fwhm_half_length: float = Field(2.0, gt=0, description="Half length of the FWHM intensity profile")
    fwhm_angles: int = Field(1, ge=1, description="Number of profile directions in [0, pi)")

    @property
    def match_radius(self) -> float:
        """Radius of the ring disks used for correspondence and correlation."""
        return self.match_radius_factor * self.ring_radius

    def with_overrides(self, **updates) -> "PatternConfig":
        """Return a validated copy with the non-None ``updates`` applied."""
        updates = {k: v for k, v in updates.items() if v is not None}
        if not updates:
            return self
        return PatternConfig.model_validate({**self.model_dump(), **updates})


class ProcessingOverrides(BaseModel):
    """User settings applied on top of a pattern preset for one run."""

    sigma: float | None = Field(None, ge=0)
    median_radius: float | None = Field(None, ge=0)
    ring_threshold_method: ThresholdMethod | None = None
    cross_threshold_method: ThresholdMethod | None = None
    particle_threshold: float | None = Field(None, ge=0)
    ring_radius: float | None = Field(None, gt=0)
    fwhm_angles: int | None = Field(None, ge=1)

    def apply(self, pattern: PatternConfig) -> PatternConfig:
        return pattern.with_overrides(**self.model_dump())


SGL482 = PatternConfig(
    name="SGL482",
    aliases=("SLG482",),
    spacing=15.0,
    fov=570.0,
    points_per_line=39,
    cross_threshold_method="otsu",
    ring_threshold_method="li",
    sigma=0.2,
    median_radius=0.2,
    preprocessing="median_gaussian",
    detection="components",
    match_radius_factor=4.0,
    fwhm_half_length=6.0,
    fwhm_angles=30,
)

SLG511 = PatternConfig(
    name="SLG511",
    aliases=("SGL511",),
    spacing=5.0,
    fov=100.0,
    points_per_line=21,
    cross_threshold_method="otsu",
    ring_threshold_method="li",
    sigma=0.0,
    median_radius=0.495,
    preprocessing="median",
    detection="components",
    match_radius_factor=1.2,
    max_radius=10.5 * 5.0 * 1.414,
    fwhm_half_length=2.0,
    fwhm_angles=30,
)

PATTERNS: dict[str, PatternConfig] = {p.name: p for p in (SGL482, SLG511)}


def get_pattern(identifier: str, presets: dict[str, PatternConfig] | None = None) -> PatternConfig:
    """Look up the preset whose name appears in ``identifier``.

    Parameters
    ----------
    identifier : str
        Pattern name, or any string containing it (e.g. a file name)
    presets : dict[str, PatternConfig] | None
        Presets to search, defaults to the built-in ones

    Returns
    -------
    PatternConfig
        The matching preset; an exact name match wins over a substring match

    Raises
    ------
    UnknownPatternError
        If no preset matches
    """
    presets = PATTERNS if presets is None else presets
    key = identifier.strip().upper()
    labels = [(label.upper(), pattern) for name, pattern in presets.items() for label in (name, *pattern.aliases)]
    for label, pattern in labels:
        if label == key:
            return pattern
    # longest label first so that e.g. "SLG511B" is preferred over "SLG511"
    for label, pattern in sorted(labels, key=lambda item: len(item[0]), reverse=True):
        if label in key:
            return pattern
    raise UnknownPatternError(f"No pattern preset matches '{identifier}' (known: {', '.join(presets)})")


def load_patterns_yaml(path: str | Path, base: dict[str, PatternConfig] | None = None) -> dict[str, PatternConfig]:
    """Load pattern presets from a YAML file.

    The file holds a ``patterns`` mapping of name to fields. An entry whose
    name matches an existing preset (or that names one under ``extends``)
    only needs the fields it changes.

    ```yaml
    patterns:
      SGL482:
        sigma: 0.3
      SGL482-40x:
        extends: SGL482
        fwhm_angles: 8
    ```
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Pattern file not found: {path}")

    with open(path) as handle:
        content = yaml.safe_load(handle) or {}

    entries = content.get("patterns", content) if isinstance(content, dict) else content
    if not isinstance(entries, dict):
        raise ValueError(f"Expected a 'patterns' mapping in {path}")

    presets = dict(PATTERNS if base is None else base)
    for name, fields in entries.items():
        fields = dict(fields or {})
        parent_name = fields.pop("extends", name)
        parent = presets.get(parent_name)
        if parent is None and parent_name != name:
            raise UnknownPatternError(f"Pattern '{name}' extends unknown pattern '{parent_name}'")
        data = parent.model_dump() if parent is not None else {}
        if parent_name != name:
            data.pop("aliases", None)
        data.update(fields)
        data["name"] = name
        presets[name] = PatternConfig.model_validate(data)
        logger.debug(f"Loaded pattern preset {name} from {path}")

    logger.info(f"Loaded {len(entries)} pattern presets from {path}")
    return presets
