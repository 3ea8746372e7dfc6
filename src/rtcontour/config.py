"""Settings for contour extraction and round trip verification."""

from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from rtcontour.contours.types import SmoothingLevel
from rtcontour.paths import CONFIG_DIR

DEFAULT_CONFIG_FILE = CONFIG_DIR / "contour_config.yaml"


@dataclass
class ContourSettings:
    """Tunable parameters of the conversion.

    A slice fails verification only when the absolute AND the relative
    difference are both above their threshold. ``None`` disables a threshold.
    """

    smoothing: SmoothingLevel = SmoothingLevel.SMALL
    max_absolute_difference: Optional[int] = 10
    max_relative_difference: Optional[float] = 0.15
    max_workers: Optional[int] = None
    filter_empty_slices: bool = True
    large_smoothing_strength: float = 0.5
    large_smoothing_iterations: int = 5
    show_progress: bool = False

    def __post_init__(self):
        self.smoothing = SmoothingLevel.parse(self.smoothing)
        if self.max_absolute_difference is not None and self.max_absolute_difference < 0:
            raise ValueError(f"max_absolute_difference must be >= 0, got {self.max_absolute_difference}")
        if self.max_relative_difference is not None and self.max_relative_difference < 0:
            raise ValueError(f"max_relative_difference must be >= 0, got {self.max_relative_difference}")
        if self.max_workers is not None and self.max_workers < 1:
            raise ValueError(f"max_workers must be a positive integer, got {self.max_workers}")
        if not 0 <= self.large_smoothing_strength <= 1:
            raise ValueError(f"large_smoothing_strength must be between 0 and 1, got {self.large_smoothing_strength}")
        if self.large_smoothing_iterations < 0:
            raise ValueError(f"large_smoothing_iterations must be >= 0, got {self.large_smoothing_iterations}")

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> "ContourSettings":
        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ValueError(f"Unknown contour settings: {sorted(unknown)}")
        return cls(**values)

    @classmethod
    def from_yaml(cls, configuration: Union[str, Path] = DEFAULT_CONFIG_FILE) -> "ContourSettings":
        """Load settings from a YAML file; a missing file gives the defaults.

        :param Union[str, Path] configuration: YAML file, defaults to CONFIG_DIR/"contour_config.yaml"
        :raises ValueError: If the file is not a YAML mapping or holds invalid values.
        :return ContourSettings: The settings.
        """
        configuration = Path(configuration)
        if not configuration.is_file():
            return cls()
        if configuration.suffix not in (".yml", ".yaml"):
            raise ValueError(f"Invalid input .yaml file: {configuration}")

        with open(configuration, "r") as file:
            values = yaml.safe_load(file) or {}

        if not isinstance(values, dict):
            raise ValueError(f"Expected a mapping in {configuration}, got {type(values).__name__}")
        return cls.from_dict(values.get("contours", values))

    def to_dict(self) -> Dict[str, Any]:
        values = asdict(self)
        values["smoothing"] = self.smoothing.value
        return values
