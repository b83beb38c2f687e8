import json
import os
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import List, Optional, Tuple

from colorquant.quantize.colorspace import ColorSpace
from colorquant.quantize.errors import ConfigurationError
from colorquant.quantize.kernels import ACCUMULATOR_HEADROOM, compute_sum_scale
from colorquant.utils.filesystem_utils import get_app_root
from colorquant.utils.logging_utils import logger

MAX_CLUSTERS = 64
MAX_ITERATIONS = 128
MAX_SELECTED_COLORS = 8
MIN_AREA_THRESHOLD = 0.0001


class InitMethod(Enum):
    random = "random"
    area = "area"
    selected_colors = "selected_colors"
    kmeans_parallel = "kmeans_parallel"


def default_config_path():
    return os.path.join(get_app_root(), 'config', 'config.json')


@dataclass
class QuantizeConfig:
    cluster_count: int = 8
    color_space: ColorSpace = ColorSpace.OKLAB
    preserve_alpha: bool = True
    max_iterations: int = 16
    # None picks the largest scale that cannot overflow for the image size
    fixed_point_scale: Optional[int] = None
    seed: int = 0
    init_method: InitMethod = InitMethod.random
    area_similarity_threshold: float = 0.04
    selected_colors: List[Tuple[float, float, float]] = field(default_factory=list)

    def validate(self, pixel_count: int) -> "QuantizeConfig":
        """Return a resolved copy for an image of ``pixel_count`` pixels.

        Raises ConfigurationError for anything the engine cannot run with.
        ``cluster_count`` above the pixel count is clamped, not rejected.
        """
        if pixel_count <= 0:
            raise ConfigurationError("Image has no pixels")
        if pixel_count > ACCUMULATOR_HEADROOM:
            raise ConfigurationError(
                f"Image has {pixel_count} pixels; the accumulator supports at most {ACCUMULATOR_HEADROOM}")

        cluster_count = _as_int(self.cluster_count, "cluster_count")
        if cluster_count < 1 or cluster_count > MAX_CLUSTERS:
            raise ConfigurationError(f"cluster_count must be in [1, {MAX_CLUSTERS}], got {cluster_count}")

        max_iterations = _as_int(self.max_iterations, "max_iterations")
        if max_iterations < 1 or max_iterations > MAX_ITERATIONS:
            raise ConfigurationError(f"max_iterations must be in [1, {MAX_ITERATIONS}], got {max_iterations}")

        if self.fixed_point_scale is None:
            scale = compute_sum_scale(pixel_count)
        else:
            scale = _as_int(self.fixed_point_scale, "fixed_point_scale")
            if scale < 1:
                raise ConfigurationError(f"fixed_point_scale must be positive, got {scale}")
            if pixel_count * scale > ACCUMULATOR_HEADROOM:
                raise ConfigurationError(
                    f"fixed_point_scale {scale} overflows the accumulator for {pixel_count} pixels "
                    f"(max {compute_sum_scale(pixel_count)})")

        if len(self.selected_colors) > MAX_SELECTED_COLORS:
            raise ConfigurationError(f"At most {MAX_SELECTED_COLORS} selected colors are supported")
        selected = []
        for color in self.selected_colors:
            if len(color) != 3:
                raise ConfigurationError(f"Selected color must have 3 channels: {color!r}")
            selected.append(tuple(float(c) for c in color))

        threshold = float(self.area_similarity_threshold)
        threshold = min(1.0, max(MIN_AREA_THRESHOLD, threshold))

        return replace(
            self,
            cluster_count=min(cluster_count, pixel_count),
            color_space=_coerce_enum(ColorSpace, self.color_space, "color_space"),
            preserve_alpha=bool(self.preserve_alpha),
            max_iterations=max_iterations,
            fixed_point_scale=scale,
            seed=_as_int(self.seed, "seed"),
            init_method=_coerce_enum(InitMethod, self.init_method, "init_method"),
            area_similarity_threshold=threshold,
            selected_colors=selected,
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data['color_space'] = ColorSpace(self.color_space).name
        data['init_method'] = InitMethod(self.init_method).value
        data['selected_colors'] = [list(c) for c in self.selected_colors]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "QuantizeConfig":
        known = {f for f in cls.__dataclass_fields__}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {sorted(unknown)}")
        values = {k: v for k, v in data.items() if k in known}
        if 'color_space' in values:
            values['color_space'] = _coerce_enum(ColorSpace, values['color_space'], "color_space")
        if 'init_method' in values:
            values['init_method'] = _coerce_enum(InitMethod, values['init_method'], "init_method")
        if 'selected_colors' in values:
            try:
                values['selected_colors'] = [tuple(c) for c in values['selected_colors']]
            except TypeError as e:
                raise ConfigurationError(
                    f"selected_colors must be a list of RGB triples, got {values['selected_colors']!r}") from e
        return cls(**values)


def _as_int(value, name):
    if isinstance(value, bool):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from e


def _coerce_enum(enum_cls, value, name):
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        if value in enum_cls.__members__:
            return enum_cls[value]
        upper = value.upper()
        if upper in enum_cls.__members__:
            return enum_cls[upper]
    try:
        return enum_cls(value)
    except ValueError as e:
        raise ConfigurationError(f"Unknown {name}: {value!r}") from e


def load_config(path: Optional[str] = None) -> QuantizeConfig:
    """Load saved defaults, falling back to built-in defaults when the file is missing or unreadable.

    A readable file with invalid values raises ConfigurationError.
    """
    path = path or default_config_path()
    if not os.path.exists(path):
        return QuantizeConfig()
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Could not load config file {path}: {e}")
        return QuantizeConfig()
    section = data.get("quantize", {}) if isinstance(data, dict) else None
    if not isinstance(section, dict):
        logger.warning(f"Config file {path} has no 'quantize' object, using defaults")
        return QuantizeConfig()
    try:
        config = QuantizeConfig.from_dict(section)
    except ConfigurationError as e:
        logger.error(f"Invalid settings in config file {path}: {e}")
        raise
    logger.debug(f"Loaded configuration from {path}")
    return config


def save_config(config: QuantizeConfig, path: Optional[str] = None) -> str:
    path = path or default_config_path()
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump({"quantize": config.to_dict()}, f, indent=2, ensure_ascii=False)
    return path
