import json
import logging
import os

import pytest

from colorquant.quantize.colorspace import ColorSpace
from colorquant.quantize.errors import ConfigurationError, QuantizeError
from colorquant.quantize.kernels import ACCUMULATOR_HEADROOM, compute_sum_scale
from colorquant.quantize.palette_engine import quantize_pixels
from colorquant.utils.appconfig import (
    InitMethod,
    QuantizeConfig,
    default_config_path,
    load_config,
    save_config,
)


def test_defaults():
    config = QuantizeConfig()
    assert config.cluster_count == 8
    assert config.color_space is ColorSpace.OKLAB
    assert config.preserve_alpha is True
    assert config.max_iterations == 16
    assert config.init_method is InitMethod.random


def test_validate_resolves_scale_and_clamps():
    settings = QuantizeConfig(cluster_count=8, area_similarity_threshold=5.0).validate(3)
    assert settings.cluster_count == 3
    assert settings.fixed_point_scale == compute_sum_scale(3)
    assert settings.area_similarity_threshold == 1.0

    settings = QuantizeConfig(area_similarity_threshold=0.0).validate(100)
    assert settings.area_similarity_threshold == pytest.approx(0.0001)


def test_validate_coerces_enum_names():
    settings = QuantizeConfig(color_space="hsv", init_method="area").validate(10)
    assert settings.color_space is ColorSpace.HSV
    assert settings.init_method is InitMethod.area
    assert QuantizeConfig(color_space=2).validate(10).color_space is ColorSpace.OKLCH


def test_validate_does_not_modify_original():
    config = QuantizeConfig(cluster_count=8)
    config.validate(2)
    assert config.cluster_count == 8
    assert config.fixed_point_scale is None


@pytest.mark.parametrize("overrides", [
    {"cluster_count": 0},
    {"cluster_count": 65},
    {"cluster_count": True},
    {"cluster_count": "many"},
    {"max_iterations": 0},
    {"max_iterations": 129},
    {"fixed_point_scale": 0},
    {"fixed_point_scale": 10 ** 9},
    {"color_space": "cmyk"},
    {"init_method": "kmeans++"},
    {"selected_colors": [(0.1, 0.2, 0.3)] * 9},
    {"selected_colors": [(0.1, 0.2)]},
])
def test_validate_rejects(overrides):
    with pytest.raises(ConfigurationError):
        QuantizeConfig(**overrides).validate(100)


def test_validate_rejects_bad_pixel_counts():
    with pytest.raises(ConfigurationError):
        QuantizeConfig().validate(0)
    with pytest.raises(ConfigurationError):
        QuantizeConfig().validate(ACCUMULATOR_HEADROOM + 1)


def test_configuration_error_is_value_error():
    with pytest.raises(ValueError):
        QuantizeConfig(cluster_count=-1).validate(10)
    assert issubclass(ConfigurationError, QuantizeError)


def test_save_and_load_round_trip(tmp_path):
    config = QuantizeConfig(
        cluster_count=12,
        color_space=ColorSpace.YIQ,
        preserve_alpha=False,
        max_iterations=40,
        seed=99,
        init_method=InitMethod.selected_colors,
        selected_colors=[(1.0, 0.5, 0.0)],
    )
    path = save_config(config, str(tmp_path / "cfg" / "config.json"))
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    assert data["quantize"]["color_space"] == "YIQ"
    assert data["quantize"]["init_method"] == "selected_colors"
    assert load_config(path) == config


def test_default_path_lives_under_app_root(app_home):
    assert default_config_path() == os.path.join(str(app_home), "config", "config.json")
    save_config(QuantizeConfig(cluster_count=3))
    assert load_config().cluster_count == 3


def test_missing_file_gives_defaults(tmp_path):
    assert load_config(str(tmp_path / "nope.json")) == QuantizeConfig()


def test_corrupt_file_gives_defaults(tmp_path, caplog):
    path = tmp_path / "config.json"
    path.write_text("{not json", encoding="utf-8")
    with caplog.at_level(logging.WARNING, logger="colorquant"):
        assert load_config(str(path)) == QuantizeConfig()
    assert "Could not load config file" in caplog.text


def test_unknown_keys_are_ignored(tmp_path, caplog):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"quantize": {"cluster_count": 5, "dither": True}}), encoding="utf-8")
    with caplog.at_level(logging.WARNING, logger="colorquant"):
        config = load_config(str(path))
    assert config.cluster_count == 5
    assert "dither" in caplog.text


@pytest.mark.parametrize("content", ["[]", "3", '"text"', '{"quantize": []}', '{"quantize": null}'])
def test_non_object_config_gives_defaults(tmp_path, caplog, content):
    path = tmp_path / "config.json"
    path.write_text(content, encoding="utf-8")
    with caplog.at_level(logging.WARNING, logger="colorquant"):
        assert load_config(str(path)) == QuantizeConfig()
    assert "using defaults" in caplog.text


@pytest.mark.parametrize("section", [
    {"selected_colors": 5},
    {"selected_colors": [1, 2]},
    {"color_space": "CMYK"},
    {"init_method": "nearest"},
])
def test_wrong_typed_settings_raise_configuration_error(tmp_path, section):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"quantize": section}), encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_config(str(path))


def test_list_config_file_falls_back_for_quantize(app_home, random_pixels):
    config_dir = app_home / "config"
    config_dir.mkdir(exist_ok=True)
    (config_dir / "config.json").write_text("[]", encoding="utf-8")
    assert load_config() == QuantizeConfig()
    result = quantize_pixels(random_pixels)
    assert result.config.cluster_count == QuantizeConfig().cluster_count
