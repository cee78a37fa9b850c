"""Unit tests for the engine config module.

Covers: defaults, YAML overrides, CLI overrides, override precedence,
string coercion, validation, frozen mutation guard, and serialization
roundtrip.
"""

from __future__ import annotations

import dataclasses
from pathlib import Path

import pytest
import yaml

from trackest.engine.config import (
    TrackEstimatorConfig,
    load_config,
    serialize_config,
)
from trackest.reconstruction.bundle_adjustment import BundleAdjustmentOptions
from trackest.reconstruction.triangulation import TriangulationMethod


def _write_yaml(tmp_path: Path, content: dict) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump(content))
    return path


# ---------------------------------------------------------------------------
# 1. Default values
# ---------------------------------------------------------------------------


def test_load_config_defaults() -> None:
    """load_config() with no args produces expected field defaults."""
    config = load_config()

    assert config.num_threads == 1
    assert config.max_acceptable_reprojection_error_pixels == 5.0
    assert config.min_triangulation_angle_degrees == 3.0
    assert config.bundle_adjustment is True
    assert config.multithreaded_step_size == 100
    assert config.triangulation_method is TriangulationMethod.MIDPOINT
    assert config.ba_options == BundleAdjustmentOptions()


# ---------------------------------------------------------------------------
# 2. YAML override
# ---------------------------------------------------------------------------


def test_load_config_yaml_override(tmp_path: Path) -> None:
    """YAML overrides apply; non-overridden fields retain defaults."""
    path = _write_yaml(
        tmp_path,
        {
            "num_threads": 4,
            "triangulation_method": "svd",
            "ba_options": {"loss_function": "cauchy"},
        },
    )
    config = load_config(yaml_path=path)

    assert config.num_threads == 4
    assert config.triangulation_method is TriangulationMethod.SVD
    assert config.ba_options.loss_function == "cauchy"
    assert config.ba_options.max_num_iterations == 50
    assert config.min_triangulation_angle_degrees == 3.0


def test_load_config_empty_yaml(tmp_path: Path) -> None:
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert load_config(yaml_path=path) == TrackEstimatorConfig()


# ---------------------------------------------------------------------------
# 3. CLI overrides
# ---------------------------------------------------------------------------


def test_load_config_cli_dotted_strings_are_coerced() -> None:
    """String values from --set flags are converted to the field type."""
    config = load_config(
        cli_overrides={
            "num_threads": "8",
            "max_acceptable_reprojection_error_pixels": "2.5",
            "bundle_adjustment": "false",
            "ba_options.max_num_iterations": "20",
            "ba_options.verbose": "yes",
        }
    )
    assert config.num_threads == 8
    assert config.max_acceptable_reprojection_error_pixels == 2.5
    assert config.bundle_adjustment is False
    assert config.ba_options.max_num_iterations == 20
    assert config.ba_options.verbose is True


def test_load_config_cli_nested_dict() -> None:
    config = load_config(cli_overrides={"ba_options": {"robust_loss_width": 2.0}})
    assert config.ba_options.robust_loss_width == 2.0


def test_cli_overrides_take_precedence_over_yaml(tmp_path: Path) -> None:
    path = _write_yaml(tmp_path, {"num_threads": 4, "multithreaded_step_size": 10})
    config = load_config(yaml_path=path, cli_overrides={"num_threads": "2"})
    assert config.num_threads == 2
    assert config.multithreaded_step_size == 10


# ---------------------------------------------------------------------------
# 4. Validation
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "overrides, match",
    [
        ({"num_threads": 0}, "num_threads"),
        ({"multithreaded_step_size": 0}, "multithreaded_step_size"),
        ({"min_triangulation_angle_degrees": -1.0}, "min_triangulation_angle"),
        ({"max_acceptable_reprojection_error_pixels": -1.0}, "max_acceptable"),
        ({"triangulation_method": "dlt"}, "Unknown triangulation_method"),
        ({"ba_options.loss_function": "tukey"}, "Unknown loss_function"),
        ({"bundle_adjustment": "maybe"}, "boolean"),
        ({"no_such_field": 1}, "Unknown config key"),
        ({"ba_options.no_such_field": 1}, "Unknown config key"),
    ],
)
def test_invalid_values_raise(overrides: dict, match: str) -> None:
    with pytest.raises(ValueError, match=match):
        load_config(cli_overrides=overrides)


def test_method_string_is_case_insensitive() -> None:
    config = TrackEstimatorConfig(triangulation_method="L2_MINIMIZATION")
    assert config.triangulation_method is TriangulationMethod.L2_MINIMIZATION


def test_config_is_frozen() -> None:
    config = TrackEstimatorConfig()
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.num_threads = 4  # type: ignore[misc]


# ---------------------------------------------------------------------------
# 5. Serialization
# ---------------------------------------------------------------------------


def test_serialize_config_is_plain_yaml() -> None:
    text = serialize_config(TrackEstimatorConfig())
    data = yaml.safe_load(text)
    assert data["triangulation_method"] == "midpoint"
    assert data["ba_options"]["loss_function"] == "huber"


def test_serialize_config_roundtrip(tmp_path: Path) -> None:
    original = TrackEstimatorConfig(
        num_threads=3,
        triangulation_method=TriangulationMethod.SVD,
        ba_options=BundleAdjustmentOptions(loss_function="soft_l1"),
    )
    path = tmp_path / "roundtrip.yaml"
    path.write_text(serialize_config(original))
    assert load_config(yaml_path=path) == original
