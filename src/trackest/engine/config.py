"""Frozen dataclass config for the track estimator.

Loading precedence: defaults -> YAML file -> CLI overrides -> freeze.

The frozen guarantee prevents accidental mutation while a batch is being
estimated on several threads.
"""

from __future__ import annotations

import dataclasses
import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from trackest.reconstruction.bundle_adjustment import BundleAdjustmentOptions
from trackest.reconstruction.triangulation import TriangulationMethod

_TRUE_STRINGS = frozenset({"1", "true", "yes", "on"})
_FALSE_STRINGS = frozenset({"0", "false", "no", "off"})


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TrackEstimatorConfig:
    """Top-level frozen config for track estimation.

    Attributes:
        num_threads: Number of worker threads. 1 runs fully sequentially.
        max_acceptable_reprojection_error_pixels: Maximum reprojection error
            of any observation for a triangulated track to be accepted.
        min_triangulation_angle_degrees: Minimum ray angle that at least one
            pair of observing views must reach.
        bundle_adjustment: Refine each accepted track immediately after it is
            triangulated.
        ba_options: Solver settings for the per-track refinement.
        multithreaded_step_size: Number of tracks handed to a worker at once.
            Affects throughput only, never results.
        triangulation_method: Triangulation strategy. Strings such as
            ``"svd"`` are converted to :class:`TriangulationMethod`.
    """

    num_threads: int = 1
    max_acceptable_reprojection_error_pixels: float = 5.0
    min_triangulation_angle_degrees: float = 3.0
    bundle_adjustment: bool = True
    ba_options: BundleAdjustmentOptions = field(
        default_factory=BundleAdjustmentOptions
    )
    multithreaded_step_size: int = 100
    triangulation_method: TriangulationMethod = TriangulationMethod.MIDPOINT

    def __post_init__(self) -> None:
        # Frozen dataclasses forbid normal assignment in __post_init__.
        if not isinstance(self.triangulation_method, TriangulationMethod):
            try:
                method = TriangulationMethod(str(self.triangulation_method).lower())
            except ValueError:
                valid = [m.value for m in TriangulationMethod]
                raise ValueError(
                    f"Unknown triangulation_method {self.triangulation_method!r}; "
                    f"expected one of {valid}"
                ) from None
            object.__setattr__(self, "triangulation_method", method)
        if isinstance(self.ba_options, dict):
            object.__setattr__(
                self, "ba_options", BundleAdjustmentOptions(**self.ba_options)
            )

        if self.num_threads < 1:
            raise ValueError(f"num_threads must be >= 1, got {self.num_threads}")
        if self.multithreaded_step_size < 1:
            raise ValueError(
                "multithreaded_step_size must be >= 1, "
                f"got {self.multithreaded_step_size}"
            )
        if self.max_acceptable_reprojection_error_pixels < 0:
            raise ValueError("max_acceptable_reprojection_error_pixels must be >= 0")
        if self.min_triangulation_angle_degrees < 0:
            raise ValueError("min_triangulation_angle_degrees must be >= 0")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _apply_nested_overrides(
    flat: dict[str, Any], nested: dict[str, Any]
) -> dict[str, Any]:
    """Apply nested dict overrides onto a flat key->value mapping.

    CLI overrides may arrive as dot-notation keys ("ba_options.verbose") or
    as nested dicts ({"ba_options": {"verbose": True}}). This function
    flattens nested dicts to dot-notation before merging.

    Args:
        flat: Existing flat override dict (dot-notation keys).
        nested: Override source; may be nested or already flat.

    Returns:
        New flat dict combining both sources, nested taking precedence.
    """
    result = dict(flat)
    for key, value in nested.items():
        if isinstance(value, dict):
            for subkey, subvalue in value.items():
                result[f"{key}.{subkey}"] = subvalue
        else:
            result[key] = value
    return result


def _coerce(value: Any, default: Any, key: str) -> Any:
    """Convert a string override to the type of the field *default*.

    Non-string values (e.g. already typed YAML scalars) pass through.
    """
    if not isinstance(value, str):
        return value
    if isinstance(default, bool):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
        raise ValueError(f"Cannot interpret {value!r} as a boolean for {key}")
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return value


def _split_overrides(
    flat: dict[str, Any],
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Split flat dot-notation overrides into top-level and ba_options kwargs.

    Raises:
        ValueError: If a key does not name a config field.
    """
    top_defaults = TrackEstimatorConfig()
    ba_defaults = BundleAdjustmentOptions()
    top_fields = {f.name for f in dataclasses.fields(TrackEstimatorConfig)}
    ba_fields = {f.name for f in dataclasses.fields(BundleAdjustmentOptions)}

    top_kwargs: dict[str, Any] = {}
    ba_kwargs: dict[str, Any] = {}
    for key, value in flat.items():
        section, _, field_name = key.rpartition(".")
        if section == "ba_options" and field_name in ba_fields:
            default = getattr(ba_defaults, field_name)
            ba_kwargs[field_name] = _coerce(value, default, key)
        elif not section and field_name in top_fields - {"ba_options"}:
            default = getattr(top_defaults, field_name)
            top_kwargs[field_name] = _coerce(value, default, key)
        else:
            raise ValueError(f"Unknown config key {key!r}")
    return top_kwargs, ba_kwargs


# ---------------------------------------------------------------------------
# Public factory
# ---------------------------------------------------------------------------


def load_config(
    yaml_path: str | Path | None = None,
    *,
    cli_overrides: dict[str, Any] | None = None,
) -> TrackEstimatorConfig:
    """Construct a frozen :class:`TrackEstimatorConfig` using layered overrides.

    Loading precedence (lowest → highest priority):

    1. Dataclass field defaults
    2. YAML file (*yaml_path*)
    3. CLI overrides (*cli_overrides*)
    4. Freeze

    CLI overrides may use dot-notation keys ("ba_options.loss_function") or
    nested dicts ({"ba_options": {"loss_function": "cauchy"}}). String
    values are converted to the type of the field they override.

    Args:
        yaml_path: Optional path to a YAML config file.
        cli_overrides: Optional dict of CLI overrides (highest precedence).

    Returns:
        Frozen :class:`TrackEstimatorConfig` with all overrides applied.

    Raises:
        ValueError: If a key is unknown or a value is invalid.
    """
    flat: dict[str, Any] = {}

    if yaml_path is not None:
        with Path(yaml_path).open() as fh:
            raw: dict[str, Any] = yaml.safe_load(fh) or {}
        flat = _apply_nested_overrides(flat, raw)

    if cli_overrides is not None:
        flat = _apply_nested_overrides(flat, cli_overrides)

    top_kwargs, ba_kwargs = _split_overrides(flat)
    return TrackEstimatorConfig(
        ba_options=BundleAdjustmentOptions(**ba_kwargs),
        **top_kwargs,
    )


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def _plain_value(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    return value


def serialize_config(config: TrackEstimatorConfig) -> str:
    """Serialize *config* to a YAML string loadable by :func:`load_config`.

    Args:
        config: Frozen config to serialize.

    Returns:
        YAML string representation of the config.
    """
    as_dict = dataclasses.asdict(
        config, dict_factory=lambda items: {k: _plain_value(v) for k, v in items}
    )
    return yaml.dump(as_dict, default_flow_style=False, sort_keys=True)
