"""trackest CLI -- thin wrapper over TrackEstimator on synthetic scenes."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

import click
import numpy as np

from trackest.engine import (
    TrackEstimator,
    TrackEstimatorConfig,
    load_config,
    serialize_config,
)
from trackest.reconstruction.triangulation import to_euclidean
from trackest.synthetic import SceneConfig, build_synthetic_scene


def _parse_overrides(overrides: tuple[str, ...]) -> dict[str, Any]:
    """Parse ``key=val`` pairs from repeated ``--set`` flags."""
    cli_overrides: dict[str, Any] = {}
    for item in overrides:
        key, _, value = item.partition("=")
        if not key:
            continue
        cli_overrides[key] = value
    return cli_overrides


@click.group()
def cli() -> None:
    """trackest -- multi-view track triangulation with quality gates."""


@cli.command()
@click.option(
    "--config",
    "-c",
    default=None,
    type=click.Path(exists=True),
    help="Path to track estimator config YAML.",
)
@click.option(
    "--set",
    "overrides",
    multiple=True,
    help="Config override as key=val (e.g. --set num_threads=4).",
)
@click.option("--cameras", default=8, show_default=True, help="Cameras in the rig.")
@click.option("--tracks", default=500, show_default=True, help="Tracks to generate.")
@click.option(
    "--noise", default=0.5, show_default=True, help="Pixel noise std deviation."
)
@click.option(
    "--outliers",
    default=0.05,
    show_default=True,
    help="Fraction of tracks with one gross outlier observation.",
)
@click.option("--seed", default=42, show_default=True, help="Random seed.")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Verbose output.")
def run(
    config: str | None,
    overrides: tuple[str, ...],
    cameras: int,
    tracks: int,
    noise: float,
    outliers: float,
    seed: int,
    verbose: bool,
) -> None:
    """Estimate all tracks of a synthetic scene and report the summary."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        estimator_config = load_config(
            yaml_path=config, cli_overrides=_parse_overrides(overrides)
        )
        scene = build_synthetic_scene(
            SceneConfig(
                n_cameras=cameras,
                n_tracks=tracks,
                pixel_noise=noise,
                outlier_fraction=outliers,
                seed=seed,
            )
        )
        estimator = TrackEstimator(estimator_config, scene.reconstruction)
        summary = estimator.estimate_all_tracks()
    except Exception as exc:
        sys.stderr.write(f"Error: {exc}\n")
        sys.exit(1)

    errors = [
        float(
            np.linalg.norm(
                to_euclidean(scene.reconstruction.track(tid).point)
                - scene.ground_truth[tid]
            )
        )
        for tid in sorted(summary.estimated_tracks)
    ]
    click.echo(summary.format())
    if errors:
        click.echo(
            f"Position error vs ground truth: mean {np.mean(errors):.4f}, "
            f"max {np.max(errors):.4f}"
        )


@cli.command("init-config")
@click.option(
    "--output",
    "-o",
    default="trackest.yaml",
    type=click.Path(),
    help="Output file path (default: trackest.yaml).",
)
@click.option(
    "--force",
    is_flag=True,
    default=False,
    help="Overwrite existing file.",
)
def init_config(output: str, force: bool) -> None:
    """Generate a default template YAML config file with all defaults."""
    output_path = Path(output)
    if output_path.exists() and not force:
        raise click.ClickException(
            f"'{output}' already exists. Use --force to overwrite."
        )
    output_path.write_text(serialize_config(TrackEstimatorConfig()))
    click.echo(f"Config written to {output}")


def main() -> None:
    """Entry point for the ``trackest`` console script."""
    cli()
