"""
Epoch Compositor — CLI Entry Point
==================================
Exposes :class:`~epoch_compositor.pipeline.EpochCompositor` as the
``basin-epochs`` command.

Usage::

    basin-epochs --roi gash_basin.geojson --output-dir output/

    # Two epochs, no SAR, custom epoch table
    basin-epochs --roi gash_basin.geojson --epoch-table epochs.json \\
                 --epochs 1995,2025 --no-sar

Run ``basin-epochs --help`` for the full option list.
"""

from __future__ import annotations

from pathlib import Path

import click

from shared.python.exceptions import BasinScopeError

from .config import CompositorConfig, load_config, load_epoch_table
from .pipeline import EpochCompositor


def _parse_label_list(raw: str) -> list[str]:
    """Parse a comma-separated epoch list, e.g. ``"1985,1995"``."""
    return [s.strip() for s in raw.split(",") if s.strip()]


def build_config(
    config_path: Path | None,
    epoch_table: Path | None,
    epochs: str | None,
    workers: int | None,
    analysis_scale: float | None,
    export_folder: str | None,
    prefix: str | None,
    no_sar: bool,
    no_baseline: bool,
    no_map: bool,
    no_exports: bool,
) -> CompositorConfig:
    """Merge the config file (if any) with command-line overrides."""
    config = load_config(config_path) if config_path else CompositorConfig()
    if epoch_table:
        config.epochs = load_epoch_table(epoch_table)
    if epochs:
        config.select(_parse_label_list(epochs))
    if workers is not None:
        config.max_workers = workers
    if analysis_scale is not None:
        config.analysis_scale = analysis_scale
    if export_folder:
        config.baseline_folder = export_folder
        config.analysis_folder = export_folder
    if prefix:
        config.prefix = prefix
        config.analysis_prefix = prefix
    if no_sar:
        config.include_sar = False
    if no_baseline:
        config.include_baseline = False
    if no_map:
        config.include_map = False
    if no_exports:
        config.include_exports = False
    return config


@click.command(
    name="basin-epochs",
    help=(
        "Composite optical imagery per epoch, find each epoch's flood-peak "
        "scene per pixel, and report water, vegetation and soil medians.\n\n"
        "Writes epoch_report.json/.csv, spectral_trends.png, basin_map.html "
        "and GeoTIFF exports to OUTPUT_DIR."
    ),
)
@click.option(
    "--roi", "-r",
    "roi_path",
    required=True,
    type=click.Path(exists=True, file_okay=True, dir_okay=False, path_type=Path),
    help="Region of interest (GeoJSON, Shapefile or GeoPackage).",
)
@click.option(
    "--output-dir", "-o",
    "output_dir",
    default="output",
    show_default=True,
    type=click.Path(file_okay=False, dir_okay=True, path_type=Path),
    help="Directory for reports, chart, map and exports.",
)
@click.option(
    "--config", "-c",
    "config_path",
    default=None,
    type=click.Path(exists=True, file_okay=True, dir_okay=False, path_type=Path),
    help="JSON run configuration (options below override it).",
)
@click.option(
    "--epoch-table",
    "epoch_table",
    default=None,
    type=click.Path(exists=True, file_okay=True, dir_okay=False, path_type=Path),
    help="JSON epoch table replacing the built-in 1985-2025 epochs.",
)
@click.option(
    "--epochs",
    default=None,
    help="Comma-separated epoch labels to run, e.g. 1995,2025.",
)
@click.option(
    "--workers",
    type=click.IntRange(min=1),
    default=None,
    help="Thread pool size for epoch jobs and exports.",
)
@click.option(
    "--analysis-scale",
    type=float,
    default=None,
    help="Sample spacing (m) of the per-epoch region medians [default: 1000].",
)
@click.option(
    "--export-folder",
    default=None,
    help="Single export folder for every GeoTIFF.",
)
@click.option(
    "--prefix",
    default=None,
    help="Prefix of every export name.",
)
@click.option("--no-sar", is_flag=True, default=False, help="Skip SAR composites.")
@click.option("--no-baseline", is_flag=True, default=False, help="Skip baseline mosaics.")
@click.option("--no-map", is_flag=True, default=False, help="Skip the HTML map.")
@click.option("--no-exports", is_flag=True, default=False, help="Skip GeoTIFF exports.")
@click.option(
    "--verbose", "-v",
    is_flag=True,
    default=False,
    help="Enable debug-level logging output.",
)
def main(
    roi_path: Path,
    output_dir: Path,
    config_path: Path | None,
    epoch_table: Path | None,
    epochs: str | None,
    workers: int | None,
    analysis_scale: float | None,
    export_folder: str | None,
    prefix: str | None,
    no_sar: bool,
    no_baseline: bool,
    no_map: bool,
    no_exports: bool,
    verbose: bool,
) -> None:
    """Run the basin epoch compositor."""
    try:
        config = build_config(
            config_path, epoch_table, epochs, workers, analysis_scale,
            export_folder, prefix, no_sar, no_baseline, no_map, no_exports,
        )
        tool = EpochCompositor(
            input_path=roi_path,
            output_path=output_dir,
            config=config,
            verbose=verbose,
        )
        run = tool.run()
    except BasinScopeError as exc:
        click.secho(f"Error: {exc.message}", fg="red", err=True)
        raise SystemExit(1) from exc
    except Exception as exc:
        click.secho(f"Unexpected error: {exc}", fg="red", err=True)
        raise SystemExit(2) from exc

    for record in run.records:
        if record.available:
            click.echo(
                f"  {record.year}: MNDWI={record.mndwi} NDVI={record.ndvi} "
                f"BSI={record.bsi} peak_month={record.peak_month}"
            )
        else:
            click.secho(f"  {record.year}: {record.status}", fg="yellow")
    for failed in run.failed_exports:
        click.secho(f"  export {failed.description} failed", fg="yellow")
    click.echo(f"\nOutputs written to: {output_dir}")


if __name__ == "__main__":
    main()  # type: ignore[call-arg]
