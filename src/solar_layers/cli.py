"""
Solar Data Layers — CLI Entry Point
===================================
Installed as the ``solar-layers`` command via ``pyproject.toml``.

Usage:
    solar-layers shade-sources --input data_layers.json --output report.json --month 5 --day 21
    solar-layers render --input data_layers.json --output out/ --layer dsm --layer annualFlux
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional, Tuple

import click

from .config import LayerPipelineConfig
from .exceptions import SolarLayersError
from .export import LayerExportTool, ShadeReportTool
from .orchestrator import LAYER_IDS, LayerRenderOptions


def _build_options(
    month: Optional[int],
    day: Optional[int],
    roof_only: bool,
) -> LayerRenderOptions:
    return LayerRenderOptions(show_roof_only=roof_only, month=month, day=day)


def _load_config(config_path: Optional[Path]) -> LayerPipelineConfig:
    return LayerPipelineConfig.from_json(config_path) if config_path else LayerPipelineConfig()


_input_option = click.option(
    "--input", "-i", "input_path",
    required=True,
    type=click.Path(exists=True, file_okay=True, dir_okay=False, path_type=Path),
    help="JSON file with the data-layers record (optionally wrapped with buildingInsights).",
)
_key_option = click.option(
    "--api-key",
    envvar="SOLAR_API_KEY",
    required=True,
    help="API key sent with every raster download. Reads SOLAR_API_KEY if omitted.",
)
_month_option = click.option(
    "--month", type=click.IntRange(0, 11), default=None,
    help="0-based month (0 = January). Defaults to the configured month.",
)
_day_option = click.option(
    "--day", type=click.IntRange(1, 31), default=None,
    help="Day of month. Defaults to the configured day.",
)
_roof_option = click.option(
    "--roof-only", is_flag=True, default=False, help="Hide pixels outside the roof mask.",
)
_config_option = click.option(
    "--config", "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="JSON file overriding pipeline defaults.",
)
_verbose_option = click.option(
    "--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.",
)


@click.group(
    name="solar-layers",
    help="Render solar data layers and detect shade sources for one building.",
)
def main() -> None:
    """Command group entry point."""


@main.command(
    name="shade-sources",
    help="Detect shade sources for one day and write a JSON report.",
)
@_input_option
@click.option(
    "--output", "-o", "output_path",
    required=True,
    type=click.Path(file_okay=True, dir_okay=False, path_type=Path),
    help="Path for the JSON report.",
)
@_key_option
@_month_option
@_day_option
@_config_option
@_verbose_option
def shade_sources(
    input_path: Path,
    output_path: Path,
    api_key: str,
    month: Optional[int],
    day: Optional[int],
    config_path: Optional[Path],
    verbose: bool,
) -> None:
    """Wire Click options into ShadeReportTool."""
    try:
        tool = ShadeReportTool(
            input_path,
            output_path,
            api_key,
            options=_build_options(month, day, False),
            config=_load_config(config_path),
            verbose=verbose,
        )
        tool.run()
        sources = tool.report.get("shade_sources", [])
        click.echo(f"\nReport written to: {output_path}")
        click.echo(f"  {len(sources)} shade source(s) detected")
        for source in sources:
            click.echo(
                f"  {source['id']}: {source['name']} at "
                f"({source['x']:.1f}%, {source['y']:.1f}%) "
                f"~{source['estimated_height']:.0f} ft"
            )
    except SolarLayersError as exc:
        click.echo(f"Error: {exc.message}", err=True)
        sys.exit(1)


@main.command(name="render", help="Render layers to PNG files plus a layers.json index.")
@_input_option
@click.option(
    "--output", "-o", "output_dir",
    required=True,
    type=click.Path(file_okay=False, dir_okay=True, path_type=Path),
    help="Directory for the PNG files.",
)
@_key_option
@click.option(
    "--layer", "-l", "layer_ids",
    multiple=True,
    type=click.Choice(list(LAYER_IDS)),
    help="Layer to render; repeat for several. Omit to render every available layer.",
)
@_month_option
@_day_option
@_roof_option
@_config_option
@_verbose_option
def render(
    input_path: Path,
    output_dir: Path,
    api_key: str,
    layer_ids: Tuple[str, ...],
    month: Optional[int],
    day: Optional[int],
    roof_only: bool,
    config_path: Optional[Path],
    verbose: bool,
) -> None:
    """Wire Click options into LayerExportTool."""
    try:
        tool = LayerExportTool(
            input_path,
            output_dir,
            api_key,
            layer_ids=layer_ids,
            options=_build_options(month, day, roof_only),
            config=_load_config(config_path),
            verbose=verbose,
        )
        tool.run()
        click.echo(f"\n{len(tool.written)} PNG file(s) written to: {output_dir}")
    except SolarLayersError as exc:
        click.echo(f"Error: {exc.message}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
