"""
export.py
=========
File outputs for the layer pipeline: PNG encoding of rendered layers and
two :class:`~solar_layers.base_tool.LayerTool` implementations.

Classes:
    ShadeReportTool     Detect shade sources and write a JSON report.
    LayerExportTool     Render layers and write one PNG per visualisation.

Both tools read a JSON file holding the upstream data-layers record.  The
file may be the bare record (``{"dsmUrl": ..., ...}``) or an envelope
``{"dataLayers": {...}, "buildingInsights": {...}}``; building insights
are optional and only used for the per-segment shade summary.

Usage::

    ShadeReportTool(
        input_path=Path("data_layers.json"),
        output_path=Path("output/shade_report.json"),
        auth_key=api_key,
    ).run()
"""

from __future__ import annotations

import io
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
from PIL import Image

from .base_tool import LayerTool
from .config import LayerPipelineConfig
from .exceptions import InputValidationError, OutputWriteError
from .models import BuildingInsights, DataLayerUrls, LayerVisualization
from .orchestrator import LayerOrchestrator, LayerRenderOptions
from .raster_store import RasterStore
from .validators import Validators

logger = logging.getLogger("solar_layers.export")


# ---------------------------------------------------------------------------
# PNG encoding
# ---------------------------------------------------------------------------


def to_png_bytes(image: Union[LayerVisualization, np.ndarray]) -> bytes:
    """Encode an RGBA buffer (or a visualisation's pixels) as PNG bytes."""
    pixels = image.pixels if isinstance(image, LayerVisualization) else np.asarray(image)
    if pixels.ndim != 3 or pixels.shape[2] != 4:
        raise InputValidationError(
            f"Expected a (height, width, 4) RGBA array, got shape {pixels.shape}."
        )
    buf = io.BytesIO()
    Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8)).save(buf, format="PNG")
    return buf.getvalue()


def load_layer_record(path: Path) -> Tuple[DataLayerUrls, Optional[BuildingInsights]]:
    """Read a data-layers JSON file.

    Raises:
        InputValidationError: If the file is unreadable or not an object.
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise InputValidationError(f"Cannot read data layers '{path}': {exc}") from exc
    if not isinstance(data, dict):
        raise InputValidationError(f"Data layers file '{path}' must contain a JSON object.")

    if "dataLayers" in data:
        insights = data.get("buildingInsights")
        return (
            DataLayerUrls.from_dict(data["dataLayers"]),
            BuildingInsights.from_dict(insights) if insights else None,
        )
    return DataLayerUrls.from_dict(data), None


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


class _OrchestratedTool(LayerTool):
    """Shared constructor and input validation for orchestrator-backed tools."""

    def __init__(
        self,
        input_path: Path,
        output_path: Path,
        auth_key: str,
        *,
        options: Optional[LayerRenderOptions] = None,
        config: Optional[LayerPipelineConfig] = None,
        store: Optional[RasterStore] = None,
        verbose: bool = False,
    ) -> None:
        super().__init__(input_path, output_path, verbose=verbose)
        self.auth_key = auth_key
        self.options = options or LayerRenderOptions()
        self.config = config or LayerPipelineConfig()
        self._store = store
        self.layers: Optional[DataLayerUrls] = None
        self.insights: Optional[BuildingInsights] = None
        self.orchestrator: Optional[LayerOrchestrator] = None

    def validate_inputs(self) -> None:
        Validators.assert_file_exists(self.input_path)
        Validators.assert_supported_extension(self.input_path, [".json"])
        if self.options.day is not None:
            Validators.assert_day_hour_valid(self.options.day, 0)
        self.layers, self.insights = load_layer_record(self.input_path)
        self.orchestrator = LayerOrchestrator(
            self.layers, self.auth_key, store=self._store, config=self.config,
        )
        logger.debug(
            "Inputs validated: %s", ", ".join(self.orchestrator.get_available_layers()),
        )

    def _require_orchestrator(self) -> LayerOrchestrator:
        if self.orchestrator is None:
            raise InputValidationError(
                f"{self.__class__.__name__}.process() called before validate_inputs()."
            )
        return self.orchestrator


class ShadeReportTool(_OrchestratedTool):
    """Detect shade sources for one day and write them as JSON.

    The report holds the detected sources, the per-hour shade summary and,
    when building insights are present, the mean shade percentage per
    roof segment.
    """

    def __init__(self, input_path: Path, output_path: Path, auth_key: str, **kwargs: Any) -> None:
        super().__init__(input_path, output_path, auth_key, **kwargs)
        self.report: Dict[str, Any] = {}

    def validate_inputs(self) -> None:
        super().validate_inputs()
        Validators.assert_supported_extension(self.output_path, [".json"])
        Validators.assert_output_dir_writable(self.output_path)

    def process(self) -> None:
        orchestrator = self._require_orchestrator()
        month, day = orchestrator.resolve_date(self.options)

        sources = orchestrator.get_shade_sources(self.options)
        hourly = orchestrator.get_shade_analysis(self.options)
        report: Dict[str, Any] = {
            "month": month,
            "day": day,
            "shade_sources": [s.to_dict() for s in sources],
            "hourly": [h.to_dict() for h in hourly],
        }
        if self.insights is not None:
            segments = orchestrator.segment_shade_percentages(self.insights, self.options)
            report["segments"] = {str(k): v for k, v in segments.items()}

        try:
            with open(self.output_path, "w", encoding="utf-8") as fh:
                json.dump(report, fh, indent=2)
        except OSError as exc:
            raise OutputWriteError(str(self.output_path), str(exc)) from exc

        self.report = report
        logger.info("Wrote %d shade source(s) to %s", len(sources), self.output_path.name)


class LayerExportTool(_OrchestratedTool):
    """Render layers and write ``<id>.png`` files plus a ``layers.json`` index.

    Args:
        layer_ids: Layers to export.  ``None`` exports every available one.
    """

    MANIFEST_NAME = "layers.json"

    def __init__(
        self,
        input_path: Path,
        output_path: Path,
        auth_key: str,
        layer_ids: Optional[Sequence[str]] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(input_path, output_path, auth_key, **kwargs)
        self.layer_ids = list(layer_ids) if layer_ids else None
        self.written: List[Path] = []

    def validate_inputs(self) -> None:
        super().validate_inputs()
        available = self._require_orchestrator().get_available_layers()
        for layer_id in self.layer_ids or []:
            if layer_id not in available:
                raise InputValidationError(
                    f"Layer '{layer_id}' is not available. "
                    f"Available layers: {', '.join(available) or 'none'}"
                )
        try:
            self.output_path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise OutputWriteError(str(self.output_path), str(exc)) from exc

    def process(self) -> None:
        orchestrator = self._require_orchestrator()
        manifest = []
        written: List[Path] = []

        for layer_id in self.layer_ids or orchestrator.get_available_layers():
            for viz in orchestrator.render_layer(layer_id, self.options):
                target = self.output_path / f"{viz.id}.png"
                try:
                    target.write_bytes(to_png_bytes(viz))
                except OSError as exc:
                    raise OutputWriteError(str(target), str(exc)) from exc
                written.append(target)
                manifest.append({
                    "id": viz.id,
                    "name": viz.name,
                    "file": target.name,
                    "width": viz.width,
                    "height": viz.height,
                    "bounds": viz.bounds.to_dict(),
                    "legend": viz.legend.to_dict() if viz.legend else None,
                })

        manifest_path = self.output_path / self.MANIFEST_NAME
        try:
            manifest_path.write_text(json.dumps(manifest, indent=2), encoding="utf-8")
        except OSError as exc:
            raise OutputWriteError(str(manifest_path), str(exc)) from exc

        self.written = written
        logger.info("Exported %d visualisation(s) to %s", len(written), self.output_path)
