"""
Solar Data Layers — Base Tool
=============================
Abstract base class for the file-in / file-out tools built on top of the
layer pipeline (shade report, layer export).

Design Pattern:
    Template Method — the public ``run()`` method defines a fixed
    pipeline (validate → process → report) that subclasses fill in
    by implementing the abstract methods ``validate_inputs`` and
    ``process``.

Usage:
    Do NOT instantiate this class directly.  Subclass it and implement
    the two abstract methods::

        from solar_layers.base_tool import LayerTool

        class MyTool(LayerTool):
            def validate_inputs(self) -> None:
                ...
            def process(self) -> None:
                ...
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path

# ---------------------------------------------------------------------------
# Package root logger — every module logs to a child of this via
#   logging.getLogger("solar_layers.<module>").
# ---------------------------------------------------------------------------
logger = logging.getLogger("solar_layers")

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s — %(message)s"
LOG_DATEFMT = "%H:%M:%S"


def configure_logging(verbose: bool = False) -> None:
    """Attach a console handler to the ``solar_layers`` logger once.

    Uses DEBUG level when *verbose* is ``True``, otherwise INFO.  Calling
    it again only adjusts the level.
    """
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
        logger.addHandler(handler)

    logger.setLevel(logging.DEBUG if verbose else logging.INFO)


class LayerTool(ABC):
    """Abstract base class for solar layer tools.

    Every concrete tool must inherit from this class and implement
    :meth:`validate_inputs` and :meth:`process`.  Calling :meth:`run`
    executes the full pipeline in the correct order.

    Attributes:
        input_path: Path to the data-layers JSON record the tool reads.
        output_path: Path (file or directory) the tool writes to.
        verbose: When ``True`` the tool logs DEBUG-level messages in
            addition to INFO/WARNING/ERROR.

    Example::

        tool = ShadeReportTool(
            input_path=Path("data_layers.json"),
            output_path=Path("output/shade_sources.json"),
            auth_key=api_key,
        )
        tool.run()
    """

    def __init__(
        self,
        input_path: Path,
        output_path: Path,
        *,
        verbose: bool = False,
    ) -> None:
        self.input_path: Path = Path(input_path)
        self.output_path: Path = Path(output_path)
        self.verbose: bool = verbose

        configure_logging(self.verbose)

    # ------------------------------------------------------------------
    # Abstract interface — subclasses MUST implement these
    # ------------------------------------------------------------------

    @abstractmethod
    def validate_inputs(self) -> None:
        """Validate all inputs before processing begins.

        Raises:
            InputValidationError: If a required file is missing or a
                parameter is out of range.
        """

    @abstractmethod
    def process(self) -> None:
        """Execute the tool's work.

        Called by :meth:`run` after :meth:`validate_inputs` has succeeded.
        Any exception raised here propagates up through :meth:`run`.
        """

    # ------------------------------------------------------------------
    # Template method
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Load the data-layers record, produce the output, log the timing.

        :meth:`validate_inputs` reads the record and builds the
        orchestrator; :meth:`process` fetches rasters and writes files.
        Nothing is written when validation fails.

        Raises:
            SolarLayersError: Any pipeline error from either stage.
        """
        logger.info("Starting %s for %s", self.__class__.__name__, self.input_path.name)
        start = time.perf_counter()

        self.validate_inputs()
        self.process()

        self._report_success(time.perf_counter() - start)

    def _report_success(self, elapsed: float) -> None:
        logger.info(
            "%s finished in %.2fs; output at %s",
            self.__class__.__name__,
            elapsed,
            self.output_path,
        )

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"record={str(self.input_path)!r}, "
            f"output={str(self.output_path)!r}, "
            f"verbose={self.verbose})"
        )
