"""Session orchestrator: image → trajectories → measurements → events."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Callable

import numpy as np

from trajflow.analysis.fundamental import DiagramPoint, diagram_points
from trajflow.analysis.measurement import InsufficientDataError, MeasurementEngine, summarize
from trajflow.analysis.regions import RegionBuilder
from trajflow.analysis.units import from_speed_kmh
from trajflow.capture.image_source import to_rgba
from trajflow.config import AppConfig, save_config_values
from trajflow.processing.extractor import TrajectoryExtractor
from trajflow.recording.event_log import EventLog
from trajflow.recording.export import to_delimited
from trajflow.recording.models import (
    AnalysisMode,
    AnalysisRecord,
    AnalysisRegion,
    AnalysisResult,
    AnalysisVisual,
    Extent,
    LineRegion,
    PixelMapper,
    Point,
    SessionEvent,
    Trajectory,
)

logger = logging.getLogger(__name__)


class AnalysisSession:
    """Owns the trajectory set, the measurement history and the click state.

    All mutation happens on the caller's thread. Only the binarize-and-trace
    step of `load_image_async` runs in a worker, and its output is applied
    back on the event loop.
    """

    def __init__(self, config: AppConfig, config_path: str | None = None):
        self._config = config
        self._config_path = config_path

        self._extractor = TrajectoryExtractor(config.extraction)
        self._event_log = EventLog(config.recording.max_events)

        self._extent = Extent(config.extent.temporal, config.extent.spatial)
        self._image: np.ndarray | None = None
        self._mapper: PixelMapper | None = None
        self._engine = MeasurementEngine((), self._extent, config.measurement)

        self._records: list[AnalysisRecord] = []
        self._builder = RegionBuilder(AnalysisMode.LINE, config.measurement)
        self._last_wave_speed: float | None = None
        self._next_experiment = 1

        self._processing = False
        # Incremented on every image/extent change so stale extractions are discarded
        self._image_version = 0

        self._event_callbacks: list[Callable] = []

    # --- read-only views ---

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    @property
    def extent(self) -> Extent:
        return self._extent

    @property
    def mapper(self) -> PixelMapper | None:
        return self._mapper

    @property
    def has_image(self) -> bool:
        return self._image is not None

    @property
    def processing(self) -> bool:
        return self._processing

    @property
    def trajectories(self) -> tuple[Trajectory, ...]:
        return self._engine.trajectories

    @property
    def records(self) -> list[AnalysisRecord]:
        return list(self._records)

    @property
    def results(self) -> list[AnalysisResult]:
        return [r.result for r in self._records]

    @property
    def visuals(self) -> list[AnalysisVisual]:
        return [r.visual for r in self._records]

    @property
    def mode(self) -> AnalysisMode:
        return self._builder.mode

    @property
    def pending_points(self) -> tuple[Point, ...]:
        return self._builder.pending_points

    @property
    def reference_wave_speed(self) -> float:
        """Most recent line wave speed, else the configured default (m/min)."""
        if self._last_wave_speed is not None:
            return self._last_wave_speed
        return from_speed_kmh(self._config.measurement.default_wave_speed_kmh)

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "image_loaded": self.has_image,
            "processing": self._processing,
            "width": self._mapper.width if self._mapper else 0,
            "height": self._mapper.height if self._mapper else 0,
            "temporal": self._extent.temporal,
            "spatial": self._extent.spatial,
            "trajectories": len(self.trajectories),
            "results": len(self._records),
            "mode": self.mode.value,
            "pending_points": len(self.pending_points),
            "reference_wave_speed": self.reference_wave_speed,
        }

    # --- event plumbing ---

    def add_event_callback(self, callback: Callable) -> None:
        """Register a callback receiving every session event as a dict."""
        self._event_callbacks.append(callback)

    def _publish(self, kind: str, message: str, **data: Any) -> SessionEvent:
        event = self._event_log.log(kind, message, **data)
        payload = {
            "type": kind,
            "event_id": event.event_id,
            "timestamp": event.timestamp,
            "message": message,
            **data,
        }
        for callback in self._event_callbacks:
            try:
                callback(payload)
            except Exception:
                logger.exception("Error in event callback")
        return event

    # --- extraction ---

    def load_image(self, image: np.ndarray, extent: Extent | None = None) -> list[Trajectory]:
        """Replace the image and extract its trajectories synchronously.

        Discards every trajectory, result and in-progress click.
        """
        version = self._begin_extraction(image, extent, reset=True)
        return self._extract(version)

    async def load_image_async(self, image: np.ndarray,
                               extent: Extent | None = None) -> list[Trajectory]:
        """Like `load_image`, but traces in a worker thread.

        A "processing" event is published before the trace starts and an
        "extraction" event after the new trajectories are in place.
        """
        version = self._begin_extraction(image, extent, reset=True)
        return await self._extract_async(version)

    def recalculate(self, extent: Extent) -> list[Trajectory]:
        """Re-extract the current image under a new extent.

        The measurement history is kept; the trajectory set is rebuilt.
        """
        if self._image is None:
            raise ValueError("No image loaded")
        version = self._begin_extraction(self._image, extent, reset=False)
        return self._extract(version)

    async def recalculate_async(self, extent: Extent) -> list[Trajectory]:
        if self._image is None:
            raise ValueError("No image loaded")
        version = self._begin_extraction(self._image, extent, reset=False)
        return await self._extract_async(version)

    def binarized_image(self) -> np.ndarray | None:
        """The current image as the extractor sees it, or None."""
        if self._image is None:
            return None
        return self._extractor.binarizer.process(self._image)

    def _begin_extraction(self, image: np.ndarray, extent: Extent | None,
                          reset: bool) -> int:
        rgba = to_rgba(image)
        if reset:
            self._records.clear()
            self._builder.reset()
            self._last_wave_speed = None
        self._image = rgba
        self._extent = extent or self._extent
        self._mapper = PixelMapper(width=rgba.shape[1], height=rgba.shape[0],
                                   extent=self._extent)
        self._engine = MeasurementEngine((), self._extent,
                                         self._config.measurement, self._mapper)
        self._image_version += 1
        self._processing = True
        self._publish("processing", "Processing image data...",
                      width=rgba.shape[1], height=rgba.shape[0])
        return self._image_version

    def _extract(self, version: int) -> list[Trajectory]:
        try:
            trajectories = self._extractor.extract(self._image, self._extent)
        except Exception:
            self._fail_extraction(version)
            raise
        self._finish_extraction(version, trajectories)
        return trajectories

    async def _extract_async(self, version: int) -> list[Trajectory]:
        try:
            trajectories = await asyncio.to_thread(
                self._extractor.extract, self._image, self._extent)
        except Exception:
            self._fail_extraction(version)
            raise
        self._finish_extraction(version, trajectories)
        return trajectories

    def _fail_extraction(self, version: int) -> None:
        if version != self._image_version:
            return
        self._processing = False
        self._publish("failure", "Image processing failed.", reason="extraction_error")

    def _finish_extraction(self, version: int, trajectories: list[Trajectory]) -> None:
        if version != self._image_version:
            logger.info("Discarding extraction for superseded image #%d", version)
            return
        self._engine = MeasurementEngine(trajectories, self._extent,
                                         self._config.measurement, self._mapper)
        self._processing = False
        self._publish("extraction",
                      f"Analysis ready: {len(trajectories)} trajectories identified.",
                      count=len(trajectories))

    # --- measurement ---

    def set_mode(self, mode: AnalysisMode) -> None:
        """Switch analysis mode, dropping any half-drawn region."""
        self._builder = RegionBuilder(mode, self._config.measurement)
        self._publish("mode", f"Mode set to {mode.value}.", mode=mode.value)

    def click(self, point: Point) -> list[AnalysisRecord]:
        """Feed one anchor point to the active mode.

        Returns the records produced by the click, empty while a region is
        still being collected.
        """
        if not self.trajectories:
            self._publish("failure", "No trajectories available; click ignored.",
                          reason="no_trajectories")
            return []

        region = self._builder.click(point)
        if region is None:
            self._publish(
                "click",
                f"Point recorded, {self._builder.remaining} more needed.",
                mode=self.mode.value,
                pending=len(self.pending_points),
            )
            return []
        return self.measure(region)

    def measure(self, region: AnalysisRegion) -> list[AnalysisRecord]:
        """Measure a complete region and append its records."""
        experiment_id = self._next_experiment
        try:
            records = self._engine.measure(region, experiment_id,
                                           self.reference_wave_speed)
        except InsufficientDataError as e:
            self._publish("failure",
                          f"{region.mode.value.replace('_', ' ').capitalize()} "
                          f"analysis skipped: {e}",
                          mode=region.mode.value, reason=e.reason.value)
            return []

        self._next_experiment += 1
        self._records.extend(records)

        if isinstance(region, LineRegion) and records[0].result.wave_speed is not None:
            self._last_wave_speed = records[0].result.wave_speed

        self._publish("measurement", summarize(region, records),
                      mode=region.mode.value, experiment_id=experiment_id,
                      records=len(records))
        return records

    def clear_results(self) -> int:
        """Drop the whole measurement history. Returns how many records went."""
        count = len(self._records)
        self._records = []
        self._publish("results", f"Cleared {count} results.", count=count)
        return count

    # --- views for export ---

    def export_text(self, delimiter: str = ",") -> str:
        return to_delimited(self._records, delimiter)

    def diagram(self) -> dict[int, list[DiagramPoint]]:
        return diagram_points(self.results)

    # --- runtime settings ---

    def update_extraction_config(self, **kwargs: Any) -> None:
        """Update extraction parameters and rebuild the extractor."""
        for key, value in kwargs.items():
            if hasattr(self._config.extraction, key):
                setattr(self._config.extraction, key, value)
        self._extractor = TrajectoryExtractor(self._config.extraction)
        logger.info("Extraction config updated: %s", kwargs)

    def update_measurement_config(self, **kwargs: Any) -> None:
        """Update measurement parameters (engine and builder share the config object).

        Raises ValueError, leaving the config untouched, if the new values
        could not build a valid region.
        """
        known = {k: v for k, v in kwargs.items() if hasattr(self._config.measurement, k)}
        replace(self._config.measurement, **known)  # validates a copy first
        for key, value in known.items():
            setattr(self._config.measurement, key, value)
        logger.info("Measurement config updated: %s", known)

    def persist_config_values(self, data: dict) -> None:
        """Write key/value pairs to the config file the session was loaded from."""
        if self._config_path is None:
            return
        save_config_values(data, self._config_path)
