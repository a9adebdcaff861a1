"""Directional pixel tracing of binarized trajectory diagrams."""

from __future__ import annotations

import logging

import numpy as np

from trajflow.config import ExtractionConfig
from trajflow.processing.binarizer import Binarizer
from trajflow.recording.models import Extent, PixelMapper, Point, Trajectory

logger = logging.getLogger(__name__)

# Candidate moves (dx, dy) in pixel space, tried in order. dx is never
# negative so time never runs backwards along a trace.
SEARCH_OFFSETS: tuple[tuple[int, int], ...] = (
    # Vertical climbing for near-vertical (very fast) paths
    (0, 1), (0, -1),
    # Forward connectivity
    (1, 0),
    (1, 1), (1, -1),
    (1, 2), (1, -2),
    (1, 3), (1, -3),
    (1, 4), (1, -4),
    (1, 5), (1, -5),
    # Gap jumping over broken lines
    (2, 0),
    (2, 1), (2, -1),
    (2, 2), (2, -2),
    (2, 3), (2, -3),
    (2, 4), (2, -4),
    # Long range gap
    (3, 0), (3, 1), (3, -1),
)


class TrajectoryExtractor:
    """Converts a raster diagram into trajectories in (time, position) units."""

    def __init__(self, config: ExtractionConfig):
        self._cfg = config
        self._binarizer = Binarizer(config)

    @property
    def binarizer(self) -> Binarizer:
        return self._binarizer

    def extract(self, image: np.ndarray, extent: Extent) -> list[Trajectory]:
        """Binarize `image` and trace every foreground path.

        Returns trajectories with sequential ids starting at 1. A blank image
        yields an empty list.
        """
        mask = self._binarizer.foreground_mask(image)
        height, width = mask.shape
        mapper = PixelMapper(width=width, height=height, extent=extent)

        traces = self.trace(mask)
        trajectories = [
            Trajectory(id=i, points=world_points(trace, mapper))
            for i, trace in enumerate(traces, start=1)
        ]
        logger.info("Extracted %d trajectories from %dx%d raster",
                    len(trajectories), width, height)
        return trajectories

    def trace(self, mask: np.ndarray) -> list[list[tuple[int, int]]]:
        """Trace a boolean foreground mask into pixel paths.

        Seeds are visited column by column (every `column_step` columns),
        top to bottom. Paths shorter than `min_points` are dropped.
        """
        height, width = mask.shape
        step = max(1, int(self._cfg.column_step))
        min_points = self._cfg.min_points

        fg = mask.tolist()
        visited = bytearray(width * height)

        # nonzero on the transposed view orders seeds by column, then row
        seed_cols, seed_rows = np.nonzero(mask[:, ::step].T)

        paths: list[list[tuple[int, int]]] = []
        for col, row in zip(seed_cols.tolist(), seed_rows.tolist()):
            x = col * step
            if visited[row * width + x]:
                continue

            path: list[tuple[int, int]] = []
            cx, cy = x, row
            while cx < width and 0 <= cy < height:
                if visited[cy * width + cx]:
                    break
                visited[cy * width + cx] = 1
                path.append((cx, cy))

                for dx, dy in SEARCH_OFFSETS:
                    nx = cx + dx
                    ny = cy + dy
                    if (nx < width and 0 <= ny < height
                            and not visited[ny * width + nx] and fg[ny][nx]):
                        cx, cy = nx, ny
                        break
                else:
                    break

            if len(path) >= min_points:
                paths.append(path)

        logger.debug("Traced %d paths (column step %d)", len(paths), step)
        return paths


def pixel_points(trajectory: Trajectory, mapper: PixelMapper) -> list[tuple[float, float]]:
    """Map a trajectory back into pixel coordinates for rendering."""
    return [mapper.to_pixel(p) for p in trajectory.points]


def world_points(path: list[tuple[int, int]], mapper: PixelMapper) -> tuple[Point, ...]:
    return tuple(mapper.to_world(px, py) for px, py in path)
