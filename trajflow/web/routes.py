"""HTTP routes: image upload, analysis, results, export and settings."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from trajflow.analysis.fundamental import diagram_slope
from trajflow.analysis.units import from_speed_kmh
from trajflow.capture.image_source import decode_image, encode_png
from trajflow.processing.extractor import pixel_points
from trajflow.recording.models import (
    AnalysisMode,
    AnalysisRecord,
    AnalysisRegion,
    Extent,
    LineRegion,
    LoopDetectorRegion,
    PlatoonRegion,
    Point,
    PolygonRegion,
)
from trajflow.session import AnalysisSession


def _cast(current_value, new_value):
    """Cast new_value to the same type as the existing config attribute."""
    if isinstance(current_value, bool):
        return new_value in (True, "true", "1", "on", 1)
    elif isinstance(current_value, int):
        return int(float(new_value))
    elif isinstance(current_value, float):
        return float(new_value)
    return new_value


def _typed_dict(config_obj, body: dict) -> dict:
    """Return a dict of values from body, cast to match config_obj field types."""
    result = {}
    for key, value in body.items():
        if hasattr(config_obj, key):
            result[key] = _cast(getattr(config_obj, key), value)
    return result


def _point(data: dict) -> Point:
    return Point(time=float(data["time"]), position=float(data["position"]))


def _record_dict(record: AnalysisRecord) -> dict[str, Any]:
    return {"result": asdict(record.result), "visual": asdict(record.visual)}


def _region_from_body(body: dict, session: AnalysisSession) -> AnalysisRegion:
    """Build a region from a JSON body, filling scalars from the config."""
    cfg = session.config.measurement
    mode = AnalysisMode(body["mode"])
    points = [_point(p) for p in body.get("points", [])]
    wave_speed = body.get("wave_speed_kmh")
    wave_speed = from_speed_kmh(float(wave_speed)) if wave_speed is not None else None

    if mode == AnalysisMode.LINE:
        if len(points) != 2:
            raise ValueError("Line region needs exactly 2 points")
        return LineRegion(start=points[0], end=points[1])
    if mode == AnalysisMode.POLYGON:
        return PolygonRegion(vertices=tuple(points))
    if len(points) != 1:
        raise ValueError(f"{mode.value} region needs exactly 1 anchor point")
    if mode == AnalysisMode.PLATOON:
        return PlatoonRegion(
            anchor=points[0],
            vehicle_count=int(body.get("vehicle_count", cfg.platoon_size)),
            segment_height=float(body.get("segment_height", cfg.platoon_height)),
            wave_speed=wave_speed,
        )
    return LoopDetectorRegion(
        anchor=points[0],
        window_duration=float(body.get("window_duration", cfg.loop_interval)),
        aperture_length=float(body.get("aperture_length", cfg.loop_length)),
        wave_speed=wave_speed,
    )


def _bad_request(error: Exception) -> JSONResponse:
    return JSONResponse({"error": str(error)}, 400)


def create_router(session: AnalysisSession) -> APIRouter:
    router = APIRouter()

    def _last_message() -> str:
        recent = session.event_log.get_recent(1)
        return recent[0].message if recent else ""

    # --- REST API: image & trajectories ---

    @router.get("/api/stats")
    async def api_stats():
        return JSONResponse(session.stats)

    @router.post("/api/image")
    async def api_upload_image(request: Request, temporal: float | None = None,
                               spatial: float | None = None):
        data = await request.body()
        try:
            image = decode_image(data)
            extent = Extent(
                temporal if temporal is not None else session.extent.temporal,
                spatial if spatial is not None else session.extent.spatial,
            )
        except ValueError as e:
            return _bad_request(e)

        trajectories = await session.load_image_async(image, extent)
        return JSONResponse({
            "status": "ok",
            "trajectories": len(trajectories),
            "message": _last_message(),
        })

    @router.get("/api/image/binarized")
    async def api_binarized_image():
        binarized = session.binarized_image()
        if binarized is None:
            return JSONResponse({"error": "No image loaded"}, 404)
        return Response(encode_png(binarized), media_type="image/png")

    @router.post("/api/extent")
    async def api_update_extent(request: Request):
        body = await request.json()
        try:
            extent = Extent(float(body["temporal"]), float(body["spatial"]))
            trajectories = await session.recalculate_async(extent)
        except (KeyError, ValueError) as e:
            return _bad_request(e)
        session.persist_config_values({"temporal": extent.temporal,
                                       "spatial": extent.spatial})
        return JSONResponse({"status": "ok", "trajectories": len(trajectories)})

    @router.get("/api/trajectories")
    async def api_trajectories(space: str = "world"):
        mapper = session.mapper
        if space == "pixel" and mapper is not None:
            return JSONResponse([
                {"id": t.id, "points": pixel_points(t, mapper)}
                for t in session.trajectories
            ])
        return JSONResponse([asdict(t) for t in session.trajectories])

    # --- REST API: analysis ---

    @router.post("/api/mode")
    async def api_set_mode(request: Request):
        body = await request.json()
        try:
            mode = AnalysisMode(body.get("mode"))
        except ValueError as e:
            return _bad_request(e)
        session.set_mode(mode)
        return JSONResponse({"status": "ok", "mode": mode.value})

    @router.post("/api/click")
    async def api_click(request: Request):
        body = await request.json()
        try:
            point = _point(body)
        except (KeyError, TypeError, ValueError) as e:
            return _bad_request(e)
        try:
            records = session.click(point)
        except ValueError as e:
            return _bad_request(e)
        return JSONResponse({
            "records": [_record_dict(r) for r in records],
            "pending_points": [asdict(p) for p in session.pending_points],
            "message": _last_message(),
        })

    @router.post("/api/measure")
    async def api_measure(request: Request):
        body = await request.json()
        try:
            region = _region_from_body(body, session)
            records = session.measure(region)
        except (KeyError, TypeError, ValueError) as e:
            return _bad_request(e)
        return JSONResponse({
            "records": [_record_dict(r) for r in records],
            "message": _last_message(),
        })

    @router.get("/api/results")
    async def api_results():
        return JSONResponse([_record_dict(r) for r in session.records])

    @router.delete("/api/results")
    async def api_clear_results():
        count = session.clear_results()
        return JSONResponse({"status": "ok", "deleted": count})

    @router.get("/api/export")
    async def api_export(format: str = "csv"):
        if format not in ("csv", "tsv"):
            return JSONResponse({"error": "Invalid format"}, 400)
        delimiter = "\t" if format == "tsv" else ","
        media_type = "text/csv" if format == "csv" else "text/tab-separated-values"
        return PlainTextResponse(session.export_text(delimiter), media_type=media_type)

    @router.get("/api/diagram")
    async def api_diagram():
        return JSONResponse({
            str(exp): [asdict(p) for p in points]
            for exp, points in session.diagram().items()
        })

    @router.post("/api/diagram/slope")
    async def api_diagram_slope(request: Request):
        body = await request.json()
        try:
            slope = diagram_slope(float(body["k1"]), float(body["q1"]),
                                  float(body["k2"]), float(body["q2"]))
        except (KeyError, TypeError, ValueError) as e:
            return _bad_request(e)
        return JSONResponse({"wave_speed_kmh": slope})

    # --- REST API: events ---

    @router.get("/api/events")
    async def api_events(limit: int = 50):
        return JSONResponse([asdict(e) for e in session.event_log.get_recent(limit)])

    @router.get("/api/event-stats")
    async def api_event_stats():
        return JSONResponse(session.event_log.get_stats())

    @router.delete("/api/events")
    async def api_clear_events():
        count = session.event_log.clear_all()
        return JSONResponse({"status": "ok", "deleted": count})

    # --- REST API: settings ---

    @router.post("/api/settings/extraction")
    async def api_update_extraction(request: Request):
        body = await request.json()
        try:
            typed = _typed_dict(session.config.extraction, body)
        except (TypeError, ValueError) as e:
            return _bad_request(e)
        session.update_extraction_config(**typed)
        session.persist_config_values(typed)
        return JSONResponse({"status": "ok", "updated": typed})

    @router.post("/api/settings/measurement")
    async def api_update_measurement(request: Request):
        body = await request.json()
        try:
            typed = _typed_dict(session.config.measurement, body)
            session.update_measurement_config(**typed)
        except (TypeError, ValueError) as e:
            return _bad_request(e)
        session.persist_config_values(typed)
        return JSONResponse({"status": "ok", "updated": typed})

    return router
